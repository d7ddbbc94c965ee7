import time
from typing import Callable, Dict, List


class LivenessMonitor:
    """Counts unanswered heartbeat probes per connection.

    ``tick`` probes every tracked sid and returns the ones that went silent for
    more than ``max_missed`` consecutive intervals. Any inbound frame resets a
    sid's counter through ``record_activity``.
    """

    def __init__(self, interval: float, max_missed: int, send_probe: Callable[[str], None], logger):
        self.interval = interval
        self.max_missed = max_missed
        self._send_probe = send_probe
        self.logger = logger
        self._missed: Dict[str, int] = {}
        self._running = False

    def __contains__(self, sid) -> bool:
        return sid in self._missed

    @property
    def running(self) -> bool:
        return self._running

    def track(self, sid: str) -> None:
        self._missed[sid] = 0

    def forget(self, sid: str) -> None:
        self._missed.pop(sid, None)

    def record_activity(self, sid: str) -> None:
        if sid in self._missed:
            self._missed[sid] = 0

    def missed(self, sid: str) -> int:
        return self._missed.get(sid, 0)

    def tick(self) -> List[str]:
        expired = []
        for sid in list(self._missed):
            self._missed[sid] += 1
            if self._missed[sid] > self.max_missed:
                self.logger.info(f"[liveness] sid={sid} missed={self._missed[sid] - 1} probes, timing out")
                self.forget(sid)
                expired.append(sid)
                continue
            try:
                self._send_probe(sid)
            except Exception as exc:
                self.logger.warning(f"[liveness] probe to sid={sid} failed: {exc}")
        return expired

    def start(self, spawn: Callable, on_tick: Callable[[], None], sleep: Callable[[float], None] = time.sleep) -> bool:
        """Run ``on_tick`` every interval in a background task. Idempotent."""
        if self._running or self.interval <= 0:
            return False
        self._running = True

        def _loop():
            self.logger.info(f"[liveness] started interval={self.interval}s max_missed={self.max_missed}")
            while self._running:
                sleep(self.interval)
                if not self._running:
                    break
                try:
                    on_tick()
                except Exception:
                    self.logger.exception('[liveness] tick failed')
            self.logger.info('[liveness] stopped')

        spawn(_loop)
        return True

    def stop(self) -> None:
        self._running = False
