"""Authoritative state for one realtime pairing.

A session only ever moves ``active -> finished``. Health is owned here and
only decreases, in response to a validated action from a participant.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .errors import DuplicateAction, MatchFinished, NotParticipant
from .protocol import ActionType, BattleAction, now_ms
from .rewards import RewardPolicy, Rewards, flat_rewards


class SessionState(str, Enum):
    ACTIVE = 'active'
    FINISHED = 'finished'


class EndReason(str, Enum):
    KO = 'KO'
    FORFEIT = 'FORFEIT'
    DISCONNECT = 'DISCONNECT'


DEFAULT_DAMAGE_CAPS = {
    ActionType.ATTACK: 100,
    ActionType.SKILL: 200,
    ActionType.DEFEND: 0,
    ActionType.HEAL: 0,
}


def new_match_id() -> str:
    return f"match_{now_ms()}_{uuid.uuid4().hex[:9]}"


def clamp_damage(action_type: ActionType, declared, caps: Dict[ActionType, int] = None) -> int:
    caps = caps or DEFAULT_DAMAGE_CAPS
    if declared is None:
        return 0
    return max(0, min(int(declared), caps.get(action_type, 0)))


@dataclass
class ActionResult:
    entry: dict
    health: Dict[int, int]
    next_turn: int
    finished: bool


class BattleSession:
    def __init__(self, match_id: str, player1, player2,
                 damage_caps: Dict[ActionType, int] = None,
                 reward_policy: RewardPolicy = None):
        if player1.user_id == player2.user_id:
            raise ValueError('A player cannot battle themselves')
        self.match_id = match_id
        self.player_ids = (player1.user_id, player2.user_id)
        self.summaries = {player1.user_id: player1.summary(), player2.user_id: player2.summary()}
        self.max_health = {p.user_id: p.max_hp for p in (player1, player2)}
        self.health = {p.user_id: max(0, min(p.hp, p.max_hp)) for p in (player1, player2)}
        self.damage_caps = dict(damage_caps or DEFAULT_DAMAGE_CAPS)
        self.reward_policy = reward_policy or flat_rewards()
        self.state = SessionState.ACTIVE
        # Set once BATTLE_START has gone out to both players
        self.started = False
        self.turn = 1
        self.log: List[dict] = []
        self.winner_id: Optional[int] = None
        self.loser_id: Optional[int] = None
        self.end_reason: Optional[EndReason] = None
        self._seen_action_ids = set()

    @property
    def finished(self) -> bool:
        return self.state == SessionState.FINISHED

    def is_participant(self, user_id) -> bool:
        return user_id in self.player_ids

    def opponent_of(self, user_id: int) -> int:
        if user_id not in self.player_ids:
            raise NotParticipant(f'Player {user_id} is not part of {self.match_id}')
        p1, p2 = self.player_ids
        return p2 if user_id == p1 else p1

    def resolve_action(self, actor_id: int, action: BattleAction) -> ActionResult:
        if self.finished:
            raise MatchFinished(f'Match {self.match_id} has already finished')
        target_id = self.opponent_of(actor_id)
        if action.action_id is not None:
            key = (actor_id, action.action_id)
            if key in self._seen_action_ids:
                raise DuplicateAction(f'Action {action.action_id} was already applied')
            self._seen_action_ids.add(key)

        damage = clamp_damage(action.action_type, action.damage, self.damage_caps)
        self.health[target_id] = max(0, self.health[target_id] - damage)
        entry = {
            'round': self.turn,
            'actorId': actor_id,
            'targetId': target_id,
            'action': action.action_type.value,
            'skillId': action.skill_id,
            'damage': damage,
            'isCritical': action.is_critical,
            'isDodge': action.is_dodge,
            'remainingHp': self.health[target_id],
        }
        self.log.append(entry)
        self.turn += 1

        if self.health[target_id] == 0:
            self._finish(winner_id=actor_id, loser_id=target_id, reason=EndReason.KO)
        return ActionResult(entry=entry, health=dict(self.health), next_turn=self.turn, finished=self.finished)

    def forfeit(self, user_id: int, reason: EndReason = EndReason.FORFEIT) -> bool:
        """End the session with ``user_id`` losing. Returns False if already over."""
        winner_id = self.opponent_of(user_id)
        if self.finished:
            return False
        self._finish(winner_id=winner_id, loser_id=user_id, reason=reason)
        return True

    def compute_rewards(self, winner_id: int, loser_id: int) -> Rewards:
        return self.reward_policy(winner_id, loser_id)

    def pet_id_of(self, user_id: int) -> Optional[int]:
        """The pet ``user_id`` brought into this match."""
        summary = self.summaries.get(user_id)
        return summary['petId'] if summary else None

    def _finish(self, winner_id: int, loser_id: int, reason: EndReason) -> None:
        self.state = SessionState.FINISHED
        self.winner_id = winner_id
        self.loser_id = loser_id
        self.end_reason = reason

    # ---- outbound payloads ----

    def match_found_payload(self, for_user_id: int) -> dict:
        return {'matchId': self.match_id, 'opponent': self.summaries[self.opponent_of(for_user_id)]}

    def start_payload(self) -> dict:
        p1, p2 = self.player_ids
        return {
            'matchId': self.match_id,
            'player1': self.summaries[p1],
            'player2': self.summaries[p2],
            'hp': {str(pid): hp for pid, hp in self.health.items()},
            'turn': self.turn,
        }

    def action_payload(self, result: ActionResult) -> dict:
        payload = dict(result.entry)
        payload['matchId'] = self.match_id
        payload['nextTurn'] = result.next_turn
        payload['hp'] = {str(pid): hp for pid, hp in result.health.items()}
        return payload

    def end_payload(self, rewards: Rewards) -> dict:
        return {
            'matchId': self.match_id,
            'winnerId': self.winner_id,
            'loserId': self.loser_id,
            'goldEarned': rewards.gold,
            'expEarned': rewards.exp,
            'reason': self.end_reason.value if self.end_reason else None,
            'battleLog': list(self.log),
        }
