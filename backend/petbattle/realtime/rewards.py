from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class Rewards:
    gold: int
    exp: int


RewardPolicy = Callable[[int, int], Rewards]


def flat_rewards(gold: int = 100, exp: int = 50) -> RewardPolicy:
    """Same payout for every win, regardless of who fought whom."""
    def policy(winner_id: int, loser_id: int) -> Rewards:
        return Rewards(gold=gold, exp=exp)
    return policy
