from typing import Optional

from petbattle import db
from petbattle.models import BattleRecord, Pet, PlayerStats, User


def _stats_for(user_id: int) -> PlayerStats:
    stats = PlayerStats.query.filter_by(user_id=user_id).first()
    if stats is None:
        stats = PlayerStats(
            user_id=user_id,
            total_battles=0,
            total_wins=0,
            current_win_streak=0,
            max_win_streak=0,
            total_gold_earned=0,
            total_exp_earned=0,
        )
        db.session.add(stats)
    return stats


def grant_pet_exp(pet: Pet, exp: int) -> None:
    pet.exp = (pet.exp or 0) + exp
    while pet.max_exp and pet.exp >= pet.max_exp:
        pet.exp -= pet.max_exp
        pet.level += 1


class SqlPetStore:
    """Pet/stat store backed by Flask-SQLAlchemy.

    Calls may arrive from Socket.IO handlers or background tasks, so each one
    pushes its own app context.
    """

    def __init__(self, app):
        self.app = app

    def load_pet_snapshot(self, pet_id: int) -> Optional[dict]:
        with self.app.app_context():
            pet = db.session.get(Pet, pet_id)
            return pet.snapshot() if pet else None

    def save_battle_result(self, winner_id: int, loser_id: int, gold_earned: int, exp_earned: int,
                           match_id: str = None, winner_pet_id: int = None) -> dict:
        with self.app.app_context():
            try:
                winner = db.session.get(User, winner_id)
                if winner is not None:
                    winner.gold = (winner.gold or 0) + gold_earned
                    pet = self._winning_pet(winner_id, winner_pet_id)
                    if pet is not None:
                        grant_pet_exp(pet, exp_earned)

                if db.session.get(User, loser_id) is not None:
                    loser_stats = _stats_for(loser_id)
                    loser_stats.total_battles += 1
                    loser_stats.current_win_streak = 0
                if winner is not None:
                    stats = _stats_for(winner_id)
                    stats.total_battles += 1
                    stats.total_wins += 1
                    stats.current_win_streak += 1
                    stats.max_win_streak = max(stats.max_win_streak, stats.current_win_streak)
                    stats.total_gold_earned += gold_earned
                    stats.total_exp_earned += exp_earned

                record = BattleRecord(
                    match_id=match_id,
                    winner_id=winner_id,
                    loser_id=loser_id,
                    gold_earned=gold_earned,
                    exp_earned=exp_earned,
                )
                db.session.add(record)
                db.session.commit()
                self.app.logger.info(
                    f"[battle-saved] match={match_id} winner={winner_id} loser={loser_id} gold={gold_earned} exp={exp_earned}"
                )
                return record.to_dict()
            except Exception:
                db.session.rollback()
                raise

    def _winning_pet(self, winner_id: int, pet_id: Optional[int]) -> Optional[Pet]:
        if pet_id is not None:
            pet = db.session.get(Pet, pet_id)
            if pet is not None and pet.user_id == winner_id:
                return pet
            self.app.logger.warning(f"[battle-saved] pet={pet_id} not owned by winner={winner_id}, using first pet")
        return Pet.query.filter_by(user_id=winner_id).order_by(Pet.id).first()
