from datetime import datetime

from flask_login import UserMixin

from petbattle import bcrypt, db


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    gold = db.Column(db.Integer, default=0, nullable=False)
    pets = db.relationship('Pet', back_populates='owner', lazy='dynamic')
    stats = db.relationship('PlayerStats', back_populates='user', uselist=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'gold': self.gold,
        }


class Pet(db.Model):
    __tablename__ = 'pet'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)
    exp = db.Column(db.Integer, default=0, nullable=False)
    max_exp = db.Column(db.Integer, default=100, nullable=False)
    hp = db.Column(db.Integer, default=100, nullable=False)
    max_hp = db.Column(db.Integer, default=100, nullable=False)
    owner = db.relationship('User', back_populates='pets')

    def snapshot(self):
        """Stats the realtime server trusts over client-declared values."""
        return {
            'userId': self.user_id,
            'petId': self.id,
            'petName': self.name,
            'level': self.level,
            'hp': self.hp,
            'maxHp': self.max_hp,
        }

    def to_dict(self):
        data = self.snapshot()
        data.update({'exp': self.exp, 'maxExp': self.max_exp})
        return data


class PlayerStats(db.Model):
    __tablename__ = 'player_stats'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    total_battles = db.Column(db.Integer, default=0, nullable=False)
    total_wins = db.Column(db.Integer, default=0, nullable=False)
    current_win_streak = db.Column(db.Integer, default=0, nullable=False)
    max_win_streak = db.Column(db.Integer, default=0, nullable=False)
    total_gold_earned = db.Column(db.Integer, default=0, nullable=False)
    total_exp_earned = db.Column(db.Integer, default=0, nullable=False)
    user = db.relationship('User', back_populates='stats')

    def to_dict(self):
        return {
            'userId': self.user_id,
            'totalBattles': self.total_battles,
            'totalWins': self.total_wins,
            'currentWinStreak': self.current_win_streak,
            'maxWinStreak': self.max_win_streak,
            'totalGoldEarned': self.total_gold_earned,
            'totalExpEarned': self.total_exp_earned,
        }


class BattleRecord(db.Model):
    __tablename__ = 'battle_record'
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.String(64), nullable=True, index=True)
    winner_id = db.Column(db.Integer, nullable=False, index=True)
    loser_id = db.Column(db.Integer, nullable=False, index=True)
    gold_earned = db.Column(db.Integer, default=0, nullable=False)
    exp_earned = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'matchId': self.match_id,
            'winnerId': self.winner_id,
            'loserId': self.loser_id,
            'goldEarned': self.gold_earned,
            'expEarned': self.exp_earned,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
