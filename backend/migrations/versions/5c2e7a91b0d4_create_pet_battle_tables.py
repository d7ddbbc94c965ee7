"""create user, pet, player_stats and battle_record tables

Revision ID: 5c2e7a91b0d4
Revises:
Create Date: 2026-10-16 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e7a91b0d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.Column('gold', sa.Integer(), nullable=False, server_default='0'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'pet' not in existing_tables:
        op.create_table(
            'pet',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('name', sa.String(length=64), nullable=False),
            sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('exp', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('max_exp', sa.Integer(), nullable=False, server_default='100'),
            sa.Column('hp', sa.Integer(), nullable=False, server_default='100'),
            sa.Column('max_hp', sa.Integer(), nullable=False, server_default='100'),
        )
        op.create_index('ix_pet_user_id', 'pet', ['user_id'])

    if 'player_stats' not in existing_tables:
        op.create_table(
            'player_stats',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False, unique=True),
            sa.Column('total_battles', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_wins', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('current_win_streak', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('max_win_streak', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_gold_earned', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_exp_earned', sa.Integer(), nullable=False, server_default='0'),
        )

    if 'battle_record' not in existing_tables:
        op.create_table(
            'battle_record',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('match_id', sa.String(length=64), nullable=True),
            sa.Column('winner_id', sa.Integer(), nullable=False),
            sa.Column('loser_id', sa.Integer(), nullable=False),
            sa.Column('gold_earned', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('exp_earned', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_battle_record_match_id', 'battle_record', ['match_id'])
        op.create_index('ix_battle_record_winner_id', 'battle_record', ['winner_id'])
        op.create_index('ix_battle_record_loser_id', 'battle_record', ['loser_id'])


def downgrade():
    op.drop_table('battle_record')
    op.drop_table('player_stats')
    op.drop_index('ix_pet_user_id', table_name='pet')
    op.drop_table('pet')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
