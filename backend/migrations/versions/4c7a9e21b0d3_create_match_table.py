"""create match table

Revision ID: 4c7a9e21b0d3
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7a9e21b0d3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # db.create_all() at startup may already have created it
    if 'match' in set(insp.get_table_names()):
        return

    op.create_table(
        'match',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('phase', sa.String(length=16), nullable=False),
        sa.Column('fleet_mode', sa.String(length=16), nullable=False),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('player_a', sa.String(length=128), nullable=False),
        sa.Column('player_b', sa.String(length=128), nullable=True),
        sa.Column('wager', sa.BigInteger(), nullable=False),
        sa.Column('escrow_status', sa.String(length=16), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('document', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('match') as batch_op:
        batch_op.create_index(batch_op.f('ix_match_phase'), ['phase'], unique=False)
        batch_op.create_index(batch_op.f('ix_match_is_public'), ['is_public'], unique=False)
        batch_op.create_index(batch_op.f('ix_match_player_a'), ['player_a'], unique=False)
        batch_op.create_index(batch_op.f('ix_match_player_b'), ['player_b'], unique=False)
        batch_op.create_index(batch_op.f('ix_match_created_at'), ['created_at'], unique=False)


def downgrade():
    with op.batch_alter_table('match') as batch_op:
        batch_op.drop_index(batch_op.f('ix_match_created_at'))
        batch_op.drop_index(batch_op.f('ix_match_player_b'))
        batch_op.drop_index(batch_op.f('ix_match_player_a'))
        batch_op.drop_index(batch_op.f('ix_match_is_public'))
        batch_op.drop_index(batch_op.f('ix_match_phase'))
    op.drop_table('match')
