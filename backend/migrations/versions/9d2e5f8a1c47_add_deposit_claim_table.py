"""add deposit_claim table

Revision ID: 9d2e5f8a1c47
Revises: 4c7a9e21b0d3
Create Date: 2026-10-18 14:10:00.000000

"""
import json
from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9d2e5f8a1c47'
down_revision = '4c7a9e21b0d3'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'deposit_claim' in set(insp.get_table_names()):
        return

    op.create_table(
        'deposit_claim',
        sa.Column('deposit_ref', sa.String(length=128), nullable=False),
        sa.Column('match_id', sa.String(length=64), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('deposit_ref'),
    )
    with op.batch_alter_table('deposit_claim') as batch_op:
        batch_op.create_index(batch_op.f('ix_deposit_claim_match_id'), ['match_id'], unique=False)

    # Backfill from the match documents so deposits already in play stay spent
    if 'match' in set(insp.get_table_names()):
        rows = bind.execute(sa.text('SELECT id, wager, document FROM match')).fetchall()
        claims = sa.table(
            'deposit_claim',
            sa.column('deposit_ref', sa.String),
            sa.column('match_id', sa.String),
            sa.column('claimed_at', sa.DateTime(timezone=True)),
        )
        seen = set()
        now = datetime.now(timezone.utc)
        for match_id, wager, document in rows:
            if not wager:
                continue
            data = json.loads(document)
            deposits = (data.get('escrow') or {}).get('deposits') or {}
            for slot in (data.get('player_a'), data.get('player_b')):
                ref = slot and slot.get('deposit_ref')
                if ref and slot.get('identity') in deposits and ref not in seen:
                    seen.add(ref)
                    op.bulk_insert(claims, [{'deposit_ref': ref, 'match_id': match_id, 'claimed_at': now}])


def downgrade():
    with op.batch_alter_table('deposit_claim') as batch_op:
        batch_op.drop_index(batch_op.f('ix_deposit_claim_match_id'))
    op.drop_table('deposit_claim')
