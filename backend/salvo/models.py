import json

from salvo import db


class MatchRecord(db.Model):
    """Durable row for one match.

    The full aggregate lives in ``document`` (JSON). The remaining columns are
    copies used for lookups and the compare-and-swap on ``version``.
    """
    __tablename__ = 'match'
    id = db.Column(db.String(64), primary_key=True)
    phase = db.Column(db.String(16), nullable=False, index=True)
    fleet_mode = db.Column(db.String(16), nullable=False)
    is_public = db.Column(db.Boolean, default=False, nullable=False, index=True)
    player_a = db.Column(db.String(128), nullable=False, index=True)
    player_b = db.Column(db.String(128), nullable=True, index=True)
    wager = db.Column(db.BigInteger, nullable=False, default=0)
    escrow_status = db.Column(db.String(16), nullable=False, default='none')
    version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    document = db.Column(db.Text, nullable=False)

    @staticmethod
    def columns_for(match):
        return {
            'phase': match.phase,
            'fleet_mode': match.fleet_mode,
            'is_public': match.is_public,
            'player_a': match.player_a.identity,
            'player_b': match.player_b.identity if match.player_b else None,
            'wager': match.wager,
            'escrow_status': match.escrow.status,
            'version': match.version,
            'created_at': match.created_at,
            'updated_at': match.updated_at,
            'document': json.dumps(match.to_dict(include_secret=True)),
        }

    def to_document(self):
        return json.loads(self.document)


class DepositClaim(db.Model):
    """A ledger deposit already counted as some match's escrow stake.

    Rows outlive the match they belong to, so a deposit is spent at most once.
    """
    __tablename__ = 'deposit_claim'
    deposit_ref = db.Column(db.String(128), primary_key=True)
    match_id = db.Column(db.String(64), nullable=False, index=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=False)
