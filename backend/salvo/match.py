"""Match aggregate and its (de)serialisation.

Both repositories store matches as the dict produced by ``Match.to_dict`` so
a record loaded from either backend is an independent copy.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from salvo.board import Board


WAITING = 'waiting'
SETUP = 'setup'
PLACEMENT = 'placement'
PLAYING = 'playing'
REVEAL = 'reveal'
FINISHED = 'finished'
ABANDONED = 'abandoned'

PHASES = (WAITING, SETUP, PLACEMENT, PLAYING, REVEAL, FINISHED, ABANDONED)
TERMINAL_PHASES = (FINISHED, ABANDONED)
ABANDONABLE_PHASES = (WAITING, SETUP, PLACEMENT, PLAYING)

# Escrow status
ESCROW_NONE = 'none'
ESCROW_PENDING = 'pending'
ESCROW_RELEASED = 'released'
ESCROW_REFUNDED = 'refunded'
SETTLED_STATUSES = (ESCROW_RELEASED, ESCROW_REFUNDED)

# Terminal outcomes
OUTCOME_WIN = 'win'
OUTCOME_FORFEIT = 'forfeit'
OUTCOME_ABANDON = 'abandon'


def utcnow():
    return datetime.now(timezone.utc)


def _ts(value):
    return value.isoformat() if value else None


def _parse_ts(value):
    return datetime.fromisoformat(value) if value else None


@dataclass
class PlayerSlot:
    identity: str
    board: Optional[Board] = None
    deposit_ref: Optional[str] = None

    def to_dict(self, include_pieces=True):
        return {
            'identity': self.identity,
            'board': self.board.to_dict(include_pieces) if self.board else None,
            'deposit_ref': self.deposit_ref,
        }

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        board = Board.from_dict(data['board']) if data.get('board') else None
        return cls(data['identity'], board, data.get('deposit_ref'))


@dataclass
class Transfer:
    """One planned escrow outflow and how far it got on the ledger."""

    kind: str
    recipient: str
    amount: int
    reference: str
    handle: Optional[str] = None
    status: str = 'planned'  # planned | submitted | confirmed | failed | recorded
    attempt: int = 0

    def to_dict(self):
        return {
            'kind': self.kind,
            'recipient': self.recipient,
            'amount': self.amount,
            'reference': self.reference,
            'handle': self.handle,
            'status': self.status,
            'attempt': self.attempt,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


@dataclass
class Escrow:
    account: str
    deposits: Dict[str, int] = field(default_factory=dict)
    status: str = ESCROW_NONE
    payout_type: Optional[str] = None
    recipient: Optional[str] = None
    transfers: List[Transfer] = field(default_factory=list)
    authority_hash: Optional[str] = None
    # Who drives the outflow once started: 'server' (settle) or 'client' (recorded payout)
    mode: Optional[str] = None
    settled_at: Optional[datetime] = None

    @property
    def pool(self):
        return sum(self.deposits.values())

    def to_dict(self, include_secret=False):
        data = {
            'account': self.account,
            'deposits': dict(self.deposits),
            'pool': self.pool,
            'status': self.status,
            'payout_type': self.payout_type,
            'recipient': self.recipient,
            'transfers': [t.to_dict() for t in self.transfers],
            'mode': self.mode,
            'settled_at': _ts(self.settled_at),
        }
        if include_secret:
            data['authority_hash'] = self.authority_hash
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            account=data['account'],
            deposits={k: int(v) for k, v in (data.get('deposits') or {}).items()},
            status=data.get('status', ESCROW_NONE),
            payout_type=data.get('payout_type'),
            recipient=data.get('recipient'),
            transfers=[Transfer.from_dict(t) for t in data.get('transfers') or []],
            authority_hash=data.get('authority_hash'),
            mode=data.get('mode'),
            settled_at=_parse_ts(data.get('settled_at')),
        )


@dataclass
class MoveLogEntry:
    actor: str
    row: int
    col: int
    outcome: str
    timestamp: datetime

    def to_dict(self):
        return {
            'actor': self.actor,
            'coordinate': [self.row, self.col],
            'outcome': self.outcome,
            'timestamp': _ts(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data):
        row, col = data['coordinate']
        return cls(data['actor'], row, col, data['outcome'], _parse_ts(data['timestamp']))


@dataclass
class Match:
    id: str
    fleet_mode: str
    wager: int
    player_a: PlayerSlot
    escrow: Escrow
    phase: str = WAITING
    player_b: Optional[PlayerSlot] = None
    current_turn: Optional[str] = None
    winner: Optional[str] = None
    outcome: Optional[str] = None
    abandoned_by: Optional[str] = None
    abandon_reason: Optional[str] = None
    is_public: bool = False
    move_log: List[MoveLogEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    version: int = 0

    @property
    def participants(self):
        return [slot.identity for slot in (self.player_a, self.player_b) if slot is not None]

    @property
    def deposit_refs(self):
        """Ledger deposits this match counts as escrow stakes."""
        if self.wager == 0:
            return []
        return [
            slot.deposit_ref for slot in (self.player_a, self.player_b)
            if slot is not None and slot.deposit_ref and slot.identity in self.escrow.deposits
        ]

    @property
    def is_terminal(self):
        return self.phase in TERMINAL_PHASES

    def slot_for(self, identity):
        for slot in (self.player_a, self.player_b):
            if slot is not None and slot.identity == identity:
                return slot
        return None

    def opponent_of(self, identity):
        if self.player_a.identity == identity:
            return self.player_b
        if self.player_b is not None and self.player_b.identity == identity:
            return self.player_a
        return None

    def to_dict(self, viewer=None, include_secret=False):
        """Serialise the match.

        With ``viewer`` set, piece positions of the other player stay hidden
        while the match is live.
        """
        def _slot(slot):
            if slot is None:
                return None
            hide = viewer is not None and slot.identity != viewer and not self.is_terminal
            return slot.to_dict(include_pieces=not hide)

        return {
            'id': self.id,
            'fleet_mode': self.fleet_mode,
            'wager': self.wager,
            'phase': self.phase,
            'is_public': self.is_public,
            'player_a': _slot(self.player_a),
            'player_b': _slot(self.player_b),
            'current_turn': self.current_turn,
            'winner': self.winner,
            'outcome': self.outcome,
            'abandoned_by': self.abandoned_by,
            'abandon_reason': self.abandon_reason,
            'escrow': self.escrow.to_dict(include_secret=include_secret),
            'move_log': [m.to_dict() for m in self.move_log],
            'total_moves': len(self.move_log),
            'created_at': _ts(self.created_at),
            'updated_at': _ts(self.updated_at),
            'started_at': _ts(self.started_at),
            'finished_at': _ts(self.finished_at),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            fleet_mode=data['fleet_mode'],
            wager=int(data['wager']),
            player_a=PlayerSlot.from_dict(data['player_a']),
            escrow=Escrow.from_dict(data['escrow']),
            phase=data['phase'],
            player_b=PlayerSlot.from_dict(data.get('player_b')),
            current_turn=data.get('current_turn'),
            winner=data.get('winner'),
            outcome=data.get('outcome'),
            abandoned_by=data.get('abandoned_by'),
            abandon_reason=data.get('abandon_reason'),
            is_public=bool(data.get('is_public')),
            move_log=[MoveLogEntry.from_dict(m) for m in data.get('move_log') or []],
            created_at=_parse_ts(data['created_at']),
            updated_at=_parse_ts(data['updated_at']),
            started_at=_parse_ts(data.get('started_at')),
            finished_at=_parse_ts(data.get('finished_at')),
            version=int(data.get('version', 0)),
        )

    def copy(self):
        return Match.from_dict(self.to_dict(include_secret=True))


@dataclass
class MatchSummary:
    id: str
    player_a: str
    wager: int
    fleet_mode: str
    phase: str
    created_at: datetime

    @classmethod
    def of(cls, match):
        return cls(match.id, match.player_a.identity, match.wager, match.fleet_mode, match.phase, match.created_at)

    def to_dict(self):
        return {
            'id': self.id,
            'playerA': self.player_a,
            'wager': self.wager,
            'gameMode': self.fleet_mode,
            'status': self.phase,
            'createdAt': _ts(self.created_at),
        }
