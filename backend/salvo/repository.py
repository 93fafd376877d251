"""Match storage behind one narrow contract.

``MemoryMatchRepository`` and ``SqlMatchRepository`` are interchangeable;
``ResilientMatchRepository`` picks between them and is what the engine sees.
Every read returns an independent copy, and ``update`` applies a mutation
callable to a copy and writes it back only if the stored ``version`` is still
the one that was read.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Set

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from salvo import db
from salvo.errors import DuplicateId, NotFound, StorageConflict, ValidationError
from salvo.match import PHASES, Match, MatchSummary, WAITING, utcnow
from salvo.models import DepositClaim, MatchRecord

Mutation = Callable[[Match], None]


class MatchRepository(ABC):
    name = 'abstract'

    @abstractmethod
    def create(self, match: Match) -> Match:
        ...

    @abstractmethod
    def get_by_id(self, match_id: str) -> Match:
        ...

    @abstractmethod
    def update(self, match_id: str, mutation: Mutation) -> Match:
        ...

    @abstractmethod
    def list_public_waiting(self, limit: int) -> List[MatchSummary]:
        ...

    @abstractmethod
    def list_by_participant(self, identity: str) -> List[Match]:
        ...

    @abstractmethod
    def delete_old(self, older_than: datetime, phases: Iterable[str]) -> int:
        ...

    @abstractmethod
    def count_by_phase(self) -> Dict[str, int]:
        ...


def _apply(match: Match, mutation: Mutation) -> Match:
    expected = match.version
    mutation(match)
    match.version = expected + 1
    match.updated_at = utcnow()
    return match


def _deposit_reused(ref):
    return ValidationError(f'Deposit {ref} already funds another match', code='deposit_reused')


class MemoryMatchRepository(MatchRepository):
    """Volatile store: serialised records in a dict plus a participant index.

    The index is written under the same lock as the primary record and can
    always be rebuilt from the records.

    Claimed deposit references are kept apart from the records and survive
    deletion, so a ledger deposit funds at most one match.
    """
    name = 'memory'

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._by_participant: Dict[str, Set[str]] = defaultdict(set)
        self._claims: Dict[str, str] = {}
        self._lock = threading.RLock()

    def _index(self, match):
        for identity in match.participants:
            self._by_participant[identity].add(match.id)

    def _claim_deposits(self, match):
        # Caller holds the lock; checks every ref before claiming any
        for ref in match.deposit_refs:
            owner = self._claims.get(ref)
            if owner is not None and owner != match.id:
                raise _deposit_reused(ref)
        for ref in match.deposit_refs:
            self._claims[ref] = match.id

    def rebuild_index(self):
        with self._lock:
            self._by_participant = defaultdict(set)
            for data in self._records.values():
                self._index(Match.from_dict(data))

    def create(self, match):
        with self._lock:
            if match.id in self._records:
                raise DuplicateId(f'Match {match.id} already exists')
            self._claim_deposits(match)
            self._records[match.id] = match.to_dict(include_secret=True)
            self._index(match)
        return match.copy()

    def get_by_id(self, match_id):
        with self._lock:
            data = self._records.get(match_id)
        if data is None:
            raise NotFound(f'Match {match_id} not found')
        return Match.from_dict(data)

    def update(self, match_id, mutation):
        current = self.get_by_id(match_id)
        expected = current.version
        updated = _apply(current, mutation)
        with self._lock:
            stored = self._records.get(match_id)
            if stored is None:
                raise NotFound(f'Match {match_id} not found')
            if stored['version'] != expected:
                raise StorageConflict(f'Match {match_id} was modified concurrently')
            self._claim_deposits(updated)
            self._records[match_id] = updated.to_dict(include_secret=True)
            self._index(updated)
        return updated.copy()

    def list_public_waiting(self, limit):
        with self._lock:
            matches = [Match.from_dict(d) for d in self._records.values()]
        waiting = [m for m in matches if m.is_public and m.phase == WAITING]
        waiting.sort(key=lambda m: m.created_at, reverse=True)
        return [MatchSummary.of(m) for m in waiting[:limit]]

    def list_by_participant(self, identity):
        with self._lock:
            ids = list(self._by_participant.get(identity, ()))
            matches = [Match.from_dict(self._records[i]) for i in ids if i in self._records]
        matches.sort(key=lambda m: m.updated_at, reverse=True)
        return matches

    def delete_old(self, older_than, phases):
        phases = set(phases)
        with self._lock:
            doomed = [
                match_id for match_id, data in self._records.items()
                if data['phase'] in phases and Match.from_dict(data).created_at < older_than
            ]
            for match_id in doomed:
                del self._records[match_id]
            if doomed:
                self.rebuild_index()
        return len(doomed)

    def count_by_phase(self):
        counts = {phase: 0 for phase in PHASES}
        with self._lock:
            for data in self._records.values():
                counts[data['phase']] += 1
            counts['public_waiting'] = sum(
                1 for data in self._records.values() if data['is_public'] and data['phase'] == WAITING)
        return counts


class SqlMatchRepository(MatchRepository):
    """Durable store on the Flask-SQLAlchemy session. Needs an app context.

    Deposit claims are rows in ``deposit_claim`` keyed by the ledger reference
    and committed in the same transaction as the match row.
    """
    name = 'sql'

    def _claim_deposits(self, match):
        for ref in match.deposit_refs:
            claim = db.session.get(DepositClaim, ref)
            if claim is None:
                db.session.add(DepositClaim(deposit_ref=ref, match_id=match.id, claimed_at=utcnow()))
            elif claim.match_id != match.id:
                raise _deposit_reused(ref)

    def _commit_claimed(self, match):
        try:
            self._claim_deposits(match)
            db.session.commit()
        except ValidationError:
            db.session.rollback()
            raise
        except IntegrityError:
            # Lost a race on the primary key of either table
            db.session.rollback()
            if db.session.get(MatchRecord, match.id) is not None and match.version == 0:
                raise DuplicateId(f'Match {match.id} already exists') from None
            raise _deposit_reused(', '.join(match.deposit_refs)) from None

    def create(self, match):
        if db.session.get(MatchRecord, match.id) is not None:
            raise DuplicateId(f'Match {match.id} already exists')
        db.session.add(MatchRecord(id=match.id, **MatchRecord.columns_for(match)))
        self._commit_claimed(match)
        return match.copy()

    def get_by_id(self, match_id):
        record = db.session.get(MatchRecord, match_id)
        if record is None:
            raise NotFound(f'Match {match_id} not found')
        # Detach so a later read sees committed state, not the identity map
        document = record.to_document()
        db.session.expire(record)
        return Match.from_dict(document)

    def update(self, match_id, mutation):
        current = self.get_by_id(match_id)
        expected = current.version
        updated = _apply(current, mutation)
        count = MatchRecord.query.filter_by(id=match_id, version=expected).update(
            MatchRecord.columns_for(updated), synchronize_session=False)
        if count == 0:
            db.session.rollback()
            if db.session.get(MatchRecord, match_id) is None:
                raise NotFound(f'Match {match_id} not found')
            raise StorageConflict(f'Match {match_id} was modified concurrently')
        self._commit_claimed(updated)
        return updated.copy()

    def list_public_waiting(self, limit):
        records = (MatchRecord.query
                   .filter_by(is_public=True, phase=WAITING)
                   .order_by(MatchRecord.created_at.desc())
                   .limit(limit)
                   .all())
        return [MatchSummary.of(Match.from_dict(r.to_document())) for r in records]

    def list_by_participant(self, identity):
        records = (MatchRecord.query
                   .filter(db.or_(MatchRecord.player_a == identity, MatchRecord.player_b == identity))
                   .order_by(MatchRecord.updated_at.desc())
                   .all())
        return [Match.from_dict(r.to_document()) for r in records]

    def delete_old(self, older_than, phases):
        count = (MatchRecord.query
                 .filter(MatchRecord.created_at < older_than, MatchRecord.phase.in_(list(phases)))
                 .delete(synchronize_session=False))
        db.session.commit()
        return count

    def count_by_phase(self):
        counts = {phase: 0 for phase in PHASES}
        rows = db.session.query(MatchRecord.phase, db.func.count(MatchRecord.id)).group_by(MatchRecord.phase).all()
        for phase, count in rows:
            counts[phase] = count
        counts['public_waiting'] = MatchRecord.query.filter_by(is_public=True, phase=WAITING).count()
        return counts


class ResilientMatchRepository(MatchRepository):
    """Delegates to a primary store and degrades to a volatile one.

    The first ``OperationalError`` from the primary (database unreachable)
    switches every later call to the fallback for the rest of the process.
    The switch is logged once.
    """

    def __init__(self, primary: MatchRepository, fallback: MatchRepository = None):
        self._primary = primary
        self._fallback = fallback or MemoryMatchRepository()
        self._degraded = False
        self._switch_lock = threading.Lock()

    @property
    def name(self):
        return self.active.name

    @property
    def active(self):
        return self._fallback if self._degraded else self._primary

    @property
    def degraded(self):
        return self._degraded

    def degrade(self, reason):
        with self._switch_lock:
            if self._degraded:
                return
            self._degraded = True
        current_app.logger.warning(f'[storage-fallback] primary={self._primary.name} unavailable ({reason}); using in-memory storage')

    def _call(self, method, *args):
        if not self._degraded:
            try:
                return getattr(self._primary, method)(*args)
            except OperationalError as exc:
                try:
                    db.session.rollback()
                except OperationalError:
                    pass
                self.degrade(exc.orig if exc.orig is not None else exc)
        return getattr(self._fallback, method)(*args)

    def create(self, match):
        return self._call('create', match)

    def get_by_id(self, match_id):
        return self._call('get_by_id', match_id)

    def update(self, match_id, mutation):
        return self._call('update', match_id, mutation)

    def list_public_waiting(self, limit):
        return self._call('list_public_waiting', limit)

    def list_by_participant(self, identity):
        return self._call('list_by_participant', identity)

    def delete_old(self, older_than, phases):
        return self._call('delete_old', older_than, phases)

    def count_by_phase(self):
        return self._call('count_by_phase')


def build_repository(app):
    """Pick the storage backend once at start."""
    backend = app.config.get('STORAGE_BACKEND', 'sql')
    if backend == 'memory':
        app.logger.info('[storage] backend=memory')
        return ResilientMatchRepository(MemoryMatchRepository(), MemoryMatchRepository())

    repository = ResilientMatchRepository(SqlMatchRepository())
    with app.app_context():
        try:
            db.create_all()
            app.logger.info(f"[storage] backend=sql uri={_redact(app.config['SQLALCHEMY_DATABASE_URI'])}")
        except OperationalError as exc:
            repository.degrade(exc.orig if exc.orig is not None else exc)
    return repository


def _redact(uri):
    if '@' not in uri or '//' not in uri:
        return uri
    scheme, rest = uri.split('//', 1)
    return f"{scheme}//***@{rest.split('@', 1)[1]}"
