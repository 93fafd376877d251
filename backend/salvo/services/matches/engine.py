"""Match state machine.

waiting -> playing (join with board) or placement (join without board)
placement -> playing (place_pieces)
playing -> playing (attack, turn flips) | finished (last piece cell hit)
waiting/setup/placement/playing -> abandoned (abandon)
playing -> abandoned with the opponent as winner (forfeit)

Every transition runs under the per-match lock as one repository update: the
guards and mutations apply to a private copy, so a rejected action leaves the
stored record untouched.
"""

import uuid
from collections import namedtuple

from flask import current_app

from salvo import board as boards
from salvo.errors import PhaseViolation, TurnViolation, ValidationError
from salvo.fleet import get_fleet
from salvo.match import (
    ABANDONABLE_PHASES,
    ABANDONED,
    FINISHED,
    OUTCOME_ABANDON,
    OUTCOME_FORFEIT,
    OUTCOME_WIN,
    PLACEMENT,
    PLAYING,
    WAITING,
    Escrow,
    Match,
    MoveLogEntry,
    PlayerSlot,
    utcnow,
)


AttackOutcome = namedtuple('AttackOutcome', ['outcome', 'match_ended', 'match'])
CreatedMatch = namedtuple('CreatedMatch', ['match', 'authority'])

MAX_ID_LENGTH = 64
# Sent in place of a piece list to have the server lay out the fleet
RANDOM_PIECES = 'random'


def _require_identity(value, field):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} is required', code='missing_identity')
    return value.strip()


class MatchService:
    def __init__(self, repository, settlement, locks, enforce_adjacency=True, public_limit=20):
        self.repository = repository
        self.settlement = settlement
        self.locks = locks
        self.enforce_adjacency = enforce_adjacency
        self.public_limit = public_limit

    # ---- reads (no lock; may be slightly stale) ----

    def get_match(self, match_id):
        return self.repository.get_by_id(match_id)

    def list_public_waiting(self, limit=None):
        return self.repository.list_public_waiting(limit or self.public_limit)

    def list_by_participant(self, identity):
        return self.repository.list_by_participant(identity)

    def stats(self):
        counts = self.repository.count_by_phase()
        return {
            'total': sum(v for k, v in counts.items() if k != 'public_waiting'),
            'by_phase': {k: v for k, v in counts.items() if k != 'public_waiting'},
            'public_waiting': counts.get('public_waiting', 0),
            'storage': self.repository.name,
        }

    # ---- transitions ----

    def create_match(self, fleet_mode, wager, creator, creator_pieces, creator_deposit_ref,
                     is_public=False, match_id=None, escrow_account=None):
        """Open a match in ``waiting`` and return it with the escrow authority token.

        The token is handed out once; only its hash is stored.
        """
        fleet = get_fleet(fleet_mode)
        creator = _require_identity(creator, 'creator')
        if isinstance(wager, bool) or not isinstance(wager, int) or wager < 0:
            raise ValidationError('Wager must be a non-negative integer amount', code='bad_wager')
        if match_id is None:
            match_id = uuid.uuid4().hex
        elif not isinstance(match_id, str) or not match_id.strip() or len(match_id) > MAX_ID_LENGTH:
            raise ValidationError(f'Match id must be a non-empty string of at most {MAX_ID_LENGTH} characters', code='bad_id')
        if not escrow_account:
            raise ValidationError('An escrow account is required', code='missing_escrow')

        board = self._build_board(fleet, creator_pieces)
        match = Match(
            id=match_id,
            fleet_mode=fleet.mode,
            wager=wager,
            player_a=PlayerSlot(creator, board, creator_deposit_ref),
            escrow=Escrow(account=escrow_account),
            phase=WAITING,
            current_turn=creator,
            is_public=bool(is_public),
        )
        self.settlement.verify_deposit(match, creator, creator_deposit_ref)
        authority = self.settlement.issue_authority(match)

        with self.locks.hold(match_id):
            match = self.repository.create(match)
        current_app.logger.info(f'[create] match={match.id} mode={fleet.mode} creator={creator} wager={wager} public={match.is_public}')
        return CreatedMatch(match, authority)

    def join_match(self, match_id, joiner, joiner_pieces, joiner_deposit_ref):
        joiner = _require_identity(joiner, 'joiner')

        def mutate(match):
            if match.phase != WAITING:
                raise PhaseViolation(f'Match {match.id} is {match.phase}, not waiting for players')
            if match.player_b is not None:
                raise PhaseViolation(f'Match {match.id} is already full')
            if joiner == match.player_a.identity:
                raise ValidationError('Cannot join your own match', code='self_join')
            fleet = get_fleet(match.fleet_mode)
            board = None
            if joiner_pieces is not None:
                board = self._build_board(fleet, joiner_pieces)
            match.player_b = PlayerSlot(joiner, board, joiner_deposit_ref)
            self.settlement.verify_deposit(match, joiner, joiner_deposit_ref)
            if board is None:
                match.phase = PLACEMENT
            else:
                self._start(match)

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, mutate)
        current_app.logger.info(f'[join] match={match.id} joiner={joiner} phase={match.phase}')
        return match

    def place_pieces(self, match_id, identity, pieces):
        """Submit the joiner's board for a match joined without one."""
        def mutate(match):
            if match.phase != PLACEMENT:
                raise PhaseViolation(f'Match {match.id} is {match.phase}, not awaiting placement')
            if match.player_b is None or match.player_b.identity != identity:
                raise ValidationError('Only the joining player can place pieces now', code='not_participant')
            fleet = get_fleet(match.fleet_mode)
            match.player_b.board = self._build_board(fleet, pieces)
            self._start(match)

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, mutate)
        current_app.logger.info(f'[place] match={match.id} player={identity} phase={match.phase}')
        return match

    def attack(self, match_id, actor, coordinate):
        result = {}

        def mutate(match):
            if match.phase != PLAYING:
                raise PhaseViolation(f'Match {match.id} is {match.phase}, not playing')
            if match.current_turn != actor:
                if match.slot_for(actor) is None:
                    raise TurnViolation(f'{actor} is not a player in this match', code='not_participant')
                raise TurnViolation('Not your turn')
            target = match.opponent_of(actor)
            attack = boards.resolve_attack(target.board, coordinate)
            row, col = boards.parse_coordinate(coordinate)
            match.move_log.append(MoveLogEntry(actor, row, col, attack.outcome, utcnow()))
            ended = boards.is_fully_destroyed(target.board)
            if ended:
                match.winner = actor
                self._terminate(match, FINISHED, OUTCOME_WIN)
            else:
                match.current_turn = target.identity
            result['outcome'] = attack.outcome
            result['ended'] = ended

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, mutate)
        current_app.logger.info(f'[attack] match={match.id} actor={actor} at={list(coordinate)} outcome={result["outcome"]}')
        if result['ended']:
            current_app.logger.info(f'[finish] match={match.id} winner={match.winner} moves={len(match.move_log)}')
        return AttackOutcome(result['outcome'], result['ended'], match)

    def abandon(self, match_id, actor, reason=None):
        def mutate(match):
            if match.phase not in ABANDONABLE_PHASES:
                raise PhaseViolation(f'Match {match.id} is {match.phase} and cannot be abandoned')
            if match.slot_for(actor) is None:
                raise ValidationError(f'{actor} is not a player in this match', code='not_participant')
            match.abandoned_by = actor
            match.abandon_reason = reason or 'player_left'
            self._terminate(match, ABANDONED, OUTCOME_ABANDON)

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, mutate)
        current_app.logger.info(f'[abandon] match={match.id} by={actor} reason={match.abandon_reason}')
        return match

    def forfeit(self, match_id, actor):
        def mutate(match):
            if match.slot_for(actor) is None:
                raise ValidationError(f'{actor} is not a player in this match', code='not_participant')
            if match.phase != PLAYING:
                raise PhaseViolation(f'Match {match.id} is {match.phase}; only a match in play can be forfeited')
            match.winner = match.opponent_of(actor).identity
            match.abandoned_by = actor
            match.abandon_reason = 'forfeit'
            self._terminate(match, ABANDONED, OUTCOME_FORFEIT)

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, mutate)
        current_app.logger.info(f'[forfeit] match={match.id} by={actor} winner={match.winner}')
        return match

    # ---- settlement surface ----

    def record_settlement(self, match_id, payout_type, recipient, processed, authority):
        return self.settlement.record_settlement(match_id, payout_type, recipient, processed, authority)

    def settle(self, match_id, authority):
        return self.settlement.settle(match_id, authority)

    # ---- helpers ----

    def _build_board(self, fleet, pieces):
        if pieces == RANDOM_PIECES:
            pieces = boards.random_placement(fleet, enforce_adjacency=self.enforce_adjacency)
        return boards.validate_placement(pieces, fleet, self.enforce_adjacency)

    def _start(self, match):
        match.phase = PLAYING
        match.current_turn = match.player_a.identity
        match.started_at = utcnow()

    def _terminate(self, match, phase, outcome):
        match.phase = phase
        match.outcome = outcome
        match.finished_at = utcnow()
        self.settlement.plan(match)

