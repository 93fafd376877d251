"""Escrow settlement: deposits in, payout obligations out.

The controller never holds a match lock while talking to the ledger. A
settlement is checkpointed as ``pending`` with its planned transfers before
anything is submitted, each submission carries a deterministic reference the
ledger deduplicates on, and the final ``released``/``refunded`` status is a
second update once every transfer is confirmed. A retry therefore resumes
from what was recorded and never pays twice.
"""

import secrets
import time
from collections import namedtuple

from flask import current_app

from salvo import bcrypt
from salvo import ledger as ledger_status
from salvo.errors import (
    AlreadySettled,
    DepositMismatch,
    PhaseViolation,
    SettlementTimeout,
    SettlementUnauthorized,
    TransferRejected,
    ValidationError,
)
from salvo.match import (
    ESCROW_NONE,
    ESCROW_PENDING,
    ESCROW_REFUNDED,
    ESCROW_RELEASED,
    OUTCOME_FORFEIT,
    OUTCOME_WIN,
    SETTLED_STATUSES,
    Transfer,
    utcnow,
)


PAYOUT_WINNER = 'winner'
PAYOUT_REFUND = 'refund'
PAYOUT_TYPES = (PAYOUT_WINNER, PAYOUT_REFUND)

Payout = namedtuple('Payout', ['payout_type', 'recipient', 'transfers', 'final_status'])


def transfer_reference(match_id, kind, recipient, attempt=0):
    return f'{match_id}:{kind}:{recipient}:{attempt}'


class SettlementController:
    def __init__(self, repository, ledger, locks, fee=0, confirm_attempts=10,
                 confirm_timeout=30.0, poll_interval=1.0, sleep=time.sleep, clock=time.monotonic):
        self.repository = repository
        self.ledger = ledger
        self.locks = locks
        self.fee = int(fee)
        self.confirm_attempts = int(confirm_attempts)
        self.confirm_timeout = float(confirm_timeout)
        self.poll_interval = float(poll_interval)
        self._sleep = sleep
        self._clock = clock

    # ---- escrow authority (who may release the pool) ----

    def issue_authority(self, match):
        """Mint the capability that authorises outflow; only its hash is kept."""
        token = secrets.token_urlsafe(24)
        match.escrow.authority_hash = bcrypt.generate_password_hash(token).decode('utf-8')
        return token

    def check_authority(self, match, token):
        stored = match.escrow.authority_hash
        if not token or not stored or not bcrypt.check_password_hash(stored, token):
            raise SettlementUnauthorized(f'Escrow authority required to settle match {match.id}')

    # ---- deposits ----

    def on_join_deposit(self, match, player, confirmed_amount):
        if confirmed_amount != match.wager:
            raise DepositMismatch(f'Deposit of {confirmed_amount} does not match wager {match.wager}')
        match.escrow.deposits[player] = confirmed_amount

    def verify_deposit(self, match, player, deposit_ref):
        """Check a deposit on the ledger and record it against ``player``."""
        if match.wager == 0:
            self.on_join_deposit(match, player, 0)
            return
        if not deposit_ref:
            raise ValidationError('A confirmed deposit is required for a wagered match', code='deposit_missing')
        for slot in (match.player_a, match.player_b):
            if slot is not None and slot.identity != player and slot.deposit_ref == deposit_ref:
                raise ValidationError('Deposit reference already used in this match', code='deposit_reused')
        status = self.ledger.confirm_transfer(deposit_ref)
        if status != ledger_status.CONFIRMED:
            raise ValidationError(f'Deposit {deposit_ref} is {status}, not confirmed', code='deposit_unconfirmed')
        transfer = self.ledger.lookup_transfer(deposit_ref)
        if transfer.source != player or transfer.destination != match.escrow.account:
            raise DepositMismatch(f'Deposit {deposit_ref} is not from {player} to escrow {match.escrow.account}')
        self.on_join_deposit(match, player, transfer.amount)

    # ---- payout obligations ----

    def compute_payout(self, match):
        if match.escrow.status in SETTLED_STATUSES:
            raise AlreadySettled(f'Match {match.id} escrow is already {match.escrow.status}')
        if not match.is_terminal:
            raise PhaseViolation(f'Match {match.id} is {match.phase}; nothing to settle yet')

        net = max(match.escrow.pool - self.fee, 0)
        if match.outcome in (OUTCOME_WIN, OUTCOME_FORFEIT):
            transfer = Transfer(PAYOUT_WINNER, match.winner, net,
                                transfer_reference(match.id, PAYOUT_WINNER, match.winner))
            return Payout(PAYOUT_WINNER, match.winner, [transfer], ESCROW_RELEASED)

        # Abandoned without a winner: everyone who paid in gets an equal share back
        recipients = [p for p in match.participants if p in match.escrow.deposits] or match.participants
        share = net // len(recipients)
        transfers = [
            Transfer(PAYOUT_REFUND, p, share, transfer_reference(match.id, PAYOUT_REFUND, p))
            for p in recipients
        ]
        return Payout(PAYOUT_REFUND, None, transfers, ESCROW_REFUNDED)

    def plan(self, match):
        """Attach payout obligations to a match entering a terminal phase."""
        payout = self.compute_payout(match)
        match.escrow.payout_type = payout.payout_type
        match.escrow.recipient = payout.recipient
        match.escrow.transfers = payout.transfers
        return payout

    # ---- client-recorded settlement ----

    def record_settlement(self, match_id, payout_type, recipient, processed, authority):
        """Book a payout executed outside the server by the escrow authority."""
        if payout_type not in PAYOUT_TYPES:
            raise ValidationError(f'payout_type must be one of {PAYOUT_TYPES}', code='bad_payout_type')

        def mutate(match):
            self.check_authority(match, authority)
            payout = self.compute_payout(match)
            if match.escrow.mode == 'server':
                raise PhaseViolation('Settlement is already being processed by the server', code='settlement_in_progress')
            if payout_type != payout.payout_type:
                raise ValidationError(f'Match outcome requires a {payout.payout_type} payout', code='payout_mismatch')
            if payout_type == PAYOUT_WINNER and recipient != match.winner:
                raise ValidationError(f'Winner payout must go to {match.winner}', code='payout_mismatch')
            match.escrow.mode = 'client'
            match.escrow.payout_type = payout_type
            match.escrow.recipient = recipient if payout_type == PAYOUT_WINNER else None
            if processed:
                match.escrow.status = payout.final_status
                match.escrow.settled_at = utcnow()
                for transfer in match.escrow.transfers:
                    transfer.status = 'recorded'
            else:
                match.escrow.status = ESCROW_PENDING

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, mutate)
        current_app.logger.info(f'[settle-record] match={match_id} type={payout_type} recipient={recipient} status={match.escrow.status}')
        return match

    # ---- server-driven settlement ----

    def settle(self, match_id, authority):
        """Pay out the escrow of a terminal match through the ledger.

        Raises SettlementTimeout (status stays pending) when confirmations do
        not arrive in time, TransferRejected when the ledger refuses or fails
        a transfer. Both are safe to retry.
        """
        def begin(match):
            self.check_authority(match, authority)
            if match.escrow.status in SETTLED_STATUSES:
                raise AlreadySettled(f'Match {match.id} escrow is already {match.escrow.status}')
            if match.escrow.mode == 'client':
                raise PhaseViolation('Settlement is being recorded by the escrow holder', code='settlement_in_progress')
            if match.escrow.status == ESCROW_NONE or not match.escrow.transfers:
                self.plan(match)
            match.escrow.mode = 'server'
            match.escrow.status = ESCROW_PENDING

        with self.locks.hold(match_id):
            match = self.repository.update(match_id, begin)
        current_app.logger.info(f'[settle-begin] match={match_id} type={match.escrow.payout_type} transfers={len(match.escrow.transfers)}')

        match = self._submit_outstanding(match)
        match = self._await_confirmations(match)
        return self._finalize(match)

    def _update_transfer(self, match_id, index, **changes):
        def mutate(match):
            transfer = match.escrow.transfers[index]
            for key, value in changes.items():
                setattr(transfer, key, value)

        with self.locks.hold(match_id):
            return self.repository.update(match_id, mutate)

    def _submit_outstanding(self, match):
        for index, transfer in enumerate(list(match.escrow.transfers)):
            if transfer.status not in ('planned', 'failed'):
                continue
            if transfer.status == 'failed':
                attempt = transfer.attempt + 1
                reference = transfer_reference(match.id, transfer.kind, transfer.recipient, attempt)
                match = self._update_transfer(match.id, index, attempt=attempt, reference=reference, status='planned')
                transfer = match.escrow.transfers[index]
            if transfer.amount == 0:
                match = self._update_transfer(match.id, index, status='confirmed')
                continue
            try:
                handle = self.ledger.submit_transfer(match.escrow.account, transfer.recipient,
                                                     transfer.amount, reference=transfer.reference)
            except TransferRejected as exc:
                current_app.logger.warning(f'[settle-rejected] match={match.id} recipient={transfer.recipient} reason={exc.message}')
                raise
            match = self._update_transfer(match.id, index, handle=handle, status='submitted')
            current_app.logger.info(f'[settle-submit] match={match.id} recipient={transfer.recipient} amount={transfer.amount} handle={handle}')
        return match

    def _await_confirmations(self, match):
        deadline = self._clock() + self.confirm_timeout
        attempts = 0
        while True:
            waiting = [(i, t) for i, t in enumerate(match.escrow.transfers) if t.status == 'submitted']
            if not waiting:
                break
            if attempts >= self.confirm_attempts or self._clock() >= deadline:
                current_app.logger.warning(f'[settle-timeout] match={match.id} unconfirmed={len(waiting)} attempts={attempts}')
                raise SettlementTimeout()
            attempts += 1
            still_pending = False
            for index, transfer in waiting:
                status = self.ledger.confirm_transfer(transfer.handle)
                if status == ledger_status.CONFIRMED:
                    match = self._update_transfer(match.id, index, status='confirmed')
                elif status == ledger_status.FAILED:
                    match = self._update_transfer(match.id, index, status='failed')
                else:
                    still_pending = True
            if still_pending:
                self._sleep(self.poll_interval)

        failed = [t for t in match.escrow.transfers if t.status == 'failed']
        if failed:
            current_app.logger.warning(f'[settle-failed] match={match.id} failed={len(failed)}')
            raise TransferRejected(f'{len(failed)} payout transfer(s) failed; retry settlement')
        return match

    def _finalize(self, match):
        def mutate(current):
            if current.escrow.status in SETTLED_STATUSES:
                raise AlreadySettled(f'Match {current.id} escrow is already {current.escrow.status}')
            if any(t.status != 'confirmed' for t in current.escrow.transfers):
                raise PhaseViolation('Payout transfers are not all confirmed', code='settlement_in_progress')
            current.escrow.status = ESCROW_RELEASED if current.escrow.payout_type == PAYOUT_WINNER else ESCROW_REFUNDED
            current.escrow.settled_at = utcnow()

        with self.locks.hold(match.id):
            match = self.repository.update(match.id, mutate)
        current_app.logger.info(f'[settle-done] match={match.id} status={match.escrow.status}')
        return match
