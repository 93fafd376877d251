import pytest

from salvo.errors import (
    AlreadySettled,
    PhaseViolation,
    SettlementTimeout,
    SettlementUnauthorized,
    TransferRejected,
    ValidationError,
)
from salvo.ledger import SimulatedLedger
from salvo.match import ESCROW_PENDING, ESCROW_RELEASED
from salvo.services.matches.settlement import transfer_reference

from conftest import ESCROW, QUICK_A


def _forfeited(service, playing_match, wager=10):
    created = playing_match(wager=wager)
    service.forfeit('m1', 'alice')
    return created.authority


def test_settle_requires_terminal_match(service, playing_match):
    created = playing_match()
    with pytest.raises(PhaseViolation):
        service.settle('m1', created.authority)
    assert service.get_match('m1').escrow.status == 'none'


def test_settle_requires_authority(service, playing_match):
    _forfeited(service, playing_match)
    with pytest.raises(SettlementUnauthorized):
        service.settle('m1', None)
    with pytest.raises(SettlementUnauthorized):
        service.settle('m1', 'not-the-token')
    assert service.get_match('m1').escrow.status == 'none'


def test_second_settlement_is_rejected(service, playing_match, ledger):
    authority = _forfeited(service, playing_match)
    match = service.settle('m1', authority)
    assert match.escrow.status == ESCROW_RELEASED
    assert match.escrow.settled_at is not None
    with pytest.raises(AlreadySettled):
        service.settle('m1', authority)
    assert ledger.balance('bob') == 19
    assert len(ledger.submitted()) == 3  # two deposits and one payout


def test_timeout_leaves_pending_and_retry_pays_once(service, playing_match, ledger):
    authority = _forfeited(service, playing_match)
    ledger.stalled = True
    with pytest.raises(SettlementTimeout) as exc:
        service.settle('m1', authority)
    assert exc.value.status_code == 202

    match = service.get_match('m1')
    assert match.escrow.status == ESCROW_PENDING
    assert match.escrow.transfers[0].status == 'submitted'
    handle = match.escrow.transfers[0].handle

    ledger.stalled = False
    match = service.settle('m1', authority)
    assert match.escrow.status == ESCROW_RELEASED
    assert match.escrow.transfers[0].handle == handle
    assert ledger.balance('bob') == 19
    assert ledger.balance(ESCROW) == 1


def test_failed_transfer_is_resubmitted_with_new_reference(service, playing_match, ledger):
    authority = _forfeited(service, playing_match)
    ledger.fail_references.add(transfer_reference('m1', 'winner', 'bob'))
    with pytest.raises(TransferRejected):
        service.settle('m1', authority)
    match = service.get_match('m1')
    assert match.escrow.status == ESCROW_PENDING
    assert match.escrow.transfers[0].status == 'failed'
    # Failed transfer returned the funds to escrow
    assert ledger.balance(ESCROW) == 20

    match = service.settle('m1', authority)
    transfer = match.escrow.transfers[0]
    assert match.escrow.status == ESCROW_RELEASED
    assert transfer.attempt == 1
    assert transfer.reference == transfer_reference('m1', 'winner', 'bob', 1)
    assert ledger.balance('bob') == 19


def test_ledger_rejection_keeps_pending(service, playing_match, ledger):
    authority = _forfeited(service, playing_match)
    # Drain escrow so the payout cannot be funded
    ledger.submit_transfer(ESCROW, 'elsewhere', 20)
    with pytest.raises(TransferRejected):
        service.settle('m1', authority)
    assert service.get_match('m1').escrow.status == ESCROW_PENDING


def test_pool_below_fee_settles_without_transfers(service):
    created = service.create_match('quick', 0, 'alice', QUICK_A, None, match_id='free', escrow_account=ESCROW)
    service.abandon('free', 'alice')
    match = service.settle('free', created.authority)
    assert match.escrow.status == 'refunded'
    assert [(t.amount, t.status) for t in match.escrow.transfers] == [(0, 'confirmed')]


def test_record_settlement_processed(service, playing_match):
    authority = _forfeited(service, playing_match)
    match = service.record_settlement('m1', 'winner', 'bob', False, authority)
    assert match.escrow.status == ESCROW_PENDING
    assert match.escrow.mode == 'client'

    match = service.record_settlement('m1', 'winner', 'bob', True, authority)
    assert match.escrow.status == ESCROW_RELEASED
    assert match.escrow.transfers[0].status == 'recorded'
    with pytest.raises(AlreadySettled):
        service.record_settlement('m1', 'winner', 'bob', True, authority)


def test_record_settlement_checks_outcome(service, playing_match):
    authority = _forfeited(service, playing_match)
    with pytest.raises(ValidationError):
        service.record_settlement('m1', 'refund', None, True, authority)
    with pytest.raises(ValidationError):
        service.record_settlement('m1', 'winner', 'alice', True, authority)
    with pytest.raises(ValidationError):
        service.record_settlement('m1', 'bonus', 'bob', True, authority)
    with pytest.raises(SettlementUnauthorized):
        service.record_settlement('m1', 'winner', 'bob', True, 'forged')


def test_server_and_client_settlement_are_exclusive(service, playing_match, ledger):
    authority = _forfeited(service, playing_match)
    service.record_settlement('m1', 'winner', 'bob', False, authority)
    with pytest.raises(PhaseViolation):
        service.settle('m1', authority)
    assert ledger.balance('bob') == 0


def test_simulated_ledger_deduplicates_references():
    ledger = SimulatedLedger()
    ledger.fund('a', 10)
    first = ledger.submit_transfer('a', 'b', 5, reference='r1')
    second = ledger.submit_transfer('a', 'b', 5, reference='r1')
    assert first == second
    assert ledger.balance('a') == 5
    assert ledger.confirm_transfer(first) == 'confirmed'
    assert ledger.balance('b') == 5
    with pytest.raises(TransferRejected):
        ledger.submit_transfer('a', 'b', 50)
    with pytest.raises(ValidationError):
        ledger.lookup_transfer('tx_missing')
