import os
import sys
import pytest

# Ensure the backend root (containing the `salvo` package and `config`) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from salvo import create_app, db
from salvo.ledger import SimulatedLedger


ESCROW = 'escrow-house'

# Legal quick-mode layouts (6x6, lengths 3, 2, 2), no two pieces touching
QUICK_A = [[[0, 0], [0, 1], [0, 2]], [[2, 0], [3, 0]], [[5, 4], [5, 5]]]
QUICK_B = [[[0, 5], [1, 5], [2, 5]], [[4, 0], [4, 1]], [[2, 2], [2, 3]]]


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STORAGE_BACKEND = 'sql'
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = ['http://localhost:3000']
    ENFORCE_ADJACENCY = True
    PUBLIC_GAMES_LIMIT = 20
    ESCROW_ACCOUNT = ESCROW
    SETTLEMENT_FEE = 1
    SETTLEMENT_CONFIRM_ATTEMPTS = 5
    SETTLEMENT_CONFIRM_TIMEOUT_SEC = 5
    SETTLEMENT_POLL_INTERVAL_SEC = 0
    SIMULATED_LEDGER_CONFIRM_AFTER = 1
    MATCH_RETENTION_SEC = 24 * 60 * 60
    RETENTION_SWEEP_INTERVAL_SEC = 0
    RETENTION_PHASES = ('waiting', 'finished', 'abandoned')


@pytest.fixture()
def ledger():
    return SimulatedLedger(confirm_after=1)


@pytest.fixture()
def flask_app(ledger):
    application = create_app(TestConfig, ledger=ledger)
    with application.app_context():
        # Ensure models are imported so tables are created
        import salvo.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def service(flask_app):
    return flask_app.extensions['salvo']


@pytest.fixture()
def deposit(ledger):
    """Fund ``player`` and move ``amount`` into escrow; returns the transfer handle."""
    def _deposit(player, amount, escrow=ESCROW):
        ledger.fund(player, amount)
        return ledger.deposit(player, escrow, amount)
    return _deposit


@pytest.fixture()
def playing_match(service, deposit):
    """A quick-mode match between alice and bob, in play, wager 10."""
    def _make(wager=10, match_id='m1'):
        created = service.create_match('quick', wager, 'alice', QUICK_A, deposit('alice', wager),
                                       match_id=match_id, escrow_account=ESCROW)
        service.join_match(match_id, 'bob', QUICK_B, deposit('bob', wager))
        return created
    return _make
