import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///salvo.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # 'sql' uses the database above and falls back to memory if it is unreachable
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND', 'sql')
    CORS_ORIGINS = [o for o in os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',') if o]
    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_LOG_ROUNDS', '12'))
    # Placement rule: pieces may not touch, diagonals included
    ENFORCE_ADJACENCY = os.environ.get('ENFORCE_ADJACENCY', '1') != '0'
    PUBLIC_GAMES_LIMIT = int(os.environ.get('PUBLIC_GAMES_LIMIT', '20'))
    # Escrow / settlement. Amounts are integer base units (9 decimals).
    ESCROW_ACCOUNT = os.environ.get('ESCROW_ACCOUNT', 'escrow-house')
    SETTLEMENT_FEE = int(os.environ.get('SETTLEMENT_FEE', '100000'))
    SETTLEMENT_CONFIRM_ATTEMPTS = int(os.environ.get('SETTLEMENT_CONFIRM_ATTEMPTS', '10'))
    SETTLEMENT_CONFIRM_TIMEOUT_SEC = float(os.environ.get('SETTLEMENT_CONFIRM_TIMEOUT_SEC', '30'))
    SETTLEMENT_POLL_INTERVAL_SEC = float(os.environ.get('SETTLEMENT_POLL_INTERVAL_SEC', '1'))
    # Polls before the in-process ledger reports a transfer as confirmed
    SIMULATED_LEDGER_CONFIRM_AFTER = int(os.environ.get('SIMULATED_LEDGER_CONFIRM_AFTER', '1'))
    # Retention sweep (seconds). 0 disables the background worker.
    MATCH_RETENTION_SEC = int(os.environ.get('MATCH_RETENTION_SEC', str(24 * 60 * 60)))
    RETENTION_SWEEP_INTERVAL_SEC = int(os.environ.get('RETENTION_SWEEP_INTERVAL_SEC', str(60 * 60)))
    RETENTION_PHASES = tuple(os.environ.get('RETENTION_PHASES', 'waiting,finished,abandoned').split(','))
