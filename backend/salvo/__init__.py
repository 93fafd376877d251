from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_migrate import Migrate
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()


def create_app(config_class=Config, ledger=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=flask_app.config.get('CORS_ORIGINS'))

    # Ensure the model is registered before the repository creates tables
    from salvo import models  # noqa: F401
    from salvo.ledger import SimulatedLedger
    from salvo.repository import build_repository
    from salvo.services.matches import MatchService, SettlementController
    from salvo.services.matches.locks import MatchLocks

    cfg = flask_app.config
    if ledger is None:
        ledger = SimulatedLedger(confirm_after=cfg.get('SIMULATED_LEDGER_CONFIRM_AFTER', 1))
    repository = build_repository(flask_app)
    locks = MatchLocks()
    settlement = SettlementController(
        repository,
        ledger,
        locks,
        fee=cfg.get('SETTLEMENT_FEE', 0),
        confirm_attempts=cfg.get('SETTLEMENT_CONFIRM_ATTEMPTS', 10),
        confirm_timeout=cfg.get('SETTLEMENT_CONFIRM_TIMEOUT_SEC', 30),
        poll_interval=cfg.get('SETTLEMENT_POLL_INTERVAL_SEC', 1),
    )
    flask_app.extensions['salvo'] = MatchService(
        repository,
        settlement,
        locks,
        enforce_adjacency=cfg.get('ENFORCE_ADJACENCY', True),
        public_limit=cfg.get('PUBLIC_GAMES_LIMIT', 20),
    )

    # Import and register blueprints here
    from salvo.main import main
    flask_app.register_blueprint(main)

    from salvo.api.games import games, players
    flask_app.register_blueprint(games, url_prefix='/api/games')
    flask_app.register_blueprint(players, url_prefix='/api/players')

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the match table."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('prune-matches')
    def prune_matches_command():
        """Deletes matches past the retention window."""
        from salvo.services.matches.retention import sweep_old_matches
        removed = sweep_old_matches(flask_app)
        print(f'Removed {removed} old matches')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(prune_matches_command)

    return flask_app
