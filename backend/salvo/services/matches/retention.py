import threading
import time
from datetime import timedelta

from salvo.match import utcnow


_sweeper_started = set()


def sweep_old_matches(app, service=None):
    """Delete matches older than MATCH_RETENTION_SEC in the retention phases."""
    service = service or app.extensions['salvo']
    older_than = utcnow() - timedelta(seconds=int(app.config.get('MATCH_RETENTION_SEC', 24 * 60 * 60)))
    phases = tuple(app.config.get('RETENTION_PHASES', ('waiting', 'finished', 'abandoned')))
    with app.app_context():
        removed = service.repository.delete_old(older_than, phases)
    if removed:
        app.logger.info(f'[retention] removed={removed} older_than={older_than.isoformat()} phases={",".join(phases)}')
    return removed


def start_retention_worker(app) -> None:
    """Run sweep_old_matches every RETENTION_SWEEP_INTERVAL_SEC in a daemon thread.

    - No-ops in TESTING mode or when the interval is 0
    - Only one worker per app
    """
    interval = int(app.config.get('RETENTION_SWEEP_INTERVAL_SEC', 0))
    if app.config.get('TESTING') or interval <= 0:
        return
    if id(app) in _sweeper_started:
        app.logger.info('[retention-skip] worker already running')
        return
    _sweeper_started.add(id(app))

    def _worker():
        while True:
            time.sleep(interval)
            try:
                sweep_old_matches(app)
            except Exception:
                # Keep the worker alive; the next sweep retries
                app.logger.exception('[retention] sweep failed')

    thread = threading.Thread(target=_worker, name='salvo-retention', daemon=True)
    thread.start()
    app.logger.info(f'[retention] worker started interval={interval}s')
