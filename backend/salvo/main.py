from datetime import datetime, timezone
import time

from flask import Blueprint, current_app, jsonify

from salvo.fleet import FLEET_MODES

main = Blueprint('main', __name__)

VERSION = '2.0.0'
_started = time.monotonic()


@main.route('/')
def index():
    return jsonify({
        'message': 'Salvo wagered grid combat API',
        'version': VERSION,
        'status': 'running',
        'endpoints': {
            'health': '/health',
            'stats': '/api/stats',
            'gameModes': '/api/game-modes',
            'createGame': 'POST /api/games',
            'getGame': 'GET /api/games/:gameId',
            'joinGame': 'POST /api/games/:gameId/join',
            'publicGames': 'GET /api/games/public',
            'playerGames': 'GET /api/players/:identity/games',
        },
    })


@main.route('/health')
def health():
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': VERSION,
    })


@main.route('/api/stats')
def stats():
    service = current_app.extensions['salvo']
    payload = service.stats()
    payload['uptime'] = time.monotonic() - _started
    payload['version'] = VERSION
    return jsonify({'success': True, 'stats': payload})


@main.route('/api/game-modes')
def game_modes():
    return jsonify({
        'success': True,
        'gameModes': {mode: cfg.to_dict() for mode, cfg in FLEET_MODES.items()},
    })
