from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from salvo.errors import SalvoError, ValidationError
from salvo.fleet import DEFAULT_MODE


games = Blueprint('games', __name__)
players = Blueprint('players', __name__)


def _service():
    return current_app.extensions['salvo']


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object', code='bad_body')
    return data


def _authority(data):
    return data.get('authority') or request.headers.get('X-Escrow-Authority')


def _int_field(data, name, default=None):
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{name} must be an integer', code='bad_field')
    return value


@games.app_errorhandler(SalvoError)
def handle_salvo_error(exc):
    if exc.status_code >= 500:
        current_app.logger.error(f'[error] {exc.code}: {exc.message}')
    return jsonify(exc.to_dict()), exc.status_code


@games.app_errorhandler(Exception)
def handle_unexpected(exc):
    if isinstance(exc, HTTPException):
        return jsonify({'success': False, 'error': exc.description, 'code': exc.name.lower().replace(' ', '_')}), exc.code
    current_app.logger.exception(f'[error] unhandled {type(exc).__name__} path={request.path}')
    return jsonify({'success': False, 'error': 'Internal server error', 'code': 'internal_error'}), 500


@games.route('', methods=['POST'])
def create_game():
    """
    Creates a match in the waiting phase from the creator's confirmed deposit
    and board. The escrow authority token is only ever returned here.
    """
    data = _payload()
    if not all([data.get('player'), data.get('pieces') is not None]):
        return jsonify({'success': False, 'error': 'player and pieces are required', 'code': 'validation_error'}), 400

    created = _service().create_match(
        data.get('game_mode') or DEFAULT_MODE,
        _int_field(data, 'wager', 0),
        data.get('player'),
        data.get('pieces'),
        data.get('deposit_ref'),
        is_public=bool(data.get('is_public', False)),
        match_id=data.get('id'),
        escrow_account=data.get('escrow_account') or current_app.config.get('ESCROW_ACCOUNT'),
    )
    return jsonify({
        'success': True,
        'game': created.match.to_dict(viewer=created.match.player_a.identity),
        'authority': created.authority,
        'message': 'Match created',
    }), 201


@games.route('/public', methods=['GET'])
def public_games():
    limit = request.args.get('limit', type=int)
    summaries = _service().list_public_waiting(limit)
    return jsonify({
        'success': True,
        'games': [s.to_dict() for s in summaries],
        'count': len(summaries),
    })


@games.route('/<string:match_id>', methods=['GET'])
def get_game(match_id):
    """
    Returns the match. Boards other than the ``viewer``'s show only hits and
    misses until the match ends.
    """
    match = _service().get_match(match_id)
    return jsonify({'success': True, 'game': match.to_dict(viewer=request.args.get('viewer', ''))})


@games.route('/<string:match_id>/join', methods=['POST'])
def join_game(match_id):
    data = _payload()
    player = data.get('player')
    if not player:
        return jsonify({'success': False, 'error': 'player is required', 'code': 'validation_error'}), 400
    match = _service().join_match(match_id, player, data.get('pieces'), data.get('deposit_ref'))
    return jsonify({'success': True, 'game': match.to_dict(viewer=player), 'message': 'Joined match'})


@games.route('/<string:match_id>/ships', methods=['POST'])
def place_ships(match_id):
    data = _payload()
    player = data.get('player')
    match = _service().place_pieces(match_id, player, data.get('pieces'))
    return jsonify({'success': True, 'game': match.to_dict(viewer=player), 'message': 'Pieces placed'})


@games.route('/<string:match_id>/move', methods=['POST'])
def make_move(match_id):
    data = _payload()
    player = data.get('player')
    coordinate = (_int_field(data, 'row'), _int_field(data, 'col'))
    result = _service().attack(match_id, player, coordinate)
    return jsonify({
        'success': True,
        'game': result.match.to_dict(viewer=player),
        'outcome': result.outcome,
        'hit': result.outcome == 'hit',
        'gameEnded': result.match_ended,
    })


@games.route('/<string:match_id>/abandon', methods=['POST'])
def abandon_game(match_id):
    data = _payload()
    player = data.get('player')
    match = _service().abandon(match_id, player, data.get('reason'))
    return jsonify({'success': True, 'game': match.to_dict(viewer=player), 'message': 'Match abandoned'})


@games.route('/<string:match_id>/forfeit', methods=['POST'])
def forfeit_game(match_id):
    data = _payload()
    player = data.get('player')
    match = _service().forfeit(match_id, player)
    return jsonify({'success': True, 'game': match.to_dict(viewer=player), 'message': 'Match forfeited'})


@games.route('/<string:match_id>/payout', methods=['POST'])
def record_payout(match_id):
    """
    Records a payout the escrow holder executed outside the server.
    """
    data = _payload()
    match = _service().record_settlement(
        match_id,
        data.get('payout_type'),
        data.get('recipient'),
        bool(data.get('processed', False)),
        _authority(data),
    )
    return jsonify({'success': True, 'game': match.to_dict(), 'message': 'Payout status updated'})


@games.route('/<string:match_id>/settle', methods=['POST'])
def settle_game(match_id):
    """
    Pays out the escrow through the ledger. A confirmation timeout answers
    202 and leaves the payout pending for a retry.
    """
    data = _payload()
    match = _service().settle(match_id, _authority(data))
    return jsonify({'success': True, 'game': match.to_dict(), 'escrow': match.escrow.to_dict()})


@players.route('/<string:identity>/games', methods=['GET'])
def player_games(identity):
    matches = _service().list_by_participant(identity)
    return jsonify({
        'success': True,
        'games': [m.to_dict(viewer=identity) for m in matches],
        'count': len(matches),
    })
