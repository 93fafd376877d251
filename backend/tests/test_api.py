from conftest import ESCROW, QUICK_A, QUICK_B


def _create(client, deposit, match_id='g1', wager=10, is_public=True):
    res = client.post('/api/games', json={
        'id': match_id,
        'game_mode': 'quick',
        'wager': wager,
        'player': 'alice',
        'pieces': QUICK_A,
        'deposit_ref': deposit('alice', wager) if wager else None,
        'is_public': is_public,
    })
    assert res.status_code == 201
    return res.get_json()


def _join(client, deposit, match_id='g1', wager=10):
    return client.post(f'/api/games/{match_id}/join', json={
        'player': 'bob',
        'pieces': QUICK_B,
        'deposit_ref': deposit('bob', wager) if wager else None,
    })


def test_index_health_and_modes(client):
    assert client.get('/').get_json()['status'] == 'running'
    assert client.get('/health').get_json()['status'] == 'healthy'
    modes = client.get('/api/game-modes').get_json()['gameModes']
    assert set(modes) == {'quick', 'standard', 'extended'}
    assert modes['standard']['totalShipSquares'] == 17


def test_create_returns_authority_once(client, deposit):
    data = _create(client, deposit)
    assert data['success'] is True
    assert data['authority']
    game = data['game']
    assert game['phase'] == 'waiting'
    assert game['escrow']['account'] == ESCROW
    assert 'authority_hash' not in game['escrow']

    fetched = client.get('/api/games/g1').get_json()['game']
    assert 'authority' not in fetched
    assert 'authority_hash' not in fetched['escrow']


def test_create_rejects_bad_input(client, deposit):
    res = client.post('/api/games', json={'player': 'alice'})
    assert res.status_code == 400

    res = client.post('/api/games', json={'game_mode': 'quick', 'wager': 0, 'player': 'alice',
                                          'pieces': [[[0, 0], [0, 1]]]})
    assert res.status_code == 400
    body = res.get_json()
    assert body['success'] is False
    assert body['code'] == 'count_mismatch'

    _create(client, deposit, wager=0)
    res = client.post('/api/games', json={'id': 'g1', 'game_mode': 'quick', 'wager': 0,
                                          'player': 'carol', 'pieces': QUICK_B})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'duplicate_id'


def test_viewer_sees_only_own_pieces(client, deposit):
    _create(client, deposit)
    _join(client, deposit)
    game = client.get('/api/games/g1?viewer=alice').get_json()['game']
    assert 'pieces' in game['player_a']['board']
    assert 'pieces' not in game['player_b']['board']

    anonymous = client.get('/api/games/g1').get_json()['game']
    assert 'pieces' not in anonymous['player_a']['board']
    assert 'pieces' not in anonymous['player_b']['board']


def test_move_flow_and_errors(client, deposit):
    _create(client, deposit)
    assert _join(client, deposit).get_json()['game']['phase'] == 'playing'

    res = client.post('/api/games/g1/move', json={'player': 'bob', 'row': 0, 'col': 0})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'turn_violation'

    res = client.post('/api/games/g1/move', json={'player': 'alice', 'row': 0, 'col': 5})
    data = res.get_json()
    assert res.status_code == 200
    assert data['hit'] is True
    assert data['gameEnded'] is False
    assert data['game']['current_turn'] == 'bob'

    res = client.post('/api/games/g1/move', json={'player': 'bob', 'row': 9, 'col': 0})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'out_of_bounds'

    res = client.post('/api/games/g1/move', json={'player': 'bob', 'row': 'x', 'col': 0})
    assert res.status_code == 400


def test_unknown_game_is_404(client):
    res = client.get('/api/games/nope')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'not_found'


def test_public_and_player_listings(client, deposit):
    _create(client, deposit, match_id='g1', wager=0)
    _create(client, deposit, match_id='g2', wager=0, is_public=False)

    public = client.get('/api/games/public').get_json()
    assert public['count'] == 1
    assert public['games'][0]['id'] == 'g1'
    assert public['games'][0]['gameMode'] == 'quick'

    mine = client.get('/api/players/alice/games').get_json()
    assert {g['id'] for g in mine['games']} == {'g1', 'g2'}

    stats = client.get('/api/stats').get_json()['stats']
    assert stats['total'] == 2
    assert stats['public_waiting'] == 1


def test_join_without_board_then_ships(client, deposit):
    _create(client, deposit, wager=0)
    res = client.post('/api/games/g1/join', json={'player': 'bob'})
    assert res.get_json()['game']['phase'] == 'placement'
    res = client.post('/api/games/g1/ships', json={'player': 'bob', 'pieces': QUICK_B})
    assert res.get_json()['game']['phase'] == 'playing'


def test_forfeit_then_settle(client, deposit, ledger):
    authority = _create(client, deposit)['authority']
    _join(client, deposit)
    res = client.post('/api/games/g1/forfeit', json={'player': 'bob'})
    assert res.get_json()['game']['winner'] == 'alice'

    res = client.post('/api/games/g1/settle', json={'authority': 'guess'})
    assert res.status_code == 403

    res = client.post('/api/games/g1/settle', json={'authority': authority})
    assert res.status_code == 200
    assert res.get_json()['escrow']['status'] == 'released'
    assert ledger.balance('alice') == 19

    res = client.post('/api/games/g1/settle', headers={'X-Escrow-Authority': authority})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'already_settled'


def test_settle_timeout_is_accepted_pending(client, deposit, ledger):
    authority = _create(client, deposit)['authority']
    _join(client, deposit)
    client.post('/api/games/g1/abandon', json={'player': 'alice', 'reason': 'mutual'})

    ledger.stalled = True
    res = client.post('/api/games/g1/settle', json={'authority': authority})
    assert res.status_code == 202
    assert res.get_json()['code'] == 'settlement_pending'

    ledger.stalled = False
    res = client.post('/api/games/g1/settle', json={'authority': authority})
    assert res.get_json()['escrow']['status'] == 'refunded'
    assert ledger.balance('alice') == 9
    assert ledger.balance('bob') == 9


def test_recorded_payout(client, deposit):
    authority = _create(client, deposit)['authority']
    _join(client, deposit)
    client.post('/api/games/g1/abandon', json={'player': 'bob'})

    res = client.post('/api/games/g1/payout', json={'payout_type': 'refund', 'processed': True})
    assert res.status_code == 403

    res = client.post('/api/games/g1/payout', json={
        'payout_type': 'refund', 'processed': True, 'authority': authority})
    assert res.status_code == 200
    game = res.get_json()['game']
    assert game['escrow']['status'] == 'refunded'
    assert game['abandon_reason'] == 'player_left'


def test_random_pieces_and_remaining_count(client, deposit):
    res = client.post('/api/games', json={'id': 'r1', 'wager': 0, 'player': 'alice', 'pieces': 'random'})
    assert res.status_code == 201
    game = res.get_json()['game']
    assert game['fleet_mode'] == 'standard'
    assert game['player_a']['board']['remaining'] == 17
