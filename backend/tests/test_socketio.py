def test_socket_connect_and_join(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')

    # Flush any initial events
    sio_client.get_received('/ws')

    sio_client.emit('join_team', {'team_id': 7}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'joined' and pkt['args'][0]['room'] == 'team:7' for pkt in received)


def test_join_requires_an_id(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_level', {}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'error' for pkt in received)


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert {'name': 'pong', 'args': [{'n': 1}], 'namespace': '/ws'} in received


def test_timer_write_pushes_state_update(sio_client, client, seed):
    team = seed['team']
    sio_client.emit('join_team', {'team_id': team}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post('/api/time/start-question', json={'team_id': team, 'puzzle_id': seed['level1'][0]})
    received = sio_client.get_received('/ws')
    updates = [pkt for pkt in received if pkt['name'] == 'state_update']
    assert updates and updates[0]['args'][0] == {'team_id': team}


def test_level_transition_pushes_level_update(sio_client, client, seed):
    sio_client.emit('join_level', {'level_id': 1}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post('/api/admin/level/1/close-submissions', json={'admin_id': 'ops'})
    received = sio_client.get_received('/ws')
    assert any(
        pkt['name'] == 'level_update' and pkt['args'][0] == {'level_id': 1, 'state': 'SUBMISSIONS_CLOSED'}
        for pkt in received
    )


def test_leave_team_stops_updates(sio_client, client, seed):
    team = seed['team']
    sio_client.emit('join_team', {'team_id': team}, namespace='/ws')
    sio_client.emit('leave_team', {'team_id': team}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post('/api/time/start-question', json={'team_id': team, 'puzzle_id': seed['level1'][0]})
    assert not any(pkt['name'] == 'state_update' for pkt in sio_client.get_received('/ws'))
