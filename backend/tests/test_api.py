def _body(seed, n=0):
    return {'team_id': seed['team'], 'puzzle_id': seed['level1'][n]}


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200


def test_timer_endpoints(client, seed):
    res = client.post('/api/time/start-question', json=_body(seed))
    assert res.status_code == 201
    assert res.get_json()['status'] == 'active'

    res = client.post('/api/time/pause-question', json=_body(seed))
    assert res.status_code == 200
    data = res.get_json()
    assert data['status'] == 'paused'
    assert data['time_spent_seconds'] >= 0

    res = client.post('/api/time/resume-question', json=_body(seed))
    assert res.get_json()['status'] == 'active'

    res = client.post('/api/time/skip-question', json=_body(seed))
    assert res.status_code == 200
    data = res.get_json()
    assert data['status'] == 'skipped'
    assert data['skip_penalty_seconds'] == 300
    assert data['skips_remaining'] == 2
    assert data['next_puzzle_id'] == seed['level1'][1]

    res = client.get(f"/api/time/skipped-questions?team_id={seed['team']}")
    assert [q['puzzle_id'] for q in res.get_json()['questions']] == [seed['level1'][0]]

    res = client.get(f"/api/time/session?team_id={seed['team']}")
    session = res.get_json()
    assert session['skips_used'] == 1
    assert session['total_skip_penalty_seconds'] == 300

    res = client.get(f"/api/time/timer/{seed['level1'][0]}?team_id={seed['team']}")
    assert res.get_json()['status'] == 'skipped'


def test_rejected_transition_payload(client, seed):
    client.post('/api/time/start-question', json=_body(seed))
    res = client.post('/api/time/start-question', json=_body(seed))
    assert res.status_code == 409
    assert res.get_json() == {
        'error': 'InvalidTransition',
        'message': 'action unavailable',
        'current_status': 'active',
    }


def test_missing_ids_are_bad_requests(client, seed):
    res = client.post('/api/time/start-question', json={'team_id': seed['team']})
    assert res.status_code == 400
    assert res.get_json() == {'error': 'puzzle_id is required'}
    res = client.get('/api/time/session?team_id=abc')
    assert res.status_code == 400


def test_unknown_team_is_not_found(client, seed):
    res = client.post('/api/time/start-question', json={'team_id': 999, 'puzzle_id': seed['level1'][0]})
    assert res.status_code == 404
    assert res.get_json()['error'] == 'NotFound'


def test_skip_limit_payload(client, seed):
    client.put('/api/admin/game-settings/max_skips_per_team', json={'value': 0, 'admin_id': 'ops'})
    client.post('/api/time/start-question', json=_body(seed))
    res = client.post('/api/time/skip-question', json=_body(seed))
    assert res.status_code == 422
    data = res.get_json()
    assert data['error'] == 'SkipLimitExceeded'
    assert data['message'] == 'skips remaining: 0'
    assert data['skips_remaining'] == 0


def test_hint_and_submit(client, seed):
    client.post('/api/time/start-question', json=_body(seed))
    res = client.post('/api/time/use-hint', json=_body(seed))
    assert res.status_code == 201
    assert res.get_json()['penalty_seconds'] == 120

    res = client.post('/api/team/submit-answer', json=dict(_body(seed), answer='ANSWER 1'))
    assert res.status_code == 201
    data = res.get_json()
    assert data['is_correct'] is True
    assert data['timer']['status'] == 'completed'

    res = client.post('/api/team/submit-answer', json=_body(seed, 1))
    assert res.status_code == 400


def test_admin_workflow_endpoints(client, seed):
    headers = {'X-Admin-Id': 'ops'}
    res = client.put('/api/admin/level/1/cutoff', json={'min_score': 1, 'min_accuracy': 0.1}, headers=headers)
    assert res.get_json()['cutoff']['min_score'] == 1
    client.post('/api/team/submit-answer', json=dict(_body(seed), answer='answer 1'))

    res = client.post('/api/admin/level/1/close-submissions', headers=headers)
    assert res.status_code == 200
    assert res.get_json()['closed_by'] == 'ops'

    res = client.post('/api/team/submit-answer', json=dict(_body(seed, 1), answer='answer 2'))
    assert res.status_code == 423
    assert res.get_json()['error'] == 'SubmissionsClosed'

    assert client.post('/api/admin/level/1/evaluate', headers=headers).get_json()['state'] == 'EVALUATING'
    res = client.post('/api/admin/level/1/evaluate', headers=headers)
    assert res.status_code == 409
    assert res.get_json()['error'] == 'EvaluationInProgress'

    results = client.get(f"/api/team/level/1/results?team_id={seed['team']}").get_json()
    assert results['published'] is False

    res = client.post('/api/admin/level/1/publish-results', json={'admin_id': 'lead'})
    assert res.get_json()['published_by'] == 'lead'
    results = client.get(f"/api/team/level/1/results?team_id={seed['team']}").get_json()
    assert results['status'] == 'QUALIFIED'

    access = client.get(f"/api/team/can-access-level/2?team_id={seed['team']}").get_json()
    assert access['can_access'] is True

    res = client.post(f"/api/admin/level/1/teams/{seed['team']}/override",
                      json={'status': 'disqualified', 'reason': 'rule breach', 'admin_id': 'lead'})
    assert res.status_code == 200
    assert res.get_json()['status'] == 'DISQUALIFIED'

    status = client.get('/api/admin/level/1/status').get_json()
    assert status['decisions']['overridden'] == 1
    assert client.post('/api/admin/level/1/unknown').status_code == 404


def test_unknown_level_is_not_found(client, seed):
    from lockdown.models import LevelEvaluationStatus

    rows = LevelEvaluationStatus.query.count()
    res = client.get('/api/admin/level/999/status')
    assert res.status_code == 404
    assert res.get_json()['error'] == 'NotFound'
    assert client.post('/api/admin/level/999/close-submissions').status_code == 404
    assert client.post('/api/admin/level/999/evaluate').status_code == 404
    assert client.get('/api/admin/level/999/cutoff').status_code == 404
    assert client.get(f"/api/team/level/999/results?team_id={seed['team']}").status_code == 404
    assert LevelEvaluationStatus.query.count() == rows

    # a level with puzzles but no status row yet reads as open without writing one
    res = client.get('/api/admin/level/2/status')
    assert res.status_code == 200
    assert res.get_json()['state'] == 'IN_PROGRESS'
    assert LevelEvaluationStatus.query.count() == rows


def test_settings_endpoints(client):
    res = client.get('/api/admin/game-settings')
    keys = {s['key'] for s in res.get_json()['settings']}
    assert 'allow_skip_return' in keys
    res = client.put('/api/admin/game-settings/skip_enabled', json={'value': 'nope'})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'InvalidSetting'


def test_admin_can_end_a_session(client, seed):
    client.post('/api/time/start-question', json=_body(seed))
    res = client.post(f"/api/admin/team/{seed['team']}/end-session", headers={'X-Admin-Id': 'ops'})
    assert res.status_code == 200
    assert res.get_json()['status'] == 'completed'
    res = client.post('/api/time/pause-question', json=_body(seed))
    assert res.status_code == 409
    assert res.get_json()['error'] == 'SessionEnded'
