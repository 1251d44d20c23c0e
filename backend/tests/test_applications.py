import uuid

from fastapi.testclient import TestClient
from sqlmodel import Session

from conftest import FakeGenerator, make_drafts
from planner.main import app
from planner.database import engine
from planner.repositories import ActionLogRepository
from planner.utils.breakdown import GenerationError

client = TestClient(app)

TODO_APP = {
    'name': 'Todo',
    'status': 'Refinement Needed',
    'type': 'web',
    'shortDescription': 'A simple todo app for tasks',
    'productSpecs': 'Allows users to add, edit, delete, and complete tasks',
}


def _create(payload=None, headers=None):
    r = client.post('/applications', json=payload or TODO_APP, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()['data']


def _login(username):
    client.post('/auth/register', json={'username': username, 'password': 'pw'})
    r = client.post('/auth/login', json={'username': username, 'password': 'pw'})
    assert r.status_code == 200
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


def test_create_get_delete_scenario():
    created = _create()
    assert uuid.UUID(created['id'])
    assert created['breakdownStatus'] == 'none'
    assert created['images'] == []

    got = client.get('/application-details', params={'appId': created['id']})
    assert got.status_code == 200
    data = got.json()['data']
    for key, value in TODO_APP.items():
        assert data[key] == value

    deleted = client.delete('/application-details', params={'appId': created['id']})
    assert deleted.status_code == 200
    assert deleted.json()['data']['id'] == created['id']
    assert deleted.json()['data']['name'] == 'Todo'

    again = client.get('/application-details', params={'appId': created['id']})
    assert again.status_code == 404
    assert again.json()['error'] == 'Application not found'


def test_short_description_rejected_and_nothing_inserted():
    payload = dict(TODO_APP, shortDescription='short')
    r = client.post('/applications', json=payload)
    assert r.status_code == 400
    body = r.json()
    assert body['error'] == 'Invalid data format'
    assert 'Description must be at least 10 characters.' in body['message']
    assert client.get('/applications').json()['data'] == []


def test_validation_messages_are_joined():
    payload = dict(TODO_APP, name='x', productSpecs='too short')
    r = client.post('/applications', json=payload)
    assert r.status_code == 400
    message = r.json()['message']
    assert 'Name must be at least 2 characters.' in message
    assert 'Product specs must be at least 20 characters.' in message
    assert ', ' in message


def test_list_newest_first_and_id_filter():
    first = _create(dict(TODO_APP, name='First app'))
    second = _create(dict(TODO_APP, name='Second app'))
    names = [a['name'] for a in client.get('/applications').json()['data']]
    assert names == ['Second app', 'First app']

    only = client.get('/applications', params={'id': first['id']}).json()['data']
    assert [a['id'] for a in only] == [first['id']]
    assert second['id'] not in [a['id'] for a in only]


def test_details_require_valid_app_id():
    missing = client.get('/application-details')
    assert missing.status_code == 400
    assert missing.json()['error'] == 'Application ID is required'
    bad = client.get('/application-details', params={'appId': 'nope'})
    assert bad.status_code == 400


def test_update_replaces_fields():
    created = _create()
    payload = dict(TODO_APP, name='Todo Pro', status='In Progress', featureBreakdown='Sharing and reminders')
    r = client.put('/application-details', params={'appId': created['id']}, json=payload)
    assert r.status_code == 200
    data = r.json()['data']
    assert data['name'] == 'Todo Pro'
    assert data['status'] == 'In Progress'
    assert data['featureBreakdown'] == 'Sharing and reminders'
    assert data['updatedAt'] >= data['createdAt']


def test_update_missing_id_is_not_found():
    r = client.put('/application-details', params={'appId': str(uuid.uuid4())}, json=TODO_APP)
    assert r.status_code == 404


def test_other_owner_cannot_read_or_mutate():
    created = _create()
    alice = _login('alice')

    assert client.get('/applications', headers=alice).json()['data'] == []
    assert client.get('/application-details', params={'appId': created['id']}, headers=alice).status_code == 404
    put = client.put('/application-details', params={'appId': created['id']}, json=dict(TODO_APP, name='Hijacked'), headers=alice)
    assert put.status_code == 404
    assert client.delete('/application-details', params={'appId': created['id']}, headers=alice).status_code == 404

    still = client.get('/application-details', params={'appId': created['id']}).json()['data']
    assert still['name'] == 'Todo'


def test_breakdown_creates_one_feature_per_draft(install_generator):
    generator = install_generator(FakeGenerator(drafts=make_drafts(3)))
    payload = dict(TODO_APP, featureBreakdown='Task lists, due dates, reminders')
    r = client.post('/applications', json=payload)
    assert r.status_code == 200
    body = r.json()
    app_id = body['data']['id']
    assert body['data']['breakdownStatus'] == 'completed'
    assert len(body['features']) == 3
    assert 'Task lists, due dates, reminders' in generator.prompts[0]
    assert 'Todo' in generator.prompts[0]

    features = client.get('/features', params={'appId': app_id}).json()['data']
    assert len(features) == 3
    assert all(f['appId'] == app_id for f in features)
    assert all(f['status'] == 'Refinement Needed' for f in features)
    assert {f['featureSpecs'] for f in features} == {'Spec 1', 'Spec 2', 'Spec 3'}

    with Session(engine) as session:
        logs = ActionLogRepository(session).list_for_entity(uuid.UUID(app_id))
    assert len(logs) == 1
    assert logs[0].action == 'generate'
    assert len(logs[0].output_data['features']) == 3


def test_breakdown_with_no_drafts_creates_no_features(install_generator):
    install_generator(FakeGenerator(drafts=[]))
    r = client.post('/applications', json=dict(TODO_APP, featureBreakdown='Anything useful'))
    assert r.status_code == 200
    assert r.json()['features'] == []
    app_id = r.json()['data']['id']
    assert client.get('/features', params={'appId': app_id}).json()['data'] == []


def test_blank_breakdown_skips_generator(install_generator):
    generator = install_generator(FakeGenerator(drafts=make_drafts(2)))
    r = client.post('/applications', json=dict(TODO_APP, featureBreakdown='   '))
    assert r.status_code == 200
    assert generator.prompts == []
    assert r.json()['data']['breakdownStatus'] == 'none'


def test_breakdown_failure_keeps_application(install_generator):
    install_generator(FakeGenerator(error=GenerationError('model unavailable')))
    r = client.post('/applications', json=dict(TODO_APP, featureBreakdown='Task lists'))
    assert r.status_code == 500
    body = r.json()
    assert body['warning'] is True
    assert 'model unavailable' in body['error']
    app_id = body['data']['id']

    got = client.get('/application-details', params={'appId': app_id})
    assert got.status_code == 200
    assert got.json()['data']['breakdownStatus'] == 'failed'
    assert client.get('/features', params={'appId': app_id}).json()['data'] == []

    failed = client.get('/applications', params={'breakdownStatus': 'failed'}).json()['data']
    assert [a['id'] for a in failed] == [app_id]


def test_unexpected_generator_error_is_a_warning(install_generator):
    install_generator(FakeGenerator(error=TimeoutError('read timed out')))
    r = client.post('/applications', json=dict(TODO_APP, featureBreakdown='Task lists'))
    assert r.status_code == 500
    body = r.json()
    assert body['warning'] is True
    assert body['error'] == 'read timed out'
    assert body['data']['breakdownStatus'] == 'failed'

    listed = client.get('/applications').json()['data']
    assert [(a['name'], a['breakdownStatus']) for a in listed] == [('Todo', 'failed')]
    assert client.get('/features', params={'appId': body['data']['id']}).json()['data'] == []


def test_unknown_breakdown_status_filter_rejected():
    r = client.get('/applications', params={'breakdownStatus': 'exploded'})
    assert r.status_code == 400


def test_delete_cascades_to_features_and_stories():
    created = _create()
    feature = client.post('/feature-details', json={
        'name': 'Task list',
        'status': 'Refinement Needed',
        'featureType': 'Frontend',
        'shortDescription': 'Shows every open task',
        'appId': created['id'],
    }).json()['data']
    story = client.post('/story-details', json={
        'name': 'See tasks',
        'description': 'User sees all open tasks',
        'status': 'Refinement Needed',
        'storyType': 'Functional',
        'techSpecType': 'UI',
        'userStory': 'As a user I want to see my tasks',
        'acceptanceCriteria': 'Open tasks are listed newest first',
        'featureId': feature['id'],
    }).json()['data']

    assert client.delete('/application-details', params={'appId': created['id']}).status_code == 200
    assert client.get('/feature-details', params={'featureId': feature['id']}).status_code == 404
    assert client.get('/story-details', params={'storyId': story['id']}).status_code == 404
