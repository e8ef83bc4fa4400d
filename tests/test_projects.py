import pytest

from models import db, Organization, User, Project, ProjectAssignment, Team, TeamMember
from routes.decorators import accessible_project_ids
from routes.projects import clean_currency_code


def test_create_and_list_projects(client, project):
    resp = client.post('/api/projects', json={'project_name': ' Apiary ', 'currency_code': 'kes'})
    assert resp.status_code == 201
    created = resp.get_json()['project']
    assert created['name'] == 'Apiary'
    assert created['currency_code'] == 'KES'
    assert created['effective_currency_code'] == 'KES'

    projects = client.get('/api/projects').get_json()['projects']
    assert [p['name'] for p in projects] == ['Apiary', 'Bakery']
    assert client.get(f'/api/projects/{created["id"]}').get_json()['project']['name'] == 'Apiary'
    assert client.get('/api/projects/999').status_code == 404


@pytest.mark.parametrize('payload', [
    {},
    {'project_name': '   '},
    {'project_name': 'Dairy', 'currency_code': 'EURO'},
    {'project_name': 'Dairy', 'currency_code': '12$'},
])
def test_create_project_validation(client, payload):
    assert client.post('/api/projects', json=payload).status_code == 400


def test_clean_currency_code():
    assert clean_currency_code(' usd ') == 'USD'
    assert clean_currency_code('') is None
    assert clean_currency_code(None) is None
    with pytest.raises(ValueError):
        clean_currency_code(840)


def test_project_currency_falls_back_to_organization_then_config(app, client, org, project):
    app.config['DEFAULT_CURRENCY'] = 'KES'
    assert client.get(f'/api/projects/{project.id}').get_json()['project']['effective_currency_code'] == 'USD'

    org.currency_code = None
    db.session.commit()
    assert client.get(f'/api/projects/{project.id}').get_json()['project']['effective_currency_code'] == 'KES'

    client.patch(f'/api/projects/{project.id}', json={'currency_code': 'eur', 'description': 'Bread and buns'})
    body = client.get(f'/api/projects/{project.id}').get_json()['project']
    assert body['effective_currency_code'] == 'EUR'
    assert body['description'] == 'Bread and buns'
    assert client.put(f'/api/projects/{project.id}', json={'project_name': ''}).status_code == 400


def test_member_cannot_manage_projects(member_client, member, project, assign):
    assign(user=member)
    assert member_client.post('/api/projects', json={'project_name': 'Mine'}).status_code == 403
    assert member_client.patch(f'/api/projects/{project.id}', json={'project_name': 'Mine'}).status_code == 403
    assert member_client.delete(f'/api/projects/{project.id}').status_code == 403
    assert member_client.post(f'/api/projects/{project.id}/assignments', json={'user_id': member.id}).status_code == 403
    assert member_client.post('/api/teams', json={'name': 'Night shift'}).status_code == 403
    assert [p['id'] for p in member_client.get('/api/projects').get_json()['projects']] == [project.id]


def test_member_only_sees_assigned_projects(member_client, org, project):
    hidden = Project(organization_id=org.id, name='Hidden')
    db.session.add(hidden)
    db.session.commit()
    assert member_client.get('/api/projects').get_json()['projects'] == []
    assert member_client.get(f'/api/projects/{hidden.id}').status_code == 403


def test_assign_user_to_project(client, org, member, project):
    url = f'/api/projects/{project.id}/assignments'
    resp = client.post(url, json={'user_id': member.id})
    assert resp.status_code == 201
    assignment = resp.get_json()['assignment']
    assert assignment == {'id': assignment['id'], 'project_id': project.id, 'user_id': member.id, 'team_id': None}
    assert accessible_project_ids(member) == {project.id}

    again = client.post(url, json={'user_id': member.id})
    assert again.status_code == 200
    assert again.get_json()['assignment']['id'] == assignment['id']
    assert ProjectAssignment.query.count() == 1
    assert [a['user_id'] for a in client.get(url).get_json()['assignments']] == [member.id]

    assert client.delete(f'{url}/{assignment["id"]}').status_code == 200
    assert accessible_project_ids(member) == set()
    assert client.delete(f'{url}/{assignment["id"]}').status_code == 404


def test_assignment_validation(client, org, member, project):
    outsider_org = Organization(name='Elsewhere')
    db.session.add(outsider_org)
    db.session.commit()
    outsider = User(username='outsider', organization_id=outsider_org.id)
    db.session.add(outsider)
    db.session.commit()

    url = f'/api/projects/{project.id}/assignments'
    assert client.post(url, json={}).status_code == 400
    assert client.post(url, json={'user_id': member.id, 'team_id': 1}).status_code == 400
    assert client.post(url, json={'user_id': outsider.id}).status_code == 404
    assert client.post(url, json={'team_id': 999}).status_code == 404
    assert client.post('/api/projects/999/assignments', json={'user_id': member.id}).status_code == 404


def test_team_assignment_grants_members_access(client, member, project):
    team_id = client.post('/api/teams', json={'name': 'Bakers'}).get_json()['team']['id']
    assert client.post(f'/api/teams/{team_id}/members', json={'user_id': member.id}).status_code == 201
    assert client.post(f'/api/teams/{team_id}/members', json={'user_id': member.id}).status_code == 200
    assert client.post(f'/api/projects/{project.id}/assignments', json={'team_id': team_id}).status_code == 201

    assert accessible_project_ids(member) == {project.id}
    members = client.get(f'/api/teams/{team_id}/members').get_json()['members']
    assert [m['username'] for m in members] == ['clerk']

    assert client.delete(f'/api/teams/{team_id}/members/{member.id}').status_code == 200
    assert accessible_project_ids(member) == set()
    assert client.delete(f'/api/teams/{team_id}/members/{member.id}').status_code == 404


def test_teams_list_and_delete(client, org, member, project):
    for name in ('Packers', 'Bakers'):
        client.post('/api/teams', json={'name': name})
    teams = client.get('/api/teams').get_json()['teams']
    assert [t['name'] for t in teams] == ['Bakers', 'Packers']
    assert client.post('/api/teams', json={'name': ' '}).status_code == 400

    bakers = teams[0]['id']
    client.post(f'/api/teams/{bakers}/members', json={'user_id': member.id})
    client.post(f'/api/projects/{project.id}/assignments', json={'team_id': bakers})
    assert client.delete(f'/api/teams/{bakers}').status_code == 200
    assert db.session.get(Team, bakers) is None
    assert TeamMember.query.count() == 0
    assert ProjectAssignment.query.count() == 0
    assert client.get(f'/api/teams/{bakers}/members').status_code == 404


def test_delete_project(client, member, project, make_cycle, assign):
    assign(user=member)
    cycle = make_cycle(1)
    resp = client.delete(f'/api/projects/{project.id}')
    assert resp.status_code == 400
    assert 'cycles' in resp.get_json()['message']

    client.delete(f'/api/cycles/{cycle.id}')
    assert client.delete(f'/api/projects/{project.id}').status_code == 200
    assert db.session.get(Project, project.id) is None
    assert ProjectAssignment.query.count() == 0
