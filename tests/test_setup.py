import configparser

import pytest

from app import seed_essential_data
from first_time_setup import run_setup
from models import InventoryItemType
from routes.decorators import accessible_project_ids, assert_project_access, json_errors, AccessDenied
from routes.utils import get_inventory_item_type_id


def test_run_setup_writes_config(tmp_path, monkeypatch):
    answers = iter(['db.local', '', 'sales', 's3cret', '', 'kes', '500'])
    monkeypatch.setattr('builtins.input', lambda prompt='': next(answers))

    path = run_setup(base_dir=tmp_path)

    config = configparser.ConfigParser()
    config.read(path)
    assert path == tmp_path / 'db_config.ini'
    assert dict(config['database']) == {
        'host': 'db.local', 'port': '3306', 'username': 'sales', 'password': 's3cret', 'database': 'salestrack',
    }
    assert config['app']['default_currency'] == 'KES'
    assert config['inventory']['log_limit'] == '500'


def test_run_setup_falls_back_on_bad_log_limit(tmp_path, monkeypatch):
    answers = iter(['', '', 'u', 'p', '', '', 'lots'])
    monkeypatch.setattr('builtins.input', lambda prompt='': next(answers))
    config = configparser.ConfigParser()
    config.read(run_setup(base_dir=tmp_path))
    assert config['inventory']['log_limit'] == '200'
    assert config['app']['default_currency'] == 'USD'


def test_seeding_is_idempotent(app):
    assert InventoryItemType.query.count() == 3
    assert seed_essential_data(app) == 0
    assert InventoryItemType.query.count() == 3
    assert get_inventory_item_type_id('finished_goods') == InventoryItemType.query.filter_by(
        code='FINISHED_GOODS').one().id


def test_health(app):
    resp = app.test_client().get('/health')
    assert resp.status_code == 200
    assert resp.get_json() == {'status': 'ok'}


def test_admin_sees_every_project(admin, member, project):
    assert accessible_project_ids(admin) is None
    assert accessible_project_ids(member) == set()
    assert assert_project_access(project.id, user=admin) is project
    with pytest.raises(AccessDenied):
        assert_project_access(project.id, user=member)
    with pytest.raises(LookupError):
        assert_project_access(None, user=admin)


def test_member_assigned_directly(member, project, assign):
    assign(user=member)
    assert accessible_project_ids(member) == {project.id}
    assert assert_project_access(project.id, user=member).id == project.id


def test_unexpected_errors_do_not_leak_details(app):
    @app.route('/boom')
    @json_errors
    def boom():
        raise RuntimeError('SELECT password FROM user')

    resp = app.test_client().get('/boom')
    assert resp.status_code == 500
    assert resp.get_json() == {'status': 'error', 'message': 'An unexpected error occurred'}
