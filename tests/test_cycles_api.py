from datetime import date
from decimal import Decimal

from models import db, Cycle, CycleBudgetTransaction
from routes.inventory_utils import post_movement_by_variant, get_balance, PURCHASE_RECEIPT


def test_create_cycle_records_allotment(client, project):
    resp = client.post('/api/cycles', json={
        'project_id': project.id, 'cycle_number': 1, 'cycle_name': 'Spring',
        'start_date': '2024-03-01', 'end_date': '2024-05-31', 'budget_allotment': '500',
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['cycle']['budget_allotment'] == '500.00'
    assert body['carried_balances'] == 0

    rows = CycleBudgetTransaction.query.filter_by(cycle_id=body['cycle']['id']).all()
    assert [(r.type, r.amount_delta, r.budget_before, r.budget_after) for r in rows] == [
        ('ALLOTMENT_SET', Decimal('500.00'), Decimal('0.00'), Decimal('500.00')),
    ]


def test_create_cycle_without_budget_has_no_history(client, project):
    cycle_id = client.post('/api/cycles', json={'project_id': project.id}).get_json()['cycle']['id']
    assert CycleBudgetTransaction.query.filter_by(cycle_id=cycle_id).count() == 0


def test_create_cycle_validation(client, project):
    assert client.post('/api/cycles', json={}).status_code == 400
    assert client.post('/api/cycles', json={'project_id': project.id, 'budget_allotment': '-1'}).status_code == 400
    assert client.post('/api/cycles', json={
        'project_id': project.id, 'start_date': '2024-02-01', 'end_date': '2024-01-01'}).status_code == 400
    assert client.post('/api/cycles', json={'project_id': project.id, 'start_date': '01/02/2024'}).status_code == 400
    assert client.post('/api/cycles', json={'project_id': 999}).status_code == 404


def test_carry_forward_on_create_uses_latest_cycle(client, org, project, make_cycle, make_variant):
    older = make_cycle(1, start=date(2024, 1, 1), end=date(2024, 1, 31))
    latest = make_cycle(2, start=date(2024, 2, 1), end=date(2024, 2, 29))
    flour = make_variant()
    post_movement_by_variant(org.id, project.id, older.id, flour.id, 99, PURCHASE_RECEIPT, unit_cost='1.00')
    post_movement_by_variant(org.id, project.id, latest.id, flour.id, 6, PURCHASE_RECEIPT, unit_cost='3.00')
    db.session.commit()

    resp = client.post('/api/cycles', json={
        'project_id': project.id, 'cycle_number': 3, 'carry_forward_inventory': True,
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['carried_balances'] == 1
    assert body['cycle']['carry_forward_from_cycle_id'] == latest.id
    assert body['cycle']['opening_balance_posted_at'] is not None

    new_id = body['cycle']['id']
    bal = get_balance(org.id, project.id, new_id, flour.id)
    assert bal.quantity_on_hand == 6
    assert bal.avg_unit_cost == Decimal('3.00')
    assert db.session.get(Cycle, latest.id).inventory_locked_at is not None
    assert db.session.get(Cycle, older.id).inventory_locked_at is None


def test_carry_forward_from_explicit_cycle(client, org, project, make_cycle, make_variant):
    source = make_cycle(1, end=date(2023, 1, 31))
    make_cycle(2, end=date(2024, 1, 31))
    flour = make_variant()
    post_movement_by_variant(org.id, project.id, source.id, flour.id, 4, PURCHASE_RECEIPT, unit_cost='2.00')
    db.session.commit()

    body = client.post('/api/cycles', json={
        'project_id': project.id, 'carry_forward_inventory': True, 'carry_forward_from_cycle_id': source.id,
    }).get_json()
    assert body['cycle']['carry_forward_from_cycle_id'] == source.id
    assert get_balance(org.id, project.id, body['cycle']['id'], flour.id).quantity_on_hand == 4


def test_first_cycle_carry_forward_is_a_noop(client, project):
    resp = client.post('/api/cycles', json={'project_id': project.id, 'carry_forward_inventory': True})
    assert resp.status_code == 201
    assert resp.get_json()['carried_balances'] == 0
    assert resp.get_json()['cycle']['carry_forward_from_cycle_id'] is None


def test_budget_update_appends_adjustment(client, project, make_cycle):
    cycle = make_cycle(1, budget=Decimal('200.00'))
    resp = client.put(f'/api/cycles/{cycle.id}', json={'budget_allotment': '150', 'budget_notes': 'cut'})
    assert resp.status_code == 200
    assert resp.get_json()['cycle']['budget_allotment'] == '150.00'

    # unchanged budget adds nothing
    client.patch(f'/api/cycles/{cycle.id}', json={'budget_allotment': '150.00', 'cycle_name': 'Renamed'})

    history = client.get(f'/api/cycles/{cycle.id}/budget-transactions').get_json()['transactions']
    assert len(history) == 1
    assert history[0]['type'] == 'BUDGET_ADJUSTMENT'
    assert history[0]['amount_delta'] == '-50.00'
    assert history[0]['budget_before'] == '200.00'
    assert history[0]['notes'] == 'cut'
    assert client.get(f'/api/cycles/{cycle.id}').get_json()['cycle']['cycle_name'] == 'Renamed'


def test_list_cycles_by_project(client, project, make_cycle):
    make_cycle(2)
    make_cycle(1)
    cycles = client.get(f'/api/cycles?project_id={project.id}').get_json()['cycles']
    assert [c['cycle_number'] for c in cycles] == [1, 2]
    assert client.get('/api/cycles').status_code == 400


def test_delete_cycle_refused_when_locked(client, project, make_cycle):
    first = make_cycle(1)
    client.post('/api/cycles', json={'project_id': project.id, 'carry_forward_inventory': True})

    resp = client.delete(f'/api/cycles/{first.id}')
    assert resp.status_code == 409
    assert resp.get_json()['code'] == 'CYCLE_INVENTORY_LOCKED'

    spare = make_cycle(7)
    assert client.delete(f'/api/cycles/{spare.id}').status_code == 200
    assert client.get(f'/api/cycles/{spare.id}').status_code == 404


def test_delete_cycle_is_admin_only(member_client, member, project, make_cycle, assign):
    assign(user=member)
    cycle = make_cycle(1)
    resp = member_client.delete(f'/api/cycles/{cycle.id}')
    assert resp.status_code == 403
    assert member_client.get(f'/api/cycles/{cycle.id}').status_code == 200
