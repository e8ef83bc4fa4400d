from decimal import Decimal

import pytest

from models import db, Organization, Project, Product, ProductVariant, InventoryItemTransaction, InventoryBalance
from routes.cycle_lock import carry_forward_inventory
from routes.expenses import compute_expense_amount
from routes.inventory_utils import post_movement_by_variant, get_balance, PURCHASE_RECEIPT
from routes.products import create_product


@pytest.fixture
def bread(org, project):
    product = create_product(org.id, 'Bread', variants=[{'label': 'Loaf', 'selling_price': '5.00'}],
                             project_id=project.id, unit_cost='2.00', selling_price='5.00')
    db.session.commit()
    return product


def _tx_types(source_type, source_id):
    rows = (InventoryItemTransaction.query.filter_by(source_type=source_type, source_id=source_id)
            .order_by(InventoryItemTransaction.id).all())
    return [(t.transaction_type, t.quantity_delta) for t in rows]


def test_compute_expense_amount():
    assert compute_expense_amount('99.00', 4, '2.50') == Decimal('10.00')
    assert compute_expense_amount('99.00', 0, '2.50') == Decimal('99.00')
    assert compute_expense_amount('12.345', None, None) == Decimal('12.35')


def test_create_product_links_inventory_variants(org, bread):
    assert bread.inventory_item_id is not None
    loaf = bread.variants[0]
    assert loaf.inventory_item_variant_id == bread.inventory_item_variant_id
    assert loaf.inventory_item_variant_id is not None


def test_products_endpoint(client, project, bread):
    resp = client.post('/api/products', json={
        'product_name': 'Cake', 'project_id': project.id,
        'variants': [{'label': 'Slice'}, {'label': 'Whole'}, {'unit_cost': '1.00'}],
    })
    assert resp.status_code == 201
    product = resp.get_json()['product']
    assert [v['label'] for v in product['variants']] == ['Slice', 'Whole']
    assert all(v['inventory_item_variant_id'] for v in product['variants'])

    body = client.get(f'/api/products?project_id={project.id}').get_json()
    assert [p['name'] for p in body['products']] == ['Bread', 'Cake']
    assert client.post('/api/products', json={'selling_price': '-1'}).status_code == 400


def test_inventory_expense_receives_stock(client, org, project, cycle, bread):
    loaf = bread.variants[0]
    resp = client.post('/api/expenses', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'expense_name': 'Bread restock',
        'product_id': bread.id, 'variant_id': loaf.id,
        'inventory_quantity': 10, 'inventory_unit_cost': '2.00', 'amount': '1.00',
    })
    assert resp.status_code == 201
    expense = resp.get_json()['expense']
    assert expense['amount'] == '20.00'

    bal = get_balance(org.id, project.id, cycle.id, loaf.inventory_item_variant_id)
    assert bal.quantity_on_hand == 10
    assert bal.avg_unit_cost == Decimal('2.00')
    assert db.session.get(Product, bread.id).quantity_in_stock == 10
    assert db.session.get(ProductVariant, loaf.id).quantity_in_stock == 10

    resp = client.put(f'/api/expenses/{expense["id"]}', json={'inventory_quantity': 4})
    assert resp.get_json()['expense']['amount'] == '8.00'
    assert get_balance(org.id, project.id, cycle.id, loaf.inventory_item_variant_id).quantity_on_hand == 4

    assert client.delete(f'/api/expenses/{expense["id"]}').status_code == 200
    assert get_balance(org.id, project.id, cycle.id, loaf.inventory_item_variant_id).quantity_on_hand == 0
    assert db.session.get(Product, bread.id).quantity_in_stock == 0
    assert _tx_types('expense', expense['id']) == [
        ('PURCHASE_RECEIPT', 10), ('REVERSAL', -10), ('PURCHASE_RECEIPT', 4), ('REVERSAL', -4),
    ]


def test_explicit_inventory_variant_wins(client, org, project, cycle, bread, make_variant):
    flour = make_variant('Flour')
    resp = client.post('/api/expenses', json={
        'project_id': project.id, 'cycle_id': cycle.id,
        'product_id': bread.id, 'inventory_item_variant_id': flour.id,
        'inventory_quantity': 3, 'inventory_unit_cost': '1.20',
    })
    assert resp.status_code == 201
    assert get_balance(org.id, project.id, cycle.id, flour.id).quantity_on_hand == 3
    assert get_balance(org.id, project.id, cycle.id, bread.inventory_item_variant_id) is None


def test_plain_expense_touches_no_stock(client, project, cycle):
    resp = client.post('/api/expenses', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'expense_name': 'Rent', 'amount': '300',
    })
    assert resp.status_code == 201
    assert resp.get_json()['expense']['amount'] == '300.00'
    assert InventoryItemTransaction.query.count() == 0

    body = client.get(f'/api/expenses?project_id={project.id}').get_json()
    assert body['total'] == 1
    assert client.post('/api/expenses', json={'amount': '-5'}).status_code == 400


def test_expense_in_locked_cycle_is_refused(client, project, cycle, make_cycle):
    resp = client.post('/api/expenses', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'expense_name': 'Feed', 'amount': '10',
    })
    expense_id = resp.get_json()['expense']['id']
    new_cycle = make_cycle(2)
    carry_forward_inventory(new_cycle, cycle.id)
    db.session.commit()

    resp = client.post('/api/expenses', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'expense_name': 'Feed', 'amount': '10',
    })
    assert resp.status_code == 409
    assert client.put(f'/api/expenses/{expense_id}', json={'amount': '12'}).status_code == 409
    assert client.delete(f'/api/expenses/{expense_id}').status_code == 409

    other = client.post('/api/expenses', json={
        'project_id': project.id, 'cycle_id': new_cycle.id, 'expense_name': 'Feed', 'amount': '10',
    }).get_json()['expense']['id']
    assert client.put(f'/api/expenses/{other}', json={'cycle_id': cycle.id}).status_code == 409


def test_expense_categories(client, project):
    resp = client.post('/api/expenses/categories', json={'category_name': 'Ingredients', 'is_cogs': True})
    assert resp.status_code == 201
    client.post('/api/expenses/categories', json={'category_name': 'Admin', 'project_id': project.id})
    categories = client.get(f'/api/expenses/categories?project_id={project.id}').get_json()['categories']
    assert [(c['category_name'], c['is_cogs']) for c in categories] == [('Admin', False), ('Ingredients', True)]
    assert client.post('/api/expenses/categories', json={'category_name': ' '}).status_code == 400


@pytest.fixture
def stocked_bread(org, project, cycle, bread):
    post_movement_by_variant(org.id, project.id, cycle.id, bread.inventory_item_variant_id, 10,
                             PURCHASE_RECEIPT, unit_cost='2.50')
    db.session.commit()
    return bread


def test_sale_issues_stock_at_average_cost(client, org, project, cycle, stocked_bread):
    loaf = stocked_bread.variants[0]
    resp = client.post('/api/sales', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'customer': 'Dana',
        'product_id': stocked_bread.id, 'variant_id': loaf.id,
        'quantity': 3, 'price': '5.00', 'cash_at_hand': '15.00',
    })
    assert resp.status_code == 201
    sale = resp.get_json()['sale']
    assert sale['amount'] == '15.00'
    assert sale['balance'] == '0.00'
    assert sale['status'] == 'completed'
    assert sale['unit_cost'] == '2.50'
    assert sale['customer'] == 'Dana'

    variant_id = stocked_bread.inventory_item_variant_id
    assert get_balance(org.id, project.id, cycle.id, variant_id).quantity_on_hand == 7
    issue = InventoryItemTransaction.query.filter_by(source_type='sale', source_id=sale['id']).one()
    assert issue.transaction_type == 'SALE_ISSUE'
    assert issue.unit_cost == Decimal('2.50')


def test_sale_keeps_given_unit_cost(client, project, cycle, stocked_bread):
    resp = client.post('/api/sales', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'product_id': stocked_bread.id,
        'quantity': 1, 'price': '5.00', 'unit_cost': '3.10', 'cash_at_hand': '1.00',
    })
    sale = resp.get_json()['sale']
    assert sale['unit_cost'] == '3.10'
    assert sale['balance'] == '4.00'
    assert sale['status'] == 'pending'


def test_sale_update_and_delete_restore_stock(client, org, project, cycle, stocked_bread):
    variant_id = stocked_bread.inventory_item_variant_id
    sale_id = client.post('/api/sales', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'product_id': stocked_bread.id,
        'quantity': 3, 'price': '5.00',
    }).get_json()['sale']['id']

    resp = client.put(f'/api/sales/{sale_id}', json={'quantity': 5, 'cash_at_hand': '25'})
    assert resp.status_code == 200
    assert resp.get_json()['sale']['status'] == 'completed'
    assert get_balance(org.id, project.id, cycle.id, variant_id).quantity_on_hand == 5

    assert client.delete(f'/api/sales/{sale_id}').status_code == 200
    bal = get_balance(org.id, project.id, cycle.id, variant_id)
    assert bal.quantity_on_hand == 10
    assert bal.avg_unit_cost == Decimal('2.50')
    assert _tx_types('sale', sale_id) == [
        ('SALE_ISSUE', -3), ('SALE_REVERSAL', 3), ('SALE_ISSUE', -5), ('SALE_REVERSAL', 5),
    ]


@pytest.mark.parametrize('payload', [
    {'quantity': 0, 'price': '1'},
    {'quantity': 1, 'price': '-1'},
    {'quantity': 1, 'price': '1', 'status': 'refunded'},
    {'quantity': 1, 'price': '1', 'variant_id': 1},
])
def test_sale_validation(client, payload):
    assert client.post('/api/sales', json=payload).status_code == 400


def test_sale_list_filters_by_status(client, project, cycle, stocked_bread):
    for cash in ('5.00', '0'):
        client.post('/api/sales', json={
            'project_id': project.id, 'cycle_id': cycle.id, 'product_id': stocked_bread.id,
            'quantity': 1, 'price': '5.00', 'cash_at_hand': cash,
        })
    body = client.get(f'/api/sales?project_id={project.id}&status=pending').get_json()
    assert body['total'] == 1
    assert body['sales'][0]['balance'] == '5.00'
    assert client.get(f'/api/sales?cycle_id={cycle.id}').get_json()['total'] == 2


@pytest.fixture
def rival_slice(app):
    rival = Organization(name='Rival Bakes')
    db.session.add(rival)
    db.session.commit()
    cake = create_product(rival.id, 'Rival Cake', variants=[{'label': 'Slice'}])
    db.session.commit()
    return cake.variants[0]


def test_expense_cannot_touch_another_organizations_variant(client, project, cycle, bread, rival_slice):
    base = {'project_id': project.id, 'cycle_id': cycle.id, 'inventory_quantity': 7, 'inventory_unit_cost': '1.00'}

    assert client.post('/api/expenses', json=dict(base, variant_id=rival_slice.id)).status_code == 400
    resp = client.post('/api/expenses', json=dict(base, product_id=bread.id, variant_id=rival_slice.id))
    assert resp.status_code == 404

    assert db.session.get(ProductVariant, rival_slice.id).quantity_in_stock == 0
    assert db.session.get(Product, bread.id).quantity_in_stock == 0
    assert InventoryItemTransaction.query.count() == 0


def test_sale_cannot_touch_another_organizations_variant(client, project, cycle, stocked_bread, rival_slice):
    resp = client.post('/api/sales', json={
        'project_id': project.id, 'cycle_id': cycle.id, 'product_id': stocked_bread.id,
        'variant_id': rival_slice.id, 'quantity': 2, 'price': '5.00',
    })
    assert resp.status_code == 404
    assert db.session.get(ProductVariant, rival_slice.id).quantity_in_stock == 0


@pytest.fixture
def foreign_cycle(org, make_cycle):
    orchard = Project(organization_id=org.id, name='Orchard')
    db.session.add(orchard)
    db.session.commit()
    return make_cycle(1, project_id=orchard.id)


def test_expense_cycle_must_belong_to_its_project(client, org, project, cycle, foreign_cycle, make_variant):
    flour = make_variant('Flour')
    base = {'project_id': project.id, 'inventory_item_variant_id': flour.id,
            'inventory_quantity': 5, 'inventory_unit_cost': '2.00'}

    assert client.post('/api/expenses', json=dict(base, cycle_id=foreign_cycle.id)).status_code == 404
    assert client.post('/api/expenses', json=dict(base, cycle_id=999)).status_code == 404
    assert client.post('/api/expenses', json={'cycle_id': cycle.id, 'amount': '5'}).status_code == 400
    assert InventoryBalance.query.count() == 0

    expense_id = client.post('/api/expenses', json=dict(base, cycle_id=cycle.id)).get_json()['expense']['id']
    assert client.put(f'/api/expenses/{expense_id}', json={'cycle_id': foreign_cycle.id}).status_code == 404
    assert get_balance(org.id, project.id, cycle.id, flour.id).quantity_on_hand == 5
    assert get_balance(org.id, project.id, foreign_cycle.id, flour.id) is None


def test_sale_cycle_must_belong_to_its_project(client, org, project, cycle, foreign_cycle, stocked_bread):
    base = {'project_id': project.id, 'product_id': stocked_bread.id, 'quantity': 2, 'price': '5.00'}

    assert client.post('/api/sales', json=dict(base, cycle_id=foreign_cycle.id)).status_code == 404
    assert client.post('/api/sales', json=dict(base, cycle_id=999)).status_code == 404
    assert client.post('/api/sales', json={'cycle_id': cycle.id, 'quantity': 1, 'price': '1'}).status_code == 400

    variant_id = stocked_bread.inventory_item_variant_id
    assert get_balance(org.id, project.id, cycle.id, variant_id).quantity_on_hand == 10
    assert get_balance(org.id, project.id, foreign_cycle.id, variant_id) is None
