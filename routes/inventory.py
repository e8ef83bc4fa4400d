from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from models import db, InventoryItem, InventoryItemType, InventoryItemTransaction, money_str
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id
from routes.cycle_lock import (assert_cycle_not_inventory_locked, post_opening_balance, get_cycle)
from routes.inventory_utils import (create_inventory_item, inventory_valuation, list_balances,
                                    post_movement_by_variant, ADJUSTMENT_IN, ADJUSTMENT_OUT)
from routes.utils import log_action, safe_int, get_inventory_item_type_id
from extensions import limiter
import logging

logger = logging.getLogger(__name__)

inventory_bp = Blueprint('inventory', __name__, url_prefix='/api/inventory')


def _project_cycle_args(args):
    """Parse project_id/cycle_id; both or neither."""
    project_id = safe_int(args.get('project_id'))
    cycle_id = safe_int(args.get('cycle_id'))
    if bool(project_id) != bool(cycle_id):
        raise ValueError('project_id and cycle_id must be provided together')
    return project_id, cycle_id


@inventory_bp.route('/item-types', methods=['GET'])
@login_required
@json_errors
def item_types():
    types = InventoryItemType.query.filter_by(is_active=True).order_by(InventoryItemType.id.asc()).all()
    return jsonify({'status': 'success', 'item_types': [
        {'id': t.id, 'code': t.code, 'name': t.name} for t in types
    ]})


@inventory_bp.route('/items', methods=['GET'])
@login_required
@json_errors
def list_items():
    org_id = current_org_id()
    project_id, cycle_id = _project_cycle_args(request.args)
    type_code = (request.args.get('type_code') or '').strip().upper()

    if project_id:
        assert_project_access(project_id)

    query = InventoryItem.query.filter(InventoryItem.organization_id == org_id)
    if type_code:
        query = (query.join(InventoryItemType, InventoryItemType.id == InventoryItem.inventory_item_type_id)
                 .filter(InventoryItemType.code == type_code))
    items = query.order_by(InventoryItem.id.desc()).all()

    balances = {}
    if project_id and cycle_id:
        for b in list_balances(org_id, project_id, cycle_id):
            balances[b.inventory_item_variant_id] = b

    result = []
    for item in items:
        data = item.to_dict()
        variants = []
        for v in item.variants:
            vd = v.to_dict()
            if project_id and cycle_id:
                bal = balances.get(v.id)
                vd['quantity_on_hand'] = bal.quantity_on_hand if bal else None
                vd['avg_unit_cost'] = money_str(bal.avg_unit_cost) if bal else None
            variants.append(vd)
        data['variants'] = variants
        result.append(data)
    return jsonify({'status': 'success', 'items': result})


@inventory_bp.route('/items', methods=['POST'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def create_item():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}

    type_id = safe_int(data.get('inventory_item_type_id'))
    type_code = data.get('inventory_item_type_code')
    if type_id:
        if not db.session.get(InventoryItemType, type_id):
            raise LookupError(f'Inventory item type {type_id} not found')
    elif isinstance(type_code, str) and type_code.strip():
        type_id = get_inventory_item_type_id(type_code)

    project_id = safe_int(data.get('project_id'))
    if project_id:
        assert_project_access(project_id)

    item = create_inventory_item(
        org_id, type_id, data.get('name') if isinstance(data.get('name'), str) else '',
        variants=data.get('variants') if isinstance(data.get('variants'), list) else None,
        sku=data.get('sku') if isinstance(data.get('sku'), str) else None,
        uom=data.get('uom') if isinstance(data.get('uom'), str) else None,
        is_active=data.get('is_active', True),
        default_purchase_unit_cost=data.get('default_purchase_unit_cost'),
        default_sale_price=data.get('default_sale_price'),
        description=data.get('description') if isinstance(data.get('description'), str) else None,
        project_id=project_id,
        created_by=current_user.id,
    )
    log_action(f'Created inventory item "{item.name}" with {len(item.variants)} variant(s)')
    db.session.commit()

    data = item.to_dict()
    data['variants'] = [v.to_dict() for v in item.variants]
    return jsonify({'status': 'success', 'item': data}), 201


@inventory_bp.route('/opening-balance', methods=['POST'])
@login_required
@limiter.limit("30 per minute")
@json_errors
def opening_balance():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}
    project_id = safe_int(data.get('project_id'))
    cycle_id = safe_int(data.get('cycle_id'))
    if not project_id:
        raise ValueError('project_id is required')
    if not cycle_id:
        raise ValueError('cycle_id is required')
    lines = data.get('lines')
    if not isinstance(lines, list) or not lines:
        raise ValueError('lines are required')

    assert_project_access(project_id)
    get_cycle(org_id, cycle_id, project_id=project_id)

    posted = post_opening_balance(org_id, project_id, cycle_id, lines, user_id=current_user.id)
    log_action(f'Posted opening balance for project {project_id} cycle {cycle_id} ({len(posted)} movement(s))')
    db.session.commit()

    balances = list_balances(org_id, project_id, cycle_id)
    return jsonify({'status': 'success', 'balances': [b.to_dict() for b in balances]})


@inventory_bp.route('/adjustments', methods=['POST'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def adjust_stock():
    """Signed stock correction in an open cycle (ADJUSTMENT_IN / ADJUSTMENT_OUT)."""
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}
    project_id = safe_int(data.get('project_id'))
    cycle_id = safe_int(data.get('cycle_id'))
    variant_id = safe_int(data.get('inventory_item_variant_id'))
    qty = safe_int(data.get('quantity_delta'))
    if not project_id or not cycle_id:
        raise ValueError('project_id and cycle_id are required')
    if not variant_id:
        raise ValueError('inventory_item_variant_id is required')
    if not qty:
        raise ValueError('quantity_delta must be a non-zero whole number')

    assert_project_access(project_id)
    get_cycle(org_id, cycle_id, project_id=project_id)
    assert_cycle_not_inventory_locked(cycle_id, org_id)

    tx = post_movement_by_variant(
        org_id, project_id, cycle_id, variant_id, qty,
        ADJUSTMENT_IN if qty > 0 else ADJUSTMENT_OUT,
        unit_cost=data.get('unit_cost') if qty > 0 else None,
        source_type='adjustment',
        notes=data.get('notes') if isinstance(data.get('notes'), str) else None,
        created_by=current_user.id,
    )
    if tx is None:
        raise LookupError(f'Inventory variant {variant_id} not found')
    log_action(f'Inventory adjustment {qty:+d} on variant {variant_id} (cycle {cycle_id})')
    db.session.commit()
    return jsonify({'status': 'success', 'transaction': tx.to_dict()}), 201


@inventory_bp.route('/balances', methods=['GET'])
@login_required
@json_errors
def balances():
    org_id = current_org_id()
    project_id, cycle_id = _project_cycle_args(request.args)
    if not project_id:
        raise ValueError('project_id and cycle_id are required')
    assert_project_access(project_id)

    valuation = inventory_valuation(org_id, project_id, cycle_id,
                                    type_code=(request.args.get('type_code') or '').strip() or None)
    lines = [dict(line, avg_unit_cost=money_str(line['avg_unit_cost']), value=money_str(line['value']))
             for line in valuation['lines']]
    return jsonify({
        'status': 'success',
        'balances': lines,
        'total_quantity': valuation['total_quantity'],
        'total_value': money_str(valuation['total_value']),
    })


@inventory_bp.route('/log', methods=['GET'])
@login_required
@json_errors
def inventory_log():
    org_id = current_org_id()
    project_id, cycle_id = _project_cycle_args(request.args)
    type_code = (request.args.get('type_code') or '').strip().upper()
    variant_id = safe_int(request.args.get('inventory_item_variant_id'))

    default_limit = current_app.config.get('INVENTORY_LOG_LIMIT', 200)
    max_limit = current_app.config.get('INVENTORY_LOG_MAX_LIMIT', 5000)
    limit = safe_int(request.args.get('limit'), default_limit)
    if limit is None:
        limit = default_limit
    limit = min(max(limit, 1), max_limit)

    query = InventoryItemTransaction.query.filter(InventoryItemTransaction.organization_id == org_id)
    if project_id:
        assert_project_access(project_id)
        query = query.filter(InventoryItemTransaction.project_id == project_id,
                             InventoryItemTransaction.cycle_id == cycle_id)
    else:
        allowed = accessible_project_ids(current_user)
        if allowed is not None:
            query = query.filter(InventoryItemTransaction.project_id.in_(allowed or [0]))
    if type_code:
        query = (query.join(InventoryItem, InventoryItem.id == InventoryItemTransaction.inventory_item_id)
                 .join(InventoryItemType, InventoryItemType.id == InventoryItem.inventory_item_type_id)
                 .filter(InventoryItemType.code == type_code))
    if variant_id:
        query = query.filter(InventoryItemTransaction.inventory_item_variant_id == variant_id)

    rows = (query.order_by(InventoryItemTransaction.created_at.desc(), InventoryItemTransaction.id.desc())
            .limit(limit).all())
    return jsonify({'status': 'success', 'transactions': [t.to_dict() for t in rows], 'limit': limit})
