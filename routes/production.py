from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from models import db, ProductionOrder, ProductionOrderInput, InventoryItemVariant, InventoryItem
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id
from routes.cycle_lock import assert_cycle_not_inventory_locked, get_cycle
from routes.inventory_utils import (post_movement_by_variant, get_balance,
                                    PRODUCTION_ISSUE, PRODUCTION_RECEIPT)
from routes.utils import log_action, safe_int, optional_decimal, to_decimal
from extensions import limiter
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
import logging

logger = logging.getLogger(__name__)

production_bp = Blueprint('production', __name__, url_prefix='/api/production-orders')

DRAFT = 'DRAFT'
IN_PROGRESS = 'IN_PROGRESS'
COMPLETED = 'COMPLETED'
CANCELLED = 'CANCELLED'
STATUSES = (DRAFT, IN_PROGRESS, COMPLETED, CANCELLED)

SOURCE_TYPE = 'production_order'


def parse_input_lines(raw_inputs):
    """Keep lines with a variant and a positive whole quantity; drop the rest."""
    lines = []
    for raw in raw_inputs or []:
        if not isinstance(raw, dict):
            continue
        variant_id = safe_int(raw.get('input_inventory_item_variant_id'))
        qty = safe_int(raw.get('quantity_required'))
        if not variant_id or not qty or qty <= 0:
            continue
        override = optional_decimal(raw.get('unit_cost_override'))
        lines.append({
            'input_inventory_item_variant_id': variant_id,
            'quantity_required': qty,
            'unit_cost_override': override if override else None,
            'notes': raw.get('notes') if isinstance(raw.get('notes'), str) else None,
        })
    return lines


def _require_variant(organization_id, variant_id, label):
    variant = (db.session.query(InventoryItemVariant)
               .join(InventoryItem, InventoryItem.id == InventoryItemVariant.inventory_item_id)
               .filter(InventoryItemVariant.id == variant_id,
                       InventoryItem.organization_id == organization_id)
               .first())
    if not variant:
        raise LookupError(f'{label} inventory variant {variant_id} not found')
    return variant


def _replace_inputs(order, lines):
    order.inputs.clear()
    for line in lines:
        _require_variant(order.organization_id, line['input_inventory_item_variant_id'], 'Input')
        order.inputs.append(ProductionOrderInput(**line))


def resolve_input_unit_cost(order, line):
    """Override, else the cycle's moving average, else the variant's standard cost, else 0."""
    if line.unit_cost_override:
        return to_decimal(line.unit_cost_override)
    balance = get_balance(order.organization_id, order.project_id, order.cycle_id,
                          line.input_inventory_item_variant_id)
    if balance is not None and balance.avg_unit_cost:
        return to_decimal(balance.avg_unit_cost)
    variant = db.session.get(InventoryItemVariant, line.input_inventory_item_variant_id)
    if variant is not None and variant.unit_cost:
        return to_decimal(variant.unit_cost)
    return Decimal('0.00')


def complete_production_order(order, user_id=None):
    """
    Consume the bill of materials and receive the output at the rolled-up cost.

    Posts one PRODUCTION_ISSUE per input line and one PRODUCTION_RECEIPT, then
    stamps output_unit_cost and completed_at.
    """
    lines = [line for line in order.inputs if (line.quantity_required or 0) > 0]
    if not lines:
        raise ValueError('inputs are required')
    if not order.output_quantity or order.output_quantity <= 0:
        raise ValueError('output_quantity must be a positive whole number')

    costs = [(line, resolve_input_unit_cost(order, line)) for line in lines]
    total_cost = sum((cost * line.quantity_required for line, cost in costs), Decimal('0.00'))
    output_unit_cost = (total_cost / order.output_quantity).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

    for line, cost in costs:
        post_movement_by_variant(
            order.organization_id, order.project_id, order.cycle_id,
            line.input_inventory_item_variant_id, -line.quantity_required, PRODUCTION_ISSUE,
            unit_cost=cost, source_type=SOURCE_TYPE, source_id=order.id,
            notes=order.notes, created_by=user_id,
        )

    post_movement_by_variant(
        order.organization_id, order.project_id, order.cycle_id,
        order.output_inventory_item_variant_id, order.output_quantity, PRODUCTION_RECEIPT,
        unit_cost=output_unit_cost, source_type=SOURCE_TYPE, source_id=order.id,
        notes=order.notes, created_by=user_id,
    )

    order.output_unit_cost = output_unit_cost
    order.completed_at = datetime.utcnow()
    order.status = COMPLETED
    logger.info("Production order %s completed: %d x variant %s at %s (inputs total %s)",
                order.id, order.output_quantity, order.output_inventory_item_variant_id,
                output_unit_cost, total_cost)
    return order


def _get_order(order_id):
    order = ProductionOrder.query.filter_by(id=order_id, organization_id=current_org_id()).first()
    if not order:
        raise LookupError('Production order not found')
    assert_project_access(order.project_id)
    return order


@production_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_orders():
    org_id = current_org_id()
    query = ProductionOrder.query.filter_by(organization_id=org_id)

    order_id = safe_int(request.args.get('id'))
    project_id = safe_int(request.args.get('project_id'))
    cycle_id = safe_int(request.args.get('cycle_id'))
    if order_id:
        query = query.filter(ProductionOrder.id == order_id)
    if project_id:
        assert_project_access(project_id)
        query = query.filter(ProductionOrder.project_id == project_id)
    else:
        allowed = accessible_project_ids(current_user)
        if allowed is not None:
            if not allowed:
                return jsonify({'status': 'success', 'orders': []})
            query = query.filter(ProductionOrder.project_id.in_(allowed))
    if cycle_id:
        query = query.filter(ProductionOrder.cycle_id == cycle_id)

    orders = query.order_by(ProductionOrder.created_at.desc(), ProductionOrder.id.desc()).all()
    return jsonify({'status': 'success', 'orders': [o.to_dict() for o in orders]})


@production_bp.route('/<int:order_id>', methods=['GET'])
@login_required
@json_errors
def get_order(order_id):
    return jsonify({'status': 'success', 'order': _get_order(order_id).to_dict()})


@production_bp.route('', methods=['POST'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def create_order():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}

    project_id = safe_int(data.get('project_id'))
    cycle_id = safe_int(data.get('cycle_id'))
    output_variant_id = safe_int(data.get('output_inventory_item_variant_id'))
    output_qty = safe_int(data.get('output_quantity'))
    lines = parse_input_lines(data.get('inputs'))

    if not project_id:
        raise ValueError('project_id is required')
    if not cycle_id:
        raise ValueError('cycle_id is required')
    if not output_variant_id:
        raise ValueError('output_inventory_item_variant_id is required')
    if not output_qty or output_qty <= 0:
        raise ValueError('output_quantity is required')
    if not lines:
        raise ValueError('inputs are required')

    assert_project_access(project_id)
    get_cycle(org_id, cycle_id, project_id=project_id)
    assert_cycle_not_inventory_locked(cycle_id, org_id)
    _require_variant(org_id, output_variant_id, 'Output')

    order = ProductionOrder(
        organization_id=org_id,
        project_id=project_id,
        cycle_id=cycle_id,
        status=DRAFT,
        output_inventory_item_variant_id=output_variant_id,
        output_quantity=output_qty,
        notes=data.get('notes') if isinstance(data.get('notes'), str) else None,
        created_by=current_user.id,
    )
    db.session.add(order)
    _replace_inputs(order, lines)
    db.session.flush()

    log_action(f'Created production order #{order.id} ({output_qty} x variant {output_variant_id})')
    db.session.commit()
    return jsonify({'status': 'success', 'order': order.to_dict()}), 201


@production_bp.route('/<int:order_id>', methods=['PUT', 'PATCH'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def update_order(order_id):
    data = request.get_json(silent=True) or {}
    order = _get_order(order_id)
    assert_cycle_not_inventory_locked(order.cycle_id, order.organization_id)

    current_status = order.status or DRAFT
    next_status = data.get('status')
    if next_status is not None:
        next_status = str(next_status).strip().upper()
        if next_status not in STATUSES:
            raise ValueError(f'Invalid status: {next_status}')
        if current_status == COMPLETED and next_status != COMPLETED:
            raise ValueError('Cannot change the status of a completed production order')

    if 'inputs' in data:
        if current_status == COMPLETED:
            raise ValueError('Cannot modify inputs for a completed production order')
        _replace_inputs(order, parse_input_lines(data.get('inputs')))

    if 'notes' in data:
        order.notes = data.get('notes') if isinstance(data.get('notes'), str) else None
    if 'output_inventory_item_variant_id' in data:
        if current_status == COMPLETED:
            raise ValueError('Cannot modify the output of a completed production order')
        variant_id = safe_int(data.get('output_inventory_item_variant_id'))
        if not variant_id:
            raise ValueError('output_inventory_item_variant_id is required')
        _require_variant(order.organization_id, variant_id, 'Output')
        order.output_inventory_item_variant_id = variant_id
    if 'output_quantity' in data:
        if current_status == COMPLETED:
            raise ValueError('Cannot modify the output of a completed production order')
        qty = safe_int(data.get('output_quantity'))
        if not qty or qty <= 0:
            raise ValueError('output_quantity must be a positive whole number')
        order.output_quantity = qty

    db.session.flush()
    if next_status == COMPLETED and current_status != COMPLETED:
        complete_production_order(order, user_id=current_user.id)
        log_action(f'Completed production order #{order.id} at unit cost {order.output_unit_cost}')
    elif next_status and next_status != current_status:
        order.status = next_status
        log_action(f'Production order #{order.id} status {current_status} -> {next_status}')

    db.session.commit()
    return jsonify({'status': 'success', 'order': order.to_dict()})


@production_bp.route('/<int:order_id>', methods=['DELETE'])
@login_required
@json_errors
def delete_order(order_id):
    order = _get_order(order_id)
    assert_cycle_not_inventory_locked(order.cycle_id, order.organization_id)
    if order.status == COMPLETED:
        raise ValueError('Completed production orders cannot be deleted')

    db.session.delete(order)
    log_action(f'Deleted production order #{order_id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Production order deleted successfully'})
