from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from models import db, Sale, Product
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id
from routes.cycle_lock import assert_cycle_not_inventory_locked, get_cycle
from routes.inventory_utils import (post_movement_by_variant, resolve_finished_goods_variant_id, get_balance,
                                    SALE_ISSUE, SALE_REVERSAL)
from routes.products import find_product_variant
from routes.formulas import calc_sale_total, calc_balance, calc_sale_status_from_balance, PENDING, COMPLETED
from routes.utils import log_action, safe_int, to_decimal, optional_decimal, paginate_query, parse_datetime
from extensions import limiter
from datetime import datetime
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

sales_bp = Blueprint('sales', __name__, url_prefix='/api/sales')

SOURCE_TYPE = 'sale'


def _bump_legacy_stock(sale, qty):
    if sale.product_id:
        product = Product.query.filter_by(id=sale.product_id, organization_id=sale.organization_id).first()
        if not product:
            raise LookupError('Product not found')
        product.quantity_in_stock = (product.quantity_in_stock or 0) + qty
    if sale.variant_id:
        variant = find_product_variant(sale.organization_id, sale.product_id, sale.variant_id)
        variant.quantity_in_stock = (variant.quantity_in_stock or 0) + qty


def issue_sale_stock(sale, unit_cost_given=False):
    """
    Take a sale's quantity out of stock.

    The SALE_ISSUE is costed at the cycle's moving average; when the caller did
    not supply a unit cost the sale records that average as its own.
    """
    _bump_legacy_stock(sale, -sale.quantity)
    variant_id = resolve_finished_goods_variant_id(sale.organization_id, sale.product_id, sale.variant_id)
    sale.inventory_item_variant_id = variant_id
    if not variant_id:
        return None

    balance = get_balance(sale.organization_id, sale.project_id, sale.cycle_id, variant_id)
    avg_cost = balance.avg_unit_cost if balance is not None else None
    if not unit_cost_given and avg_cost:
        sale.unit_cost = avg_cost
    return post_movement_by_variant(
        sale.organization_id, sale.project_id, sale.cycle_id, variant_id, -sale.quantity, SALE_ISSUE,
        unit_cost=avg_cost, source_type=SOURCE_TYPE, source_id=sale.id,
        notes=f'Sale #{sale.id}' + (f' to {sale.customer_name}' if sale.customer_name else ''),
        created_by=current_user.id,
    )


def reverse_sale_stock(sale, reason):
    _bump_legacy_stock(sale, sale.quantity)
    if not sale.inventory_item_variant_id:
        return None
    return post_movement_by_variant(
        sale.organization_id, sale.project_id, sale.cycle_id, sale.inventory_item_variant_id,
        sale.quantity, SALE_REVERSAL,
        unit_cost=sale.unit_cost, source_type=SOURCE_TYPE, source_id=sale.id,
        notes=f'Reversal for sale #{sale.id} ({reason})',
        created_by=current_user.id,
    )


def _apply_payload(sale, data):
    """Copy request fields onto the sale and recompute amount, balance and status."""
    if 'project_id' in data:
        sale.project_id = safe_int(data.get('project_id'))
    if 'cycle_id' in data:
        sale.cycle_id = safe_int(data.get('cycle_id'))
    if 'product_id' in data:
        sale.product_id = safe_int(data.get('product_id'))
    if 'variant_id' in data:
        sale.variant_id = safe_int(data.get('variant_id'))
    if 'customer' in data or 'customer_name' in data:
        sale.customer_name = data.get('customer', data.get('customer_name')) or None
    if 'quantity' in data:
        qty = safe_int(data.get('quantity'))
        if not qty or qty <= 0:
            raise ValueError('quantity must be a positive whole number')
        sale.quantity = qty
    if 'price' in data:
        sale.price = to_decimal(data.get('price'))
    if 'unit_cost' in data:
        sale.unit_cost = to_decimal(data.get('unit_cost'))
    if 'cash_at_hand' in data:
        sale.cash_at_hand = to_decimal(data.get('cash_at_hand'))
    if 'sale_date' in data:
        sale.sale_date = parse_datetime(data.get('sale_date'), 'sale_date') or datetime.utcnow()

    if not sale.quantity or sale.quantity <= 0:
        raise ValueError('quantity must be a positive whole number')
    if to_decimal(sale.price) < 0 or to_decimal(sale.unit_cost) < 0 or to_decimal(sale.cash_at_hand) < 0:
        raise ValueError('price, unit_cost and cash_at_hand cannot be negative')
    if sale.variant_id and not sale.product_id:
        raise ValueError('variant_id requires product_id')

    sale.amount = calc_sale_total(sale.quantity, sale.price)
    sale.balance = calc_balance(sale.amount, sale.cash_at_hand)
    status = data.get('status')
    if status:
        status = str(status).strip().lower()
        if status not in (PENDING, COMPLETED):
            raise ValueError(f'Invalid status: {status}')
        sale.status = status
    else:
        sale.status = calc_sale_status_from_balance(sale.balance)

    if sale.project_id:
        assert_project_access(sale.project_id)
    if sale.cycle_id:
        if not sale.project_id:
            raise ValueError('cycle_id requires project_id')
        get_cycle(sale.organization_id, sale.cycle_id, project_id=sale.project_id)


def _get_sale(sale_id):
    sale = Sale.query.filter_by(id=sale_id, organization_id=current_org_id()).first()
    if not sale:
        raise LookupError('Sale not found')
    if sale.project_id:
        assert_project_access(sale.project_id)
    return sale


def _unit_cost_given(data):
    return optional_decimal(data.get('unit_cost')) not in (None, Decimal('0.00'))


@sales_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_sales():
    org_id = current_org_id()
    query = Sale.query.filter(Sale.organization_id == org_id)
    project_id = safe_int(request.args.get('project_id'))
    cycle_id = safe_int(request.args.get('cycle_id'))
    if project_id:
        assert_project_access(project_id)
        query = query.filter(Sale.project_id == project_id)
    else:
        allowed = accessible_project_ids(current_user)
        if allowed is not None:
            query = query.filter(Sale.project_id.in_(allowed or [0]))
    if cycle_id:
        query = query.filter(Sale.cycle_id == cycle_id)
    status = (request.args.get('status') or '').strip().lower()
    if status:
        query = query.filter(Sale.status == status)

    pagination = paginate_query(query.order_by(Sale.sale_date.desc(), Sale.id.desc()), per_page=50)
    return jsonify({
        'status': 'success',
        'sales': [s.to_dict() for s in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
    })


@sales_bp.route('', methods=['POST'])
@login_required
@limiter.limit("120 per minute")
@json_errors
def create_sale():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}

    sale = Sale(organization_id=org_id, created_by=current_user.id, sale_date=datetime.utcnow(),
                unit_cost=Decimal('0.00'), price=Decimal('0.00'), cash_at_hand=Decimal('0.00'))
    _apply_payload(sale, data)
    assert_cycle_not_inventory_locked(sale.cycle_id, org_id)

    db.session.add(sale)
    db.session.flush()
    issue_sale_stock(sale, unit_cost_given=_unit_cost_given(data))

    log_action(f'Recorded sale #{sale.id}: {sale.quantity} x product {sale.product_id} for {sale.amount}')
    db.session.commit()
    return jsonify({'status': 'success', 'sale': sale.to_dict()}), 201


@sales_bp.route('/<int:sale_id>', methods=['PUT', 'PATCH'])
@login_required
@limiter.limit("120 per minute")
@json_errors
def update_sale(sale_id):
    data = request.get_json(silent=True) or {}
    sale = _get_sale(sale_id)
    org_id = sale.organization_id

    assert_cycle_not_inventory_locked(sale.cycle_id, org_id)
    target_cycle_id = safe_int(data.get('cycle_id')) if 'cycle_id' in data else sale.cycle_id
    assert_cycle_not_inventory_locked(target_cycle_id, org_id)

    reverse_sale_stock(sale, 'update')
    _apply_payload(sale, data)
    issue_sale_stock(sale, unit_cost_given=_unit_cost_given(data))

    log_action(f'Updated sale #{sale.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'sale': sale.to_dict()})


@sales_bp.route('/<int:sale_id>', methods=['DELETE'])
@login_required
@json_errors
def delete_sale(sale_id):
    sale = _get_sale(sale_id)
    assert_cycle_not_inventory_locked(sale.cycle_id, sale.organization_id)

    reverse_sale_stock(sale, 'delete')
    db.session.delete(sale)
    log_action(f'Deleted sale #{sale_id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Sale deleted successfully'})
