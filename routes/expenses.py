from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from models import db, Expense, ExpenseCategory, Product
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id
from routes.cycle_lock import assert_cycle_not_inventory_locked, get_cycle
from routes.inventory_utils import post_movement, post_movement_by_variant, PURCHASE_RECEIPT, REVERSAL
from routes.products import find_product_variant
from routes.utils import log_action, safe_int, to_decimal, optional_decimal, paginate_query, parse_datetime
from extensions import limiter
from datetime import datetime
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

expenses_bp = Blueprint('expenses', __name__, url_prefix='/api/expenses')

SOURCE_TYPE = 'expense'


def compute_expense_amount(amount, inventory_quantity, inventory_unit_cost):
    """qty x unit cost for an inventory purchase, otherwise the amount as given."""
    qty = safe_int(inventory_quantity, 0) or 0
    cost = to_decimal(inventory_unit_cost)
    if qty > 0 and cost > 0:
        return to_decimal(cost * qty)
    return to_decimal(amount)


def _bump_legacy_stock(expense, qty):
    if expense.product_id:
        product = Product.query.filter_by(id=expense.product_id,
                                          organization_id=expense.organization_id).first()
        if not product:
            raise LookupError('Failed to update product stock. Product not found or permission denied.')
        product.quantity_in_stock = (product.quantity_in_stock or 0) + qty
    if expense.variant_id:
        variant = find_product_variant(expense.organization_id, expense.product_id, expense.variant_id)
        variant.quantity_in_stock = (variant.quantity_in_stock or 0) + qty


def _post_expense_movement(expense, qty, transaction_type, notes):
    kwargs = dict(unit_cost=expense.inventory_unit_cost, source_type=SOURCE_TYPE, source_id=expense.id,
                  notes=notes, created_by=current_user.id)
    if expense.inventory_item_variant_id:
        return post_movement_by_variant(expense.organization_id, expense.project_id, expense.cycle_id,
                                        expense.inventory_item_variant_id, qty, transaction_type, **kwargs)
    if expense.product_id:
        return post_movement(expense.organization_id, expense.project_id, expense.cycle_id,
                             expense.product_id, qty, transaction_type,
                             product_variant_id=expense.variant_id, **kwargs)
    return None


def apply_expense_inventory(expense):
    """Receive an inventory-linked expense into stock (legacy counters plus PURCHASE_RECEIPT)."""
    if not expense.is_inventory_purchase:
        return None
    qty = int(expense.inventory_quantity)
    _bump_legacy_stock(expense, qty)
    return _post_expense_movement(expense, qty, PURCHASE_RECEIPT,
                                  expense.description or expense.expense_name)


def reverse_expense_inventory(expense, reason):
    """Undo apply_expense_inventory for the expense's current field values."""
    if not expense.is_inventory_purchase:
        return None
    qty = int(expense.inventory_quantity)
    _bump_legacy_stock(expense, -qty)
    return _post_expense_movement(expense, -qty, REVERSAL,
                                  f'Reversal for expense #{expense.id} ({reason})')


def _apply_payload(expense, data):
    """Copy request fields onto the expense; returns nothing, raises ValueError on bad input."""
    org_id = expense.organization_id
    if 'project_id' in data:
        expense.project_id = safe_int(data.get('project_id'))
    if 'cycle_id' in data:
        expense.cycle_id = safe_int(data.get('cycle_id'))
    if 'category_id' in data:
        category_id = safe_int(data.get('category_id'))
        if category_id and not ExpenseCategory.query.filter_by(id=category_id, organization_id=org_id).first():
            raise LookupError('Expense category not found')
        expense.category_id = category_id
    for field in ('expense_name', 'description'):
        if field in data:
            setattr(expense, field, data.get(field) or None)
    for field in ('product_id', 'variant_id', 'inventory_item_variant_id'):
        if field in data:
            setattr(expense, field, safe_int(data.get(field)))
    if 'inventory_quantity' in data:
        qty = safe_int(data.get('inventory_quantity'), 0) or 0
        if qty < 0:
            raise ValueError('inventory_quantity cannot be negative')
        expense.inventory_quantity = qty or None
    if 'inventory_unit_cost' in data:
        cost = optional_decimal(data.get('inventory_unit_cost'))
        if cost is not None and cost < 0:
            raise ValueError('inventory_unit_cost cannot be negative')
        expense.inventory_unit_cost = cost or None
    if 'expense_date' in data or 'date_time_created' in data:
        expense.expense_date = parse_datetime(data.get('expense_date', data.get('date_time_created')),
                                              'expense_date') or datetime.utcnow()

    amount = compute_expense_amount(data.get('amount', expense.amount),
                                    expense.inventory_quantity, expense.inventory_unit_cost)
    if amount < 0:
        raise ValueError('amount cannot be negative')
    expense.amount = amount

    if expense.variant_id and not expense.product_id:
        raise ValueError('variant_id requires product_id')
    if expense.project_id:
        assert_project_access(expense.project_id)
    if expense.cycle_id:
        if not expense.project_id:
            raise ValueError('cycle_id requires project_id')
        get_cycle(org_id, expense.cycle_id, project_id=expense.project_id)


def _get_expense(expense_id):
    expense = Expense.query.filter_by(id=expense_id, organization_id=current_org_id()).first()
    if not expense:
        raise LookupError('Expense not found')
    if expense.project_id:
        assert_project_access(expense.project_id)
    return expense


@expenses_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_expenses():
    org_id = current_org_id()
    query = Expense.query.filter(Expense.organization_id == org_id)
    project_id = safe_int(request.args.get('project_id'))
    cycle_id = safe_int(request.args.get('cycle_id'))
    if project_id:
        assert_project_access(project_id)
        query = query.filter(Expense.project_id == project_id)
    else:
        allowed = accessible_project_ids(current_user)
        if allowed is not None:
            query = query.filter(Expense.project_id.in_(allowed or [0]))
    if cycle_id:
        query = query.filter(Expense.cycle_id == cycle_id)

    pagination = paginate_query(query.order_by(Expense.expense_date.desc(), Expense.id.desc()), per_page=50)
    return jsonify({
        'status': 'success',
        'expenses': [e.to_dict() for e in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
    })


@expenses_bp.route('', methods=['POST'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def create_expense():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}

    expense = Expense(organization_id=org_id, amount=Decimal('0.00'), created_by=current_user.id,
                      expense_date=datetime.utcnow())
    _apply_payload(expense, data)
    assert_cycle_not_inventory_locked(expense.cycle_id, org_id)

    db.session.add(expense)
    db.session.flush()
    apply_expense_inventory(expense)

    log_action(f'Recorded expense #{expense.id} "{expense.expense_name or ""}" for {expense.amount}')
    db.session.commit()
    return jsonify({'status': 'success', 'expense': expense.to_dict()}), 201


@expenses_bp.route('/<int:expense_id>', methods=['PUT', 'PATCH'])
@login_required
@limiter.limit("60 per minute")
@json_errors
def update_expense(expense_id):
    data = request.get_json(silent=True) or {}
    expense = _get_expense(expense_id)
    org_id = expense.organization_id

    assert_cycle_not_inventory_locked(expense.cycle_id, org_id)
    target_cycle_id = safe_int(data.get('cycle_id')) if 'cycle_id' in data else expense.cycle_id
    assert_cycle_not_inventory_locked(target_cycle_id, org_id)

    # Undo the original stock impact with the original fields, then reapply with the new ones
    reverse_expense_inventory(expense, 'update')
    _apply_payload(expense, data)
    apply_expense_inventory(expense)

    log_action(f'Updated expense #{expense.id}')
    db.session.commit()
    return jsonify({'status': 'success', 'expense': expense.to_dict()})


@expenses_bp.route('/<int:expense_id>', methods=['DELETE'])
@login_required
@json_errors
def delete_expense(expense_id):
    expense = _get_expense(expense_id)
    assert_cycle_not_inventory_locked(expense.cycle_id, expense.organization_id)

    reverse_expense_inventory(expense, 'delete')
    db.session.delete(expense)
    log_action(f'Deleted expense #{expense_id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Expense deleted successfully'})


@expenses_bp.route('/categories', methods=['GET'])
@login_required
@json_errors
def list_categories():
    org_id = current_org_id()
    query = ExpenseCategory.query.filter_by(organization_id=org_id)
    project_id = safe_int(request.args.get('project_id'))
    if project_id:
        assert_project_access(project_id)
        query = query.filter((ExpenseCategory.project_id == project_id) | (ExpenseCategory.project_id.is_(None)))
    categories = query.order_by(ExpenseCategory.category_name.asc()).all()
    return jsonify({'status': 'success', 'categories': [
        {'id': c.id, 'project_id': c.project_id, 'category_name': c.category_name, 'is_cogs': c.is_cogs}
        for c in categories
    ]})


@expenses_bp.route('/categories', methods=['POST'])
@login_required
@json_errors
def create_category():
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}
    name = (data.get('category_name') or '').strip()
    if not name:
        raise ValueError('category_name is required')
    project_id = safe_int(data.get('project_id'))
    if project_id:
        assert_project_access(project_id)
    category = ExpenseCategory(organization_id=org_id, project_id=project_id,
                               category_name=name, is_cogs=bool(data.get('is_cogs')))
    db.session.add(category)
    log_action(f'Added expense category "{name}"')
    db.session.commit()
    return jsonify({'status': 'success', 'category': {
        'id': category.id, 'project_id': category.project_id,
        'category_name': category.category_name, 'is_cogs': category.is_cogs,
    }}), 201
