from flask import Blueprint, request, jsonify, Response
from flask_login import login_required, current_user
from sqlalchemy import func
from models import db, Sale, Expense, Cycle, Project, InventoryItemTransaction, money_str
from routes.decorators import json_errors, assert_project_access, accessible_project_ids, current_org_id
from routes.cycle_lock import get_cycle
from routes.projects import project_currency
from routes.inventory_utils import inventory_valuation, OPENING_BALANCE, PURCHASE_RECEIPT, REVERSAL
from routes.formulas import (calc_net_sales, calc_purchases_value, calc_cogs_for_period, calc_gross_profit,
                             calc_net_profit, calc_remaining_budget, calc_expense_totals)
from routes.utils import safe_int, to_decimal
from decimal import Decimal
import io
import csv

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


def _cycle_from_args():
    org_id = current_org_id()
    project_id = safe_int(request.args.get('project_id'))
    cycle_id = safe_int(request.args.get('cycle_id'))
    if not project_id or not cycle_id:
        raise ValueError('project_id and cycle_id are required')
    assert_project_access(project_id)
    return get_cycle(org_id, cycle_id, project_id=project_id)


def beginning_inventory_value(cycle):
    """Value of the cycle's OPENING_BALANCE movements (qty x unit cost, unknown cost = 0)."""
    rows = InventoryItemTransaction.query.filter_by(
        organization_id=cycle.organization_id, project_id=cycle.project_id,
        cycle_id=cycle.id, transaction_type=OPENING_BALANCE,
    ).all()
    total = Decimal('0.00')
    for tx in rows:
        total += to_decimal(to_decimal(tx.unit_cost) * int(tx.quantity_delta or 0))
    return total


def cycle_profit_and_loss(cycle):
    """
    Periodic-inventory P&L for one cycle.

    COGS = beginning inventory + purchases - ending inventory; operating
    expenses are the cycle's expenses that did not go into stock.
    """
    org_id, project_id = cycle.organization_id, cycle.project_id

    sales = Sale.query.filter_by(organization_id=org_id, project_id=project_id, cycle_id=cycle.id).all()
    net_sales = calc_net_sales(sales)

    purchase_rows = InventoryItemTransaction.query.filter(
        InventoryItemTransaction.organization_id == org_id,
        InventoryItemTransaction.project_id == project_id,
        InventoryItemTransaction.cycle_id == cycle.id,
        InventoryItemTransaction.transaction_type.in_((PURCHASE_RECEIPT, REVERSAL)),
    ).all()
    purchases = calc_purchases_value(purchase_rows)
    beginning = beginning_inventory_value(cycle)
    ending = inventory_valuation(org_id, project_id, cycle.id)['total_value']
    cogs = calc_cogs_for_period(beginning, ending, purchase_rows)
    gross_profit = calc_gross_profit(net_sales, cogs)

    expenses = Expense.query.filter_by(organization_id=org_id, project_id=project_id, cycle_id=cycle.id).all()
    operating = [e for e in expenses if not e.is_inventory_purchase]
    cogs_category_total, other_total = calc_expense_totals(operating)
    operating_expenses = cogs_category_total + other_total
    total_expenses = sum((to_decimal(e.amount) for e in expenses), Decimal('0.00'))

    return {
        'cycle_id': cycle.id,
        'project_id': project_id,
        'currency_code': project_currency(cycle.project),
        'net_sales': net_sales,
        'beginning_inventory': beginning,
        'purchases': purchases,
        'ending_inventory': ending,
        'cogs': cogs,
        'gross_profit': gross_profit,
        'operating_expenses': operating_expenses,
        'operating_expenses_in_cogs_categories': cogs_category_total,
        'net_profit': calc_net_profit(gross_profit, operating_expenses),
        'budget_allotment': to_decimal(cycle.budget_allotment),
        'total_expenses': total_expenses,
        'remaining_budget': calc_remaining_budget(cycle.budget_allotment, total_expenses),
    }


@reports_bp.route('/profit-and-loss', methods=['GET'])
@login_required
@json_errors
def profit_and_loss():
    report = cycle_profit_and_loss(_cycle_from_args())
    return jsonify({'status': 'success', 'report': {
        k: (money_str(v) if isinstance(v, Decimal) else v) for k, v in report.items()
    }})


@reports_bp.route('/inventory-valuation', methods=['GET'])
@login_required
@json_errors
def valuation():
    cycle = _cycle_from_args()
    result = inventory_valuation(cycle.organization_id, cycle.project_id, cycle.id,
                                 type_code=(request.args.get('type_code') or '').strip() or None)
    return jsonify({
        'status': 'success',
        'lines': [dict(line, avg_unit_cost=money_str(line['avg_unit_cost']), value=money_str(line['value']))
                  for line in result['lines']],
        'total_quantity': result['total_quantity'],
        'total_value': money_str(result['total_value']),
    })


@reports_bp.route('/inventory-valuation/export', methods=['GET'])
@login_required
@json_errors
def export_valuation():
    cycle = _cycle_from_args()
    result = inventory_valuation(cycle.organization_id, cycle.project_id, cycle.id)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['Item', 'Type', 'Variant', 'Quantity On Hand', 'Avg Unit Cost', 'Value'])
    for line in result['lines']:
        writer.writerow([
            line['item_name'], line['type_code'], line['variant_label'] or '',
            line['quantity_on_hand'], money_str(line['avg_unit_cost']) or '', money_str(line['value']),
        ])
    writer.writerow(['TOTAL', '', '', result['total_quantity'], '', money_str(result['total_value'])])

    filename = f'inventory_valuation_cycle_{cycle.id}.csv'
    return Response(
        output.getvalue(),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )


def _totals_by(column, model, org_id, **filters):
    """{column value: sum(amount)} for one organization's sales or expenses."""
    query = db.session.query(column, func.coalesce(func.sum(model.amount), 0)).filter(
        model.organization_id == org_id)
    for name, value in filters.items():
        if value:
            query = query.filter(getattr(model, name) == value)
    return {key: to_decimal(total) for key, total in query.group_by(column).all()}


def _scoped_project_ids(project_id):
    """Project ids the report covers; None means every project of the organization."""
    if project_id:
        assert_project_access(project_id)
        return {project_id}
    return accessible_project_ids(current_user)


def budget_vs_actual(org_id, project_id=None):
    """Per cycle: budget, total expenses, total sales and budget - expenses."""
    allowed = _scoped_project_ids(project_id)
    query = Cycle.query.filter(Cycle.organization_id == org_id)
    if allowed is not None:
        query = query.filter(Cycle.project_id.in_(allowed or [0]))
    cycles = query.order_by(Cycle.start_date.isnot(None), Cycle.start_date.asc(), Cycle.id.asc()).all()

    expenses = _totals_by(Expense.cycle_id, Expense, org_id, project_id=project_id)
    revenue = _totals_by(Sale.cycle_id, Sale, org_id, project_id=project_id)
    rows = []
    for cycle in cycles:
        budget = to_decimal(cycle.budget_allotment)
        actual_expenses = expenses.get(cycle.id, Decimal('0.00'))
        rows.append({
            'cycle_id': cycle.id,
            'cycle_name': cycle.cycle_name,
            'project_id': cycle.project_id,
            'budget': budget,
            'actual_expenses': actual_expenses,
            'actual_revenue': revenue.get(cycle.id, Decimal('0.00')),
            'variance': calc_remaining_budget(budget, actual_expenses),
        })
    return rows


def profit_and_loss_by_project(org_id, project_id=None, cycle_id=None):
    """Per project: total sales, total expenses and their difference, optionally for one cycle."""
    allowed = _scoped_project_ids(project_id)
    query = Project.query.filter(Project.organization_id == org_id)
    if allowed is not None:
        query = query.filter(Project.id.in_(allowed or [0]))
    projects = query.order_by(Project.name.asc()).all()

    revenue = _totals_by(Sale.project_id, Sale, org_id, project_id=project_id, cycle_id=cycle_id)
    expenses = _totals_by(Expense.project_id, Expense, org_id, project_id=project_id, cycle_id=cycle_id)
    rows = []
    for project in projects:
        total_revenue = revenue.get(project.id, Decimal('0.00'))
        total_expenses = expenses.get(project.id, Decimal('0.00'))
        rows.append({
            'project_id': project.id,
            'project_name': project.name,
            'currency_code': project_currency(project),
            'total_revenue': total_revenue,
            'total_expenses': total_expenses,
            'net_profit': total_revenue - total_expenses,
        })
    return rows


def _money_rows(rows):
    return [{k: (money_str(v) if isinstance(v, Decimal) else v) for k, v in row.items()} for row in rows]


@reports_bp.route('/budget-vs-actual', methods=['GET'])
@login_required
@json_errors
def budget_vs_actual_report():
    rows = budget_vs_actual(current_org_id(), project_id=safe_int(request.args.get('project_id')))
    return jsonify({'status': 'success', 'data': _money_rows(rows)})


@reports_bp.route('/pnl-by-project', methods=['GET'])
@login_required
@json_errors
def pnl_by_project_report():
    rows = profit_and_loss_by_project(current_org_id(),
                                      project_id=safe_int(request.args.get('project_id')),
                                      cycle_id=safe_int(request.args.get('cycle_id')))
    return jsonify({'status': 'success', 'data': _money_rows(rows)})
