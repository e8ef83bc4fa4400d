from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from models import db, Cycle, CycleBudgetTransaction
from routes.decorators import json_errors, assert_project_access, current_org_id, role_required
from routes.cycle_lock import (carry_forward_inventory, get_default_previous_cycle_id,
                               assert_cycle_not_inventory_locked, get_cycle)
from routes.utils import log_action, safe_int, to_decimal, parse_date
from extensions import limiter
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

cycles_bp = Blueprint('cycles', __name__, url_prefix='/api/cycles')

ALLOTMENT_SET = 'ALLOTMENT_SET'
BUDGET_ADJUSTMENT = 'BUDGET_ADJUSTMENT'


def record_budget_change(cycle, before, after, tx_type, notes=None, user_id=None):
    """Append a CycleBudgetTransaction for a budget move; no row when nothing changed."""
    before = to_decimal(before)
    after = to_decimal(after)
    if before == after:
        return None
    entry = CycleBudgetTransaction(
        organization_id=cycle.organization_id,
        project_id=cycle.project_id,
        cycle_id=cycle.id,
        type=tx_type,
        amount_delta=after - before,
        budget_before=before,
        budget_after=after,
        notes=notes,
        created_by=user_id,
    )
    db.session.add(entry)
    return entry


@cycles_bp.route('', methods=['GET'])
@login_required
@json_errors
def list_cycles():
    org_id = current_org_id()
    project_id = safe_int(request.args.get('project_id'))
    if not project_id:
        raise ValueError('project_id is required')
    assert_project_access(project_id)

    cycles = (Cycle.query.filter_by(organization_id=org_id, project_id=project_id)
              .order_by(Cycle.cycle_number.is_(None), Cycle.cycle_number.asc(), Cycle.id.asc())
              .all())
    return jsonify({'status': 'success', 'cycles': [c.to_dict() for c in cycles]})


@cycles_bp.route('/<int:cycle_id>', methods=['GET'])
@login_required
@json_errors
def get_cycle_view(cycle_id):
    cycle = get_cycle(current_org_id(), cycle_id)
    assert_project_access(cycle.project_id)
    return jsonify({'status': 'success', 'cycle': cycle.to_dict()})


@cycles_bp.route('', methods=['POST'])
@login_required
@limiter.limit("30 per minute")
@json_errors
def create_cycle():
    """
    Create a budget cycle.

    Optional carry_forward_inventory=true opens the cycle with the closing
    balances of carry_forward_from_cycle_id (or the latest earlier cycle) and
    locks that cycle's inventory.
    """
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}
    project_id = safe_int(data.get('project_id'))
    if not project_id:
        raise ValueError('Project ID is required')
    project = assert_project_access(project_id)

    budget = to_decimal(data.get('budget_allotment'))
    if budget < 0:
        raise ValueError('budget_allotment cannot be negative')

    cycle = Cycle(
        organization_id=org_id,
        project_id=project.id,
        cycle_number=safe_int(data.get('cycle_number')),
        cycle_name=(data.get('cycle_name') or None),
        start_date=parse_date(data.get('start_date'), 'start_date'),
        end_date=parse_date(data.get('end_date'), 'end_date'),
        budget_allotment=budget if budget > 0 else None,
        created_by=current_user.id,
    )
    if cycle.start_date and cycle.end_date and cycle.end_date < cycle.start_date:
        raise ValueError('end_date cannot be before start_date')
    db.session.add(cycle)
    db.session.flush()

    if budget > 0:
        record_budget_change(cycle, Decimal('0.00'), budget, ALLOTMENT_SET,
                             notes='Initial budget on cycle creation', user_id=current_user.id)

    carried = 0
    if data.get('carry_forward_inventory'):
        prev_id = safe_int(data.get('carry_forward_from_cycle_id'))
        if not prev_id:
            prev_id = get_default_previous_cycle_id(org_id, project.id, exclude_cycle_id=cycle.id)
        if prev_id:
            carried = carry_forward_inventory(cycle, prev_id, user_id=current_user.id)
        else:
            logger.info("No earlier cycle in project %s to carry inventory from", project.id)

    log_action(f'Created cycle #{cycle.id} "{cycle.cycle_name or cycle.cycle_number}" in project {project.id}'
               + (f' (carried {carried} balance(s) from cycle {cycle.carry_forward_from_cycle_id})'
                  if cycle.carry_forward_from_cycle_id else ''))
    db.session.commit()
    return jsonify({'status': 'success', 'cycle': cycle.to_dict(), 'carried_balances': carried}), 201


@cycles_bp.route('/<int:cycle_id>', methods=['PUT', 'PATCH'])
@login_required
@limiter.limit("30 per minute")
@json_errors
def update_cycle(cycle_id):
    org_id = current_org_id()
    data = request.get_json(silent=True) or {}
    cycle = get_cycle(org_id, cycle_id)
    assert_project_access(cycle.project_id)

    if 'cycle_number' in data:
        cycle.cycle_number = safe_int(data.get('cycle_number'))
    if 'cycle_name' in data:
        cycle.cycle_name = data.get('cycle_name') or None
    if 'start_date' in data:
        cycle.start_date = parse_date(data.get('start_date'), 'start_date')
    if 'end_date' in data:
        cycle.end_date = parse_date(data.get('end_date'), 'end_date')
    if cycle.start_date and cycle.end_date and cycle.end_date < cycle.start_date:
        raise ValueError('end_date cannot be before start_date')

    if 'budget_allotment' in data:
        new_budget = to_decimal(data.get('budget_allotment'))
        if new_budget < 0:
            raise ValueError('budget_allotment cannot be negative')
        before = to_decimal(cycle.budget_allotment)
        entry = record_budget_change(cycle, before, new_budget, BUDGET_ADJUSTMENT,
                                     notes=data.get('budget_notes') or 'Budget updated',
                                     user_id=current_user.id)
        cycle.budget_allotment = new_budget
        if entry is not None:
            log_action(f'Cycle #{cycle.id} budget {before} -> {new_budget}')

    db.session.commit()
    return jsonify({'status': 'success', 'cycle': cycle.to_dict()})


@cycles_bp.route('/<int:cycle_id>', methods=['DELETE'])
@login_required
@role_required('admin')
@json_errors
def delete_cycle(cycle_id):
    org_id = current_org_id()
    cycle = get_cycle(org_id, cycle_id)
    assert_project_access(cycle.project_id)
    assert_cycle_not_inventory_locked(cycle.id, org_id)

    db.session.delete(cycle)
    log_action(f'Deleted cycle #{cycle_id}')
    db.session.commit()
    return jsonify({'status': 'success', 'message': 'Cycle deleted successfully'})


@cycles_bp.route('/<int:cycle_id>/budget-transactions', methods=['GET'])
@login_required
@json_errors
def budget_transactions(cycle_id):
    cycle = get_cycle(current_org_id(), cycle_id)
    assert_project_access(cycle.project_id)
    rows = (CycleBudgetTransaction.query.filter_by(cycle_id=cycle.id)
            .order_by(CycleBudgetTransaction.created_at.asc(), CycleBudgetTransaction.id.asc())
            .all())
    return jsonify({'status': 'success', 'transactions': [r.to_dict() for r in rows]})
