"""
Cycle inventory locking, carry-forward and opening balances.
"""
from models import db, Cycle, InventoryBalance
from routes.inventory_utils import post_movement_by_variant, get_balance, OPENING_BALANCE
from routes.utils import safe_int
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

CARRY_FORWARD_SOURCE = 'cycle_carry_forward'
OPENING_BALANCE_SOURCE = 'opening_balance'


class CycleInventoryLockedError(Exception):
    code = 'CYCLE_INVENTORY_LOCKED'

    def __init__(self, cycle_id=None, message=None):
        self.cycle_id = cycle_id
        super().__init__(message or (
            'This cycle is locked because inventory was carried forward. '
            'Create an adjustment in the current cycle instead.'
        ))


def assert_cycle_not_inventory_locked(cycle_id, organization_id):
    """Raise CycleInventoryLockedError if the cycle's inventory is locked. Unknown cycles pass."""
    if not cycle_id:
        return
    cycle = Cycle.query.filter_by(id=cycle_id, organization_id=organization_id).first()
    if cycle and cycle.inventory_locked_at is not None:
        raise CycleInventoryLockedError(cycle.id)


def get_cycle(organization_id, cycle_id, project_id=None):
    """Cycle scoped to the organization (and project when given); LookupError if missing."""
    query = Cycle.query.filter_by(id=cycle_id, organization_id=organization_id)
    if project_id:
        query = query.filter_by(project_id=project_id)
    cycle = query.first() if cycle_id else None
    if not cycle:
        raise LookupError('Cycle not found')
    return cycle


def get_default_previous_cycle_id(organization_id, project_id, exclude_cycle_id=None):
    """Most recent other cycle of the project: latest end date, then start date, then number."""
    query = Cycle.query.filter_by(organization_id=organization_id, project_id=project_id)
    if exclude_cycle_id:
        query = query.filter(Cycle.id != exclude_cycle_id)
    # is_(None) first sorts NULLs last on MySQL and SQLite alike
    prev = query.order_by(
        Cycle.end_date.is_(None), Cycle.end_date.desc(),
        Cycle.start_date.is_(None), Cycle.start_date.desc(),
        Cycle.cycle_number.is_(None), Cycle.cycle_number.desc(),
        Cycle.id.desc(),
    ).first()
    return prev.id if prev else None


def carry_forward_inventory(new_cycle, previous_cycle_id, user_id=None):
    """
    Open new_cycle with the closing balances of previous_cycle_id and lock the previous cycle.

    Skipped (returns 0) when the new cycle's opening balance was already posted.
    Returns the number of balances carried.
    """
    if new_cycle.opening_balance_posted_at is not None:
        logger.info("Cycle %s already has an opening balance; carry-forward skipped", new_cycle.id)
        return 0
    if not previous_cycle_id or previous_cycle_id == new_cycle.id:
        return 0

    prev_cycle = Cycle.query.filter_by(id=previous_cycle_id,
                                       organization_id=new_cycle.organization_id,
                                       project_id=new_cycle.project_id).first()
    if not prev_cycle:
        raise LookupError('Previous cycle not found')

    prev_balances = (InventoryBalance.query
                     .filter(InventoryBalance.organization_id == new_cycle.organization_id,
                             InventoryBalance.project_id == new_cycle.project_id,
                             InventoryBalance.cycle_id == prev_cycle.id,
                             InventoryBalance.quantity_on_hand != 0)
                     .order_by(InventoryBalance.id.asc())
                     .all())

    carried = 0
    for prev in prev_balances:
        qty = int(prev.quantity_on_hand or 0)
        tx = post_movement_by_variant(
            new_cycle.organization_id, new_cycle.project_id, new_cycle.id,
            prev.inventory_item_variant_id, qty, OPENING_BALANCE,
            unit_cost=prev.avg_unit_cost,
            source_type=CARRY_FORWARD_SOURCE,
            source_id=prev_cycle.id,
            notes='Carry-forward opening balance',
            created_by=user_id,
        )
        if tx is None:
            continue
        # The opening balance replaces whatever the new cycle held for this variant
        balance = get_balance(new_cycle.organization_id, new_cycle.project_id, new_cycle.id,
                              prev.inventory_item_variant_id)
        balance.quantity_on_hand = qty
        balance.avg_unit_cost = prev.avg_unit_cost
        carried += 1

    now = datetime.utcnow()
    new_cycle.carry_forward_from_cycle_id = prev_cycle.id
    new_cycle.opening_balance_posted_at = now
    new_cycle.opening_balance_posted_by = user_id
    if prev_cycle.inventory_locked_at is None:
        prev_cycle.inventory_locked_at = now
        prev_cycle.inventory_locked_by = user_id
    db.session.flush()

    logger.info("Carried %d balances from cycle %s into cycle %s; cycle %s locked",
                carried, prev_cycle.id, new_cycle.id, prev_cycle.id)
    return carried


def post_opening_balance(organization_id, project_id, cycle_id, lines, user_id=None):
    """
    Set on-hand quantities for a cycle by posting OPENING_BALANCE deltas.

    Each line: {'inventory_item_variant_id', 'quantity_on_hand', 'unit_cost'}. The cost
    only applies to positive deltas. Returns the posted transactions.
    """
    assert_cycle_not_inventory_locked(cycle_id, organization_id)
    if not lines:
        raise ValueError('At least one opening balance line is required')

    posted = []
    for line in lines:
        variant_id = safe_int(line.get('inventory_item_variant_id'))
        desired = safe_int(line.get('quantity_on_hand', line.get('quantity')))
        if not variant_id:
            raise ValueError('inventory_item_variant_id is required on every line')
        if desired is None or desired < 0:
            raise ValueError('quantity must be a non-negative whole number')

        current = get_balance(organization_id, project_id, cycle_id, variant_id)
        delta = desired - int(current.quantity_on_hand or 0) if current else desired
        if delta == 0:
            continue
        tx = post_movement_by_variant(
            organization_id, project_id, cycle_id, variant_id, delta, OPENING_BALANCE,
            unit_cost=line.get('unit_cost') if delta > 0 else None,
            source_type=OPENING_BALANCE_SOURCE,
            source_id=None,
            notes=line.get('notes'),
            created_by=user_id,
        )
        if tx is None:
            raise LookupError(f'Inventory variant {variant_id} not found')
        posted.append(tx)
    return posted
