"""
Moving-average inventory ledger utilities.

Every stock change is one InventoryItemTransaction row plus an upsert of the
InventoryBalance row for (organization, project, cycle, variant). Nothing here
commits; callers own the transaction.
"""
from models import (db, InventoryBalance, InventoryItemTransaction, InventoryItemVariant,
                    InventoryItem, InventoryItemType, Product, ProductVariant)
from routes.utils import to_decimal, optional_decimal, safe_int
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, getcontext
import logging

getcontext().prec = 28

logger = logging.getLogger(__name__)

OPENING_BALANCE = 'OPENING_BALANCE'
PURCHASE_RECEIPT = 'PURCHASE_RECEIPT'
REVERSAL = 'REVERSAL'
PRODUCTION_ISSUE = 'PRODUCTION_ISSUE'
PRODUCTION_RECEIPT = 'PRODUCTION_RECEIPT'
SALE_ISSUE = 'SALE_ISSUE'
SALE_REVERSAL = 'SALE_REVERSAL'
ADJUSTMENT_IN = 'ADJUSTMENT_IN'
ADJUSTMENT_OUT = 'ADJUSTMENT_OUT'

TRANSACTION_TYPES = (
    OPENING_BALANCE, PURCHASE_RECEIPT, REVERSAL, PRODUCTION_ISSUE, PRODUCTION_RECEIPT,
    SALE_ISSUE, SALE_REVERSAL, ADJUSTMENT_IN, ADJUSTMENT_OUT,
)

RAW_MATERIAL = 'RAW_MATERIAL'
WORK_IN_PROGRESS = 'WORK_IN_PROGRESS'
FINISHED_GOODS = 'FINISHED_GOODS'

ITEM_TYPES = (
    (RAW_MATERIAL, 'Raw Material'),
    (WORK_IN_PROGRESS, 'Work In Progress'),
    (FINISHED_GOODS, 'Finished Goods'),
)


def _known_cost(unit_cost):
    """Decimal cost, or None when the cost is missing or zero (unknown)."""
    cost = optional_decimal(unit_cost)
    if cost is None or cost == 0:
        return None
    return cost


def next_average_cost(prev_qty, prev_avg, quantity_delta, unit_cost):
    """
    Weighted-average cost after applying quantity_delta at unit_cost.

    Only a receipt (delta > 0) with a known cost that leaves stock positive moves
    the average; everything else keeps prev_avg.
    """
    cost = _known_cost(unit_cost)
    prev_qty = int(prev_qty or 0)
    if quantity_delta > 0 and cost is not None and prev_qty + quantity_delta > 0:
        prev_total = (prev_avg or Decimal('0')) * prev_qty
        next_total = prev_total + cost * quantity_delta
        return (next_total / (prev_qty + quantity_delta)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return prev_avg


def resolve_finished_goods_variant_id(organization_id, product_id, product_variant_id=None):
    """
    Find the inventory variant a product (or one of its variants) sells from.

    When a product variant is named only its own link counts, so an unlinked
    variant resolves to None. Otherwise the product's default inventory
    variant, then the first variant of its inventory item.
    """
    product_id = safe_int(product_id)
    if not product_id:
        return None

    product = Product.query.filter_by(id=product_id, organization_id=organization_id).first()
    if not product:
        return None

    product_variant_id = safe_int(product_variant_id)
    if product_variant_id:
        pv = ProductVariant.query.filter_by(id=product_variant_id, product_id=product.id).first()
        return pv.inventory_item_variant_id if pv and pv.inventory_item_variant_id else None

    if product.inventory_item_variant_id:
        return product.inventory_item_variant_id

    if product.inventory_item_id:
        first_variant = (InventoryItemVariant.query
                         .filter_by(inventory_item_id=product.inventory_item_id)
                         .order_by(InventoryItemVariant.id.asc())
                         .first())
        if first_variant:
            return first_variant.id
    return None


def get_balance(organization_id, project_id, cycle_id, variant_id, for_update=False):
    query = InventoryBalance.query.filter_by(
        organization_id=organization_id,
        project_id=project_id,
        cycle_id=cycle_id,
        inventory_item_variant_id=variant_id,
    )
    if for_update:
        query = query.with_for_update()
    return query.first()


def post_movement_by_variant(organization_id, project_id, cycle_id, variant_id, quantity_delta,
                             transaction_type, unit_cost=None, source_type=None, source_id=None,
                             notes=None, created_by=None):
    """
    Record one stock movement and update the cycle balance.

    Returns the new InventoryItemTransaction, or None when the movement is skipped
    (missing project/cycle/variant, zero delta, unknown variant).
    Raises ValueError for an unknown transaction type or a fractional quantity.
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown inventory transaction type: {transaction_type}")

    project_id = safe_int(project_id)
    cycle_id = safe_int(cycle_id)
    variant_id = safe_int(variant_id)
    if not project_id or not cycle_id or not variant_id:
        logger.warning("Skipping %s movement: project=%r cycle=%r variant=%r",
                       transaction_type, project_id, cycle_id, variant_id)
        return None

    qty_delta = safe_int(quantity_delta)
    if qty_delta is None and quantity_delta not in (None, ''):
        raise ValueError("Quantity must be a whole integer value")
    if not qty_delta:
        return None

    variant = (db.session.query(InventoryItemVariant)
               .join(InventoryItem, InventoryItem.id == InventoryItemVariant.inventory_item_id)
               .filter(InventoryItemVariant.id == variant_id,
                       InventoryItem.organization_id == organization_id)
               .first())
    if not variant:
        logger.warning("Skipping %s movement: variant %s not found in organization %s",
                       transaction_type, variant_id, organization_id)
        return None

    cost = optional_decimal(unit_cost)

    tx = InventoryItemTransaction(
        organization_id=organization_id,
        project_id=project_id,
        cycle_id=cycle_id,
        inventory_item_id=variant.inventory_item_id,
        inventory_item_variant_id=variant.id,
        transaction_type=transaction_type,
        quantity_delta=qty_delta,
        unit_cost=cost,
        source_type=source_type,
        source_id=source_id,
        notes=notes,
        created_by=created_by,
        created_at=datetime.utcnow(),
    )
    db.session.add(tx)

    balance = get_balance(organization_id, project_id, cycle_id, variant.id, for_update=True)
    if balance is None:
        balance = InventoryBalance(
            organization_id=organization_id,
            project_id=project_id,
            cycle_id=cycle_id,
            inventory_item_variant_id=variant.id,
            quantity_on_hand=qty_delta,
            avg_unit_cost=_known_cost(cost),
        )
        db.session.add(balance)
    else:
        prev_qty = int(balance.quantity_on_hand or 0)
        balance.avg_unit_cost = next_average_cost(prev_qty, balance.avg_unit_cost, qty_delta, cost)
        balance.quantity_on_hand = prev_qty + qty_delta
        balance.updated_at = datetime.utcnow()

    db.session.flush()
    return tx


def post_movement(organization_id, project_id, cycle_id, product_id, quantity_delta, transaction_type,
                  product_variant_id=None, **kwargs):
    """Post a movement for a product by resolving its finished-goods inventory variant."""
    variant_id = resolve_finished_goods_variant_id(organization_id, product_id, product_variant_id)
    if not variant_id:
        logger.info("No inventory variant linked to product %r (variant %r); %s not posted",
                    product_id, product_variant_id, transaction_type)
        return None
    return post_movement_by_variant(organization_id, project_id, cycle_id, variant_id,
                                    quantity_delta, transaction_type, **kwargs)


def balance_value(balance):
    """quantity_on_hand x avg_unit_cost for one balance row (unknown cost counts as zero)."""
    if balance is None:
        return Decimal('0.00')
    qty = int(balance.quantity_on_hand or 0)
    return (to_decimal(balance.avg_unit_cost) * qty).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def list_balances(organization_id, project_id, cycle_id, type_code=None, variant_id=None):
    query = (InventoryBalance.query
             .join(InventoryItemVariant, InventoryItemVariant.id == InventoryBalance.inventory_item_variant_id)
             .join(InventoryItem, InventoryItem.id == InventoryItemVariant.inventory_item_id)
             .filter(InventoryBalance.organization_id == organization_id,
                     InventoryBalance.project_id == project_id,
                     InventoryBalance.cycle_id == cycle_id))
    if type_code:
        query = (query.join(InventoryItemType, InventoryItemType.id == InventoryItem.inventory_item_type_id)
                 .filter(InventoryItemType.code == str(type_code).strip().upper()))
    if variant_id:
        query = query.filter(InventoryBalance.inventory_item_variant_id == variant_id)
    return query.order_by(InventoryItem.name.asc(), InventoryItemVariant.id.asc()).all()


def inventory_valuation(organization_id, project_id, cycle_id, type_code=None):
    """
    Value every balance of a cycle.

    Returns {'lines': [...], 'total_quantity': int, 'total_value': Decimal}.
    """
    lines = []
    total_qty = 0
    total_value = Decimal('0.00')
    for balance in list_balances(organization_id, project_id, cycle_id, type_code=type_code):
        value = balance_value(balance)
        variant = balance.variant
        item = variant.item if variant else None
        lines.append({
            'inventory_item_variant_id': balance.inventory_item_variant_id,
            'inventory_item_id': item.id if item else None,
            'item_name': item.name if item else None,
            'type_code': item.item_type.code if item and item.item_type else None,
            'variant_label': variant.label if variant else None,
            'quantity_on_hand': int(balance.quantity_on_hand or 0),
            'avg_unit_cost': balance.avg_unit_cost,
            'value': value,
        })
        total_qty += int(balance.quantity_on_hand or 0)
        total_value += value
    return {'lines': lines, 'total_quantity': total_qty, 'total_value': total_value}


def create_inventory_item(organization_id, item_type_id, name, variants=None, sku=None, uom=None,
                          is_active=True, default_purchase_unit_cost=None, default_sale_price=None,
                          description=None, project_id=None, created_by=None):
    """
    Add an InventoryItem with its variants (unsaved; caller commits).

    Variant dicts without any of label/sku/unit_cost/selling_price are ignored;
    when none remain a single 'Default' variant mirrors the item's sku and prices.
    """
    if not name or not str(name).strip():
        raise ValueError('name is required')
    if not item_type_id:
        raise ValueError('inventory_item_type_id or inventory_item_type_code is required')

    item = InventoryItem(
        organization_id=organization_id,
        inventory_item_type_id=item_type_id,
        project_id=project_id,
        name=str(name).strip(),
        sku=sku,
        uom=uom,
        is_active=bool(is_active),
        default_purchase_unit_cost=_known_cost(default_purchase_unit_cost),
        default_sale_price=_known_cost(default_sale_price),
        description=description,
        created_by=created_by,
    )
    db.session.add(item)

    cleaned = []
    for raw in variants or []:
        if not isinstance(raw, dict):
            continue
        label = raw.get('label') if isinstance(raw.get('label'), str) else None
        v_sku = raw.get('sku') if isinstance(raw.get('sku'), str) else None
        unit_cost = _known_cost(raw.get('unit_cost'))
        selling_price = _known_cost(raw.get('selling_price'))
        if not (label or v_sku or unit_cost is not None or selling_price is not None):
            continue
        cleaned.append(InventoryItemVariant(
            label=label,
            sku=v_sku,
            is_active=bool(raw.get('is_active', True)),
            unit_cost=unit_cost,
            selling_price=selling_price,
        ))

    if not cleaned:
        cleaned.append(InventoryItemVariant(
            label='Default',
            sku=sku,
            is_active=True,
            unit_cost=item.default_purchase_unit_cost,
            selling_price=item.default_sale_price,
        ))
    item.variants.extend(cleaned)
    db.session.flush()
    return item
