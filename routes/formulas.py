"""
Accounting formulas shared by the sales, expense and report views.

All helpers accept loose numeric input (str, int, float, Decimal, None) and
return Decimal quantized to 2dp.
"""
from routes.utils import to_decimal
from routes.inventory_utils import PURCHASE_RECEIPT, REVERSAL
from datetime import datetime, date
from decimal import Decimal

PENDING = 'pending'
COMPLETED = 'completed'

EXPENSE_SOURCE = 'expense'


def _field(obj, name):
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_datetime(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def calc_sale_total(quantity, price):
    return to_decimal(to_decimal(quantity) * to_decimal(price))


def calc_sale_cost(quantity, unit_cost):
    return to_decimal(to_decimal(quantity) * to_decimal(unit_cost))


def calc_sale_profit(quantity, price, unit_cost):
    return calc_sale_total(quantity, price) - calc_sale_cost(quantity, unit_cost)


def calc_net_sales(sales):
    """Sum of quantity x price over completed sales only."""
    total = Decimal('0.00')
    for sale in sales or []:
        if str(_field(sale, 'status') or '').lower() != COMPLETED:
            continue
        total += calc_sale_total(_field(sale, 'quantity'), _field(sale, 'price'))
    return total


def calc_balance(total_amount, cash_at_hand):
    return to_decimal(total_amount) - to_decimal(cash_at_hand)


def calc_sale_status_from_balance(balance):
    return PENDING if to_decimal(balance) > 0 else COMPLETED


def calc_gross_profit(net_sales, cogs):
    return to_decimal(net_sales) - to_decimal(cogs)


def calc_net_profit(gross_profit, operating_expenses):
    return to_decimal(gross_profit) - to_decimal(operating_expenses)


def calc_remaining_budget(total_budget_allotment, total_expenses):
    return to_decimal(total_budget_allotment) - to_decimal(total_expenses)


def calc_cogs(beginning_inventory_value, purchases_value, ending_inventory_value):
    """COGS = beginning inventory + purchases during the period - ending inventory."""
    return to_decimal(beginning_inventory_value) + to_decimal(purchases_value) - to_decimal(ending_inventory_value)


def is_transaction_in_period(created_at, period_start, period_end):
    """Inclusive on both ends; unparseable or missing timestamps are outside every period."""
    ts = _as_datetime(created_at)
    if ts is None:
        return False
    start = _as_datetime(period_start)
    end = _as_datetime(period_end)
    if start is not None and ts < start:
        return False
    if end is not None and ts > end:
        return False
    return True


def calc_purchases_value(transactions, period_start=None, period_end=None):
    """
    Net purchases during the period: sum(qty x unit_cost) over PURCHASE_RECEIPT
    rows, less the REVERSAL rows that undo expense receipts.

    Receipts with a non-positive quantity, reversals with a non-negative one,
    and rows with a missing/zero cost contribute nothing.
    """
    total = Decimal('0.00')
    for tx in transactions or []:
        tx_type = str(_field(tx, 'transaction_type') or '').upper()
        if tx_type == PURCHASE_RECEIPT:
            sign = 1
        elif tx_type == REVERSAL and _field(tx, 'source_type') == EXPENSE_SOURCE:
            sign = -1
        else:
            continue
        if (period_start is not None or period_end is not None) and \
                not is_transaction_in_period(_field(tx, 'created_at'), period_start, period_end):
            continue
        qty = int(_field(tx, 'quantity_delta') or 0)
        unit_cost = to_decimal(_field(tx, 'unit_cost'))
        if qty * sign <= 0 or unit_cost <= 0:
            continue
        total += to_decimal(unit_cost * qty)
    return total


def calc_cogs_for_period(beginning_inventory_value, ending_inventory_value, transactions,
                         period_start=None, period_end=None):
    purchases = calc_purchases_value(transactions, period_start, period_end)
    return calc_cogs(beginning_inventory_value, purchases, ending_inventory_value)


def calc_expense_totals(expenses):
    """Split expenses into (cogs_total, operating_total) using each category's is_cogs flag."""
    cogs = Decimal('0.00')
    operating = Decimal('0.00')
    for expense in expenses or []:
        amount = to_decimal(_field(expense, 'amount'))
        if not amount:
            continue
        category = _field(expense, 'category')
        if category is not None and _field(category, 'is_cogs'):
            cogs += amount
        else:
            operating += amount
    return cogs, operating
