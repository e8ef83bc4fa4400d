from datetime import datetime, date
from decimal import Decimal
from types import SimpleNamespace

from routes.formulas import (calc_sale_total, calc_sale_cost, calc_sale_profit, calc_net_sales, calc_balance,
                             calc_sale_status_from_balance, calc_gross_profit, calc_net_profit,
                             calc_remaining_budget, calc_cogs, is_transaction_in_period, calc_purchases_value,
                             calc_cogs_for_period, calc_expense_totals)


def test_sale_arithmetic():
    assert calc_sale_total(3, '2.50') == Decimal('7.50')
    assert calc_sale_cost('4', 1.1) == Decimal('4.40')
    assert calc_sale_profit(3, '2.50', '1.00') == Decimal('4.50')
    assert calc_sale_total(None, '9.99') == Decimal('0.00')


def test_balance_and_status():
    assert calc_balance('100', '40.50') == Decimal('59.50')
    assert calc_sale_status_from_balance('59.50') == 'pending'
    assert calc_sale_status_from_balance(0) == 'completed'
    assert calc_sale_status_from_balance('-1') == 'completed'


def test_net_sales_counts_completed_only():
    sales = [
        {'status': 'completed', 'quantity': 2, 'price': '10.00'},
        {'status': 'COMPLETED', 'quantity': 1, 'price': '5.00'},
        SimpleNamespace(status='pending', quantity=9, price=Decimal('100.00')),
        SimpleNamespace(status='completed', quantity=1, price=Decimal('0.50')),
    ]
    assert calc_net_sales(sales) == Decimal('25.50')
    assert calc_net_sales(None) == Decimal('0.00')


def test_profit_chain():
    cogs = calc_cogs('100.00', '50.00', '30.00')
    assert cogs == Decimal('120.00')
    gross = calc_gross_profit('200.00', cogs)
    assert gross == Decimal('80.00')
    assert calc_net_profit(gross, '95.00') == Decimal('-15.00')
    assert calc_remaining_budget('1000', '250.25') == Decimal('749.75')
    assert calc_remaining_budget(None, None) == Decimal('0.00')


def test_period_bounds_are_inclusive():
    start, end = datetime(2024, 1, 1), datetime(2024, 1, 31, 23, 59, 59)
    assert is_transaction_in_period(start, start, end)
    assert is_transaction_in_period(end, start, end)
    assert is_transaction_in_period('2024-01-15T08:00:00', date(2024, 1, 1), end)
    assert not is_transaction_in_period(datetime(2024, 2, 1), start, end)
    assert not is_transaction_in_period(None, start, end)
    assert not is_transaction_in_period('yesterday', start, end)
    assert is_transaction_in_period(datetime(1999, 1, 1), None, None)


def test_purchases_value_only_counts_priced_receipts():
    txs = [
        {'transaction_type': 'PURCHASE_RECEIPT', 'quantity_delta': 10, 'unit_cost': '2.00',
         'created_at': datetime(2024, 1, 5)},
        {'transaction_type': 'PURCHASE_RECEIPT', 'quantity_delta': 3, 'unit_cost': None,
         'created_at': datetime(2024, 1, 6)},
        {'transaction_type': 'PURCHASE_RECEIPT', 'quantity_delta': -2, 'unit_cost': '2.00',
         'created_at': datetime(2024, 1, 7)},
        {'transaction_type': 'SALE_ISSUE', 'quantity_delta': 4, 'unit_cost': '9.00',
         'created_at': datetime(2024, 1, 8)},
        {'transaction_type': 'PURCHASE_RECEIPT', 'quantity_delta': 1, 'unit_cost': '7.00',
         'created_at': datetime(2024, 3, 1)},
    ]
    assert calc_purchases_value(txs) == Decimal('27.00')
    assert calc_purchases_value(txs, datetime(2024, 1, 1), datetime(2024, 1, 31)) == Decimal('20.00')
    assert calc_cogs_for_period('5.00', '10.00', txs, datetime(2024, 1, 1), datetime(2024, 1, 31)) == Decimal('15.00')


def test_expense_totals_split_by_category():
    cogs_cat = SimpleNamespace(is_cogs=True)
    other_cat = {'is_cogs': False}
    expenses = [
        {'amount': '12.00', 'category': cogs_cat},
        {'amount': '3.50', 'category': other_cat},
        SimpleNamespace(amount=Decimal('4.00'), category=None),
        {'amount': None, 'category': cogs_cat},
    ]
    assert calc_expense_totals(expenses) == (Decimal('12.00'), Decimal('7.50'))


def test_expense_reversals_net_out_of_purchases():
    txs = [
        {'transaction_type': 'PURCHASE_RECEIPT', 'quantity_delta': 10, 'unit_cost': '2.00', 'source_type': 'expense'},
        {'transaction_type': 'REVERSAL', 'quantity_delta': -10, 'unit_cost': '2.00', 'source_type': 'expense'},
        {'transaction_type': 'PURCHASE_RECEIPT', 'quantity_delta': 4, 'unit_cost': '2.00', 'source_type': 'expense'},
        SimpleNamespace(transaction_type='REVERSAL', quantity_delta=-3, unit_cost=Decimal('9.00'), source_type='sale'),
        {'transaction_type': 'REVERSAL', 'quantity_delta': 2, 'unit_cost': '2.00', 'source_type': 'expense'},
    ]
    assert calc_purchases_value(txs) == Decimal('8.00')
    assert calc_cogs_for_period('0.00', '8.00', txs) == Decimal('0.00')
