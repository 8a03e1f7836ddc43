"""Pure projections over the transaction log.

Every function here replays the supplied records in chronological order
(``timestamp`` ascending, ``transaction_id`` breaking ties) and never looks at
the order in which the caller stored them. None of them mutate their input,
so they can be recomputed on every read.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Set, Tuple

from . import log
from .constants import LOW_STOCK_THRESHOLD, TransactionType
from .records import Transaction, normalize_item_key


ZERO = Decimal("0")


def chronological(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Return ``transactions`` sorted oldest first."""

    return sorted(transactions, key=lambda record: (record.timestamp, record.transaction_id))


def project_inventory(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """Compute net stock on hand per base item.

    Stock purchases (``Expense`` in the ``Inventory`` category) add their
    quantity and sales subtract theirs. Any other record only registers its
    key at zero the first time it is seen. Levels are not clamped: a negative
    value means the guardrails were bypassed somewhere upstream.

    Args:
        transactions (Iterable[Transaction]): Records in any order.

    Returns:
        dict[str, Decimal]: Mapping of base item to quantity on hand.
    """

    levels: Dict[str, Decimal] = {}
    for record in chronological(transactions):
        key = normalize_item_key(record.base_item)
        current = levels.setdefault(key, ZERO)
        if record.is_stock_purchase:
            levels[key] = current + record.quantity
        elif record.transaction_type is TransactionType.INCOME:
            levels[key] = current - record.quantity
    log.debug("Projected inventory for %d items", len(levels))
    return levels


def project_cost_basis(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """Map each purchased base item to its most recent purchase unit price.

    Later purchases overwrite earlier ones; there is no averaging. Items
    never bought through the ledger have no entry.
    """

    basis: Dict[str, Decimal] = {}
    for record in chronological(transactions):
        if record.is_stock_purchase and record.unit_price is not None and record.unit_price > ZERO:
            basis[normalize_item_key(record.base_item)] = record.unit_price
    return basis


def project_running_balance(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Annotate copies of the records with the cumulative cash balance.

    Returns:
        list[Transaction]: Newest first, each carrying the balance after it
            was applied in ``running_balance``.
    """

    balance = ZERO
    annotated: List[Transaction] = []
    for record in chronological(transactions):
        if record.transaction_type is TransactionType.INCOME:
            balance += record.amount
        else:
            balance -= record.amount
        annotated.append(replace(record, running_balance=balance))
    annotated.reverse()
    return annotated


def stocked_items(transactions: Iterable[Transaction]) -> Set[str]:
    """Base items that have been purchased as stock at least once."""

    return {normalize_item_key(record.base_item) for record in transactions if record.is_stock_purchase}


def calculate_profit_summary(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """Aggregate cash flow and gross profit figures.

    Gross profit only counts sales whose ``cost_price`` snapshot is known;
    sales recorded before any purchase are tallied in ``unknown_cost_sales``
    rather than being assumed free.
    """

    total_income = ZERO
    total_expense = ZERO
    cost_of_goods_sold = ZERO
    gross_profit = ZERO
    unknown_cost_sales = 0
    for record in transactions:
        if record.transaction_type is TransactionType.INCOME:
            total_income += record.amount
            if record.cost_price is None:
                unknown_cost_sales += 1
                continue
            cogs = record.cost_price * record.quantity
            cost_of_goods_sold += cogs
            gross_profit += record.amount - cogs
        else:
            total_expense += record.amount
    summary = {
        "total_income": total_income,
        "total_expense": total_expense,
        "balance": total_income - total_expense,
        "cost_of_goods_sold": cost_of_goods_sold,
        "gross_profit": gross_profit,
        "unknown_cost_sales": Decimal(unknown_cost_sales),
    }
    log.debug(
        "Calculated profit summary: income=%s expense=%s gross_profit=%s",
        total_income,
        total_expense,
        gross_profit,
    )
    return summary


def list_low_stock_items(
    transactions: Iterable[Transaction],
    threshold: Decimal = LOW_STOCK_THRESHOLD,
) -> List[Tuple[str, Decimal]]:
    """Stocked items at or below ``threshold``, lowest level first."""

    records = list(transactions)
    levels = project_inventory(records)
    stocked = stocked_items(records)
    low = [(key, level) for key, level in levels.items() if key in stocked and level <= threshold]
    return sorted(low, key=lambda pair: (pair[1], pair[0]))
