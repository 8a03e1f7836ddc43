"""Pre-commit guardrails for proposed transactions.

The engine answers one question: may this record enter the ledger? It never
mutates anything. Create-path proposals run, in order and stopping at the
first failure:

1. duplicate detection (same item, quantity, amount and type inside the
   look-back window);
2. stock sufficiency for sales;
3. loss prevention for sales whose cost basis is known.

Edits of existing records only run the loss-prevention check, since comparing
a record against itself for duplicates or stock makes no sense.

Item resolution for new sales first tries the exact base item and then falls
back to substring containment against items that have been stocked before.
The fallback is ambiguous by nature, so it is logged and reported on the
verdict. When several keys match, the shortest wins, then the alphabetically
first. The duplicate check sees both the typed key and the resolved one. Edits
keep the record's own key.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from . import log
from .constants import (
    DUPLICATE_AMOUNT_TOLERANCE,
    DUPLICATE_WINDOW_MS,
    MAX_STOCK_SUGGESTIONS,
    RejectionReason,
)
from .projections import ZERO, stocked_items
from .records import Transaction, normalize_item_key


@dataclass(frozen=True)
class GuardrailPolicy:
    """Tunable thresholds for the guardrail checks."""

    duplicate_window_ms: int = DUPLICATE_WINDOW_MS
    amount_tolerance: Decimal = DUPLICATE_AMOUNT_TOLERANCE
    max_suggestions: int = MAX_STOCK_SUGGESTIONS


DEFAULT_POLICY = GuardrailPolicy()


@dataclass(frozen=True)
class ItemMatch:
    """Outcome of resolving a base item against known keys."""

    key: str
    exact: bool
    candidates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Accept:
    """The proposal may be committed as ``transaction``.

    ``matched_item`` is set when the sale's item was resolved through the
    substring fallback rather than an exact match.
    """

    transaction: Transaction
    matched_item: Optional[str] = None


@dataclass(frozen=True)
class Reject:
    """The proposal was refused; nothing should be committed."""

    reason: RejectionReason
    message: str
    suggestion: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)


Verdict = Union[Accept, Reject]


def format_quantity(value: Decimal) -> str:
    """Render a Decimal without exponent noise (``50`` rather than ``5E+1``)."""

    return format(value.normalize(), "f") if value == value.to_integral_value() else format(value, "f")


def resolve_item_key(key: str, exact_keys: Iterable[str], fallback_keys: Iterable[str]) -> Optional[ItemMatch]:
    """Resolve ``key`` exactly, then by substring containment.

    Args:
        key (str): Normalized base item from the proposal.
        exact_keys (Iterable[str]): Keys eligible for an exact match.
        fallback_keys (Iterable[str]): Keys eligible for the substring
            fallback; either string may contain the other.

    Returns:
        ItemMatch | None: The resolved key, or ``None`` when nothing matches.
    """

    key = normalize_item_key(key)
    if key in set(exact_keys):
        return ItemMatch(key=key, exact=True)
    if not key:
        return None
    candidates = sorted(
        {candidate for candidate in fallback_keys if candidate and (key in candidate or candidate in key)},
        key=lambda candidate: (len(candidate), candidate),
    )
    if not candidates:
        return None
    if len(candidates) > 1:
        log.warning(
            "Ambiguous item '%s' matches %s; using '%s'",
            key,
            ", ".join(candidates),
            candidates[0],
        )
    else:
        log.warning("Item '%s' resolved by fallback match to '%s'", key, candidates[0])
    return ItemMatch(key=candidates[0], exact=False, candidates=tuple(candidates))


def find_duplicate(
    proposed: Transaction,
    transactions: Iterable[Transaction],
    *,
    policy: GuardrailPolicy = DEFAULT_POLICY,
    resolved_key: Optional[str] = None,
) -> Optional[Transaction]:
    """Return the first existing record that ``proposed`` appears to repeat.

    ``resolved_key`` is the stocked item a sale was matched to; an earlier
    sale committed under that key counts as the same item.
    """

    keys = {normalize_item_key(proposed.base_item)}
    if resolved_key:
        keys.add(normalize_item_key(resolved_key))
    for existing in transactions:
        if normalize_item_key(existing.base_item) not in keys:
            continue
        if existing.transaction_type is not proposed.transaction_type:
            continue
        if existing.quantity != proposed.quantity:
            continue
        if abs(existing.amount - proposed.amount) > policy.amount_tolerance:
            continue
        if abs(existing.timestamp - proposed.timestamp) >= policy.duplicate_window_ms:
            continue
        return existing
    return None


def suggest_alternatives(
    inventory: Mapping[str, Decimal],
    *,
    exclude: Optional[str] = None,
    limit: int = MAX_STOCK_SUGGESTIONS,
) -> List[Tuple[str, Decimal]]:
    """Pick up to ``limit`` in-stock items, best stocked first."""

    in_stock = [(key, level) for key, level in inventory.items() if level > ZERO and key != exclude]
    in_stock.sort(key=lambda pair: (-pair[1], pair[0]))
    return in_stock[: max(limit, 0)]


def check_duplicate(
    proposed: Transaction,
    transactions: Iterable[Transaction],
    policy: GuardrailPolicy,
    resolved_key: Optional[str] = None,
) -> Optional[Reject]:
    existing = find_duplicate(proposed, transactions, policy=policy, resolved_key=resolved_key)
    if existing is None:
        return None
    minutes = policy.duplicate_window_ms // 60_000
    log.warning(
        "Rejected duplicate of '%s' (%s x %s)",
        existing.transaction_id,
        existing.base_item,
        format_quantity(existing.quantity),
    )
    return Reject(
        reason=RejectionReason.DUPLICATE_TRANSACTION,
        message=(
            f"Duplicate: {existing.item} (qty {format_quantity(existing.quantity)}, "
            f"amount {existing.amount}) was already recorded within {minutes} minutes."
        ),
        details={"duplicate_of": existing.transaction_id, "window_minutes": minutes},
    )


def check_stock(
    proposed: Transaction,
    inventory: Mapping[str, Decimal],
    match: Optional[ItemMatch],
    policy: GuardrailPolicy,
) -> Optional[Reject]:
    """Verify a sale does not exceed the projected stock level of its resolved item."""

    resolved = match.key if match else normalize_item_key(proposed.base_item)
    available = inventory.get(resolved, ZERO) if match else ZERO
    if available >= proposed.quantity:
        return None

    alternatives = suggest_alternatives(inventory, exclude=resolved, limit=policy.max_suggestions)
    suggestion = None
    if alternatives:
        suggestion = "In stock: " + ", ".join(f"{key} ({format_quantity(level)})" for key, level in alternatives)
    log.warning(
        "Rejected sale of %s %s: only %s available",
        format_quantity(proposed.quantity),
        resolved,
        format_quantity(available),
    )
    return Reject(
        reason=RejectionReason.INSUFFICIENT_STOCK,
        message=(
            f"Insufficient stock: only {format_quantity(available)} {proposed.unit} of "
            f"{proposed.item} available, tried to sell {format_quantity(proposed.quantity)}. "
            "Restock first."
        ),
        suggestion=suggestion,
        details={
            "item": resolved,
            "available": available,
            "requested": proposed.quantity,
            "alternatives": tuple(key for key, _ in alternatives),
        },
    )


def check_loss(proposed: Transaction, resolved: str, cost_basis: Mapping[str, Decimal]) -> Optional[Reject]:
    """Block a sale priced below the known cost basis.

    Unknown cost is not zero cost: without a basis the check does not apply.
    """

    basis = cost_basis.get(resolved)
    if basis is None or basis <= ZERO or proposed.unit_price >= basis:
        return None
    log.warning(
        "Rejected sale of %s at %s below cost basis %s",
        resolved,
        proposed.unit_price,
        basis,
    )
    return Reject(
        reason=RejectionReason.SELLING_AT_LOSS,
        message=(
            f"Selling at a loss: {proposed.item} cost {basis} per {proposed.unit} "
            f"but the sale price is {proposed.unit_price}."
        ),
        suggestion=f"Sell at {basis} or more.",
        details={"item": resolved, "cost_basis": basis, "unit_price": proposed.unit_price},
    )


def _accept_sale(
    proposed: Transaction,
    match: Optional[ItemMatch],
    cost_price: Optional[Decimal],
) -> Accept:
    resolved = match.key if match else normalize_item_key(proposed.base_item)
    transaction = replace(
        proposed,
        base_item=resolved,
        cost_price=cost_price,
        selling_price=proposed.unit_price,
    )
    matched_item = match.key if match is not None and not match.exact else None
    return Accept(transaction=transaction, matched_item=matched_item)


def _accept_purchase(proposed: Transaction) -> Accept:
    return Accept(transaction=replace(proposed, cost_price=proposed.unit_price))


def evaluate(
    proposed: Transaction,
    transactions: Sequence[Transaction],
    inventory: Mapping[str, Decimal],
    cost_basis: Mapping[str, Decimal],
    *,
    policy: GuardrailPolicy = DEFAULT_POLICY,
) -> Verdict:
    """Run the create-path guardrails against a new record.

    Args:
        proposed (Transaction): Validated record awaiting commit.
        transactions (Sequence[Transaction]): Current store contents.
        inventory (Mapping[str, Decimal]): Output of the inventory projection.
        cost_basis (Mapping[str, Decimal]): Output of the cost basis tracker.
        policy (GuardrailPolicy): Thresholds to apply.

    Returns:
        Accept | Reject: On accept, the record carries its ``cost_price``
            snapshot (and, for sales, ``selling_price``) ready to commit.
    """

    match = None
    if proposed.is_sale:
        match = resolve_item_key(proposed.base_item, inventory.keys(), stocked_items(transactions))

    rejection = check_duplicate(proposed, transactions, policy, resolved_key=match.key if match else None)
    if rejection is not None:
        return rejection

    if not proposed.is_sale:
        return _accept_purchase(proposed)

    rejection = check_stock(proposed, inventory, match, policy)
    if rejection is not None:
        return rejection

    resolved = match.key if match else normalize_item_key(proposed.base_item)
    rejection = check_loss(proposed, resolved, cost_basis)
    if rejection is not None:
        return rejection

    return _accept_sale(proposed, match, cost_basis.get(resolved))


def evaluate_update(
    proposed: Transaction,
    cost_basis: Mapping[str, Decimal],
    *,
    previous: Optional[Transaction] = None,
    policy: GuardrailPolicy = DEFAULT_POLICY,
) -> Verdict:
    """Run the edit-path guardrail (loss prevention only).

    The edited record is judged under its own ``base_item``: edits never go
    through the substring fallback and are never re-keyed. A sale keeps the
    ``cost_price`` snapshot taken when it was first recorded; a record that
    becomes a sale through the edit snapshots the current basis instead.
    """

    if not proposed.is_sale:
        return _accept_purchase(proposed)

    resolved = normalize_item_key(proposed.base_item)
    rejection = check_loss(proposed, resolved, cost_basis)
    if rejection is not None:
        return rejection

    if previous is not None and previous.is_sale and previous.cost_price is not None:
        cost_price: Optional[Decimal] = previous.cost_price
    else:
        cost_price = cost_basis.get(resolved)
    return _accept_sale(proposed, None, cost_price)


__all__ = [
    "GuardrailPolicy",
    "DEFAULT_POLICY",
    "ItemMatch",
    "Accept",
    "Reject",
    "Verdict",
    "resolve_item_key",
    "find_duplicate",
    "suggest_alternatives",
    "evaluate",
    "evaluate_update",
]
