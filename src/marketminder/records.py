"""Transaction records and draft normalization.

A :class:`Transaction` is immutable once created; edits replace the whole
record. Collaborators (chat parser, manual entry, dashboard restock) hand the
ledger a :class:`TransactionDraft`, which :func:`build_transaction` validates
and turns into a record with a consistent ``amount``.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_UNIT,
    MAX_NUMERIC_MAGNITUDE,
    MAX_TIMESTAMP_MS,
    Category,
    TransactionType,
)


class DraftValidationError(ValueError):
    """Raised when a draft or edited record is malformed."""


@dataclass(frozen=True)
class Transaction:
    """One committed ledger entry.

    ``running_balance`` is only populated on the copies returned by the
    balance projection; stored records always carry ``None``.
    """

    transaction_id: str
    timestamp: int
    transaction_type: TransactionType
    category: Category
    item: str
    base_item: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    unit: str = DEFAULT_UNIT
    cost_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    payment_method: Optional[str] = None
    source: Optional[str] = None
    original_message: str = ""
    running_balance: Optional[Decimal] = None

    @property
    def is_sale(self) -> bool:
        return self.transaction_type is TransactionType.INCOME

    @property
    def is_stock_purchase(self) -> bool:
        return (
            self.transaction_type is TransactionType.EXPENSE
            and self.category is Category.INVENTORY
        )


@dataclass(frozen=True)
class TransactionDraft:
    """A proposed transaction as supplied by a collaborator.

    Fields are intentionally loose (strings, floats, ``None``) because drafts
    come straight from parsers and forms. Nothing here is trusted until
    :func:`build_transaction` has run.
    """

    item: Any
    transaction_type: Any
    unit_price: Any = None
    quantity: Any = None
    category: Any = None
    base_item: Any = None
    amount: Any = None
    unit: Optional[str] = None
    selling_price: Any = None
    currency: Optional[str] = None
    timestamp: Any = None
    payment_method: Optional[str] = None
    source: Optional[str] = None
    original_message: Optional[str] = None
    transaction_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "TransactionDraft":
        """Build a draft from parser output using its camelCase keys."""

        return cls(
            item=payload.get("item"),
            transaction_type=payload.get("type"),
            unit_price=payload.get("unitPrice"),
            quantity=payload.get("quantity"),
            category=payload.get("category"),
            base_item=payload.get("baseItem"),
            amount=payload.get("amount"),
            unit=payload.get("unit"),
            selling_price=payload.get("sellingPrice"),
            currency=payload.get("currency"),
            timestamp=payload.get("timestamp"),
            payment_method=payload.get("paymentMethod"),
            source=payload.get("source"),
            original_message=payload.get("originalMessage"),
            transaction_id=payload.get("id"),
        )


def current_millis() -> int:
    """Return the current wall-clock time in milliseconds since the epoch."""

    return time.time_ns() // 1_000_000


def normalize_item_key(value: Any) -> str:
    """Canonical matching key: trimmed and uppercased."""

    return str(value).strip().upper() if value is not None else ""


def generate_transaction_id(*, prefix: str = "T", when: Optional[int] = None) -> str:
    """Generate a sortable transaction identifier.

    Args:
        prefix (str): Designator prepended to the identifier.
        when (int | None): Millisecond timestamp to encode. Defaults to now.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{hex6}``.
        The random suffix keeps drafts committed within the same millisecond
        (multi-item receipt scans) distinct.

    Raises:
        DraftValidationError: If ``when`` is not a representable date.
    """

    when = current_millis() if when is None else when
    try:
        moment = datetime.fromtimestamp(when / 1000, UTC)
    except (ValueError, OverflowError, OSError) as exc:
        raise DraftValidationError(f"timestamp {when!r} is out of range") from exc
    return f"{prefix}{moment.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Coerce numeric input into a finite :class:`Decimal`.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``. Magnitudes
    of ``MAX_NUMERIC_MAGNITUDE`` or more are refused so that later sums and
    products stay exact.

    Raises:
        DraftValidationError: If ``value`` is not a finite number in range.
    """

    if isinstance(value, bool):
        raise DraftValidationError(f"{field_name} must be a number, got {value!r}")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise DraftValidationError(f"{field_name} must be a number, got {value!r}") from exc
    if not number.is_finite():
        raise DraftValidationError(f"{field_name} must be finite, got {value!r}")
    if abs(number) >= MAX_NUMERIC_MAGNITUDE:
        raise DraftValidationError(f"{field_name} is out of range, got {value!r}")
    return number


def require_positive(value: Decimal, field_name: str) -> Decimal:
    if value <= Decimal("0"):
        raise DraftValidationError(f"{field_name} must be greater than zero")
    return value


def _coerce_enum(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise DraftValidationError(f"{field_name} must be one of: {allowed}; got {value!r}") from exc


def _coerce_timestamp(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    try:
        millis = int(to_decimal(value, "timestamp"))
    except (OverflowError, ValueError) as exc:
        raise DraftValidationError(f"timestamp must be milliseconds since epoch, got {value!r}") from exc
    if millis < 0:
        raise DraftValidationError("timestamp must not be negative")
    if millis > MAX_TIMESTAMP_MS:
        raise DraftValidationError(f"timestamp {value!r} is out of range")
    return millis


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """``quantity * unit_price``, with arithmetic failures reported as validation errors."""

    try:
        return quantity * unit_price
    except ArithmeticError as exc:
        raise DraftValidationError(f"amount cannot be computed for {quantity} x {unit_price}") from exc


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_transaction(
    draft: TransactionDraft,
    *,
    now: int,
    default_currency: str = DEFAULT_CURRENCY,
) -> Transaction:
    """Validate a draft and materialize it into a :class:`Transaction`.

    Defaults follow the entry forms: quantity 1, category ``Sales`` for income
    and ``Inventory`` for expenses, ``base_item`` from the uppercased item,
    timestamp ``now``. When the draft carries a total ``amount`` but no
    ``unit_price`` the unit price is derived from it. ``cost_price`` is left
    for the guardrail engine to snapshot.

    Raises:
        DraftValidationError: On any missing or malformed field.
    """

    item = _optional_text(draft.item)
    if item is None:
        raise DraftValidationError("Item name is required")

    transaction_type = _coerce_enum(TransactionType, draft.transaction_type, "type")
    if draft.category is None:
        category = Category.SALES if transaction_type is TransactionType.INCOME else Category.INVENTORY
    else:
        category = _coerce_enum(Category, draft.category, "category")

    quantity = require_positive(
        to_decimal(1 if draft.quantity is None else draft.quantity, "quantity"),
        "quantity",
    )
    if draft.unit_price is not None:
        unit_price = to_decimal(draft.unit_price, "unit_price")
    elif draft.amount is not None:
        amount = to_decimal(draft.amount, "amount")
        try:
            unit_price = to_decimal(amount / quantity, "unit_price")
        except ArithmeticError as exc:
            raise DraftValidationError(f"unit_price cannot be derived from amount {amount}") from exc
    else:
        raise DraftValidationError("unit_price is required")
    require_positive(unit_price, "unit_price")

    base_item = normalize_item_key(draft.base_item if _optional_text(draft.base_item) else item)
    selling_price = None
    if draft.selling_price is not None and transaction_type is TransactionType.EXPENSE:
        selling_price = to_decimal(draft.selling_price, "selling_price")

    timestamp = _coerce_timestamp(draft.timestamp, now)
    transaction_id = _optional_text(draft.transaction_id) or generate_transaction_id(when=timestamp)

    return Transaction(
        transaction_id=transaction_id,
        timestamp=timestamp,
        transaction_type=transaction_type,
        category=category,
        item=item,
        base_item=base_item,
        quantity=quantity,
        unit_price=unit_price,
        amount=line_total(quantity, unit_price),
        unit=_optional_text(draft.unit) or DEFAULT_UNIT,
        selling_price=selling_price,
        currency=_optional_text(draft.currency) or default_currency,
        payment_method=_optional_text(draft.payment_method),
        source=_optional_text(draft.source),
        original_message=draft.original_message or "",
    )


def revalidate_transaction(candidate: Transaction) -> Transaction:
    """Re-check an edited record and recompute its derived fields.

    Edits may arrive through :func:`dataclasses.replace` with loosely typed
    values, so numerics and enums are coerced again, ``base_item`` is
    re-normalized, ``amount`` is recomputed from ``quantity * unit_price`` and
    any ``running_balance`` copied from a display row is dropped.

    Raises:
        DraftValidationError: On any malformed field.
    """

    item = _optional_text(candidate.item)
    if item is None:
        raise DraftValidationError("Item name is required")
    if not _optional_text(candidate.transaction_id):
        raise DraftValidationError("transaction id is required")

    quantity = require_positive(to_decimal(candidate.quantity, "quantity"), "quantity")
    unit_price = require_positive(to_decimal(candidate.unit_price, "unit_price"), "unit_price")
    selling_price = candidate.selling_price
    if selling_price is not None:
        selling_price = to_decimal(selling_price, "selling_price")

    if candidate.timestamp is None:
        raise DraftValidationError("timestamp is required")

    return replace(
        candidate,
        timestamp=_coerce_timestamp(candidate.timestamp, 0),
        transaction_type=_coerce_enum(TransactionType, candidate.transaction_type, "type"),
        category=_coerce_enum(Category, candidate.category, "category"),
        item=item,
        base_item=normalize_item_key(candidate.base_item or item),
        quantity=quantity,
        unit_price=unit_price,
        amount=line_total(quantity, unit_price),
        selling_price=selling_price,
        running_balance=None,
    )
