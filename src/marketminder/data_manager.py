"""Persistence collaborator for MarketMinder.

The ledger engine itself never touches the filesystem. This module owns the
two on-disk artifacts that surround it:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, saving and reloading the openpyxl workbook
   whose ``Transactions`` sheet holds the serialized ledger.

Rows are stored in display order (newest first). Every field of a
:class:`~marketminder.records.Transaction` round-trips except
``running_balance``, which is always recomputed. Decimal values are written
as text so no precision is lost to Excel floats.
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_UNIT,
    DUPLICATE_AMOUNT_TOLERANCE,
    DUPLICATE_WINDOW_MS,
    LOW_STOCK_THRESHOLD,
    MAX_STOCK_SUGGESTIONS,
    UNDO_WINDOW_MS,
    Category,
    PaymentMethod,
    SheetName,
    TransactionType,
)
from .guardrails import GuardrailPolicy
from .records import Transaction, to_decimal


CONFIG_FILE_NAME = "config.ini"
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value

TRANSACTION_COLUMNS: Sequence[str] = (
    "TransactionID",
    "Timestamp",
    "Type",
    "Category",
    "Item",
    "BaseItem",
    "Quantity",
    "Unit",
    "UnitPrice",
    "CostPrice",
    "SellingPrice",
    "Amount",
    "Currency",
    "PaymentMethod",
    "Source",
    "OriginalMessage",
)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_currency: str = DEFAULT_CURRENCY
    default_payment_method: str = PaymentMethod.CASH.value
    guardrails: GuardrailPolicy = field(default_factory=GuardrailPolicy)
    undo_window_ms: int = UNDO_WINDOW_MS
    low_stock_threshold: Decimal = LOW_STOCK_THRESHOLD


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned as-is. Otherwise the search walks from the
    current working directory up to the filesystem root and returns the first
    ``config.ini`` it finds.

    Raises:
        FileNotFoundError: If no parent directory holds the file.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` are required. ``[Guardrails]`` is optional
    and every option in it falls back to the engine defaults. A relative
    ``DataFile`` is anchored at ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings with an absolute data file path.

    Raises:
        KeyError: If a required entry is missing.
        ValueError: If a guardrail option is not a valid number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        currency = parser.get("Defaults", "Currency")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    payment_method = parser.get("Defaults", "PaymentMethod", fallback=PaymentMethod.CASH.value)

    section = "Guardrails"
    window_minutes = parser.getint(section, "DuplicateWindowMinutes", fallback=DUPLICATE_WINDOW_MS // 60_000)
    tolerance = to_decimal(
        parser.get(section, "AmountTolerance", fallback=str(DUPLICATE_AMOUNT_TOLERANCE)),
        "AmountTolerance",
    )
    max_suggestions = parser.getint(section, "MaxSuggestions", fallback=MAX_STOCK_SUGGESTIONS)
    undo_seconds = parser.getfloat(section, "UndoWindowSeconds", fallback=UNDO_WINDOW_MS / 1000)
    low_stock = to_decimal(
        parser.get(section, "LowStockThreshold", fallback=str(LOW_STOCK_THRESHOLD)),
        "LowStockThreshold",
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_currency=currency.strip() or DEFAULT_CURRENCY,
        default_payment_method=payment_method,
        guardrails=GuardrailPolicy(
            duplicate_window_ms=window_minutes * 60_000,
            amount_tolerance=tolerance,
            max_suggestions=max_suggestions,
        ),
        undo_window_ms=int(undo_seconds * 1000),
        low_stock_threshold=low_stock,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        KeyError: If the workbook lacks the ``Transactions`` sheet.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    if TRANSACTIONS_SHEET not in wb.sheetnames:
        raise KeyError(f"Workbook '{data_file}' has no '{TRANSACTIONS_SHEET}' sheet")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_transactions(workbook: Workbook) -> Iterable[Transaction]:
    """Yield every populated row of the ``Transactions`` sheet as a record.

    The header row and fully empty rows are skipped. Rows come back in sheet
    order, which is display order.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, max_col=len(TRANSACTION_COLUMNS), values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_transaction(raw)


def write_transactions(workbook: Workbook, records: Iterable[Transaction]) -> int:
    """Replace the sheet body with ``records``, keeping the header row.

    Edits and deletes can touch any row, so the whole log is rewritten rather
    than patched.

    Returns:
        int: Number of rows written.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    for row_index, record in enumerate(records, start=2):
        for column_index, value in enumerate(serialize_transaction(record), start=1):
            sheet.cell(row=row_index, column=column_index, value=value)
        count += 1
    log.debug("Wrote %d transactions to sheet '%s'", count, TRANSACTIONS_SHEET)
    return count


def _decimal_text(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _optional_decimal(raw: object, field_name: str) -> Optional[Decimal]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    return to_decimal(raw, field_name)


def _optional_str(raw: object) -> Optional[str]:
    return None if raw is None else str(raw)


def serialize_transaction(record: Transaction) -> List[object]:
    """Convert a record into the ``TRANSACTION_COLUMNS`` ordering."""

    return [
        record.transaction_id,
        record.timestamp,
        record.transaction_type.value,
        record.category.value,
        record.item,
        record.base_item,
        _decimal_text(record.quantity),
        record.unit,
        _decimal_text(record.unit_price),
        _decimal_text(record.cost_price),
        _decimal_text(record.selling_price),
        _decimal_text(record.amount),
        record.currency,
        record.payment_method,
        record.source,
        record.original_message,
    ]


def deserialize_transaction(raw_row: Sequence[object]) -> Transaction:
    """Convert a raw worksheet row into a :class:`Transaction`.

    Short rows (from sheets written by hand) are padded with ``None``.

    Raises:
        ValueError: If a numeric or enum column cannot be parsed.
    """

    padded = list(raw_row) + [None] * (len(TRANSACTION_COLUMNS) - len(raw_row))
    (
        transaction_id,
        timestamp,
        transaction_type,
        category,
        item,
        base_item,
        quantity_raw,
        unit,
        unit_price_raw,
        cost_price_raw,
        selling_price_raw,
        amount_raw,
        currency,
        payment_method,
        source,
        original_message,
    ) = padded[: len(TRANSACTION_COLUMNS)]

    quantity = _optional_decimal(quantity_raw, "Quantity") or Decimal("1")
    unit_price = _optional_decimal(unit_price_raw, "UnitPrice") or Decimal("0")
    amount = _optional_decimal(amount_raw, "Amount")

    return Transaction(
        transaction_id=str(transaction_id),
        timestamp=int(to_decimal(timestamp if timestamp is not None else 0, "Timestamp")),
        transaction_type=TransactionType(str(transaction_type)),
        category=Category(str(category)),
        item=str(item) if item is not None else "",
        base_item=str(base_item) if base_item is not None else str(item or "").strip().upper(),
        quantity=quantity,
        unit_price=unit_price,
        amount=amount if amount is not None else quantity * unit_price,
        unit=str(unit) if unit is not None else DEFAULT_UNIT,
        cost_price=_optional_decimal(cost_price_raw, "CostPrice"),
        selling_price=_optional_decimal(selling_price_raw, "SellingPrice"),
        currency=str(currency) if currency is not None else DEFAULT_CURRENCY,
        payment_method=_optional_str(payment_method),
        source=_optional_str(source),
        original_message=str(original_message) if original_message is not None else "",
    )
