"""Enumerations and default values shared across MarketMinder modules.

The ledger engine, the workbook persistence layer and the CLI all read their
identifiers from here so that a transaction written by one layer is always
understood by the others.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Workbook layout version expected when loading persisted ledgers.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CURRENCY = "KES"
DEFAULT_UNIT = "piece"

DUPLICATE_WINDOW_MS = 60 * 60 * 1000
DUPLICATE_AMOUNT_TOLERANCE = Decimal("0.1")
MAX_STOCK_SUGGESTIONS = 3
UNDO_WINDOW_MS = 5 * 1000
LOW_STOCK_THRESHOLD = Decimal("5")

# Input bounds: 9999-12-31T23:59:59.999Z, and a ceiling on any single number.
MAX_TIMESTAMP_MS = 253_402_300_799_999
MAX_NUMERIC_MAGNITUDE = Decimal("1E15")


class TransactionType(str, Enum):
    """Direction of a transaction. Income is a sale, Expense a purchase or cost."""

    INCOME = "Income"
    EXPENSE = "Expense"


class Category(str, Enum):
    """Ledger categories. Only ``INVENTORY`` expenses move stock into the shop."""

    INVENTORY = "Inventory"
    RENT = "Rent"
    TRANSPORT = "Transport"
    FOOD = "Food"
    SALES = "Sales"
    CREDIT = "Credit"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    """How money changed hands."""

    CASH = "Cash"
    MPESA = "M-Pesa"
    BANK = "Bank"
    CREDIT = "Credit"


class TransactionSource(str, Enum):
    """Channel through which a transaction reached the ledger."""

    SMS = "SMS"
    VOICE = "Voice"
    MPESA = "M-Pesa"
    MANUAL = "Manual"
    RECEIPT_SCAN = "Receipt Scan"


class TradeUnit(str, Enum):
    """Common units of measure offered by entry forms.

    Units are informational; the engine never converts between them.
    """

    PIECE = "piece"
    KG = "kg"
    BAG = "bag"
    CRATE = "crate"
    TRAY = "tray"
    LITRE = "litre"
    BUNCH = "bunch"
    PACKET = "packet"


class RejectionReason(str, Enum):
    """Structured reasons returned when a proposed transaction is refused."""

    DUPLICATE_TRANSACTION = "DuplicateTransaction"
    INSUFFICIENT_STOCK = "InsufficientStock"
    SELLING_AT_LOSS = "SellingAtLoss"
    VALIDATION_ERROR = "ValidationError"


class SheetName(str, Enum):
    """Worksheet names managed by the persistence layer."""

    TRANSACTIONS = "Transactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CURRENCY",
    "DEFAULT_UNIT",
    "DUPLICATE_WINDOW_MS",
    "DUPLICATE_AMOUNT_TOLERANCE",
    "MAX_STOCK_SUGGESTIONS",
    "UNDO_WINDOW_MS",
    "LOW_STOCK_THRESHOLD",
    "MAX_TIMESTAMP_MS",
    "MAX_NUMERIC_MAGNITUDE",
    "TransactionType",
    "Category",
    "PaymentMethod",
    "TransactionSource",
    "TradeUnit",
    "RejectionReason",
    "SheetName",
]
