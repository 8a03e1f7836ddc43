"""Unit tests documenting the expected behavior of the persistence layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from conftest import MINUTE, T0, record
from marketminder import constants, data_manager
from marketminder.constants import Category, TransactionType
from marketminder.records import Transaction


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery walks up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=ledger.xlsx")
    nested = tmp_path / "reports" / "2025"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    parser = data_manager.read_config(config_file)

    assert parser.get("System", "ShopName") == "Test Duka"
    assert parser.get("Defaults", "Currency") == "KES"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.shop_name == "Test Duka"
    assert settings.default_payment_method == "Cash"


def test_parse_settings_defaults_guardrails(config_file):
    """Without a [Guardrails] section the engine defaults apply."""

    settings = data_manager.parse_settings(data_manager.read_config(config_file))

    assert settings.guardrails.duplicate_window_ms == constants.DUPLICATE_WINDOW_MS
    assert settings.guardrails.amount_tolerance == Decimal("0.1")
    assert settings.guardrails.max_suggestions == 3
    assert settings.undo_window_ms == constants.UNDO_WINDOW_MS
    assert settings.low_stock_threshold == Decimal("5")


def test_parse_settings_reads_guardrail_overrides(config_factory):
    bundle = config_factory(
        extra=(
            "\n[Guardrails]\n"
            "DuplicateWindowMinutes = 15\n"
            "AmountTolerance = 0.5\n"
            "MaxSuggestions = 5\n"
            "UndoWindowSeconds = 2.5\n"
            "LowStockThreshold = 12\n"
        )
    )

    settings = data_manager.parse_settings(data_manager.read_config(bundle.config_path))

    assert settings.guardrails.duplicate_window_ms == 15 * MINUTE
    assert settings.guardrails.amount_tolerance == Decimal("0.5")
    assert settings.guardrails.max_suggestions == 5
    assert settings.undo_window_ms == 2_500
    assert settings.low_stock_threshold == Decimal("12")


def test_parse_settings_rejects_bad_guardrail_number(config_factory):
    bundle = config_factory(extra="\n[Guardrails]\nMaxSuggestions = lots\n")

    with pytest.raises(ValueError):
        data_manager.parse_settings(data_manager.read_config(bundle.config_path))


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=ledger.xlsx\nShopName=Duka\nSchemaVersion=1.0.0\n")

    with pytest.raises(KeyError, match="Missing required configuration entry"):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(ledger_workbook_path):
    workbook = data_manager.open_workbook(ledger_workbook_path)

    assert isinstance(workbook, OpenpyxlWorkbook)
    assert data_manager.TRANSACTIONS_SHEET in workbook.sheetnames


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_open_workbook_without_transactions_sheet_raises(tmp_path):
    path = tmp_path / "other.xlsx"
    openpyxl.Workbook().save(path)

    with pytest.raises(KeyError):
        data_manager.open_workbook(path)


def test_save_workbook_creates_parent_directories(ledger_workbook_path, tmp_path):
    workbook = data_manager.open_workbook(ledger_workbook_path)
    destination = tmp_path / "backups" / "copy.xlsx"

    data_manager.save_workbook(workbook, destination)

    assert destination.exists()


def test_refresh_workbook_discards_unsaved_rows(ledger_workbook_path, sample_records):
    workbook = data_manager.open_workbook(ledger_workbook_path)
    data_manager.write_transactions(workbook, sample_records)

    refreshed = data_manager.refresh_workbook(ledger_workbook_path)

    assert refreshed is not workbook
    assert list(data_manager.iter_transactions(refreshed)) == []


def test_write_and_iter_transactions_round_trip_through_disk(ledger_workbook_path, sample_records):
    """Rows survive a save and reload in display order with exact Decimals."""

    workbook = data_manager.open_workbook(ledger_workbook_path)
    written = data_manager.write_transactions(workbook, sample_records)
    data_manager.save_workbook(workbook, ledger_workbook_path)

    loaded = list(data_manager.iter_transactions(data_manager.open_workbook(ledger_workbook_path)))

    assert written == 6
    assert [r.transaction_id for r in loaded] == [r.transaction_id for r in sample_records]
    assert loaded == sample_records


def test_write_transactions_replaces_previous_body(ledger_workbook_path, sample_records):
    workbook = data_manager.open_workbook(ledger_workbook_path)
    data_manager.write_transactions(workbook, sample_records)

    data_manager.write_transactions(workbook, sample_records[:2])

    sheet = workbook[data_manager.TRANSACTIONS_SHEET]
    assert sheet.max_row == 3
    assert [cell.value for cell in sheet[1]] == list(data_manager.TRANSACTION_COLUMNS)


def test_iter_transactions_skips_blank_rows(ledger_workbook_path):
    workbook = data_manager.open_workbook(ledger_workbook_path)
    sheet = workbook[data_manager.TRANSACTIONS_SHEET]
    sheet.append([None] * len(data_manager.TRANSACTION_COLUMNS))
    sheet.append(["T1", T0, "Expense", "Inventory", "Rice", "RICE", "5", "kg", "80"])

    rows = list(data_manager.iter_transactions(workbook))

    assert len(rows) == 1
    assert rows[0].amount == Decimal("400")
    assert rows[0].unit == "kg"


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def test_serialize_transaction_preserves_column_order():
    transaction = Transaction(
        transaction_id="T20251009094640000000-a1b2c3",
        timestamp=T0,
        transaction_type=TransactionType.INCOME,
        category=Category.SALES,
        item="Rice 2kg",
        base_item="RICE",
        quantity=Decimal("2"),
        unit="kg",
        unit_price=Decimal("90.50"),
        amount=Decimal("181.00"),
        cost_price=Decimal("80"),
        selling_price=Decimal("90.50"),
        currency="KES",
        payment_method="M-Pesa",
        source="SMS",
        original_message="nimeuza mchele kilo 2",
    )

    row = data_manager.serialize_transaction(transaction)

    assert len(row) == len(data_manager.TRANSACTION_COLUMNS)
    assert row == [
        "T20251009094640000000-a1b2c3",
        T0,
        "Income",
        "Sales",
        "Rice 2kg",
        "RICE",
        "2",
        "kg",
        "90.50",
        "80",
        "90.50",
        "181.00",
        "KES",
        "M-Pesa",
        "SMS",
        "nimeuza mchele kilo 2",
    ]


def test_serialize_transaction_leaves_missing_prices_empty():
    row = data_manager.serialize_transaction(record("T1", T0, TransactionType.INCOME, "MANDAZI", 3, 10))

    assert row[9] is None
    assert row[10] is None


def test_deserialize_transaction_constructs_dataclass():
    raw = ("T1", T0, "Expense", "Rent", "Shop rent", None, 1, None, 3000.0, None, None, 3000.0)

    transaction = data_manager.deserialize_transaction(raw)

    assert transaction.transaction_type is TransactionType.EXPENSE
    assert transaction.category is Category.RENT
    assert transaction.base_item == "SHOP RENT"
    assert transaction.unit == constants.DEFAULT_UNIT
    assert transaction.unit_price == Decimal("3000.0")
    assert transaction.currency == constants.DEFAULT_CURRENCY
    assert transaction.original_message == ""
    assert transaction.running_balance is None


def test_deserialize_transaction_rejects_unknown_type():
    with pytest.raises(ValueError):
        data_manager.deserialize_transaction(("T1", T0, "Refund", "Sales", "Rice", "RICE", "1", "kg", "90"))
