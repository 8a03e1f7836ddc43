"""Bootstrap helpers for a fresh MarketMinder ledger.

Used by the ``marketminder init`` command, by the ``setup_excel.py`` script at
the repository root and by the test fixtures, so the workbook layout is
defined in exactly one place.
"""

from __future__ import annotations

import argparse
import configparser
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import DEFAULT_CURRENCY, EXPECTED_SCHEMA_VERSION, PaymentMethod, SheetName
from .data_manager import TRANSACTION_COLUMNS, find_config_file, parse_settings, read_config

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.TRANSACTIONS.value: TRANSACTION_COLUMNS,
}

CONFIG_FILE = "config.ini"
DEFAULT_DATA_FILE = "marketminder_data.xlsx"


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook with bold header rows.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # openpyxl always starts with a sheet called "Sheet".
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook.save(destination)
    log.info("Created ledger workbook '%s'", destination)
    return destination


def write_default_config(
    config_path: Path,
    *,
    shop_name: str,
    data_file: str = DEFAULT_DATA_FILE,
    currency: str = DEFAULT_CURRENCY,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` pointing at ``data_file`` with default guardrails."""

    config_path = Path(config_path).expanduser().resolve()
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")

    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep CamelCase option names
    parser["System"] = {
        "DataFile": data_file,
        "ShopName": shop_name,
        "SchemaVersion": EXPECTED_SCHEMA_VERSION,
    }
    parser["Defaults"] = {
        "Currency": currency,
        "PaymentMethod": PaymentMethod.CASH.value,
    }
    parser["Guardrails"] = {
        "DuplicateWindowMinutes": "60",
        "AmountTolerance": "0.1",
        "MaxSuggestions": "3",
        "UndoWindowSeconds": "5",
        "LowStockThreshold": "5",
    }
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    return config_path


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by an existing ``config.ini``."""

    config_path = Path(config_path).expanduser().resolve()
    settings = parse_settings(read_config(config_path), base_path=config_path.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize a MarketMinder ledger workbook")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration file (default: search upwards for config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)

    print("--- MarketMinder Setup ---")
    try:
        config_path = find_config_file(Path(args.config) if args.config else None)
        print(f"Using configuration: {config_path}")
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
