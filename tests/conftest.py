"""Shared pytest fixtures and utilities for MarketMinder tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from marketminder import cli, constants, core_logic  # noqa: E402
from marketminder.constants import Category, TransactionType  # noqa: E402
from marketminder.records import Transaction, TransactionDraft  # noqa: E402
from marketminder.setup_excel import create_master_workbook  # noqa: E402
from marketminder.store import TransactionStore  # noqa: E402

# 2025-10-09T09:46:40Z, an arbitrary fixed trading moment.
T0 = 1_760_003_200_000
MINUTE = 60_000

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "Currency = KES\n"
    "PaymentMethod = Cash\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0) -> None:
        self.value = start

    def __call__(self) -> int:
        return self.value

    def advance(self, millis: int) -> int:
        self.value += millis
        return self.value


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an empty ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Duka",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        extra: str = "",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
            )
            + extra
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> TransactionStore:
    """An empty store driven by the fake clock."""

    return TransactionStore(clock=clock)


def sale(item: str, quantity, unit_price, *, timestamp: int | None = None, **kwargs) -> TransactionDraft:
    return TransactionDraft(
        item=item,
        transaction_type=TransactionType.INCOME,
        category=Category.SALES,
        quantity=quantity,
        unit_price=unit_price,
        timestamp=timestamp,
        **kwargs,
    )


def purchase(item: str, quantity, unit_price, *, timestamp: int | None = None, **kwargs) -> TransactionDraft:
    return TransactionDraft(
        item=item,
        transaction_type=TransactionType.EXPENSE,
        category=Category.INVENTORY,
        quantity=quantity,
        unit_price=unit_price,
        timestamp=timestamp,
        **kwargs,
    )


def record(
    transaction_id: str,
    timestamp: int,
    transaction_type: TransactionType,
    base_item: str,
    quantity,
    unit_price,
    *,
    category: Category | None = None,
    cost_price=None,
) -> Transaction:
    """Build a committed-looking record directly, bypassing the guardrails."""

    if category is None:
        category = Category.SALES if transaction_type is TransactionType.INCOME else Category.INVENTORY
    quantity = Decimal(str(quantity))
    unit_price = Decimal(str(unit_price))
    return Transaction(
        transaction_id=transaction_id,
        timestamp=timestamp,
        transaction_type=transaction_type,
        category=category,
        item=base_item.title(),
        base_item=base_item,
        quantity=quantity,
        unit_price=unit_price,
        amount=quantity * unit_price,
        cost_price=None if cost_price is None else Decimal(str(cost_price)),
    )


@pytest.fixture
def sample_records() -> List[Transaction]:
    """A small ledger in display order (newest first)."""

    rows = [
        record("T1", T0, TransactionType.EXPENSE, "RICE", 50, 80),
        record("T2", T0 + 10 * MINUTE, TransactionType.INCOME, "RICE", 10, 90, cost_price=80),
        record("T3", T0 + 20 * MINUTE, TransactionType.EXPENSE, "SHOP RENT", 1, 3000, category=Category.RENT),
        record("T4", T0 + 30 * MINUTE, TransactionType.EXPENSE, "RICE", 20, 85),
        record("T5", T0 + 40 * MINUTE, TransactionType.EXPENSE, "BEANS", 12, 120),
        record("T6", T0 + 50 * MINUTE, TransactionType.INCOME, "BEANS", 2, 150, cost_price=120),
    ]
    return list(reversed(rows))


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="marketminder", description="MarketMinder CLI")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
