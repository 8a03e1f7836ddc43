"""Command-line entry points for MarketMinder.

The CLI is a manual-entry collaborator of the ledger engine: it translates
arguments into :class:`~marketminder.records.TransactionDraft` objects (or
edited records), calls the mutation API in :mod:`marketminder.core_logic`
and prints the result. The workbook is loaded before and saved after every
mutating command, so the in-session undo slot is not exposed here.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, setup_excel
from .constants import Category, PaymentMethod, TradeUnit, TransactionSource, TransactionType
from .guardrails import format_quantity
from .records import TransactionDraft, to_decimal

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_REJECTED = 2
EXIT_MISSING_FILE = 3

Executor = Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction], argparse.ArgumentParser]
    execute: Executor
    mutates: bool = False
    needs_context: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="marketminder",
        description="MarketMinder ledger: record sales and purchases, check stock and profit.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (defaults to searching upwards from the current directory).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all sub-commands onto ``parser`` and return the command table."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: argparse._SubParsersAction) -> Dict[str, CommandSpec]:
    """Declare commands that change the ledger."""
    specs = {
        "init": register_init_command(),
        "sale": register_sale_command(),
        "purchase": register_purchase_command(),
        "expense": register_expense_command(),
        "edit": register_edit_command(),
        "delete": register_delete_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: argparse._SubParsersAction) -> Dict[str, CommandSpec]:
    """Declare read-only reporting commands."""
    specs = {
        "stock": _simple_spec("stock", "Show stock on hand per item.", run_stock_report),
        "cost-basis": _simple_spec("cost-basis", "Show the last purchase price per item.", run_cost_basis_report),
        "log": _simple_spec("log", "Show the ledger with running balances, newest first.", run_log_report),
        "profit": _simple_spec("profit", "Show income, expenses and gross profit.", run_profit_report),
        "low-stock": register_low_stock_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_spec(name: str, help_text: str, execute: Executor) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _add_item_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--item", required=True)
    parser.add_argument("--base-item", default=None, help="Canonical item key (defaults to the uppercased item).")
    parser.add_argument("--quantity", default="1")
    parser.add_argument("--unit", default=TradeUnit.PIECE.value)
    parser.add_argument("--unit-price", required=True)
    parser.add_argument(
        "--payment-method",
        choices=[member.value for member in PaymentMethod],
        default=None,
    )
    parser.add_argument("--notes", dest="notes", default=None)


def register_init_command() -> CommandSpec:
    """Register ``init``, which writes config.ini and an empty workbook."""
    name = "init"
    help_text = "Create config.ini and an empty ledger workbook."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shop-name", required=True)
        parser.add_argument("--data-file", default=setup_excel.DEFAULT_DATA_FILE)
        parser.add_argument("--currency", default="KES")
        parser.add_argument("--force", action="store_true", help="Overwrite existing files.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init, needs_context=False)


def register_sale_command() -> CommandSpec:
    """Register ``sale``."""
    name = "sale"
    help_text = "Record a sale (stock leaves the shop)."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_purchase_command() -> CommandSpec:
    """Register ``purchase``."""
    name = "purchase"
    help_text = "Record a stock purchase (stock enters the shop)."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_arguments(parser)
        parser.add_argument("--selling-price", default=None, help="Optional target resale price per unit.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase, mutates=True)


def register_expense_command() -> CommandSpec:
    """Register ``expense`` for costs that do not move stock."""
    name = "expense"
    help_text = "Record a business expense such as rent or transport."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item", required=True, help="What the money was spent on.")
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in Category if member not in (Category.INVENTORY, Category.SALES)],
            default=Category.OTHER.value,
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=None,
        )
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense, mutates=True)


def register_edit_command() -> CommandSpec:
    """Register ``edit``."""
    name = "edit"
    help_text = "Edit quantity, price or item of an existing transaction."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--item", default=None)
        parser.add_argument("--quantity", default=None)
        parser.add_argument("--unit-price", default=None)
        parser.add_argument("--selling-price", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit, mutates=True)


def register_delete_command() -> CommandSpec:
    """Register ``delete``."""
    name = "delete"
    help_text = "Delete a transaction."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete, mutates=True)


def register_low_stock_command() -> CommandSpec:
    """Register ``low-stock``."""
    name = "low-stock"
    help_text = "List stocked items at or below the low-stock threshold."

    def registrar(action: argparse._SubParsersAction) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--threshold", default=None, help="Override the configured threshold.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context and verify the ledger schema."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Index command specifications by name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def dispatch_command(
    context: Optional[core_logic.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if getattr(args, "command", None) is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


# ---------------------------------------------------------------------------
# Argument translation
# ---------------------------------------------------------------------------


def translate_sale(args: argparse.Namespace, *, default_payment_method: Optional[str] = None) -> TransactionDraft:
    """Translate CLI args into a sale draft."""
    return TransactionDraft(
        item=args.item,
        base_item=args.base_item,
        transaction_type=TransactionType.INCOME,
        category=Category.SALES,
        quantity=args.quantity,
        unit=args.unit,
        unit_price=args.unit_price,
        payment_method=args.payment_method or default_payment_method,
        source=TransactionSource.MANUAL.value,
        original_message=args.notes or f"{args.quantity} {args.unit} of {args.item} sold (CLI).",
    )


def translate_purchase(args: argparse.Namespace, *, default_payment_method: Optional[str] = None) -> TransactionDraft:
    """Translate CLI args into a stock purchase draft."""
    return TransactionDraft(
        item=args.item,
        base_item=args.base_item,
        transaction_type=TransactionType.EXPENSE,
        category=Category.INVENTORY,
        quantity=args.quantity,
        unit=args.unit,
        unit_price=args.unit_price,
        selling_price=args.selling_price,
        payment_method=args.payment_method or default_payment_method,
        source=TransactionSource.MANUAL.value,
        original_message=args.notes or f"{args.quantity} {args.unit} of {args.item} bought (CLI).",
    )


def translate_expense(args: argparse.Namespace, *, default_payment_method: Optional[str] = None) -> TransactionDraft:
    """Translate CLI args into a non-stock expense draft."""
    return TransactionDraft(
        item=args.item,
        transaction_type=TransactionType.EXPENSE,
        category=Category(args.category),
        quantity=1,
        amount=args.amount,
        payment_method=args.payment_method or default_payment_method,
        source=TransactionSource.MANUAL.value,
        original_message=args.notes or f"{args.item} ({args.category}) paid (CLI).",
    )


def translate_edit(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect the fields an ``edit`` invocation asks to change."""
    changes: Dict[str, Any] = {}
    if args.item is not None:
        changes["item"] = args.item
        changes["base_item"] = args.item
    if args.quantity is not None:
        changes["quantity"] = to_decimal(args.quantity, "quantity")
    if args.unit_price is not None:
        changes["unit_price"] = to_decimal(args.unit_price, "unit_price")
    if args.selling_price is not None:
        changes["selling_price"] = to_decimal(args.selling_price, "selling_price")
    return changes


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _report_result(result: core_logic.MutationResult) -> int:
    if result.success:
        record = result.transaction
        print(
            f"Recorded {record.transaction_type.value} {record.transaction_id}: "
            f"{format_quantity(record.quantity)} {record.unit} {record.base_item} = {record.amount} {record.currency}"
        )
        if result.matched_item:
            print(f"Note: matched to existing item {result.matched_item}.")
        return EXIT_OK
    print(f"Rejected ({result.reason.value}): {result.error}")
    if result.suggestion:
        print(f"Suggestion: {result.suggestion}")
    return EXIT_REJECTED


def _add(context: core_logic.RuntimeContext, draft: TransactionDraft) -> int:
    result = core_logic.add_transaction(
        context.store,
        draft,
        policy=context.settings.guardrails,
        default_currency=context.settings.default_currency,
    )
    return _report_result(result)


def run_init(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Write config.ini and the empty workbook next to it."""
    config_path = Path(args.config) if getattr(args, "config", None) else Path.cwd() / setup_excel.CONFIG_FILE
    setup_excel.write_default_config(
        config_path,
        shop_name=args.shop_name,
        data_file=args.data_file,
        currency=args.currency,
        overwrite=args.force,
    )
    workbook_path = setup_excel.run_from_config(config_path, overwrite=args.force)
    print(f"Created {config_path} and {workbook_path}")
    return EXIT_OK


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _add(context, translate_sale(args, default_payment_method=context.settings.default_payment_method))


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _add(context, translate_purchase(args, default_payment_method=context.settings.default_payment_method))


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _add(context, translate_expense(args, default_payment_method=context.settings.default_payment_method))


def run_edit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Apply field changes to an existing record through the guarded update path."""
    existing = context.store.get(args.transaction_id)
    if existing is None:
        print(f"Unknown transaction id: {args.transaction_id}")
        return EXIT_REJECTED
    candidate = replace(existing, **translate_edit(args))
    result = core_logic.update_transaction(context.store, candidate, policy=context.settings.guardrails)
    return _report_result(result)


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.transaction_id not in context.store:
        print(f"Unknown transaction id: {args.transaction_id}")
        return EXIT_REJECTED
    core_logic.delete_transaction(context.store, args.transaction_id)
    print(f"Deleted {args.transaction_id}")
    return EXIT_OK


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    levels = core_logic.get_inventory_levels(context.store)
    for key in sorted(levels):
        print(f"{key:<30} {format_quantity(levels[key]):>10}")
    return EXIT_OK


def run_cost_basis_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    basis = core_logic.get_cost_basis(context.store)
    for key in sorted(basis):
        print(f"{key:<30} {basis[key]:>12} {context.settings.default_currency}")
    return EXIT_OK


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for record in core_logic.get_transactions_with_running_balance(context.store):
        sign = "+" if record.transaction_type is TransactionType.INCOME else "-"
        print(
            f"{record.transaction_id}  {record.category.value:<10} {record.item:<25} "
            f"{format_quantity(record.quantity):>8} {sign}{record.amount:>12}  bal {record.running_balance}"
        )
    return EXIT_OK


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = core_logic.calculate_profit_summary(context.store)
    for key, value in summary.items():
        print(f"{key.replace('_', ' '):<20} {value}")
    return EXIT_OK


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    threshold = context.settings.low_stock_threshold
    if getattr(args, "threshold", None) is not None:
        threshold = to_decimal(args.threshold, "threshold")
    for key, level in core_logic.list_low_stock_items(context.store, threshold):
        print(f"{key:<30} {format_quantity(level):>10}")
    return EXIT_OK


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into exit codes."""
    if isinstance(error, (FileNotFoundError, FileExistsError)):
        log.error("%s", error)
        return EXIT_MISSING_FILE
    if isinstance(error, ValueError):
        log.error("Invalid input: %s", error)
        return EXIT_REJECTED
    log.error("%s", error)
    return EXIT_FAILURE


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist the ledger after a successful mutating command."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    spec = command_table[args.command]
    try:
        context = load_runtime_context(args.config) if spec.needs_context else None
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == EXIT_OK and spec.mutates and context is not None:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
