"""Ledger mutation API for MarketMinder.

This module is the only sanctioned way to change a
:class:`~marketminder.store.TransactionStore`. Every write recomputes the
projections from the current store, asks the guardrail engine for a verdict
and commits only on accept. Rejections come back as
:class:`MutationResult` values; nothing here raises across the API for a
refused or malformed transaction.

The runtime-context helpers at the bottom bridge the engine to the workbook
persistence collaborator for the CLI. The mutation and read functions
themselves perform no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log, projections
from .constants import DEFAULT_CURRENCY, EXPECTED_SCHEMA_VERSION, LOW_STOCK_THRESHOLD, RejectionReason
from .guardrails import DEFAULT_POLICY, Accept, GuardrailPolicy, Reject, evaluate, evaluate_update
from .records import (
    DraftValidationError,
    Transaction,
    TransactionDraft,
    build_transaction,
    revalidate_transaction,
)
from .store import TransactionStore


@dataclass(frozen=True)
class MutationResult:
    """Outcome of an add or update call.

    ``transaction`` is the committed record on success. On failure ``error``
    holds a human-readable message, ``reason`` the structured category and
    ``suggestion`` an optional hint (alternative items, minimum price).
    """

    success: bool
    transaction: Optional[Transaction] = None
    error: Optional[str] = None
    reason: Optional[RejectionReason] = None
    suggestion: Optional[str] = None
    matched_item: Optional[str] = None

    @classmethod
    def rejected(cls, rejection: Reject) -> "MutationResult":
        return cls(
            success=False,
            error=rejection.message,
            reason=rejection.reason,
            suggestion=rejection.suggestion,
        )

    @classmethod
    def invalid(cls, message: str) -> "MutationResult":
        return cls(success=False, error=message, reason=RejectionReason.VALIDATION_ERROR)


def add_transaction(
    store: TransactionStore,
    draft: TransactionDraft,
    *,
    policy: GuardrailPolicy = DEFAULT_POLICY,
    default_currency: str = DEFAULT_CURRENCY,
    now: Optional[int] = None,
) -> MutationResult:
    """Validate, guard and commit a new transaction.

    The draft is normalized first; malformed drafts fail with
    ``ValidationError`` before any projection is computed. Accepted records
    are placed at the front of the store's display order.

    Args:
        store (TransactionStore): Store to mutate.
        draft (TransactionDraft): Proposed transaction from a collaborator.
        policy (GuardrailPolicy): Duplicate window and suggestion limits.
        default_currency (str): Currency for drafts that omit one.
        now (int | None): Millisecond clock override; defaults to the store's
            clock.

    Returns:
        MutationResult: ``success=True`` with the committed record, or the
            structured rejection.
    """

    now = store.now() if now is None else now
    try:
        proposed = build_transaction(draft, now=now, default_currency=default_currency)
    except DraftValidationError as exc:
        log.warning("Rejected malformed draft: %s", exc)
        return MutationResult.invalid(str(exc))

    if proposed.transaction_id in store:
        log.warning("Rejected draft reusing transaction id '%s'", proposed.transaction_id)
        return MutationResult.invalid(f"Transaction id already exists: {proposed.transaction_id}")

    records = store.records
    verdict = evaluate(
        proposed,
        records,
        projections.project_inventory(records),
        projections.project_cost_basis(records),
        policy=policy,
    )
    if isinstance(verdict, Reject):
        return MutationResult.rejected(verdict)

    store.prepend(verdict.transaction)
    log.info(
        "Recorded %s '%s' for %s (quantity=%s, amount=%s)",
        verdict.transaction.transaction_type.value,
        verdict.transaction.transaction_id,
        verdict.transaction.base_item,
        verdict.transaction.quantity,
        verdict.transaction.amount,
    )
    return MutationResult(success=True, transaction=verdict.transaction, matched_item=verdict.matched_item)


def add_transactions(
    store: TransactionStore,
    drafts: Iterable[TransactionDraft],
    *,
    policy: GuardrailPolicy = DEFAULT_POLICY,
    default_currency: str = DEFAULT_CURRENCY,
    now: Optional[int] = None,
) -> List[MutationResult]:
    """Add several drafts in order, as parsed from one receipt or message.

    Each draft sees the store as left by the previous one, so a purchase
    followed by a sale of the same item in one batch works. One rejection
    does not stop the rest.
    """

    return [
        add_transaction(store, draft, policy=policy, default_currency=default_currency, now=now)
        for draft in drafts
    ]


def update_transaction(
    store: TransactionStore,
    candidate: Transaction,
    *,
    policy: GuardrailPolicy = DEFAULT_POLICY,
) -> MutationResult:
    """Replace an existing record after re-running the loss guardrail.

    ``amount`` is recomputed from the edited ``quantity`` and ``unit_price``.
    Duplicate and stock checks are not repeated for edits.
    """

    previous = store.get(candidate.transaction_id)
    if previous is None:
        log.warning("Update ignored for unknown transaction '%s'", candidate.transaction_id)
        return MutationResult.invalid(f"Unknown transaction id: {candidate.transaction_id}")

    try:
        edited = revalidate_transaction(candidate)
    except DraftValidationError as exc:
        log.warning("Rejected malformed edit of '%s': %s", candidate.transaction_id, exc)
        return MutationResult.invalid(str(exc))

    others = [record for record in store.records if record.transaction_id != edited.transaction_id]
    verdict = evaluate_update(
        edited,
        projections.project_cost_basis(others),
        previous=previous,
        policy=policy,
    )
    if isinstance(verdict, Reject):
        return MutationResult.rejected(verdict)

    store.replace(verdict.transaction)
    log.info(
        "Updated transaction '%s' (quantity=%s, unit_price=%s, amount=%s)",
        verdict.transaction.transaction_id,
        verdict.transaction.quantity,
        verdict.transaction.unit_price,
        verdict.transaction.amount,
    )
    return MutationResult(success=True, transaction=verdict.transaction, matched_item=verdict.matched_item)


def delete_transaction(store: TransactionStore, transaction_id: str, *, now: Optional[int] = None) -> None:
    """Remove a record, keeping it in the single undo slot.

    A later delete discards the previous undo opportunity. Unknown ids are a
    no-op and leave any armed undo slot untouched.
    """

    now = store.now() if now is None else now
    slot = store.remove(transaction_id, now=now)
    if slot is None:
        log.warning("Delete ignored for unknown transaction '%s'", transaction_id)
        return
    log.info("Deleted transaction '%s' from index %d", transaction_id, slot.index)


def undo_delete(store: TransactionStore, *, now: Optional[int] = None) -> Optional[Transaction]:
    """Restore the last deleted record if its undo window is still open.

    Returns:
        Transaction | None: The restored record, or ``None`` when there was
            nothing to restore or the window had expired.
    """

    now = store.now() if now is None else now
    restored = store.restore(now=now)
    if restored is None:
        log.info("Undo requested with no restorable delete")
        return None
    log.info("Restored transaction '%s'", restored.transaction_id)
    return restored


def get_inventory_levels(store: TransactionStore) -> Dict[str, Decimal]:
    return projections.project_inventory(store.records)


def get_cost_basis(store: TransactionStore) -> Dict[str, Decimal]:
    return projections.project_cost_basis(store.records)


def get_transactions_with_running_balance(store: TransactionStore) -> List[Transaction]:
    """Records annotated with ``running_balance``, newest first."""
    return projections.project_running_balance(store.records)


def calculate_profit_summary(store: TransactionStore) -> Dict[str, Decimal]:
    return projections.calculate_profit_summary(store.records)


def list_low_stock_items(
    store: TransactionStore,
    threshold: Decimal = LOW_STOCK_THRESHOLD,
) -> List[Tuple[str, Decimal]]:
    return projections.list_low_stock_items(store.records, threshold)


# ---------------------------------------------------------------------------
# Runtime context: bridging the engine to the workbook collaborator
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, the open workbook and the store loaded from it."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: TransactionStore


def _build_store(settings: data_manager.ConfigSettings, workbook: Workbook) -> TransactionStore:
    return TransactionStore(
        data_manager.iter_transactions(workbook),
        undo_window_ms=settings.undo_window_ms,
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve ``config.ini``, open the workbook and load its ledger.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = _build_store(settings, workbook)
    log.info("Loaded %d transactions from '%s'", len(store), settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, store=store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work with a ledger written for another schema version.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Ledger schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Ledger schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def persist_context(context: RuntimeContext) -> None:
    """Write the store back to the workbook and save it to disk."""

    data_manager.write_transactions(context.workbook, context.store.records)
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted %d transactions to '%s'", len(context.store), context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, dropping unsaved changes and the undo slot."""

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        store=_build_store(context.settings, workbook),
    )
