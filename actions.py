"""Create, edit, delete and pay actions against a ledger gateway.

Multi-record actions are fanned out as one gateway call per record and joined:
the action succeeds only if every call succeeds. Calls that did succeed are
never undone, so a failed batch can leave part of its work persisted; the
error raised says how much.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional, Protocol, Sequence, TypeVar

from billing import ClosingDaySource
from config import get_settings
from installments import (
    RemainderPolicy,
    plan_purchase,
    rebill_patch,
    strip_installment_suffix,
    with_installment_suffix,
)
from ledger import LedgerEntry, LedgerStore
from schemas import (
    PurchaseIn,
    TransactionCreatePayload,
    TransactionDTO,
    TransactionPatch,
)
from scopes import BatchScope, order_group, resolve_invoice_targets, resolve_targets

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerGateway(Protocol):
    supports_parallel: bool

    def fetch_transactions(self, month: int, year: int) -> list[TransactionDTO]: ...

    def fetch_transaction(self, transaction_id: str) -> Optional[TransactionDTO]: ...

    def fetch_group(self, group_id: str) -> list[TransactionDTO]: ...

    def create_transaction(
        self, payload: TransactionCreatePayload
    ) -> TransactionDTO: ...

    def update_transaction(
        self, transaction_id: str, patch: TransactionPatch
    ) -> Optional[TransactionDTO]: ...

    def delete_transaction(self, transaction_id: str) -> None: ...


@dataclass
class BatchResult:
    action: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)


class BatchOperationError(RuntimeError):
    def __init__(self, result: BatchResult) -> None:
        self.result = result
        done = len(result.succeeded)
        message = (
            f"Could not {result.action} {len(result.failed)} of "
            f"{result.attempted} transaction(s)."
        )
        if done:
            message += f" {done} were saved and were not undone; please review."
        super().__init__(message)


class LedgerActions:
    def __init__(
        self,
        gateway: LedgerGateway,
        store: LedgerStore,
        *,
        max_workers: Optional[int] = None,
        policy: RemainderPolicy = RemainderPolicy.absorb_last,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.max_workers = max_workers or get_settings().batch_workers
        self.policy = policy

    def load(self, month: int, year: int) -> None:
        self.store.load(self.gateway.fetch_transactions(month, year), month, year)

    def refresh(self) -> None:
        if self.store.month is not None and self.store.year is not None:
            self.load(self.store.month, self.store.year)

    def _join(
        self, action: str, calls: Sequence[tuple[str, Callable[[], T]]]
    ) -> tuple[BatchResult, dict[str, T]]:
        result = BatchResult(action)
        values: dict[str, T] = {}
        if not calls:
            return result, values

        def run(call: tuple[str, Callable[[], T]]) -> tuple[str, T | Exception]:
            key, fn = call
            try:
                return key, fn()
            except Exception as exc:
                return key, exc

        if getattr(self.gateway, "supports_parallel", False) and len(calls) > 1:
            workers = min(self.max_workers, len(calls))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(run, calls))
        else:
            outcomes = [run(call) for call in calls]

        for key, outcome in outcomes:
            if isinstance(outcome, Exception):
                result.failed[key] = str(outcome)
            else:
                result.succeeded.append(key)
                values[key] = outcome

        if result.failed:
            logger.error(
                f"batch_failed: action={action} ok={len(result.succeeded)} "
                f"failed={len(result.failed)} errors={result.failed}"
            )
        else:
            logger.info(f"batch_done: action={action} count={len(result.succeeded)}")
        return result, values

    def create_purchase(
        self, purchase: PurchaseIn, card: Optional[ClosingDaySource] = None
    ) -> list[TransactionDTO]:
        payloads = plan_purchase(purchase, card, policy=self.policy)
        calls = [
            (
                f"{p.installment_current}/{p.installment_total}",
                partial(self.gateway.create_transaction, p),
            )
            for p in payloads
        ]
        result, created = self._join("create", calls)
        self.refresh()
        if not result.ok:
            raise BatchOperationError(result)
        return [created[key] for key, _ in calls]

    def _group_for(self, target: LedgerEntry) -> list:
        if not target.group_id:
            return [target]
        members = self.gateway.fetch_group(target.group_id)
        return order_group(members) if members else [target]

    def _resolve(
        self, target_id: str, scope: BatchScope
    ) -> tuple[Optional[LedgerEntry], list]:
        target = self.store.get(target_id)
        if target is None:
            return None, []
        group = self._group_for(target)
        ids = resolve_targets(group, target_id, scope)
        return target, [member for member in group if member.id in ids]

    def delete(
        self, target_id: str, scope: BatchScope = BatchScope.single
    ) -> BatchResult:
        _, members = self._resolve(target_id, scope)
        calls = [
            (m.id, partial(self.gateway.delete_transaction, m.id)) for m in members
        ]
        result, _ = self._join("delete", calls)
        self.store.remove(result.succeeded)
        if not result.ok:
            raise BatchOperationError(result)
        return result

    def edit(
        self,
        target_id: str,
        scope: BatchScope,
        patch: TransactionPatch,
        card: Optional[ClosingDaySource] = None,
    ) -> BatchResult:
        """Apply ``patch`` to the scoped members of the target's group.

        ``card`` is the card the members end up on. Billing dates are always
        derived from it, never taken from the patch. A group-wide edit leaves
        every member's own purchase date alone.
        """
        target, members = self._resolve(target_id, scope)
        if target is None:
            return BatchResult("update")
        changes = patch.changes()
        changes.pop("billing_date", None)
        if scope != BatchScope.single:
            changes.pop("purchase_date", None)
        base = changes.get("description")
        if base is not None:
            base = strip_installment_suffix(base)

        calls = []
        for member in members:
            member_changes = dict(changes)
            if base is not None:
                member_changes["description"] = with_installment_suffix(
                    base, member.installment_current, member.installment_total
                )
            member_patch = rebill_patch(
                member, TransactionPatch(**member_changes), card
            )
            calls.append(
                (
                    member.id,
                    partial(self.gateway.update_transaction, member.id, member_patch),
                )
            )
        result, _ = self._join("update", calls)
        self.refresh()
        if not result.ok:
            raise BatchOperationError(result)
        return result

    def toggle_paid(
        self, target_id: str, scope: BatchScope = BatchScope.single
    ) -> BatchResult:
        target, members = self._resolve(target_id, scope)
        if target is None:
            return BatchResult("update")
        return self._set_paid([m.id for m in members], not target.paid)

    def pay_invoice(
        self,
        card_id: str,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
        mark_paid: bool = True,
    ) -> BatchResult:
        month = month if month is not None else self.store.month
        year = year if year is not None else self.store.year
        if month is None or year is None:
            return BatchResult("update")
        ids = resolve_invoice_targets(
            self.store.entries, card_id, month, year, mark_paid=mark_paid
        )
        return self._set_paid(sorted(ids), mark_paid)

    def _set_paid(self, ids: list[str], paid: bool) -> BatchResult:
        patch = TransactionPatch(paid=paid)
        snapshot = self.store.apply_local_patch(ids, patch)
        calls = [
            (tid, partial(self.gateway.update_transaction, tid, patch)) for tid in ids
        ]
        result, _ = self._join("update", calls)
        if not result.ok:
            self.store.restore(
                {tid: snapshot[tid] for tid in result.failed if tid in snapshot}
            )
            raise BatchOperationError(result)
        return result
