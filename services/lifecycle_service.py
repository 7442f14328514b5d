"""
Convert lifecycle service.

Owns every transition of a convert's follow-up state:
- Registration with an initialized 8-visit schedule
- Visit toggles and milestone updates, each followed by status derivation
- Actor overrides (Unreachable / Completed) and reopening
- Batch reconciliation of stale statuses, driven by an external scheduler

Each single-record operation is read -> mutate in memory -> conditional write.
When the conditional write loses a race the operation is re-applied on a fresh
read, up to max_attempts times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, tzinfo
from typing import Any, Callable, List, Mapping, Optional, Protocol
from uuid import UUID

from domain import convert as lifecycle
from domain.actor import Actor, require_can_manage
from domain.convert import ConvertDetails, ConvertRecord
from domain.errors import ConcurrentModificationError, ConvertNotFoundError, ValidationError
from domain.time import require_utc_timestamp, utc_now

logger = logging.getLogger(__name__)


class ConvertStore(Protocol):
    """Persistence operations the engine needs. `repositories.convert_repository` satisfies it."""

    def insert_convert(self, record: ConvertRecord) -> None: ...

    def get_convert_by_id(self, convert_id: UUID) -> Optional[ConvertRecord]: ...

    def list_convert_ids_for_reconciliation(self) -> List[UUID]: ...

    def update_convert(self, record: ConvertRecord, expected_version: int) -> ConvertRecord: ...


@dataclass(frozen=True, slots=True)
class ReconciliationFailure:
    """A convert the reconciliation pass could not update."""
    convert_id: UUID
    error: str


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """
    Result of a reconciliation pass.

    updated_count: converts whose status changed (or would change, on a dry run)
    scanned_count: converts considered (status not Completed/Unreachable)
    failures: per-convert errors; the pass continues past each one
    """
    updated_count: int
    scanned_count: int
    failures: List[ReconciliationFailure] = field(default_factory=list)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failures


Mutation = Callable[[ConvertRecord, datetime], ConvertRecord]


class ConvertLifecycleEngine:
    def __init__(
        self,
        store: Optional[ConvertStore] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        schedule_tz: Optional[tzinfo] = None,
        max_attempts: int = 3,
    ) -> None:
        if store is None:
            from repositories import convert_repository as store  # type: ignore[no-redef]
        if schedule_tz is None:
            from repositories.client import get_schedule_timezone

            schedule_tz = get_schedule_timezone()
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self._store = store
        self._clock = clock
        self._schedule_tz = schedule_tz
        self._max_attempts = max_attempts

    def _now(self) -> datetime:
        now = self._clock()
        require_utc_timestamp("now", now)
        return now

    def _load(self, record_id: UUID) -> ConvertRecord:
        record = self._store.get_convert_by_id(record_id)
        if record is None:
            raise ConvertNotFoundError(f"Convert not found: {record_id}")
        return record

    def _mutate(self, record_id: UUID, change: Mutation) -> ConvertRecord:
        for attempt in range(1, self._max_attempts + 1):
            current = self._load(record_id)
            updated = change(current, self._now())
            if updated == current:
                return current

            try:
                stored = self._store.update_convert(updated, current.version)
            except ConcurrentModificationError:
                if attempt == self._max_attempts:
                    raise
                logger.debug(
                    "Retrying convert mutation after version conflict",
                    extra={"convert_id": str(record_id), "attempt": attempt},
                )
                continue

            _log_status_change(current, stored, reason="mutation")
            return stored

        raise AssertionError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------

    def create_record(
        self,
        owner_actor_id: UUID,
        parish_id: str,
        details: ConvertDetails | Mapping[str, Any],
    ) -> ConvertRecord:
        """
        Register a new convert owned by the given soul winner.

        The visit schedule is initialized and the status derived before the
        record is written.
        """

        if not isinstance(details, ConvertDetails):
            try:
                details = ConvertDetails(**dict(details))
            except TypeError as e:
                raise ValidationError(f"Invalid convert details: {e}") from None

        record = lifecycle.new_convert(
            soul_winner_id=owner_actor_id,
            parish_id=parish_id,
            details=details,
            created_at=self._now(),
            schedule_tz=self._schedule_tz,
        )
        self._store.insert_convert(record)
        logger.info(
            "Convert registered",
            extra={
                "convert_id": str(record.convert_id),
                "soul_winner_id": str(owner_actor_id),
                "parish_id": parish_id,
            },
        )
        return record

    def get_record(self, record_id: UUID) -> ConvertRecord:
        return self._load(record_id)

    def get_stage(self, record_id: UUID) -> str:
        return lifecycle.derive_stage(self._load(record_id))

    def toggle_visit(self, record_id: UUID, visit_number: int) -> ConvertRecord:
        return self._mutate(
            record_id, lambda record, now: lifecycle.toggle_visit(record, visit_number, now)
        )

    def set_milestone(self, record_id: UUID, track_name: Any, value: Any) -> ConvertRecord:
        return self.set_milestones(record_id, {track_name: value})

    def set_milestones(self, record_id: UUID, changes: Mapping[Any, Any]) -> ConvertRecord:
        """Set several milestone tracks at once; all are validated before any is applied."""

        return self._mutate(
            record_id, lambda record, now: lifecycle.update_milestones(record, changes, now)
        )

    def set_manual_status(self, record_id: UUID, status: Any, actor: Actor) -> ConvertRecord:
        """
        Override the status to Unreachable or Completed.

        The override is written as-is. Later derivations keep it, except that an
        Unreachable convert is promoted to Completed once all visits and
        milestones are done.
        """

        def change(record: ConvertRecord, now: datetime) -> ConvertRecord:
            require_can_manage(actor, record)
            return lifecycle.set_manual_status(record, status, now)

        return self._mutate(record_id, change)

    def reopen(self, record_id: UUID, actor: Actor) -> ConvertRecord:
        """Clear a manual status so derivation takes over again."""

        def change(record: ConvertRecord, now: datetime) -> ConvertRecord:
            require_can_manage(actor, record)
            return lifecycle.reopen(record, now)

        return self._mutate(record_id, change)

    def update_details(self, record_id: UUID, actor: Actor, changes: Mapping[str, Any]) -> ConvertRecord:
        def change(record: ConvertRecord, now: datetime) -> ConvertRecord:
            require_can_manage(actor, record)
            return lifecycle.update_details(record, changes, now)

        return self._mutate(record_id, change)

    # ------------------------------------------------------------------
    # Batch reconciliation
    # ------------------------------------------------------------------

    def _reconcile_one(self, convert_id: UUID, now: datetime, dry_run: bool) -> bool:
        current = self._store.get_convert_by_id(convert_id)
        if current is None:
            # Deleted since it was listed.
            return False

        for attempt in range(1, self._max_attempts + 1):
            derived = lifecycle.apply_derived_status(current, now)
            if derived.status is current.status:
                return False
            if dry_run:
                return True

            try:
                stored = self._store.update_convert(replace(derived, updated_at=now), current.version)
            except ConcurrentModificationError:
                if attempt == self._max_attempts:
                    raise
                current = self._load(convert_id)
                continue

            _log_status_change(current, stored, reason="reconciliation")
            return True

        raise AssertionError("unreachable")  # pragma: no cover

    def run_reconciliation(self, now: Optional[datetime] = None, *, dry_run: bool = False) -> ReconciliationResult:
        """
        Re-derive the status of every convert not Completed or Unreachable.

        Only converts whose status changes are written. A failure on one convert,
        including a stored row that cannot be decoded, is recorded in the result
        and does not stop the pass.

        Running twice with (practically) the same now produces no further updates.
        """

        if now is None:
            now = self._now()
        require_utc_timestamp("now", now)

        convert_ids = self._store.list_convert_ids_for_reconciliation()
        updated_count = 0
        failures: List[ReconciliationFailure] = []

        for convert_id in convert_ids:
            try:
                if self._reconcile_one(convert_id, now, dry_run):
                    updated_count += 1
            except Exception as e:
                logger.warning(
                    "Failed to reconcile convert",
                    extra={"convert_id": str(convert_id), "error": str(e)},
                )
                failures.append(ReconciliationFailure(convert_id=convert_id, error=str(e)))

        logger.info(
            "Reconciliation finished",
            extra={
                "scanned": len(convert_ids),
                "updated": updated_count,
                "failed": len(failures),
                "dry_run": dry_run,
            },
        )
        return ReconciliationResult(
            updated_count=updated_count,
            scanned_count=len(convert_ids),
            failures=failures,
            dry_run=dry_run,
        )


def _log_status_change(before: ConvertRecord, after: ConvertRecord, *, reason: str) -> None:
    if before.status is after.status:
        return
    logger.info(
        "Convert status changed",
        extra={
            "convert_id": str(after.convert_id),
            "from_status": before.status.value,
            "to_status": after.status.value,
            "reason": reason,
        },
    )


__all__ = [
    "ConvertLifecycleEngine",
    "ConvertStore",
    "ReconciliationFailure",
    "ReconciliationResult",
]
