"""
Convert repository (persistence).

This module provides *only* persistence operations for the ConvertRecord domain
entity. No lifecycle rules (status, stage, visit scheduling) belong here.

Writes are conditional on the stored `version` column so that each record's
read-modify-write is atomic: an update only lands if nobody else has written the
row since it was read.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, List, Mapping
from uuid import UUID

from domain.convert import (
    ConvertDetails,
    ConvertRecord,
    ConvertStatus,
    FollowUpVisit,
    SpiritualGrowth,
)
from domain.errors import ConcurrentModificationError, ConvertNotFoundError
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import get_supabase

logger = logging.getLogger(__name__)

# Supabase table name for Convert records.
# Keep this aligned with your database schema.
_CONVERTS_TABLE: str = "converts"

# Supabase caps a single select at 1000 rows by default.
_PAGE_SIZE: int = 1000

_TERMINAL_STATUSES = [ConvertStatus.COMPLETED.value, ConvertStatus.UNREACHABLE.value]


def _visit_to_json(visit: FollowUpVisit) -> dict[str, Any]:
    return {
        "visit_number": visit.visit_number,
        "title": visit.title,
        "visit_date": to_iso_utc(visit.visit_date, name="visit_date"),
        "is_completed": visit.is_completed,
        "completed_at": (
            to_iso_utc(visit.completed_at, name="completed_at") if visit.completed_at is not None else None
        ),
    }


def _json_to_visit(item: Mapping[str, Any]) -> FollowUpVisit:
    completed_at = item.get("completed_at")
    return FollowUpVisit(
        visit_number=int(item["visit_number"]),
        title=str(item["title"]),
        visit_date=parse_utc_datetime(item["visit_date"]),
        is_completed=bool(item.get("is_completed", False)),
        completed_at=parse_utc_datetime(completed_at) if completed_at else None,
    )


def _convert_to_row(record: ConvertRecord) -> dict[str, Any]:
    """Convert a domain ConvertRecord to a Supabase row payload."""

    details = record.details
    growth = record.spiritual_growth

    return {
        # Core identifiers
        "convert_id": str(record.convert_id),
        "soul_winner_id": str(record.soul_winner_id),
        "parish_id": record.parish_id,

        # Demographics
        "name": details.name,
        "phone": details.phone,
        "whatsapp": details.whatsapp,
        "house_address": details.house_address,
        "date_born_again": details.date_born_again.isoformat() if details.date_born_again else None,
        "age_group": details.age_group.value if details.age_group else None,
        "gender": details.gender.value if details.gender else None,
        "marital_status": details.marital_status.value if details.marital_status else None,
        "career": details.career,

        # Lifecycle
        "status": record.status.value,
        "follow_up_visits": [_visit_to_json(v) for v in record.follow_up_visits],
        "believer_class": growth.believer_class.value,
        "water_baptism": growth.water_baptism.value,
        "workers_training": growth.workers_training.value,

        # Timestamps and concurrency control
        "created_at_utc": to_iso_utc(record.created_at, name="created_at"),
        "updated_at_utc": to_iso_utc(record.updated_at, name="updated_at") if record.updated_at else None,
        "version": record.version,
    }


def _row_to_convert(row: Mapping[str, Any]) -> ConvertRecord:
    """Convert a Supabase row into a domain ConvertRecord."""

    def get_optional(key: str) -> str | None:
        value = row.get(key)
        return value if value else None

    born_again = get_optional("date_born_again")
    updated_at = row.get("updated_at_utc")

    details = ConvertDetails(
        name=str(row["name"]),
        phone=str(row["phone"]),
        whatsapp=get_optional("whatsapp"),
        house_address=get_optional("house_address"),
        date_born_again=date.fromisoformat(born_again[:10]) if born_again else None,
        age_group=get_optional("age_group"),
        gender=get_optional("gender"),
        marital_status=get_optional("marital_status"),
        career=get_optional("career"),
    )

    return ConvertRecord(
        convert_id=UUID(str(row["convert_id"])),
        soul_winner_id=UUID(str(row["soul_winner_id"])),
        parish_id=str(row["parish_id"]),
        details=details,
        created_at=parse_utc_datetime(row["created_at_utc"]),
        status=ConvertStatus(str(row["status"])),
        follow_up_visits=tuple(_json_to_visit(item) for item in (row.get("follow_up_visits") or [])),
        spiritual_growth=SpiritualGrowth(
            believer_class=row.get("believer_class") or "NotStarted",
            water_baptism=row.get("water_baptism") or "NotStarted",
            workers_training=row.get("workers_training") or "NotStarted",
        ),
        updated_at=parse_utc_datetime(updated_at) if updated_at else None,
        version=int(row.get("version") or 0),
    )


def insert_convert(record: ConvertRecord) -> None:
    """
    Insert a ConvertRecord into Supabase.

    Raises:
    - RuntimeError if Supabase returns an error response.
    - ValueError for invalid domain values (e.g., timestamps).
    """

    payload = _convert_to_row(record)
    response = get_supabase().table(_CONVERTS_TABLE).insert(payload).execute()
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to insert convert: {error}")


def get_convert_by_id(convert_id: UUID) -> ConvertRecord | None:
    """
    Fetch a ConvertRecord by ID.

    Returns:
    - ConvertRecord if found
    - None if no record exists for the given ID
    """

    response = (
        get_supabase()
        .table(_CONVERTS_TABLE)
        .select("*")
        .eq("convert_id", str(convert_id))
        .limit(1)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to fetch convert: {error}")

    rows = getattr(response, "data", None) or []
    if not rows:
        return None
    return _row_to_convert(rows[0])


def list_convert_ids_for_reconciliation() -> List[UUID]:
    """
    List the ids of every convert whose status is neither Completed nor Unreachable.

    Only ids are selected; each record is read on its own when it is
    reconciled, so one undecodable row cannot sink the whole listing.
    Pages through the table so that large parishes are not truncated at the
    default row limit.
    """

    convert_ids: List[UUID] = []
    start = 0

    while True:
        response = (
            get_supabase()
            .table(_CONVERTS_TABLE)
            .select("convert_id")
            .not_.in_("status", _TERMINAL_STATUSES)
            .order("created_at_utc")
            .range(start, start + _PAGE_SIZE - 1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list converts for reconciliation: {error}")

        rows = getattr(response, "data", None) or []
        convert_ids.extend(UUID(str(row["convert_id"])) for row in rows)
        if len(rows) < _PAGE_SIZE:
            return convert_ids
        start += _PAGE_SIZE


def update_convert(record: ConvertRecord, expected_version: int) -> ConvertRecord:
    """
    Persist a ConvertRecord if the stored version still equals expected_version.

    The stored version is bumped by one. Returns the record as stored.

    Raises:
    - ConcurrentModificationError if the row was written since it was read.
    - ConvertNotFoundError if the row no longer exists.
    - RuntimeError if Supabase returns an error response.
    """

    payload = _convert_to_row(record)
    payload["version"] = expected_version + 1
    # Identity and creation time never change.
    for key in ("convert_id", "created_at_utc"):
        payload.pop(key)

    response = (
        get_supabase()
        .table(_CONVERTS_TABLE)
        .update(payload)
        .eq("convert_id", str(record.convert_id))
        .eq("version", expected_version)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to update convert: {error}")

    updated_rows = getattr(response, "data", None) or []
    if not updated_rows:
        # Either no record exists, or its version moved on since it was read.
        if get_convert_by_id(record.convert_id) is None:
            raise ConvertNotFoundError(f"Convert not found: {record.convert_id}")
        logger.debug(
            "Version conflict writing convert",
            extra={"convert_id": str(record.convert_id), "expected_version": expected_version},
        )
        raise ConcurrentModificationError(
            f"Convert {record.convert_id} was modified concurrently (expected version {expected_version})"
        )

    return _row_to_convert(updated_rows[0])


__all__ = [
    "insert_convert",
    "get_convert_by_id",
    "list_convert_ids_for_reconciliation",
    "update_convert",
]
