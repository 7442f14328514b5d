"""
Domain: Convert entity and follow-up lifecycle rules.

Rules implemented here:
- A convert follows exactly 8 weekly visits, numbered 1..8, scheduled at 09:00
  starting on the calendar date of registration.
- completed_at is set iff the visit is completed.
- status is Completed iff all 8 visits are completed AND all three milestones
  (believer's class, water baptism, workers' training) are Completed. This rule
  wins over any stored status, including Unreachable.
- Otherwise a stored Completed or Unreachable status is kept (both are only set
  by an actor), and the status is Inactive when any incomplete visit is more
  than 24 hours past its scheduled date, Active when none is.
- Stage is a human-readable summary computed on demand; it is never stored.

This module contains only pure domain entities and functions: no I/O, no database.
All timestamps are UTC and 'now' is always passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar
from uuid import UUID, uuid4

from .errors import ValidationError, VisitNotFoundError
from .time import require_utc_timestamp


class ConvertStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    COMPLETED = "Completed"
    UNREACHABLE = "Unreachable"


class MilestoneProgress(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


class MilestoneTrack(str, Enum):
    BELIEVER_CLASS = "believerClass"
    WATER_BAPTISM = "waterBaptism"
    WORKERS_TRAINING = "workersTraining"


class AgeGroup(str, Enum):
    CHILDREN = "Children"
    TEENAGERS = "Teenagers"
    YAYA = "YAYA"
    ADULTS = "Adults"
    ELDERS = "Elders"


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"


class MaritalStatus(str, Enum):
    SINGLE = "Single"
    MARRIED = "Married"
    DIVORCED = "Divorced"
    WIDOWED = "Widowed"


VISIT_TITLES: tuple[str, ...] = (
    "Welcome & Introduction",
    "Assurance of Salvation",
    "The New Birth",
    "The Word of God",
    "Prayer",
    "The Holy Spirit",
    "Water Baptism",
    "Church & Fellowship",
)
VISIT_COUNT: int = len(VISIT_TITLES)
VISIT_INTERVAL = timedelta(days=7)
REFERENCE_HOUR = time(9, 0)
OVERDUE_AFTER = timedelta(hours=24)

# Statuses only an actor can set; derivation keeps them unless the completion rule fires.
MANUAL_STATUSES = frozenset({ConvertStatus.UNREACHABLE, ConvertStatus.COMPLETED})

_E = TypeVar("_E", bound=Enum)


def _coerce_enum(enum_cls: Type[_E], value: Any, name: str) -> _E:
    """Accept an enum member or its string value; anything else is a ValidationError."""

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {name} {value!r}. Must be one of: {allowed}") from None


def _coerce_optional_enum(enum_cls: Type[_E], value: Any, name: str) -> Optional[_E]:
    if value is None or value == "":
        return None
    return _coerce_enum(enum_cls, value, name)


def _coerce_optional_date(value: Any, name: str) -> Optional[date]:
    """Accept a date, a datetime (its date part) or an ISO 'YYYY-MM-DD' string."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}") from None
    raise ValidationError(f"{name} must be a date, got {type(value).__name__}")


def _require_visit_number(visit_number: Any) -> int:
    if isinstance(visit_number, bool) or not isinstance(visit_number, int):
        raise ValidationError(f"visit_number must be an integer, got {visit_number!r}")
    if not 1 <= visit_number <= VISIT_COUNT:
        raise ValidationError(f"visit_number must be between 1 and {VISIT_COUNT}, got {visit_number}")
    return visit_number


@dataclass(frozen=True, slots=True)
class FollowUpVisit:
    """
    One scheduled follow-up visit.

    visit_date is the scheduled date; completed_at is when it was actually done.
    """

    visit_number: int
    title: str
    visit_date: datetime
    is_completed: bool = False
    completed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        _require_visit_number(self.visit_number)
        require_utc_timestamp("visit_date", self.visit_date)
        if self.completed_at is not None:
            require_utc_timestamp("completed_at", self.completed_at)
        if self.is_completed != (self.completed_at is not None):
            raise ValidationError("completed_at must be set iff the visit is completed")

    def is_overdue(self, now: datetime) -> bool:
        """An incomplete visit is overdue once its date is strictly more than 24h behind now."""

        return not self.is_completed and (now - self.visit_date) > OVERDUE_AFTER

    def toggled(self, now: datetime) -> "FollowUpVisit":
        if self.is_completed:
            return replace(self, is_completed=False, completed_at=None)
        return replace(self, is_completed=True, completed_at=now)


@dataclass(frozen=True, slots=True)
class SpiritualGrowth:
    """Three independent milestone tracks."""

    believer_class: MilestoneProgress = MilestoneProgress.NOT_STARTED
    water_baptism: MilestoneProgress = MilestoneProgress.NOT_STARTED
    workers_training: MilestoneProgress = MilestoneProgress.NOT_STARTED

    def __post_init__(self) -> None:
        for track in MilestoneTrack:
            attr = _TRACK_ATTRS[track]
            object.__setattr__(self, attr, _coerce_enum(MilestoneProgress, getattr(self, attr), track.value))

    def get(self, track: MilestoneTrack) -> MilestoneProgress:
        return getattr(self, _TRACK_ATTRS[track])

    def with_track(self, track: MilestoneTrack, value: MilestoneProgress) -> "SpiritualGrowth":
        return replace(self, **{_TRACK_ATTRS[track]: value})

    def all_completed(self) -> bool:
        return all(self.get(track) is MilestoneProgress.COMPLETED for track in MilestoneTrack)


_TRACK_ATTRS: Mapping[MilestoneTrack, str] = {
    MilestoneTrack.BELIEVER_CLASS: "believer_class",
    MilestoneTrack.WATER_BAPTISM: "water_baptism",
    MilestoneTrack.WORKERS_TRAINING: "workers_training",
}


@dataclass(frozen=True, slots=True)
class ConvertDetails:
    """
    Demographic details of a convert.

    None of these fields affect the lifecycle; they are validated for shape only.
    """

    name: str
    phone: str
    whatsapp: Optional[str] = None
    house_address: Optional[str] = None
    date_born_again: Optional[date] = None
    age_group: Optional[AgeGroup] = None
    gender: Optional[Gender] = None
    marital_status: Optional[MaritalStatus] = None
    career: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not str(self.name).strip():
            raise ValidationError("name is required")
        if not self.phone or not str(self.phone).strip():
            raise ValidationError("phone is required")
        object.__setattr__(self, "date_born_again", _coerce_optional_date(self.date_born_again, "date_born_again"))
        object.__setattr__(self, "age_group", _coerce_optional_enum(AgeGroup, self.age_group, "age_group"))
        object.__setattr__(self, "gender", _coerce_optional_enum(Gender, self.gender, "gender"))
        object.__setattr__(
            self, "marital_status", _coerce_optional_enum(MaritalStatus, self.marital_status, "marital_status")
        )


@dataclass(frozen=True, slots=True)
class ConvertRecord:
    """
    A convert in the follow-up program.

    Immutability:
    - Every lifecycle change returns a new instance. A caller persists the new
      instance or drops it; a record is never left half-updated.

    version is an optimistic-concurrency counter owned by the persistence layer.
    """

    convert_id: UUID
    soul_winner_id: UUID
    parish_id: str
    details: ConvertDetails
    created_at: datetime
    status: ConvertStatus = ConvertStatus.ACTIVE
    follow_up_visits: tuple[FollowUpVisit, ...] = ()
    spiritual_growth: SpiritualGrowth = field(default_factory=SpiritualGrowth)
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)
        object.__setattr__(self, "status", _coerce_enum(ConvertStatus, self.status, "status"))

        visits = tuple(sorted(self.follow_up_visits, key=lambda v: v.visit_number))
        numbers = [v.visit_number for v in visits]
        if len(numbers) != len(set(numbers)):
            raise ValidationError("visit numbers must be unique within a convert")
        object.__setattr__(self, "follow_up_visits", visits)

    def visit(self, visit_number: int) -> FollowUpVisit:
        _require_visit_number(visit_number)
        for visit in self.follow_up_visits:
            if visit.visit_number == visit_number:
                return visit
        raise VisitNotFoundError(f"Visit {visit_number} not found for convert {self.convert_id}")

    def completed_visit_count(self) -> int:
        return sum(1 for v in self.follow_up_visits if v.is_completed)

    def is_follow_up_complete(self) -> bool:
        """All 8 visits completed and all milestones Completed."""

        return (
            len(self.follow_up_visits) == VISIT_COUNT
            and all(v.is_completed for v in self.follow_up_visits)
            and self.spiritual_growth.all_completed()
        )


def schedule_visits(created_at: datetime, schedule_tz: tzinfo = timezone.utc) -> tuple[FollowUpVisit, ...]:
    """
    Build the 8-visit weekly schedule for a convert registered at created_at.

    Visit n falls on the registration date (in schedule_tz) plus 7*(n-1) days,
    at 09:00 local time, stored in UTC.
    """

    require_utc_timestamp("created_at", created_at)
    start = created_at.astimezone(schedule_tz).date()

    visits = []
    for index, topic in enumerate(VISIT_TITLES):
        local = datetime.combine(start + index * VISIT_INTERVAL, REFERENCE_HOUR, tzinfo=schedule_tz)
        visits.append(
            FollowUpVisit(
                visit_number=index + 1,
                title=f"Visit {index + 1}: {topic}",
                visit_date=local.astimezone(timezone.utc),
            )
        )
    return tuple(visits)


def initialize_visits(record: ConvertRecord, schedule_tz: tzinfo = timezone.utc) -> ConvertRecord:
    """Attach the visit schedule. Records that already have visits are returned unchanged."""

    if record.follow_up_visits:
        return record
    return replace(record, follow_up_visits=schedule_visits(record.created_at, schedule_tz))


def derive_status(record: ConvertRecord, now: datetime) -> ConvertStatus:
    """
    Derive the status of a convert as of now.

    Rules, first match wins:
    1. All 8 visits and all milestones completed -> Completed.
    2. Stored status is Completed or Unreachable -> unchanged.
    3. Any incomplete visit more than 24h overdue -> Inactive, otherwise Active.

    Pure: the result depends only on (visits, milestones, stored status, now).
    """

    require_utc_timestamp("now", now)

    if record.is_follow_up_complete():
        return ConvertStatus.COMPLETED
    if record.status in MANUAL_STATUSES:
        return record.status
    if any(v.is_overdue(now) for v in record.follow_up_visits):
        return ConvertStatus.INACTIVE
    return ConvertStatus.ACTIVE


def apply_derived_status(record: ConvertRecord, now: datetime) -> ConvertRecord:
    status = derive_status(record, now)
    if status is record.status:
        return record
    return replace(record, status=status)


def derive_stage(record: ConvertRecord) -> str:
    """
    Human-readable progress label.

    "Believers Class" covers every case where all visits are done but the
    believer's class is not; the other two milestones are not considered.
    """

    completed = record.completed_visit_count()
    believer_class = record.spiritual_growth.believer_class

    if completed < VISIT_COUNT:
        return f"Visit {completed + 1} of {VISIT_COUNT}"
    if completed == VISIT_COUNT and believer_class is not MilestoneProgress.COMPLETED:
        return "Believers Class"
    if believer_class is MilestoneProgress.COMPLETED:
        return "Follow-up Completed"
    return "Unknown"


def new_convert(
    *,
    soul_winner_id: UUID,
    parish_id: str,
    details: ConvertDetails,
    created_at: datetime,
    convert_id: Optional[UUID] = None,
    schedule_tz: tzinfo = timezone.utc,
) -> ConvertRecord:
    """Create a convert with its visit schedule initialized and its status derived."""

    if not parish_id:
        raise ValidationError("parish_id is required")

    record = ConvertRecord(
        convert_id=convert_id or uuid4(),
        soul_winner_id=soul_winner_id,
        parish_id=parish_id,
        details=details,
        created_at=created_at,
        updated_at=created_at,
    )
    return apply_derived_status(initialize_visits(record, schedule_tz), created_at)


def toggle_visit(record: ConvertRecord, visit_number: int, now: datetime) -> ConvertRecord:
    """Flip a visit's completion and re-derive the status."""

    require_utc_timestamp("now", now)
    target = record.visit(visit_number).toggled(now)
    visits = tuple(target if v.visit_number == target.visit_number else v for v in record.follow_up_visits)
    return apply_derived_status(replace(record, follow_up_visits=visits, updated_at=now), now)


def update_milestones(
    record: ConvertRecord,
    changes: Mapping[Any, Any],
    now: datetime,
) -> ConvertRecord:
    """
    Set one or more milestone tracks and re-derive the status.

    Every track name and value is validated before anything changes.
    """

    require_utc_timestamp("now", now)
    if not changes:
        raise ValidationError("At least one milestone must be provided")

    resolved = [
        (_coerce_enum(MilestoneTrack, track, "milestone track"), _coerce_enum(MilestoneProgress, value, "milestone value"))
        for track, value in changes.items()
    ]

    growth = record.spiritual_growth
    for track, value in resolved:
        growth = growth.with_track(track, value)
    return apply_derived_status(replace(record, spiritual_growth=growth, updated_at=now), now)


def update_milestone(record: ConvertRecord, track: Any, value: Any, now: datetime) -> ConvertRecord:
    return update_milestones(record, {track: value}, now)


def set_manual_status(record: ConvertRecord, status: Any, now: datetime) -> ConvertRecord:
    """
    Actor override to Unreachable or Completed.

    No derivation runs for this write; the next derivation may still promote
    an Unreachable convert to Completed.
    """

    require_utc_timestamp("now", now)
    resolved = _coerce_enum(ConvertStatus, status, "status")
    if resolved not in MANUAL_STATUSES:
        raise ValidationError(f"Status {resolved.value!r} cannot be set manually; use Unreachable or Completed")
    return replace(record, status=resolved, updated_at=now)


def reopen(record: ConvertRecord, now: datetime) -> ConvertRecord:
    """Clear a manual status and let derivation pick Active, Inactive or Completed."""

    require_utc_timestamp("now", now)
    return apply_derived_status(replace(record, status=ConvertStatus.ACTIVE, updated_at=now), now)


_DETAIL_FIELDS = frozenset(ConvertDetails.__dataclass_fields__)


def update_details(record: ConvertRecord, changes: Mapping[str, Any], now: datetime) -> ConvertRecord:
    """Replace demographic fields. Lifecycle fields cannot be changed through here."""

    require_utc_timestamp("now", now)
    unknown = set(changes) - _DETAIL_FIELDS
    if unknown:
        raise ValidationError(f"Unknown convert fields: {', '.join(sorted(unknown))}")
    details = replace(record.details, **dict(changes))
    return replace(record, details=details, updated_at=now)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def to_public_dict(record: ConvertRecord) -> dict[str, Any]:
    """Serialize a convert for external consumers, including the computed stage."""

    details = record.details
    growth = record.spiritual_growth

    def enum_value(value: Optional[Enum]) -> Optional[str]:
        return value.value if value is not None else None

    return {
        "convert_id": str(record.convert_id),
        "soul_winner_id": str(record.soul_winner_id),
        "parish_id": record.parish_id,
        "name": details.name,
        "phone": details.phone,
        "whatsapp": details.whatsapp,
        "house_address": details.house_address,
        "date_born_again": details.date_born_again.isoformat() if details.date_born_again else None,
        "age_group": enum_value(details.age_group),
        "gender": enum_value(details.gender),
        "marital_status": enum_value(details.marital_status),
        "career": details.career,
        "status": record.status.value,
        "stage": derive_stage(record),
        "follow_up_visits": [
            {
                "visit_number": v.visit_number,
                "title": v.title,
                "visit_date": _iso(v.visit_date),
                "is_completed": v.is_completed,
                "completed_at": _iso(v.completed_at),
            }
            for v in record.follow_up_visits
        ],
        "spiritual_growth": {track.value: growth.get(track).value for track in MilestoneTrack},
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
    }

