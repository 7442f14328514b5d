"""
Pytest configuration.

Adds the project root to the Python path so that tests can import domain,
repositories, services and api, and provides an in-memory convert store that
behaves like the Supabase repository (including version-conditional writes).
"""

import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.convert import ConvertDetails, ConvertStatus  # noqa: E402
from domain.errors import ConcurrentModificationError, ConvertNotFoundError  # noqa: E402
from services.lifecycle_service import ConvertLifecycleEngine  # noqa: E402

# Monday afternoon; visit 1 is scheduled for 09:00 the same day.
T0 = datetime(2025, 3, 3, 14, 30, 0, tzinfo=timezone.utc)


class InMemoryConvertStore:
    """Dict-backed stand-in for repositories.convert_repository."""

    def __init__(self) -> None:
        self.rows = {}
        self.failing_ids = set()
        self.corrupt_ids = set()
        self.pending_conflicts = {}
        self.update_calls = 0

    def insert_convert(self, record):
        if record.convert_id in self.rows:
            raise RuntimeError("Failed to insert convert: duplicate convert_id")
        self.rows[record.convert_id] = record

    def get_convert_by_id(self, convert_id):
        stored = self.rows.get(convert_id)
        if stored is not None and convert_id in self.corrupt_ids:
            # Decoding a row whose visit 1 says completed but has no completed_at.
            bad_visit = replace(stored.follow_up_visits[0], is_completed=True, completed_at=None)
            return replace(stored, follow_up_visits=(bad_visit, *stored.follow_up_visits[1:]))
        return stored

    def list_convert_ids_for_reconciliation(self):
        terminal = {ConvertStatus.COMPLETED, ConvertStatus.UNREACHABLE}
        return [r.convert_id for r in self.rows.values() if r.status not in terminal]

    def update_convert(self, record, expected_version):
        self.update_calls += 1
        if record.convert_id in self.failing_ids:
            raise RuntimeError("Failed to update convert: simulated outage")

        stored = self.rows.get(record.convert_id)
        if stored is None:
            raise ConvertNotFoundError(f"Convert not found: {record.convert_id}")

        # Simulate another writer landing between our read and our write.
        if self.pending_conflicts.get(record.convert_id, 0) > 0:
            self.pending_conflicts[record.convert_id] -= 1
            self.rows[record.convert_id] = replace(stored, version=stored.version + 1)
            raise ConcurrentModificationError("simulated concurrent write")

        if stored.version != expected_version:
            raise ConcurrentModificationError("version moved on")

        written = replace(record, version=expected_version + 1)
        self.rows[record.convert_id] = written
        return written


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def store() -> InMemoryConvertStore:
    return InMemoryConvertStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def engine(store: InMemoryConvertStore, clock: FakeClock) -> ConvertLifecycleEngine:
    return ConvertLifecycleEngine(store, clock=clock, schedule_tz=timezone.utc)


@pytest.fixture
def details() -> ConvertDetails:
    return ConvertDetails(name="Ada Obi", phone="+2348030000000", gender="Female", age_group="YAYA")
