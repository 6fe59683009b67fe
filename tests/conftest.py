"""Shared fixtures: an in-memory store holding one small herd.

``ranch-north`` has four animals over three generations (one sold), two
custom fields, medical/injection/photo records and settings.
``ranch-south`` is an empty, licensed ranch used as a restore target.
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from ranch_snapshot.adapters.memory import MemoryDatabase
from ranch_snapshot.collaborators import FixedClock

NORTH = "ranch-north"
SOUTH = "ranch-south"

UNIQUE_KEYS = {
    "custom_field_definitions": [("ranch_id", "name")],
    "custom_field_values": [("definition_id", "animal_id")],
    "license_keys": [("key",)],
}

_HERD = {
    "ranches": [
        {
            "id": NORTH,
            "name": "North Pasture",
            "max_animals": 10,
            "active_animal_count": 3,
            "active_license_key": None,
            "license_type": "full",
            "license_expiration": "2027-12-31",
            "license_activated_at": None,
        },
        {
            "id": SOUTH,
            "name": "South Range",
            "max_animals": 10,
            "active_animal_count": 0,
            "active_license_key": None,
            "license_type": "full",
            "license_expiration": "2027-12-31",
            "license_activated_at": None,
        },
    ],
    "ranch_settings": [
        {
            "ranch_id": NORTH,
            "report_line1": "North Pasture Cattle Co.",
            "report_line2": "Brand: Lazy N",
            "adult_age_years": 2.0,
            "time_zone": "America/Denver",
        },
    ],
    "custom_field_definitions": [
        {"id": "def-weight", "ranch_id": NORTH, "name": "Weaning weight", "type": "number"},
        {"id": "def-brand", "ranch_id": NORTH, "name": "Brand", "type": "text"},
    ],
    "animals": [
        {
            "id": "a-cow", "ranch_id": NORTH, "tag_number": "N-001", "sex": "F",
            "birth_date": "2019-04-02", "status": "PRESENT", "is_active": True,
            "mother_id": None, "source": "Purchased",
        },
        {
            "id": "a-heifer", "ranch_id": NORTH, "tag_number": "N-014", "sex": "F",
            "birth_date": "2022-03-15", "status": "PRESENT", "is_active": True,
            "mother_id": "a-cow", "source": "Born on ranch",
        },
        {
            "id": "a-calf", "ranch_id": NORTH, "tag_number": "N-031", "sex": "M",
            "birth_date": "2025-04-20", "status": "PRESENT", "is_active": True,
            "mother_id": "a-heifer", "source": "Born on ranch",
        },
        {
            "id": "a-steer", "ranch_id": NORTH, "tag_number": "N-007", "sex": "M",
            "birth_date": "2020-05-01", "status": "SOLD", "is_active": False,
            "exit_date": "2024-10-01", "mother_id": None, "sale_price": 1450.0,
        },
    ],
    "medical_history": [
        {
            "id": "mh-1", "animal_id": "a-heifer", "ranch_id": NORTH,
            "date": "2025-06-01", "description": "Pinkeye, treated",
        },
    ],
    "injections": [
        {
            "id": "inj-1", "animal_id": "a-cow", "ranch_id": NORTH,
            "date": "2025-03-10", "drug": "Ivomec", "dosage": "10 ml", "notes": None,
        },
    ],
    "animal_photos": [
        {
            "id": "ph-1", "animal_id": "a-cow", "ranch_id": NORTH,
            "storage_locator": "ranch-north/a-cow/1700000000.jpg",
            "caption": "Spring", "is_primary": True,
        },
    ],
    "custom_field_values": [
        {"id": "cfv-1", "definition_id": "def-weight", "animal_id": "a-calf",
         "ranch_id": NORTH, "value": "512"},
        {"id": "cfv-2", "definition_id": "def-brand", "animal_id": "a-cow",
         "ranch_id": NORTH, "value": "Lazy N"},
    ],
}

_DOCUMENT = {
    "format_version": 1,
    "metadata": {"created_at": None, "source_ranch_id": NORTH, "counts": {}},
    "ranch": {
        "name": "North Pasture",
        "settings": {
            "report_line1": "North Pasture Cattle Co.",
            "report_line2": "Brand: Lazy N",
            "adult_age_years": 2.0,
            "time_zone": "America/Denver",
        },
    },
    "custom_field_definitions": [
        {"id": "def-weight", "name": "Weaning weight", "type": "number"},
        {"id": "def-brand", "name": "Brand", "type": "text"},
    ],
    "animals": [
        {"id": "a-cow", "tag_number": "N-001", "sex": "F", "birth_date": "2019-04-02",
         "status": "PRESENT", "is_active": True, "mother_id": None},
        {"id": "a-heifer", "tag_number": "N-014", "sex": "F", "birth_date": "2022-03-15",
         "status": "PRESENT", "is_active": True, "mother_id": "a-cow"},
        {"id": "a-calf", "tag_number": "N-031", "sex": "M", "birth_date": "2025-04-20",
         "status": "PRESENT", "is_active": True, "mother_id": "a-heifer"},
        {"id": "a-steer", "tag_number": "N-007", "sex": "M", "birth_date": "2020-05-01",
         "status": "SOLD", "is_active": False, "exit_date": "2024-10-01", "mother_id": None},
    ],
    "medical_history": [
        {"id": "mh-1", "animal_id": "a-heifer", "date": "2025-06-01",
         "description": "Pinkeye, treated"},
    ],
    "injections": [
        {"id": "inj-1", "animal_id": "a-cow", "date": "2025-03-10", "drug": "Ivomec",
         "dosage": "10 ml"},
    ],
    "photos": [
        {"id": "ph-1", "animal_id": "a-cow",
         "storage_locator": "ranch-north/a-cow/1700000000.jpg", "is_primary": True},
    ],
    "custom_field_values": [
        {"definition_id": "def-weight", "animal_id": "a-calf", "value": "512"},
        {"definition_id": "def-brand", "animal_id": "a-cow", "value": "Lazy N"},
    ],
}


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def herd_tables() -> dict[str, list[dict]]:
    """Fresh copy of the herd rows, safe to mutate."""
    return copy.deepcopy(_HERD)


@pytest.fixture
def herd_db(herd_tables) -> MemoryDatabase:
    return MemoryDatabase(herd_tables, unique_keys=UNIQUE_KEYS)


@pytest.fixture
def herd_document() -> dict:
    """Snapshot document of ``ranch-north``, as a decoded JSON dict."""
    return copy.deepcopy(_DOCUMENT)


@pytest.fixture
def make_db():
    """Build a ``MemoryDatabase`` with the herd's unique constraints."""

    def _make(tables: dict[str, list[dict]] | None = None) -> MemoryDatabase:
        return MemoryDatabase(tables, unique_keys=UNIQUE_KEYS)

    return _make


def sorted_rows(db: MemoryDatabase) -> dict[str, list[dict]]:
    """Table contents with rows sorted, for before/after comparisons."""
    return {
        table: sorted(rows, key=lambda r: str(r.get("id") or r.get("ranch_id")))
        for table, rows in db.dump().items()
    }


@pytest.fixture
def snapshot_state():
    """Order-insensitive view of a store's tables."""
    return sorted_rows


class TransactionalMemoryDatabase(MemoryDatabase):
    """Memory store with snapshot-and-restore transactions.

    Writes inside ``transaction()`` land directly in the tables; any
    exception leaving the block (cancellation included) puts the tables
    back as they were when it began.
    """

    supports_transactions = True

    def __init__(self, tables=None, unique_keys=None) -> None:
        super().__init__(tables, unique_keys)
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        saved = copy.deepcopy(self._tables)
        try:
            yield self
        except BaseException:
            self._tables = saved
            self.rollbacks += 1
            raise
        self.commits += 1


@pytest.fixture
def make_tx_db():
    """Build a ``TransactionalMemoryDatabase`` with the herd's unique constraints."""

    def _make(tables: dict[str, list[dict]] | None = None) -> TransactionalMemoryDatabase:
        return TransactionalMemoryDatabase(tables, unique_keys=UNIQUE_KEYS)

    return _make
