"""Tests for restore_snapshot().

Restore is all-or-nothing: a fault, a timeout or a cancellation part way
through leaves the target exactly as it was.  Capacity is checked before
the first write.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from ranch_snapshot.adapters.memory import MemoryDatabase
from ranch_snapshot.collaborators import LocalBlobStore
from ranch_snapshot.errors import (
    CapacityExceeded,
    FormatUnsupported,
    RanchNotFound,
    StorageFailure,
    ValidationFailed,
)
from ranch_snapshot.graph import fetch_ranch_graph
from ranch_snapshot.license.admission import AdmissionOutcome, LicenseAdmissionController
from ranch_snapshot.restore.engine import RestoreReport, restore_snapshot
from ranch_snapshot.snapshot.models import Snapshot
from ranch_snapshot.snapshot.serializer import serialize, snapshot_to_document


class FlakyDatabase(MemoryDatabase):
    """Fails the first insert into one table."""

    def __init__(self, tables, fail_table: str) -> None:
        super().__init__(tables)
        self.fail_table = fail_table
        self.failed = False

    async def insert(self, table: str, data: dict) -> dict:
        if table == self.fail_table and not self.failed:
            self.failed = True
            raise OSError("connection reset by peer")
        return await super().insert(table, data)


class SlowDatabase(MemoryDatabase):
    """Hangs on the first insert into one table."""

    def __init__(self, tables, slow_table: str) -> None:
        super().__init__(tables)
        self.slow_table = slow_table
        self.hanging = asyncio.Event()

    async def insert(self, table: str, data: dict) -> dict:
        if table == self.slow_table and not self.hanging.is_set():
            self.hanging.set()
            await asyncio.sleep(3600)
        return await super().insert(table, data)


class DeactivatingDatabase(MemoryDatabase):
    """Deactivates one animal through the controller while a restore is reading."""

    def __init__(self, tables, ranch_id: str, animal_id: str) -> None:
        super().__init__(tables)
        self.ranch_id = ranch_id
        self.animal_id = animal_id
        self.done = False

    async def select(self, table, columns, filters=None, order_by=None):
        if table == "custom_field_definitions" and not self.done:
            self.done = True
            await LicenseAdmissionController(self).deactivate_animal(self.ranch_id, self.animal_id)
        return await super().select(table, columns, filters, order_by)


class BrokenUndoDatabase(MemoryDatabase):
    """Refuses inserts once ``broken`` is set."""

    broken = False

    async def insert(self, table: str, data: dict) -> dict:
        if self.broken:
            raise ConnectionError("connection lost")
        return await super().insert(table, data)


async def _counter(db, ranch_id: str) -> int:
    rows = await db.select("ranches", "active_animal_count", {"id": ranch_id})
    return rows[0]["active_animal_count"]


# ============================================================================
# Successful restores
# ============================================================================


class TestRestoreNewRanch:
    """new_ranch mode adds the snapshot's records to the target."""

    @pytest.mark.asyncio
    async def test_round_trip_into_empty_ranch(self, herd_db, herd_document, clock) -> None:
        """Every record arrives with fresh ids and intact relationships."""
        report = await restore_snapshot(herd_db, herd_document, "ranch-south", clock=clock)

        assert isinstance(report, RestoreReport)
        assert report.inserted == {
            "custom_field_definitions": 2,
            "animals": 4,
            "medical_history": 1,
            "injections": 1,
            "photos": 1,
            "custom_field_values": 2,
        }
        assert not any(report.deleted.values())
        assert report.definitions_created == ["Weaning weight", "Brand"]
        assert report.active_animal_count == 3
        assert await _counter(herd_db, "ranch-south") == 3

        original = Snapshot.model_validate(herd_document)
        restored = serialize(await fetch_ranch_graph(herd_db, "ranch-south"))
        animal_map = report.id_map["animals"]

        assert restored.ranch == original.ranch
        for animal in original.animals:
            expected = animal.model_copy(update={
                "id": animal_map[animal.id],
                "mother_id": animal_map[animal.mother_id] if animal.mother_id else None,
            })
            assert expected in restored.animals
        assert restored.medical_history[0].animal_id == animal_map["a-heifer"]
        definition_map = report.id_map["custom_field_definitions"]
        assert {(v.definition_id, v.animal_id, v.value) for v in restored.custom_field_values} == {
            (definition_map["def-weight"], animal_map["a-calf"], "512"),
            (definition_map["def-brand"], animal_map["a-cow"], "Lazy N"),
        }

    @pytest.mark.asyncio
    async def test_source_ranch_untouched(self, herd_db, herd_document, clock) -> None:
        before = await fetch_ranch_graph(herd_db, "ranch-north")
        await restore_snapshot(herd_db, herd_document, "ranch-south", clock=clock)
        assert await fetch_ranch_graph(herd_db, "ranch-north") == before

    @pytest.mark.asyncio
    async def test_restore_into_same_ranch_merges_definitions(
        self, herd_db, herd_document, clock
    ) -> None:
        """Existing definitions are reused by name, never duplicated."""
        report = await restore_snapshot(herd_db, herd_document, "ranch-north", clock=clock)

        assert report.definitions_reused == ["Weaning weight", "Brand"]
        assert report.inserted["custom_field_definitions"] == 0
        definitions = await herd_db.select(
            "custom_field_definitions", "id", {"ranch_id": "ranch-north"}
        )
        assert len(definitions) == 2
        assert len(await herd_db.select("animals", "id", {"ranch_id": "ranch-north"})) == 8
        assert await _counter(herd_db, "ranch-north") == 6

    @pytest.mark.asyncio
    async def test_validation_warnings_in_report(self, herd_db, herd_document, clock) -> None:
        herd_document["animals"][3]["exit_date"] = "2019-01-01"
        report = await restore_snapshot(herd_db, herd_document, "ranch-south", clock=clock)
        assert any("exit_date" in w for w in report.warnings)
        assert "Warnings (1)" in report.format_report()


class TestCustomFieldReconciliation:
    """Definitions are matched to the target by name."""

    def _target(self, herd_tables, field_type: str = "text") -> MemoryDatabase:
        herd_tables["custom_field_definitions"] += [
            {"id": "south-brand", "ranch_id": "ranch-south", "name": "Brand", "type": field_type},
            {"id": "south-pen", "ranch_id": "ranch-south", "name": "Pen", "type": "text"},
        ]
        return MemoryDatabase(herd_tables)

    @pytest.mark.asyncio
    async def test_matching_name_reuses_target_definition(
        self, herd_tables, herd_document, clock
    ) -> None:
        db = self._target(herd_tables)
        report = await restore_snapshot(db, herd_document, "ranch-south", clock=clock)

        assert report.definitions_reused == ["Brand"]
        assert report.definitions_created == ["Weaning weight"]
        assert report.id_map["custom_field_definitions"]["def-brand"] == "south-brand"

        values = await db.select("custom_field_values", "*", {"ranch_id": "ranch-south"})
        brand_values = [v for v in values if v["definition_id"] == "south-brand"]
        assert [v["value"] for v in brand_values] == ["Lazy N"]

        definitions = await db.select(
            "custom_field_definitions", "id, name", {"ranch_id": "ranch-south"}
        )
        names = sorted(d["name"] for d in definitions)
        assert names == ["Brand", "Pen", "Weaning weight"]

    @pytest.mark.asyncio
    async def test_unmatched_target_definition_untouched(
        self, herd_tables, herd_document, clock
    ) -> None:
        db = self._target(herd_tables)
        await restore_snapshot(db, herd_document, "ranch-south", "overwrite", clock=clock)
        pen = await db.select("custom_field_definitions", "*", {"id": "south-pen"})
        assert pen == [{"id": "south-pen", "ranch_id": "ranch-south", "name": "Pen", "type": "text"}]

    @pytest.mark.asyncio
    async def test_type_mismatch_warns(self, herd_tables, herd_document, clock) -> None:
        db = self._target(herd_tables, field_type="number")
        report = await restore_snapshot(db, herd_document, "ranch-south", clock=clock)
        assert any("keeping the target's type" in w for w in report.warnings)

    @pytest.mark.asyncio
    async def test_strict_mode_rejects_collision(
        self, herd_tables, herd_document, clock, snapshot_state
    ) -> None:
        db = self._target(herd_tables)
        before = snapshot_state(db)
        with pytest.raises(ValidationFailed) as exc_info:
            await restore_snapshot(
                db, herd_document, "ranch-south", clock=clock, strict_custom_fields=True
            )
        [issue] = exc_info.value.errors
        assert issue.record_id == "def-brand"
        assert snapshot_state(db) == before


class TestRestoreOverwrite:
    """overwrite mode replaces the target's animals and their records."""

    @pytest.mark.asyncio
    async def test_replaces_records(self, herd_db, herd_document, clock) -> None:
        report = await restore_snapshot(herd_db, herd_document, "ranch-north", "overwrite", clock=clock)

        assert report.deleted["animals"] == 4
        assert report.deleted["custom_field_values"] == 2
        assert report.definitions_reused == ["Weaning weight", "Brand"]

        animals = await herd_db.select("animals", "*", {"ranch_id": "ranch-north"})
        assert sorted(a["tag_number"] for a in animals) == ["N-001", "N-007", "N-014", "N-031"]
        assert not {a["id"] for a in animals} & {"a-cow", "a-heifer", "a-calf", "a-steer"}
        assert await _counter(herd_db, "ranch-north") == 3
        assert len(await herd_db.select("medical_history", "id", {"ranch_id": "ranch-north"})) == 1

    @pytest.mark.asyncio
    async def test_overwrite_other_ranch_untouched(self, herd_db, herd_document, clock) -> None:
        await restore_snapshot(herd_db, herd_document, "ranch-south", "overwrite", clock=clock)
        north = await fetch_ranch_graph(herd_db, "ranch-north")
        assert len(north.animals) == 4

    @pytest.mark.asyncio
    async def test_keeps_ranch_name(self, herd_db, herd_document, clock) -> None:
        herd_document["ranch"]["name"] = "Renamed In Snapshot"
        await restore_snapshot(herd_db, herd_document, "ranch-north", "overwrite", clock=clock)
        rows = await herd_db.select("ranches", "name", {"id": "ranch-north"})
        assert rows[0]["name"] == "North Pasture"

    @pytest.mark.asyncio
    async def test_concurrent_deactivation_keeps_counter_exact(
        self, herd_tables, herd_document, clock
    ) -> None:
        """An animal deactivated mid-restore releases its slot exactly once."""
        db = DeactivatingDatabase(herd_tables, "ranch-north", "a-cow")

        report = await restore_snapshot(db, herd_document, "ranch-north", "overwrite", clock=clock)

        assert db.done is True
        active = await db.select("animals", "id", {"ranch_id": "ranch-north", "is_active": True})
        assert len(active) == 3
        assert await _counter(db, "ranch-north") == 3
        assert report.active_animal_count == 3

    @pytest.mark.asyncio
    async def test_ten_animal_scenario(self, make_db, clock) -> None:
        """Serialize, drift, overwrite: the original herd is back and the ranch is full."""
        db = make_db({
            "ranches": [{
                "id": "r10", "name": "Ten Head", "max_animals": 10, "active_animal_count": 10,
                "license_type": "full", "license_expiration": "2027-12-31",
            }],
            "animals": [
                {
                    "id": f"h-{i:02d}", "ranch_id": "r10", "tag_number": f"T-{i:02d}",
                    "status": "PRESENT", "is_active": True, "birth_date": f"20{10 + i}-03-01",
                    "weight_lbs": 900.0 + i,
                }
                for i in range(1, 11)
            ],
        })
        controller = LicenseAdmissionController(db, clock=clock)

        document = snapshot_to_document(serialize(await fetch_ranch_graph(db, "r10")))
        original = {a["tag_number"]: a for a in document["animals"]}

        for i in range(1, 6):
            await controller.deactivate_animal("r10", f"h-{i:02d}", status="SOLD")
        for tag in ("X-1", "X-2", "X-3"):
            admitted = await controller.admit_animal("r10", {"tag_number": tag})
            assert admitted.ok
        assert (await controller.capacity("r10")).active_count == 8

        report = await restore_snapshot(db, document, "r10", "overwrite", clock=clock)
        assert report.active_animal_count == 10

        animals = await db.select("animals", "*", {"ranch_id": "r10"})
        active = [a for a in animals if a["is_active"]]
        assert len(active) == 10
        assert len(animals) == 10
        restored = snapshot_to_document(serialize(await fetch_ranch_graph(db, "r10")))
        for animal in restored["animals"]:
            expected = {**original[animal["tag_number"]], "id": animal["id"]}
            assert animal == expected

        refused = await controller.admit_animal("r10", {"tag_number": "X-4"})
        assert refused.outcome == AdmissionOutcome.limit_reached
        assert (await controller.capacity("r10")).active_count == 10

        await controller.deactivate_animal("r10", animals[0]["id"])
        assert (await controller.admit_animal("r10", {"tag_number": "X-4"})).ok


# ============================================================================
# Refusals before any write
# ============================================================================


class TestRestoreRefusals:
    """Errors raised before anything is written."""

    @pytest.mark.asyncio
    async def test_capacity_exceeded(self, herd_tables, herd_document, clock, snapshot_state) -> None:
        herd_tables["ranches"][1]["max_animals"] = 2
        db = MemoryDatabase(herd_tables)
        before = snapshot_state(db)

        with pytest.raises(CapacityExceeded) as exc_info:
            await restore_snapshot(db, herd_document, "ranch-south", clock=clock)

        assert exc_info.value.requested == 3
        assert exc_info.value.capacity == 2
        assert snapshot_state(db) == before

    @pytest.mark.asyncio
    async def test_capacity_counts_retained_animals(self, herd_tables, herd_document, clock) -> None:
        """new_ranch keeps existing active animals; overwrite does not."""
        herd_tables["ranches"][0]["max_animals"] = 5
        db = MemoryDatabase(herd_tables)

        with pytest.raises(CapacityExceeded) as exc_info:
            await restore_snapshot(db, herd_document, "ranch-north", clock=clock)
        assert exc_info.value.requested == 6

        report = await restore_snapshot(db, herd_document, "ranch-north", "overwrite", clock=clock)
        assert report.active_animal_count == 3

    @pytest.mark.asyncio
    async def test_invalid_document(self, herd_db, herd_document, clock, snapshot_state) -> None:
        herd_document["medical_history"][0]["animal_id"] = "a-ghost"
        before = snapshot_state(herd_db)
        with pytest.raises(ValidationFailed) as exc_info:
            await restore_snapshot(herd_db, herd_document, "ranch-south", clock=clock)
        assert exc_info.value.result.errors[0].category == "referential"
        assert snapshot_state(herd_db) == before

    @pytest.mark.asyncio
    async def test_newer_format(self, herd_db, herd_document, clock) -> None:
        herd_document["format_version"] = 99
        with pytest.raises(FormatUnsupported) as exc_info:
            await restore_snapshot(herd_db, herd_document, "ranch-south", clock=clock)
        assert exc_info.value.version == 99

    @pytest.mark.asyncio
    async def test_unknown_target(self, herd_db, herd_document, clock) -> None:
        with pytest.raises(RanchNotFound):
            await restore_snapshot(herd_db, herd_document, "ranch-west", clock=clock)

    @pytest.mark.asyncio
    async def test_unknown_mode(self, herd_db, herd_document, clock) -> None:
        with pytest.raises(ValueError, match="Unknown restore mode"):
            await restore_snapshot(herd_db, herd_document, "ranch-south", "merge", clock=clock)


# ============================================================================
# Atomicity
# ============================================================================


class TestRestoreAtomicity:
    """Faults after the capacity check roll every write back."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode,target", [("new_ranch", "ranch-south"), ("overwrite", "ranch-north")])
    async def test_fault_on_last_kind_written(
        self, herd_tables, herd_document, clock, snapshot_state, mode, target
    ) -> None:
        db = FlakyDatabase(herd_tables, fail_table="custom_field_values")
        before = snapshot_state(db)

        with pytest.raises(StorageFailure) as exc_info:
            await restore_snapshot(db, herd_document, target, mode, clock=clock)

        assert db.failed is True
        assert exc_info.value.rolled_back is True
        assert isinstance(exc_info.value.__cause__, OSError)
        assert snapshot_state(db) == before

    @pytest.mark.asyncio
    async def test_timeout_rolls_back(self, herd_tables, herd_document, clock, snapshot_state) -> None:
        db = SlowDatabase(herd_tables, slow_table="animals")
        before = snapshot_state(db)

        with pytest.raises(StorageFailure, match="timed out") as exc_info:
            await restore_snapshot(db, herd_document, "ranch-south", clock=clock, timeout=0.05)

        assert exc_info.value.rolled_back is True
        assert snapshot_state(db) == before

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back(self, herd_tables, herd_document, clock, snapshot_state) -> None:
        db = SlowDatabase(herd_tables, slow_table="medical_history")
        before = snapshot_state(db)

        task = asyncio.create_task(
            restore_snapshot(db, herd_document, "ranch-north", "overwrite", clock=clock)
        )
        await db.hanging.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert snapshot_state(db) == before

    @pytest.mark.asyncio
    async def test_storage_failure_reports_failed_undo(self, herd_tables, herd_document, clock) -> None:
        """A StorageFailure raised mid-write carries the unit's rollback errors."""
        herd_tables["animals"].append({
            "id": "a-bull", "ranch_id": "ranch-north", "tag_number": "N-050",
            "status": "PRESENT", "is_active": True,
        })
        herd_tables["ranches"][0]["active_animal_count"] = 4
        db = BrokenUndoDatabase(herd_tables)

        async def contended(*args, **kwargs):
            db.broken = True
            raise StorageFailure("Counter for ranch 'ranch-north' kept changing")

        with patch.object(LicenseAdmissionController, "release", AsyncMock(side_effect=contended)):
            with pytest.raises(StorageFailure, match="kept changing") as exc_info:
                await restore_snapshot(db, herd_document, "ranch-north", "overwrite", clock=clock)

        assert exc_info.value.rolled_back is False
        assert any("re-insert" in err for err in exc_info.value.rollback_errors)


def _failing_insert(db, table: str, exc: BaseException | None = None) -> AsyncMock:
    """Replacement for ``db.insert`` that fails (or hangs) on ``table``."""
    original = db.insert

    async def insert(name: str, data: dict) -> dict:
        if name == table:
            if exc is None:
                await asyncio.sleep(3600)
            raise exc
        return await original(name, data)

    return AsyncMock(side_effect=insert)


class TestTransactionalRestore:
    """Against a store with transactions, the transaction alone undoes a failed restore."""

    @pytest.mark.asyncio
    async def test_success_commits(self, herd_tables, herd_document, clock, make_tx_db) -> None:
        db = make_tx_db(herd_tables)
        report = await restore_snapshot(db, herd_document, "ranch-south", clock=clock)
        assert report.inserted["animals"] == 4
        assert (db.commits, db.rollbacks) == (1, 0)
        assert await _counter(db, "ranch-south") == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode,target", [("new_ranch", "ranch-south"), ("overwrite", "ranch-north")])
    async def test_fault_rolls_back(
        self, herd_tables, herd_document, clock, snapshot_state, make_tx_db, mode, target
    ) -> None:
        db = make_tx_db(herd_tables)
        before = snapshot_state(db)

        with patch.object(db, "insert", _failing_insert(db, "custom_field_values", OSError("reset"))):
            with pytest.raises(StorageFailure) as exc_info:
                await restore_snapshot(db, herd_document, target, mode, clock=clock)

        assert exc_info.value.rolled_back is True
        assert exc_info.value.rollback_errors == []
        assert isinstance(exc_info.value.__cause__, OSError)
        assert (db.commits, db.rollbacks) == (0, 1)
        assert snapshot_state(db) == before

    @pytest.mark.asyncio
    async def test_timeout_rolls_back(
        self, herd_tables, herd_document, clock, snapshot_state, make_tx_db
    ) -> None:
        db = make_tx_db(herd_tables)
        before = snapshot_state(db)

        with patch.object(db, "insert", _failing_insert(db, "animals")):
            with pytest.raises(StorageFailure, match="timed out") as exc_info:
                await restore_snapshot(db, herd_document, "ranch-south", clock=clock, timeout=0.05)

        assert exc_info.value.rolled_back is True
        assert db.rollbacks == 1
        assert snapshot_state(db) == before

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back(
        self, herd_tables, herd_document, clock, snapshot_state, make_tx_db
    ) -> None:
        db = make_tx_db(herd_tables)
        before = snapshot_state(db)

        with patch.object(db, "insert", _failing_insert(db, "medical_history")) as insert:
            task = asyncio.create_task(
                restore_snapshot(db, herd_document, "ranch-north", "overwrite", clock=clock)
            )
            while not any(call.args[0] == "medical_history" for call in insert.call_args_list):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert db.rollbacks == 1
        assert snapshot_state(db) == before


class TestPhotoReferences:
    """Photo locators are checked against the blob store, never copied."""

    @pytest.mark.asyncio
    async def test_missing_photo_warns(self, herd_db, herd_document, clock, tmp_path) -> None:
        blobs = LocalBlobStore(tmp_path)
        report = await restore_snapshot(
            herd_db, herd_document, "ranch-south", clock=clock, blob_store=blobs
        )
        assert any("ph-1" in w and "not found" in w for w in report.warnings)
        photos = await herd_db.select("animal_photos", "*", {"ranch_id": "ranch-south"})
        assert photos[0]["storage_locator"] == "ranch-north/a-cow/1700000000.jpg"

    @pytest.mark.asyncio
    async def test_present_photo_no_warning(self, herd_db, herd_document, clock, tmp_path) -> None:
        photo = tmp_path / "ranch-north" / "a-cow" / "1700000000.jpg"
        photo.parent.mkdir(parents=True)
        photo.write_bytes(b"\xff\xd8")
        report = await restore_snapshot(
            herd_db, herd_document, "ranch-south", clock=clock, blob_store=LocalBlobStore(tmp_path)
        )
        assert report.warnings == []
