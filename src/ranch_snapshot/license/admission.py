"""License admission control.

Every ranch row carries ``max_animals`` (its licensed capacity) and
``active_animal_count``.  The counter is the only gate on new active
animals and it only moves through ``try_reserve()`` / ``release()``,
which are compare-and-set updates:

    UPDATE ranches SET active_animal_count = :observed + :delta
    WHERE id = :id AND active_animal_count = :observed

A concurrent writer makes the guarded update match no row
(``RowNotFoundError``); the controller re-reads and tries again.  The
guard lives in the database, so it holds across processes.

Refusal is an outcome, not an exception: ``try_reserve()`` returns an
``AdmissionResult`` with ``outcome == "limit_reached"``.

Usage:
    from ranch_snapshot.license.admission import LicenseAdmissionController

    controller = LicenseAdmissionController(adapter)
    result = await controller.admit_animal(ranch_id, {"tag_number": "A-17"})
    if not result.ok:
        print(result.message)
"""

import logging
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ranch_snapshot.adapters.base import DatabaseClient, RowNotFoundError
from ranch_snapshot.collaborators import Clock, SystemClock
from ranch_snapshot.errors import StorageFailure
from ranch_snapshot.graph import fetch_ranch_row
from ranch_snapshot.license.keys import normalize_license_key, validate_license_key_format
from ranch_snapshot.license.status import (
    GRACE_PERIOD_DAYS,
    LicenseInfo,
    check_license_status,
    license_message,
)
from ranch_snapshot.models import AnimalData, AnimalStatus, LicenseGrant, LicenseKey, to_row
from ranch_snapshot.unit_of_work import open_unit

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 100


# ============================================================================
# Results
# ============================================================================


class AdmissionOutcome(str, Enum):
    reserved = "reserved"
    released = "released"
    limit_reached = "limit_reached"
    license_inactive = "license_inactive"


class AdmissionResult(BaseModel):
    """Outcome of a counter change or an animal admission."""

    outcome: AdmissionOutcome
    ranch_id: str
    delta: int = 0
    active_count: int
    capacity: int
    animal_id: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (AdmissionOutcome.reserved, AdmissionOutcome.released)


class GrantResult(BaseModel):
    """Outcome of a capacity grant.  ``applied`` is False for no-op grants."""

    ranch_id: str
    applied: bool
    previous_capacity: int
    capacity: int


class CapacityStatus(BaseModel):
    ranch_id: str
    active_count: int
    capacity: int

    @property
    def remaining(self) -> int:
        return max(self.capacity - self.active_count, 0)

    @property
    def at_limit(self) -> bool:
        return self.active_count >= self.capacity


class RedeemOutcome(str, Enum):
    activated = "activated"
    invalid_format = "invalid_format"
    not_found = "not_found"
    already_used = "already_used"


class RedeemResult(BaseModel):
    outcome: RedeemOutcome
    key: str
    license_type: str | None = None
    expiration_date: str | None = None
    capacity: int | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == RedeemOutcome.activated


# ============================================================================
# Controller
# ============================================================================


class LicenseAdmissionController:
    """Admission control over ``ranches.active_animal_count``.

    Args:
        client: Entity store.  Pass a transaction-bound client to make
            counter changes part of that transaction.
        clock: Source of "today" for license checks and grant timestamps.
        grace_period_days: Days after expiration during which a ranch can
            still admit animals.
        max_attempts: Compare-and-set attempts before giving up.
    """

    def __init__(
        self,
        client: DatabaseClient,
        *,
        clock: Clock | None = None,
        grace_period_days: int = GRACE_PERIOD_DAYS,
        max_attempts: int = MAX_CAS_ATTEMPTS,
    ) -> None:
        self.client = client
        self.clock = clock or SystemClock()
        self.grace_period_days = grace_period_days
        self.max_attempts = max_attempts

    def bound_to(self, client: DatabaseClient) -> "LicenseAdmissionController":
        """Same settings, different client (e.g. a unit of work's)."""
        return LicenseAdmissionController(
            client,
            clock=self.clock,
            grace_period_days=self.grace_period_days,
            max_attempts=self.max_attempts,
        )

    async def _set_counter(self, ranch_id: str, observed: int, new: int) -> bool:
        try:
            await self.client.update(
                "ranches",
                {"active_animal_count": new},
                filters={"id": ranch_id, "active_animal_count": observed},
            )
        except RowNotFoundError:
            logger.debug("Counter for ranch %s moved from %d, retrying", ranch_id, observed)
            return False
        return True

    def _contention(self, ranch_id: str) -> StorageFailure:
        return StorageFailure(
            f"Counter for ranch '{ranch_id}' kept changing; "
            f"gave up after {self.max_attempts} attempts"
        )

    # ------------------------------------------------------------------
    # Counter primitives
    # ------------------------------------------------------------------

    async def try_reserve(self, ranch_id: str, delta: int = 1) -> AdmissionResult:
        """Reserve ``delta`` active-animal slots if capacity allows.

        Returns:
            ``reserved`` with the new count, or ``limit_reached`` with the
            count observed when the request was refused.

        Raises:
            ValueError: If ``delta`` is negative.
            RanchNotFound: If the ranch does not exist.
            StorageFailure: If the counter never settled.
        """
        if delta < 0:
            raise ValueError("delta must not be negative")

        for _ in range(self.max_attempts):
            ranch = await fetch_ranch_row(self.client, ranch_id)
            observed = ranch.active_animal_count
            if observed + delta > ranch.max_animals:
                logger.info(
                    "Ranch %s at %d/%d, refusing %d more",
                    ranch_id, observed, ranch.max_animals, delta,
                )
                return AdmissionResult(
                    outcome=AdmissionOutcome.limit_reached,
                    ranch_id=ranch_id,
                    delta=delta,
                    active_count=observed,
                    capacity=ranch.max_animals,
                    message=(
                        f"Animal limit reached ({ranch.max_animals} animals). "
                        "Please upgrade your license to add more animals."
                    ),
                )
            if delta == 0 or await self._set_counter(ranch_id, observed, observed + delta):
                return AdmissionResult(
                    outcome=AdmissionOutcome.reserved,
                    ranch_id=ranch_id,
                    delta=delta,
                    active_count=observed + delta,
                    capacity=ranch.max_animals,
                )
        raise self._contention(ranch_id)

    async def release(self, ranch_id: str, delta: int = 1) -> AdmissionResult:
        """Give back ``delta`` slots.  The counter never drops below zero."""
        if delta < 0:
            raise ValueError("delta must not be negative")

        for _ in range(self.max_attempts):
            ranch = await fetch_ranch_row(self.client, ranch_id)
            observed = ranch.active_animal_count
            new = observed - delta
            if new < 0:
                logger.warning(
                    "Ranch %s counter would drop to %d; clamping at 0 (run reconcile)",
                    ranch_id, new,
                )
                new = 0
            if new == observed or await self._set_counter(ranch_id, observed, new):
                return AdmissionResult(
                    outcome=AdmissionOutcome.released,
                    ranch_id=ranch_id,
                    delta=delta,
                    active_count=new,
                    capacity=ranch.max_animals,
                )
        raise self._contention(ranch_id)

    async def grant(
        self, ranch_id: str, new_capacity: int, source_key: str | None = None
    ) -> GrantResult:
        """Raise the ranch's capacity.

        Capacity never decreases: a grant at or below the current capacity
        changes nothing and returns ``applied=False``.
        """
        for _ in range(self.max_attempts):
            ranch = await fetch_ranch_row(self.client, ranch_id)
            current = ranch.max_animals
            if new_capacity <= current:
                return GrantResult(
                    ranch_id=ranch_id, applied=False,
                    previous_capacity=current, capacity=current,
                )
            try:
                await self.client.update(
                    "ranches",
                    {"max_animals": new_capacity},
                    filters={"id": ranch_id, "max_animals": current},
                )
            except RowNotFoundError:
                continue

            grant = LicenseGrant(
                id=str(uuid.uuid4()),
                ranch_id=ranch_id,
                max_animals=new_capacity,
                source_key=source_key,
                granted_at=self.clock.now().isoformat(),
            )
            await self.client.insert("license_grants", to_row(grant))
            logger.info("Ranch %s capacity raised %d -> %d", ranch_id, current, new_capacity)
            return GrantResult(
                ranch_id=ranch_id, applied=True,
                previous_capacity=current, capacity=new_capacity,
            )
        raise self._contention(ranch_id)

    async def capacity(self, ranch_id: str) -> CapacityStatus:
        ranch = await fetch_ranch_row(self.client, ranch_id)
        return CapacityStatus(
            ranch_id=ranch_id,
            active_count=ranch.active_animal_count,
            capacity=ranch.max_animals,
        )

    async def reconcile(self, ranch_id: str) -> CapacityStatus:
        """Reset the counter to the number of active animal rows.

        Repair path for counters that drifted (e.g. an interrupted
        compensation).  Run it while no admissions are in flight.
        """
        for _ in range(self.max_attempts):
            ranch = await fetch_ranch_row(self.client, ranch_id)
            rows = await self.client.select(
                "animals", "id", filters={"ranch_id": ranch_id, "is_active": True}
            )
            actual = len(rows)
            observed = ranch.active_animal_count
            if actual != observed:
                if not await self._set_counter(ranch_id, observed, actual):
                    continue
                logger.warning(
                    "Ranch %s counter corrected from %d to %d", ranch_id, observed, actual
                )
            return CapacityStatus(
                ranch_id=ranch_id, active_count=actual, capacity=ranch.max_animals
            )
        raise self._contention(ranch_id)

    # ------------------------------------------------------------------
    # Animal admission
    # ------------------------------------------------------------------

    async def license_info(self, ranch_id: str) -> LicenseInfo:
        ranch = await fetch_ranch_row(self.client, ranch_id)
        return check_license_status(ranch, self.clock.today(), self.grace_period_days)

    async def admit_animal(
        self, ranch_id: str, animal: AnimalData | dict[str, Any]
    ) -> AdmissionResult:
        """Insert an animal, reserving a slot for it when it is active.

        The reservation and the insert form one atomic unit.

        Returns:
            ``reserved`` with ``animal_id`` set, ``limit_reached``, or
            ``license_inactive`` when the license is missing or expired.
        """
        ranch = await fetch_ranch_row(self.client, ranch_id)
        info = check_license_status(ranch, self.clock.today(), self.grace_period_days)
        if not info.can_add_animals:
            return AdmissionResult(
                outcome=AdmissionOutcome.license_inactive,
                ranch_id=ranch_id,
                active_count=ranch.active_animal_count,
                capacity=ranch.max_animals,
                message=license_message(info, ranch.active_animal_count),
            )

        data = animal.model_dump(mode="json") if isinstance(animal, AnimalData) else dict(animal)
        data.setdefault("id", str(uuid.uuid4()))
        data.setdefault("status", AnimalStatus.present.value)
        data.setdefault("is_active", True)
        data["ranch_id"] = ranch_id
        delta = 1 if data["is_active"] else 0

        async with open_unit(self.client) as uow:
            controller = self.bound_to(uow.direct)
            result = await controller.try_reserve(ranch_id, delta)
            if not result.ok:
                return result
            if delta:
                uow.compensate(
                    lambda: controller.release(ranch_id, delta),
                    f"release {delta} slot(s) on ranch {ranch_id}",
                )
            await uow.client.insert("animals", data)

        return result.model_copy(update={"animal_id": data["id"]})

    async def deactivate_animal(
        self,
        ranch_id: str,
        animal_id: str,
        status: AnimalStatus | None = None,
        exit_date: str | None = None,
    ) -> AdmissionResult:
        """Mark an animal inactive and release its slot, atomically.

        Deactivating an inactive animal changes nothing and releases
        nothing.

        Raises:
            RowNotFoundError: If the animal is not in this ranch.
        """
        filters = {"id": animal_id, "ranch_id": ranch_id}
        rows = await self.client.select("animals", "id, is_active", filters=filters)
        if not rows:
            raise RowNotFoundError("animals", filters)

        changes: dict[str, Any] = {"is_active": False}
        if status is not None:
            changes["status"] = AnimalStatus(status).value
        if exit_date is not None:
            changes["exit_date"] = exit_date

        async with open_unit(self.client) as uow:
            try:
                await uow.client.update("animals", changes, {**filters, "is_active": True})
            except RowNotFoundError:
                status_now = await self.capacity(ranch_id)
                return AdmissionResult(
                    outcome=AdmissionOutcome.released,
                    ranch_id=ranch_id,
                    active_count=status_now.active_count,
                    capacity=status_now.capacity,
                    animal_id=animal_id,
                )
            result = await self.bound_to(uow.direct).release(ranch_id, 1)

        return result.model_copy(update={"animal_id": animal_id})

    # ------------------------------------------------------------------
    # License keys
    # ------------------------------------------------------------------

    async def redeem_key(self, ranch_id: str, key: str) -> RedeemResult:
        """Activate a license key on a ranch.

        Claims the key, stamps the ranch's license fields and grants the
        key's capacity (never lowering the current one), as one unit.

        Raises:
            RanchNotFound: If the ranch does not exist.
        """
        normalized = normalize_license_key(key)
        if not validate_license_key_format(normalized):
            return RedeemResult(outcome=RedeemOutcome.invalid_format, key=normalized)

        await fetch_ranch_row(self.client, ranch_id)

        rows = await self.client.select("license_keys", "*", filters={"key": normalized})
        if not rows:
            return RedeemResult(outcome=RedeemOutcome.not_found, key=normalized)
        record = LicenseKey.model_validate(rows[0])
        if record.used_by_ranch_id is not None:
            return RedeemResult(outcome=RedeemOutcome.already_used, key=normalized)

        async with open_unit(self.client) as uow:
            try:
                await uow.client.update(
                    "license_keys",
                    {"used_by_ranch_id": ranch_id},
                    {"id": record.id, "used_by_ranch_id": None},
                )
            except RowNotFoundError:
                return RedeemResult(outcome=RedeemOutcome.already_used, key=normalized)

            await uow.client.update(
                "ranches",
                {
                    "active_license_key": normalized,
                    "license_type": record.license_type.value,
                    "license_expiration": record.expiration_date,
                    "license_activated_at": self.clock.now().isoformat(),
                },
                {"id": ranch_id},
            )
            granted = await self.bound_to(uow.client).grant(
                ranch_id, record.max_animals, source_key=normalized
            )

        logger.info("Ranch %s activated license %s", ranch_id, normalized)
        return RedeemResult(
            outcome=RedeemOutcome.activated,
            key=normalized,
            license_type=record.license_type.value,
            expiration_date=record.expiration_date,
            capacity=granted.capacity,
        )
