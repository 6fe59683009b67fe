"""License status evaluation.

A ranch's license is ``valid`` until its expiration date, then enters a
grace period during which it still accepts new animals.  After the grace
period the ranch is read-only.

Usage:
    from ranch_snapshot.license.status import check_license_status

    info = check_license_status(ranch, clock.today())
    if not info.can_add_animals:
        print(license_message(info, ranch.active_animal_count))
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel

from ranch_snapshot.models import LicenseType, Ranch

GRACE_PERIOD_DAYS = 30


class LicenseStatus(str, Enum):
    valid = "valid"
    grace_period = "grace_period"
    expired = "expired"
    no_license = "no_license"


class LicenseInfo(BaseModel):
    status: LicenseStatus
    is_read_only: bool
    days_until_expiration: int | None = None
    days_in_grace_period: int | None = None
    license_type: LicenseType | None = None
    expiration_date: str | None = None
    max_animals: int | None = None

    @property
    def can_add_animals(self) -> bool:
        return self.status not in (LicenseStatus.no_license, LicenseStatus.expired)


def _expiration(value: str) -> date:
    # Stored either as a date or as a full ISO timestamp.
    return date.fromisoformat(value[:10])


def check_license_status(
    ranch: Ranch | None,
    today: date,
    grace_period_days: int = GRACE_PERIOD_DAYS,
) -> LicenseInfo:
    """Evaluate the license of ``ranch`` as of ``today``."""
    if ranch is None or not ranch.license_expiration:
        return LicenseInfo(status=LicenseStatus.no_license, is_read_only=True)

    common = {
        "license_type": ranch.license_type,
        "expiration_date": ranch.license_expiration,
        "max_animals": ranch.max_animals,
    }
    days = (_expiration(ranch.license_expiration) - today).days

    if days >= 0:
        return LicenseInfo(
            status=LicenseStatus.valid,
            is_read_only=False,
            days_until_expiration=days,
            **common,
        )
    if -days <= grace_period_days:
        return LicenseInfo(
            status=LicenseStatus.grace_period,
            is_read_only=False,
            days_in_grace_period=-days,
            **common,
        )
    return LicenseInfo(status=LicenseStatus.expired, is_read_only=True, **common)


def license_message(info: LicenseInfo, active_count: int) -> str | None:
    """User-facing reason why no animal can be added, or ``None``."""
    if info.status == LicenseStatus.no_license:
        return "No active license. Please activate a license to add animals."
    if info.status == LicenseStatus.expired:
        return "License expired. Please renew your license to add animals."
    if info.max_animals is not None and active_count >= info.max_animals:
        return (
            f"Animal limit reached ({info.max_animals} animals). "
            "Please upgrade your license to add more animals."
        )
    return None
