"""License key generation, format checks and issuing.

Keys look like ``HERD-2026-7KQM-X3PA``: the issue year followed by two
random groups drawn from an alphabet without look-alike characters.

Usage:
    from ranch_snapshot.license.keys import generate_license_key, issue_license_key

    key = generate_license_key()
    record = await issue_license_key(adapter, "full", "2027-12-31", max_animals=500)
"""

import logging
import re
import secrets
import uuid
from datetime import date

from ranch_snapshot.adapters.base import DatabaseClient
from ranch_snapshot.models import LicenseKey, LicenseType, to_row

logger = logging.getLogger(__name__)

KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
KEY_PATTERN = re.compile(r"^HERD-\d{4}-[A-Z2-9]{4}-[A-Z2-9]{4}$")


def _segment(length: int = 4) -> str:
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


def generate_license_key(year: int | None = None) -> str:
    """New random key for ``year`` (default: the current year)."""
    year = year or date.today().year
    return f"HERD-{year:04d}-{_segment()}-{_segment()}"


def normalize_license_key(key: str) -> str:
    return key.strip().upper()


def validate_license_key_format(key: str) -> bool:
    return bool(KEY_PATTERN.match(key))


async def issue_license_key(
    client: DatabaseClient,
    license_type: LicenseType | str,
    expiration_date: str,
    max_animals: int = 50,
    key: str | None = None,
) -> LicenseKey:
    """Store a new, unused license key.

    Args:
        client: Entity store.
        license_type: ``"full"`` or ``"demo"``.
        expiration_date: ISO date the license runs until.
        max_animals: Capacity granted on redemption.
        key: Explicit key; generated when omitted.

    Raises:
        ValueError: If ``key``, ``expiration_date`` or ``max_animals`` is
            malformed.
    """
    key = normalize_license_key(key) if key else generate_license_key()
    if not validate_license_key_format(key):
        raise ValueError(f"Malformed license key '{key}'")
    date.fromisoformat(expiration_date)
    if max_animals < 1:
        raise ValueError("max_animals must be positive")

    record = LicenseKey(
        id=str(uuid.uuid4()),
        key=key,
        license_type=LicenseType(license_type),
        expiration_date=expiration_date,
        max_animals=max_animals,
    )
    await client.insert("license_keys", to_row(record))
    logger.info("Issued %s license key %s (max %d animals)", record.license_type.value, key, max_animals)
    return record
