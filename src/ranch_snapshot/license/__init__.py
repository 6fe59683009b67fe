"""License admission control, license keys and license status.

Usage:
    from ranch_snapshot.license import LicenseAdmissionController
    from ranch_snapshot.license import check_license_status, generate_license_key
"""

from ranch_snapshot.license.admission import (
    AdmissionOutcome,
    AdmissionResult,
    CapacityStatus,
    GrantResult,
    LicenseAdmissionController,
    RedeemOutcome,
    RedeemResult,
)
from ranch_snapshot.license.keys import (
    generate_license_key,
    issue_license_key,
    normalize_license_key,
    validate_license_key_format,
)
from ranch_snapshot.license.status import (
    GRACE_PERIOD_DAYS,
    LicenseInfo,
    LicenseStatus,
    check_license_status,
    license_message,
)

__all__ = [
    "AdmissionOutcome",
    "AdmissionResult",
    "CapacityStatus",
    "GrantResult",
    "LicenseAdmissionController",
    "RedeemOutcome",
    "RedeemResult",
    "generate_license_key",
    "issue_license_key",
    "normalize_license_key",
    "validate_license_key_format",
    "GRACE_PERIOD_DAYS",
    "LicenseInfo",
    "LicenseStatus",
    "check_license_status",
    "license_message",
]
