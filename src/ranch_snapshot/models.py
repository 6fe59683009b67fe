"""Pydantic models for ranch entities.

Each entity kind has two shapes:

- ``*Data``: the portable fields written into a snapshot (original ids,
  no ``ranch_id``).
- the stored record (``Animal``, ``MedicalHistoryRecord``, ...): ``*Data``
  plus ownership and bookkeeping columns, as read from the entity store.

Stored records are frozen; the graph model hands them out read-only.
Dates are kept as ISO ``YYYY-MM-DD`` strings exactly as stored.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


# ============================================================================
# Enums
# ============================================================================


class AnimalStatus(str, Enum):
    """Where the animal is."""

    present = "PRESENT"
    sold = "SOLD"
    dead = "DEAD"


class FieldType(str, Enum):
    """Custom field value type."""

    text = "text"
    number = "number"
    date = "date"


class LicenseType(str, Enum):
    full = "full"
    demo = "demo"


# ============================================================================
# Portable (snapshot) shapes
# ============================================================================


class _Portable(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RanchSettingsData(_Portable):
    """Report header lines and locale settings."""

    report_line1: str | None = None
    report_line2: str | None = None
    adult_age_years: float | None = None
    time_zone: str | None = None


class CustomFieldDefinitionData(_Portable):
    id: str
    name: str
    type: FieldType = FieldType.text


class AnimalData(_Portable):
    id: str
    source: str | None = None
    status: AnimalStatus = AnimalStatus.present
    tag_number: str | None = None
    sex: str | None = None
    birth_date: str | None = None
    exit_date: str | None = None
    mother_id: str | None = None
    father_id: str | None = None
    is_active: bool = True
    name: str | None = None
    animal_type: str | None = None
    tag_color: str | None = None
    weight_lbs: float | None = None
    sale_price: float | None = None
    description: str | None = None
    notes: str | None = None


class MedicalHistoryData(_Portable):
    id: str
    animal_id: str
    date: str
    description: str


class InjectionData(_Portable):
    id: str
    animal_id: str
    date: str
    drug: str
    dosage: str | None = None
    notes: str | None = None


class AnimalPhotoData(_Portable):
    """Photo metadata; bytes stay in the blob store behind ``storage_locator``."""

    id: str
    animal_id: str
    storage_locator: str
    caption: str | None = None
    is_primary: bool = False


class CustomFieldValueData(_Portable):
    definition_id: str
    animal_id: str
    value: str | None = None


# ============================================================================
# Stored records
# ============================================================================


class Ranch(_Portable):
    id: str
    name: str
    max_animals: int = 50
    active_animal_count: int = 0
    active_license_key: str | None = None
    license_type: LicenseType | None = None
    license_expiration: str | None = None
    license_activated_at: str | None = None
    created_at: str | None = None


class RanchSettings(RanchSettingsData):
    ranch_id: str


class CustomFieldDefinition(CustomFieldDefinitionData):
    ranch_id: str
    created_at: str | None = None


class Animal(AnimalData):
    ranch_id: str
    created_at: str | None = None


class MedicalHistoryRecord(MedicalHistoryData):
    ranch_id: str
    created_at: str | None = None


class InjectionRecord(InjectionData):
    ranch_id: str
    created_at: str | None = None


class AnimalPhoto(AnimalPhotoData):
    ranch_id: str
    created_at: str | None = None


class CustomFieldValue(CustomFieldValueData):
    ranch_id: str
    id: str | None = None
    created_at: str | None = None


class LicenseGrant(_Portable):
    id: str
    ranch_id: str
    max_animals: int
    source_key: str | None = None
    granted_at: str | None = None


class LicenseKey(_Portable):
    id: str
    key: str
    license_type: LicenseType
    expiration_date: str
    max_animals: int = 50
    used_by_ranch_id: str | None = None


def to_row(record: BaseModel, **overrides: Any) -> dict:
    """Dump a model to a JSON-compatible row dict with optional overrides."""
    row = record.model_dump(mode="json")
    row.update(overrides)
    return row


def portable_fields(model: type[BaseModel]) -> list[str]:
    """Names of the fields a portable model writes into a snapshot."""
    return list(model.model_fields.keys())


__all__ = [
    "AnimalStatus",
    "FieldType",
    "LicenseType",
    "RanchSettingsData",
    "CustomFieldDefinitionData",
    "AnimalData",
    "MedicalHistoryData",
    "InjectionData",
    "AnimalPhotoData",
    "CustomFieldValueData",
    "Ranch",
    "RanchSettings",
    "CustomFieldDefinition",
    "Animal",
    "MedicalHistoryRecord",
    "InjectionRecord",
    "AnimalPhoto",
    "CustomFieldValue",
    "LicenseGrant",
    "LicenseKey",
    "to_row",
    "portable_fields",
]
