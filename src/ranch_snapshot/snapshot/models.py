"""Snapshot document and validation result models."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ranch_snapshot.models import (
    AnimalData,
    AnimalPhotoData,
    CustomFieldDefinitionData,
    CustomFieldValueData,
    InjectionData,
    MedicalHistoryData,
    RanchSettingsData,
)

# Newest format this build reads and the one it writes.
FORMAT_VERSION = 1
SUPPORTED_FORMAT_VERSION = FORMAT_VERSION


# ============================================================================
# Snapshot document
# ============================================================================


class SnapshotRanch(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    settings: RanchSettingsData = Field(default_factory=RanchSettingsData)


class SnapshotMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: str | None = None
    source_ranch_id: str | None = None
    counts: dict[str, int] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Versioned, logical export of one ranch.

    Every ``*_id`` is the source ranch's original identifier and only means
    something relative to other entries of the same document.
    """

    model_config = ConfigDict(frozen=True)

    format_version: int = FORMAT_VERSION
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)
    ranch: SnapshotRanch
    custom_field_definitions: tuple[CustomFieldDefinitionData, ...] = ()
    animals: tuple[AnimalData, ...] = ()
    medical_history: tuple[MedicalHistoryData, ...] = ()
    injections: tuple[InjectionData, ...] = ()
    photos: tuple[AnimalPhotoData, ...] = ()
    custom_field_values: tuple[CustomFieldValueData, ...] = ()

    def collection(self, name: str) -> tuple:
        return getattr(self, name)

    @property
    def active_animal_count(self) -> int:
        return sum(1 for a in self.animals if a.is_active)


# ============================================================================
# Validation result
# ============================================================================

IssueCategory = Literal["format", "structural", "referential", "semantic"]


class ValidationIssue(BaseModel):
    """One problem found in a snapshot document."""

    category: IssueCategory
    message: str
    collection: str | None = None
    record_id: str | None = None
    field: str | None = None

    def __str__(self) -> str:
        where = ""
        if self.collection:
            where = self.collection
            if self.record_id:
                where += f"[{self.record_id}]"
            if self.field:
                where += f".{self.field}"
            where += ": "
        return f"{where}{self.message}"


class ValidationResult(BaseModel):
    """Result of snapshot validation.

    ``warnings`` never affect ``valid``; users may accept them.
    """

    valid: bool
    format_version: int | None = None
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def format_unsupported(self) -> bool:
        """True when the document is newer than this build understands."""
        return (
            self.format_version is not None
            and self.format_version > SUPPORTED_FORMAT_VERSION
        )

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        if self.valid and not self.warnings:
            return "Snapshot valid"

        lines = ["Snapshot valid (with warnings):" if self.valid else "Snapshot validation failed:"]

        if self.errors:
            lines.append(f"\n  Errors ({len(self.errors)}):")
            for issue in self.errors:
                lines.append(f"    - [{issue.category}] {issue}")

        if self.warnings:
            lines.append(f"\n  Warnings ({len(self.warnings)}):")
            for issue in self.warnings:
                lines.append(f"    - {issue}")

        return "\n".join(lines)
