"""Snapshot validation.

``validate_snapshot()`` inspects a raw decoded snapshot document (the dict
produced by ``read_snapshot()``) and reports every problem it finds.  It
never writes and never raises for bad input; callers branch on
``ValidationResult.valid``.

Checks run in four stages:

1. format: ``format_version`` is a positive integer this build supports.
   A format error ends validation, since the layout of a newer document
   cannot be interpreted.
2. structural: top-level keys, collection shapes, required fields.
3. referential: every foreign key resolves inside the document.
4. semantic: parentage rules, uniqueness, enums, dates, custom value types.

Usage:
    from ranch_snapshot.snapshot.validator import validate_snapshot

    result = validate_snapshot(read_snapshot(path))
    if not result.valid:
        print(result.format_report())
"""

from datetime import date
from typing import Any

from pydantic import ValidationError

from ranch_snapshot.collaborators import Clock, SystemClock
from ranch_snapshot.models import AnimalStatus, FieldType
from ranch_snapshot.snapshot.models import (
    SUPPORTED_FORMAT_VERSION,
    Snapshot,
    ValidationIssue,
    ValidationResult,
)
from ranch_snapshot.schema import RANCH_SCHEMA, TableDef

_STATUSES = {s.value for s in AnimalStatus}
_FIELD_TYPES = {t.value for t in FieldType}


def _parse_date(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _record_id(table_def: TableDef, row: dict) -> str | None:
    if table_def.pk is not None:
        value = row.get(table_def.pk)
        return str(value) if value is not None else None
    return f"{row.get('definition_id')}/{row.get('animal_id')}"


class _Collector:
    """Accumulates issues for one validation run."""

    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []

    def error(self, category: str, message: str, **where: Any) -> None:
        self.errors.append(ValidationIssue(category=category, message=message, **where))

    def warn(self, category: str, message: str, **where: Any) -> None:
        self.warnings.append(ValidationIssue(category=category, message=message, **where))


# ============================================================================
# Stages
# ============================================================================


def _check_format(document: Any, issues: _Collector) -> int | None:
    if not isinstance(document, dict):
        issues.error("format", "Snapshot document must be a JSON object")
        return None

    if "format_version" not in document:
        issues.error("format", "Missing format_version")
        return None

    version = document["format_version"]
    if isinstance(version, bool) or not isinstance(version, int):
        issues.error("format", f"format_version must be an integer, got {version!r}")
        return None
    if version < 1:
        issues.error("format", f"Invalid format_version {version}")
    elif version > SUPPORTED_FORMAT_VERSION:
        issues.error(
            "format",
            f"Unsupported format_version {version} "
            f"(this build supports up to {SUPPORTED_FORMAT_VERSION})",
        )
    return version


def _check_structure(document: dict, issues: _Collector) -> dict[str, list[dict]]:
    """Return the well-formed records per collection for later stages."""
    ranch = document.get("ranch")
    if not isinstance(ranch, dict):
        issues.error("structural", "Missing or malformed 'ranch' section", field="ranch")
    else:
        name = ranch.get("name")
        if not isinstance(name, str) or not name.strip():
            issues.error("structural", "Ranch name is required", collection="ranch", field="name")
        settings = ranch.get("settings")
        if settings is not None and not isinstance(settings, dict):
            issues.error(
                "structural", "Ranch settings must be an object",
                collection="ranch", field="settings",
            )

    metadata = document.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        issues.error("structural", "metadata must be an object", field="metadata")

    records: dict[str, list[dict]] = {}
    for table_def in RANCH_SCHEMA.tables:
        name = table_def.collection
        if name not in document:
            issues.error("structural", f"Missing required key: {name}", field=name)
            records[name] = []
            continue
        rows = document[name]
        if not isinstance(rows, list):
            issues.error("structural", "Collection must be a list", collection=name)
            records[name] = []
            continue

        good: list[dict] = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                issues.error(
                    "structural", f"Entry {index} is not an object", collection=name
                )
                continue
            ok = True
            for field in table_def.required:
                value = row.get(field)
                if value is None or (isinstance(value, str) and not value.strip()):
                    issues.error(
                        "structural",
                        f"Entry {index} is missing required field",
                        collection=name,
                        record_id=_record_id(table_def, row),
                        field=field,
                    )
                    ok = False
            id_fields = [table_def.pk] if table_def.pk else []
            id_fields += [ref.field for ref in table_def.refs]
            for field in id_fields:
                value = row.get(field)
                if value is not None and not isinstance(value, str):
                    issues.error(
                        "structural",
                        f"Identifier must be a string, got {type(value).__name__}",
                        collection=name,
                        record_id=_record_id(table_def, row),
                        field=field,
                    )
                    ok = False
            if ok:
                good.append(row)
        records[name] = good
    return records


def _check_references(
    document: dict, records: dict[str, list[dict]], issues: _Collector
) -> None:
    # Targets include entries the structural stage rejected.
    ids: dict[str, set] = {}
    for t in RANCH_SCHEMA.tables:
        if t.pk is None:
            continue
        rows = document.get(t.collection)
        ids[t.collection] = {
            row[t.pk]
            for row in (rows if isinstance(rows, list) else [])
            if isinstance(row, dict) and isinstance(row.get(t.pk), str)
        }
    for table_def in RANCH_SCHEMA.tables:
        for row in records[table_def.collection]:
            for ref in table_def.refs:
                target = row.get(ref.field)
                if target is None:
                    continue
                if target not in ids[ref.collection]:
                    issues.error(
                        "referential",
                        f"References unknown {ref.collection} '{target}'",
                        collection=table_def.collection,
                        record_id=_record_id(table_def, row),
                        field=ref.field,
                    )


def _find_cycles(animals: list[dict]) -> list[list[str]]:
    """Parentage cycles longer than one animal, each reported once."""
    parents: dict[str, list[str]] = {}
    for row in animals:
        parents[row["id"]] = [
            p for p in (row.get("mother_id"), row.get("father_id"))
            if p is not None and p != row["id"]
        ]

    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    cycles: list[list[str]] = []

    for start in parents:
        if state.get(start):
            continue
        stack: list[tuple[str, int]] = [(start, 0)]
        path: list[str] = []
        while stack:
            node, index = stack.pop()
            if index == 0:
                state[node] = 1
                path.append(node)
            edges = parents.get(node, [])
            if index < len(edges):
                stack.append((node, index + 1))
                nxt = edges[index]
                if state.get(nxt) == 1:
                    cycles.append(path[path.index(nxt):])
                elif not state.get(nxt) and nxt in parents:
                    stack.append((nxt, 0))
            else:
                state[node] = 2
                path.pop()
    return cycles


def _check_semantics(records: dict[str, list[dict]], issues: _Collector, today: date) -> None:
    for table_def in RANCH_SCHEMA.tables:
        if table_def.pk is None:
            continue
        seen: set[str] = set()
        for row in records[table_def.collection]:
            pk = row[table_def.pk]
            if pk in seen:
                issues.error(
                    "semantic", "Duplicate id",
                    collection=table_def.collection, record_id=pk,
                )
            seen.add(pk)

        for row in records[table_def.collection]:
            for field in table_def.date_fields:
                value = row.get(field)
                if value is None:
                    continue
                parsed = _parse_date(value)
                if parsed is None:
                    issues.error(
                        "semantic", f"Not a valid date: {value!r}",
                        collection=table_def.collection, record_id=row[table_def.pk], field=field,
                    )
                elif parsed > today:
                    issues.warn(
                        "semantic", f"Date {value} is in the future",
                        collection=table_def.collection, record_id=row[table_def.pk], field=field,
                    )

    animals = records["animals"]
    for row in animals:
        animal_id = row["id"]
        if not isinstance(row["status"], str) or row["status"] not in _STATUSES:
            issues.error(
                "semantic", f"Unknown status {row['status']!r}",
                collection="animals", record_id=animal_id, field="status",
            )
        if "is_active" in row and not isinstance(row["is_active"], bool):
            issues.error(
                "semantic", "is_active must be true or false",
                collection="animals", record_id=animal_id, field="is_active",
            )
        for field in ("mother_id", "father_id"):
            if row.get(field) == animal_id:
                issues.error(
                    "semantic", "Animal cannot be its own parent",
                    collection="animals", record_id=animal_id, field=field,
                )
        birth = _parse_date(row.get("birth_date"))
        exit_ = _parse_date(row.get("exit_date"))
        if birth and exit_ and exit_ < birth:
            issues.warn(
                "semantic", f"exit_date {exit_} is before birth_date {birth}",
                collection="animals", record_id=animal_id, field="exit_date",
            )

    for cycle in _find_cycles(animals):
        issues.error(
            "semantic",
            "Parentage cycle: " + " -> ".join(cycle + [cycle[0]]),
            collection="animals",
            record_id=cycle[0],
        )

    definitions: dict[str, dict] = {}
    names: set[str] = set()
    for row in records["custom_field_definitions"]:
        definitions.setdefault(row["id"], row)
        if not isinstance(row["type"], str) or row["type"] not in _FIELD_TYPES:
            issues.error(
                "semantic", f"Unknown field type {row['type']!r}",
                collection="custom_field_definitions", record_id=row["id"], field="type",
            )
        if str(row["name"]) in names:
            issues.error(
                "semantic", f"Duplicate custom field name {row['name']!r}",
                collection="custom_field_definitions", record_id=row["id"], field="name",
            )
        names.add(str(row["name"]))

    pairs: set[tuple[str, str]] = set()
    for row in records["custom_field_values"]:
        pair = (row["definition_id"], row["animal_id"])
        record_id = f"{pair[0]}/{pair[1]}"
        if pair in pairs:
            issues.error(
                "semantic", "Duplicate value for this field and animal",
                collection="custom_field_values", record_id=record_id,
            )
        pairs.add(pair)

        definition = definitions.get(row["definition_id"])
        value = row.get("value")
        if definition is None or value is None or value == "":
            continue
        if definition["type"] == FieldType.number.value and not _is_number(value):
            issues.error(
                "semantic", f"Value {value!r} is not a number",
                collection="custom_field_values", record_id=record_id, field="value",
            )
        elif definition["type"] == FieldType.date.value and _parse_date(value) is None:
            issues.error(
                "semantic", f"Value {value!r} is not a date",
                collection="custom_field_values", record_id=record_id, field="value",
            )


def _check_model(document: dict, issues: _Collector) -> None:
    try:
        Snapshot.model_validate(document)
    except ValidationError as e:
        for err in e.errors():
            loc = [str(part) for part in err["loc"]]
            issues.error(
                "structural",
                err["msg"],
                collection=loc[0] if loc else None,
                field=".".join(loc[1:]) or None,
            )


# ============================================================================
# Public API
# ============================================================================


def validate_snapshot(document: Any, clock: Clock | None = None) -> ValidationResult:
    """Validate a raw snapshot document.

    Args:
        document: Decoded snapshot (normally a dict).
        clock: Source of "today" for future-date warnings.  Defaults to
            ``SystemClock``.

    Returns:
        ``ValidationResult`` with every error and warning found.

    Example:
        result = validate_snapshot({"format_version": 2, ...})
        result.format_unsupported   # True
    """
    clock = clock or SystemClock()
    issues = _Collector()

    version = _check_format(document, issues)
    if issues.errors:
        return ValidationResult(
            valid=False, format_version=version, errors=issues.errors, warnings=issues.warnings
        )

    records = _check_structure(document, issues)
    _check_references(document, records, issues)
    _check_semantics(records, issues, clock.today())

    if not issues.errors:
        _check_model(document, issues)

    return ValidationResult(
        valid=not issues.errors,
        format_version=version,
        errors=issues.errors,
        warnings=issues.warnings,
    )
