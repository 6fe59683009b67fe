"""Read-only view of one ranch's full entity graph.

``fetch_ranch_graph()`` loads every sub-collection of a ranch through the
entity store and returns a ``RanchGraph`` of frozen records.  Each
collection is ordered by ``created_at`` ascending so that serializing the
same data twice yields the same snapshot.

This module never writes.

Usage:
    from ranch_snapshot.graph import fetch_ranch_graph

    graph = await fetch_ranch_graph(adapter, ranch_id)
    graph.animals[0].mother_id
    graph.children_of(animal_id)
"""

import logging

from pydantic import BaseModel, ConfigDict

from ranch_snapshot.adapters.base import DatabaseClient
from ranch_snapshot.errors import CrossTenantReference, RanchNotFound
from ranch_snapshot.models import (
    Animal,
    AnimalPhoto,
    CustomFieldDefinition,
    CustomFieldValue,
    InjectionRecord,
    MedicalHistoryRecord,
    Ranch,
    RanchSettings,
)
from ranch_snapshot.schema import RANCH_SCHEMA

logger = logging.getLogger(__name__)

_RECORD_TYPES: dict[str, type[BaseModel]] = {
    "custom_field_definitions": CustomFieldDefinition,
    "animals": Animal,
    "medical_history": MedicalHistoryRecord,
    "injections": InjectionRecord,
    "photos": AnimalPhoto,
    "custom_field_values": CustomFieldValue,
}


class RanchGraph(BaseModel):
    """All records of one ranch, grouped by kind, foreign keys intact."""

    model_config = ConfigDict(frozen=True)

    ranch: Ranch
    settings: RanchSettings | None = None
    custom_field_definitions: tuple[CustomFieldDefinition, ...] = ()
    animals: tuple[Animal, ...] = ()
    medical_history: tuple[MedicalHistoryRecord, ...] = ()
    injections: tuple[InjectionRecord, ...] = ()
    photos: tuple[AnimalPhoto, ...] = ()
    custom_field_values: tuple[CustomFieldValue, ...] = ()

    def collection(self, name: str) -> tuple:
        """Records of one snapshot collection by name."""
        return getattr(self, name)

    def counts(self) -> dict[str, int]:
        return {t.collection: len(self.collection(t.collection)) for t in RANCH_SCHEMA.tables}

    @property
    def active_animal_count(self) -> int:
        return sum(1 for a in self.animals if a.is_active)

    def children_of(self, animal_id: str) -> list[Animal]:
        """Animals whose mother or father is ``animal_id``."""
        return [a for a in self.animals if animal_id in (a.mother_id, a.father_id)]


async def fetch_ranch_row(client: DatabaseClient, ranch_id: str) -> Ranch:
    """Load the ranch row.

    Raises:
        RanchNotFound: If no ranch has this id.
    """
    rows = await client.select("ranches", "*", filters={"id": ranch_id})
    if not rows:
        raise RanchNotFound(ranch_id)
    return Ranch.model_validate(rows[0])


async def fetch_ranch_graph(client: DatabaseClient, ranch_id: str) -> RanchGraph:
    """Load every collection of a ranch into a ``RanchGraph``.

    Custom-field values whose definition no longer exists anywhere are
    invisible to users and are left out.  A value whose definition belongs
    to another ranch is a cross-tenant reference.

    Raises:
        RanchNotFound: If the ranch does not exist.
        CrossTenantReference: If a fetched record belongs to another ranch
            or a foreign key points outside the ranch.
    """
    ranch = await fetch_ranch_row(client, ranch_id)

    settings_rows = await client.select("ranch_settings", "*", filters={"ranch_id": ranch_id})
    settings = RanchSettings.model_validate(settings_rows[0]) if settings_rows else None

    collections: dict[str, tuple] = {}
    for table_def in RANCH_SCHEMA.tables:
        rows = await client.select(
            table_def.name,
            "*",
            filters={table_def.ranch_field: ranch_id},
            order_by="created_at",
        )
        record_type = _RECORD_TYPES[table_def.collection]
        records = []
        for row in rows:
            owner = row.get(table_def.ranch_field)
            if owner != ranch_id:
                raise CrossTenantReference(
                    table_def.name, str(row.get("id")), str(owner), ranch_id
                )
            records.append(record_type.model_validate(row))
        collections[table_def.collection] = tuple(records)

    animal_ids = {a.id for a in collections["animals"]}
    definition_ids = {d.id for d in collections["custom_field_definitions"]}

    for table_def in RANCH_SCHEMA.tables:
        for record in collections[table_def.collection]:
            for ref in table_def.refs:
                if ref.collection != "animals":
                    continue
                target = getattr(record, ref.field)
                if target is not None and target not in animal_ids:
                    raise CrossTenantReference(
                        table_def.name,
                        str(getattr(record, "id", None) or record.animal_id),
                        f"<{ref.field}={target}>",
                        ranch_id,
                    )

    values = collections["custom_field_values"]
    for value in values:
        if value.definition_id in definition_ids:
            continue
        owners = await client.select(
            "custom_field_definitions", "id, ranch_id", filters={"id": value.definition_id}
        )
        if owners:
            raise CrossTenantReference(
                "custom_field_values",
                str(value.id or value.animal_id),
                str(owners[0]["ranch_id"]),
                ranch_id,
            )
    visible = tuple(v for v in values if v.definition_id in definition_ids)
    if len(visible) != len(values):
        logger.info(
            "Ranch %s: skipping %d custom field value(s) with deleted definitions",
            ranch_id,
            len(values) - len(visible),
        )
    collections["custom_field_values"] = visible

    return RanchGraph(ranch=ranch, settings=settings, **collections)
