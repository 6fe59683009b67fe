"""Declarative table hierarchy for ranch snapshots.

The snapshot engine never hardcodes foreign-key handling per entity kind.
Each table declares its snapshot collection, required fields and foreign
keys; the validator, the identifier remapper and the restore engine all
walk ``RANCH_SCHEMA`` in order (parents before children).

Usage:
    from ranch_snapshot.schema import RANCH_SCHEMA

    for table_def in RANCH_SCHEMA.tables:
        for ref in table_def.refs:
            ...                                 # ref.collection, ref.field
    for table_def in RANCH_SCHEMA.deletion_order():
        ...                                     # children first
"""

from pydantic import BaseModel, Field

from ranch_snapshot.models import (
    AnimalData,
    AnimalPhotoData,
    CustomFieldDefinitionData,
    CustomFieldValueData,
    InjectionData,
    MedicalHistoryData,
    portable_fields,
)


class ForeignKey(BaseModel):
    """Foreign key reference to another snapshot collection."""

    collection: str     # referenced collection
    field: str          # FK column in this table
    optional: bool = False  # nullable FK


class TableDef(BaseModel):
    """Definition of one entity kind for snapshot/restore operations."""

    name: str                                       # table name in the entity store
    collection: str                                 # key in the snapshot document
    pk: str | None = "id"                           # primary key carried in the snapshot
    ranch_field: str = "ranch_id"                   # tenant ownership column
    fields: list[str] = Field(default_factory=list)     # portable columns
    required: list[str] = Field(default_factory=list)   # must be present and non-empty
    refs: list[ForeignKey] = Field(default_factory=list)
    date_fields: list[str] = Field(default_factory=list)


class BackupSchema(BaseModel):
    """Declarative snapshot schema. Tables ordered by dependency (parents first)."""

    tables: list[TableDef]

    def table(self, collection: str) -> TableDef:
        """Find a TableDef by snapshot collection name."""
        for t in self.tables:
            if t.collection == collection:
                return t
        raise KeyError(collection)

    def deletion_order(self) -> list[TableDef]:
        """Tables children-first, for explicit cascading deletes."""
        return list(reversed(self.tables))


RANCH_SCHEMA = BackupSchema(
    tables=[
        TableDef(
            name="custom_field_definitions",
            collection="custom_field_definitions",
            fields=portable_fields(CustomFieldDefinitionData),
            required=["id", "name", "type"],
        ),
        TableDef(
            name="animals",
            collection="animals",
            fields=portable_fields(AnimalData),
            required=["id", "status"],
            refs=[
                ForeignKey(collection="animals", field="mother_id", optional=True),
                ForeignKey(collection="animals", field="father_id", optional=True),
            ],
            date_fields=["birth_date", "exit_date"],
        ),
        TableDef(
            name="medical_history",
            collection="medical_history",
            fields=portable_fields(MedicalHistoryData),
            required=["id", "animal_id", "date", "description"],
            refs=[ForeignKey(collection="animals", field="animal_id")],
            date_fields=["date"],
        ),
        TableDef(
            name="injections",
            collection="injections",
            fields=portable_fields(InjectionData),
            required=["id", "animal_id", "date", "drug"],
            refs=[ForeignKey(collection="animals", field="animal_id")],
            date_fields=["date"],
        ),
        TableDef(
            name="animal_photos",
            collection="photos",
            fields=portable_fields(AnimalPhotoData),
            required=["id", "animal_id", "storage_locator"],
            refs=[ForeignKey(collection="animals", field="animal_id")],
        ),
        TableDef(
            name="custom_field_values",
            collection="custom_field_values",
            pk=None,
            fields=portable_fields(CustomFieldValueData),
            required=["definition_id", "animal_id"],
            refs=[
                ForeignKey(collection="custom_field_definitions", field="definition_id"),
                ForeignKey(collection="animals", field="animal_id"),
            ],
        ),
    ]
)

COLLECTIONS: list[str] = [t.collection for t in RANCH_SCHEMA.tables]
