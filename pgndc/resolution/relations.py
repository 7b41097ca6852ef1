from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from pgndc.introspection.introspection import CatalogSnapshot
from pgndc.introspection.tables import PgAttribute, PgClass
from pgndc.logging_config import get_logger
from pgndc.metadata import ColumnInfo, HasDefault, IsGenerated, IsIdentity
from pgndc.resolution.types import TypeClassification

logger = get_logger(__name__)

# Relations that can be queried. Indexes, sequences, TOAST tables, composite
# types and partitioned indexes are not.
QUERYABLE_RELATION_KINDS = (
    "r",  # ordinary table
    "v",  # view
    "m",  # materialized view
    "f",  # foreign table
    "p",  # partitioned table
)

_IDENTITY_KINDS = {
    "a": IsIdentity.IDENTITY_ALWAYS,
    "d": IsIdentity.IDENTITY_BY_DEFAULT,
}

_GENERATED_KINDS = {
    "s": IsGenerated.STORED,
}


class NormalizedColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    info: ColumnInfo

    @property
    def name(self) -> str:
        return self.info.name


class NormalizedRelation(BaseModel):
    """A queryable relation whose columns all have a supported type."""

    model_config = ConfigDict(frozen=True)

    relation_id: int
    schema_id: int
    schema_name: str
    name: str
    kind: str
    description: Optional[str] = None
    columns: tuple[NormalizedColumn, ...]

    def column_name(self, number: int) -> Optional[str]:
        return next((c.name for c in self.columns if c.number == number), None)

    def column_names(self, numbers: Iterable[int]) -> Optional[list[str]]:
        """Map column ordinals to names, or None if any ordinal is unknown."""
        names = []
        for number in numbers:
            name = self.column_name(number)
            if name is None:
                return None
            names.append(name)
        return names


def select_queryable_relations(
        classes: Iterable[PgClass], schema_ids: Iterable[int]
) -> list[PgClass]:
    """
    One queryable relation per distinct name.

    Relations in namespaces outside ``schema_ids`` are not considered. When
    several relations share a name, the first by (name, namespace id, kind)
    wins. This choice is arbitrary across namespaces but deterministic.
    """
    schema_ids = set(schema_ids)
    candidates = sorted(
        (
            cls
            for cls in classes
            if cls.relkind in QUERYABLE_RELATION_KINDS and cls.relnamespace in schema_ids
        ),
        key=lambda cls: (cls.relname, cls.relnamespace, cls.relkind),
    )

    selected: dict[str, PgClass] = {}
    for cls in candidates:
        if cls.relname in selected:
            logger.debug(
                "Relation name %s is ambiguous, ignoring the one in namespace %s",
                cls.relname,
                cls.relnamespace,
            )
            continue
        selected[cls.relname] = cls
    return list(selected.values())


def is_live_column(attr: PgAttribute) -> bool:
    # Dropped columns linger in the catalog; attnum <= 0 are system columns.
    return not attr.attisdropped and attr.attnum > 0


def normalize_column(
        snapshot: CatalogSnapshot, classification: TypeClassification, attr: PgAttribute
) -> Optional[NormalizedColumn]:
    column_type = classification.column_type(attr.atttypid)
    if column_type is None:
        return None

    return NormalizedColumn(
        number=attr.attnum,
        info=ColumnInfo(
            name=attr.attname,
            type=column_type,
            nullable=not attr.attnotnull,
            has_default=HasDefault.HAS_DEFAULT if attr.atthasdef else HasDefault.NO_DEFAULT,
            is_identity=_IDENTITY_KINDS.get(attr.attidentity, IsIdentity.NOT_IDENTITY),
            is_generated=_GENERATED_KINDS.get(attr.attgenerated, IsGenerated.NOT_GENERATED),
            description=attr.get_description(snapshot),
        ),
    )


def normalize_relations(
        snapshot: CatalogSnapshot,
        classification: TypeClassification,
        excluded_schemas: Iterable[str] = (),
) -> dict[int, NormalizedRelation]:
    """
    Normalize the queryable relations of a snapshot, keyed by relation oid.

    A relation is left out entirely when any of its live columns has a type
    that is neither scalar nor array, or when it has no live columns at all.
    """
    excluded_schemas = set(excluded_schemas)
    # Excluded schemas are removed before the duplicate-name tie-break, so a
    # relation in an excluded schema never shadows one in an exposed schema.
    schema_names = {
        ns.oid: ns.nspname for ns in snapshot.namespaces if ns.nspname not in excluded_schemas
    }

    relations: dict[int, NormalizedRelation] = {}
    for cls in select_queryable_relations(snapshot.classes, schema_names):
        columns = []
        unsupported = None
        for attr in cls.get_attributes(snapshot):
            if not is_live_column(attr):
                continue
            column = normalize_column(snapshot, classification, attr)
            if column is None:
                unsupported = attr
                break
            columns.append(column)

        if unsupported is not None:
            logger.debug(
                "Skipping relation %s: column %s has unsupported type %s",
                cls.relname,
                unsupported.attname,
                unsupported.atttypid,
            )
            continue
        if not columns:
            logger.debug("Skipping relation %s: no columns", cls.relname)
            continue

        relations[cls.oid] = NormalizedRelation(
            relation_id=cls.oid,
            schema_id=cls.relnamespace,
            schema_name=schema_names[cls.relnamespace],
            name=cls.relname,
            kind=cls.relkind,
            description=cls.get_description(snapshot),
            columns=tuple(columns),
        )

    logger.debug("Normalized %d relations", len(relations))
    return relations
