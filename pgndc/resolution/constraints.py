from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from pgndc.introspection.introspection import CatalogSnapshot
from pgndc.introspection.tables import PgClass, PgConstraint
from pgndc.logging_config import get_logger
from pgndc.resolution.relations import NormalizedRelation, is_live_column

logger = get_logger(__name__)

UNIQUENESS_CONSTRAINT_KINDS = ("u", "p")
FOREIGN_KEY_CONSTRAINT_KIND = "f"


class UniquenessConstraint(BaseModel):
    model_config = ConfigDict(frozen=True)

    relation_id: int
    name: str
    columns: tuple[str, ...]


class ForeignKeyConstraint(BaseModel):
    model_config = ConfigDict(frozen=True)

    relation_id: int
    name: str
    columns: tuple[str, ...]
    referenced_relation_id: int
    referenced_schema_name: str
    referenced_table_name: str
    referenced_columns: tuple[str, ...]


def resolve_uniqueness_constraints(
        constraints: Iterable[PgConstraint],
        relations: dict[int, NormalizedRelation],
) -> list[UniquenessConstraint]:
    """Primary keys and unique constraints of the normalized relations."""
    resolved = []
    for con in sorted(constraints, key=lambda c: (c.conrelid, c.conname)):
        if con.contype not in UNIQUENESS_CONSTRAINT_KINDS:
            continue
        relation = relations.get(con.conrelid)
        if relation is None or not con.conkey:
            continue

        columns = relation.column_names(con.conkey)
        if columns is None:
            logger.debug("Skipping constraint %s: unknown key columns %s", con.conname, con.conkey)
            continue

        resolved.append(
            UniquenessConstraint(relation_id=relation.relation_id, name=con.conname, columns=tuple(columns))
        )
    return resolved


def referenced_column_names(
        snapshot: CatalogSnapshot, referenced: PgClass, numbers: Iterable[int]
) -> Optional[list[str]]:
    """Map ordinals of the referenced relation's live columns to names, or None."""
    names_by_number = {
        attr.attnum: attr.attname
        for attr in referenced.get_attributes(snapshot)
        if is_live_column(attr)
    }
    names = [names_by_number.get(number) for number in numbers]
    if None in names:
        return None
    return names


def resolve_foreign_keys(
        snapshot: CatalogSnapshot,
        relations: dict[int, NormalizedRelation],
        excluded_schemas: Iterable[str] = (),
) -> list[ForeignKeyConstraint]:
    """
    Foreign keys of the normalized relations.

    Key columns are mapped positionally, so ``columns[i]`` references
    ``referenced_columns[i]``. The referenced relation only has to be a known
    relation outside the excluded schemas: it is looked up in the snapshot,
    and may itself be left out of the schema (an unsupported column type, a
    lost name tie-break). A foreign key is left out when any of its column
    ordinals cannot be mapped.
    """
    excluded_schemas = set(excluded_schemas)
    resolved = []
    for con in sorted(snapshot.constraints, key=lambda c: (c.conrelid, c.conname)):
        if con.contype != FOREIGN_KEY_CONSTRAINT_KIND:
            continue
        relation = relations.get(con.conrelid)
        if relation is None:
            continue

        referenced = con.get_foreign_class(snapshot)
        namespace = referenced.get_namespace(snapshot) if referenced is not None else None
        if namespace is None or namespace.nspname in excluded_schemas:
            logger.debug(
                "Skipping foreign key %s on %s: referenced relation %s is not known",
                con.conname,
                relation.name,
                con.confrelid,
            )
            continue

        columns = relation.column_names(con.conkey or [])
        referenced_columns = referenced_column_names(snapshot, referenced, con.confkey or [])
        if not columns or not referenced_columns or len(columns) != len(referenced_columns):
            logger.debug("Skipping foreign key %s on %s: unresolvable columns", con.conname, relation.name)
            continue

        resolved.append(
            ForeignKeyConstraint(
                relation_id=relation.relation_id,
                name=con.conname,
                columns=tuple(columns),
                referenced_relation_id=referenced.oid,
                referenced_schema_name=namespace.nspname,
                referenced_table_name=referenced.relname,
                referenced_columns=tuple(referenced_columns),
            )
        )
    return resolved
