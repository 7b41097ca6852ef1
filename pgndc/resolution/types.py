"""
Classification of catalog types into scalar and array types, and resolution
of the implicit casts between scalar types.
"""

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from pgndc.introspection.tables import PgCast, PgType
from pgndc.logging_config import get_logger
from pgndc.metadata import ArrayColumnType, ColumnType, ScalarColumnType

logger = get_logger(__name__)

# Composite (record) and pseudo (polymorphic) types cannot be exposed.
EXCLUDED_TYPE_KINDS = frozenset({"c", "p"})

ARRAY_CATEGORY = "A"
IMPLICIT_CAST_CONTEXT = "i"

# Types that are (primarily) for internal postgres use.
EXCLUDED_TYPE_NAMES = frozenset(
    {
        "aclitem",
        "cid",
        "gidx",
        "name",
        "oid",
        "pg_dependencies",
        "pg_lsn",
        "pg_mcv_list",
        "pg_ndistinct",
        "pg_node_tree",
        "regclass",
        "regcollation",
        "regconfig",
        "regdictionary",
        "regnamespace",
        "regoper",
        "regoperator",
        "regproc",
        "regprocedure",
        "regrole",
        "regtype",
        "tid",
        "xid",
        "xid8",
    }
)

# Implicit casts that are unlikely to ever be relevant for comparisons.
EXCLUDED_CAST_PAIRS = frozenset(
    {
        ("bytea", "geography"),
        ("bytea", "geometry"),
        ("geography", "bytea"),
        ("geometry", "bytea"),
        ("geometry", "text"),
        ("text", "geometry"),
    }
)


class ScalarType(BaseModel):
    model_config = ConfigDict(frozen=True)

    type_id: int
    schema_id: int
    name: str


class ArrayType(BaseModel):
    model_config = ConfigDict(frozen=True)

    type_id: int
    schema_id: int
    element_type_name: str


class ImplicitCast(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_type: str
    to_type: str


class TypeClassification(BaseModel):
    """Disjoint scalar and array types, keyed by type oid."""

    model_config = ConfigDict(frozen=True)

    scalar_types: dict[int, ScalarType] = {}
    array_types: dict[int, ArrayType] = {}

    def scalar_type_name(self, type_id: int) -> Optional[str]:
        scalar = self.scalar_types.get(type_id)
        return scalar.name if scalar is not None else None

    def column_type(self, type_id: int) -> Optional[ColumnType]:
        """The exposed type of a column of the given type, or None when unsupported."""
        scalar = self.scalar_types.get(type_id)
        if scalar is not None:
            return ScalarColumnType(scalar_type=scalar.name)
        array = self.array_types.get(type_id)
        if array is not None:
            return ArrayColumnType(array_type=ScalarColumnType(scalar_type=array.element_type_name))
        return None


def is_array_type(typ: PgType) -> bool:
    # A 'true array type': subscriptable and categorized as an array by the parser.
    return typ.typelem != 0 and typ.typcategory == ARRAY_CATEGORY


def _is_structurally_scalar(typ: PgType) -> bool:
    return typ.typtype not in EXCLUDED_TYPE_KINDS and not is_array_type(typ)


def classify_types(
        types: Iterable[PgType],
        excluded_type_names: Iterable[str] = EXCLUDED_TYPE_NAMES,
) -> TypeClassification:
    """
    Partition catalog types into scalar types and array types.

    The name denylist only restricts the scalar set. An array type is kept when
    it is not itself composite or pseudo and its element type is structurally
    scalar (the element is not tested against the denylist). Anything else is
    in neither set.
    """
    excluded_type_names = frozenset(excluded_type_names)
    types_by_oid = {typ.oid: typ for typ in types}

    scalar_types: dict[int, ScalarType] = {}
    array_types: dict[int, ArrayType] = {}

    for typ in types_by_oid.values():
        if typ.typtype in EXCLUDED_TYPE_KINDS:
            continue

        if is_array_type(typ):
            element = types_by_oid.get(typ.typelem)
            if element is None or not _is_structurally_scalar(element):
                logger.debug("Type %s has no scalar element type, skipping", typ.typname)
                continue
            array_types[typ.oid] = ArrayType(
                type_id=typ.oid, schema_id=typ.typnamespace, element_type_name=element.typname
            )
        elif typ.typname not in excluded_type_names:
            scalar_types[typ.oid] = ScalarType(
                type_id=typ.oid, schema_id=typ.typnamespace, name=typ.typname
            )

    logger.debug(
        "Classified %d scalar and %d array types out of %d",
        len(scalar_types),
        len(array_types),
        len(types_by_oid),
    )
    return TypeClassification(scalar_types=scalar_types, array_types=array_types)


def resolve_implicit_casts(
        casts: Iterable[PgCast],
        classification: TypeClassification,
        excluded_cast_pairs: Iterable[tuple[str, str]] = EXCLUDED_CAST_PAIRS,
) -> list[ImplicitCast]:
    """
    Implicit casts between scalar types, ordered by (from type, to type).

    Self-casts and the excluded pairs are dropped.
    """
    excluded_cast_pairs = frozenset(excluded_cast_pairs)
    implicit_casts: set[ImplicitCast] = set()

    for cast in casts:
        if cast.castcontext != IMPLICIT_CAST_CONTEXT:
            continue
        from_type = classification.scalar_type_name(cast.castsource)
        to_type = classification.scalar_type_name(cast.casttarget)
        if from_type is None or to_type is None or from_type == to_type:
            continue
        if (from_type, to_type) in excluded_cast_pairs:
            continue
        implicit_casts.add(ImplicitCast(from_type=from_type, to_type=to_type))

    return sorted(implicit_casts, key=lambda c: (c.from_type, c.to_type))
