"""
Resolution of the comparison operators usable in filter expressions.

Comparison operators come from two sources: infix operators returning
``bool``, and allow-listed two-argument functions returning ``bool`` that are
used as prefix operators. Some types only get comparisons through implicit
casts (postgres defines ``like`` on ``text`` but not on ``varchar``), so every
operator is extended with the types that implicitly cast to its arguments.

The exposed schema is keyed by the type of the first argument, since that is
the type of the column a filter compares. Each (operator, first argument
type) must therefore resolve to exactly one definition, which
:func:`variant_preference` picks.
"""

from collections import defaultdict
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from pgndc.configuration import OperatorMapping
from pgndc.introspection.introspection import CatalogSnapshot
from pgndc.logging_config import get_logger
from pgndc.metadata import ComparisonFunction
from pgndc.resolution.types import ImplicitCast, TypeClassification

logger = get_logger(__name__)

BOOLEAN_TYPE_NAME = "bool"


class ComparisonOperator(BaseModel):
    """A variant of a comparison operator, possibly widened by implicit casts.

    ``declared_argument1_type`` and ``declared_argument2_type`` are the
    argument types of the catalog definition the variant was derived from.
    """

    model_config = ConfigDict(frozen=True)

    operator_name: str
    argument1_type: str
    argument2_type: str
    is_infix: bool
    argument1_casted: bool = False
    argument2_casted: bool = False
    declared_argument1_type: str
    declared_argument2_type: str

    @classmethod
    def declared(
            cls, operator_name: str, argument1_type: str, argument2_type: str, is_infix: bool
    ) -> "ComparisonOperator":
        return cls(
            operator_name=operator_name,
            argument1_type=argument1_type,
            argument2_type=argument2_type,
            is_infix=is_infix,
            declared_argument1_type=argument1_type,
            declared_argument2_type=argument2_type,
        )

    @property
    def is_casted(self) -> bool:
        return self.argument1_casted or self.argument2_casted


def collect_infix_operators(
        snapshot: CatalogSnapshot, classification: TypeClassification
) -> set[ComparisonOperator]:
    """Binary operators over scalar types whose result is boolean."""
    operators = set()
    for op in snapshot.operators:
        left = classification.scalar_type_name(op.oprleft)
        right = classification.scalar_type_name(op.oprright)
        result = classification.scalar_type_name(op.oprresult)
        if left is None or right is None or result != BOOLEAN_TYPE_NAME:
            continue
        operators.add(ComparisonOperator.declared(op.oprname, left, right, is_infix=True))
    return operators


def collect_prefix_functions(
        snapshot: CatalogSnapshot,
        classification: TypeClassification,
        allowed_functions: Iterable[str],
) -> set[ComparisonOperator]:
    """
    Allow-listed functions usable as prefix comparison operators.

    Only plain functions taking exactly two scalar arguments, without variadic
    or defaulted arguments, and returning boolean qualify.
    """
    allowed_functions = set(allowed_functions)
    operators = set()
    for proc in snapshot.procs:
        if proc.proname not in allowed_functions:
            continue
        if proc.prokind != "f" or proc.provariadic != 0 or proc.pronargdefaults != 0:
            continue
        if len(proc.proargtypes) != 2:
            continue
        if classification.scalar_type_name(proc.prorettype) != BOOLEAN_TYPE_NAME:
            continue

        argument1 = classification.scalar_type_name(proc.proargtypes[0])
        argument2 = classification.scalar_type_name(proc.proargtypes[1])
        if argument1 is None or argument2 is None:
            continue
        operators.add(ComparisonOperator.declared(proc.proname, argument1, argument2, is_infix=False))
    return operators


def extend_by_implicit_casts(
        operators: Iterable[ComparisonOperator], casts: Iterable[ImplicitCast]
) -> set[ComparisonOperator]:
    """
    Extend operators with the types that implicitly cast to their arguments.

    Each operator yields itself and, for every type S with an implicit cast to
    one of its arguments, the variant taking S in that position; both
    positions together as well. Only direct casts are applied, and an
    argument that was already substituted is not substituted again, so
    extending an extended set adds nothing.
    """
    sources_by_target: dict[str, list[str]] = defaultdict(list)
    for cast in casts:
        sources_by_target[cast.to_type].append(cast.from_type)

    extended = set()
    for op in operators:
        extended.add(op)

        argument1_sources = [] if op.argument1_casted else sources_by_target.get(op.argument1_type, [])
        argument2_sources = [] if op.argument2_casted else sources_by_target.get(op.argument2_type, [])

        for source1 in argument1_sources:
            extended.add(op.model_copy(update={"argument1_type": source1, "argument1_casted": True}))
        for source2 in argument2_sources:
            extended.add(op.model_copy(update={"argument2_type": source2, "argument2_casted": True}))
        for source1 in argument1_sources:
            for source2 in argument2_sources:
                extended.add(
                    op.model_copy(
                        update={
                            "argument1_type": source1,
                            "argument1_casted": True,
                            "argument2_type": source2,
                            "argument2_casted": True,
                        }
                    )
                )
    return extended


def variant_preference(op: ComparisonOperator) -> tuple:
    """
    Sort key ranking the variants sharing an (operator, first argument type).

    Smaller is preferred:

    1. directly defined variants on a single type,
    2. directly defined variants,
    3. variants whose first argument was not cast, or whose second argument
       is the type the first argument was declared with,
    4. variants whose second argument was not cast,
    5. the second argument type, lexically.

    The remaining keys only make the order total.
    """
    direct = not op.is_casted
    return (
        not (direct and op.argument1_type == op.argument2_type),
        not direct,
        # Declared, not substituted: int2 = int4 keeps int4 as its second argument.
        not ((not op.argument1_casted) or op.argument2_type == op.declared_argument1_type),
        op.argument2_casted,
        op.argument2_type,
        not op.is_infix,
        op.declared_argument1_type,
        op.declared_argument2_type,
    )


def select_preferred_variants(
        variants: Iterable[ComparisonOperator],
) -> dict[tuple[str, str], ComparisonOperator]:
    """The single preferred variant per (operator name, first argument type)."""
    preferred: dict[tuple[str, str], ComparisonOperator] = {}
    for op in variants:
        key = (op.operator_name, op.argument1_type)
        current = preferred.get(key)
        if current is None or variant_preference(op) < variant_preference(current):
            preferred[key] = op
    return preferred


def expose_comparison_operators(
        preferred: dict[tuple[str, str], ComparisonOperator],
        operator_mappings: Iterable[OperatorMapping],
) -> dict[str, dict[str, ComparisonFunction]]:
    """
    Group the preferred variants by first argument type and exposed name.

    Infix operators are exposed under their mapped names and dropped when
    unmapped. Prefix functions keep their catalog name. When two operators
    claim the same exposed name for a type, the one whose mapping comes first
    wins, and infix operators win over prefix functions.
    """
    infix_by_name: dict[str, list[ComparisonOperator]] = defaultdict(list)
    prefix = []
    for _, op in sorted(preferred.items()):
        if op.is_infix:
            infix_by_name[op.operator_name].append(op)
        else:
            prefix.append(op)

    exposed: dict[str, dict[str, ComparisonFunction]] = defaultdict(dict)

    def expose(exposed_name: str, op: ComparisonOperator) -> None:
        by_name = exposed[op.argument1_type]
        if exposed_name in by_name:
            logger.debug(
                "Exposed name %s for %s is already taken by %s, ignoring %s",
                exposed_name,
                op.argument1_type,
                by_name[exposed_name].operator_name,
                op.operator_name,
            )
            return
        by_name[exposed_name] = ComparisonFunction(
            operator_name=op.operator_name,
            argument_type=op.argument2_type,
            is_infix=op.is_infix,
        )

    mapped_names = set()
    for mapping in operator_mappings:
        mapped_names.add(mapping.operator_name)
        for op in infix_by_name.get(mapping.operator_name, []):
            expose(mapping.exposed_name, op)

    unmapped = sorted(set(infix_by_name) - mapped_names)
    if unmapped:
        logger.debug("Infix operators without an exposed name: %s", ", ".join(unmapped))

    for op in prefix:
        expose(op.operator_name, op)

    return {
        argument1_type: dict(sorted(by_name.items()))
        for argument1_type, by_name in sorted(exposed.items())
    }


def resolve_comparison_operators(
        snapshot: CatalogSnapshot,
        classification: TypeClassification,
        casts: Iterable[ImplicitCast],
        operator_mappings: Iterable[OperatorMapping],
        allowed_prefix_functions: Iterable[str],
) -> dict[str, dict[str, ComparisonFunction]]:
    """Comparison functions by first argument type, then by exposed name."""
    operators = collect_infix_operators(snapshot, classification)
    operators |= collect_prefix_functions(snapshot, classification, allowed_prefix_functions)

    variants = extend_by_implicit_casts(operators, casts)
    preferred = select_preferred_variants(variants)
    logger.debug(
        "Resolved %d comparison operators from %d definitions and %d cast-extended variants",
        len(preferred),
        len(operators),
        len(variants),
    )
    return expose_comparison_operators(preferred, operator_mappings)
