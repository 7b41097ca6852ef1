from pydantic import BaseModel, ConfigDict

from pgndc.introspection.introspection import CatalogSnapshot
from pgndc.logging_config import get_logger
from pgndc.resolution.types import TypeClassification

logger = get_logger(__name__)


class ResolvedAggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    proc_id: int
    name: str
    schema_id: int
    argument_type: str
    return_type: str


def resolve_aggregate_functions(
        snapshot: CatalogSnapshot, classification: TypeClassification
) -> list[ResolvedAggregate]:
    """
    Single-argument aggregate functions over scalar types.

    Only aggregates without direct (non-aggregated) arguments qualify. At most
    one function is kept per (argument type, name), the first ordered by
    (argument type, name, return type).
    """
    candidates = []
    for proc in snapshot.procs:
        aggregate = snapshot.get_aggregate(proc.oid)
        if aggregate is None or aggregate.aggnumdirectargs != 0:
            continue
        if len(proc.proargtypes) != 1:
            continue

        argument_type = classification.scalar_type_name(proc.proargtypes[0])
        return_type = classification.scalar_type_name(proc.prorettype)
        if argument_type is None or return_type is None:
            continue

        candidates.append(
            ResolvedAggregate(
                proc_id=proc.oid,
                name=proc.proname,
                schema_id=proc.pronamespace,
                argument_type=argument_type,
                return_type=return_type,
            )
        )

    candidates.sort(key=lambda agg: (agg.argument_type, agg.name, agg.return_type))

    resolved: dict[tuple[str, str], ResolvedAggregate] = {}
    for agg in candidates:
        key = (agg.argument_type, agg.name)
        if key in resolved:
            logger.debug(
                "Ignoring aggregate %s(%s) returning %s, already resolved to %s",
                agg.name,
                agg.argument_type,
                agg.return_type,
                resolved[key].return_type,
            )
            continue
        resolved[key] = agg

    logger.debug("Resolved %d aggregate functions", len(resolved))
    return list(resolved.values())
