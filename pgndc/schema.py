"""
Assembly of the connector schema from a catalog snapshot.

The resolution runs as a single synchronous pass of pure stages::

    classify types -> normalize relations -> resolve constraints,
    aggregates and comparison operators -> assemble

No stage modifies the output of another, and nothing here touches the
database: reading the snapshot is the job of
:func:`pgndc.introspection.introspection.make_introspection_query`.
"""

from asyncpg import Connection

from pgndc.configuration import ConnectorConfiguration, IntrospectionOptions
from pgndc.introspection.introspection import CatalogSnapshot, make_introspection_query
from pgndc.logging_config import get_logger, log_performance
from pgndc.metadata import AggregateFunction, ForeignRelation, Metadata, TableInfo
from pgndc.resolution.aggregates import ResolvedAggregate, resolve_aggregate_functions
from pgndc.resolution.comparisons import resolve_comparison_operators
from pgndc.resolution.constraints import (
    ForeignKeyConstraint,
    UniquenessConstraint,
    resolve_foreign_keys,
    resolve_uniqueness_constraints,
)
from pgndc.resolution.relations import NormalizedRelation, normalize_relations
from pgndc.resolution.types import classify_types, resolve_implicit_casts

logger = get_logger(__name__)


def exposed_table_name(relation: NormalizedRelation, unqualified_schemas: set[str]) -> str:
    if relation.schema_name in unqualified_schemas:
        return relation.name
    return f"{relation.schema_name}_{relation.name}"


def assemble_tables(
        relations: dict[int, NormalizedRelation],
        uniqueness_constraints: list[UniquenessConstraint],
        foreign_keys: list[ForeignKeyConstraint],
        unqualified_schemas: set[str],
) -> dict[str, TableInfo]:
    """
    Tables keyed by their exposed name.

    Exposed names are not deduplicated: when two relations map to the same
    name the first by (name, schema) is kept and the collision is logged.
    """
    uniqueness_by_relation: dict[int, dict[str, list[str]]] = {}
    for con in uniqueness_constraints:
        uniqueness_by_relation.setdefault(con.relation_id, {})[con.name] = list(con.columns)

    foreign_by_relation: dict[int, dict[str, ForeignRelation]] = {}
    for fk in foreign_keys:
        foreign_by_relation.setdefault(fk.relation_id, {})[fk.name] = ForeignRelation(
            foreign_schema=fk.referenced_schema_name,
            foreign_table=fk.referenced_table_name,
            column_mapping=dict(zip(fk.columns, fk.referenced_columns)),
        )

    tables: dict[str, TableInfo] = {}
    for relation in sorted(relations.values(), key=lambda r: (r.name, r.schema_name)):
        table_name = exposed_table_name(relation, unqualified_schemas)
        if table_name in tables:
            logger.warning(
                "Table %s.%s is exposed as %s, which is already taken by %s.%s; it is left out",
                relation.schema_name,
                relation.name,
                table_name,
                tables[table_name].schema_name,
                tables[table_name].table_name,
            )
            continue

        tables[table_name] = TableInfo(
            schema_name=relation.schema_name,
            table_name=relation.name,
            description=relation.description,
            columns={column.name: column.info for column in sorted(relation.columns, key=lambda c: c.name)},
            uniqueness_constraints=dict(sorted(uniqueness_by_relation.get(relation.relation_id, {}).items())),
            foreign_relations=dict(sorted(foreign_by_relation.get(relation.relation_id, {}).items())),
        )

    return dict(sorted(tables.items()))


def assemble_aggregate_functions(
        aggregates: list[ResolvedAggregate],
) -> dict[str, dict[str, AggregateFunction]]:
    functions: dict[str, dict[str, AggregateFunction]] = {}
    for agg in sorted(aggregates, key=lambda a: (a.argument_type, a.name)):
        functions.setdefault(agg.argument_type, {})[agg.name] = AggregateFunction(return_type=agg.return_type)
    return functions


@log_performance(logger, "schema assembly")
def build_schema(snapshot: CatalogSnapshot, options: IntrospectionOptions | None = None) -> Metadata:
    """Derive the connector schema from a consistent catalog snapshot."""
    options = options or IntrospectionOptions()

    classification = classify_types(snapshot.types)
    relations = normalize_relations(snapshot, classification, options.excluded_schemas)
    uniqueness_constraints = resolve_uniqueness_constraints(snapshot.constraints, relations)
    foreign_keys = resolve_foreign_keys(snapshot, relations, options.excluded_schemas)
    aggregates = resolve_aggregate_functions(snapshot, classification)
    casts = resolve_implicit_casts(snapshot.casts, classification)
    comparison_functions = resolve_comparison_operators(
        snapshot,
        classification,
        casts,
        options.comparison_operator_mapping,
        options.introspect_prefix_function_comparison_operators,
    )

    metadata = Metadata(
        tables=assemble_tables(
            relations, uniqueness_constraints, foreign_keys, set(options.unqualified_schemas)
        ),
        aggregate_functions=assemble_aggregate_functions(aggregates),
        comparison_functions=comparison_functions,
    )
    logger.info(
        "Introspected %d tables, %d aggregate argument types, %d comparison argument types",
        len(metadata.tables),
        len(metadata.aggregate_functions),
        len(metadata.comparison_functions),
    )
    return metadata


async def introspect(conn: Connection, configuration: ConnectorConfiguration) -> ConnectorConfiguration:
    """Refresh the metadata of a configuration from the connected database."""
    snapshot = await make_introspection_query(conn)
    metadata = build_schema(snapshot, configuration.configure_options)
    return configuration.model_copy(update={"metadata": metadata})
