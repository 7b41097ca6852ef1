from typing import Optional

from asyncpg import Connection
from pydantic import BaseModel, PrivateAttr

from pgndc.introspection.tables import (
    PgNamespace,
    PgClass,
    PgAttribute,
    PgType,
    PgCast,
    PgProc,
    PgOperator,
    PgAggregate,
    PgConstraint,
    PgDescription,
)
from pgndc.logging_config import get_logger, log_performance

logger = get_logger(__name__)


class CatalogSnapshot(BaseModel):
    """
    A point-in-time read of every catalog collection the schema resolution needs.

    All collections must come from one consistent view of the catalog (see
    :func:`make_introspection_query`). Resolution assumes referential
    consistency between them and does not check it: a snapshot assembled from
    several independent reads gives undefined results.
    """

    namespaces: list["PgNamespace"] = []
    classes: list["PgClass"] = []
    attributes: list["PgAttribute"] = []
    types: list["PgType"] = []
    casts: list["PgCast"] = []
    procs: list["PgProc"] = []
    operators: list["PgOperator"] = []
    aggregates: list["PgAggregate"] = []
    constraints: list["PgConstraint"] = []
    descriptions: list["PgDescription"] = []

    catalog_by_oid: dict[int, str]
    PG_CLASS: int | None = None

    _namespaces_by_oid: dict[int, PgNamespace] = PrivateAttr(default_factory=dict)
    _classes_by_oid: dict[int, PgClass] = PrivateAttr(default_factory=dict)
    _aggregates_by_oid: dict[int, PgAggregate] = PrivateAttr(default_factory=dict)
    _attributes_by_class: dict[int, list[PgAttribute]] = PrivateAttr(default_factory=dict)
    _descriptions: dict[tuple[int, int, int], str] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context):
        """Resolve the system catalog ids and index the collections by oid."""
        self.PG_CLASS = next(
            (oid for oid, catalog in self.catalog_by_oid.items() if catalog == "pg_class"),
            None,
        )
        if self.PG_CLASS is None:
            raise ValueError(
                "Invalid introspection results; could not determine the ids of the system catalogs"
            )

        self._namespaces_by_oid = {ns.oid: ns for ns in self.namespaces}
        self._classes_by_oid = {cls.oid: cls for cls in self.classes}
        self._aggregates_by_oid = {agg.aggfnoid: agg for agg in self.aggregates}

        attributes_by_class: dict[int, list[PgAttribute]] = {}
        for attr in self.attributes:
            attributes_by_class.setdefault(attr.attrelid, []).append(attr)
        self._attributes_by_class = {
            relid: sorted(attrs, key=lambda a: a.attnum)
            for relid, attrs in attributes_by_class.items()
        }

        self._descriptions = {
            (d.classoid, d.objoid, d.objsubid): d.description for d in self.descriptions
        }

    def get_namespace(self, id: int | None) -> "PgNamespace | None":
        return self._namespaces_by_oid.get(id)

    def get_class(self, id: int | None) -> "PgClass | None":
        return self._classes_by_oid.get(id)

    def get_aggregate(self, id: int | None) -> "PgAggregate | None":
        """Get the aggregate binding of a procedure, if it is an aggregate."""
        return self._aggregates_by_oid.get(id)

    def get_attributes(self, id: int | None) -> list["PgAttribute"]:
        """Get the attributes of a relation ordered by their ordinal position."""
        return list(self._attributes_by_class.get(id, []))

    def get_description(
            self, classoid: int | None, objoid: int, objsubid: int = 0
    ) -> Optional[str]:
        return self._descriptions.get((classoid, objoid, objsubid))


INTROSPECTION_QUERY = """
with namespaces as (select ns.oid,
                           ns.nspname
                    from pg_catalog.pg_namespace as ns),

     classes as (select cl.oid,
                        cl.relname,
                        cl.relnamespace,
                        cl.relkind
                 from pg_catalog.pg_class as cl),

     attributes as (select att.attrelid,
                           att.attname,
                           att.attnum,
                           att.atttypid,
                           att.attnotnull,
                           att.atthasdef,
                           att.attidentity,
                           att.attgenerated,
                           att.attisdropped
                    from pg_catalog.pg_attribute as att
                    where att.attrelid in (select classes.oid
                                           from classes
                                           where classes.relkind in ('r', 'v', 'm', 'f', 'p'))),

     types as (select t.oid,
                      t.typname,
                      t.typnamespace,
                      t.typtype,
                      t.typcategory,
                      t.typelem
               from pg_catalog.pg_type as t),

     casts as (select c.castsource,
                      c.casttarget,
                      c.castcontext
               from pg_catalog.pg_cast as c),

     procs as (select p.oid,
                      p.proname,
                      p.pronamespace,
                      p.prokind,
                      p.prorettype,
                      p.proargtypes::oid[] as proargtypes,
                      p.provariadic,
                      p.pronargdefaults
               from pg_catalog.pg_proc as p),

     operators as (select o.oid,
                          o.oprname,
                          o.oprleft,
                          o.oprright,
                          o.oprresult
                   from pg_catalog.pg_operator as o),

     aggregates as (select a.aggfnoid::oid as aggfnoid,
                           a.aggnumdirectargs
                    from pg_catalog.pg_aggregate as a),

     constraints as (select c.oid,
                            c.conname,
                            c.contype,
                            c.conrelid,
                            c.confrelid,
                            c.conkey,
                            c.confkey
                     from pg_catalog.pg_constraint as c
                     where c.contype in ('p', 'u', 'f')),

     descriptions as (select d.objoid,
                             d.classoid,
                             d.objsubid,
                             d.description
                      from pg_catalog.pg_description as d
                      where d.classoid = 'pg_catalog.pg_class'::regclass)

select json_build_object(
               'namespaces',
               (select coalesce((select json_agg(row_to_json(namespaces) order by nspname) from namespaces),
                                '[]'::json)),
               'classes',
               (select coalesce((select json_agg(row_to_json(classes) order by relnamespace, relname) from classes),
                                '[]'::json)),
               'attributes',
               (select coalesce((select json_agg(row_to_json(attributes) order by attrelid, attnum) from attributes),
                                '[]'::json)),
               'types',
               (select coalesce((select json_agg(row_to_json(types) order by typnamespace, typname) from types),
                                '[]'::json)),
               'casts',
               (select coalesce((select json_agg(row_to_json(casts) order by castsource, casttarget) from casts),
                                '[]'::json)),
               'procs',
               (select coalesce((select json_agg(row_to_json(procs) order by pronamespace, proname, oid) from procs),
                                '[]'::json)),
               'operators',
               (select coalesce((select json_agg(row_to_json(operators) order by oprname, oid) from operators),
                                '[]'::json)),
               'aggregates',
               (select coalesce((select json_agg(row_to_json(aggregates) order by aggfnoid) from aggregates),
                                '[]'::json)),
               'constraints',
               (select coalesce((select json_agg(row_to_json(constraints) order by conrelid, conname)
                                 from constraints), '[]'::json)),
               'descriptions',
               (select coalesce((select json_agg(row_to_json(descriptions) order by objoid, classoid, objsubid)
                                 from descriptions), '[]'::json)),
               'catalog_by_oid',
               (select json_object_agg(oid::text, relname order by relname asc)
                from pg_catalog.pg_class
                where relnamespace = 'pg_catalog'::regnamespace
                  and relkind = 'r')
       )::text as introspection
"""


@log_performance(logger, "catalog introspection")
async def make_introspection_query(conn: Connection) -> CatalogSnapshot:
    """
    Read a :class:`CatalogSnapshot` from the connected database.

    Every collection is read by a single statement inside a read-only,
    repeatable-read transaction, so the snapshot is internally consistent.
    Driver errors propagate unchanged.
    """
    async with conn.transaction(isolation="repeatable_read", readonly=True):
        result = await conn.fetchval(INTROSPECTION_QUERY)

    if not result:
        raise ValueError("No introspection data found.")

    snapshot = CatalogSnapshot.model_validate_json(result)
    logger.debug(
        "Read catalog snapshot: %d relations, %d types, %d operators, %d procedures",
        len(snapshot.classes),
        len(snapshot.types),
        len(snapshot.operators),
        len(snapshot.procs),
    )
    return snapshot
