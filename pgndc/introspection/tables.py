from typing import Optional, TYPE_CHECKING

from sqlmodel import Field, SQLModel

if TYPE_CHECKING:
    from pgndc.introspection.introspection import CatalogSnapshot


class PgNamespace(SQLModel):
    oid: int = Field(description="Row identifier")
    nspname: str = Field(description="Name of the namespace")


class PgClass(SQLModel):
    oid: int
    relname: str
    relnamespace: int
    relkind: str = Field(
        description="r = ordinary table, i = index, S = sequence, t = TOAST table, v = view, "
                    "m = materialized view, c = composite type, f = foreign table, "
                    "p = partitioned table, I = partitioned index"
    )

    def get_namespace(self, snapshot: "CatalogSnapshot") -> Optional["PgNamespace"]:
        return snapshot.get_namespace(self.relnamespace)

    def get_attributes(self, snapshot: "CatalogSnapshot") -> list["PgAttribute"]:
        return snapshot.get_attributes(self.oid)

    def get_description(self, snapshot: "CatalogSnapshot") -> Optional[str]:
        return snapshot.get_description(snapshot.PG_CLASS, self.oid, 0)


class PgAttribute(SQLModel):
    attrelid: int
    attname: str
    attnum: int = Field(description="Ordinal position; system columns have attnum <= 0")
    atttypid: int
    attnotnull: bool = False
    atthasdef: bool = False
    attidentity: str = ""
    attgenerated: str = ""
    attisdropped: bool = False

    def get_description(self, snapshot: "CatalogSnapshot") -> Optional[str]:
        return snapshot.get_description(snapshot.PG_CLASS, self.attrelid, self.attnum)


class PgType(SQLModel):
    oid: int
    typname: str
    typnamespace: int
    typtype: str = Field(
        default="b",
        description="b = base, c = composite, d = domain, e = enum, p = pseudo-type, "
                    "r = range, m = multirange",
    )
    typcategory: str = Field(default="U", description="Parser category, A = array")
    typelem: int = Field(default=0, description="Element type when the type is subscriptable")


class PgCast(SQLModel):
    castsource: int
    casttarget: int
    castcontext: str = Field(description="e = explicit only, a = assignment, i = implicit")


class PgProc(SQLModel):
    oid: int
    proname: str
    pronamespace: int
    prokind: str = Field(default="f", description="f = function, p = procedure, a = aggregate, w = window")
    prorettype: int
    proargtypes: list[int] = Field(default_factory=list)
    provariadic: int = 0
    pronargdefaults: int = 0


class PgOperator(SQLModel):
    oid: int
    oprname: str
    oprleft: int
    oprright: int
    oprresult: int


class PgAggregate(SQLModel):
    aggfnoid: int
    aggnumdirectargs: int = 0


class PgConstraint(SQLModel):
    oid: int
    conname: str
    contype: str = Field(description="c = check, f = foreign key, p = primary key, u = unique, "
                                     "t = constraint trigger, x = exclusion")
    conrelid: int
    confrelid: int = 0
    conkey: Optional[list[int]] = None
    confkey: Optional[list[int]] = None

    def get_foreign_class(self, snapshot: "CatalogSnapshot") -> Optional["PgClass"]:
        return snapshot.get_class(self.confrelid)


class PgDescription(SQLModel):
    objoid: int
    classoid: int
    objsubid: int = 0
    description: str
