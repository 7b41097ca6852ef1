"""
The connector schema produced by introspection.

These models are the serialized contract handed to the query-serving layer:
camelCase keys, mappings sorted by key, and empty categories written as empty
objects.
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ScalarColumnType(CamelModel):
    scalar_type: str


class ArrayColumnType(CamelModel):
    array_type: ScalarColumnType


ColumnType = Union[ScalarColumnType, ArrayColumnType]


class HasDefault(str, Enum):
    NO_DEFAULT = "noDefault"
    HAS_DEFAULT = "hasDefault"


class IsIdentity(str, Enum):
    NOT_IDENTITY = "notIdentity"
    IDENTITY_BY_DEFAULT = "identityByDefault"
    IDENTITY_ALWAYS = "identityAlways"


class IsGenerated(str, Enum):
    NOT_GENERATED = "notGenerated"
    STORED = "stored"


class ColumnInfo(CamelModel):
    name: str
    type: ColumnType
    nullable: bool = True
    has_default: HasDefault = HasDefault.NO_DEFAULT
    is_identity: IsIdentity = IsIdentity.NOT_IDENTITY
    is_generated: IsGenerated = IsGenerated.NOT_GENERATED
    description: Optional[str] = None

    @model_serializer(mode="wrap")
    def _omit_default_markers(self, handler):
        # Column markers are only written when they say something.
        data = handler(self)
        for field_name, default in (
                ("has_default", HasDefault.NO_DEFAULT),
                ("is_identity", IsIdentity.NOT_IDENTITY),
                ("is_generated", IsGenerated.NOT_GENERATED),
        ):
            if getattr(self, field_name) == default:
                data.pop(field_name, None)
                data.pop(to_camel(field_name), None)
        return data


class ForeignRelation(CamelModel):
    foreign_schema: str
    foreign_table: str
    column_mapping: dict[str, str]


class TableInfo(CamelModel):
    schema_name: str
    table_name: str
    description: Optional[str] = None
    columns: dict[str, ColumnInfo]
    uniqueness_constraints: dict[str, list[str]] = Field(default_factory=dict)
    foreign_relations: dict[str, ForeignRelation] = Field(default_factory=dict)


class AggregateFunction(CamelModel):
    return_type: str


class ComparisonFunction(CamelModel):
    operator_name: str
    argument_type: str
    is_infix: bool = True


class Metadata(CamelModel):
    """Tables, aggregate functions and comparison functions of one database."""

    tables: dict[str, TableInfo] = Field(default_factory=dict, alias="Tables")
    aggregate_functions: dict[str, dict[str, AggregateFunction]] = Field(
        default_factory=dict, alias="AggregateFunctions"
    )
    comparison_functions: dict[str, dict[str, ComparisonFunction]] = Field(
        default_factory=dict, alias="ComparisonFunctions"
    )
