"""
Introspection options and the connector configuration file.

The configuration file is what ``pgndc initialize`` writes and ``pgndc update``
refreshes: a connection URI, the options that drive introspection, and the
metadata that introspection last produced.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field

from pgndc.metadata import CamelModel, Metadata

CONFIGURATION_FILENAME = "configuration.json"
DEFAULT_CONNECTION_URI_VARIABLE = "CONNECTION_URI"

DEFAULT_EXCLUDED_SCHEMAS = [
    "information_schema",
    "pg_catalog",
    "tiger",
    "topology",
    # CockroachDB and Citus internals
    "crdb_internal",
    "columnar",
    "columnar_internal",
]

DEFAULT_UNQUALIFIED_SCHEMAS = ["public"]

DEFAULT_PREFIX_COMPARISON_FUNCTIONS = ["box_above", "box_below"]


class OperatorMapping(CamelModel):
    """Exposes the infix operator ``operator_name`` as ``exposed_name``."""

    operator_name: str
    exposed_name: str


DEFAULT_OPERATOR_MAPPINGS = [
    OperatorMapping(operator_name=operator_name, exposed_name=exposed_name)
    for operator_name, exposed_name in (
        ("=", "_eq"),
        ("<=", "_lte"),
        (">", "_gt"),
        (">=", "_gte"),
        ("<", "_lt"),
        ("!=", "_neq"),
        ("<>", "_neq"),
        ("~~", "_like"),
        ("!~~", "_nlike"),
        ("~~*", "_ilike"),
        ("!~~*", "_nilike"),
        ("~", "_regex"),
        ("!~", "_nregex"),
        ("~*", "_iregex"),
        ("!~*", "_niregex"),
    )
]


class IntrospectionOptions(CamelModel):
    excluded_schemas: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_SCHEMAS))
    unqualified_schemas: list[str] = Field(default_factory=lambda: list(DEFAULT_UNQUALIFIED_SCHEMAS))
    comparison_operator_mapping: list[OperatorMapping] = Field(
        default_factory=lambda: list(DEFAULT_OPERATOR_MAPPINGS)
    )
    introspect_prefix_function_comparison_operators: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PREFIX_COMPARISON_FUNCTIONS)
    )


class ConnectorConfiguration(CamelModel):
    version: Literal["2"] = "2"
    connection_uri: str = ""
    metadata: Metadata = Field(default_factory=Metadata)
    configure_options: IntrospectionOptions = Field(default_factory=IntrospectionOptions)

    @classmethod
    def empty(cls) -> "ConnectorConfiguration":
        return cls()

    @classmethod
    def load(cls, path: Path) -> "ConnectorConfiguration":
        return cls.model_validate_json(Path(path).read_text())

    def write(self, path: Path) -> None:
        Path(path).write_text(self.model_dump_json(by_alias=True, indent=2) + "\n")

    def resolve_connection_uri(self) -> str:
        """The configured connection URI, falling back to the environment."""
        uri = self.connection_uri or os.getenv(DEFAULT_CONNECTION_URI_VARIABLE, "")
        if not uri:
            raise ValueError(
                f"No connection URI configured; set connectionUri or {DEFAULT_CONNECTION_URI_VARIABLE}"
            )
        return uri
