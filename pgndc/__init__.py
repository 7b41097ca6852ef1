"""PostgreSQL catalog introspection for data connectors."""

__version__ = "0.1.0"
