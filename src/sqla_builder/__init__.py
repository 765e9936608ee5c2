"""Model-aware, deferred SQL query building on SQLAlchemy Core.

sqla_builder lets you write queries against logical model and field names.
Register your models once in a ``Registry`` (by hand, or from a declarative
base with ``get_registry(Base)``), then build statements with ``Builder`` or
``sqla_query(model=..., registry=...)``: names are resolved to tables and
columns, relationship chains are joined with ``with_()``, and the same builder
compiles into a SELECT, INSERT, UPDATE or DELETE when it is executed.
"""

from ._version import __version__, __version_tuple__
from .collection import Collection, load_record
from .compiler import QueryState, compile_count, compile_statement
from .core import Builder, sqla_query
from .database import Database, EngineDatabase, MutationResult
from .datastructures import (
    BareField,
    Kind,
    QualifiedField,
    RawExpression,
    ResolvedAlias,
)
from .exceptions import BuilderError, ConfigurationError, ReadOnlyError
from .fields import BelongsTo, Field, FieldTable, HasMany, HasOne, Joinable, ManyToMany
from .registry import ModelMeta, Registry, get_registry, get_table_name, model_name
from .resolver import parse_identifier, resolve_column, resolve_table
from .settings import DatabaseSettings


__all__ = (
    "BareField",
    "BelongsTo",
    "Builder",
    "BuilderError",
    "Collection",
    "ConfigurationError",
    "Database",
    "DatabaseSettings",
    "EngineDatabase",
    "Field",
    "FieldTable",
    "HasMany",
    "HasOne",
    "Joinable",
    "Kind",
    "ManyToMany",
    "ModelMeta",
    "MutationResult",
    "QualifiedField",
    "QueryState",
    "RawExpression",
    "ReadOnlyError",
    "Registry",
    "ResolvedAlias",
    "__version__",
    "__version_tuple__",
    "compile_count",
    "compile_statement",
    "get_registry",
    "get_table_name",
    "load_record",
    "model_name",
    "parse_identifier",
    "resolve_column",
    "resolve_table",
    "sqla_query",
)
