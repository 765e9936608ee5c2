"""Exceptions raised by sqla_builder.

Unknown models and fields are not errors: the resolver passes them through
unchanged, so the builder also works against unmanaged tables.
"""

from __future__ import annotations


class BuilderError(Exception):
    """Base exception for all sqla_builder errors."""


class ConfigurationError(BuilderError):
    """Raised when a builder is constructed or compiled with invalid settings.

    Examples: no model, no statement kind, an unknown connection group.
    """


class ReadOnlyError(BuilderError, TypeError):
    """Raised on any attempt to mutate a materialized result collection."""


__all__: list[str] = [
    "BuilderError",
    "ConfigurationError",
    "ReadOnlyError",
]
