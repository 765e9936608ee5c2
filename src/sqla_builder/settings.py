from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .registry import DEFAULT_DB_GROUP


class DatabaseSettings(BaseSettings):
    """Connection groups, read from the environment.

    Example environment::

        SQLA_BUILDER_GROUPS__DEFAULT=postgresql+psycopg://app@db/app
        SQLA_BUILDER_GROUPS__REPORTING=postgresql+psycopg://ro@replica/app
        SQLA_BUILDER_ECHO=true
    """

    model_config = SettingsConfigDict(
        env_prefix="SQLA_BUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    groups: dict[str, str] = Field(
        default_factory=lambda: {DEFAULT_DB_GROUP: "sqlite://"},
        description="Connection group name to SQLAlchemy database URL",
    )
    echo: bool = Field(
        default=False,
        description="Log every statement through SQLAlchemy's engine logger",
    )

    @field_validator("groups")
    @classmethod
    def _require_groups(cls, value: dict[str, str]) -> dict[str, str]:
        if not value:
            raise ValueError("at least one connection group is required")

        return {group.lower(): url for group, url in value.items()}
