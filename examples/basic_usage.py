"""Basic sqla-builder usage examples.

Demonstrates registries, eager relationship chains, deferred statement
kinds, counting and the read-only result collection.

NOTE: This file is illustrative; run it as ``python -m examples.basic_usage``
from the repository root.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa

from sqla_builder import (
    BelongsTo,
    DatabaseSettings,
    EngineDatabase,
    Field,
    Kind,
    Registry,
    get_registry,
    sqla_query,
)

from .models import Base, Post, User


# ── 1. Configure once at startup ─────────────────────────────────────

settings = DatabaseSettings(groups={"default": "sqlite://"})
database = EngineDatabase.from_settings(settings)

# One model per mapped class, relationships included
registry = get_registry(Base)


def setup() -> None:
    Base.metadata.create_all(database.engine("default"))
    (
        sqla_query(model=User, kind=Kind.INSERT, registry=registry, database=database)
        .columns(["id", "name"])
        .values((1, "alice"), (2, "bob"))
        .execute()
    )
    (
        sqla_query(model=Post, kind=Kind.INSERT, registry=registry, database=database)
        .columns(["id", "title", "status", "created", "author"])
        .values(
            (1, "Hello", "published", 1, 1),
            (2, "Draft", "draft", 2, 1),
            (3, "Bob's", "published", 3, 2),
        )
        .execute()
    )


# ── 2. Selects ───────────────────────────────────────────────────────


def published_posts() -> list[Post]:
    posts = (
        sqla_query(model=Post, registry=registry, database=database)
        .with_("author")
        .where("status", "=", "published")
        .execute()
    )
    return list(posts)


def first_post_by(name: str) -> Post | None:
    return (
        sqla_query(model=Post, registry=registry, database=database)
        .with_("author")
        .where("users.name", "=", name)
        .limit(1)
        .execute()
    )


def post_titles() -> dict[int, str]:
    return sqla_query(model=Post, registry=registry, database=database).execute().as_list("id", "title")


# ── 3. One builder, several statement kinds ──────────────────────────


def archive_drafts() -> int:
    builder = sqla_query(model=Post, registry=registry, database=database).where("status", "=", "draft")
    drafts = builder.count()
    if drafts:
        builder.kind("update").set({"status": "archived"}).execute()

    return drafts


# ── 4. Hand-written registry for legacy tables ───────────────────────

legacy = Registry()
legacy.register(
    "Model_Post",
    table="posts",
    fields=[
        Field("id"),
        Field("headline", column="title"),
        BelongsTo("writer", column="author_id", foreign_model="user"),
    ],
)
legacy.register("Model_User", table="users", fields=[Field("id"), Field("name")])


def legacy_sql() -> str:
    query = sqla_query(model="Model_Post", registry=legacy).select("headline").with_("writer").build()
    return str(query.compile(compile_kwargs={"literal_binds": True}))


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    setup()
    print([(p.title, p.author.name) for p in published_posts()])
    print(first_post_by("bob"))
    print(post_titles())
    print(archive_drafts())
    print(legacy_sql())
    print(database.execute(sa.select(sa.func.count()).select_from(sa.table("posts")), "default"))
    database.dispose()
