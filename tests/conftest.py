from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
import sqlalchemy as sa
from sqlalchemy import orm

from sqla_builder import (
    BelongsTo,
    EngineDatabase,
    Field,
    HasMany,
    ManyToMany,
    Registry,
    get_registry,
)

from .helpers import CountingDatabase
from .models import Base, Comment, Organization, Post, Profile, Tag, User, post_tags


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "postgres"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+psycopg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture
def engine(db_config: str) -> Iterator[sa.Engine]:
    engine = sa.create_engine(db_config, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def database(engine: sa.Engine) -> EngineDatabase:
    return EngineDatabase({"default": engine})


@pytest.fixture
def seed_data(engine: sa.Engine) -> dict[str, list[Base]]:
    acme = Organization(id=1, name="acme")

    alice = User(id=1, name="alice", active=True, organization_id=1)
    bob = User(id=2, name="bob", active=True, organization_id=None)

    post1 = Post(id=1, title="Hello", body="first", status="published", author_id=1)
    post2 = Post(id=2, title="Draft", body="second", status="draft", author_id=1)
    post3 = Post(id=3, title="Bob Post", body="third", status="published", author_id=2)

    comment1 = Comment(id=1, text="Great post!", post_id=1)
    comment2 = Comment(id=2, text="Nice work", post_id=1)

    tag_python = Tag(id=1, name="python")
    tag_sql = Tag(id=2, name="sql")

    profile_alice = Profile(id=1, bio="Alice bio", user_id=1)

    with orm.Session(engine, expire_on_commit=False) as session:
        session.add(acme)
        session.flush()
        session.add_all([alice, bob])
        session.flush()
        session.add_all([post1, post2, post3, tag_python, tag_sql])
        session.flush()
        session.add_all([comment1, comment2, profile_alice])
        session.execute(
            post_tags.insert().values([
                {"post_id": 1, "tag_id": 1},
                {"post_id": 1, "tag_id": 2},
            ])
        )
        session.commit()
        session.expunge_all()

    return {
        "organizations": [acme],
        "users": [alice, bob],
        "posts": [post1, post2, post3],
        "comments": [comment1, comment2],
        "tags": [tag_python, tag_sql],
        "profiles": [profile_alice],
    }


@pytest.fixture
def orm_registry() -> Registry:
    """Registry generated from the declarative test models."""
    return get_registry(Base)


@pytest.fixture
def registry() -> Registry:
    """Hand-registered registry with singular table names."""
    registry = Registry()
    registry.register(
        "Model_Post",
        table="post",
        fields=[
            Field("id"),
            Field("title"),
            Field("status"),
            Field("body", column="content"),
            BelongsTo("author", foreign_model="user"),
            HasMany("comments", foreign_model="comment", foreign_column="post_id"),
            ManyToMany("tags", foreign_model="tag", through="post_tag"),
        ],
    )
    registry.register("Model_User", table="user", fields=[Field("name")])
    registry.register("comment", fields=[Field("id"), Field("text"), Field("post_id")])
    registry.register("tag", fields=[Field("id"), Field("name")])

    return registry


@pytest.fixture
def counting_database(database: EngineDatabase) -> CountingDatabase:
    return CountingDatabase(database)
