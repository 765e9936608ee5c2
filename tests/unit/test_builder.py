from __future__ import annotations

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from sqla_builder import Builder, ConfigurationError, Kind, Registry, sqla_query

from ..helpers import render


class TestConstruction:
    @pytest.mark.parametrize(("model", "kind"), [("post", None), ("", Kind.SELECT), (None, "select")])
    def test_requires_model_and_kind(self, model: str | None, kind: str | None, registry: Registry) -> None:
        with pytest.raises(ConfigurationError, match="requires `model` and `kind`"):
            Builder(model, kind, registry=registry)

    def test_registered_model_is_canonical(self, registry: Registry) -> None:
        builder = Builder("Model_Post", "SELECT", registry=registry)
        assert builder.meta is registry["post"]
        assert builder.kind() is Kind.SELECT
        assert builder.state.from_ == [("post", None)]

    def test_unregistered_table(self, registry: Registry) -> None:
        builder = Builder("audit_log", Kind.SELECT, registry=registry)
        assert builder.meta is None
        assert builder.state.from_ == [("audit_log", None)]

    def test_first_registered_from_becomes_canonical(self, registry: Registry) -> None:
        builder = Builder("audit_log", Kind.SELECT, registry=registry).from_("post")
        assert builder.meta is registry["post"]
        assert builder.state.from_ == [("audit_log", None), ("post", None)]

    def test_sqla_query_defaults_to_select(self, registry: Registry) -> None:
        assert sqla_query(model="post", registry=registry).kind() is Kind.SELECT
        assert sqla_query(model="post", registry=registry, kind="delete").kind() is Kind.DELETE

    def test_repr(self, registry: Registry) -> None:
        assert repr(sqla_query(model="post", registry=registry)) == "<Builder select model='post'>"


class TestClauseResolution:
    def test_select_is_qualified_and_keeps_aliases(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).select("title", ("body", "text"))
        assert builder.state.select == [("post.title", None), ("post.content", "text")]

    def test_select_array(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).select_array(["id", "user.name"])
        assert builder.state.select == [("post.id", None), ("user.name", None)]

    def test_where_is_always_qualified(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).where("author", "=", 1)
        condition = builder.state.where.children[0]
        assert (condition.logic, condition.column, condition.op, condition.value) == (
            "AND",
            "post.author_id",
            "=",
            1,
        )

    def test_values_are_never_resolved(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).where("title", "=", "author")
        assert builder.state.where.children[0].value == "author"

    def test_order_by_and_having_qualify_only_when_asked(self, registry: Registry) -> None:
        builder = (
            sqla_query(model="post", registry=registry)
            .order_by("body", "DESC")
            .order_by("post.title")
            .having('COUNT("id")', ">", 1)
        )
        assert builder.state.order_by == [("content", "DESC"), ("post.title", None)]
        assert builder.state.having.children[0].column == 'COUNT("id")'

    def test_group_by_resolves_model_references(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).group_by("Model_User", "status")
        assert builder.state.group_by == ["user", "status"]

    def test_join_and_on(self, registry: Registry) -> None:
        builder = (
            sqla_query(model="post", registry=registry)
            .join(("Model_User", "u"), "LEFT")
            .on("author", "=", "u.id")
            .on("u.name", "!=", "post.title")
        )
        join = builder.state.joins[0]
        assert (join.table, join.alias, join.type) == ("user", "u", "LEFT")
        assert join.on == [("post.author_id", "=", "u.id"), ("u.name", "!=", "post.title")]

    def test_on_without_join(self, registry: Registry) -> None:
        with pytest.raises(ConfigurationError, match="join"):
            sqla_query(model="post", registry=registry).on("author", "=", "user.id")

    def test_set_and_value(self, registry: Registry) -> None:
        builder = (
            sqla_query(model="post", kind="update", registry=registry)
            .set({"body": "x", "status": "draft"})
            .value("status", "archived")
            .value("raw_column", 1, alias=False)
        )
        assert builder.state.set == {"content": "x", "status": "archived", "raw_column": 1}

    def test_columns_and_values(self, registry: Registry) -> None:
        builder = (
            sqla_query(model="post", kind="insert", registry=registry)
            .columns(["title", "body"])
            .values(["a", "b"], ("c", "d"))
        )
        assert builder.state.columns == ["title", "content"]
        assert builder.state.values == [("a", "b"), ("c", "d")]


class TestConditionGroups:
    def test_nested_groups(self, registry: Registry) -> None:
        query = (
            sqla_query(model="post", registry=registry)
            .where("status", "=", "published")
            .or_where_open()
            .where("id", "<", 10)
            .and_where_open()
            .where("title", "LIKE", "A%")
            .or_where("title", "LIKE", "B%")
            .and_where_close()
            .or_where_close()
            .build()
        )
        sql = render(query)
        assert (
            "WHERE post.status = 'published' OR post.id < 10 "
            "AND (post.title LIKE 'A%' OR post.title LIKE 'B%')"
        ) in sql

    def test_close_without_open(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry)
        with pytest.raises(ConfigurationError, match="No condition group is open"):
            builder.where_close()
        with pytest.raises(ConfigurationError):
            builder.having_close()

    def test_empty_group_is_dropped(self, registry: Registry) -> None:
        query = (
            sqla_query(model="post", registry=registry)
            .where_open()
            .where_close()
            .where("id", "=", 1)
            .build()
        )
        assert render(query).endswith("WHERE post.id = 1")


class TestKind:
    def test_kind_setter_is_chainable(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry)
        assert builder.kind("DELETE") is builder
        assert builder.kind() is Kind.DELETE

    def test_invalid_kind(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry)
        with pytest.raises(ConfigurationError, match="without a statement kind"):
            builder.kind("merge")
        with pytest.raises(ConfigurationError):
            builder.build("merge")

    def test_build_kind_override_does_not_change_builder(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).where("id", "=", 1)
        assert isinstance(builder.build(Kind.DELETE), sa.Delete)
        assert builder.kind() is Kind.SELECT


class TestSubquery:
    def test_builder_as_in_value(self, registry: Registry) -> None:
        authors = sqla_query(model="user", registry=registry).select("id").where("name", "LIKE", "a%")
        query = sqla_query(model="post", registry=registry).where("author", "IN", authors).build()
        sql = render(query)
        assert "post.author_id IN (SELECT" in sql
        assert "LIKE 'a%'" in sql

    def test_builder_as_scalar_value(self, registry: Registry) -> None:
        newest = sqla_query(model="post", registry=registry).select('MAX("id")')
        query = sqla_query(model="post", registry=registry).where("id", "=", newest).build()
        assert "post.id = (SELECT MAX(id)" in render(query)


class TestExecuteRequiresDatabase:
    def test_no_database(self, registry: Registry) -> None:
        with pytest.raises(ConfigurationError, match="no database"):
            sqla_query(model="post", registry=registry).execute()


class TestRendering:
    def test_str_uses_default_dialect(self, registry: Registry) -> None:
        sql = str(sqla_query(model="post", registry=registry).where("id", "=", 1))
        assert sql.startswith("SELECT * \nFROM post")
        assert "post.id = :" in sql

    def test_compile_for_dialect_and_kind(self, registry: Registry) -> None:
        builder = sqla_query(model="post", registry=registry).where("id", "=", 1)
        compiled = builder.compile(postgresql.dialect(), kind="delete")
        assert str(compiled).startswith("DELETE FROM post WHERE post.id = %(")
        assert builder.kind() is Kind.SELECT


class TestReset:
    def test_state_matches_fresh_builder(self, registry: Registry) -> None:
        builder = (
            Builder("Model_Post", Kind.UPDATE, registry=registry)
            .select("title", ("body", "text"))
            .distinct()
            .from_(("audit_log", "a"))
            .join(("Model_User", "u"), "LEFT")
            .on("author", "=", "u.id")
            .where("status", "=", "published")
            .or_where_open()
            .where("id", "<", 10)
            .group_by("status")
            .having('COUNT("id")', ">", 1)
            .order_by("title", "DESC")
            .limit(5)
            .offset(10)
            .columns(["title"])
            .values(["x"])
            .set({"status": "draft"})
            .with_("author")
        )

        builder.reset()
        fresh = Builder("Model_Post", Kind.UPDATE, registry=registry)

        assert builder.state == fresh.state
        assert builder.meta is registry["post"]
        assert builder.state.from_ == [("post", None)]
        assert builder.kind() is Kind.UPDATE

        builder.where("id", "=", 1)
        fresh.where("id", "=", 1)
        assert builder.state.where == fresh.state.where

    def test_canonical_model_is_derived_again(self, registry: Registry) -> None:
        builder = Builder("audit_log", Kind.SELECT, registry=registry).from_("post")
        assert builder.meta is registry["post"]

        builder.reset()
        assert builder.meta is None
        assert builder.state == Builder("audit_log", Kind.SELECT, registry=registry).state
