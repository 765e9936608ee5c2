"""Minimal models for sqla-builder examples."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm


class Base(orm.DeclarativeBase):
    pass


post_tags = sa.Table(
    "post_tags",
    Base.metadata,
    sa.Column("post_id", sa.Integer, sa.ForeignKey("posts.id"), primary_key=True),
    sa.Column("tag_id", sa.Integer, sa.ForeignKey("tags.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))

    posts: orm.Mapped[list[Post]] = orm.relationship(back_populates="author", lazy="noload")


class Post(Base):
    __tablename__ = "posts"
    # applied to every SELECT on posts
    __sorting__ = (("created", "DESC"),)

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    status: orm.Mapped[str] = orm.mapped_column(sa.String(20), default="draft")
    created: orm.Mapped[int] = orm.mapped_column("created_at", default=0)
    author_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))

    author: orm.Mapped[User] = orm.relationship(back_populates="posts", lazy="noload")
    tags: orm.Mapped[list[Tag]] = orm.relationship(
        secondary=post_tags, back_populates="posts", lazy="noload"
    )


class Tag(Base):
    __tablename__ = "tags"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))

    posts: orm.Mapped[list[Post]] = orm.relationship(
        secondary=post_tags, back_populates="tags", lazy="noload"
    )
