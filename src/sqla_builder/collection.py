from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, NoReturn, overload

from .exceptions import ReadOnlyError


if TYPE_CHECKING:
    from .registry import ModelMeta, Registry


def _materialize(
    meta: ModelMeta | None,
    flat: Mapping[tuple[str, ...], Any],
    registry: Registry | None,
) -> dict[str, Any]:
    """Build ``{field: value}`` from path-keyed values, nesting relationships.

    A key of length one is a field of *meta*; longer keys belong to the
    relationship named by their first element.
    """
    values: dict[str, Any] = {}
    nested: dict[str, dict[tuple[str, ...], Any]] = {}
    for path, value in flat.items():
        if len(path) == 1:
            values[path[0]] = value
        else:
            nested.setdefault(path[0], {})[path[1:]] = value

    for name, children in nested.items():
        field = meta.get_field(name) if meta is not None else None
        child_meta = (
            registry.lookup(field.foreign_model)
            if registry is not None and field is not None and field.joinable
            else None
        )
        child = _materialize(child_meta, children, registry)

        related: Any = None
        if any(v is not None for v in child.values()):
            related = _build(child_meta, child)

        if field is not None and field.joinable and field.uselist and _has_factory(meta):
            related = [related] if related is not None else []

        values[name] = related

    return values


def _has_factory(meta: ModelMeta | None) -> bool:
    return meta is not None and meta.factory is not None


def _build(meta: ModelMeta | None, values: dict[str, Any]) -> Any:
    if meta is None or meta.factory is None:
        return values

    return meta.factory({k: v for k, v in values.items() if k in meta.fields})


def load_record(
    meta: ModelMeta,
    row: Mapping[str, Any],
    registry: Registry | None = None,
) -> Any:
    """Turn a raw row into a record of *meta*.

    Own columns are renamed to their field aliases. Relationship columns
    selected by ``with_()`` (``post:author:name``) are nested under the
    relationship (``{"author": {"name": ...}}``); a relationship whose
    columns are all NULL becomes ``None``.
    """
    prefix = f"{meta.model}:"

    flat: dict[tuple[str, ...], Any] = {}
    for key, value in row.items():
        if key.startswith(prefix):
            flat[tuple(key[len(prefix) :].split(":"))] = value
        elif (field := meta.fields.by_column(key)) is not None:
            flat[(field.name,)] = value
        else:
            flat[(key,)] = value

    return _build(meta, _materialize(meta, flat, registry))


class Collection(Sequence[Any]):
    """Read-only wrapper over the rows of an executed SELECT.

    With a model, rows are loaded into records (see :func:`load_record`);
    without one, raw row mappings are returned. The collection also keeps a
    cursor for sequential access with :meth:`current`, :meth:`next` and
    :meth:`seek`.

    Example:
        >>> posts = builder.execute()
        >>> len(posts), posts[0].title
        (3, 'Hello')
        >>> posts[0] = None
        Traceback (most recent call last):
        ...
        sqla_builder.exceptions.ReadOnlyError: Results are read-only
    """

    __slots__ = ("_meta", "_position", "_registry", "_rows")

    def __init__(
        self,
        meta: ModelMeta | None,
        rows: Sequence[Mapping[str, Any]],
        registry: Registry | None = None,
    ) -> None:
        self._meta = meta
        self._rows = rows
        self._registry = registry
        self._position = 0

    @property
    def meta(self) -> ModelMeta | None:
        return self._meta

    def _load(self, row: Mapping[str, Any]) -> Any:
        if self._meta is None:
            return row

        return load_record(self._meta, row, self._registry)

    def __len__(self) -> int:
        return len(self._rows)

    @overload
    def __getitem__(self, index: int) -> Any: ...

    @overload
    def __getitem__(self, index: slice) -> list[Any]: ...

    def __getitem__(self, index: int | slice) -> Any:
        if isinstance(index, slice):
            return [self._load(row) for row in self._rows[index]]

        return self._load(self._rows[index])

    def __iter__(self) -> Iterator[Any]:
        for position, row in enumerate(self._rows):
            self._position = position
            yield self._load(row)

    def __setitem__(self, index: Any, value: Any) -> NoReturn:
        raise ReadOnlyError("Results are read-only")

    def __delitem__(self, index: Any) -> NoReturn:
        raise ReadOnlyError("Results are read-only")

    def __repr__(self) -> str:
        model = self._meta.model if self._meta is not None else None
        return f"<{type(self).__name__} model={model!r} rows={len(self._rows)}>"

    # -- cursor --------------------------------------------------------------

    def current(self) -> Any:
        """Record at the cursor, or ``None`` when there is none."""
        if not 0 <= self._position < len(self._rows):
            return None

        return self._load(self._rows[self._position])

    def key(self) -> int:
        return self._position

    def next(self) -> Collection:
        self._position += 1
        return self

    def rewind(self) -> Collection:
        self._position = 0
        return self

    def valid(self) -> bool:
        return 0 <= self._position < len(self._rows)

    def seek(self, offset: int) -> bool:
        """Move the cursor to *offset*; ``False`` if it is out of range."""
        if not 0 <= offset < len(self._rows):
            return False

        self._position = offset
        return True

    def get(self, name: str, default: Any = None) -> Any:
        """Raw value of column *name* in the row at the cursor."""
        if not self.valid():
            return default

        return self._rows[self._position].get(self._column(name), default)

    # -- export --------------------------------------------------------------

    def _column(self, name: str | None) -> str | None:
        if name is None or self._meta is None:
            return name

        field = self._meta.get_field(name)
        return field.column if field is not None else name

    def as_list(self, key: str | None = None, value: str | None = None) -> Any:
        """Export raw rows.

        * no arguments: a list of row mappings;
        * *key* only: ``{row[key]: row}``;
        * *value* only: ``[row[value], ...]``;
        * both: ``{row[key]: row[value]}``.

        Field names of the collection's model are translated to columns.
        """
        key, value = self._column(key), self._column(value)
        if key is None and value is None:
            return list(self._rows)

        if key is None:
            return [row[value] for row in self._rows]

        if value is None:
            return {row[key]: row for row in self._rows}

        return {row[key]: row[value] for row in self._rows}
