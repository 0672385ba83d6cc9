"""Document-store contract consumed by every gamification component.

Documents are addressed by tuple paths: an even number of segments names a
document (``("streaks", "u1")``), an odd number names a collection
(``("xpTransactions", "u1", "transactions")``). Payloads are plain dicts.
"""

from __future__ import annotations

import copy
import operator
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

from cardquest.errors import InvalidError

Path = tuple[str, ...]
T = TypeVar("T")


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when a write is applied."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo: dict) -> _ServerTimestamp:
        return self


SERVER_TIMESTAMP = _ServerTimestamp()

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


@dataclass(frozen=True)
class Filter:
    """Single field predicate. Documents missing the field never match."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise InvalidError(f"Unsupported filter operator: {self.op!r}")

    def test(self, data: dict[str, Any]) -> bool:
        if self.field not in data:
            return False
        try:
            return bool(_OPERATORS[self.op](data[self.field], self.value))
        except TypeError:
            return False


@dataclass
class Document:
    """A stored document snapshot."""

    path: Path
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.path[-1]

    @property
    def parent(self) -> Path:
        return self.path[:-1]


def _check_segments(segments: Sequence[str]) -> None:
    for segment in segments:
        if not isinstance(segment, str) or not segment.strip() or "/" in segment:
            raise InvalidError(f"Invalid path segment {segment!r} in {'/'.join(map(str, segments))}")


def doc_path(*segments: str) -> Path:
    """Build and validate a document path."""
    if not segments or len(segments) % 2:
        raise InvalidError(f"Document path needs an even number of segments: {segments!r}")
    _check_segments(segments)
    return tuple(segments)


def collection_path(*segments: str) -> Path:
    """Build and validate a collection path."""
    if len(segments) % 2 == 0:
        raise InvalidError(f"Collection path needs an odd number of segments: {segments!r}")
    _check_segments(segments)
    return tuple(segments)


def path_str(path: Path) -> str:
    return "/".join(path)


def resolve_server_timestamps(data: Any, now: datetime) -> Any:
    """Return a deep copy of ``data`` with every sentinel replaced by ``now``."""
    if data is SERVER_TIMESTAMP:
        return now
    if isinstance(data, dict):
        return {k: resolve_server_timestamps(v, now) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_server_timestamps(v, now) for v in data]
    return copy.deepcopy(data)


def merge_data(existing: dict[str, Any] | None, incoming: dict[str, Any], merge: bool) -> dict[str, Any]:
    """Apply a write: ``merge`` patches top-level fields, otherwise replaces."""
    if not merge or existing is None:
        return dict(incoming)
    merged = dict(existing)
    merged.update(incoming)
    return merged


def matches(data: dict[str, Any], filters: Iterable[Filter]) -> bool:
    return all(f.test(data) for f in filters)


def select_documents(
    docs: Iterable[Document],
    filters: Iterable[Filter] = (),
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[Document]:
    """Filter, order and truncate candidate documents in memory."""
    filters = list(filters)
    selected = [d for d in docs if matches(d.data, filters)]
    if order_by is not None:
        selected = [d for d in selected if order_by in d.data]
        selected.sort(key=lambda d: (d.data[order_by], d.path), reverse=descending)
    else:
        selected.sort(key=lambda d: d.path)
    if limit is not None:
        selected = selected[: max(limit, 0)]
    return selected


class Transaction(Protocol):
    """Read-then-write unit applied atomically when the callback returns."""

    async def get(self, path: Path) -> Document | None: ...

    def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None: ...


class WriteBatch(Protocol):
    """Multi-document write that applies entirely or not at all."""

    def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None: ...

    async def commit(self) -> None: ...


class PersistenceGateway(Protocol):
    """Operations the engine needs from a document database."""

    async def get(self, path: Path) -> Document | None: ...

    async def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None: ...

    async def list_ids(self, collection: Path) -> list[str]: ...

    async def query(
        self,
        collection: Path,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]: ...

    async def count(self, collection: Path, filters: Sequence[Filter] = ()) -> int: ...

    async def collection_group(self, name: str, filters: Sequence[Filter] = ()) -> list[Document]: ...

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T: ...

    def batch(self) -> WriteBatch: ...

    def server_timestamp(self) -> object: ...
