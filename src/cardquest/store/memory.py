"""In-process document store used by tests and local runs."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from cardquest.store.gateway import (
    SERVER_TIMESTAMP,
    Document,
    Filter,
    Path,
    doc_path,
    merge_data,
    resolve_server_timestamps,
    select_documents,
)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDocumentStore:
    """Dict-backed PersistenceGateway.

    Transactions and batches are serialised against each other by a single
    asyncio lock; buffered writes are applied only when the callback returns
    without raising.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._docs: dict[Path, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or _utcnow

    def _write(self, path: Path, data: dict[str, Any], merge: bool) -> None:
        resolved = resolve_server_timestamps(data, self._clock())
        self._docs[path] = merge_data(self._docs.get(path), resolved, merge)

    def _snapshot(self, path: Path) -> Document | None:
        data = self._docs.get(path)
        if data is None:
            return None
        return Document(path=path, data=copy.deepcopy(data))

    async def get(self, path: Path) -> Document | None:
        return self._snapshot(doc_path(*path))

    async def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None:
        self._write(doc_path(*path), data, merge)

    async def delete(self, path: Path) -> None:
        self._docs.pop(doc_path(*path), None)

    async def list_ids(self, collection: Path) -> list[str]:
        return sorted(p[-1] for p in self._docs if p[:-1] == tuple(collection))

    async def query(
        self,
        collection: Path,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        collection = tuple(collection)
        candidates = [self._snapshot(p) for p in self._docs if p[:-1] == collection]
        return select_documents(
            [d for d in candidates if d is not None], filters, order_by, descending, limit
        )

    async def count(self, collection: Path, filters: Sequence[Filter] = ()) -> int:
        return len(await self.query(collection, filters))

    async def collection_group(self, name: str, filters: Sequence[Filter] = ()) -> list[Document]:
        candidates = [self._snapshot(p) for p in self._docs if len(p) >= 2 and p[-2] == name]
        return select_documents([d for d in candidates if d is not None], filters)

    async def run_transaction(self, fn: Callable[[_MemoryTransaction], Awaitable[T]]) -> T:
        async with self._lock:
            txn = _MemoryTransaction(self)
            result = await fn(txn)
            for path, data, merge in txn.writes:
                self._write(path, data, merge)
            return result

    def batch(self) -> _MemoryBatch:
        return _MemoryBatch(self)

    def server_timestamp(self) -> object:
        return SERVER_TIMESTAMP


class _MemoryTransaction:
    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self.writes: list[tuple[Path, dict[str, Any], bool]] = []

    async def get(self, path: Path) -> Document | None:
        return self._store._snapshot(doc_path(*path))

    def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None:
        self.writes.append((doc_path(*path), copy.deepcopy(data), merge))


class _MemoryBatch:
    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._writes: list[tuple[Path, dict[str, Any], bool]] = []

    def __len__(self) -> int:
        return len(self._writes)

    def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None:
        self._writes.append((doc_path(*path), copy.deepcopy(data), merge))

    async def commit(self) -> None:
        async with self._store._lock:
            for path, data, merge in self._writes:
                self._store._write(path, data, merge)
        self._writes.clear()
