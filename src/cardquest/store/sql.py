"""PostgreSQL-backed PersistenceGateway (SQLAlchemy asyncio + asyncpg).

Every document lives in one ``documents`` row keyed by its full path.
Filters on scalar fields and timestamps become JSONB predicates; anything
else is applied in Python after the SQL prefilter. Ordering and limits are
always applied in Python so results match the in-memory store exactly.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import Float, and_, case, delete, false, func, not_, or_, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardquest.store.gateway import (
    SERVER_TIMESTAMP,
    Document,
    Filter,
    Path,
    doc_path,
    merge_data,
    path_str,
    resolve_server_timestamps,
    select_documents,
)
from cardquest.store.models import DocumentRow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TS_KEY = "$ts"

_RANGE_OPS: dict[str, Callable[[Any, Any], Any]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _encode(value: Any) -> Any:
    """Make a payload JSON-safe; datetimes become ``{"$ts": iso}``.

    Timestamps are stored as fixed-width UTC strings so that text comparison
    in SQL orders them chronologically.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {_TS_KEY: value.astimezone(timezone.utc).isoformat(timespec="microseconds")}
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _TS_KEY in value:
            return datetime.fromisoformat(value[_TS_KEY])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


def _split(key: str) -> Path:
    return tuple(key.split("/"))


def _to_document(row: DocumentRow) -> Document:
    return Document(path=_split(row.path), data=_decode(row.data))


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, datetime))


def _predicate(f: Filter) -> Any:
    """SQL form of ``f``, or None when it can only be evaluated in Python."""
    data = type_coerce(DocumentRow.data, JSONB)

    if f.op in ("==", "!=") and _is_scalar(f.value):
        equal = data.contains({f.field: _encode(f.value)})
        if f.op == "==":
            return equal
        return and_(data.has_key(f.field), not_(equal))

    if f.op == "in" and isinstance(f.value, (list, tuple, set, frozenset)) and all(map(_is_scalar, f.value)):
        if not f.value:
            return false()
        return or_(*(data.contains({f.field: _encode(v)}) for v in f.value))

    compare = _RANGE_OPS.get(f.op)
    if compare is None:
        return None
    if isinstance(f.value, datetime):
        return compare(data[f.field][_TS_KEY].astext, _encode(f.value)[_TS_KEY])
    if isinstance(f.value, (int, float)) and not isinstance(f.value, bool):
        number = case(
            (func.jsonb_typeof(data[f.field]) == "number", data[f.field].astext.cast(Float)),
        )
        return compare(number, float(f.value))
    return None


def _where(filters: Sequence[Filter]) -> tuple[list[Any], bool]:
    """SQL clauses for ``filters`` and whether they cover every filter."""
    clauses: list[Any] = []
    exact = True
    for f in filters:
        clause = _predicate(f)
        if clause is None:
            exact = False
        else:
            clauses.append(clause)
    return clauses, exact


class SqlDocumentStore:
    """PersistenceGateway over a SQLAlchemy async session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] | None = None,
        max_attempts: int = 5,
    ) -> None:
        self._sessions = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._max_attempts = max_attempts

    async def _write(self, session: AsyncSession, path: Path, data: dict[str, Any], merge: bool) -> None:
        key = path_str(path)
        now = self._clock()
        resolved = resolve_server_timestamps(data, now)
        row = await session.get(DocumentRow, key, with_for_update=True)
        if row is None:
            session.add(DocumentRow(
                path=key,
                collection_path=path_str(path[:-1]),
                collection_id=path[-2],
                doc_id=path[-1],
                data=_encode(resolved),
                updated_at=now,
            ))
        else:
            row.data = _encode(merge_data(_decode(row.data), resolved, merge))
            row.updated_at = now
        await session.flush()

    async def _retrying(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``fn`` in its own transaction, retrying when a concurrent insert wins."""
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._sessions() as session, session.begin():
                    return await fn(session)
            except IntegrityError:
                if attempt >= self._max_attempts:
                    raise
                logger.warning("Document write conflict, retrying (attempt %d)", attempt, exc_info=True)

    async def get(self, path: Path) -> Document | None:
        key = path_str(doc_path(*path))
        async with self._sessions() as session:
            row = await session.get(DocumentRow, key)
            return _to_document(row) if row is not None else None

    async def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None:
        path = doc_path(*path)

        async def _apply(session: AsyncSession) -> None:
            await self._write(session, path, data, merge)

        await self._retrying(_apply)

    async def delete(self, path: Path) -> None:
        key = path_str(doc_path(*path))
        async with self._sessions() as session, session.begin():
            await session.execute(delete(DocumentRow).where(DocumentRow.path == key))

    async def list_ids(self, collection: Path) -> list[str]:
        async with self._sessions() as session:
            result = await session.execute(
                select(DocumentRow.doc_id)
                .where(DocumentRow.collection_path == path_str(collection))
                .order_by(DocumentRow.doc_id)
            )
            return list(result.scalars())

    async def query(
        self,
        collection: Path,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        clauses, _ = _where(filters)
        async with self._sessions() as session:
            result = await session.execute(
                select(DocumentRow).where(DocumentRow.collection_path == path_str(collection), *clauses)
            )
            docs = [_to_document(row) for row in result.scalars()]
        return select_documents(docs, filters, order_by, descending, limit)

    async def count(self, collection: Path, filters: Sequence[Filter] = ()) -> int:
        clauses, exact = _where(filters)
        if not exact:
            return len(await self.query(collection, filters))
        async with self._sessions() as session:
            result = await session.execute(
                select(func.count())
                .select_from(DocumentRow)
                .where(DocumentRow.collection_path == path_str(collection), *clauses)
            )
            return result.scalar_one()

    async def collection_group(self, name: str, filters: Sequence[Filter] = ()) -> list[Document]:
        clauses, _ = _where(filters)
        async with self._sessions() as session:
            result = await session.execute(
                select(DocumentRow).where(DocumentRow.collection_id == name, *clauses)
            )
            docs = [_to_document(row) for row in result.scalars()]
        return select_documents(docs, filters)

    async def run_transaction(self, fn: Callable[[_SqlTransaction], Awaitable[T]]) -> T:
        async def _apply(session: AsyncSession) -> T:
            txn = _SqlTransaction(session)
            result = await fn(txn)
            for path, data, merge in txn.writes:
                await self._write(session, path, data, merge)
            return result

        return await self._retrying(_apply)

    def batch(self) -> _SqlBatch:
        return _SqlBatch(self)

    def server_timestamp(self) -> object:
        return SERVER_TIMESTAMP


class _SqlTransaction:
    """Reads take row locks held until the surrounding transaction commits."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.writes: list[tuple[Path, dict[str, Any], bool]] = []

    async def get(self, path: Path) -> Document | None:
        key = path_str(doc_path(*path))
        row = await self._session.get(DocumentRow, key, with_for_update=True)
        return _to_document(row) if row is not None else None

    def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None:
        self.writes.append((doc_path(*path), data, merge))


class _SqlBatch:
    def __init__(self, store: SqlDocumentStore) -> None:
        self._store = store
        self._writes: list[tuple[Path, dict[str, Any], bool]] = []

    def __len__(self) -> int:
        return len(self._writes)

    def set(self, path: Path, data: dict[str, Any], merge: bool = False) -> None:
        self._writes.append((doc_path(*path), data, merge))

    async def commit(self) -> None:
        writes = list(self._writes)

        async def _apply(session: AsyncSession) -> None:
            for path, data, merge in writes:
                await self._store._write(session, path, data, merge)

        await self._store._retrying(_apply)
        self._writes.clear()
