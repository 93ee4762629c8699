"""Row API over the Y-Chat database.

Components never touch SQLAlchemy sessions directly. They go through a Client
bound to one identity, build a Query per table and await one of its terminal
operations. Every committed mutation is published on the change feed.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Iterable

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import ConflictError, RowNotFound, StoreError
from .models import TABLES, ReadStatus
from .policies import Identity, check_delete, check_insert, check_update, load_identity, read_clause
from .procedures import PROCEDURES
from .realtime import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

EMBEDS = {("messages", "read_status")}


def row_to_dict(obj: Any) -> dict:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


@asynccontextmanager
async def _transaction(factory: async_sessionmaker, table: str):
    async with factory() as db:
        try:
            yield db
        except IntegrityError as exc:
            await db.rollback()
            raise ConflictError(table) from exc
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Store operation on %s failed: %s", table, exc)
            raise StoreError(f"{table}: {exc}") from exc


class Store:
    def __init__(self, session_factory: async_sessionmaker | None = None, feed: ChangeFeed | None = None) -> None:
        if session_factory is None:
            from .db import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.feed = feed or ChangeFeed()

    def client(self, user_id: str | None = None) -> "Client":
        return Client(self, user_id)

    async def publish(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            await self.feed.publish(event)


class Client:
    """The store as seen by one identity (None for an anonymous caller)."""

    def __init__(self, store: Store, user_id: str | None) -> None:
        self.store = store
        self.user_id = user_id

    def table(self, name: str) -> "Query":
        return Query(self, name)

    async def rpc(self, name: str, **params: Any) -> list[dict]:
        procedure = PROCEDURES.get(name)
        if procedure is None:
            raise StoreError(f"Unknown procedure {name}")
        async with _transaction(self.store.session_factory, name) as db:
            identity = await load_identity(db, self.user_id)
            try:
                return await procedure(db, identity, **params)
            except TypeError as exc:
                raise StoreError(f"Bad arguments for {name}: {exc}") from exc

    def subscribe(self, channel: str, callback, **options) -> Subscription:
        return self.store.feed.subscribe(channel, callback, **options)


class Query:
    def __init__(self, client: Client, table: str) -> None:
        if table not in TABLES:
            raise StoreError(f"Unknown table {table}")
        self._client = client
        self._table = table
        self._model = TABLES[table]
        self._column_names = {attr.key for attr in inspect(self._model).column_attrs}
        self._columns: tuple[str, ...] = ()
        self._embed: tuple[str, ...] = ()
        self._filters: list = []
        self._order: list = []
        self._limit: int | None = None

    # -- builders --------------------------------------------------------

    def _column(self, name: str):
        if name not in self._column_names:
            raise StoreError(f"Unknown column {self._table}.{name}")
        return getattr(self._model, name)

    def select(self, *columns: str, embed: Iterable[str] = ()) -> "Query":
        for name in columns:
            self._column(name)
        for relation in embed:
            if (self._table, relation) not in EMBEDS:
                raise StoreError(f"{self._table} cannot embed {relation}")
        self._columns = tuple(columns)
        self._embed = tuple(embed)
        return self

    def eq(self, column: str, value: Any) -> "Query":
        self._filters.append(self._column(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "Query":
        self._filters.append(self._column(column) != value)
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "Query":
        self._filters.append(self._column(column).in_(list(values)))
        return self

    def is_(self, column: str, value: Any) -> "Query":
        self._filters.append(self._column(column).is_(value))
        return self

    def gt(self, column: str, value: Any) -> "Query":
        self._filters.append(self._column(column) > value)
        return self

    def lt(self, column: str, value: Any) -> "Query":
        self._filters.append(self._column(column) < value)
        return self

    def order(self, column: str, desc: bool = False) -> "Query":
        col = self._column(column)
        self._order.append(col.desc() if desc else col.asc())
        return self

    def limit(self, count: int) -> "Query":
        self._limit = count
        return self

    # -- helpers ---------------------------------------------------------

    def _where(self, identity: Identity) -> list:
        clauses = list(self._filters)
        policy = read_clause(self._table, identity)
        if policy is not None:
            clauses.append(policy)
        return clauses

    def _project(self, row: dict) -> dict:
        if not self._columns:
            return row
        return {name: row[name] for name in self._columns + self._embed}

    def _check_values(self, values: dict) -> None:
        unknown = set(values) - self._column_names
        if unknown:
            raise StoreError(f"Unknown column(s) for {self._table}: {', '.join(sorted(unknown))}")

    async def _select(self, db: AsyncSession, identity: Identity, limit: int | None) -> list:
        stmt = select(self._model).where(*self._where(identity))
        if self._order:
            stmt = stmt.order_by(*self._order)
        if limit is not None:
            stmt = stmt.limit(limit)
        res = await db.execute(stmt)
        return list(res.scalars().all())

    async def _embed_read_status(self, db: AsyncSession, identity: Identity, rows: list[dict]) -> None:
        ids = [row["id"] for row in rows]
        by_message: dict[int, list[dict]] = {message_id: [] for message_id in ids}
        if ids:
            stmt = select(ReadStatus).where(ReadStatus.message_id.in_(ids))
            policy = read_clause("read_status", identity)
            if policy is not None:
                stmt = stmt.where(policy)
            res = await db.execute(stmt)
            for receipt in res.scalars().all():
                by_message[receipt.message_id].append(row_to_dict(receipt))
        for row in rows:
            row["read_status"] = by_message.get(row["id"], [])

    async def _fetch(self, limit: int | None) -> list[dict]:
        async with _transaction(self._client.store.session_factory, self._table) as db:
            identity = await load_identity(db, self._client.user_id)
            objs = await self._select(db, identity, limit)
            rows = [row_to_dict(obj) for obj in objs]
            if "read_status" in self._embed:
                await self._embed_read_status(db, identity, rows)
            return [self._project(row) for row in rows]

    # -- terminal operations ---------------------------------------------

    async def execute(self) -> list[dict]:
        return await self._fetch(self._limit)

    async def maybe_single(self) -> dict | None:
        rows = await self._fetch(2)
        if len(rows) > 1:
            raise StoreError(f"Expected a single {self._table} row, got several", code="multiple_rows")
        return rows[0] if rows else None

    async def single(self) -> dict:
        row = await self.maybe_single()
        if row is None:
            raise RowNotFound(self._table)
        return row

    async def count(self) -> int:
        async with _transaction(self._client.store.session_factory, self._table) as db:
            identity = await load_identity(db, self._client.user_id)
            stmt = select(func.count()).select_from(self._model).where(*self._where(identity))
            res = await db.execute(stmt)
            return int(res.scalar() or 0)

    async def insert(self, rows: dict | list[dict]) -> list[dict]:
        if isinstance(rows, dict):
            rows = [rows]
        for row in rows:
            self._check_values(row)
        async with _transaction(self._client.store.session_factory, self._table) as db:
            identity = await load_identity(db, self._client.user_id)
            objs = []
            for row in rows:
                await check_insert(db, self._table, row, identity)
                obj = self._model(**row)
                db.add(obj)
                objs.append(obj)
            await db.flush()
            await db.commit()
            inserted = [row_to_dict(obj) for obj in objs]
        await self._client.store.publish(ChangeEvent(self._table, "INSERT", new=row) for row in inserted)
        return inserted

    async def update(self, values: dict) -> list[dict]:
        self._check_values(values)
        async with _transaction(self._client.store.session_factory, self._table) as db:
            identity = await load_identity(db, self._client.user_id)
            objs = await self._select(db, identity, None)
            changes = []
            for obj in objs:
                old = row_to_dict(obj)
                await check_update(db, self._table, old, values, identity)
                for key, value in values.items():
                    setattr(obj, key, value)
                changes.append((old, obj))
            await db.commit()
            events = [ChangeEvent(self._table, "UPDATE", new=row_to_dict(obj), old=old) for old, obj in changes]
        await self._client.store.publish(events)
        return [event.new for event in events]

    async def upsert(self, row: dict) -> dict:
        self._check_values(row)
        keys = [col.key for col in inspect(self._model).primary_key]
        if any(row.get(key) is None for key in keys):
            return (await self.insert(row))[0]
        existing = self._client.table(self._table)
        for key in keys:
            existing.eq(key, row[key])
        if await existing.maybe_single() is None:
            return (await self.insert(row))[0]
        target = self._client.table(self._table)
        for key in keys:
            target.eq(key, row[key])
        updated = await target.update({k: v for k, v in row.items() if k not in keys})
        return updated[0]

    async def delete(self) -> list[dict]:
        async with _transaction(self._client.store.session_factory, self._table) as db:
            identity = await load_identity(db, self._client.user_id)
            objs = await self._select(db, identity, None)
            removed = []
            for obj in objs:
                old = row_to_dict(obj)
                await check_delete(db, self._table, old, identity)
                await db.delete(obj)
                removed.append(old)
            await db.commit()
        await self._client.store.publish(ChangeEvent(self._table, "DELETE", old=row) for row in removed)
        return removed
