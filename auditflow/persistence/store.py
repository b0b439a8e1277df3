from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Any, AsyncIterator, Mapping, Protocol
from uuid import uuid4

from sqlalchemy import MetaData, Table, bindparam, func, insert, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from auditflow.core.config import Settings
from auditflow.core.errors import StoreError, StoreUnavailableError
from auditflow.domain.models import Base
from auditflow.persistence.db import build_engine, build_session_factory


logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    # Generic record operations the quota/job services need from the remote store.
    async def select_one(
        self, table: str, *, filters: Mapping[str, Any]
    ) -> dict[str, Any] | None: ...

    async def select_many(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        order_by: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, *, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> dict[str, Any] | None: ...

    async def count(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        since_column: str | None = None,
        since: datetime | None = None,
    ) -> int: ...

    async def call_procedure(self, name: str, args: Mapping[str, Any]) -> Any: ...


class SqlRecordStore:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        *,
        engine: AsyncEngine | None = None,
        metadata: MetaData | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._metadata = metadata or Base.metadata

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    async def close(self) -> None:
        # Dispose the owned engine so pooled connections close on shutdown.
        if self._engine is not None:
            await self._engine.dispose()

    def _table(self, name: str) -> Table:
        table = self._metadata.tables.get(name)
        if table is None:
            raise StoreError(f"Unknown table {name}")
        return table

    def _where(self, table: Table, filters: Mapping[str, Any]) -> list[Any]:
        clauses = []
        for column, value in filters.items():
            if column not in table.c:
                raise StoreError(f"Unknown column {table.name}.{column}")
            clauses.append(table.c[column] == value)
        return clauses

    @asynccontextmanager
    async def _translate_errors(self, operation: str, target: str) -> AsyncIterator[None]:
        # Separate unreachable-store failures from query failures so reads can degrade.
        try:
            yield
        except (InterfaceError, OSError) as exc:
            raise StoreUnavailableError(f"{operation} {target}: store unreachable") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StoreUnavailableError(f"{operation} {target}: connection lost") from exc
            raise StoreError(f"{operation} {target} failed") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{operation} {target} failed") from exc

    async def select_one(
        self, table: str, *, filters: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        tbl = self._table(table)
        stmt = select(tbl).where(*self._where(tbl, filters)).limit(1)
        async with self._translate_errors("select_one", table):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.mappings().first()
        return dict(row) if row is not None else None

    async def select_many(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        order_by: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        tbl = self._table(table)
        stmt = select(tbl).where(*self._where(tbl, filters))
        if order_by is not None:
            column = tbl.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        async with self._translate_errors("select_many", table):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.mappings().all()
        return [dict(row) for row in rows]

    async def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]:
        tbl = self._table(table)
        payload = dict(values)
        if "id" in tbl.c and not payload.get("id"):
            payload["id"] = str(uuid4())
        stmt = insert(tbl).values(**payload).returning(*tbl.c)
        async with self._translate_errors("insert", table):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    row = result.mappings().one()
        return dict(row)

    async def update(
        self, table: str, *, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        tbl = self._table(table)
        payload = dict(values)
        if "updated_at" in tbl.c:
            payload.setdefault("updated_at", func.now())
        stmt = (
            update(tbl)
            .where(*self._where(tbl, filters))
            .values(**payload)
            .returning(*tbl.c)
        )
        async with self._translate_errors("update", table):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    row = result.mappings().first()
        return dict(row) if row is not None else None

    async def count(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        since_column: str | None = None,
        since: datetime | None = None,
    ) -> int:
        tbl = self._table(table)
        clauses = self._where(tbl, filters)
        if since_column is not None and since is not None:
            clauses.append(tbl.c[since_column] >= since)
        stmt = select(func.count()).select_from(tbl).where(*clauses)
        async with self._translate_errors("count", table):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                value = result.scalar()
        return int(value or 0)

    async def call_procedure(self, name: str, args: Mapping[str, Any]) -> Any:
        # Stored procedures take positional arguments in the order given.
        procedure = getattr(func, name)
        stmt = select(procedure(*(bindparam(key, value) for key, value in args.items())))
        async with self._translate_errors("call_procedure", name):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    value = result.scalar()
        return value


def build_record_store(settings: Settings) -> SqlRecordStore | None:
    # Leave the store unset when no DSN is configured; services degrade explicitly.
    engine = build_engine(settings)
    if engine is None:
        logger.warning("record_store_not_configured")
        return None
    return SqlRecordStore(build_session_factory(engine), engine=engine)
