from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import uuid4

from auditflow.core.errors import StoreError, StoreUnavailableError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRecordStore:
    # Dict-backed RecordStore for service tests; mirrors SqlRecordStore semantics.
    def __init__(self, *, procedure_available: bool = True) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "subscribers": [],
            "audits": [],
            "profiles": [],
        }
        self.procedure_available = procedure_available
        self.procedure_calls: list[tuple[str, dict[str, Any]]] = []
        self.unavailable = False
        # Inserts into these urls fail, to simulate partial batch failures.
        self.failing_urls: set[str] = set()
        # Reads from these tables fail with a non-transport store error.
        self.failing_reads: set[str] = set()
        self._clock = 0

    def seed(self, table: str, **values: Any) -> dict[str, Any]:
        record = {"id": str(uuid4()), "created_at": self._tick(), **values}
        self.tables[table].append(record)
        return record

    def _tick(self) -> datetime:
        # Strictly increasing timestamps keep ordering deterministic.
        self._clock += 1
        return datetime(2026, 1, 1, tzinfo=timezone.utc).replace(microsecond=self._clock)

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailableError("store unreachable")

    def _matches(self, record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
        return all(record.get(key) == value for key, value in filters.items())

    async def select_one(self, table: str, *, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        self._check()
        if table in self.failing_reads:
            raise StoreError(f"select {table} failed")
        for record in self.tables[table]:
            if self._matches(record, filters):
                return dict(record)
        return None

    async def select_many(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        order_by: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        self._check()
        rows = [dict(record) for record in self.tables[table] if self._matches(record, filters)]
        if order_by is not None:
            rows.sort(key=lambda row: row.get(order_by), reverse=descending)
        return rows

    async def insert(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]:
        self._check()
        if values.get("url") in self.failing_urls:
            raise StoreError(f"insert {table} failed")
        record = {"id": str(uuid4()), "created_at": self._tick(), **values}
        self.tables[table].append(record)
        return dict(record)

    async def update(
        self, table: str, *, filters: Mapping[str, Any], values: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        self._check()
        for record in self.tables[table]:
            if self._matches(record, filters):
                record.update(values)
                return dict(record)
        return None

    async def count(
        self,
        table: str,
        *,
        filters: Mapping[str, Any],
        since_column: str | None = None,
        since: datetime | None = None,
    ) -> int:
        self._check()
        total = 0
        for record in self.tables[table]:
            if not self._matches(record, filters):
                continue
            if since_column is not None and since is not None and record[since_column] < since:
                continue
            total += 1
        return total

    async def call_procedure(self, name: str, args: Mapping[str, Any]) -> Any:
        self._check()
        self.procedure_calls.append((name, dict(args)))
        if not self.procedure_available:
            raise StoreError(f"function {name} does not exist")
        for record in self.tables["subscribers"]:
            if record.get("email") == args["user_email"]:
                record["quota_used"] = int(record.get("quota_used") or 0) + args["increment_by"]
                record["updated_at"] = _utc_now()
                return record["quota_used"]
        return None

    def subscriber(self, email: str) -> dict[str, Any] | None:
        for record in self.tables["subscribers"]:
            if record.get("email") == email:
                return record
        return None
