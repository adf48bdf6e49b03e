"""In-memory stand-in for the async Supabase client.

Supports the subset of the PostgREST query builder the pipeline uses:
select / insert / update / delete with eq, neq, in_, order and limit, plus
`metadata->>key` JSON filters. Every write returns the affected rows, like
PostgREST does with `return=representation`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from postgrest.exceptions import APIError


def _get(row: dict, column: str) -> Any:
    if "->>" in column:
        base, key = column.split("->>", 1)
        value = (row.get(base) or {}).get(key)
        return None if value is None else str(value)
    return row.get(column)


@dataclass
class FakeResponse:
    data: list[dict]
    count: Optional[int] = None


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: list[Callable[[dict], bool]] = []
        self._order: Optional[tuple[str, bool]] = None
        self._limit: Optional[int] = None

    # ── Operations ───────────────────────────────────────────────────────

    def select(self, *columns, **kwargs):
        return self

    def insert(self, rows):
        self._op = "insert"
        self._payload = rows
        return self

    def update(self, values: dict):
        self._op = "update"
        self._payload = values
        return self

    def delete(self):
        self._op = "delete"
        return self

    # ── Filters ──────────────────────────────────────────────────────────

    def eq(self, column: str, value):
        self._filters.append(lambda row: _get(row, column) == value)
        return self

    def neq(self, column: str, value):
        self._filters.append(lambda row: _get(row, column) != value)
        return self

    def in_(self, column: str, values):
        allowed = list(values)
        self._filters.append(lambda row: _get(row, column) in allowed)
        return self

    def order(self, column: str, desc: bool = False, **kwargs):
        self._order = (column, desc)
        return self

    def limit(self, size: int, **kwargs):
        self._limit = size
        return self

    # ── Execution ────────────────────────────────────────────────────────

    def _matching(self) -> list[dict]:
        rows = [r for r in self._db.tables.setdefault(self._table, []) if all(f(r) for f in self._filters)]
        if self._order:
            column, desc = self._order
            rows = sorted(rows, key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        if self._limit is not None:
            rows = rows[: self._limit]
        return rows

    async def execute(self) -> FakeResponse:
        self._db.calls.append((self._table, self._op))
        failure = self._db.take_failure(self._table, self._op)
        if failure is not None:
            raise failure

        table = self._db.tables.setdefault(self._table, [])
        if self._op == "insert":
            rows = self._payload if isinstance(self._payload, list) else [self._payload]
            stored = [copy.deepcopy(r) for r in rows]
            table.extend(stored)
            return FakeResponse(data=copy.deepcopy(stored))

        matching = self._matching()
        if self._op == "select":
            return FakeResponse(data=copy.deepcopy(matching))
        if self._op == "update":
            for row in matching:
                row.update(copy.deepcopy(self._payload))
            return FakeResponse(data=copy.deepcopy(matching))
        if self._op == "delete":
            ids = {id(r) for r in matching}
            self._db.tables[self._table] = [r for r in table if id(r) not in ids]
            return FakeResponse(data=copy.deepcopy(matching))
        raise AssertionError(f"unsupported op {self._op}")


@dataclass
class FakeSupabase:
    tables: dict[str, list[dict]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    failures: dict[tuple[str, str], int] = field(default_factory=dict)
    errors: dict[tuple[str, str], Exception] = field(default_factory=dict)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, times: int = 1, error: Optional[Exception] = None):
        """Make the next `times` executions of `op` on `table` raise `error` (APIError by default)."""
        self.failures[(table, op)] = times
        if error is not None:
            self.errors[(table, op)] = error
        else:
            self.errors.pop((table, op), None)

    def take_failure(self, table: str, op: str) -> Optional[Exception]:
        remaining = self.failures.get((table, op), 0)
        if remaining <= 0:
            return None
        self.failures[(table, op)] = remaining - 1
        if (table, op) in self.errors:
            return self.errors[(table, op)]
        return APIError({"message": f"{op} on {table} failed", "code": "500", "hint": None, "details": None})

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])


async def seed_project(store, **kwargs):
    """Insert a pending project with default inputs."""
    values = {"user_id": "user-1", "title": "Beach ad", "prompt": "Sunny beach commercial"}
    values.update(kwargs)
    return await store.create_project(**values)


async def no_sleep(_seconds: float) -> None:
    return None


class FakeClock:
    """Monotonic clock that advances only when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
