"""In-memory relational store used by tests and the local demo backend.

It mimics the subset of the hosted query interface the tracker relies on:
equality filters, ordering, limits, unique keys and nested selects over
declared foreign keys.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple
from uuid import uuid4

from .exceptions import DuplicateError, TransportError
from .logger import get_logger

log = get_logger("repository")


@dataclass(frozen=True, slots=True)
class Relation:
    """Foreign key usable in a nested select.

    ``many`` is true when the embedding side holds a list (one-to-many).
    """

    target: str
    local_column: str
    remote_column: str
    many: bool


@dataclass(slots=True)
class TableSchema:
    name: str
    unique: Tuple[Tuple[str, ...], ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=dict)
    relations: Mapping[str, Relation] = field(default_factory=dict)


TRACKER_SCHEMA: Tuple[TableSchema, ...] = (
    TableSchema(
        name="companies",
        unique=(("user_id",),),
        defaults={"description": None, "process_steps": []},
        relations={
            "orders": Relation("orders", "id", "company_id", many=True),
        },
    ),
    TableSchema(
        name="orders",
        unique=(("order_number",),),
        defaults={
            "status": "pending",
            "customer_email": None,
            "customer_phone": None,
            "product_description": None,
            "total_amount": None,
        },
        relations={
            "companies": Relation("companies", "company_id", "id", many=False),
            "order_progress": Relation("order_progress", "id", "order_id", many=True),
        },
    ),
    TableSchema(
        name="order_progress",
        unique=(("order_id", "step_order"),),
        defaults={
            "status": "pending",
            "notes": None,
            "started_at": None,
            "completed_at": None,
        },
        relations={
            "orders": Relation("orders", "order_id", "id", many=False),
        },
    ),
)


def split_columns(columns: str) -> List[str]:
    """Split a select list on top-level commas, keeping nested groups intact."""

    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for char in columns:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise TransportError(f"Unbalanced select list {columns!r}", status=400)
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0:
        raise TransportError(f"Unbalanced select list {columns!r}", status=400)
    parts.append("".join(current).strip())
    return [part for part in parts if part]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryStore:
    """Dict-backed implementation of the store interface."""

    def __init__(self, schema: Iterable[TableSchema] = TRACKER_SCHEMA) -> None:
        self._schema: Dict[str, TableSchema] = {table.name: table for table in schema}
        self._tables: Dict[str, MutableMapping[str, Dict[str, Any]]] = {
            name: {} for name in self._schema
        }
        self._sequence: Dict[str, int] = {}
        self._counter = count()
        self._lock = threading.Lock()

    def with_token(self, access_token: Optional[str]) -> "InMemoryStore":
        # No access control in memory; every identity sees the same tables.
        return self

    def _table(self, table: str) -> MutableMapping[str, Dict[str, Any]]:
        try:
            return self._tables[table]
        except KeyError as exc:
            raise TransportError(f"Relation {table!r} does not exist", status=404) from exc

    # ------------------------------------------------------------------
    # Query interface
    # ------------------------------------------------------------------
    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [
                row
                for row in self._table(table).values()
                if _matches(row, filters)
            ]
            if order is not None:
                rows.sort(
                    key=lambda row: (
                        row.get(order) is not None,
                        row.get(order) if row.get(order) is not None else "",
                        self._sequence[row["id"]],
                    ),
                    reverse=descending,
                )
            else:
                rows.sort(key=lambda row: self._sequence[row["id"]])
            if limit is not None:
                rows = rows[:limit]
            return [self._project(table, row, columns) for row in rows]

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        with self._lock:
            storage = self._table(table)
            schema = self._schema[table]
            now = _utc_now()
            prepared: List[Dict[str, Any]] = []
            for row in rows:
                record = dict(schema.defaults)
                record.update(copy.deepcopy(dict(row)))
                record.setdefault("id", str(uuid4()))
                record.setdefault("created_at", now)
                record.setdefault("updated_at", now)
                if record["id"] in storage:
                    raise DuplicateError(f"Record with id {record['id']!r} already exists")
                prepared.append(record)
            self._check_unique(schema, prepared, exclude=())
            for record in prepared:
                storage[record["id"]] = record
                self._sequence[record["id"]] = next(self._counter)
            log.debug("Inserted %d row(s) into %s", len(prepared), table)
            return [copy.deepcopy(record) for record in prepared]

    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        filters: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        with self._lock:
            storage = self._table(table)
            schema = self._schema[table]
            targets = [row for row in storage.values() if _matches(row, filters)]
            if not targets:
                return []
            now = _utc_now()
            updated = []
            for row in targets:
                record = dict(row)
                record.update(copy.deepcopy(dict(values)))
                record["updated_at"] = now
                updated.append(record)
            self._check_unique(schema, updated, exclude=[row["id"] for row in targets])
            for record in updated:
                storage[record["id"]] = record
            log.debug("Updated %d row(s) in %s", len(updated), table)
            return [copy.deepcopy(record) for record in updated]

    def close(self) -> None:
        """Nothing to release; present for parity with the REST store."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_unique(
        self,
        schema: TableSchema,
        candidates: Sequence[Mapping[str, Any]],
        *,
        exclude: Iterable[str],
    ) -> None:
        excluded = set(exclude)
        existing = [
            row for row in self._tables[schema.name].values() if row["id"] not in excluded
        ]
        for columns in schema.unique:
            seen = {tuple(row.get(column) for column in columns) for row in existing}
            for candidate in candidates:
                key = tuple(candidate.get(column) for column in columns)
                if key in seen:
                    raise DuplicateError(
                        f"Duplicate key value violates unique constraint on "
                        f"{schema.name}({', '.join(columns)})"
                    )
                seen.add(key)

    def _project(self, table: str, row: Mapping[str, Any], columns: str) -> Dict[str, Any]:
        schema = self._schema[table]
        result: Dict[str, Any] = {}
        for part in split_columns(columns):
            if "(" in part:
                name, _, inner = part.partition("(")
                name = name.strip()
                inner = inner[:-1] if inner.endswith(")") else inner
                relation = schema.relations.get(name)
                if relation is None:
                    raise TransportError(
                        f"Could not find a relationship between {table!r} and {name!r}",
                        status=400,
                    )
                related = [
                    self._project(relation.target, candidate, inner or "*")
                    for candidate in sorted(
                        self._tables[relation.target].values(),
                        key=lambda candidate: self._sequence[candidate["id"]],
                    )
                    if candidate.get(relation.remote_column) == row.get(relation.local_column)
                ]
                if relation.many:
                    result[name] = related
                else:
                    result[name] = related[0] if related else None
            elif part == "*":
                result.update(copy.deepcopy(dict(row)))
            else:
                result[part] = copy.deepcopy(row.get(part))
        return result


def _matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    if not filters:
        return True
    return all(row.get(column) == value for column, value in filters.items())


__all__ = ["InMemoryStore", "Relation", "TableSchema", "TRACKER_SCHEMA", "split_columns"]
