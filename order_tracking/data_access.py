"""Typed read/write operations over the three tracker tables."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .domain import (
    Company,
    Order,
    OrderStatus,
    OrderWithProgress,
    ProgressStep,
    StepStatus,
    TrackedOrder,
)
from .exceptions import InvalidTransitionError, NotFoundError, RecordFormatError
from .logger import get_logger

log = get_logger("data_access")

COMPANIES = "companies"
ORDERS = "orders"
ORDER_PROGRESS = "order_progress"

TRACKED_ORDER_COLUMNS = "*,companies(name,email),order_progress(*)"
ORDER_WITH_PROGRESS_COLUMNS = "*,order_progress(*)"


class Store(Protocol):
    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]: ...

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]: ...

    def update(
        self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> List[Dict[str, Any]]: ...

    def with_token(self, access_token: Optional[str]) -> "Store": ...

    def close(self) -> None: ...


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, tuple):
        return [_serialize(item) for item in value]
    return value


def to_row(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: _serialize(value) for key, value in values.items()}


def _single(rows: List[Dict[str, Any]], what: str) -> Dict[str, Any]:
    if not rows:
        raise NotFoundError(f"{what} not found")
    if len(rows) > 1:
        raise RecordFormatError(f"Expected a single {what.lower()}, got {len(rows)}")
    return rows[0]


class TrackingRepository:
    """Maps tracker records onto a store's tables."""

    def __init__(self, store: Store) -> None:
        self._store = store

    @property
    def store(self) -> Store:
        return self._store

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------
    def insert_company(self, values: Mapping[str, Any]) -> Company:
        rows = self._store.insert(COMPANIES, [to_row(values)])
        company = Company.from_row(_single(rows, "Company"))
        log.info("Created company %s for user %s", company.id, company.user_id)
        return company

    def update_company(self, company_id: str, values: Mapping[str, Any]) -> Company:
        rows = self._store.update(COMPANIES, to_row(values), {"id": company_id})
        company = Company.from_row(_single(rows, "Company"))
        log.info("Updated company %s", company.id)
        return company

    def find_company_by_owner(self, user_id: str) -> Optional[Company]:
        rows = self._store.select(COMPANIES, filters={"user_id": user_id}, limit=2)
        if not rows:
            return None
        return Company.from_row(_single(rows, "Company"))

    def get_company(self, company_id: str) -> Company:
        rows = self._store.select(COMPANIES, filters={"id": company_id})
        return Company.from_row(_single(rows, "Company"))

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def insert_order(self, values: Mapping[str, Any]) -> Order:
        rows = self._store.insert(ORDERS, [to_row(values)])
        order = Order.from_row(_single(rows, "Order"))
        log.info("Created order %s (%s)", order.order_number, order.id)
        return order

    def get_order(self, order_id: str) -> Order:
        rows = self._store.select(ORDERS, filters={"id": order_id})
        return Order.from_row(_single(rows, "Order"))

    def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        rows = self._store.update(ORDERS, to_row({"status": status}), {"id": order_id})
        return Order.from_row(_single(rows, "Order"))

    def list_order_statuses(self, company_id: str) -> List[OrderStatus]:
        rows = self._store.select(ORDERS, columns="status", filters={"company_id": company_id})
        statuses = []
        for row in rows:
            try:
                statuses.append(OrderStatus(row.get("status")))
            except ValueError as exc:
                raise RecordFormatError(f"Unknown order status {row.get('status')!r}") from exc
        return statuses

    # ------------------------------------------------------------------
    # Progress steps
    # ------------------------------------------------------------------
    def insert_progress_steps(self, rows: Sequence[Mapping[str, Any]]) -> List[ProgressStep]:
        if not rows:
            return []
        created = self._store.insert(ORDER_PROGRESS, [to_row(row) for row in rows])
        return sorted(
            (ProgressStep.from_row(row) for row in created),
            key=lambda step: step.step_order,
        )

    def get_progress_step(self, step_id: str) -> ProgressStep:
        rows = self._store.select(ORDER_PROGRESS, filters={"id": step_id})
        return ProgressStep.from_row(_single(rows, "Progress step"))

    def update_progress_step(
        self,
        step_id: str,
        values: Mapping[str, Any],
        *,
        expected_status: Optional[StepStatus] = None,
    ) -> ProgressStep:
        """Write ``values`` to one step.

        With ``expected_status`` the write only applies while the stored row
        still has that status; a row that moved meanwhile is reported as an
        invalid transition.
        """

        filters: Dict[str, Any] = {"id": step_id}
        if expected_status is not None:
            filters["status"] = expected_status.value
        rows = self._store.update(ORDER_PROGRESS, to_row(values), filters)
        if not rows and expected_status is not None:
            current = self.get_progress_step(step_id)
            raise InvalidTransitionError(
                f"Step {current.step_name!r} is {current.status.value}, "
                f"expected {expected_status.value}"
            )
        return ProgressStep.from_row(_single(rows, "Progress step"))

    # ------------------------------------------------------------------
    # Composite reads
    # ------------------------------------------------------------------
    def get_order_with_progress_and_company(self, order_number: str) -> TrackedOrder:
        rows = self._store.select(
            ORDERS,
            columns=TRACKED_ORDER_COLUMNS,
            filters={"order_number": order_number},
            limit=2,
        )
        if not rows:
            raise NotFoundError(f"Order {order_number!r} not found")
        return TrackedOrder.from_row(_single(rows, "Order"))

    def list_orders_with_progress(self, company_id: str) -> List[OrderWithProgress]:
        rows = self._store.select(
            ORDERS,
            columns=ORDER_WITH_PROGRESS_COLUMNS,
            filters={"company_id": company_id},
            order="created_at",
            descending=True,
        )
        return [OrderWithProgress.from_row(row) for row in rows]

    def ping(self) -> bool:
        self._store.select(COMPANIES, columns="id", limit=1)
        return True


__all__ = [
    "Store",
    "TrackingRepository",
    "TRACKED_ORDER_COLUMNS",
    "ORDER_WITH_PROGRESS_COLUMNS",
    "to_row",
]
