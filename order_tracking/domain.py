"""Core data structures for the order progress tracker."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from .exceptions import RecordFormatError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


class OrderStatus(str, Enum):
    """Coarse lifecycle of a customer order, set manually by company staff."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return {
            OrderStatus.PENDING: "Pending",
            OrderStatus.IN_PROGRESS: "In progress",
            OrderStatus.COMPLETED: "Completed",
            OrderStatus.CANCELLED: "Cancelled",
        }[self]


class StepStatus(str, Enum):
    """Status of a single production step of one order."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def label(self) -> str:
        return {
            StepStatus.PENDING: "Waiting",
            StepStatus.IN_PROGRESS: "In progress",
            StepStatus.COMPLETED: "Done",
        }[self]


def _require(row: Mapping[str, Any], key: str) -> Any:
    try:
        value = row[key]
    except KeyError as exc:
        raise RecordFormatError(f"Record is missing column {key!r}") from exc
    if value is None:
        raise RecordFormatError(f"Column {key!r} must not be null")
    return value


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def _parse_enum(enum_type, value: Any):
    try:
        return enum_type(value)
    except ValueError as exc:
        raise RecordFormatError(
            f"Unknown {enum_type.__name__} value {value!r}"
        ) from exc


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the store."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise RecordFormatError(f"Invalid timestamp {value!r}") from exc


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise RecordFormatError(f"Invalid amount {value!r}") from exc


@dataclass(slots=True)
class Company:
    """A manufacturer and its canonical sequence of production steps."""

    id: str
    user_id: str
    name: str
    email: str
    process_steps: Tuple[str, ...]
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Company":
        steps = row.get("process_steps") or []
        if not isinstance(steps, (list, tuple)):
            raise RecordFormatError("process_steps must be a list of step names")
        return cls(
            id=str(_require(row, "id")),
            user_id=str(_require(row, "user_id")),
            name=str(_require(row, "name")),
            email=str(_require(row, "email")),
            process_steps=tuple(str(step) for step in steps),
            description=_optional_text(row.get("description")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(slots=True)
class CompanyContact:
    """Public contact details of the company that owns an order."""

    name: str
    email: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CompanyContact":
        return cls(name=str(_require(row, "name")), email=str(_require(row, "email")))


@dataclass(slots=True)
class Order:
    """A customer order tracked through the company's production steps."""

    id: str
    company_id: str
    order_number: str
    customer_name: str
    product_description: str = ""
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    total_amount: Optional[Decimal] = None
    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        return cls(
            id=str(_require(row, "id")),
            company_id=str(_require(row, "company_id")),
            order_number=str(_require(row, "order_number")),
            customer_name=str(_require(row, "customer_name")),
            product_description=str(row.get("product_description") or ""),
            customer_email=_optional_text(row.get("customer_email")),
            customer_phone=_optional_text(row.get("customer_phone")),
            total_amount=parse_amount(row.get("total_amount")),
            status=_parse_enum(OrderStatus, _require(row, "status")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(slots=True)
class ProgressStep:
    """Per-order tracking record of one production step."""

    id: str
    order_id: str
    step_name: str
    step_order: int
    status: StepStatus = StepStatus.PENDING
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProgressStep":
        try:
            step_order = int(_require(row, "step_order"))
        except (TypeError, ValueError) as exc:
            raise RecordFormatError("step_order must be an integer") from exc
        return cls(
            id=str(_require(row, "id")),
            order_id=str(_require(row, "order_id")),
            step_name=str(_require(row, "step_name")),
            step_order=step_order,
            status=_parse_enum(StepStatus, _require(row, "status")),
            notes=_optional_text(row.get("notes")),
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


def sort_steps(steps: List[ProgressStep]) -> List[ProgressStep]:
    return sorted(steps, key=lambda step: step.step_order)


@dataclass(slots=True)
class OrderWithProgress:
    """An order together with its progress steps in step order."""

    order: Order
    steps: List[ProgressStep] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OrderWithProgress":
        return cls(
            order=Order.from_row(row),
            steps=sort_steps(
                [ProgressStep.from_row(item) for item in row.get("order_progress") or []]
            ),
        )


@dataclass(slots=True)
class TrackedOrder:
    """Customer-facing view: order, owning company contact and steps."""

    order: Order
    company: Optional[CompanyContact]
    steps: List[ProgressStep] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TrackedOrder":
        company_row = row.get("companies")
        return cls(
            order=Order.from_row(row),
            company=CompanyContact.from_row(company_row) if company_row else None,
            steps=sort_steps(
                [ProgressStep.from_row(item) for item in row.get("order_progress") or []]
            ),
        )


@dataclass(slots=True)
class AuthIdentity:
    """Opaque handle for an identity authenticated by the external provider."""

    user_id: str
    email: str
    access_token: Optional[str] = None


__all__ = [
    "OrderStatus",
    "StepStatus",
    "Company",
    "CompanyContact",
    "Order",
    "ProgressStep",
    "OrderWithProgress",
    "TrackedOrder",
    "AuthIdentity",
    "parse_timestamp",
    "format_timestamp",
    "parse_amount",
    "sort_steps",
    "is_valid_email",
]
