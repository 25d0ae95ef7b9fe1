"""Service layer that implements the tracker's use-cases."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from .data_access import Store, TrackingRepository
from .domain import (
    AuthIdentity,
    Company,
    Order,
    OrderStatus,
    OrderWithProgress,
    ProgressStep,
    StepStatus,
    TrackedOrder,
    is_valid_email,
)
from .exceptions import NotFoundError, PartialFailureError, TrackingError, ValidationError
from .logger import get_logger
from .progress import StepAction, transition
from .repository import InMemoryStore

log = get_logger("services")

StepNames = Union[str, Sequence[str]]


def parse_step_names(value: StepNames) -> List[str]:
    """Normalise step names given as one-per-line text or as a list.

    Names are trimmed, blank entries dropped and order preserved.
    """

    if isinstance(value, str):
        candidates = value.splitlines()
    else:
        candidates = list(value or ())
    return [name.strip() for name in candidates if name and name.strip()]


def parse_amount_input(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Order amount {value!r} is not a number") from exc
    if not amount.is_finite():
        raise ValidationError("Order amount must be a finite number")
    if amount < 0:
        raise ValidationError("Order amount must not be negative")
    return amount


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


@dataclass(slots=True)
class DashboardStats:
    """Order counts by coarse status for one company."""

    total_orders: int = 0
    pending_orders: int = 0
    in_progress_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0


class TrackingService:
    """Facade that exposes tracker use-cases to clients."""

    def __init__(self, store: Optional[Store] = None) -> None:
        self.store = store if store is not None else InMemoryStore()
        self.repository = TrackingRepository(self.store)

    def _repo(self, owner: Optional[AuthIdentity]) -> TrackingRepository:
        if owner is None or not owner.access_token:
            return self.repository
        return TrackingRepository(self.store.with_token(owner.access_token))

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------
    def find_company(self, owner: AuthIdentity) -> Optional[Company]:
        return self._repo(owner).find_company_by_owner(owner.user_id)

    def get_company(self, owner: AuthIdentity) -> Company:
        company = self.find_company(owner)
        if company is None:
            raise NotFoundError("Register your company before managing orders")
        return company

    def register_or_update_company(
        self,
        owner: AuthIdentity,
        name: str,
        email: str,
        *,
        ordered_step_names: StepNames,
        description: Optional[str] = None,
    ) -> Company:
        name = _clean(name)
        email = _clean(email)
        steps = parse_step_names(ordered_step_names)
        if not name:
            raise ValidationError("Please enter the company name")
        if not email:
            raise ValidationError("Please enter the company email")
        if not is_valid_email(email):
            raise ValidationError(f"{email!r} is not a valid email address")
        if not steps:
            raise ValidationError("Please enter at least one production step")

        values: Dict[str, Any] = {
            "user_id": owner.user_id,
            "name": name,
            "email": email,
            "description": _clean(description) or None,
            "process_steps": steps,
        }
        repo = self._repo(owner)
        existing = repo.find_company_by_owner(owner.user_id)
        if existing is None:
            return repo.insert_company(values)
        return repo.update_company(existing.id, values)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def create_order(
        self,
        owner: AuthIdentity,
        order_number: str,
        customer_name: str,
        product_description: str,
        *,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        total_amount: Any = None,
    ) -> OrderWithProgress:
        """Create an order and snapshot the company's current steps onto it.

        The order and its steps are two writes. When the second one fails the
        order stays and :class:`PartialFailureError` is raised.
        """

        repo = self._repo(owner)
        company = repo.find_company_by_owner(owner.user_id)
        if company is None:
            raise NotFoundError("Register your company before creating orders")

        order_number = _clean(order_number)
        customer_name = _clean(customer_name)
        product_description = _clean(product_description)
        customer_email = _clean(customer_email) or None
        if not order_number:
            raise ValidationError("Please enter the order number")
        if not customer_name:
            raise ValidationError("Please enter the customer name")
        if not product_description:
            raise ValidationError("Please describe the ordered product")
        if customer_email is not None and not is_valid_email(customer_email):
            raise ValidationError(f"{customer_email!r} is not a valid email address")
        amount = parse_amount_input(total_amount)
        if not company.process_steps:
            raise ValidationError("Define the company's production steps first")

        order = repo.insert_order(
            {
                "company_id": company.id,
                "order_number": order_number,
                "customer_name": customer_name,
                "customer_email": customer_email,
                "customer_phone": _clean(customer_phone) or None,
                "product_description": product_description,
                "total_amount": amount,
                "status": OrderStatus.PENDING,
            }
        )
        rows = [
            {
                "order_id": order.id,
                "step_name": step_name,
                "step_order": index,
                "status": StepStatus.PENDING,
            }
            for index, step_name in enumerate(company.process_steps, start=1)
        ]
        try:
            steps = repo.insert_progress_steps(rows)
        except TrackingError as exc:
            log.error(
                "Order %s created but progress initialisation failed: %s",
                order.order_number,
                exc,
            )
            raise PartialFailureError(
                f"Order {order.order_number} was created, but its progress "
                f"steps could not be initialised: {exc}",
                order=order,
                cause=exc,
            ) from exc
        return OrderWithProgress(order=order, steps=steps)

    def update_order_status(
        self, owner: AuthIdentity, order_id: str, status: Union[OrderStatus, str]
    ) -> Order:
        try:
            status = OrderStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown order status {status!r}") from exc
        repo = self._repo(owner)
        company = self.get_company(owner)
        order = repo.get_order(order_id)
        if order.company_id != company.id:
            raise NotFoundError("Order not found")
        updated = repo.update_order_status(order.id, status)
        log.info("Order %s status set to %s", order.order_number, status.value)
        return updated

    def list_orders(self, owner: AuthIdentity) -> List[OrderWithProgress]:
        company = self.get_company(owner)
        return self._repo(owner).list_orders_with_progress(company.id)

    def dashboard_stats(self, owner: AuthIdentity) -> DashboardStats:
        company = self.find_company(owner)
        if company is None:
            return DashboardStats()
        statuses = self._repo(owner).list_order_statuses(company.id)
        return DashboardStats(
            total_orders=len(statuses),
            pending_orders=statuses.count(OrderStatus.PENDING),
            in_progress_orders=statuses.count(OrderStatus.IN_PROGRESS),
            completed_orders=statuses.count(OrderStatus.COMPLETED),
            cancelled_orders=statuses.count(OrderStatus.CANCELLED),
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def _owned_step(self, owner: AuthIdentity, step_id: str) -> ProgressStep:
        repo = self._repo(owner)
        company = self.get_company(owner)
        step = repo.get_progress_step(step_id)
        order = repo.get_order(step.order_id)
        if order.company_id != company.id:
            raise NotFoundError("Progress step not found")
        return step

    def advance_step(
        self,
        owner: AuthIdentity,
        step_id: str,
        action: Union[StepAction, str],
        *,
        now: Optional[datetime] = None,
    ) -> ProgressStep:
        try:
            action = StepAction(action)
        except ValueError as exc:
            raise ValidationError(f"Unknown step action {action!r}") from exc
        step = self._owned_step(owner, step_id)
        updated = transition(step, action, now)
        stamp_column = "started_at" if action is StepAction.START else "completed_at"
        persisted = self._repo(owner).update_progress_step(
            step.id,
            {"status": updated.status, stamp_column: getattr(updated, stamp_column)},
            expected_status=step.status,
        )
        log.info(
            "Step %r of order %s moved to %s",
            persisted.step_name,
            persisted.order_id,
            persisted.status.value,
        )
        return persisted

    def start_step(
        self, owner: AuthIdentity, step_id: str, *, now: Optional[datetime] = None
    ) -> ProgressStep:
        return self.advance_step(owner, step_id, StepAction.START, now=now)

    def finish_step(
        self, owner: AuthIdentity, step_id: str, *, now: Optional[datetime] = None
    ) -> ProgressStep:
        return self.advance_step(owner, step_id, StepAction.FINISH, now=now)

    def update_step_notes(
        self, owner: AuthIdentity, step_id: str, notes: Optional[str]
    ) -> ProgressStep:
        step = self._owned_step(owner, step_id)
        return self._repo(owner).update_progress_step(
            step.id, {"notes": _clean(notes) or None}
        )

    # ------------------------------------------------------------------
    # Customer lookup
    # ------------------------------------------------------------------
    def lookup_order(self, order_number: str) -> TrackedOrder:
        order_number = _clean(order_number)
        if not order_number:
            raise ValidationError("Please enter an order number")
        return self.repository.get_order_with_progress_and_company(order_number)

    def check_connection(self) -> bool:
        return self.repository.ping()


__all__ = [
    "TrackingService",
    "DashboardStats",
    "parse_step_names",
    "parse_amount_input",
]
