from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from order_tracking.data_access import TrackingRepository, to_row
from order_tracking.domain import Company, Order, OrderStatus, ProgressStep, StepStatus
from order_tracking.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    RecordFormatError,
)


@pytest.fixture
def repo(store):
    return TrackingRepository(store)


@pytest.fixture
def order(repo):
    company = repo.insert_company(
        {"user_id": "u1", "name": "Acme", "email": "a@acme.example", "process_steps": ["A", "B"]}
    )
    return repo.insert_order(
        {
            "company_id": company.id,
            "order_number": "ORD-1",
            "customer_name": "Jane",
            "product_description": "Bracket",
            "total_amount": Decimal("10.50"),
            "status": OrderStatus.PENDING,
        }
    )


def test_to_row_serialises_values():
    stamp = datetime(2024, 1, 2, 3, 4, tzinfo=timezone.utc)
    assert to_row(
        {
            "status": StepStatus.COMPLETED,
            "completed_at": stamp,
            "total_amount": Decimal("1.20"),
            "process_steps": ("A", "B"),
            "notes": None,
        }
    ) == {
        "status": "completed",
        "completed_at": "2024-01-02T03:04:00+00:00",
        "total_amount": "1.20",
        "process_steps": ["A", "B"],
        "notes": None,
    }


def test_order_round_trip_through_store(repo, order):
    loaded = repo.get_order(order.id)
    assert loaded.order_number == "ORD-1"
    assert loaded.total_amount == Decimal("10.50")
    assert loaded.status is OrderStatus.PENDING
    assert loaded.created_at is not None


def test_find_company_by_owner(repo, order):
    assert repo.find_company_by_owner("u1").name == "Acme"
    assert repo.find_company_by_owner("nobody") is None


def test_get_missing_records(repo):
    with pytest.raises(NotFoundError):
        repo.get_order("missing")
    with pytest.raises(NotFoundError):
        repo.get_progress_step("missing")
    with pytest.raises(NotFoundError):
        repo.get_company("missing")
    with pytest.raises(NotFoundError):
        repo.get_order_with_progress_and_company("missing")


def test_composite_read_sorts_steps(repo, order):
    repo.insert_progress_steps(
        [
            {"order_id": order.id, "step_name": "Ship", "step_order": 3, "status": StepStatus.PENDING},
            {"order_id": order.id, "step_name": "Cut", "step_order": 1, "status": StepStatus.PENDING},
            {"order_id": order.id, "step_name": "Weld", "step_order": 2, "status": StepStatus.PENDING},
        ]
    )
    tracked = repo.get_order_with_progress_and_company("ORD-1")
    assert [step.step_name for step in tracked.steps] == ["Cut", "Weld", "Ship"]
    assert tracked.company.name == "Acme"


def test_expected_status_guard(repo, order):
    step = repo.insert_progress_steps(
        [{"order_id": order.id, "step_name": "Cut", "step_order": 1, "status": StepStatus.IN_PROGRESS}]
    )[0]
    with pytest.raises(InvalidTransitionError):
        repo.update_progress_step(
            step.id, {"status": StepStatus.IN_PROGRESS}, expected_status=StepStatus.PENDING
        )
    assert repo.get_progress_step(step.id).status is StepStatus.IN_PROGRESS


def test_expected_status_guard_on_missing_step(repo):
    with pytest.raises(NotFoundError):
        repo.update_progress_step(
            "missing", {"status": StepStatus.IN_PROGRESS}, expected_status=StepStatus.PENDING
        )


def test_list_order_statuses(repo, order):
    repo.update_order_status(order.id, OrderStatus.CANCELLED)
    assert repo.list_order_statuses(order.company_id) == [OrderStatus.CANCELLED]


def test_insert_no_steps_is_a_no_op(repo):
    assert repo.insert_progress_steps([]) == []


# ----------------------------------------------------------------------
# Row validation
# ----------------------------------------------------------------------
def test_step_with_unknown_status_is_rejected():
    with pytest.raises(RecordFormatError):
        ProgressStep.from_row(
            {"id": "s1", "order_id": "o1", "step_name": "Cut", "step_order": 1, "status": "paused"}
        )


def test_order_missing_column_is_rejected():
    with pytest.raises(RecordFormatError):
        Order.from_row({"id": "o1", "company_id": "c1", "customer_name": "Jane", "status": "pending"})


def test_company_steps_must_be_a_list():
    with pytest.raises(RecordFormatError):
        Company.from_row(
            {"id": "c1", "user_id": "u1", "name": "A", "email": "a@a.example", "process_steps": "A,B"}
        )


def test_timestamps_with_zulu_suffix():
    step = ProgressStep.from_row(
        {
            "id": "s1",
            "order_id": "o1",
            "step_name": "Cut",
            "step_order": "2",
            "status": "in_progress",
            "started_at": "2024-02-03T10:00:00Z",
        }
    )
    assert step.step_order == 2
    assert step.started_at == datetime(2024, 2, 3, 10, 0, tzinfo=timezone.utc)
    assert step.completed_at is None
