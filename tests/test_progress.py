from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

import pytest

from order_tracking.domain import ProgressStep, StepStatus
from order_tracking.exceptions import InvalidTransitionError
from order_tracking.progress import (
    AWAITING_PRODUCTION,
    PRODUCTION_COMPLETE,
    StepAction,
    current_step,
    finish_step,
    next_action,
    progress_percentage,
    stage_summary,
    start_step,
    summarize,
)

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_step(order: int, status: StepStatus = StepStatus.PENDING, name: str = "") -> ProgressStep:
    return ProgressStep(
        id=f"step-{order}",
        order_id="order-1",
        step_name=name or f"Step {order}",
        step_order=order,
        status=status,
    )


def make_steps(*statuses: StepStatus) -> list:
    return [make_step(index, status) for index, status in enumerate(statuses, start=1)]


def test_percentage_is_zero_without_steps():
    assert progress_percentage([]) == 0


@pytest.mark.parametrize(
    "total, completed, expected",
    [(3, 0, 0), (3, 1, 33), (3, 2, 67), (2, 1, 50), (8, 1, 13), (4, 4, 100)],
)
def test_percentage_examples(total, completed, expected):
    steps = [make_step(i, StepStatus.COMPLETED) for i in range(1, completed + 1)]
    steps += [make_step(i) for i in range(completed + 1, total + 1)]
    assert progress_percentage(steps) == expected


def test_percentage_matches_half_up_rounding_for_small_orders():
    for total in range(1, 13):
        for completed in range(total + 1):
            steps = [make_step(i, StepStatus.COMPLETED) for i in range(1, completed + 1)]
            steps += [make_step(i, StepStatus.IN_PROGRESS) for i in range(completed + 1, total + 1)]
            expected = int(
                (Decimal(100 * completed) / Decimal(total)).quantize(
                    Decimal("1"), rounding=ROUND_HALF_UP
                )
            )
            assert progress_percentage(steps) == expected


def test_start_stamps_started_at_only():
    started = start_step(make_step(1), now=T0)
    assert started.status is StepStatus.IN_PROGRESS
    assert started.started_at == T0
    assert started.completed_at is None


def test_finish_keeps_started_at():
    started = start_step(make_step(1), now=T0)
    finished = finish_step(started, now=T0 + timedelta(hours=3))
    assert finished.status is StepStatus.COMPLETED
    assert finished.started_at == T0
    assert finished.completed_at == T0 + timedelta(hours=3)


def test_transition_returns_copy():
    step = make_step(1)
    start_step(step, now=T0)
    assert step.status is StepStatus.PENDING
    assert step.started_at is None


@pytest.mark.parametrize("status", [StepStatus.IN_PROGRESS, StepStatus.COMPLETED])
def test_cannot_start_twice(status):
    with pytest.raises(InvalidTransitionError):
        start_step(make_step(1, status))


@pytest.mark.parametrize("status", [StepStatus.PENDING, StepStatus.COMPLETED])
def test_can_only_finish_running_step(status):
    with pytest.raises(InvalidTransitionError):
        finish_step(make_step(1, status))


def test_next_action_offers_one_legal_action():
    assert next_action(make_step(1)) is StepAction.START
    assert next_action(make_step(1, StepStatus.IN_PROGRESS)) is StepAction.FINISH
    assert next_action(make_step(1, StepStatus.COMPLETED)) is None


def test_summary_names_running_step():
    steps = [
        make_step(1, StepStatus.COMPLETED, "Cutting"),
        make_step(2, StepStatus.IN_PROGRESS, "Welding"),
        make_step(3, StepStatus.PENDING, "Painting"),
    ]
    assert stage_summary(steps) == 'currently in step "Welding"'


def test_summary_when_everything_is_done():
    steps = make_steps(StepStatus.COMPLETED, StepStatus.COMPLETED)
    assert stage_summary(steps) == PRODUCTION_COMPLETE


def test_summary_when_nothing_started():
    assert stage_summary(make_steps(StepStatus.PENDING, StepStatus.PENDING)) == AWAITING_PRODUCTION
    assert stage_summary([]) == AWAITING_PRODUCTION


def test_summary_with_completed_and_pending_but_nothing_running():
    steps = make_steps(StepStatus.COMPLETED, StepStatus.PENDING)
    assert stage_summary(steps) == AWAITING_PRODUCTION


def test_first_running_step_in_step_order_wins():
    steps = [
        make_step(3, StepStatus.IN_PROGRESS, "Painting"),
        make_step(1, StepStatus.COMPLETED, "Cutting"),
        make_step(2, StepStatus.IN_PROGRESS, "Welding"),
    ]
    assert current_step(steps).step_name == "Welding"
    assert stage_summary(steps) == 'currently in step "Welding"'


def test_summarize_bundles_counts():
    summary = summarize(
        make_steps(StepStatus.COMPLETED, StepStatus.IN_PROGRESS, StepStatus.PENDING, StepStatus.PENDING)
    )
    assert summary.total_steps == 4
    assert summary.completed_steps == 1
    assert summary.in_progress_steps == 1
    assert summary.percentage == 25
    assert summary.current.step_order == 2
    assert not summary.is_complete


def test_summarize_empty_order():
    summary = summarize([])
    assert summary.percentage == 0
    assert summary.summary == AWAITING_PRODUCTION
    assert summary.current is None
    assert not summary.is_complete
