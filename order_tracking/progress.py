"""Progress engine: step state machine and derived order progress."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

from .domain import ProgressStep, StepStatus, sort_steps
from .exceptions import InvalidTransitionError

PRODUCTION_COMPLETE = "production complete"
AWAITING_PRODUCTION = "awaiting production"


class StepAction(str, Enum):
    """The single legal action offered for a step in its current status."""

    START = "start"
    FINISH = "finish"


_TRANSITIONS = {
    StepAction.START: (StepStatus.PENDING, StepStatus.IN_PROGRESS),
    StepAction.FINISH: (StepStatus.IN_PROGRESS, StepStatus.COMPLETED),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_action(step: ProgressStep) -> Optional[StepAction]:
    for action, (source, _) in _TRANSITIONS.items():
        if step.status is source:
            return action
    return None


def transition(step: ProgressStep, action: StepAction, now: Optional[datetime] = None) -> ProgressStep:
    """Apply ``action`` to ``step`` and return the updated copy.

    Starting stamps ``started_at``; finishing stamps ``completed_at`` and
    leaves ``started_at`` as it was.
    """

    source, target = _TRANSITIONS[action]
    if step.status is not source:
        raise InvalidTransitionError(
            f"Cannot {action.value} step {step.step_name!r} while it is {step.status.value}"
        )
    stamp = now or utc_now()
    if action is StepAction.START:
        return replace(step, status=target, started_at=stamp)
    return replace(step, status=target, completed_at=stamp)


def start_step(step: ProgressStep, now: Optional[datetime] = None) -> ProgressStep:
    return transition(step, StepAction.START, now)


def finish_step(step: ProgressStep, now: Optional[datetime] = None) -> ProgressStep:
    return transition(step, StepAction.FINISH, now)


def progress_percentage(steps: Sequence[ProgressStep]) -> int:
    """Share of completed steps, rounded half up to a whole percent."""

    total = len(steps)
    if total == 0:
        return 0
    completed = sum(1 for step in steps if step.status is StepStatus.COMPLETED)
    return (200 * completed + total) // (2 * total)


def current_step(steps: Sequence[ProgressStep]) -> Optional[ProgressStep]:
    # Several in-progress steps are not prevented; the first in step order wins.
    for step in sort_steps(list(steps)):
        if step.status is StepStatus.IN_PROGRESS:
            return step
    return None


def stage_summary(steps: Sequence[ProgressStep]) -> str:
    if steps and all(step.status is StepStatus.COMPLETED for step in steps):
        return PRODUCTION_COMPLETE
    active = current_step(steps)
    if active is not None:
        return f'currently in step "{active.step_name}"'
    return AWAITING_PRODUCTION


@dataclass(slots=True)
class ProgressSummary:
    """Aggregate progress of one order, computed on read."""

    total_steps: int
    completed_steps: int
    in_progress_steps: int
    percentage: int
    summary: str
    current: Optional[ProgressStep] = None

    @property
    def is_complete(self) -> bool:
        return self.total_steps > 0 and self.completed_steps == self.total_steps


def summarize(steps: Sequence[ProgressStep]) -> ProgressSummary:
    return ProgressSummary(
        total_steps=len(steps),
        completed_steps=sum(1 for step in steps if step.status is StepStatus.COMPLETED),
        in_progress_steps=sum(1 for step in steps if step.status is StepStatus.IN_PROGRESS),
        percentage=progress_percentage(steps),
        summary=stage_summary(steps),
        current=current_step(steps),
    )


__all__ = [
    "StepAction",
    "PRODUCTION_COMPLETE",
    "AWAITING_PRODUCTION",
    "next_action",
    "transition",
    "start_step",
    "finish_step",
    "progress_percentage",
    "current_step",
    "stage_summary",
    "ProgressSummary",
    "summarize",
]
