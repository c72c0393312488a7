"""
Outcome schemas - tracking step outcomes within an orchestration run.

StepOutcome tracks the result of executing a single planned step.
RunResult tracks the whole run: one outcome per planned step, in plan order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class StepStatus(str, Enum):
    """Status of a step execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepOutcome:
    """
    The outcome of executing a single step within a run.

    Attributes:
        step: Name of the step
        status: Execution status (pending, running, completed, failed, skipped)
        started_at: When step execution started (null if pending)
        completed_at: When step execution completed (null if pending/running)
        error: Error details if status is failed
    """
    step: str
    status: StepStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None

    def __post_init__(self):
        # Validate status-dependent fields
        if self.status == StepStatus.PENDING:
            if self.started_at is not None or self.completed_at is not None:
                raise ValueError("Pending steps should not have started_at or completed_at")
        elif self.status == StepStatus.RUNNING:
            if self.started_at is None:
                raise ValueError("Running steps must have started_at")
            if self.completed_at is not None:
                raise ValueError("Running steps should not have completed_at")
        elif self.status in (StepStatus.COMPLETED, StepStatus.FAILED):
            if self.started_at is None or self.completed_at is None:
                raise ValueError(f"{self.status.value} steps must have started_at and completed_at")
        if self.status == StepStatus.FAILED and not self.error:
            raise ValueError("Failed steps must carry error details")

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "step": self.step,
            "status": self.status.value,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class RunResult:
    """
    Result of an orchestration run.

    Attributes:
        network: Name of the target network
        started_at: When the run started
        completed_at: When the run finished (successfully or not)
        outcomes: One outcome per planned step, in plan order
        error: The exception that aborted the run, if any
    """
    network: str
    started_at: datetime
    completed_at: datetime
    outcomes: tuple[StepOutcome, ...] = field(default_factory=tuple)
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def failed_step(self) -> Optional[str]:
        for outcome in self.outcomes:
            if outcome.status == StepStatus.FAILED:
                return outcome.step
        return None

    def get_outcome(self, step: str) -> Optional[StepOutcome]:
        """Get the outcome for a specific step."""
        for outcome in self.outcomes:
            if outcome.step == step:
                return outcome
        return None

    def steps_with(self, status: StepStatus) -> tuple[str, ...]:
        return tuple(o.step for o in self.outcomes if o.status == status)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "network": self.network,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "success": self.success,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
        if self.failed_step is not None:
            result["failed_step"] = self.failed_step
        return result
