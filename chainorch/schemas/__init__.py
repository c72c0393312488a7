"""
chainorch.schemas - Data structures shared by the orchestration core.

DeploymentRecord -> Verdict -> EnsureResult
Step -> PlannedStep -> StepOutcome -> RunResult

Lifecycle:
1. Step: declared by callers, tagged with what it produces and needs
2. PlannedStep: a step placed in plan order, possibly marked skipped
3. Verdict: what the change detector saw for a deployment target
4. EnsureResult: what the deploy engine did about it, with the stored record
5. StepOutcome / RunResult: how each planned step ended
"""

from .record import (
    DeploymentRecord,
    RecordKind,
)
from .verdict import (
    Action,
    Classification,
    EnsureResult,
    Verdict,
)
from .step import (
    PlannedStep,
    Step,
)
from .outcome import (
    RunResult,
    StepOutcome,
    StepStatus,
)

__all__ = [
    # Records
    "DeploymentRecord",
    "RecordKind",
    # Verdicts
    "Action",
    "Classification",
    "EnsureResult",
    "Verdict",
    # Steps
    "PlannedStep",
    "Step",
    # Outcomes
    "RunResult",
    "StepOutcome",
    "StepStatus",
]
