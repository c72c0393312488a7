"""
Orchestrator - Run a tag request end to end.

The Orchestrator implements:
- Planning through the Scheduler (all planning errors surface before any
  step action runs)
- Strictly sequential execution in plan order; later steps read records
  written by earlier ones through the shared store
- Fail-fast: the first failing step aborts the rest of the plan
- Step outcome tracking (completed / skipped / failed / pending)

Execution flow:
1. Plan the requested tags for the target environment
2. For each planned step:
   a. Skipped steps log the skip and record a SKIPPED outcome
   b. Otherwise run the action with a StepContext, record COMPLETED
   c. On an exception record FAILED, mark the rest PENDING and stop
3. Return a RunResult; its error is the exception that stopped the run

Nothing is rolled back on failure: every engine protocol is re-entrant, so
re-running the same request resumes from the persisted records.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from chainorch.engine import DeployEngine
from chainorch.network import TargetEnvironment
from chainorch.record_store import RecordStore
from chainorch.scheduler import Scheduler
from chainorch.schemas import (
    DeploymentRecord,
    EnsureResult,
    PlannedStep,
    RunResult,
    StepOutcome,
    StepStatus,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class StepContext:
    """
    What a step action receives.

    Attributes:
        engine: Deploy engine for ensure/adopt/classify
        environment: Target environment of the run
        step: Name of the running step
        outputs: Return values of steps completed earlier in this run
    """
    engine: DeployEngine
    environment: TargetEnvironment
    step: str = ""
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def store(self) -> RecordStore:
        return self.engine.store

    def ensure(self, name: str, **kwargs: Any) -> EnsureResult:
        return self.engine.ensure(name, **kwargs)

    def record(self, name: str) -> DeploymentRecord:
        """A record written by an earlier step (RecordNotFound if missing)."""
        return self.engine.store.get(name)


class Orchestrator:
    """
    Executes planned steps against one environment.

    Usage:
        orchestrator = Orchestrator(Scheduler(steps), engine, environment)
        result = orchestrator.run(["PriceOracle"])
        if not result.success:
            print(result.failed_step, result.error)
    """

    def __init__(
        self,
        scheduler: Scheduler,
        engine: DeployEngine,
        environment: TargetEnvironment,
    ):
        self._scheduler = scheduler
        self._engine = engine
        self._environment = environment

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def plan(self, requested_tags: Optional[Iterable[str]] = None) -> list[PlannedStep]:
        """Plan requested tags for this orchestrator's environment."""
        return self._scheduler.plan(requested_tags, self._environment)

    def run(self, requested_tags: Optional[Iterable[str]] = None) -> RunResult:
        """
        Plan and execute requested tags.

        Args:
            requested_tags: Tags to satisfy; None or empty runs every step

        Returns:
            RunResult with one outcome per planned step

        Raises:
            CyclicDependency, UnknownTag: Planning failed; no step ran
        """
        plan = self.plan(requested_tags)
        started_at = _utcnow()
        context = StepContext(engine=self._engine, environment=self._environment)
        outcomes: list[StepOutcome] = []
        error: Optional[BaseException] = None

        logger.info(
            f"Running {len(plan)} step(s) on {self._environment.name}",
            extra={"event": "run.started", "metadata": {"steps": [p.name for p in plan]}},
        )

        for planned in plan:
            if error is not None:
                outcomes.append(StepOutcome(step=planned.name, status=StepStatus.PENDING))
                continue

            if planned.skipped:
                planned.run(context)
                outcomes.append(StepOutcome(step=planned.name, status=StepStatus.SKIPPED))
                continue

            step_started = _utcnow()
            context.step = planned.name
            logger.info(f"Step {planned.name}", extra={"step": planned.name, "event": "step.started"})
            try:
                output = planned.run(context)
            except Exception as e:
                error = e
                logger.error(
                    f"Step {planned.name} failed: {e}",
                    exc_info=True,
                    extra={"step": planned.name, "event": "step.failed"},
                )
                outcomes.append(StepOutcome(
                    step=planned.name,
                    status=StepStatus.FAILED,
                    started_at=step_started,
                    completed_at=_utcnow(),
                    error={"type": type(e).__name__, "message": str(e)},
                ))
                continue

            context.outputs[planned.name] = output
            outcomes.append(StepOutcome(
                step=planned.name,
                status=StepStatus.COMPLETED,
                started_at=step_started,
                completed_at=_utcnow(),
            ))

        result = RunResult(
            network=self._environment.name,
            started_at=started_at,
            completed_at=_utcnow(),
            outcomes=tuple(outcomes),
            error=error,
        )
        logger.info(
            f"Run on {self._environment.name} {'succeeded' if result.success else 'failed'}",
            extra={"event": "run.completed", "metadata": result.to_dict()},
        )
        return result

    def run_tag(self, tag: str) -> RunResult:
        """Run a single tag and everything it depends on."""
        return self.run([tag])
