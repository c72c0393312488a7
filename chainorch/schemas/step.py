"""
Step schemas - units of orchestration work and their planned form.

A Step declares which tags it produces and which tags it needs; the
scheduler lifts those tag relations to an ordering over steps and wraps
each selected step in a PlannedStep.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)


def _always(environment: Any) -> bool:
    return True


def _as_tags(value: Iterable[str] | str) -> frozenset[str]:
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(value)


@dataclass(frozen=True)
class Step:
    """
    A unit of orchestration work.

    Attributes:
        name: Unique step identifier
        action: Side-effecting body, called with a StepContext
        tags: Labels this step satisfies once run
        dependency_tags: Labels that must be satisfied before this step runs
        applies: Pure predicate over the TargetEnvironment; False makes the
            step a logged no-op on that environment
        description: Free text shown by `chainorch plan`
    """
    name: str
    action: Callable[[Any], Any]
    tags: frozenset[str] = field(default_factory=frozenset)
    dependency_tags: frozenset[str] = field(default_factory=frozenset)
    applies: Callable[[Any], bool] = _always
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Step name must not be empty")
        object.__setattr__(self, "tags", _as_tags(self.tags))
        object.__setattr__(self, "dependency_tags", _as_tags(self.dependency_tags))

    def produces(self, tag: str) -> bool:
        return tag in self.tags


@dataclass(frozen=True)
class PlannedStep:
    """
    A step placed in an execution plan.

    Attributes:
        step: The underlying step
        position: 0-based position in the plan
        skipped: True when the step does not apply to the target environment;
            running it only logs the skip
    """
    step: Step
    position: int
    skipped: bool = False

    @property
    def name(self) -> str:
        return self.step.name

    @property
    def tags(self) -> frozenset[str]:
        return self.step.tags

    def run(self, context: Any) -> Any:
        """Execute the step's action, or log the skip."""
        if self.skipped:
            logger.info(
                f"Skipping {self.name}: not applicable on this environment",
                extra={"step": self.name, "event": "step.skipped"},
            )
            return None
        return self.step.action(context)

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "name": self.name,
            "tags": sorted(self.step.tags),
            "dependency_tags": sorted(self.step.dependency_tags),
            "skipped": self.skipped,
        }
