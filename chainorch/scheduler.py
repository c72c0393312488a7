"""
Scheduler - Turn a set of requested tags into an ordered plan of steps.

The scheduler resolves:
- which steps a tag request selects (producers of the requested tags plus,
  transitively, producers of every dependency tag they declare)
- the order they run in (topological over the tag relation lifted to steps,
  ties broken by declaration order)
- which steps are skipped on the target environment (applicability
  predicate false)

The resulting plan has:
- Fixed step list (no dynamic expansion)
- skipped flags for steps that do not apply; skipped steps keep their place
  and their tags so dependents are not blocked

Planning errors (CyclicDependency, UnknownTag, DuplicateStep) are raised
before any step action runs.
"""

import heapq
import logging
from typing import Iterable, Optional, Sequence

from chainorch.errors import CyclicDependency, DuplicateStep, UnknownTag
from chainorch.network import TargetEnvironment
from chainorch.schemas import PlannedStep, Step

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Tag-DAG scheduler over a declared step set.

    Usage:
        scheduler = Scheduler([tokens_step, oracle_step, core_step])
        plan = scheduler.plan(["Core"], environment)
        for planned in plan:
            planned.run(context)
    """

    def __init__(self, steps: Sequence[Step]):
        """
        Initialize the scheduler.

        Args:
            steps: Steps in declaration order

        Raises:
            DuplicateStep: If two steps share a name
        """
        seen: set[str] = set()
        for step in steps:
            if step.name in seen:
                raise DuplicateStep(step.name)
            seen.add(step.name)

        self._steps: list[Step] = list(steps)
        self._producers: dict[str, list[int]] = {}
        for index, step in enumerate(self._steps):
            for tag in step.tags:
                self._producers.setdefault(tag, []).append(index)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    def tags(self) -> list[str]:
        """All tags produced by some step."""
        return sorted(self._producers)

    def get_step(self, name: str) -> Optional[Step]:
        for step in self._steps:
            if step.name == name:
                return step
        return None

    def plan(
        self,
        requested_tags: Optional[Iterable[str]] = None,
        environment: Optional[TargetEnvironment] = None,
    ) -> list[PlannedStep]:
        """
        Resolve requested tags into an ordered plan.

        Args:
            requested_tags: Tags to satisfy; None or empty selects every step
            environment: Target environment for applicability predicates;
                without one every step applies

        Returns:
            Planned steps in execution order

        Raises:
            UnknownTag: If a requested tag is produced by no step
            CyclicDependency: If the step graph has no topological order
        """
        requested = list(dict.fromkeys(requested_tags or []))
        unknown = [tag for tag in requested if tag not in self._producers]
        if unknown:
            raise UnknownTag(unknown)

        order = self._topological_order()

        if requested:
            selected = self._closure(requested)
        else:
            selected = set(range(len(self._steps)))

        plan: list[PlannedStep] = []
        for index in order:
            if index not in selected:
                continue
            step = self._steps[index]
            skipped = environment is not None and not step.applies(environment)
            plan.append(PlannedStep(step=step, position=len(plan), skipped=skipped))

        logger.debug(
            f"Planned {len(plan)} step(s) for tags {requested or ['*']}: "
            + ", ".join(p.name for p in plan)
        )
        return plan

    def _dependencies(self, index: int) -> set[int]:
        """Indices of the steps step `index` must run after."""
        deps: set[int] = set()
        for tag in self._steps[index].dependency_tags:
            producers = self._producers.get(tag)
            if not producers:
                logger.debug(f"{self._steps[index].name}: dependency tag {tag} has no producer")
                continue
            deps.update(p for p in producers if p != index)
        return deps

    def _closure(self, requested: list[str]) -> set[int]:
        """Producers of requested tags plus everything they transitively need."""
        pending = [i for tag in requested for i in self._producers[tag]]
        selected: set[int] = set()
        while pending:
            index = pending.pop()
            if index in selected:
                continue
            selected.add(index)
            pending.extend(self._dependencies(index) - selected)
        return selected

    def _topological_order(self) -> list[int]:
        """
        Kahn's algorithm over the full step graph.

        The ready set is a min-heap of declaration indices, so among steps
        with no remaining constraint the earliest declared runs first.
        """
        count = len(self._steps)
        dependents: list[list[int]] = [[] for _ in range(count)]
        remaining = [0] * count
        for index in range(count):
            deps = self._dependencies(index)
            remaining[index] = len(deps)
            for dep in deps:
                dependents[dep].append(index)

        ready = [i for i in range(count) if remaining[i] == 0]
        heapq.heapify(ready)
        order: list[int] = []
        while ready:
            index = heapq.heappop(ready)
            order.append(index)
            for dependent in dependents[index]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != count:
            stuck = [self._steps[i].name for i in range(count) if remaining[i] > 0]
            raise CyclicDependency(stuck)
        return order
