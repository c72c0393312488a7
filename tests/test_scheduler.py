"""Tests for the tag-DAG scheduler."""

import pytest

from chainorch.errors import CyclicDependency, DuplicateStep, UnknownTag
from chainorch.scheduler import Scheduler
from chainorch.schemas import Step


def step(name, tags=(), deps=(), applies=None):
    kwargs = {"applies": applies} if applies is not None else {}
    return Step(name=name, action=lambda ctx: name, tags=tags, dependency_tags=deps, **kwargs)


def names(plan):
    return [p.name for p in plan]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def steps():
    """Declared out of dependency order on purpose."""
    return [
        step("core", tags={"Core"}, deps={"Tokens", "Oracle"}),
        step("oracle", tags={"Oracle"}, deps={"Tokens"}),
        step("tokens", tags={"Tokens"}),
        step("seed", tags={"Seed"}, deps={"Core"}, applies=lambda env: env.is_testnet),
        step("docs", tags={"Docs"}),
    ]


class TestOrdering:
    """Topological order over the tag relation."""

    def test_dependencies_run_first(self, steps):
        assert names(Scheduler(steps).plan(["Core"])) == ["tokens", "oracle", "core"]

    def test_ties_broken_by_declaration_order(self):
        steps = [step("b", tags={"B"}), step("a", tags={"A"}), step("c", tags={"C"}, deps={"A", "B"})]
        assert names(Scheduler(steps).plan()) == ["b", "a", "c"]

    def test_empty_request_selects_everything(self, steps):
        plan = Scheduler(steps).plan()
        assert names(plan) == ["tokens", "oracle", "core", "seed", "docs"]
        assert [p.position for p in plan] == [0, 1, 2, 3, 4]

    def test_only_closure_selected(self, steps):
        assert names(Scheduler(steps).plan(["Oracle"])) == ["tokens", "oracle"]

    def test_multiple_producers_of_a_tag(self):
        steps = [
            step("usdc", tags={"Tokens"}),
            step("weth", tags={"Tokens"}),
            step("pool", tags={"Pool"}, deps={"Tokens"}),
        ]
        assert names(Scheduler(steps).plan(["Pool"])) == ["usdc", "weth", "pool"]

    def test_self_dependency_ignored(self):
        steps = [step("a", tags={"X"}, deps={"X"})]
        assert names(Scheduler(steps).plan(["X"])) == ["a"]

    def test_unproduced_dependency_ignored(self):
        steps = [step("a", tags={"A"}, deps={"Nobody"})]
        assert names(Scheduler(steps).plan(["A"])) == ["a"]

    def test_duplicate_requested_tags(self, steps):
        assert names(Scheduler(steps).plan(["Tokens", "Tokens"])) == ["tokens"]


class TestApplicability:
    """Steps that do not apply keep their place but are skipped."""

    def test_skipped_on_mainnet(self, steps, mainnet):
        plan = Scheduler(steps).plan(["Seed"], mainnet)
        assert names(plan) == ["tokens", "oracle", "core", "seed"]
        assert [p.skipped for p in plan] == [False, False, False, True]

    def test_applies_on_testnet(self, steps, testnet):
        plan = Scheduler(steps).plan(["Seed"], testnet)
        assert not any(p.skipped for p in plan)

    def test_no_environment_means_every_step_applies(self, steps):
        assert not any(p.skipped for p in Scheduler(steps).plan(["Seed"]))


class TestPlanningErrors:
    """Errors raised before anything runs."""

    def test_cycle_detected(self):
        calls = []
        steps = [
            Step(name="a", action=calls.append, tags={"A"}, dependency_tags={"B"}),
            Step(name="b", action=calls.append, tags={"B"}, dependency_tags={"A"}),
            Step(name="c", action=calls.append, tags={"C"}),
        ]
        with pytest.raises(CyclicDependency) as exc_info:
            Scheduler(steps).plan(["C"])
        assert set(exc_info.value.steps) == {"a", "b"}
        assert calls == []

    def test_unknown_tag(self, steps):
        with pytest.raises(UnknownTag) as exc_info:
            Scheduler(steps).plan(["Core", "Bridge"])
        assert exc_info.value.tags == ["Bridge"]

    def test_duplicate_step_names(self):
        with pytest.raises(DuplicateStep):
            Scheduler([step("a", tags={"A"}), step("a", tags={"B"})])


class TestIntrospection:
    def test_tags_and_lookup(self, steps):
        scheduler = Scheduler(steps)
        assert scheduler.tags() == ["Core", "Docs", "Oracle", "Seed", "Tokens"]
        assert scheduler.get_step("oracle").name == "oracle"
        assert scheduler.get_step("missing") is None
