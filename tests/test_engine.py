"""Tests for the idempotent deploy/upgrade engine.

Covers the full ensure() state machine:
Absent -> deploy, UpToDate -> noop, NeedsUpgrade -> upgrade or migrate,
ForeignRecord -> rejected
"""

import pytest

from chainorch.catalog import InlineArtifact, fingerprint
from chainorch.engine import DeployEngine, MissingCodePolicy
from chainorch.errors import (
    ArtifactNotFound,
    EnvironmentMismatch,
    ForeignRecordImmutable,
    KindMismatch,
    RetryExhausted,
)
from chainorch.schemas import Action, RecordKind


WETH = "0x" + "ee" * 20


# =============================================================================
# Scenarios
# =============================================================================


class TestScenarios:
    """End-to-end ensure() scenarios on a Direct target."""

    def test_fresh_deploy(self, engine, store, chain):
        result = engine.ensure("A")

        assert result.action == Action.DEPLOY
        assert result.newly_deployed
        assert store.names() == ["A"]
        record = store.get("A")
        assert record.address == result.record.address
        assert record.fingerprint == fingerprint("aa01")
        assert record.kind == RecordKind.DIRECT
        assert chain.calls["deploy_instance"] == 1

    def test_unchanged_rerun_is_noop(self, engine, store, chain):
        first = engine.ensure("A").record
        mutations = chain.mutations

        result = engine.ensure("A")

        assert result.action == Action.NOOP
        assert not result.newly_deployed
        assert chain.mutations == mutations
        assert store.get("A") == first

    def test_changed_direct_build_migrates(self, engine, store, chain, catalog, make_artifact):
        old = engine.ensure("A").record
        catalog.add("A", make_artifact("A", "aa02"))

        result = engine.ensure("A")

        assert result.action == Action.MIGRATE
        assert store.names() == ["A"]
        new = store.get("A")
        assert new.address != old.address
        assert new.fingerprint == fingerprint("aa02")
        assert chain.calls["deploy_instance"] == 2
        assert chain.calls["upgrade_instance"] == 0


class TestIdempotence:
    """A second ensure() with no build change never mutates."""

    @pytest.mark.parametrize("kind", [RecordKind.DIRECT, RecordKind.PROXY_UUPS, RecordKind.BEACON])
    def test_second_ensure_is_noop(self, engine, chain, kind):
        engine.ensure("Vault", kind=kind)
        mutations = chain.mutations
        assert engine.ensure("Vault", kind=kind).action == Action.NOOP
        assert chain.mutations == mutations

    def test_noop_after_upgrade(self, engine, chain, catalog, make_artifact):
        engine.ensure("Vault", kind=RecordKind.PROXY_UUPS)
        catalog.add("Vault", make_artifact("Vault", "bb02"))
        engine.ensure("Vault", kind=RecordKind.PROXY_UUPS)
        mutations = chain.mutations
        assert engine.ensure("Vault", kind=RecordKind.PROXY_UUPS).action == Action.NOOP
        assert chain.mutations == mutations


# =============================================================================
# Upgradeable kinds
# =============================================================================


class TestUpgrade:
    """ProxyUUPS and Beacon targets are upgraded in place."""

    @pytest.mark.parametrize("kind", [RecordKind.PROXY_UUPS, RecordKind.BEACON])
    def test_upgrade_keeps_address(self, engine, store, chain, catalog, make_artifact, kind):
        deployed = engine.ensure("Vault", kind=kind).record
        assert deployed.implementation is not None
        catalog.add("Vault", make_artifact("Vault", "bb02"))

        result = engine.ensure("Vault", kind=kind)

        assert result.action == Action.UPGRADE
        assert result.record.address == deployed.address
        assert result.record.implementation != deployed.implementation
        assert result.record.fingerprint == fingerprint("bb02")
        assert store.get("Vault") == result.record
        assert chain.calls["upgrade_instance"] == 1

    def test_upgrade_retried(self, engine, chain, catalog, make_artifact, sleeper):
        engine.ensure("Vault", kind=RecordKind.PROXY_UUPS)
        catalog.add("Vault", make_artifact("Vault", "bb02"))
        chain.fail_next("upgrade_instance")
        assert engine.ensure("Vault", kind=RecordKind.PROXY_UUPS).action == Action.UPGRADE
        assert sleeper.calls == [5]


# =============================================================================
# Rejections and errors
# =============================================================================


class TestRejections:
    """Requests the engine refuses."""

    def test_external_record_cannot_be_deployed_over(self, engine, chain):
        chain.set_code(WETH, "0x01")
        engine.adopt("WETH", WETH)
        mutations = chain.mutations
        with pytest.raises(ForeignRecordImmutable):
            engine.ensure("WETH", build_ref="A")
        assert chain.mutations == mutations

    def test_external_record_without_catalog_entry(self, engine, chain):
        chain.set_code(WETH, "0x6080")
        engine.adopt("WETH", WETH)
        mutations = chain.mutations
        with pytest.raises(ForeignRecordImmutable):
            engine.ensure("WETH")
        assert engine.preview("WETH") == Action.REJECT
        assert chain.mutations == mutations

    def test_external_kind_cannot_be_ensured(self, engine):
        with pytest.raises(ForeignRecordImmutable):
            engine.ensure("A", kind=RecordKind.EXTERNAL)

    def test_kind_mismatch(self, engine, chain):
        engine.ensure("A")
        mutations = chain.mutations
        with pytest.raises(KindMismatch):
            engine.ensure("A", kind=RecordKind.PROXY_UUPS)
        assert chain.mutations == mutations

    def test_unknown_artifact_fails_before_remote_calls(self, engine, chain):
        with pytest.raises(ArtifactNotFound):
            engine.ensure("Nope")
        assert sum(chain.calls.values()) == 0

    def test_deploy_retry_exhausted_writes_nothing(self, engine, store, chain):
        chain.fail_next("deploy_instance", times=3)
        with pytest.raises(RetryExhausted):
            engine.ensure("A")
        assert chain.calls["deploy_instance"] == 3
        assert not store.exists("A")

    def test_deploy_retried(self, engine, chain, sleeper):
        chain.fail_next("deploy_instance", times=2)
        assert engine.ensure("A").action == Action.DEPLOY
        assert chain.calls["deploy_instance"] == 3
        assert sleeper.calls == [5, 10]


# =============================================================================
# Missing code
# =============================================================================


class TestMissingCode:
    """A record pointing at an address with no code."""

    def test_redeploy_by_default(self, engine, store, chain):
        old = engine.ensure("A").record
        chain.wipe()
        result = engine.ensure("A")
        assert result.action == Action.DEPLOY
        assert store.get("A").address != old.address

    def test_fail_policy(self, store, chain, catalog, retry):
        engine = DeployEngine(store, chain, catalog, retry, on_missing_code=MissingCodePolicy.FAIL)
        old = engine.ensure("A").record
        chain.wipe()
        with pytest.raises(EnvironmentMismatch):
            engine.ensure("A")
        assert store.get("A") == old

    def test_policy_accepts_string(self, store, chain, catalog):
        engine = DeployEngine(store, chain, catalog, on_missing_code="fail")
        assert engine.preview("A") == Action.DEPLOY


# =============================================================================
# Inline artifacts
# =============================================================================


class TestInlineArtifacts:
    def test_inline_with_runtime_code(self, engine, store):
        inline = InlineArtifact(interface=[], creation_code="0x6080cc", deployed_code="0xcc", name="X")
        assert engine.ensure("X", build_ref=inline).action == Action.DEPLOY
        assert store.get("X").fingerprint == fingerprint("cc")
        assert engine.ensure("X", build_ref=inline).action == Action.NOOP

    def test_inline_without_runtime_code_accepts_installed(self, engine, store, chain):
        inline = InlineArtifact(interface=[], creation_code="0x6080cc")
        engine.ensure("X", build_ref=inline)
        # Fingerprint is read back from the chain
        assert store.get("X").fingerprint is not None
        mutations = chain.mutations
        assert engine.ensure("X", build_ref=inline).action == Action.NOOP
        assert chain.mutations == mutations


# =============================================================================
# adopt / preview
# =============================================================================


class TestAdopt:
    """Recording externally supplied instances."""

    def test_adopt_records_external(self, engine, store, chain):
        chain.set_code(WETH, "0x01")
        record = engine.adopt("WETH", WETH, build_ref="IOracle")
        assert record.kind == RecordKind.EXTERNAL
        assert record.fingerprint is None
        assert store.get("WETH").interface == [{"type": "function", "name": "price"}]
        assert chain.mutations == 0

    def test_adopt_without_code_is_retried_then_fails(self, engine, store, sleeper):
        with pytest.raises(RetryExhausted):
            engine.adopt("WETH", WETH)
        assert sleeper.calls == [5, 10]
        assert not store.exists("WETH")

    def test_adopt_over_owned_record(self, engine, chain):
        engine.ensure("A")
        chain.set_code(WETH, "0x01")
        with pytest.raises(KindMismatch):
            engine.adopt("A", WETH)

    def test_adopt_same_address_is_noop(self, engine, chain):
        chain.set_code(WETH, "0x01")
        first = engine.adopt("WETH", WETH)
        reads = chain.calls["read_installed_code"]
        assert engine.adopt("WETH", WETH.upper().replace("0X", "0x")) == first
        assert chain.calls["read_installed_code"] == reads


class TestPreview:
    """preview() reports the action without mutating."""

    def test_actions(self, engine, chain, catalog, make_artifact):
        assert engine.preview("A") == Action.DEPLOY
        engine.ensure("A")
        engine.ensure("Vault", kind=RecordKind.BEACON)
        assert engine.preview("A") == Action.NOOP

        catalog.add("A", make_artifact("A", "aa02"))
        catalog.add("Vault", make_artifact("Vault", "bb02"))
        mutations = chain.mutations
        assert engine.preview("A") == Action.MIGRATE
        assert engine.preview("Vault", kind=RecordKind.BEACON) == Action.UPGRADE
        assert engine.preview("A", kind=RecordKind.BEACON) == Action.REJECT
        assert chain.mutations == mutations
