"""
DeployEngine - Idempotent deploy/upgrade of named targets.

ensure() runs one state machine keyed on (classification, kind):

    Absent                          -> deploy fresh, save
    Absent, record stale            -> missing-code policy: redeploy or fail
    UpToDate                        -> no-op, no remote mutation
    NeedsUpgrade, ProxyUUPS/Beacon  -> upgrade in place, save
    NeedsUpgrade, Direct            -> MigrationSwap (stage + promote)
    ForeignRecord                   -> ForeignRecordImmutable

Every state-mutating remote call runs through the retry policy; the remote
environment resumes a retried call instead of repeating its transactions.
A record is only written after the remote call it describes has succeeded.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

from chainorch.catalog import Artifact, BuildCatalog, BuildRef
from chainorch.detector import ChangeDetector
from chainorch.errors import (
    EnvironmentMismatch,
    ForeignRecordImmutable,
    KindMismatch,
    PermanentError,
    TransientError,
)
from chainorch.record_store import RecordStore
from chainorch.remote import RemoteEnvironment
from chainorch.schemas import (
    Action,
    Classification,
    DeploymentRecord,
    EnsureResult,
    RecordKind,
    Verdict,
)
from chainorch.swap import MigrationSwap
from chainorch.utils import RetryPolicy

logger = logging.getLogger(__name__)


class MissingCodePolicy(str, Enum):
    """What to do when a stored record's address has no code."""
    REDEPLOY = "redeploy"
    FAIL = "fail"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class DeployEngine:
    """
    Deploys, upgrades and adopts named targets exactly once per change.

    Usage:
        engine = DeployEngine(
            store=FileRecordStore("deployments/arbitrum"),
            remote=JsonRpcEnvironment(url, deployer),
            catalog=BuildCatalog("artifacts"),
        )
        result = engine.ensure("PriceOracle", kind=RecordKind.PROXY_UUPS)
        print(result.action, result.record.address)
    """

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteEnvironment,
        catalog: BuildCatalog,
        retry: Optional[RetryPolicy] = None,
        on_missing_code: MissingCodePolicy | str = MissingCodePolicy.REDEPLOY,
    ):
        """
        Initialize the engine.

        Args:
            store: Record store owned by this run
            remote: Remote execution environment
            catalog: Build catalog
            retry: Retry policy for remote calls (default: 3 attempts, 5s unit)
            on_missing_code: Policy for records whose code has vanished
        """
        self._store = store
        self._remote = remote
        self._catalog = catalog
        self._retry = retry or RetryPolicy()
        self._on_missing_code = MissingCodePolicy(on_missing_code)
        self.detector = ChangeDetector(store, remote, catalog, self._retry)
        self.swap = MigrationSwap(store, self.detector, self._deploy)

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def catalog(self) -> BuildCatalog:
        return self._catalog

    @property
    def retry(self) -> RetryPolicy:
        return self._retry

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def classify(self, name: str, build_ref: Optional[BuildRef] = None) -> Verdict:
        """Classify a target; see ChangeDetector.classify."""
        return self.detector.classify(name, build_ref)

    def ensure(
        self,
        name: str,
        kind: RecordKind | str = RecordKind.DIRECT,
        build_ref: Optional[BuildRef] = None,
        constructor_args: Sequence[Any] = (),
        upgrade_options: Optional[dict[str, Any]] = None,
    ) -> EnsureResult:
        """
        Make the target under name run the latest build.

        Args:
            name: Logical name of the target
            kind: Deployment layout (External is not deployable)
            build_ref: Catalog name or InlineArtifact; defaults to name
            constructor_args: Constructor (or initializer) arguments
            upgrade_options: Passed through to the remote upgrade call

        Returns:
            EnsureResult with the stored record and the action taken

        Raises:
            ArtifactNotFound: Unknown build reference
            ForeignRecordImmutable: Target is (or was requested as) External
            KindMismatch: Stored record has a different kind
            EnvironmentMismatch: Record is stale and the policy is "fail"
            RetryExhausted: Remote calls kept failing
        """
        kind = RecordKind(kind)
        if kind == RecordKind.EXTERNAL:
            raise ForeignRecordImmutable(name)

        # Ownership first: adopted records usually have no catalog entry
        record = self._check_ownership(name, kind)
        artifact = self._catalog.resolve(build_ref if build_ref is not None else name)

        staged = self.swap.pending(name) if kind == RecordKind.DIRECT else None
        if staged is not None:
            promoted = self.swap.resume(name, artifact, constructor_args)
            if promoted is not None:
                # A stale shadow is restaged, so compare against what was staged before
                restaged = promoted.address.lower() != staged.address.lower()
                return EnsureResult(record=promoted, action=Action.MIGRATE, newly_deployed=restaged)
            record = self._store.get_or_none(name)

        verdict = self.detector.evaluate(name, record, artifact)

        if verdict.classification == Classification.FOREIGN_RECORD:
            raise ForeignRecordImmutable(name)

        if verdict.classification == Classification.UP_TO_DATE:
            logger.info(f"{name} already deployed at {record.address}", extra={"event": "ensure.noop"})
            return EnsureResult(record=record, action=Action.NOOP)

        if verdict.classification == Classification.ABSENT:
            if verdict.stale:
                self._handle_missing_code(verdict)
            logger.info(f"Deploying {name}...")
            deployed = self._deploy(name, kind, artifact, constructor_args)
            logger.info(f"Deployed {name} at {deployed.address}", extra={"event": "ensure.deployed"})
            return EnsureResult(record=deployed, action=Action.DEPLOY, newly_deployed=True)

        # NEEDS_UPGRADE
        if kind.upgradeable:
            upgraded = self._upgrade(record, artifact, upgrade_options)
            return EnsureResult(record=upgraded, action=Action.UPGRADE, newly_deployed=True)

        migrated = self.swap.migrate(name, artifact, constructor_args)
        return EnsureResult(record=migrated, action=Action.MIGRATE, newly_deployed=True)

    def preview(
        self,
        name: str,
        kind: RecordKind | str = RecordKind.DIRECT,
        build_ref: Optional[BuildRef] = None,
    ) -> Action:
        """
        Report what ensure() would do, without mutating anything.

        Remote reads still happen (through the retry policy).
        """
        kind = RecordKind(kind)
        record = self._store.get_or_none(name)
        if kind == RecordKind.EXTERNAL or (record is not None and record.is_external):
            return Action.REJECT
        if record is not None and record.kind != kind:
            return Action.REJECT
        if kind == RecordKind.DIRECT and self.swap.pending(name) is not None:
            return Action.MIGRATE

        artifact = self._catalog.resolve(build_ref if build_ref is not None else name)
        verdict = self.detector.evaluate(name, record, artifact)
        if verdict.classification == Classification.UP_TO_DATE:
            return Action.NOOP
        if verdict.classification == Classification.ABSENT:
            if verdict.stale and self._on_missing_code == MissingCodePolicy.FAIL:
                return Action.REJECT
            return Action.DEPLOY
        return Action.UPGRADE if kind.upgradeable else Action.MIGRATE

    def adopt(
        self,
        name: str,
        address: str,
        interface: Optional[list[Any]] = None,
        build_ref: Optional[str] = None,
    ) -> DeploymentRecord:
        """
        Record an externally supplied instance (kind External).

        The address must have code installed; the check is retried since
        freshly deployed third-party instances may lag on some nodes.

        Args:
            name: Logical name to store the record under
            address: Address of the external instance
            interface: ABI; looked up from build_ref when omitted
            build_ref: Catalog name whose interface describes the instance
                (interface-only artifacts are fine)

        Returns:
            The stored External record

        Raises:
            KindMismatch: If name already holds a record this process owns
            RetryExhausted: If no code appears at address
        """
        existing = self._store.get_or_none(name)
        if existing is not None and not existing.is_external:
            raise KindMismatch(name, existing.kind, RecordKind.EXTERNAL)
        if existing is not None and existing.address.lower() == address.lower():
            logger.info(f"{name} already recorded at {address}")
            return existing

        if interface is None:
            interface = self._catalog.interface_of(build_ref) if build_ref else []

        def check_code() -> bytes:
            code = self._remote.read_installed_code(address)
            if not code:
                raise TransientError(f"Contract {name} at {address} has no code")
            return code

        self._retry.run(check_code, description=f"verify {name}")

        record = self._store.save(name, DeploymentRecord(
            name=name,
            address=address,
            kind=RecordKind.EXTERNAL,
            interface=list(interface),
            artifact=build_ref,
        ))
        logger.info(f"Saved {name} at {address}", extra={"event": "adopt.saved"})
        return record

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_ownership(self, name: str, kind: RecordKind) -> Optional[DeploymentRecord]:
        record = self._store.get_or_none(name)
        if record is None:
            return None
        if record.is_external:
            raise ForeignRecordImmutable(name)
        if record.kind != kind:
            raise KindMismatch(name, record.kind, kind)
        return record

    def _handle_missing_code(self, verdict: Verdict) -> None:
        record = verdict.record
        if self._on_missing_code == MissingCodePolicy.FAIL:
            raise EnvironmentMismatch(verdict.name, record.address)
        logger.warning(
            f"{verdict.name}: recorded instance at {record.address} has no code; deploying a fresh one",
            extra={"event": "ensure.redeploy_stale"},
        )

    def _deploy(
        self,
        name: str,
        kind: RecordKind,
        artifact: Artifact,
        args: Sequence[Any],
    ) -> DeploymentRecord:
        instance = self._retry.run(
            lambda: self._remote.deploy_instance(artifact, list(args), kind),
            description=f"deploy {name}",
        )
        fp = artifact.fingerprint or self.detector.installed_fingerprint(instance.address, kind)
        if fp is None:
            raise PermanentError(f"Deployment of {name} at {instance.address} left no code behind")

        return self._store.save(name, DeploymentRecord(
            name=name,
            address=instance.address,
            kind=kind,
            interface=list(artifact.interface),
            fingerprint=fp,
            implementation=instance.implementation,
            artifact=artifact.name,
            updated_at=_utcnow(),
        ))

    def _upgrade(
        self,
        record: DeploymentRecord,
        artifact: Artifact,
        options: Optional[dict[str, Any]],
    ) -> DeploymentRecord:
        logger.info(f"Upgrading {record.kind.value} {record.name} at {record.address}")
        implementation = self._retry.run(
            lambda: self._remote.upgrade_instance(record.address, artifact, record.kind, options),
            description=f"upgrade {record.name}",
        )
        fp = artifact.fingerprint or self.detector.installed_fingerprint(record.address, record.kind)
        upgraded = self._store.save(record.name, replace(
            record,
            interface=list(artifact.interface),
            fingerprint=fp,
            implementation=implementation,
            artifact=artifact.name or record.artifact,
            updated_at=_utcnow(),
        ))
        logger.info(
            f"Upgraded {record.name}: implementation now {implementation}",
            extra={"event": "ensure.upgraded"},
        )
        return upgraded
