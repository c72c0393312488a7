"""
ChangeDetector - Classify a deployment target against the latest build.

Classification compares the code *installed* on chain, not a fingerprint
cached in the record, so manual upgrades and a corrupted store are both
noticed:

1. No record                          -> Absent
2. External record                    -> ForeignRecord (nothing is read)
3. Resolve the address to inspect: the implementation behind a proxy or
   beacon, the record address otherwise
4. No code installed there            -> Absent, marked stale
5. Installed fingerprint == build     -> UpToDate
   Installed fingerprint != build     -> NeedsUpgrade

Remote reads go through the retry policy like every other remote call.
"""

import logging
from typing import Optional

from chainorch.catalog import Artifact, BuildCatalog, BuildRef, fingerprint
from chainorch.record_store import RecordStore
from chainorch.remote import ZERO_ADDRESS, RemoteEnvironment
from chainorch.schemas import Classification, DeploymentRecord, RecordKind, Verdict
from chainorch.utils import RetryPolicy

logger = logging.getLogger(__name__)


class ChangeDetector:
    """
    Classifies targets as Absent, UpToDate, NeedsUpgrade or ForeignRecord.

    Usage:
        detector = ChangeDetector(store, remote, catalog)
        verdict = detector.classify("Vault")
        if verdict.classification == Classification.NEEDS_UPGRADE:
            ...
    """

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteEnvironment,
        catalog: BuildCatalog,
        retry: Optional[RetryPolicy] = None,
    ):
        self._store = store
        self._remote = remote
        self._catalog = catalog
        self._retry = retry or RetryPolicy()

    def classify(self, name: str, build_ref: Optional[BuildRef] = None) -> Verdict:
        """
        Classify the target stored under name.

        Args:
            name: Logical name in the record store
            build_ref: Build to compare against; defaults to the artifact the
                record was produced from, then to name itself

        Returns:
            Verdict describing the target

        Raises:
            ArtifactNotFound: If the build reference cannot be resolved
            RetryExhausted: If remote reads keep failing
        """
        record = self._store.get_or_none(name)
        if record is None or record.is_external:
            return self.evaluate(name, record, None)

        ref = build_ref if build_ref is not None else (record.artifact or name)
        return self.evaluate(name, record, self._catalog.resolve(ref))

    def evaluate(
        self,
        name: str,
        record: Optional[DeploymentRecord],
        artifact: Optional[Artifact],
    ) -> Verdict:
        """Classify an already-loaded record against an already-resolved artifact."""
        if record is None:
            return Verdict(name=name, classification=Classification.ABSENT)

        if record.is_external:
            return Verdict(name=name, classification=Classification.FOREIGN_RECORD, record=record)

        if artifact is None:
            raise ValueError(f"An artifact is required to classify {name}")

        installed = self.installed_fingerprint(record.address, record.kind)
        if installed is None:
            logger.warning(
                f"{name}: no code installed behind {record.address}; record is stale",
                extra={"event": "record.stale"},
            )
            return Verdict(
                name=name,
                classification=Classification.ABSENT,
                record=record,
                build_fingerprint=artifact.fingerprint,
                stale=True,
            )

        if artifact.fingerprint is None or installed == artifact.fingerprint:
            classification = Classification.UP_TO_DATE
        else:
            classification = Classification.NEEDS_UPGRADE

        logger.debug(f"{name}: {classification.value} (installed={installed}, build={artifact.fingerprint})")
        return Verdict(
            name=name,
            classification=classification,
            record=record,
            installed_fingerprint=installed,
            build_fingerprint=artifact.fingerprint,
        )

    def installed_fingerprint(self, address: str, kind: RecordKind) -> Optional[str]:
        """
        Fingerprint of the code executing for an instance.

        For ProxyUUPS and Beacon kinds this is the implementation's code, not
        the proxy's.

        Returns:
            The fingerprint, or None if nothing is installed
        """
        target = address
        if kind.upgradeable:
            target = self._retry.run(
                lambda: self._remote.read_implementation_address(address, kind),
                description=f"read implementation of {address}",
            )
            if not target or target.lower() == ZERO_ADDRESS:
                return None

        code = self._retry.run(
            lambda: self._remote.read_installed_code(target),
            description=f"read code at {target}",
        )
        return fingerprint(code)

    def matches(self, record: DeploymentRecord, artifact: Artifact) -> bool:
        """True if the code installed for record is the artifact's code."""
        installed = self.installed_fingerprint(record.address, record.kind)
        if installed is None:
            return False
        return artifact.fingerprint is None or installed == artifact.fingerprint
