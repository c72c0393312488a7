"""
MigrationSwap - Replace a Direct deployment through a shadow record.

A Direct instance has no upgrade entry point, so a changed build is
deployed as a brand new instance and the canonical name is repointed:

1. Stage: deploy the new build under shadow_name(name), unless a shadow
   whose installed code already matches the build is there (a previous run
   crashed after staging)
2. Promote: capture the canonical record, then delete canonical, save the
   shadow's record under the canonical name, delete the shadow
3. If promotion fails, restore the captured canonical record and re-raise;
   the shadow stays behind as a "pending migration" marker so the next run
   resumes instead of redeploying

Every step is re-entrant: running migrate() again after an interruption at
any point converges on exactly one canonical record and no shadow.
"""

import logging
from typing import Any, Callable, Optional, Sequence

from chainorch.catalog import Artifact
from chainorch.detector import ChangeDetector
from chainorch.record_store import RecordStore
from chainorch.schemas import DeploymentRecord, RecordKind

logger = logging.getLogger(__name__)


SHADOW_SUFFIX = "_NEW"

# Deploys artifact as a Direct instance and saves it under the given name
Deployer = Callable[[str, RecordKind, Artifact, Sequence[Any]], DeploymentRecord]


def shadow_name(name: str) -> str:
    """Name a staged replacement is stored under while its swap is pending."""
    return f"{name}{SHADOW_SUFFIX}"


def is_shadow_name(name: str) -> bool:
    return name.endswith(SHADOW_SUFFIX) and len(name) > len(SHADOW_SUFFIX)


def canonical_name(shadow: str) -> str:
    """Inverse of shadow_name."""
    if not is_shadow_name(shadow):
        raise ValueError(f"Not a shadow record name: {shadow}")
    return shadow[: -len(SHADOW_SUFFIX)]


class MigrationSwap:
    """
    Stage-then-promote replacement of Direct records.

    The deployer callable is supplied by the deploy engine so staging uses
    the same retry-wrapped deploy path as a fresh deployment.
    """

    def __init__(self, store: RecordStore, detector: ChangeDetector, deployer: Deployer):
        self._store = store
        self._detector = detector
        self._deployer = deployer

    def pending(self, name: str) -> Optional[DeploymentRecord]:
        """The staged shadow record for name, if a swap is pending."""
        return self._store.get_or_none(shadow_name(name))

    def pending_names(self) -> list[str]:
        """Canonical names that have a pending swap."""
        return [canonical_name(n) for n in self._store.names() if is_shadow_name(n)]

    def migrate(self, name: str, artifact: Artifact, args: Sequence[Any] = ()) -> DeploymentRecord:
        """
        Stage (or reuse) a replacement for name and promote it.

        Returns:
            The record now stored under name
        """
        self.stage(name, artifact, args)
        return self.promote(name)

    def stage(self, name: str, artifact: Artifact, args: Sequence[Any] = ()) -> DeploymentRecord:
        """Ensure a shadow record running artifact's code exists."""
        shadow = shadow_name(name)
        staged = self._store.get_or_none(shadow)

        if staged is not None and self._detector.matches(staged, artifact):
            logger.info(
                f"{shadow} already deployed at {staged.address}; resuming swap",
                extra={"event": "swap.resume"},
            )
            return staged

        if staged is not None:
            logger.info(f"{shadow} at {staged.address} is out of date; staging again")

        logger.info(f"{name} needs replacement, deploying {shadow}...")
        staged = self._deployer(shadow, RecordKind.DIRECT, artifact, args)
        logger.info(f"Deployed {shadow} at {staged.address}", extra={"event": "swap.staged"})
        return staged

    def promote(self, name: str) -> DeploymentRecord:
        """
        Move the shadow record into the canonical slot.

        Raises:
            RecordNotFound: If nothing is staged for name
            Exception: Whatever the store raised; the previous canonical
                record has been restored (best effort) and the shadow kept
        """
        shadow = shadow_name(name)
        staged = self._store.get(shadow)
        previous = self._store.get_or_none(name)

        try:
            self._store.delete(name)
            promoted = self._store.save(name, staged.renamed(name))
            self._store.delete(shadow)
        except Exception as e:
            logger.error(
                f"Promoting {shadow} to {name} failed: {e}; restoring previous record",
                extra={"event": "swap.rollback"},
            )
            if previous is not None:
                self._restore(name, previous)
            raise

        old = previous.address if previous is not None else "nothing"
        logger.info(
            f"Replaced {name} ({old}) with newly deployed {promoted.address}",
            extra={"event": "swap.promoted"},
        )
        return promoted

    def resume(self, name: str, artifact: Artifact, args: Sequence[Any] = ()) -> Optional[DeploymentRecord]:
        """
        Settle a pending swap left behind by an interrupted run.

        Returns:
            The promoted record if a migration was completed, or None if the
            shadow was only cleaned up and the canonical record should be
            evaluated normally
        """
        shadow = shadow_name(name)
        staged = self._store.get(shadow)
        canonical = self._store.get_or_none(name)

        if canonical is not None and canonical.address.lower() == staged.address.lower():
            # Interrupted after the canonical write, before the shadow delete
            logger.info(f"{name} already points at {staged.address}; removing {shadow}")
            self._store.delete(shadow)
            return None

        if canonical is not None and self._detector.matches(canonical, artifact):
            logger.info(f"{name} is up to date; discarding obsolete {shadow} at {staged.address}")
            self._store.delete(shadow)
            return None

        return self.migrate(name, artifact, args)

    def _restore(self, name: str, previous: DeploymentRecord) -> None:
        try:
            self._store.save(name, previous)
        except Exception as restore_error:
            # The original failure is re-raised by the caller
            logger.error(f"Could not restore {name}: {restore_error}", extra={"event": "swap.restore_failed"})
