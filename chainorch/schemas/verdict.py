"""
Verdict schemas - change detection results and engine outcomes.

Classification is what the change detector observed; Action is what the
deploy engine did (or would do) about it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .record import DeploymentRecord


class Classification(str, Enum):
    """State of a deployment target relative to the latest build."""
    ABSENT = "Absent"
    UP_TO_DATE = "UpToDate"
    NEEDS_UPGRADE = "NeedsUpgrade"
    FOREIGN_RECORD = "ForeignRecord"


class Action(str, Enum):
    """Remote action chosen for a target."""
    NOOP = "noop"
    DEPLOY = "deploy"
    UPGRADE = "upgrade"
    MIGRATE = "migrate"
    REJECT = "reject"


@dataclass(frozen=True)
class Verdict:
    """
    Result of classifying a target.

    Attributes:
        name: The target's logical name
        classification: Observed state
        record: The stored record, if any
        installed_fingerprint: Fingerprint of the code found on chain
        build_fingerprint: Fingerprint of the latest build
        stale: True when a record exists but its address has no code
            (classification is then ABSENT)
    """
    name: str
    classification: Classification
    record: Optional[DeploymentRecord] = None
    installed_fingerprint: Optional[str] = None
    build_fingerprint: Optional[str] = None
    stale: bool = False

    @property
    def absent(self) -> bool:
        return self.classification == Classification.ABSENT


@dataclass(frozen=True)
class EnsureResult:
    """
    Outcome of DeployEngine.ensure.

    Attributes:
        record: The record now stored under the target name
        action: What was done
        newly_deployed: True if this call sent a deploy or upgrade to the
            remote environment (False for a noop, and for a migration that
            only promoted an instance staged by an earlier run)
    """
    record: DeploymentRecord
    action: Action
    newly_deployed: bool = False
