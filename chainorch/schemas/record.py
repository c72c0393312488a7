"""
DeploymentRecord schema - binds a logical name to a deployed instance.

Records are written by the deploy engine after every successful deploy,
upgrade or adoption, and read back on the next run to decide what (if
anything) needs doing.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class RecordKind(str, Enum):
    """How a deployed instance is laid out on chain."""
    DIRECT = "Direct"
    PROXY_UUPS = "ProxyUUPS"
    BEACON = "Beacon"
    EXTERNAL = "External"

    @property
    def upgradeable(self) -> bool:
        """True for kinds with a stable address and swappable implementation."""
        return self in (RecordKind.PROXY_UUPS, RecordKind.BEACON)


@dataclass(frozen=True)
class DeploymentRecord:
    """
    A persisted deployment.

    Attributes:
        name: Logical identifier, stable across redeploys of the same target
        address: Location of the instance in the remote environment
        interface: Callable surface (ABI entries); never interpreted here
        fingerprint: Content hash of the installed runtime code, None when
            unknown (External records)
        kind: Deployment layout (see RecordKind)
        implementation: Implementation address behind a proxy or beacon,
            as observed at the last deploy/upgrade
        artifact: Build artifact the record was produced from
        updated_at: When the record was last written
    """
    name: str
    address: str
    kind: RecordKind
    interface: list[Any] = field(default_factory=list)
    fingerprint: Optional[str] = None
    implementation: Optional[str] = None
    artifact: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.name:
            raise ValueError("DeploymentRecord.name must not be empty")
        if not self.address:
            raise ValueError(f"DeploymentRecord {self.name}: address must not be empty")
        if self.kind != RecordKind.EXTERNAL and self.fingerprint is None:
            raise ValueError(
                f"DeploymentRecord {self.name}: fingerprint is required for {self.kind.value} records"
            )

    @property
    def is_external(self) -> bool:
        return self.kind == RecordKind.EXTERNAL

    def renamed(self, name: str) -> "DeploymentRecord":
        """Return a copy of this record stored under another name."""
        return replace(self, name=name)

    def same_deployment(self, other: Optional["DeploymentRecord"]) -> bool:
        """True if other describes the same instance and code (timestamps ignored)."""
        if other is None:
            return False
        return (
            self.address.lower() == other.address.lower()
            and self.kind == other.kind
            and self.fingerprint == other.fingerprint
            and self.implementation == other.implementation
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "name": self.name,
            "address": self.address,
            "kind": self.kind.value,
            "abi": self.interface,
            "updated_at": self.updated_at.isoformat(),
        }
        if self.fingerprint is not None:
            result["fingerprint"] = self.fingerprint
        if self.implementation is not None:
            result["implementation"] = self.implementation
        if self.artifact is not None:
            result["artifact"] = self.artifact
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentRecord":
        """Deserialize from dictionary."""
        updated_at = data.get("updated_at")
        return cls(
            name=data["name"],
            address=data["address"],
            kind=RecordKind(data.get("kind", RecordKind.DIRECT.value)),
            interface=list(data.get("abi", [])),
            fingerprint=data.get("fingerprint"),
            implementation=data.get("implementation"),
            artifact=data.get("artifact"),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else _utcnow(),
        )
