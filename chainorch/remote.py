"""
Remote environment interface for deploy/upgrade/read operations.

This module defines the protocol the deploy engine and change detector use
to reach the chain, keeping the orchestration core free of any wire
protocol.

Implementations:
- InMemoryChain: Simulated chain for testing and local dry runs
- JsonRpcEnvironment (chainorch.rpc): Real node over JSON-RPC
"""

import itertools
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from chainorch.catalog import Artifact, code_bytes
from chainorch.errors import PermanentError, TransientError
from chainorch.schemas import RecordKind

logger = logging.getLogger(__name__)


ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class DeployedInstance:
    """
    Where a fresh deployment landed.

    Attributes:
        address: Address callers use (the proxy/beacon for upgradeable kinds)
        implementation: Implementation address behind a proxy or beacon
    """
    address: str
    implementation: Optional[str] = None


@runtime_checkable
class RemoteEnvironment(Protocol):
    """
    Protocol for the remote execution environment.

    Every method blocks until the operation is settled (mined and confirmed
    for state-mutating calls).

    The engine retries deploy_instance and upgrade_instance after a
    TransientError. Repeating a call with the same arguments must resume
    the interrupted operation rather than start another one: a transaction
    that was already sent is confirmed, not sent again.
    """

    def deploy_instance(
        self,
        artifact: Artifact,
        args: Sequence[Any],
        kind: RecordKind,
    ) -> DeployedInstance:
        """
        Create a new instance of artifact.

        For ProxyUUPS/Beacon kinds this deploys the implementation and the
        proxy/beacon in front of it.
        """
        ...

    def upgrade_instance(
        self,
        address: str,
        artifact: Artifact,
        kind: RecordKind,
        options: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Point the proxy/beacon at address to a new implementation.

        Returns:
            The new implementation address
        """
        ...

    def read_installed_code(self, address: str) -> bytes:
        """Runtime code at address (empty if none)."""
        ...

    def read_implementation_address(self, address: str, kind: RecordKind) -> str:
        """Implementation address behind a proxy (ProxyUUPS) or beacon (Beacon)."""
        ...


class InMemoryChain:
    """
    Simulated chain implementing RemoteEnvironment.

    Keeps code per address and the implementation pointer of each proxy or
    beacon. Counts every call by method name and can be told to fail the
    next N calls of a method, which is how tests exercise retry and crash
    recovery paths.
    """

    PROXY_CODE = b"\x60\x80proxy"
    BEACON_CODE = b"\x60\x80beacon"

    MUTATING = ("deploy_instance", "upgrade_instance")

    def __init__(self):
        self._code: dict[str, bytes] = {}
        self._implementations: dict[str, str] = {}
        self._address_counter = itertools.count(1)
        self._failures: dict[str, list[BaseException]] = {}
        self.calls: Counter = Counter()

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def fail_next(self, method: str, times: int = 1, error: BaseException | None = None) -> None:
        """Make the next `times` calls of method raise error (TransientError by default)."""
        queue = self._failures.setdefault(method, [])
        for _ in range(times):
            queue.append(error or TransientError(f"injected {method} failure"))

    def set_code(self, address: str, code: bytes | str) -> None:
        """Install code at address out of band (manual upgrade, redeploy, ...)."""
        self._code[address.lower()] = code_bytes(code)

    def wipe(self) -> None:
        """Forget all installed code, as after a local network restart."""
        self._code.clear()
        self._implementations.clear()

    @property
    def mutations(self) -> int:
        """Number of state-mutating calls that reached the chain (including failed ones)."""
        return sum(self.calls[m] for m in self.MUTATING)

    # -------------------------------------------------------------------------
    # RemoteEnvironment
    # -------------------------------------------------------------------------

    def deploy_instance(
        self,
        artifact: Artifact,
        args: Sequence[Any],
        kind: RecordKind,
    ) -> DeployedInstance:
        self._enter("deploy_instance")
        if kind == RecordKind.EXTERNAL:
            raise PermanentError("External instances cannot be deployed")

        implementation = self._install(self._runtime_code(artifact))
        if kind == RecordKind.DIRECT:
            logger.debug(f"Deployed {artifact.name} at {implementation}")
            return DeployedInstance(address=implementation)

        front_code = self.PROXY_CODE if kind == RecordKind.PROXY_UUPS else self.BEACON_CODE
        address = self._install(front_code)
        self._implementations[address] = implementation
        logger.debug(f"Deployed {artifact.name} {kind.value} at {address} -> {implementation}")
        return DeployedInstance(address=address, implementation=implementation)

    def upgrade_instance(
        self,
        address: str,
        artifact: Artifact,
        kind: RecordKind,
        options: Optional[dict[str, Any]] = None,
    ) -> str:
        self._enter("upgrade_instance")
        if not kind.upgradeable:
            raise PermanentError(f"{kind.value} instances have no upgrade entry point")
        address = address.lower()
        if address not in self._implementations:
            raise PermanentError(f"No {kind.value} at {address}")

        implementation = self._install(self._runtime_code(artifact))
        self._implementations[address] = implementation
        return implementation

    def read_installed_code(self, address: str) -> bytes:
        self._enter("read_installed_code")
        return self._code.get(address.lower(), b"")

    def read_implementation_address(self, address: str, kind: RecordKind) -> str:
        self._enter("read_implementation_address")
        return self._implementations.get(address.lower(), ZERO_ADDRESS)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        queue = self._failures.get(method)
        if queue:
            raise queue.pop(0)

    def _install(self, code: bytes) -> str:
        address = "0x" + format(next(self._address_counter), "040x")
        self._code[address] = code
        return address

    @staticmethod
    def _runtime_code(artifact: Artifact) -> bytes:
        runtime = code_bytes(artifact.deployed_code)
        # Inline artifacts may not know their runtime code
        return runtime or code_bytes(artifact.creation_code)
