"""
JSON-RPC environment - IO boundary between chainorch and a chain node.

This module provides the single boundary where chainorch talks to a node.
Requests are JSON-RPC 2.0 envelopes sent over httpx; transactions are sent
from an unlocked deployer account (eth_sendTransaction) and confirmed by
polling eth_getTransactionReceipt.

Deployment layouts:
- Direct: one creation transaction
- ProxyUUPS: implementation, then ERC1967Proxy(implementation, initData);
  the implementation is read from the ERC-1967 storage slot
- Beacon: implementation, then UpgradeableBeacon(implementation, deployer);
  the implementation is read with implementation()

Error classification:
- Transport failures, timeouts, HTTP 429/5xx -> TransientError
- JSON-RPC error responses -> RpcError (transient)
- Reverted transactions -> TransactionReverted (permanent)
- Receipt not seen before the deadline -> TransientError
- Other HTTP errors, malformed responses, bad arguments -> PermanentError
"""

import itertools
import logging
import time
from typing import Any, Callable, Optional, Sequence

import httpx

from chainorch.catalog import Artifact, BuildCatalog, code_bytes
from chainorch.errors import (
    PermanentError,
    RpcError,
    TransactionReverted,
    TransientError,
)
from chainorch.remote import ZERO_ADDRESS, DeployedInstance
from chainorch.schemas import RecordKind

logger = logging.getLogger(__name__)


# bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)
IMPLEMENTATION_SLOT = "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc"

IMPLEMENTATION_SELECTOR = "5c60da1b"  # implementation()
UPGRADE_TO_SELECTOR = "3659cfe6"  # upgradeTo(address)
UPGRADE_TO_AND_CALL_SELECTOR = "4f1ef286"  # upgradeToAndCall(address,bytes)

PROXY_ARTIFACT = "ERC1967Proxy"
BEACON_ARTIFACT = "UpgradeableBeacon"


# =============================================================================
# ABI encoding (static types plus bytes/string)
# =============================================================================


def _word(value: int) -> bytes:
    return (value % (1 << 256)).to_bytes(32, "big")


def _encode_static(abi_type: str, value: Any) -> bytes:
    if abi_type == "address":
        raw = code_bytes(value)
        if len(raw) != 20:
            raise PermanentError(f"Invalid address argument: {value}")
        return raw.rjust(32, b"\x00")
    if abi_type == "bool":
        return _word(1 if value else 0)
    if abi_type.startswith("uint") or abi_type.startswith("int"):
        return _word(int(value, 0) if isinstance(value, str) else int(value))
    if abi_type.startswith("bytes"):
        size = int(abi_type[5:])
        raw = code_bytes(value)
        if len(raw) > size:
            raise PermanentError(f"Argument too long for {abi_type}: {value}")
        return raw.ljust(32, b"\x00")
    raise PermanentError(f"Unsupported argument type: {abi_type}")


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in ("bytes", "string")


def encode_arguments(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """
    ABI-encode a flat argument list.

    Supports address, bool, (u)intN, bytesN, bytes and string.

    Raises:
        PermanentError: On a count mismatch or unsupported type
    """
    if len(types) != len(values):
        raise PermanentError(f"Expected {len(types)} argument(s), got {len(values)}")

    head_size = 32 * len(types)
    heads: list[bytes] = []
    tails: list[bytes] = []
    tail_offset = head_size
    for abi_type, value in zip(types, values):
        if not _is_dynamic(abi_type):
            heads.append(_encode_static(abi_type, value))
            continue
        raw = value.encode() if abi_type == "string" else code_bytes(value)
        padded = raw.ljust((len(raw) + 31) // 32 * 32, b"\x00")
        heads.append(_word(tail_offset))
        tails.append(_word(len(raw)) + padded)
        tail_offset += 32 + len(padded)
    return b"".join(heads) + b"".join(tails)


def constructor_types(interface: Sequence[dict[str, Any]]) -> list[str]:
    """Input types of the constructor entry of an ABI (empty if none)."""
    for entry in interface:
        if entry.get("type") == "constructor":
            return [i["type"] for i in entry.get("inputs", [])]
    return []


def _hex(raw: bytes) -> str:
    return "0x" + raw.hex()


def _address_from_word(word: str) -> str:
    raw = code_bytes(word)
    if not raw:
        return ZERO_ADDRESS
    return _hex(raw[-20:])


# =============================================================================
# JsonRpcEnvironment
# =============================================================================


class JsonRpcEnvironment:
    """
    RemoteEnvironment backed by a node's JSON-RPC endpoint.

    Usage:
        remote = JsonRpcEnvironment(
            url="http://127.0.0.1:8545",
            deployer="0xf39f...",
            catalog=BuildCatalog("artifacts"),
        )
        instance = remote.deploy_instance(artifact, [], RecordKind.DIRECT)
    """

    def __init__(
        self,
        url: str,
        deployer: str,
        catalog: Optional[BuildCatalog] = None,
        timeout: float = 30.0,
        confirmation_timeout: float = 300.0,
        poll_interval: float = 1.0,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the environment.

        Args:
            url: JSON-RPC endpoint
            deployer: Unlocked account that signs transactions
            catalog: Catalog holding the proxy/beacon artifacts
            timeout: Per-request timeout in seconds
            confirmation_timeout: How long to wait for a receipt
            poll_interval: Delay between receipt polls
            client: Preconfigured httpx client (tests pass a MockTransport)
            sleep: Sleep function (injected by tests)
        """
        self.url = url
        self.deployer = deployer
        self._catalog = catalog or BuildCatalog()
        self._client = client or httpx.Client(timeout=timeout)
        self._confirmation_timeout = confirmation_timeout
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._ids = itertools.count(1)
        # (to, data) -> {"hash": ..., "receipt": ...} for the operation in flight
        self._journal: dict[tuple[Optional[str], str], dict[str, Any]] = {}

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def request(self, method: str, params: list[Any]) -> Any:
        """
        Send one JSON-RPC request and return its result.

        Raises:
            TransientError: Transport failure or retryable HTTP status
            RpcError: The node answered with an error object
            PermanentError: Any other HTTP error or a malformed response
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = self._client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise TransientError(f"{method} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"{method} transport failure: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(f"{method} failed with HTTP {response.status_code}")
        if response.status_code >= 400:
            raise PermanentError(f"{method} failed with HTTP {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise PermanentError(f"{method} returned invalid JSON") from e

        if body.get("error"):
            error = body["error"]
            raise RpcError(
                f"{method}: {error.get('message', 'unknown error')}",
                code=error.get("code"),
                data=error.get("data"),
            )
        if "result" not in body:
            raise PermanentError(f"{method} response has neither result nor error")
        return body["result"]

    def _send_transaction(self, data: bytes, to: Optional[str] = None) -> dict[str, Any]:
        """
        Send a transaction from the deployer and wait for its receipt.

        Sent transactions are journaled by payload. When an earlier attempt
        sent the same payload and then failed transiently, its receipt is
        polled again instead of sending a duplicate.
        """
        tx: dict[str, Any] = {"from": self.deployer, "data": _hex(data)}
        if to is not None:
            tx["to"] = to
        key = (to, tx["data"])

        entry = self._journal.get(key)
        if entry is None:
            tx_hash = self.request("eth_sendTransaction", [tx])
            entry = self._journal[key] = {"hash": tx_hash, "receipt": None}
            logger.debug(f"Sent transaction {tx_hash}")
        elif entry["receipt"] is None:
            logger.info(f"Resuming transaction {entry['hash']} instead of sending it again")

        if entry["receipt"] is None:
            entry["receipt"] = self._confirm(key, entry["hash"])

        receipt = entry["receipt"]
        if receipt.get("status") not in ("0x1", 1):
            raise TransactionReverted(entry["hash"])
        return receipt

    def _confirm(self, key: tuple[Optional[str], str], tx_hash: str) -> dict[str, Any]:
        receipt = self._wait_for_receipt(tx_hash)
        if receipt is not None:
            return receipt
        if self.request("eth_getTransactionByHash", [tx_hash]) is None:
            # Unknown to the node, so the next attempt sends it again
            del self._journal[key]
            raise TransientError(f"No receipt for {tx_hash}; transaction was dropped")
        raise TransientError(f"No receipt for {tx_hash} after {self._confirmation_timeout}s")

    def _wait_for_receipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        """Poll for a receipt; None if none arrived before the deadline."""
        deadline = time.monotonic() + self._confirmation_timeout
        while True:
            receipt = self.request("eth_getTransactionReceipt", [tx_hash])
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                return None
            self._sleep(self._poll_interval)

    def _resumable(self, operation: Callable[[], Any]) -> Any:
        """
        Run one deploy/upgrade operation against the transaction journal.

        A TransientError keeps the journal so a retry of the same call
        resumes where this attempt stopped. Any other outcome settles the
        operation and clears it.
        """
        try:
            result = operation()
        except TransientError:
            raise
        except Exception:
            self._journal.clear()
            raise
        self._journal.clear()
        return result

    def _create(self, artifact: Artifact, args: Sequence[Any]) -> str:
        creation = code_bytes(artifact.creation_code)
        if not creation:
            raise PermanentError(f"Artifact {artifact.name} has no creation code")
        encoded = encode_arguments(constructor_types(artifact.interface), list(args))
        receipt = self._send_transaction(creation + encoded)
        address = receipt.get("contractAddress")
        if not address:
            raise PermanentError(f"Creation of {artifact.name} returned no contract address")
        return address.lower()

    # -------------------------------------------------------------------------
    # RemoteEnvironment
    # -------------------------------------------------------------------------

    def deploy_instance(
        self,
        artifact: Artifact,
        args: Sequence[Any],
        kind: RecordKind,
    ) -> DeployedInstance:
        """
        Deploy artifact in the requested layout.

        For ProxyUUPS, args is the initializer calldata as a single optional
        hex string; for Beacon, args is ignored. Calling again with the same
        arguments after a TransientError resumes the deployment.
        """
        if kind == RecordKind.EXTERNAL:
            raise PermanentError("External instances cannot be deployed")
        return self._resumable(lambda: self._deploy_layout(artifact, args, kind))

    def _deploy_layout(self, artifact: Artifact, args: Sequence[Any], kind: RecordKind) -> DeployedInstance:
        if kind == RecordKind.DIRECT:
            return DeployedInstance(address=self._create(artifact, args))

        implementation = self._create(artifact, [])
        if kind == RecordKind.PROXY_UUPS:
            init_data = args[0] if args else "0x"
            proxy = self._catalog.load(PROXY_ARTIFACT)
            address = self._create(proxy, [implementation, init_data])
        else:
            beacon = self._catalog.load(BEACON_ARTIFACT)
            address = self._create(beacon, [implementation, self.deployer])
        logger.debug(f"Deployed {artifact.name} {kind.value} at {address} -> {implementation}")
        return DeployedInstance(address=address, implementation=implementation)

    def upgrade_instance(
        self,
        address: str,
        artifact: Artifact,
        kind: RecordKind,
        options: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Deploy a new implementation and point the proxy/beacon at it.

        options["call"] (ProxyUUPS only) is calldata run through
        upgradeToAndCall. Like deploy_instance, a repeated call resumes.
        """
        if not kind.upgradeable:
            raise PermanentError(f"{kind.value} instances have no upgrade entry point")
        return self._resumable(lambda: self._upgrade_layout(address, artifact, kind, options or {}))

    def _upgrade_layout(self, address: str, artifact: Artifact, kind: RecordKind, options: dict[str, Any]) -> str:
        implementation = self._create(artifact, [])
        call = options.get("call")
        if call and kind == RecordKind.PROXY_UUPS:
            data = bytes.fromhex(UPGRADE_TO_AND_CALL_SELECTOR) + encode_arguments(
                ["address", "bytes"], [implementation, call]
            )
        else:
            data = bytes.fromhex(UPGRADE_TO_SELECTOR) + encode_arguments(["address"], [implementation])
        self._send_transaction(data, to=address)
        return implementation

    def read_installed_code(self, address: str) -> bytes:
        return code_bytes(self.request("eth_getCode", [address, "latest"]))

    def read_implementation_address(self, address: str, kind: RecordKind) -> str:
        if kind == RecordKind.PROXY_UUPS:
            word = self.request("eth_getStorageAt", [address, IMPLEMENTATION_SLOT, "latest"])
        elif kind == RecordKind.BEACON:
            word = self.request(
                "eth_call",
                [{"to": address, "data": "0x" + IMPLEMENTATION_SELECTOR}, "latest"],
            )
        else:
            raise PermanentError(f"{kind.value} instances have no implementation pointer")
        return _address_from_word(word)
