"""
Error classes for chainorch.

These error types enable retry classification at the remote-call boundary:
- TransientError: Safe to retry (RPC hiccups, dropped transactions, reorgs)
- PermanentError: Do not retry (bad artifact names, store misses, planning
  and policy violations)

The retry executor (chainorch.utils.with_retry) retries everything except
PermanentError, and wraps the last failure in RetryExhausted once the attempt
budget is spent.

Error handling contract:
- Errors are exceptions, not values
- Planning errors are raised before any remote call is made
- Nothing is swallowed except the planned "not applicable here" skip
"""


class ChainorchError(Exception):
    """Base exception for chainorch."""
    pass


class TransientError(ChainorchError):
    """
    Transient error - safe to retry.

    Examples:
    - RPC node unavailable or rate limited
    - Transaction dropped while the chain was congested
    - Receipt not available before the confirmation deadline
    """
    pass


class PermanentError(ChainorchError):
    """
    Permanent error - do not retry.

    Retrying a logical error cannot change its outcome, so the retry
    executor propagates these immediately.
    """
    pass


class RpcError(TransientError):
    """The remote node answered a JSON-RPC request with an error."""

    def __init__(self, message: str, code: int | None = None, data=None):
        super().__init__(message)
        self.code = code
        self.data = data


class TransactionReverted(PermanentError):
    """
    A mined transaction reported failure status.

    A revert is deterministic (bad constructor arguments, caller not the
    proxy owner), so it is not retried. Dropped or unconfirmed transactions
    raise TransientError instead.
    """

    def __init__(self, tx_hash: str, message: str | None = None):
        super().__init__(message or f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


class ArtifactNotFound(PermanentError):
    """A named build reference does not exist in the build catalog."""

    def __init__(self, name: str, reason: str | None = None):
        super().__init__(reason or f"Artifact not found in build catalog: {name}")
        self.name = name


class RecordNotFound(PermanentError):
    """A required deployment record is missing from the store."""

    def __init__(self, name: str):
        super().__init__(f"No deployment record for: {name}")
        self.name = name


class CyclicDependency(PermanentError):
    """The tag dependency graph lifted to steps contains a cycle."""

    def __init__(self, steps: list[str]):
        super().__init__(
            "Cyclic dependency involving steps: " + ", ".join(steps)
        )
        self.steps = list(steps)


class UnknownTag(PermanentError):
    """A requested tag is produced by no step."""

    def __init__(self, tags: list[str]):
        super().__init__("No step produces tag(s): " + ", ".join(tags))
        self.tags = list(tags)


class DuplicateStep(PermanentError):
    """Two steps share the same name."""

    def __init__(self, name: str):
        super().__init__(f"Duplicate step name: {name}")
        self.name = name


class ForeignRecordImmutable(PermanentError):
    """An attempt was made to deploy over or upgrade an external record."""

    def __init__(self, name: str):
        super().__init__(
            f"Record {name} is external; it cannot be deployed or upgraded"
        )
        self.name = name


class KindMismatch(PermanentError):
    """A stored record's kind differs from the kind requested for it."""

    def __init__(self, name: str, stored, requested):
        super().__init__(
            f"Record {name} is stored as {stored.value} but {requested.value} was requested"
        )
        self.name = name
        self.stored = stored
        self.requested = requested


class EnvironmentMismatch(PermanentError):
    """
    A stored record points at an address with no installed code.

    Raised only when the missing-code policy is "fail"; the default policy
    redeploys instead.
    """

    def __init__(self, name: str, address: str):
        super().__init__(
            f"Record {name} points at {address} but no code is installed there; "
            f"the store does not belong to this network"
        )
        self.name = name
        self.address = address


class RetryExhausted(ChainorchError):
    """
    A remote operation kept failing past its retry budget.

    Fatal to the current step, but the run may be re-invoked later since
    every protocol is re-entrant.
    """

    def __init__(self, last_error: BaseException, attempts: int, description: str | None = None):
        what = description or "Operation"
        super().__init__(f"{what} failed after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts
