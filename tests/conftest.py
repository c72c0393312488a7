import pytest

from chainorch.catalog import BuildCatalog
from chainorch.engine import DeployEngine
from chainorch.network import TargetEnvironment
from chainorch.record_store import InMemoryRecordStore
from chainorch.remote import InMemoryChain
from chainorch.utils import RetryPolicy


def _artifact(name: str, runtime: str, abi=None) -> dict:
    """Compiler-style artifact whose runtime code is `runtime` (hex, no 0x)."""
    return {
        "contractName": name,
        "abi": abi if abi is not None else [{"type": "function", "name": "version", "inputs": []}],
        "bytecode": "0x6080" + runtime,
        "deployedBytecode": "0x" + runtime,
    }


class RecordingSleep:
    """Sleep stand-in that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def make_artifact():
    """Factory for compiler-style artifact dicts."""
    return _artifact


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry(sleeper) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=5.0, sleep=sleeper)


@pytest.fixture
def catalog() -> BuildCatalog:
    catalog = BuildCatalog()
    catalog.add("A", _artifact("A", "aa01"))
    catalog.add("Vault", _artifact("Vault", "bb01"))
    catalog.add("IOracle", {"contractName": "IOracle", "abi": [{"type": "function", "name": "price"}],
                            "bytecode": "0x", "deployedBytecode": "0x"})
    return catalog


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def chain() -> InMemoryChain:
    return InMemoryChain()


@pytest.fixture
def engine(store, chain, catalog, retry) -> DeployEngine:
    return DeployEngine(store=store, remote=chain, catalog=catalog, retry=retry)


@pytest.fixture
def testnet() -> TargetEnvironment:
    return TargetEnvironment(name="arbitrumSepolia", tags={"public", "test", "arbitrumSepolia"})


@pytest.fixture
def mainnet() -> TargetEnvironment:
    return TargetEnvironment(name="arbitrum", tags={"public", "mainnet", "arbitrum"})
