"""
chainorch - Deployment orchestrator for interdependent on-chain components

Plans tagged deployment steps, then deploys, upgrades or migrates each named
target exactly once per change, recording every instance in a per-network
record store.
"""

__version__ = "0.1.0"


__all__ = [
    "ChainorchConfig",
    "load_config",
    "get_chainorch_home",
    "DeployEngine",
    "Orchestrator",
    "Scheduler",
    "with_retry",
]

from .config import ChainorchConfig, load_config, get_chainorch_home
from .engine import DeployEngine
from .runner import Orchestrator
from .scheduler import Scheduler
from .utils import with_retry
