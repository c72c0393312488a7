"""
TargetEnvironment - the network a run is aimed at.

Step applicability predicates are written against this object, e.g.
``lambda env: env.is_testnet`` for a step that only seeds test fixtures.
Networks are described by a name plus free-form tags; the conventional tags
are "test", "mainnet", "public" and "private", plus one chain family tag
("arbitrum", "arbitrumSepolia", "ethereum").
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NetworkType(str, Enum):
    """Chain family a network belongs to."""
    ARBITRUM = "arbitrum"
    ARBITRUM_SEPOLIA = "arbitrumSepolia"
    ETHEREUM = "ethereum"
    DEV = "dev"


@dataclass(frozen=True)
class TargetEnvironment:
    """
    Network description used for planning.

    Attributes:
        name: Network name (also the per-network record directory)
        tags: Network tags
        chain_id: Optional chain id, informational
    """
    name: str
    tags: frozenset[str] = field(default_factory=frozenset)
    chain_id: int | None = None

    def __post_init__(self):
        # Accept any iterable of tags
        object.__setattr__(self, "tags", frozenset(self.tags))

    @property
    def is_testnet(self) -> bool:
        return "test" in self.tags

    @property
    def is_mainnet(self) -> bool:
        return "mainnet" in self.tags

    @property
    def is_public_testnet(self) -> bool:
        return "public" in self.tags and "test" in self.tags

    @property
    def network_type(self) -> NetworkType:
        """Chain family; networks without a family tag are dev networks."""
        if "arbitrum" in self.tags:
            return NetworkType.ARBITRUM
        if "arbitrumSepolia" in self.tags:
            return NetworkType.ARBITRUM_SEPOLIA
        if "ethereum" in self.tags:
            return NetworkType.ETHEREUM
        return NetworkType.DEV

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "tags": sorted(self.tags)}
        if self.chain_id is not None:
            result["chain_id"] = self.chain_id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetEnvironment":
        return cls(
            name=data["name"],
            tags=frozenset(data.get("tags", [])),
            chain_id=data.get("chain_id"),
        )

    def __repr__(self) -> str:
        return f"TargetEnvironment(name={self.name}, tags={sorted(self.tags)})"
