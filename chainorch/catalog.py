"""
BuildCatalog - Resolve build references to deployable artifacts.

The catalog provides:
- Loading compiled artifacts (JSON with contractName/abi/bytecode/deployedBytecode)
  from a build output directory tree
- Fully-qualified lookups ("contracts/Vault.sol:Vault") as well as bare names
- Caching loaded artifacts
- Content fingerprints of the *deployed* (runtime) code section, which is what
  the chain reports for an installed instance; constructor-only code is never
  part of the fingerprint

A build reference is either a catalog name or an InlineArtifact carrying the
interface and code directly.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from chainorch.errors import ArtifactNotFound

logger = logging.getLogger(__name__)


FINGERPRINT_PREFIX = "sha256:"


def code_bytes(code: Union[str, bytes, None]) -> bytes:
    """
    Normalize code given as hex text or raw bytes.

    Args:
        code: "0x"-prefixed (or bare) hex string, bytes, or None

    Returns:
        The raw bytes; empty for None, "", or "0x"

    Raises:
        ValueError: If a string is not valid hex
    """
    if code is None:
        return b""
    if isinstance(code, (bytes, bytearray)):
        return bytes(code)
    text = code.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise ValueError(f"Invalid hex code: {code[:20]}...") from e


def fingerprint(code: Union[str, bytes, None]) -> Optional[str]:
    """
    Compute the content fingerprint of executable code.

    Hex text and raw bytes of the same code produce the same fingerprint.

    Returns:
        "sha256:<hex>" string, or None when there is no code
    """
    raw = code_bytes(code)
    if not raw:
        return None
    return FINGERPRINT_PREFIX + hashlib.sha256(raw).hexdigest()


@dataclass(frozen=True)
class InlineArtifact:
    """
    A build payload supplied directly instead of by catalog name.

    Attributes:
        interface: ABI entries
        creation_code: Code sent to create an instance (constructor included)
        deployed_code: Runtime code, if known; without it no fingerprint can
            be computed and installed code is accepted as current
        name: Optional label used in logs and records
    """
    interface: list[Any]
    creation_code: str
    deployed_code: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Artifact:
    """
    A resolved, deployable build artifact.

    Attributes:
        name: Catalog name (None for unnamed inline artifacts)
        interface: ABI entries
        creation_code: Creation code as 0x-prefixed hex
        deployed_code: Runtime code as 0x-prefixed hex ("0x" if unknown)
        fingerprint: Fingerprint of deployed_code, None if unknown
    """
    name: Optional[str]
    interface: list[Any] = field(default_factory=list)
    creation_code: str = "0x"
    deployed_code: str = "0x"
    fingerprint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: Optional[str] = None) -> "Artifact":
        """Build from a compiler artifact (contractName/abi/bytecode/deployedBytecode)."""
        deployed = _as_hex(data.get("deployedBytecode"))
        return cls(
            name=name or data.get("contractName"),
            interface=list(data.get("abi", [])),
            creation_code=_as_hex(data.get("bytecode")),
            deployed_code=deployed,
            fingerprint=fingerprint(deployed),
        )

    @classmethod
    def from_inline(cls, inline: InlineArtifact) -> "Artifact":
        deployed = _as_hex(inline.deployed_code)
        return cls(
            name=inline.name,
            interface=list(inline.interface),
            creation_code=_as_hex(inline.creation_code),
            deployed_code=deployed,
            fingerprint=fingerprint(deployed),
        )


BuildRef = Union[str, InlineArtifact]


def _as_hex(value: Any) -> str:
    """Normalize compiler output to 0x-prefixed hex; link-less objects only."""
    if value is None:
        return "0x"
    if isinstance(value, dict):
        # solc-style {"object": "..."}
        value = value.get("object", "")
    text = str(value)
    if not text.startswith("0x"):
        text = "0x" + text
    return text.lower()


class BuildCatalog:
    """
    Catalog of compiled artifacts.

    Loads artifacts from JSON files organized in a directory tree, the way
    common Solidity toolchains lay out their build output:

        artifacts/
            contracts/
                Vault.sol/
                    Vault.json
                    Vault.dbg.json      (ignored)
            build-info/                 (ignored)

    Artifacts may also be registered in memory with add().
    """

    def __init__(self, artifacts_dir: Path | str | None = None):
        """
        Initialize the catalog.

        Args:
            artifacts_dir: Root of the build output; None for a purely
                in-memory catalog
        """
        self._artifacts_dir = Path(artifacts_dir) if artifacts_dir is not None else None
        self._cache: dict[str, Artifact] = {}

    @property
    def artifacts_dir(self) -> Optional[Path]:
        return self._artifacts_dir

    def add(self, name: str, data: dict[str, Any] | Artifact) -> Artifact:
        """Register (or replace) an artifact under name."""
        artifact = data if isinstance(data, Artifact) else Artifact.from_dict(data, name=name)
        if artifact.name != name:
            artifact = Artifact(
                name=name,
                interface=artifact.interface,
                creation_code=artifact.creation_code,
                deployed_code=artifact.deployed_code,
                fingerprint=artifact.fingerprint,
            )
        self._cache[name] = artifact
        return artifact

    def resolve(self, ref: BuildRef) -> Artifact:
        """
        Resolve a build reference.

        Args:
            ref: Catalog name (bare or "path/File.sol:Name") or InlineArtifact

        Returns:
            The resolved Artifact

        Raises:
            ArtifactNotFound: If a named reference is not in the catalog, or
                names an artifact with no deployed code (interface/abstract)
        """
        if isinstance(ref, InlineArtifact):
            return Artifact.from_inline(ref)
        return self.load(ref)

    def load(self, name: str) -> Artifact:
        """
        Load a named, deployable artifact.

        Raises:
            ArtifactNotFound: If missing, unreadable, or without deployed code
        """
        artifact = self._load_any(name)
        if artifact.fingerprint is None:
            raise ArtifactNotFound(
                name,
                f"Artifact {name} has no deployed code (interface or abstract contract)",
            )
        return artifact

    def interface_of(self, name: str) -> list[Any]:
        """ABI of a named artifact; interface-only artifacts are accepted."""
        return self._load_any(name).interface

    def _load_any(self, name: str) -> Artifact:
        """Load a named artifact, caching the result."""
        if name in self._cache:
            return self._cache[name]

        path = self._find_artifact(name)
        if path is None:
            raise ArtifactNotFound(name)

        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ArtifactNotFound(name, f"Failed to load artifact {path}: {e}") from e

        artifact = Artifact.from_dict(data, name=name)
        logger.debug(f"Loaded artifact {name} from {path}")
        self._cache[name] = artifact
        return artifact

    def names(self) -> list[str]:
        """
        List all available artifact names.

        Returns:
            Sorted list of names found in the artifacts directory or registered
        """
        names = set(self._cache)
        if self._artifacts_dir is not None and self._artifacts_dir.exists():
            for f in self._artifacts_dir.glob("**/*.json"):
                if _is_artifact_file(f):
                    names.add(f.stem)
        return sorted(names)

    def _find_artifact(self, name: str) -> Optional[Path]:
        """
        Find the artifact file for a name.

        "contracts/Vault.sol:Vault" maps to contracts/Vault.sol/Vault.json;
        a bare name is searched for recursively.
        """
        if self._artifacts_dir is None:
            return None

        if ":" in name:
            source, contract = name.rsplit(":", 1)
            path = self._artifacts_dir / source / f"{contract}.json"
            return path if path.exists() else None

        root_path = self._artifacts_dir / f"{name}.json"
        if root_path.exists():
            return root_path

        matches = sorted(
            f for f in self._artifacts_dir.glob(f"**/{name}.json") if _is_artifact_file(f)
        )
        if len(matches) > 1:
            logger.warning(
                f"Artifact name {name} is ambiguous ({len(matches)} matches); using {matches[0]}"
            )
        return matches[0] if matches else None

    def clear_cache(self) -> None:
        """Clear the artifact cache (in-memory registrations included)."""
        self._cache.clear()


def _is_artifact_file(path: Path) -> bool:
    return not path.name.endswith(".dbg.json") and "build-info" not in path.parts
