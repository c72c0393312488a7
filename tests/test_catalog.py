"""Tests for the build catalog and code fingerprints."""

import hashlib
import json

import pytest

from chainorch.catalog import (
    Artifact,
    BuildCatalog,
    InlineArtifact,
    code_bytes,
    fingerprint,
)
from chainorch.errors import ArtifactNotFound


def write_artifact(root, source: str, data: dict):
    path = root / "contracts" / source / f"{data['contractName']}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


# =============================================================================
# Fingerprints
# =============================================================================


class TestFingerprint:
    """fingerprint() is a pure function of the runtime code."""

    def test_sha256_of_code_bytes(self):
        expected = "sha256:" + hashlib.sha256(bytes.fromhex("6080aa")).hexdigest()
        assert fingerprint("0x6080aa") == expected

    def test_hex_and_bytes_agree(self):
        assert fingerprint("0x6080AA") == fingerprint(b"\x60\x80\xaa")

    @pytest.mark.parametrize("empty", [None, "", "0x", b""])
    def test_no_code_has_no_fingerprint(self, empty):
        assert fingerprint(empty) is None

    def test_invalid_hex(self):
        with pytest.raises(ValueError):
            code_bytes("0xzz")


class TestArtifact:
    def test_fingerprint_covers_deployed_code_only(self, make_artifact):
        a = Artifact.from_dict(make_artifact("A", "aa01"))
        b = Artifact.from_dict({**make_artifact("A", "aa01"), "bytecode": "0x6080ffff"})
        assert a.fingerprint == b.fingerprint == fingerprint("0xaa01")

    def test_solc_style_object(self):
        artifact = Artifact.from_dict({
            "contractName": "A",
            "abi": [],
            "bytecode": {"object": "6080aa01"},
            "deployedBytecode": {"object": "aa01"},
        })
        assert artifact.creation_code == "0x6080aa01"
        assert artifact.fingerprint == fingerprint("aa01")

    def test_inline_without_deployed_code(self):
        artifact = Artifact.from_inline(InlineArtifact(interface=[], creation_code="0x6080aa"))
        assert artifact.fingerprint is None
        assert artifact.name is None


# =============================================================================
# BuildCatalog
# =============================================================================


class TestBuildCatalog:
    """Tests for BuildCatalog lookups."""

    def test_resolve_in_memory(self, catalog):
        artifact = catalog.resolve("A")
        assert artifact.name == "A"
        assert artifact.fingerprint == fingerprint("aa01")

    def test_resolve_inline(self, catalog):
        inline = InlineArtifact(interface=[{"type": "fallback"}], creation_code="0x60", deployed_code="0xcc", name="X")
        artifact = catalog.resolve(inline)
        assert artifact.name == "X"
        assert artifact.fingerprint == fingerprint("cc")

    def test_unknown_name(self, catalog):
        with pytest.raises(ArtifactNotFound, match="Nope"):
            catalog.resolve("Nope")

    def test_interface_only_artifact_is_not_deployable(self, catalog):
        with pytest.raises(ArtifactNotFound, match="no deployed code"):
            catalog.load("IOracle")
        assert catalog.interface_of("IOracle") == [{"type": "function", "name": "price"}]

    def test_load_from_directory(self, tmp_path, make_artifact):
        write_artifact(tmp_path, "Vault.sol", make_artifact("Vault", "bb01"))
        catalog = BuildCatalog(tmp_path)
        assert catalog.load("Vault").fingerprint == fingerprint("bb01")
        assert catalog.load("contracts/Vault.sol:Vault").fingerprint == fingerprint("bb01")

    def test_debug_and_build_info_files_ignored(self, tmp_path, make_artifact):
        write_artifact(tmp_path, "Vault.sol", make_artifact("Vault", "bb01"))
        (tmp_path / "contracts" / "Vault.sol" / "Vault.dbg.json").write_text("{}")
        (tmp_path / "build-info").mkdir()
        (tmp_path / "build-info" / "abc.json").write_text("{}")
        assert BuildCatalog(tmp_path).names() == ["Vault"]

    def test_ambiguous_name_picks_first(self, tmp_path, make_artifact):
        write_artifact(tmp_path, "a/Token.sol", make_artifact("Token", "01"))
        write_artifact(tmp_path, "b/Token.sol", make_artifact("Token", "02"))
        assert BuildCatalog(tmp_path).load("Token").fingerprint == fingerprint("01")

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "Broken.json"
        path.write_text("{not json")
        with pytest.raises(ArtifactNotFound, match="Failed to load"):
            BuildCatalog(tmp_path).load("Broken")

    def test_loads_are_cached(self, tmp_path, make_artifact):
        path = write_artifact(tmp_path, "Vault.sol", make_artifact("Vault", "bb01"))
        catalog = BuildCatalog(tmp_path)
        first = catalog.load("Vault")
        path.write_text(json.dumps(make_artifact("Vault", "bb02")))
        assert catalog.load("Vault") is first
        catalog.clear_cache()
        assert catalog.load("Vault").fingerprint == fingerprint("bb02")
