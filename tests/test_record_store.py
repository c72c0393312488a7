"""Tests for record store backends."""

import json

import pytest

from chainorch.errors import RecordNotFound
from chainorch.record_store import FileRecordStore, InMemoryRecordStore
from chainorch.schemas import DeploymentRecord, RecordKind


def record(name="A", address="0x01", fp="sha256:01"):
    return DeploymentRecord(name=name, address=address, kind=RecordKind.DIRECT, fingerprint=fp)


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRecordStore()
    return FileRecordStore(tmp_path / "deployments" / "dev")


class TestRecordStoreContract:
    """Behaviour shared by every backend."""

    def test_get_missing_raises(self, any_store):
        with pytest.raises(RecordNotFound):
            any_store.get("A")
        assert any_store.get_or_none("A") is None
        assert not any_store.exists("A")

    def test_save_then_get(self, any_store):
        any_store.save("A", record())
        assert any_store.get("A").same_deployment(record())

    def test_last_writer_wins(self, any_store):
        any_store.save("A", record(address="0x01"))
        any_store.save("A", record(address="0x02"))
        assert any_store.get("A").address == "0x02"

    def test_save_keys_record_by_name(self, any_store):
        stored = any_store.save("A", record(name="A_NEW"))
        assert stored.name == "A"
        assert any_store.get("A").name == "A"

    def test_delete_is_idempotent(self, any_store):
        any_store.save("A", record())
        any_store.delete("A")
        any_store.delete("A")
        assert not any_store.exists("A")

    def test_names_sorted(self, any_store):
        any_store.save("B", record())
        any_store.save("A", record())
        assert any_store.names() == ["A", "B"]


class TestFileRecordStore:
    """File layout details."""

    def test_one_json_file_per_record(self, tmp_path):
        store = FileRecordStore(tmp_path)
        store.save("Vault", record(name="Vault"))
        data = json.loads((tmp_path / "Vault.json").read_text())
        assert data["address"] == "0x01"
        assert data["fingerprint"] == "sha256:01"
        assert "abi" in data

    def test_survives_new_instance(self, tmp_path):
        FileRecordStore(tmp_path).save("A", record())
        assert FileRecordStore(tmp_path).get("A").address == "0x01"

    def test_no_temp_files_left(self, tmp_path):
        store = FileRecordStore(tmp_path)
        store.save("A", record())
        assert [p.name for p in tmp_path.iterdir()] == ["A.json"]

    @pytest.mark.parametrize("bad", ["../escape", "a/b", ""])
    def test_invalid_names_rejected(self, tmp_path, bad):
        with pytest.raises(ValueError):
            FileRecordStore(tmp_path).get_or_none(bad)
