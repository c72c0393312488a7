"""
RecordStore - Persist deployment records by logical name.

The RecordStore guarantees:
- save() is last-writer-wins and overwrites any prior record under that name
- delete() is idempotent (deleting an absent name is not an error)
- get() raises RecordNotFound; get_or_none() returns None instead

It does not check that a record's address has code installed (that is the
change detector's job) and provides no locking: one orchestration process
owns a store for the duration of a run.

Storage backends:
- In-memory (for testing and dry runs)
- File-based, one JSON file per record (survives restarts)
"""

import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from chainorch.errors import RecordNotFound
from chainorch.schemas import DeploymentRecord

logger = logging.getLogger(__name__)


# Record names become file names; keep them to a safe alphabet
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


class RecordStore(ABC):
    """
    Abstract base class for deployment record storage.

    Implementations must provide get_or_none/save/delete/names; get() and
    exists() are derived from them.
    """

    @abstractmethod
    def get_or_none(self, name: str) -> Optional[DeploymentRecord]:
        """
        Retrieve a record by name.

        Args:
            name: Logical name

        Returns:
            The DeploymentRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def save(self, name: str, record: DeploymentRecord) -> DeploymentRecord:
        """
        Store a record under name, replacing any existing one.

        The stored record's name is always the key it is stored under.

        Returns:
            The record as stored
        """
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove the record under name, if any."""
        pass

    @abstractmethod
    def names(self) -> list[str]:
        """Sorted list of stored names."""
        pass

    def get(self, name: str) -> DeploymentRecord:
        """
        Retrieve a record that must exist.

        Raises:
            RecordNotFound: If there is no record under name
        """
        record = self.get_or_none(name)
        if record is None:
            raise RecordNotFound(name)
        return record

    def exists(self, name: str) -> bool:
        return self.get_or_none(name) is not None

    @staticmethod
    def _keyed(name: str, record: DeploymentRecord) -> DeploymentRecord:
        return record if record.name == name else record.renamed(name)


class InMemoryRecordStore(RecordStore):
    """
    In-memory implementation of RecordStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._records: dict[str, DeploymentRecord] = {}

    def get_or_none(self, name: str) -> Optional[DeploymentRecord]:
        return self._records.get(name)

    def save(self, name: str, record: DeploymentRecord) -> DeploymentRecord:
        stored = self._keyed(name, record)
        self._records[name] = stored
        return stored

    def delete(self, name: str) -> None:
        self._records.pop(name, None)

    def names(self) -> list[str]:
        return sorted(self._records)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._records.clear()


class FileRecordStore(RecordStore):
    """
    File-based implementation of RecordStore.

    Stores one JSON file per record:
        store_dir/
            {name}.json

    Writes go to a temporary file in the same directory and are moved into
    place, so a crash never leaves a half-written record behind.
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        self._store_dir.mkdir(parents=True, exist_ok=True)

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def _path(self, name: str) -> Path:
        if not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid record name: {name!r}")
        return self._store_dir / f"{name}.json"

    def get_or_none(self, name: str) -> Optional[DeploymentRecord]:
        path = self._path(name)
        if not path.exists():
            return None
        with open(path) as f:
            data = json.load(f)
        data["name"] = name
        return DeploymentRecord.from_dict(data)

    def save(self, name: str, record: DeploymentRecord) -> DeploymentRecord:
        stored = self._keyed(name, record)
        path = self._path(name)

        fd, tmp_path = tempfile.mkstemp(dir=self._store_dir, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(stored.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.debug(f"Saved record {name} -> {stored.address}")
        return stored

    def delete(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def names(self) -> list[str]:
        return sorted(
            f.stem for f in self._store_dir.glob("*.json") if not f.name.startswith(".")
        )
