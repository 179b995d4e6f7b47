"""Device-local ledger for elections the store could not accept in time."""

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from ballot_builder.domain.elections import ElectionRecord, PersistenceOrigin

_logger = logging.getLogger(__name__)

_RECORD_ADAPTER = TypeAdapter(ElectionRecord)
_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class FallbackLedger(Protocol):
    """Key-value durable store of election records keyed by id."""

    def put(self, record: ElectionRecord) -> None:
        """Insert or overwrite a record."""

    def get(self, record_id: str) -> ElectionRecord | None:
        """Return a record by id, if present."""

    def get_all_unsynced(self) -> list[ElectionRecord]:
        """Return records not yet acknowledged by the remote store."""

    def mark_synced(self, record_id: str) -> ElectionRecord | None:
        """Flip a record to remote origin and return it."""

    def evict(self, record_id: str) -> None:
        """Remove a record."""


@dataclass
class FileFallbackLedger(FallbackLedger):
    """One JSON file per record, replaced atomically on every write."""

    directory: Path

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def put(self, record: ElectionRecord) -> None:
        """Write a record so readers see either the old or the new version."""
        path = self._path(record.id)
        data = _RECORD_ADAPTER.dump_json(record)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=f".{record.id}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, record_id: str) -> ElectionRecord | None:
        """Return a record by id, if present."""
        path = self._path(record_id)
        if not path.exists():
            return None
        return _RECORD_ADAPTER.validate_json(path.read_bytes())

    def get_all_unsynced(self) -> list[ElectionRecord]:
        """Return local-fallback records, oldest first."""
        records: list[ElectionRecord] = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                record = _RECORD_ADAPTER.validate_json(path.read_bytes())
            except (OSError, ValidationError):
                _logger.exception("Unreadable ledger entry %s", path.name)
                continue
            if record.persistence_origin is PersistenceOrigin.LOCAL_FALLBACK:
                records.append(record)
        return sorted(records, key=lambda record: record.created_at)

    def mark_synced(self, record_id: str) -> ElectionRecord | None:
        """Flip a record to remote origin in place."""
        record = self.get(record_id)
        if record is None:
            return None
        synced = record.as_remote()
        self.put(synced)
        return synced

    def evict(self, record_id: str) -> None:
        """Delete a record file."""
        self._path(record_id).unlink(missing_ok=True)

    def _path(self, record_id: str) -> Path:
        if not _SAFE_ID.match(record_id):
            raise ValueError(f"Unsafe ledger record id: {record_id!r}")
        return self.directory / f"{record_id}.json"


@dataclass
class InMemoryFallbackLedger(FallbackLedger):
    """Process-local ledger; records are lost on restart."""

    records: dict[str, ElectionRecord] = field(default_factory=dict)

    def put(self, record: ElectionRecord) -> None:
        self.records[record.id] = record

    def get(self, record_id: str) -> ElectionRecord | None:
        return self.records.get(record_id)

    def get_all_unsynced(self) -> list[ElectionRecord]:
        records = [
            record
            for record in self.records.values()
            if record.persistence_origin is PersistenceOrigin.LOCAL_FALLBACK
        ]
        return sorted(records, key=lambda record: record.created_at)

    def mark_synced(self, record_id: str) -> ElectionRecord | None:
        record = self.records.get(record_id)
        if record is None:
            return None
        self.records[record_id] = record.as_remote()
        return self.records[record_id]

    def evict(self, record_id: str) -> None:
        self.records.pop(record_id, None)
