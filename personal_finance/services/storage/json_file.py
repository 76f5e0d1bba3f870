"""
JSON file storage backends.

The ledger is one JSON document holding every collection; it is rewritten
after each mutation through a temporary file and os.replace, so a crash
never leaves half a document on disk. The audit log is JSON Lines and is
only ever appended to.

Disk writes are retried with tenacity, the same way remote calls are:
transient OSErrors (antivirus locks, network shares) usually clear up.
"""

import json
import os
from pathlib import Path
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from personal_finance.models.audit import AuditEvent
from personal_finance.services.storage.interface import (
    AuditStorageInterface,
    StorageConnectionError,
    StorageError,
)
from personal_finance.services.storage.memory import (
    COLLECTIONS,
    InMemoryLedgerStorage,
)


logger = structlog.get_logger(__name__)

_write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(OSError),
    reraise=True,
)


@_write_retry
def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fh:
        fh.write(content)
    os.replace(tmp_path, path)


@_write_retry
def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(line + "\n")


class JsonFileLedgerStorage(InMemoryLedgerStorage):
    """
    Ledger storage persisted to a single JSON document.

    Reads are served from memory; the file is loaded once at construction.
    """

    def __init__(self, path: Path | str):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info("ledger_file_missing", path=str(self.path))
            return

        try:
            document = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageConnectionError(
                f"Cannot read ledger file {self.path}: {e}"
            ) from e

        try:
            for name, model in COLLECTIONS.items():
                store = self._data[name]
                for raw in document.get(name, []):
                    entity = model.model_validate(raw)
                    store[entity.id] = entity
        except ValidationError as e:
            raise StorageError(f"Ledger file {self.path} is corrupt: {e}") from e

        logger.info(
            "ledger_loaded",
            path=str(self.path),
            **{name: len(store) for name, store in self._data.items()},
        )

    def _serialize(self) -> str:
        document = {
            name: [
                entity.model_dump(mode="json")
                for entity in sorted(store.values(), key=lambda e: e.created_at)
            ]
            for name, store in self._data.items()
        }
        return json.dumps(document, ensure_ascii=False, indent=2)

    def _on_change(self) -> None:
        try:
            _atomic_write(self.path, self._serialize())
        except OSError as e:
            logger.error("ledger_write_failed", path=str(self.path), error=str(e))
            raise StorageError(f"Failed to write ledger file {self.path}: {e}") from e


class JsonFileAuditStorage(AuditStorageInterface):
    """Audit log stored as JSON Lines, one event per line."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _read_events(self) -> list[AuditEvent]:
        if not self.path.exists():
            return []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StorageConnectionError(
                f"Cannot read audit file {self.path}: {e}"
            ) from e

        events = []
        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(AuditEvent.model_validate_json(line))
            except ValidationError as e:
                raise StorageError(
                    f"Audit file {self.path} line {number} is corrupt: {e}"
                ) from e
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            _append_line(self.path, event.model_dump_json())
        except OSError as e:
            raise StorageError(f"Failed to append audit event: {e}") from e
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._read_events(), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
