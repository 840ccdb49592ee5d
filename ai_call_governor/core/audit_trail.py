"""
Durable, size-bounded audit trail.

Records structured domain events newest-first, persists them to storage
on a debounce, and rotates the whole trail out to a JSON chunk file once
its serialized size crosses the configured threshold.

Durability is best-effort: storage and export failures are logged and
never interrupt event recording.
"""

import json
import logging
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ai_call_governor.storage.models import AuditEventType, AuditLogEntry
from ai_call_governor.storage.repository import StorageRepository
from .debounce import DebouncedFlusher

logger = logging.getLogger(__name__)

AUDIT_LOG_STORAGE_KEY = "personaAuditLog"
DEFAULT_LOG_LIMIT = 500
DEFAULT_DOWNLOAD_THRESHOLD_KB = 51200  # 50MB
ROTATION_EVENT = "AUDIT_LOG_AUTOSAVED_AND_CLEARED"

STORAGE_ERRORS = (sqlite3.Error, OSError, TypeError, ValueError)

Subscriber = Callable[[List[AuditLogEntry]], None]
Exporter = Callable[[str, List[Dict[str, Any]]], str]


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def detach_payload(value: Any, _active: Optional[Set[int]] = None) -> Any:
    """Deep copy of value in JSON shape.

    Dict keys become strings, tuples become lists, other objects become
    their str() and circular references become ``"[Circular]"``.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    active = _active if _active is not None else set()
    if id(value) in active:
        return "[Circular]"
    if isinstance(value, dict):
        active.add(id(value))
        try:
            return {
                key if isinstance(key, str) else str(key): detach_payload(item, active)
                for key, item in value.items()
            }
        finally:
            active.discard(id(value))
    if isinstance(value, (list, tuple)):
        active.add(id(value))
        try:
            return [detach_payload(item, active) for item in value]
        finally:
            active.discard(id(value))
    return str(value)


def serialize_entries(entries: List[AuditLogEntry]) -> str:
    """Serialize entries to the JSON array layout used for persistence."""
    return json.dumps([entry.to_dict() for entry in entries], default=str)


def rotation_filename(chunk_number: int, timestamp: Optional[str] = None) -> str:
    """Name of the exported chunk file, e.g.
    ``persona_audit_log_chunk_3_2024-01-01T12-00-00-000Z.json``.
    """
    stamp = re.sub(r"[:.]", "-", timestamp or _iso_now())
    return f"persona_audit_log_chunk_{chunk_number}_{stamp}.json"


class FileExporter:
    """Writes rotated chunks as pretty-printed JSON files."""

    def __init__(self, export_dir: Union[str, Path] = "."):
        self.export_dir = Path(export_dir)

    def __call__(self, filename: str, entries: List[Dict[str, Any]]) -> str:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.export_dir / filename
        with open(path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2, default=str)
        return str(path)


class AuditTrail:
    """Append-only log of domain events with persistence and rotation."""

    def __init__(
        self,
        storage: Optional[StorageRepository] = None,
        storage_key: str = AUDIT_LOG_STORAGE_KEY,
        log_limit: int = DEFAULT_LOG_LIMIT,
        download_threshold_kb: float = DEFAULT_DOWNLOAD_THRESHOLD_KB,
        export_dir: Union[str, Path] = ".",
        exporter: Optional[Exporter] = None,
        flush_interval_s: float = 1.0,
    ):
        """Initialize the trail and load any persisted entries.

        Args:
            storage: Durable storage; None keeps the trail in memory only
            storage_key: Key the JSON array is stored under
            log_limit: Maximum number of entries kept
            download_threshold_kb: Rotation threshold, 0 disables rotation
            export_dir: Directory for rotated chunk files
            exporter: Custom chunk exporter, defaults to FileExporter
            flush_interval_s: Debounce interval for persistence
        """
        if log_limit < 1:
            raise ValueError("log_limit must be >= 1")

        self.storage = storage
        self.storage_key = storage_key
        self.log_limit = log_limit
        self._exporter = exporter or FileExporter(export_dir)
        self._logs: List[AuditLogEntry] = []
        self._subscribers: List[Subscriber] = []
        self._chunk_counter = 0
        self._rotating = False
        self._download_threshold_bytes = 0.0
        self.set_download_threshold(download_threshold_kb)
        self._persister = DebouncedFlusher(self._save_to_storage, flush_interval_s)

        self._load_from_storage()

    @property
    def chunk_counter(self) -> int:
        return self._chunk_counter

    @property
    def download_threshold_bytes(self) -> float:
        return self._download_threshold_bytes

    def set_download_threshold(self, kilobytes: float) -> None:
        """Set the rotation threshold in kilobytes; 0 disables rotation."""
        if kilobytes < 0:
            raise ValueError("download threshold must be >= 0")
        self._download_threshold_bytes = kilobytes * 1024

    def log_event(
        self,
        event_type: Union[AuditEventType, str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Record a domain event.

        Args:
            event_type: Event type, as enum member or its string value
            payload: Event data; its shape depends on the type

        Returns:
            The recorded entry
        """
        entry = AuditLogEntry(
            id=f"audit-{uuid.uuid4().hex[:12]}",
            timestamp=_iso_now(),
            type=AuditEventType(event_type),
            payload=detach_payload(payload or {}),
        )

        self._logs.insert(0, entry)
        del self._logs[self.log_limit:]

        self._persister.schedule()
        self._notify()

        if self._download_threshold_bytes > 0 and not self._rotating:
            try:
                oversized = self.serialized_size() > self._download_threshold_bytes
            except STORAGE_ERRORS:
                logger.exception("[AUDIT] Failed to measure audit log size, rotation skipped")
                oversized = False
            if oversized:
                self.rotate()

        return entry

    def rotate(self) -> Optional[str]:
        """Export the current trail as a chunk file and start a new one.

        Returns:
            Location of the exported chunk, or None if the export failed
        """
        self._rotating = True
        try:
            self._chunk_counter += 1
            entries = [entry.to_dict() for entry in self._logs]
            logger.info(
                f"[AUDIT] Rotating {len(entries)} entries out to chunk #{self._chunk_counter}"
            )
            try:
                location = self._exporter(rotation_filename(self._chunk_counter), entries)
            except STORAGE_ERRORS:
                self._chunk_counter -= 1
                logger.exception("[AUDIT] Failed to export audit log chunk")
                return None

            self.clear(reset_counter=False)
            self.log_event(AuditEventType.SYSTEM_EVENT, {
                "event": ROTATION_EVENT,
                "details": {
                    "downloadedEntries": len(entries),
                    "chunkNumber": self._chunk_counter,
                },
            })
            return location
        finally:
            self._rotating = False

    def get_logs(self, event_type: Optional[Union[AuditEventType, str]] = None) -> List[AuditLogEntry]:
        """Return a snapshot of entries, newest first, optionally filtered by type."""
        if event_type is None:
            return list(self._logs)
        wanted = AuditEventType(event_type)
        return [entry for entry in self._logs if entry.type == wanted]

    def serialized_size(self) -> int:
        """Size in bytes of the trail's persisted JSON form."""
        return len(serialize_entries(self._logs).encode("utf-8"))

    def clear(self, reset_counter: bool = True) -> None:
        """Remove all entries and erase them from storage."""
        self._logs = []
        if reset_counter:
            self._chunk_counter = 0
        self._persister.cancel()
        self._notify()

        if self.storage is None:
            return
        try:
            self.storage.remove_item(self.storage_key)
        except STORAGE_ERRORS:
            logger.exception("[AUDIT] Failed to clear audit log from storage")

    def flush(self) -> None:
        """Persist pending changes immediately."""
        self._persister.flush()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback invoked now and after every change.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)
        self._deliver(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            self._deliver(callback)

    def _deliver(self, callback: Subscriber) -> None:
        try:
            callback(list(self._logs))
        except Exception:
            logger.exception("[AUDIT] Subscriber failed")

    def _load_from_storage(self) -> None:
        if self.storage is None:
            return
        try:
            raw = self.storage.get_item(self.storage_key)
            if raw:
                data = json.loads(raw)
                if isinstance(data, list):
                    self._logs = [AuditLogEntry.from_dict(item) for item in data][:self.log_limit]
        except STORAGE_ERRORS:
            logger.exception("[AUDIT] Failed to load audit log from storage")
            self._logs = []

    def _save_to_storage(self) -> None:
        if self.storage is None:
            return
        try:
            self.storage.set_item(self.storage_key, serialize_entries(self._logs))
        except STORAGE_ERRORS:
            logger.exception("[AUDIT] Failed to save audit log to storage")
