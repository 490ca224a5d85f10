"""Per-user key-value cache for subscription snapshots."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from wakti.domain.access import SubscriptionSnapshot

_logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Synchronous string key-value storage."""

    def get(self, key: str) -> str | None:
        """Return the stored value, if present."""

    def set(self, key: str, value: str) -> None:
        """Store a value under a key."""

    def delete(self, key: str) -> None:
        """Remove a key if present."""


@dataclass
class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store."""

    _entries: dict[str, str]

    def __init__(self) -> None:
        self._entries = {}

    def get(self, key: str) -> str | None:
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        self._entries[key] = value

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)


@dataclass
class JsonFileKeyValueStore(KeyValueStore):
    """Store persisted as a single JSON object on disk."""

    path: Path

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        entries = self._load()
        entries[key] = value
        self._write(entries)

    def delete(self, key: str) -> None:
        entries = self._load()
        if entries.pop(key, None) is not None:
            self._write(entries)

    def _load(self) -> dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            _logger.warning("Unreadable cache file %s, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, entries: dict[str, object]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(entries), encoding="utf-8")
        tmp_path.replace(self.path)


@dataclass
class SubscriptionSnapshotCache:
    """Reads and writes snapshots under ``{namespace}_{user_id}`` keys."""

    store: KeyValueStore
    namespace: str = "wakti_sub_cache"

    def key_for(self, user_id: str) -> str:
        return f"{self.namespace}_{user_id}"

    def read(self, user_id: str) -> SubscriptionSnapshot | None:
        """Return the cached snapshot regardless of age, if parseable."""
        raw = self.store.get(self.key_for(user_id))
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            return SubscriptionSnapshot.from_payload(payload)
        except (ValueError, KeyError, TypeError, AttributeError):
            _logger.warning("Discarding malformed subscription cache for %s", user_id)
            return None

    def write(self, user_id: str, snapshot: SubscriptionSnapshot) -> None:
        self.store.set(self.key_for(user_id), json.dumps(snapshot.to_payload()))
