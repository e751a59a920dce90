"""Local payment history.

The history is a most-recent-first list of issued payment requests kept
under a single storage key as a JSON array::

    [{"id": "2026-01-05T10:00:00.000Z", "amount": 250.5, "date": "2026-01-05T10:00:00.000Z"}, ...]

Every mutation rewrites the whole snapshot. A malformed snapshot is dropped
on load and the history starts empty.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterator, Protocol

from config import HISTORY_KEY
from upi import PaymentRequest

logger = logging.getLogger(__name__)


class StorageUnavailable(Exception):
    """The storage medium rejected a read or write (I/O error, quota exceeded)."""


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


def _check_quota(value: str, quota_bytes: int | None) -> None:
    if quota_bytes is not None and len(value.encode("utf-8")) > quota_bytes:
        raise StorageUnavailable(f"Storage quota exceeded ({quota_bytes} bytes)")


class MemoryStorage:
    """Dict-backed storage, used in tests and as a throwaway fallback."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_quota(value, self.quota_bytes)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStorage:
    """One file per key inside *directory*; writes are atomic replaces."""

    def __init__(self, directory: Path, quota_bytes: int | None = None) -> None:
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"Failed to read {self._path(key).name}: {e}") from e

    def set(self, key: str, value: str) -> None:
        _check_quota(value, self.quota_bytes)
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageUnavailable(f"Failed to write {path.name}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Failed to remove {key}: {e}") from e

    def __contains__(self, key: str) -> bool:
        return self._path(key).exists()


@dataclass(frozen=True)
class HistoryEntry:
    """One issued payment request as kept in the history."""

    id: str
    amount: Decimal
    date: str

    @classmethod
    def from_request(cls, request: PaymentRequest) -> "HistoryEntry":
        stamp = request.created_at_iso
        return cls(id=stamp, amount=request.amount, date=stamp)

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        """Build an entry from its JSON form.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("history entry must be an object")
        entry_id, amount, date = data.get("id"), data.get("amount"), data.get("date")
        if not isinstance(entry_id, str) or not isinstance(date, str):
            raise ValueError("history entry id/date must be strings")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValueError("history entry amount must be a number")
        try:
            value = Decimal(str(amount))
        except InvalidOperation as e:
            raise ValueError(f"bad amount {amount!r}") from e
        if not value.is_finite():
            raise ValueError(f"bad amount {amount!r}")
        return cls(id=entry_id, amount=value, date=date)

    def to_dict(self) -> dict:
        return {"id": self.id, "amount": float(self.amount), "date": self.date}


class PaymentHistoryStore:
    """Ordered, id-unique history persisted as one snapshot under *key*."""

    def __init__(self, storage: KeyValueStorage, key: str = HISTORY_KEY) -> None:
        self.storage = storage
        self.key = key
        self._entries: list[HistoryEntry] = []
        self._unread = False
        self.load()

    @property
    def entries(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self.entries)

    def load(self) -> list[HistoryEntry]:
        """Replace the in-memory history with the persisted snapshot.

        An unreadable snapshot (I/O error) is left on disk and merged back
        before the next write; a malformed one is discarded.
        """
        self._entries = []
        try:
            entries = self._read_snapshot()
        except StorageUnavailable as e:
            logger.warning("Payment history unreadable, keeping it on disk: %s", e)
            self._unread = True
            return []
        except (ValueError, RecursionError) as e:
            self._unread = False
            self._discard(e)
            return []

        self._unread = False
        self._entries = entries
        return list(self._entries)

    def _read_snapshot(self) -> list[HistoryEntry]:
        raw = self.storage.get(self.key)
        if raw is None:
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("history snapshot must be a JSON array")

        # Keep the first (most recent) occurrence of each id
        seen: set[str] = set()
        entries = []
        for entry in (HistoryEntry.from_dict(item) for item in data):
            if entry.id not in seen:
                seen.add(entry.id)
                entries.append(entry)
        return entries

    def _discard(self, error: Exception) -> None:
        logger.warning("Discarding malformed payment history: %s", error)
        try:
            self.storage.remove(self.key)
        except StorageUnavailable as remove_error:
            logger.warning("Failed to remove malformed history: %s", remove_error)

    def record(self, entry: HistoryEntry) -> None:
        """Prepend *entry* and persist the whole history.

        Raises:
            StorageUnavailable: If the snapshot write fails. The in-memory
                history already contains *entry* in that case.
        """
        self._entries = [entry] + [e for e in self._entries if e.id != entry.id]
        self.persist()

    def persist(self) -> None:
        """Write the in-memory history as a single snapshot.

        Raises:
            StorageUnavailable: If the write fails, or if a snapshot that
                could not be read at load time is still unreadable.
        """
        if self._unread:
            try:
                persisted = self._read_snapshot()
            except (ValueError, RecursionError) as e:
                logger.warning("Overwriting malformed payment history: %s", e)
                persisted = []
            ids = {e.id for e in self._entries}
            self._entries += [e for e in persisted if e.id not in ids]
            self._unread = False

        snapshot = json.dumps([e.to_dict() for e in self._entries], ensure_ascii=False)
        self.storage.set(self.key, snapshot)

    def clear(self) -> None:
        """Drop every entry and remove the persisted snapshot."""
        self._entries = []
        self.storage.remove(self.key)
        self._unread = False
        logger.info("Payment history cleared (%s)", self.key)
