"""
Local persistence for pending transaction records.

Records are kept as one JSON list under a single namespaced key in a
small key-value store. Every mutation reads the whole list, changes it,
and writes the whole list back; there are no partial updates.

Two key-value backends are provided:
- MemoryKeyValueStore: lives as long as the process (session scope)
- SqliteKeyValueStore: a single-table SQLite file (durable scope)
"""

import json
import logging
import os
import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from intake.errors import StoreBusyError, ValidationError
from intake.models.transaction import CATEGORY_TYPES, TransactionRecord

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "intake.pending_records"

# Seconds after which a batch lock left by a dead process is ignored
DEFAULT_LOCK_TIMEOUT = 3600


# ============================================================
# Key-value backends
# ============================================================

class KeyValueStore(Protocol):
    """
    Minimal byte-string key-value interface the record store needs.

    Any object with these three methods can back a RecordStore, which
    keeps the record logic testable without a real storage engine.
    """

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """In-process store; contents are lost when the process exits."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteKeyValueStore:
    """
    Durable store backed by one SQLite table.

    A connection is opened per operation so the file can be shared with
    other processes and is never left locked.
    """

    def __init__(self, path: str):
        self.path = path
        with self._conn() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                  key TEXT PRIMARY KEY,
                  value BLOB NOT NULL
                );
                """
            )

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(self.path)
        con.execute("PRAGMA journal_mode=WAL;")
        try:
            yield con
            con.commit()
        finally:
            con.close()

    def get(self, key: str) -> Optional[bytes]:
        with self._conn() as con:
            row = con.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
            return bytes(row[0]) if row else None

    def set(self, key: str, value: bytes) -> None:
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO kv(key, value) VALUES (?, ?)",
                (key, sqlite3.Binary(value)),
            )

    def remove(self, key: str) -> None:
        with self._conn() as con:
            con.execute("DELETE FROM kv WHERE key=?", (key,))


def open_key_value_store(storage: str) -> KeyValueStore:
    """
    Open the backend named by the storage setting.

    Args:
        storage: "memory" or a path to a SQLite file
    """
    if storage == "memory":
        return MemoryKeyValueStore()
    return SqliteKeyValueStore(storage)


# ============================================================
# Record store
# ============================================================

class RecordStore:
    """
    Ordered list of pending records kept under one key.

    Records keep insertion order, which is also the order a batch sends
    them in. While a batch is in flight the store is held exclusively
    through a lock entry next to the records (`<key>.lock`), so every
    RecordStore over the same backend sees it, including ones in other
    processes sharing a SQLite file. Edits and a second batch are refused
    with StoreBusyError until the lock is released or goes stale.

    Stored items that no longer parse as records are kept as they are and
    written back after every mutation, so a record is only ever removed
    by the user or by a successful send.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        key: str = DEFAULT_STORAGE_KEY,
        max_local_attachment_bytes: int = 5 * 1024 * 1024,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.kv = kv
        self.key = key
        self.max_local_attachment_bytes = max_local_attachment_bytes
        self.lock_timeout = lock_timeout
        self.clock = clock

    @property
    def lock_key(self) -> str:
        return f"{self.key}.lock"

    @property
    def unreadable_key(self) -> str:
        return f"{self.key}.unreadable"

    # ------------------------------------------------------------
    # Whole-list IO
    # ------------------------------------------------------------

    def _read_all(self) -> Tuple[List[TransactionRecord], List[Any]]:
        """
        Read the stored list.

        Returns:
            (records, unparsed) where unparsed holds the raw items that
            failed validation, in their stored order
        """
        raw = self.kv.get(self.key)
        if not raw:
            return [], []

        try:
            items = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._keep_unreadable(raw)
            logger.error(f"Stored records under '{self.key}' are unreadable, treating as empty: {e}")
            return [], []

        if not isinstance(items, list):
            self._keep_unreadable(raw)
            logger.error(f"Stored records under '{self.key}' are not a list, treating as empty")
            return [], []

        records = []
        unparsed = []
        for item in items:
            try:
                records.append(TransactionRecord.from_dict(item))
            except (ValidationError, KeyError, TypeError, AttributeError) as e:
                item_id = item.get('id', '?') if isinstance(item, dict) else '?'
                logger.warning(f"Keeping unparsed stored record {item_id} as is: {e}")
                unparsed.append(item)
        return records, unparsed

    def _read(self) -> List[TransactionRecord]:
        return self._read_all()[0]

    def _write(self, records: List[TransactionRecord], unparsed: List[Any]) -> None:
        items = [r.to_dict() for r in records] + list(unparsed)
        payload = json.dumps(items, ensure_ascii=False)
        self.kv.set(self.key, payload.encode('utf-8'))

    def _keep_unreadable(self, raw: bytes) -> None:
        """Copy an unreadable list aside once, before it can be overwritten."""
        if self.kv.get(self.unreadable_key) is None:
            self.kv.set(self.unreadable_key, raw)
            logger.warning(f"Copied unreadable records to '{self.unreadable_key}'")

    def _prepare(self, record: TransactionRecord) -> TransactionRecord:
        """Apply the local attachment policy before a record is stored."""
        attachment = record.attachment
        if attachment is None:
            return record

        limit = self.max_local_attachment_bytes
        if limit and attachment.size > limit:
            raise ValidationError(
                f"Attachment '{attachment.name}' is {attachment.size} bytes, "
                f"larger than the {limit} byte limit"
            )
        if attachment.content is None:
            # Persist bytes, not a path that may disappear before the send
            return record.replaced(attachment=attachment.inlined())
        return record

    # ------------------------------------------------------------
    # Batch lock
    # ------------------------------------------------------------

    def _load_lock(self) -> Optional[Dict[str, Any]]:
        """Return the current lock entry, or None if there is no live lock."""
        raw = self.kv.get(self.lock_key)
        if not raw:
            return None

        try:
            lock = json.loads(raw.decode('utf-8'))
            acquired_at = float(lock['acquired_at'])
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed lock '{self.lock_key}': {e}")
            return None

        age = self.clock() - acquired_at
        if age > self.lock_timeout:
            logger.warning(
                f"Ignoring stale lock '{self.lock_key}' held by pid {lock.get('pid')} "
                f"for {age:.0f}s"
            )
            return None
        return lock

    def _check_not_busy(self) -> None:
        lock = self._load_lock()
        if lock is not None:
            raise StoreBusyError(
                f"A batch send is in progress (pid {lock.get('pid')}); try again when it finishes"
            )

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def list(self) -> List[TransactionRecord]:
        """Return all pending records in insertion order."""
        return self._read()

    def list_category(self, category: str) -> List[TransactionRecord]:
        """
        Return pending records of one batch category.

        Raises:
            ValueError: If the category is unknown
        """
        if category not in CATEGORY_TYPES:
            raise ValueError(
                f"Unknown category: '{category}'. Must be one of: {tuple(CATEGORY_TYPES)}"
            )
        types = CATEGORY_TYPES[category]
        return [r for r in self._read() if r.type in types]

    def get(self, record_id: str) -> Optional[TransactionRecord]:
        for record in self._read():
            if record.id == record_id:
                return record
        return None

    def __len__(self) -> int:
        return len(self._read())

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------

    def add(self, record: TransactionRecord) -> TransactionRecord:
        """
        Append a new record.

        Raises:
            ValidationError: If the id already exists or the attachment is too large
            StoreBusyError: If a batch is in flight
        """
        self._check_not_busy()
        record = self._prepare(record)
        records, unparsed = self._read_all()
        if any(r.id == record.id for r in records):
            raise ValidationError(f"Record {record.id} already exists")
        records.append(record)
        self._write(records, unparsed)
        logger.debug(f"Stored record {record.id} ({record.type})")
        return record

    def update(self, record_id: str, record: TransactionRecord) -> TransactionRecord:
        """
        Replace the record with the given id, keeping its position and id.

        Raises:
            KeyError: If no record has that id
            StoreBusyError: If a batch is in flight
        """
        self._check_not_busy()
        if record.id != record_id:
            record = replace(record, id=record_id)
        record = self._prepare(record)

        records, unparsed = self._read_all()
        for i, existing in enumerate(records):
            if existing.id == record_id:
                records[i] = record
                self._write(records, unparsed)
                return record
        raise KeyError(record_id)

    def delete(self, record_id: str) -> bool:
        """Remove one record; returns False if it did not exist."""
        self._check_not_busy()
        records, unparsed = self._read_all()
        remaining = [r for r in records if r.id != record_id]
        if len(remaining) == len(records):
            return False
        self._write(remaining, unparsed)
        return True

    def remove_many(self, record_ids: Iterable[str]) -> int:
        """
        Remove every record whose id is in `record_ids`.

        Used by the batch sender for reconciliation, so it is allowed
        while the store is held exclusively.

        Returns:
            Number of records removed
        """
        ids = set(record_ids)
        if not ids:
            return 0
        records, unparsed = self._read_all()
        remaining = [r for r in records if r.id not in ids]
        removed = len(records) - len(remaining)
        if removed:
            self._write(remaining, unparsed)
        return removed

    def clear(self) -> None:
        """Drop every pending record (end of the work day)."""
        self._check_not_busy()
        self.kv.remove(self.key)

    @contextmanager
    def exclusive(self) -> Iterator["RecordStore"]:
        """
        Hold the store for the duration of a batch.

        Writes a lock entry with a token, the process id and the time it
        was taken. Only the holder's own token is removed on exit, so a
        holder whose lock went stale and was taken over leaves the new
        lock in place.

        Raises:
            StoreBusyError: If another batch already holds it
        """
        self._check_not_busy()
        token = uuid.uuid4().hex
        lock = {"token": token, "pid": os.getpid(), "acquired_at": self.clock()}
        self.kv.set(self.lock_key, json.dumps(lock).encode('utf-8'))

        held = self._load_lock()
        if held is None or held.get('token') != token:
            raise StoreBusyError("Another batch took the store at the same time; try again")

        logger.debug(f"Acquired lock '{self.lock_key}'")
        try:
            yield self
        finally:
            current = self._load_lock()
            if current is not None and current.get('token') == token:
                self.kv.remove(self.lock_key)
                logger.debug(f"Released lock '{self.lock_key}'")

    @property
    def busy(self) -> bool:
        return self._load_lock() is not None
