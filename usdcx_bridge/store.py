"""Bridge transaction history and attestation progress.

:py:class:`BridgeStore` keeps

- ``tx:{deposit_tx_hash}`` -> :py:class:`~usdcx_bridge.xreserve.types.BridgeTransaction`
- ``attestation:{message_hash}`` -> :py:class:`~usdcx_bridge.xreserve.types.AttestationStatus`

on top of any string keyed mutable mapping. Use a plain ``dict`` for tests and
:py:class:`SQLiteKeyValueStore` to survive process restarts.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import MutableMapping
from pathlib import Path
from threading import get_ident
from typing import Any, Iterator

from usdcx_bridge.xreserve.types import AttestationState, AttestationStatus, BridgeTransaction, TransactionStatus

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore(MutableMapping):
    """A simple key-value store for sqlite3, honouring Python dictionary interface.

    - Keys must be strings
    - Values are anything :py:func:`json.dumps` accepts
    - Can be used across threads, one connection per thread
    """

    def __init__(self, filename: Path, autocommit=True):
        """
        :param filename: Path to the sqlite database

        :param autocommit: Whether to autocommit every time new entry is added to the database
        """
        assert isinstance(filename, Path)
        self.filename = filename
        self.autocommit = autocommit
        self.thread_connection_map: dict[int, sqlite3.Connection] = {}

    @property
    def conn(self) -> sqlite3.Connection:
        """One connection per thread"""
        thread_id = get_ident()
        if thread_id not in self.thread_connection_map:
            conn = sqlite3.connect(self.filename)
            conn.execute("CREATE TABLE IF NOT EXISTS kv (key text unique, value text)")
            self.thread_connection_map[thread_id] = conn
        return self.thread_connection_map[thread_id]

    def close(self):
        """Close the connection of the calling thread."""
        thread_id = get_ident()
        conn = self.thread_connection_map.pop(thread_id, None)
        if conn is not None:
            conn.commit()
            conn.close()

    def __getitem__(self, key: str) -> Any:
        assert type(key) == str, f"Only string keys allowed, got {key}"
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            raise KeyError(key)
        return json.loads(row[0])

    def __setitem__(self, key: str, value: Any):
        assert type(key) == str, f"Only string keys allowed, got {key}"
        self.conn.execute("REPLACE INTO kv (key, value) VALUES (?,?)", (key, json.dumps(value)))
        if self.autocommit:
            self.conn.commit()

    def __delitem__(self, key: str):
        if key not in self:
            raise KeyError(key)
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        if self.autocommit:
            self.conn.commit()

    def __contains__(self, key) -> bool:
        return self.conn.execute("SELECT 1 FROM kv WHERE key = ?", (key,)).fetchone() is not None

    def __iter__(self) -> Iterator[str]:
        return iter([row[0] for row in self.conn.execute("SELECT key FROM kv")])

    def __len__(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]


class BridgeStore:
    """Persist bridge transactions and attestation progress.

    Thread safe. Hashes are stored lowercased.
    """

    def __init__(self, kv: MutableMapping | None = None):
        """
        :param kv:
            Backing key-value mapping. In-memory dict if not given.
        """
        self.kv = kv if kv is not None else {}
        self.lock = threading.RLock()

    @classmethod
    def open_sqlite(cls, path: Path) -> "BridgeStore":
        """Open or create a SQLite backed store."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Opening bridge store %s", path)
        return cls(SQLiteKeyValueStore(path))

    def save_transaction(self, transaction: BridgeTransaction):
        with self.lock:
            self.kv[f"tx:{transaction.deposit_tx_hash.lower()}"] = transaction.to_dict()

    def get_transaction(self, deposit_tx_hash: str) -> BridgeTransaction | None:
        with self.lock:
            data = self.kv.get(f"tx:{deposit_tx_hash.lower()}")
        return BridgeTransaction.from_dict(data) if data else None

    def list_transactions(self, status: TransactionStatus | None = None) -> list[BridgeTransaction]:
        """All transactions, oldest first.

        :param status:
            Only transactions in this status
        """
        with self.lock:
            items = [value for key, value in self.kv.items() if key.startswith("tx:")]
        transactions = [BridgeTransaction.from_dict(item) for item in items]
        if status is not None:
            transactions = [t for t in transactions if t.status == status]
        return sorted(transactions, key=lambda t: t.created_at)

    def save_attestation_status(self, status: AttestationStatus) -> AttestationStatus:
        """Store polling progress.

        A complete status is never overwritten.

        :return:
            What is now stored
        """
        key = f"attestation:{status.message_hash.lower()}"
        with self.lock:
            existing = self.kv.get(key)
            if existing and existing["state"] == AttestationState.complete.value:
                if status.state != AttestationState.complete:
                    logger.warning("Ignoring %s status for already attested message %s", status.state.value, status.message_hash)
                return AttestationStatus.from_dict(existing)
            self.kv[key] = status.to_dict()
        return status

    def get_attestation_status(self, message_hash: str) -> AttestationStatus | None:
        with self.lock:
            data = self.kv.get(f"attestation:{message_hash.lower()}")
        return AttestationStatus.from_dict(data) if data else None
