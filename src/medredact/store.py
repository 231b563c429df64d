"""Local mapping store backed by SQLite, encrypted at rest.

Placeholder mappings are the only place original PII survives after
redaction.  They are kept on this machine, keyed by conversation, and are
never part of anything sent to the note service.  Original values are
Fernet-encrypted (AES with a fresh IV per write, HMAC-authenticated); the
key comes from config or lives in a ``<db>.key`` file readable only by the
owner, never in the database itself.

Usage:
    store = MappingStore("~/.medredact/mappings.db")
    store.save("visit-42", result.mapping)
    vault = store.load_vault("visit-42")     # continue numbering later
"""

from __future__ import annotations
import logging
import os
import sqlite3
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from .errors import StoreError
from .vault import PlaceholderVault

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mappings (
    conversation_id TEXT NOT NULL,
    token TEXT NOT NULL,
    original BLOB NOT NULL,
    created_at REAL NOT NULL DEFAULT (julianday('now')),
    PRIMARY KEY (conversation_id, token)
);
"""


def key_path(db_path: str | Path) -> Path:
    """Where the generated key of a database file is kept."""
    db_path = Path(db_path).expanduser()
    return db_path.with_name(db_path.name + ".key")


def _load_or_create_key(path: Path) -> bytes:
    if path.exists():
        return path.read_bytes().strip()
    key = Fernet.generate_key()
    # Owner read/write only, created atomically
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key)
    logger.info("Generated a new mapping-store key at %s", path)
    return key


class MappingStore:
    """Persistent placeholder mappings, one set per conversation."""

    __slots__ = ("_db", "_fernet")

    def __init__(self, db_path: str | Path = "mappings.db", *, key: str | bytes | None = None) -> None:
        if str(db_path) == ":memory:":
            key = key or Fernet.generate_key()
        else:
            db_path = Path(db_path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            if not key:
                key = _load_or_create_key(key_path(db_path))
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise StoreError(f"invalid store key: {e}") from e
        self._db = sqlite3.connect(str(db_path), check_same_thread=False)
        self._db.executescript(_SCHEMA)

    def save(self, conversation_id: str, mapping: dict[str, str]) -> None:
        """Upsert every token of ``mapping`` for the conversation."""
        self._db.executemany(
            "INSERT OR REPLACE INTO mappings (conversation_id, token, original) VALUES (?, ?, ?)",
            [
                (conversation_id, token, self._fernet.encrypt(original.encode("utf-8")))
                for token, original in mapping.items()
            ],
        )
        self._db.commit()
        logger.debug("Saved %d mappings for conversation %s", len(mapping), conversation_id)

    def load(self, conversation_id: str) -> dict[str, str]:
        """Decrypt the mapping of a conversation.  A wrong key raises StoreError."""
        rows = self._db.execute(
            "SELECT token, original FROM mappings WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchall()
        try:
            return {
                token: self._fernet.decrypt(original).decode("utf-8")
                for token, original in rows
            }
        except InvalidToken as e:
            raise StoreError(f"cannot decrypt mappings of {conversation_id} (wrong key?)") from e

    def load_vault(self, conversation_id: str) -> PlaceholderVault:
        return PlaceholderVault.from_mapping(self.load(conversation_id))

    def list_conversations(self) -> list[str]:
        rows = self._db.execute(
            "SELECT DISTINCT conversation_id FROM mappings ORDER BY conversation_id"
        ).fetchall()
        return [r[0] for r in rows]

    def delete(self, conversation_id: str) -> None:
        """Forget every mapping of a conversation."""
        self._db.execute("DELETE FROM mappings WHERE conversation_id = ?", (conversation_id,))
        self._db.commit()

    def close(self) -> None:
        self._db.close()
