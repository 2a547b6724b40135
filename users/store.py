"""
SQLite user and message store.

Only what the save-message job needs: a user row with its
accepting-messages flag, and the messages addressed to it. Usernames are
stored trimmed and lower-cased, so lookups are case-insensitive.

Messages live in their own table and are appended with a single INSERT, so
two concurrent save-message jobs for the same user cannot overwrite each
other. There is still no lock between the accepting-messages check and the
insert: a message can land just after the user switched the flag off.
Separately, a save-message job that outlives the broker's stalled-job lease in
another process can be requeued and run twice, storing the message twice.
"""

import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from shared.log import create_logger

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Users")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    is_verified INTEGER NOT NULL DEFAULT 0,
    is_accepting_messages INTEGER NOT NULL DEFAULT 1
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL REFERENCES users(username) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_username ON messages(username, created_at);
"""


def normalize_username(username: str) -> str:
    return username.strip().lower()


class UserStore:
    """User records and their inbound messages in one SQLite file."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def create_user(
        self,
        username: str,
        email: str,
        is_accepting_messages: bool = True,
        is_verified: bool = False,
    ) -> dict:
        """
        Insert a user.

        Raises:
            ValueError: username already taken
        """
        name = normalize_username(username)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO users (username, email, is_verified, is_accepting_messages) "
                    "VALUES (?, ?, ?, ?)",
                    (name, email, int(is_verified), int(is_accepting_messages)),
                )
        except sqlite3.IntegrityError:
            raise ValueError(f"Username {name} is already taken") from None
        log_debug(f"Created user {name}")
        return self.get_user(name)

    def get_user(self, username: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?", (normalize_username(username),)
            ).fetchone()
        if row is None:
            return None
        return {
            'username': row['username'],
            'email': row['email'],
            'isVerified': bool(row['is_verified']),
            'isAcceptingMessages': bool(row['is_accepting_messages']),
        }

    def set_accepting_messages(self, username: str, accepting: bool) -> bool:
        """Flip the accepting-messages flag. Returns False if the user doesn't exist."""
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE users SET is_accepting_messages = ? WHERE username = ?",
                (int(accepting), normalize_username(username)),
            )
        return cur.rowcount == 1

    def add_message(self, username: str, content: str, created_at: Optional[float] = None) -> dict:
        """Append a message to a user's inbox."""
        name = normalize_username(username)
        created = time.time() if created_at is None else created_at
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO messages (username, content, created_at) VALUES (?, ?, ?)",
                (name, content, created),
            )
        log_trace(f"Stored message {cur.lastrowid} for {name}")
        return {'id': cur.lastrowid, 'content': content, 'createdAt': created}

    def get_messages(self, username: str) -> list[dict]:
        """Messages for a user, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, content, created_at FROM messages WHERE username = ? "
                "ORDER BY created_at, id",
                (normalize_username(username),),
            ).fetchall()
        return [{'id': r['id'], 'content': r['content'], 'createdAt': r['created_at']} for r in rows]
