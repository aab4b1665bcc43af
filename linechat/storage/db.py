"""
Database Module - user and message persistence (MySQL)
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

import mysql.connector
from mysql.connector import Error, errorcode


log = logging.getLogger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INT AUTO_INCREMENT PRIMARY KEY,
        login VARCHAR(50) NOT NULL UNIQUE,
        passhash VARCHAR(255) NOT NULL
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id BIGINT AUTO_INCREMENT PRIMARY KEY,
        sender_id INT NOT NULL,
        receiver_id INT NOT NULL,
        body TEXT NOT NULL,
        ts BIGINT NOT NULL,
        delivered BOOLEAN NOT NULL DEFAULT FALSE,
        INDEX idx_backlog (receiver_id, sender_id, delivered),
        FOREIGN KEY (sender_id) REFERENCES users (id),
        FOREIGN KEY (receiver_id) REFERENCES users (id)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
)


class StoreError(RuntimeError):
    """A persistence operation failed (store unreachable, bad write, ...)."""


class DuplicateIdentityError(StoreError):
    """The login is already registered."""


class UnknownIdentityError(StoreError):
    """A message references a login that is not registered."""


@dataclass(frozen=True)
class UserRecord:
    id: int
    login: str
    passhash: str


@dataclass(frozen=True)
class ChatMessage:
    id: int
    sender: str
    receiver: str
    body: str
    timestamp: int
    delivered: bool


class DatabaseManager:
    """Manages the MySQL connection shared by the user and message stores."""

    def __init__(
        self,
        host: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
        port: Optional[int] = None,
        ssl_ca: Optional[str] = None,
        connect_immediately: bool = True,
    ):
        """
        Initialize database connection parameters.
        Environment variables are used as defaults if parameters are not provided:
          LINECHAT_DB_HOST, LINECHAT_DB_USER, LINECHAT_DB_PASSWORD,
          LINECHAT_DB_NAME, LINECHAT_DB_PORT, LINECHAT_DB_SSL_CA
        """
        self.host = host or os.getenv("LINECHAT_DB_HOST", "localhost")
        self.user = user or os.getenv("LINECHAT_DB_USER", "linechat_user")
        self.password = password or os.getenv("LINECHAT_DB_PASSWORD", "")
        self.database = database or os.getenv("LINECHAT_DB_NAME", "linechat")
        self.port = int(port or os.getenv("LINECHAT_DB_PORT", "3306"))
        self.ssl_ca = ssl_ca or os.getenv("LINECHAT_DB_SSL_CA")

        self.connection: Optional[mysql.connector.MySQLConnection] = None
        if connect_immediately:
            self.connect()

    def connect(self) -> bool:
        """Establish database connection."""
        try:
            conn_params = {
                "host": self.host,
                "user": self.user,
                "password": self.password,
                "database": self.database,
                "port": self.port,
                "connection_timeout": 5,
            }
            if self.ssl_ca:
                conn_params.update(
                    {
                        "ssl_ca": self.ssl_ca,
                        "ssl_verify_cert": True,
                    }
                )
            self.connection = mysql.connector.connect(**conn_params)
            if self.connection.is_connected():
                log.info("[+] Database connected (%s@%s:%s/%s)", self.user, self.host, self.port, self.database)
                return True
            return False
        except Error as e:
            log.error("[-] Database connection error: %s", e)
            self.connection = None
            return False

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive; reconnect if needed."""
        if self.connection is None:
            self.connect()
            return
        try:
            self.connection.ping(reconnect=True, attempts=1, delay=0)
        except Error:
            self.connect()

    def disconnect(self) -> None:
        """Close the database connection."""
        if self.connection and self.connection.is_connected():
            self.connection.close()
            self.connection = None
            log.info("[+] Database disconnected")

    @contextmanager
    def transaction(self) -> Iterator["mysql.connector.cursor.MySQLCursor"]:
        """
        Yield a buffered cursor; commit on success, roll back on failure.
        MySQL errors surface as StoreError.
        """
        self._ensure_connection()
        if not self.connection or not self.connection.is_connected():
            raise StoreError("Database not connected")
        cursor = self.connection.cursor(buffered=True)
        try:
            yield cursor
            self.connection.commit()
        except Error as e:
            self._rollback()
            if e.errno == errorcode.ER_DUP_ENTRY:
                raise DuplicateIdentityError(str(e)) from e
            raise StoreError(str(e)) from e
        except Exception:
            self._rollback()
            raise
        finally:
            cursor.close()

    def _rollback(self) -> None:
        try:
            if self.connection and self.connection.in_transaction:
                self.connection.rollback()
        except Error as e:
            log.warning("[-] Rollback failed: %s", e)

    def create_schema(self) -> None:
        """Create the users/messages tables if they do not exist yet."""
        with self.transaction() as cursor:
            for statement in SCHEMA:
                cursor.execute(statement)
        log.info("[+] Schema ready")


class UserStore:
    """Identity lookup and credential persistence."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def insert(self, login: str, passhash: str) -> int:
        """
        Insert a new user and return its id.
        Raises DuplicateIdentityError if the login is taken.
        """
        with self.db.transaction() as cursor:
            cursor.execute("INSERT INTO users (login, passhash) VALUES (%s, %s)", (login, passhash))
            user_id = cursor.lastrowid
        log.info("[+] User registered: %s", login)
        return user_id

    def find_by_login(self, login: str) -> Optional[UserRecord]:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT id, login, passhash FROM users WHERE login = %s LIMIT 1", (login,))
            row = cursor.fetchone()
        if row is None:
            return None
        return UserRecord(id=row[0], login=row[1], passhash=row[2])

    def exists(self, login: str) -> bool:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT 1 FROM users WHERE login = %s LIMIT 1", (login,))
            return cursor.fetchone() is not None


_MESSAGE_COLUMNS = """
    SELECT m.id, s.login, r.login, m.body, m.ts, m.delivered
    FROM messages m
    JOIN users s ON s.id = m.sender_id
    JOIN users r ON r.id = m.receiver_id
"""


def _to_message(row) -> ChatMessage:
    return ChatMessage(
        id=row[0],
        sender=row[1],
        receiver=row[2],
        body=row[3],
        timestamp=int(row[4]),
        delivered=bool(row[5]),
    )


class MessageStore:
    """Append-only record of chat messages with a delivered flag."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def append(self, sender: str, receiver: str, body: str, timestamp: int, delivered: bool = False) -> int:
        """
        Persist a message and return its id.
        Raises UnknownIdentityError if either login is not registered.
        """
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO messages (sender_id, receiver_id, body, ts, delivered)
                SELECT s.id, r.id, %s, %s, %s
                FROM users s JOIN users r ON r.login = %s
                WHERE s.login = %s
                """,
                (body, timestamp, delivered, receiver, sender),
            )
            if cursor.rowcount == 0:
                raise UnknownIdentityError(f"Unknown sender or receiver: {sender} -> {receiver}")
            return cursor.lastrowid

    def find_undelivered(self, sender: str, receiver: str) -> List[ChatMessage]:
        """Backlog from `sender` to `receiver`, oldest first."""
        with self.db.transaction() as cursor:
            cursor.execute(
                _MESSAGE_COLUMNS
                + " WHERE s.login = %s AND r.login = %s AND m.delivered = FALSE ORDER BY m.ts, m.id",
                (sender, receiver),
            )
            rows = cursor.fetchall()
        return [_to_message(row) for row in rows]

    def find_between(self, a: str, b: str, limit: int) -> List[ChatMessage]:
        """The `limit` most recent messages exchanged between `a` and `b`, oldest first."""
        with self.db.transaction() as cursor:
            cursor.execute(
                _MESSAGE_COLUMNS
                + """
                WHERE (s.login = %s AND r.login = %s) OR (s.login = %s AND r.login = %s)
                ORDER BY m.ts DESC, m.id DESC
                LIMIT %s
                """,
                (a, b, b, a, limit),
            )
            rows = cursor.fetchall()
        return [_to_message(row) for row in reversed(rows)]

    def mark_delivered(self, message_id: int) -> None:
        with self.db.transaction() as cursor:
            cursor.execute("UPDATE messages SET delivered = TRUE WHERE id = %s", (message_id,))
