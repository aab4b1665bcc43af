"""Shared fakes and fixtures: in-memory stores standing in for MySQL."""

from __future__ import annotations

import asyncio
import itertools
from typing import Dict, List, Optional

import pytest

from linechat.config import ServerConfig
from linechat.server import ChatServer
from linechat.session import Session
from linechat.storage.credentials import PasswordHasher
from linechat.storage.db import (
    ChatMessage,
    DuplicateIdentityError,
    StoreError,
    UnknownIdentityError,
    UserRecord,
)


# ============================================================
# Fake stores
# ============================================================
class MemoryUserStore:
    def __init__(self):
        self.rows: Dict[str, UserRecord] = {}
        self.fail = False
        self._ids = itertools.count(1)

    def _check(self):
        if self.fail:
            raise StoreError("store offline")

    def insert(self, login: str, passhash: str) -> int:
        self._check()
        if login in self.rows:
            raise DuplicateIdentityError(login)
        record = UserRecord(id=next(self._ids), login=login, passhash=passhash)
        self.rows[login] = record
        return record.id

    def find_by_login(self, login: str) -> Optional[UserRecord]:
        self._check()
        return self.rows.get(login)

    def exists(self, login: str) -> bool:
        self._check()
        return login in self.rows


class MemoryMessageStore:
    def __init__(self, users: MemoryUserStore):
        self.users = users
        self.rows: List[dict] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise StoreError("store offline")

    def _record(self, row: dict) -> ChatMessage:
        return ChatMessage(**row)

    def append(self, sender, receiver, body, timestamp, delivered=False) -> int:
        self._check()
        if sender not in self.users.rows or receiver not in self.users.rows:
            raise UnknownIdentityError(f"{sender} -> {receiver}")
        row = {
            "id": len(self.rows) + 1,
            "sender": sender,
            "receiver": receiver,
            "body": body,
            "timestamp": timestamp,
            "delivered": delivered,
        }
        self.rows.append(row)
        return row["id"]

    def find_undelivered(self, sender, receiver) -> List[ChatMessage]:
        self._check()
        rows = [
            r for r in self.rows
            if r["sender"] == sender and r["receiver"] == receiver and not r["delivered"]
        ]
        rows.sort(key=lambda r: (r["timestamp"], r["id"]))
        return [self._record(r) for r in rows]

    def find_between(self, a, b, limit) -> List[ChatMessage]:
        self._check()
        rows = [r for r in self.rows if {r["sender"], r["receiver"]} == {a, b}]
        rows.sort(key=lambda r: (r["timestamp"], r["id"]))
        return [self._record(r) for r in rows[-limit:]]

    def mark_delivered(self, message_id: int) -> None:
        self._check()
        self.rows[message_id - 1]["delivered"] = True

    def by_body(self, body: str) -> dict:
        return next(r for r in self.rows if r["body"] == body)


class StepClock:
    """Deterministic clock: each call is one second later."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class FakeWriter:
    def __init__(self, peername=("127.0.0.1", 50000)):
        self.peername = peername
        self.data = bytearray()
        self.closed = False

    def get_extra_info(self, name, default=None):
        return self.peername if name == "peername" else default

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


# ============================================================
# Fixtures
# ============================================================
@pytest.fixture
def fast_hasher():
    return PasswordHasher(pepper=b"", n=2**4, r=8, p=1)


@pytest.fixture
def user_store():
    return MemoryUserStore()


@pytest.fixture
def message_store(user_store):
    return MemoryMessageStore(user_store)


@pytest.fixture
def chat_server(user_store, message_store, fast_hasher):
    server = ChatServer(
        config=ServerConfig(host="127.0.0.1", port=0),
        user_store=user_store,
        message_store=message_store,
        hasher=fast_hasher,
    )
    server.router.clock = StepClock()
    return server


@pytest.fixture
def make_session(chat_server):
    """Build detached sessions (no socket) bound to `chat_server`."""
    def factory(port: int = 50000) -> Session:
        return Session(None, FakeWriter(("127.0.0.1", port)), chat_server)

    return factory


def take(session: Session) -> List[str]:
    """Pop and return every line queued on a detached session."""
    lines = list(session.outgoing)
    session.outgoing.clear()
    return lines


# ============================================================
# Network helpers
# ============================================================
async def read_until(reader: asyncio.StreamReader, predicate, timeout: float = 3.0) -> List[str]:
    """Read lines until one satisfies `predicate`; return all lines read."""
    lines: List[str] = []
    while True:
        raw = await asyncio.wait_for(reader.readline(), timeout)
        if not raw:
            raise ConnectionError(f"EOF before match; got {lines!r}")
        line = raw.decode("utf-8").rstrip("\r\n")
        lines.append(line)
        if predicate(line):
            return lines
