#!/usr/bin/env python3
"""
Storage test suite against a real MySQL server.

Covers:
  - DatabaseManager schema creation
  - UserStore insert / lookup / duplicate detection
  - MessageStore append, backlog, history window, delivered flag

Skipped when the database in LINECHAT_DB_* is not reachable.
"""

from __future__ import annotations

import uuid

import pytest
from dotenv import load_dotenv

from linechat.storage.db import (
    DatabaseManager,
    DuplicateIdentityError,
    MessageStore,
    UnknownIdentityError,
    UserStore,
)

load_dotenv()


def banner(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)


@pytest.fixture(scope="module")
def db():
    print("\n[*] Connecting to database...")
    manager = DatabaseManager(connect_immediately=False)
    if not manager.connect():
        pytest.skip("DB connection failed. Skipping DB tests.")
    manager.create_schema()
    yield manager
    manager.disconnect()


@pytest.fixture
def logins(db):
    """Three fresh registered logins, unique per test run."""
    users = UserStore(db)
    tag = uuid.uuid4().hex[:8]
    names = [f"{name}_{tag}" for name in ("alice", "bob", "carol")]
    for name in names:
        users.insert(name, "scrypt$16$8$1$AAAA$00")
    return names


def test_users(db):
    banner("[TEST] UserStore")
    users = UserStore(db)
    login = f"dave_{uuid.uuid4().hex[:8]}"

    assert users.exists(login) is False
    assert users.find_by_login(login) is None

    user_id = users.insert(login, "scrypt$16$8$1$AAAA$00")
    record = users.find_by_login(login)
    assert record.id == user_id
    assert record.login == login
    assert record.passhash == "scrypt$16$8$1$AAAA$00"
    assert users.exists(login) is True

    with pytest.raises(DuplicateIdentityError):
        users.insert(login, "other")
    print("[+] Duplicate login rejected")


def test_backlog(db, logins):
    banner("[TEST] MessageStore backlog")
    alice, bob, carol = logins
    messages = MessageStore(db)

    messages.append(alice, bob, "second", 200)
    messages.append(alice, bob, "first", 100)
    messages.append(alice, bob, "seen", 150, delivered=True)
    messages.append(carol, bob, "other sender", 120)

    backlog = messages.find_undelivered(alice, bob)
    assert [m.body for m in backlog] == ["first", "second"]
    assert all(m.sender == alice and m.receiver == bob for m in backlog)

    messages.mark_delivered(backlog[0].id)
    assert [m.body for m in messages.find_undelivered(alice, bob)] == ["second"]
    assert [m.body for m in messages.find_undelivered(carol, bob)] == ["other sender"]


def test_history_window(db, logins):
    banner("[TEST] MessageStore history")
    alice, bob, carol = logins
    messages = MessageStore(db)

    for ts, (sender, receiver) in enumerate([(alice, bob), (bob, alice)] * 3, start=1):
        messages.append(sender, receiver, f"m{ts}", ts)
    messages.append(alice, carol, "elsewhere", 99)

    window = messages.find_between(bob, alice, 4)
    assert [m.body for m in window] == ["m3", "m4", "m5", "m6"]
    assert [m.timestamp for m in window] == [3, 4, 5, 6]
    assert len(messages.find_between(alice, bob, 100)) == 6


def test_unknown_identity(db, logins):
    alice = logins[0]
    with pytest.raises(UnknownIdentityError):
        MessageStore(db).append(alice, f"ghost_{uuid.uuid4().hex[:8]}", "hello?", 1)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v", "-s"]))
