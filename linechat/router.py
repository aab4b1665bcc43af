"""
Message router: live delivery, store-and-forward and history replay.

A message is delivered live only when the receiver is online AND its
session is chatting with the sender. Every message is persisted; the
delivered flag records whether the receiver has seen it.
"""

from __future__ import annotations

import logging
from typing import Callable, List, TYPE_CHECKING

from linechat.common.protocol import create_chat_line
from linechat.common.utils import now_s
from linechat.presence import PresenceRegistry
from linechat.storage.db import ChatMessage, StoreError

if TYPE_CHECKING:
    from linechat.session import Session


log = logging.getLogger(__name__)


class MessageRouter:
    def __init__(self, registry: PresenceRegistry, messages, clock: Callable[[], int] = now_s):
        self.registry = registry
        self.messages = messages
        self.clock = clock

    def send(self, sender: str, receiver: str, body: str) -> bool:
        """Route one chat message. Returns True if it was delivered live."""
        ts = self.clock()
        peer = self.registry.lookup(receiver)
        live = peer is not None and peer.is_facing(sender)

        if live:
            peer.post(create_chat_line(ts, sender, body))

        try:
            self.messages.append(sender, receiver, body, ts, delivered=live)
        except StoreError as e:
            log.error("[-] Cannot store message %s -> %s: %s", sender, receiver, e)

        log.debug("%s -> %s (%s)", sender, receiver, "live" if live else "stored")
        return live

    def replay_backlog(self, session: "Session") -> int:
        """Post undelivered messages from the session's peer, oldest first."""
        try:
            backlog = self.messages.find_undelivered(session.peer, session.user)
        except StoreError as e:
            log.error("[-] Cannot load backlog %s -> %s: %s", session.peer, session.user, e)
            return 0
        return self._replay(session, backlog)

    def replay_history(self, session: "Session", n: int) -> int:
        """Post the last `n` messages between the session's user and peer."""
        try:
            history = self.messages.find_between(session.user, session.peer, n)
        except StoreError as e:
            log.error("[-] Cannot load history %s <-> %s: %s", session.user, session.peer, e)
            return 0
        # Viewing history also acknowledges receipt.
        return self._replay(session, history)

    def _replay(self, session: "Session", records: List[ChatMessage]) -> int:
        for msg in records:
            session.post(create_chat_line(msg.timestamp, msg.sender, msg.body))
            if msg.delivered:
                continue
            try:
                self.messages.mark_delivered(msg.id)
            except StoreError as e:
                log.error("[-] Cannot mark message %s delivered: %s", msg.id, e)
        return len(records)
