#!/usr/bin/env python3
"""
Line Chat Server
Accepts TCP connections, authenticates users against the user store,
and routes one-to-one chat messages with store-and-forward delivery.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Set

from linechat.auth import UserManager
from linechat.common.protocol import WELCOME_BANNER
from linechat.common.utils import configure_logging, print_banner
from linechat.config import ServerConfig
from linechat.presence import PresenceRegistry
from linechat.router import MessageRouter
from linechat.session import Session
from linechat.storage.credentials import PasswordHasher
from linechat.storage.db import DatabaseManager, MessageStore, UserStore


log = logging.getLogger(__name__)


# ---------------------------------------------------------------------
#                          SERVER CLASS
# ---------------------------------------------------------------------
class ChatServer:
    """Connection acceptor; owns the registry, router and live sessions."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        db: Optional[DatabaseManager] = None,
        user_store=None,
        message_store=None,
        hasher: Optional[PasswordHasher] = None,
    ):
        self.config = config or ServerConfig()
        self.db = db

        if user_store is None or message_store is None:
            if self.db is None:
                log.info("[*] Connecting DB...")
                self.db = DatabaseManager(connect_immediately=False)
                if not self.db.connect():
                    raise RuntimeError("Database connection failed")
            if self.config.create_schema:
                self.db.create_schema()
            user_store = user_store or UserStore(self.db)
            message_store = message_store or MessageStore(self.db)

        self.registry = PresenceRegistry()
        self.users = UserManager(user_store, hasher)
        self.router = MessageRouter(self.registry, message_store)

        self.sessions: Set[Session] = set()
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def port(self) -> Optional[int]:
        """The bound port (useful when configured with port 0)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = Session(reader, writer, self)
        self.sessions.add(session)
        session.post_all(WELCOME_BANNER)
        try:
            await session.run()
        finally:
            self.sessions.discard(session)

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self.handle_client,
            self.config.host,
            self.config.port,
            limit=self.config.max_line,
        )
        addr = ", ".join(str(sock.getsockname()) for sock in self._server.sockets)
        log.info("[+] Listening at %s", addr)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop accepting, close every session, release the database."""
        if self._server is not None:
            self._server.close()

        for session in list(self.sessions):
            await session.close()

        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

        if self.db is not None:
            self.db.disconnect()
        log.info("[+] Server stopped")


# ---------------------------------------------------------------------
#                              MAIN
# ---------------------------------------------------------------------
def main(argv=None):
    config = ServerConfig.from_env()

    parser = argparse.ArgumentParser(description="Line chat server")
    parser.add_argument("--host", default=config.host)
    parser.add_argument("--port", type=int, default=config.port)
    parser.add_argument("--log-level", default=config.log_level)
    args = parser.parse_args(argv)

    config.host = args.host
    config.port = args.port
    config.log_level = args.log_level

    configure_logging(config.log_level)
    print_banner("LINE CHAT SERVER")

    server = ChatServer(config)
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        log.info("[*] Shutdown requested")


if __name__ == "__main__":
    main()
