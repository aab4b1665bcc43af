"""
Per-connection protocol state machine.

    UNAUTHENTICATED --REGISTER/LOGIN--> LOBBY --CHAT--> CHATTING
          ^                               |  ^             |
          +------------LOGOUT-------------+  +----/exit----+

Each inbound line is parsed against the command table of the current
state and dispatched to a handler. Replies go through an outbound FIFO
drained by a single writer task, so at most one write is in flight and
lines reach the client in the order they were posted.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from contextlib import suppress
from typing import Callable, Deque, Dict, Iterable, Optional, Type

from linechat.common.protocol import (
    AUTH_COMMANDS,
    CLEAR_SCREEN,
    LOBBY_BANNER,
    LOBBY_COMMANDS,
    WELCOME_BANNER,
    Chat,
    ChatText,
    Exit,
    History,
    ListUsers,
    Login,
    Logout,
    ProtocolError,
    Register,
    Who,
    create_chat_banner,
    create_error,
    create_logged_in,
    create_registered,
    create_user_list,
    create_who,
    parse_chat_line,
    parse_command,
)
from linechat.common.utils import decode_line, encode_line
from linechat.presence import AlreadyOnlineError
from linechat.storage.db import StoreError


log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOBBY = "lobby"
    CHATTING = "chatting"


class Session:
    """One client connection: identity, chat peer, outbound queue."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, server):
        self.reader = reader
        self.writer = writer
        self.server = server
        self.address = writer.get_extra_info("peername")

        # Identity
        self.user: Optional[str] = None
        self.peer: Optional[str] = None

        # Outbound queue
        self.outgoing: Deque[str] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._writer_task: Optional[asyncio.Task] = None

        self.closed = False

    def __repr__(self) -> str:
        return f"<Session {self.address} user={self.user!r} peer={self.peer!r}>"

    @property
    def state(self) -> SessionState:
        if self.user is None:
            return SessionState.UNAUTHENTICATED
        if self.peer is None:
            return SessionState.LOBBY
        return SessionState.CHATTING

    def is_facing(self, login: str) -> bool:
        """True if this session is chatting with `login`."""
        return self.peer is not None and self.peer == login

    # -----------------------------------------------------------------
    #                        OUTBOUND QUEUE
    # -----------------------------------------------------------------
    def post(self, line: str) -> None:
        """Queue one line for the client. Never blocks."""
        if self.closed:
            return
        self.outgoing.append(line)
        self._idle.clear()
        self._wakeup.set()

    def post_all(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.post(line)

    async def _write_loop(self) -> None:
        try:
            while True:
                if not self.outgoing:
                    self._idle.set()
                    self._wakeup.clear()
                    await self._wakeup.wait()
                    continue

                self.writer.write(encode_line(self.outgoing[0]))
                await self.writer.drain()
                self.outgoing.popleft()

        except (ConnectionError, OSError) as e:
            log.warning("[-] Write failed (%s): %s", self.address, e)
            # Closing the transport ends the read loop, which runs cleanup.
            self.writer.close()

    async def flush(self, timeout: float = 5.0) -> None:
        """Wait until every queued line has been written (or the writer died)."""
        if self._writer_task is None or self._writer_task.done() or not self.outgoing:
            return
        idle = asyncio.ensure_future(self._idle.wait())
        try:
            await asyncio.wait({idle, self._writer_task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            idle.cancel()

    # -----------------------------------------------------------------
    #                      MAIN CONNECTION FLOW
    # -----------------------------------------------------------------
    async def run(self) -> None:
        """Read and dispatch lines until EOF or a transport error, then clean up."""
        log.info("[+] Connection from %s", self.address)
        self._writer_task = asyncio.create_task(self._write_loop())

        try:
            while not self.closed:
                raw = await self._read_line()
                if raw is None:
                    break

                self.handle_line(decode_line(raw))

            await self.flush()

        except (ConnectionError, OSError) as e:
            log.warning("[-] Read failed (%s): %s", self.address, e)

        finally:
            await self.close()

    async def _read_line(self) -> Optional[bytes]:
        """
        Return the next inbound line, or None at EOF.

        A line longer than the reader limit is dropped up to and including
        its newline, however it is split across reads, and answered with
        a single `ERROR Line too long`.
        """
        discarding = False
        while True:
            try:
                raw = await self.reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                if discarding:
                    self.post(create_error("Line too long"))
                    return None
                return e.partial or None
            except asyncio.LimitOverrunError as e:
                # readuntil leaves the buffer untouched; consume what it scanned
                await self.reader.read(e.consumed)
                discarding = True
                continue

            if not discarding:
                return raw
            self.post(create_error("Line too long"))
            discarding = False

    def handle_line(self, line: str) -> None:
        """Parse one line against the current state's table and run its handler."""
        state = self.state
        try:
            if state is SessionState.CHATTING:
                command = parse_chat_line(line)
            else:
                command = parse_command(line, COMMAND_TABLES[state])
        except ProtocolError as e:
            self.post(e.reply)
            return

        HANDLERS[state][type(command)](self, command)

    async def close(self) -> None:
        """Tear the session down: presence, writer task, transport."""
        if self.closed:
            return
        self.closed = True

        if self.user is not None:
            self.server.registry.deregister(self.user, self)

        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task

        self.outgoing.clear()
        self.writer.close()
        with suppress(ConnectionError, OSError):
            await self.writer.wait_closed()

        log.info("[+] Disconnected: %s (%s)", self.address, self.user or "anonymous")

    # -----------------------------------------------------------------
    #                     UNAUTHENTICATED
    # -----------------------------------------------------------------
    def _on_register(self, cmd: Register) -> None:
        ok, reason = self.server.users.register(cmd.login, cmd.password)
        if not ok:
            self.post(create_error(reason))
            return
        self._sign_in(cmd.login, create_registered(cmd.login))

    def _on_login(self, cmd: Login) -> None:
        ok, reason = self.server.users.authenticate(cmd.login, cmd.password)
        if not ok:
            self.post(create_error(reason))
            return
        self._sign_in(cmd.login, create_logged_in(cmd.login))

    def _sign_in(self, login: str, reply: str) -> None:
        try:
            self.server.registry.register(login, self)
        except AlreadyOnlineError:
            log.warning("[-] Rejected second login for %s from %s", login, self.address)
            self.post(create_error(f"User '{login}' is already logged in"))
            return

        self.user = login
        self.post(reply)
        self.post_all(LOBBY_BANNER)
        log.info("[+] %s signed in from %s", login, self.address)

    # -----------------------------------------------------------------
    #                            LOBBY
    # -----------------------------------------------------------------
    def _on_chat(self, cmd: Chat) -> None:
        if cmd.login == self.user:
            self.post(create_error("Cannot chat with yourself"))
            return

        try:
            known = self.server.users.exists(cmd.login)
        except StoreError as e:
            log.error("[-] Cannot look up %s: %s", cmd.login, e)
            self.post(create_error("Storage unavailable"))
            return

        if not known:
            self.post(create_error(f"No such user '{cmd.login}'"))
            return

        self.peer = cmd.login
        self.post_all(create_chat_banner(cmd.login))
        self.server.router.replay_backlog(self)

    def _on_list(self, cmd: ListUsers) -> None:
        self.post(create_user_list(self.server.registry.list(excluding=self.user)))

    def _on_logout(self, cmd: Logout) -> None:
        self.server.registry.deregister(self.user, self)
        log.info("[+] %s logged out", self.user)
        self.user = None
        self.peer = None
        self.post(CLEAR_SCREEN)
        self.post_all(WELCOME_BANNER)

    # -----------------------------------------------------------------
    #                           CHATTING
    # -----------------------------------------------------------------
    def _on_exit(self, cmd: Exit) -> None:
        self.peer = None
        self.post(CLEAR_SCREEN)
        self.post_all(LOBBY_BANNER)

    def _on_who(self, cmd: Who) -> None:
        self.post(create_who(self.peer))

    def _on_history(self, cmd: History) -> None:
        self.server.router.replay_history(self, cmd.n)

    def _on_text(self, cmd: ChatText) -> None:
        if not cmd.body.strip():
            return
        self.server.router.send(self.user, self.peer, cmd.body)


COMMAND_TABLES = {
    SessionState.UNAUTHENTICATED: AUTH_COMMANDS,
    SessionState.LOBBY: LOBBY_COMMANDS,
}

HANDLERS: Dict[SessionState, Dict[Type, Callable[[Session, object], None]]] = {
    SessionState.UNAUTHENTICATED: {
        Register: Session._on_register,
        Login: Session._on_login,
    },
    SessionState.LOBBY: {
        Chat: Session._on_chat,
        ListUsers: Session._on_list,
        Logout: Session._on_logout,
    },
    SessionState.CHATTING: {
        Exit: Session._on_exit,
        Who: Session._on_who,
        History: Session._on_history,
        ChatText: Session._on_text,
    },
}
