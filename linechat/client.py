#!/usr/bin/env python3
"""
Line Chat Client
Prints every line the server sends and forwards what the user types.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from contextlib import suppress
from typing import Optional, TextIO

from linechat.common.utils import configure_logging, decode_line, encode_line
from linechat.config import DEFAULT_HOST, DEFAULT_PORT, ServerConfig


log = logging.getLogger(__name__)


class LineChatClient:
    """Interactive client: server lines -> stdout, stdin lines -> server."""

    def __init__(
        self,
        server_host: str = DEFAULT_HOST,
        server_port: int = DEFAULT_PORT,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.server_host = server_host
        self.server_port = server_port
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

    async def connect(self) -> bool:
        """Connect to server"""
        try:
            self.reader, self.writer = await asyncio.open_connection(self.server_host, self.server_port)
            log.info("[+] Connected to server %s:%s", self.server_host, self.server_port)
            return True
        except OSError as e:
            log.error("[-] Connection failed: %s", e)
            return False

    async def receive_lines(self) -> None:
        while True:
            try:
                raw = await self.reader.readline()
            except ValueError:
                log.warning("[-] Dropped a server line longer than the read limit")
                continue
            if not raw:
                break
            self.stdout.write(decode_line(raw) + "\n")
            self.stdout.flush()
        log.info("[*] Server closed the connection")

    def _read_stdin(self, loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[Optional[str]]") -> None:
        with suppress(RuntimeError):  # loop already closed
            for line in iter(self.stdin.readline, ""):
                loop.call_soon_threadsafe(queue.put_nowait, line)
            loop.call_soon_threadsafe(queue.put_nowait, None)

    async def send_lines(self) -> None:
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        # stdin blocks, so it is read on a daemon thread
        threading.Thread(target=self._read_stdin, args=(loop, queue), daemon=True).start()

        while True:
            line = await queue.get()
            if line is None:
                break
            self.writer.write(encode_line(line.rstrip("\r\n")))
            await self.writer.drain()

        if self.writer.can_write_eof():
            self.writer.write_eof()

    async def run(self) -> int:
        if not await self.connect():
            return 1

        receiver = asyncio.create_task(self.receive_lines())
        sender = asyncio.create_task(self.send_lines())
        try:
            await receiver
        except (ConnectionError, OSError) as e:
            log.error("[-] Read error: %s", e)
        finally:
            sender.cancel()
            with suppress(asyncio.CancelledError, ConnectionError, OSError):
                await sender
            self.writer.close()
            with suppress(ConnectionError, OSError):
                await self.writer.wait_closed()
        return 0


def main(argv=None):
    config = ServerConfig.from_env()

    parser = argparse.ArgumentParser(description="Line chat client")
    parser.add_argument("host", nargs="?", default=config.host)
    parser.add_argument("port", nargs="?", type=int, default=config.port)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        return asyncio.run(LineChatClient(args.host, args.port).run())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
