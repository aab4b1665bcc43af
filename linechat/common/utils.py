"""Utility helpers for the line chat system."""

from __future__ import annotations

import base64
import logging
import sys
import time
from typing import Optional, Union


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LINE_END = "\r\n"


# ---------------------------------------------------------------------------
# Time / Encoding Helpers
# ---------------------------------------------------------------------------

def now_s() -> int:
    """Return current Unix timestamp in whole seconds."""
    return int(time.time())


def format_timestamp(ts: int) -> str:
    """Render a Unix timestamp in server local time."""
    return time.strftime(TIMESTAMP_FORMAT, time.localtime(ts))


def b64e(b: Union[bytes, bytearray, memoryview]) -> str:
    """Base64-encode arbitrary bytes into an ASCII string."""
    return base64.b64encode(bytes(b)).decode("ascii")


def b64d(s: str) -> bytes:
    """
    Strict Base64-decode of ASCII string into bytes.
    Raises ValueError on invalid base64.
    """
    try:
        return base64.b64decode(s, validate=True)
    except Exception as e:
        raise ValueError(f"Invalid base64: {e}") from e


# ---------------------------------------------------------------------------
# Line Framing
# ---------------------------------------------------------------------------

def encode_line(text: str) -> bytes:
    """Terminate `text` with CRLF (unless it already ends a line) and encode."""
    if not text.endswith("\n"):
        text += LINE_END
    return text.encode("utf-8")


def decode_line(raw: bytes) -> str:
    """Decode one inbound line, dropping the trailing LF / CRLF."""
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


# ---------------------------------------------------------------------------
# Logging / Display Helpers
# ---------------------------------------------------------------------------

def configure_logging(level: Union[int, str] = logging.INFO, stream: Optional[object] = None) -> None:
    """Install a single console handler on the `linechat` logger."""
    logger = logging.getLogger("linechat")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    logger.propagate = False


def print_banner(title: str) -> None:
    """Pretty CLI banner."""
    width = 60
    print("\n" + "=" * width)
    print(f"{title:^{width}}")
    print("=" * width + "\n")
