"""
Server configuration.

Values come from LINECHAT_* environment variables (optionally loaded from
a .env file); command-line flags override host, port and log level.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 15001
DEFAULT_MAX_LINE = 64 * 1024


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_line: int = DEFAULT_MAX_LINE
    log_level: str = "INFO"
    create_schema: bool = True

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "ServerConfig":
        """Build a config from the environment, reading `.env` first if present."""
        load_dotenv(dotenv_path)
        return cls(
            host=os.getenv("LINECHAT_HOST", DEFAULT_HOST),
            port=int(os.getenv("LINECHAT_PORT", str(DEFAULT_PORT))),
            max_line=int(os.getenv("LINECHAT_MAX_LINE", str(DEFAULT_MAX_LINE))),
            log_level=os.getenv("LINECHAT_LOG_LEVEL", "INFO"),
            create_schema=os.getenv("LINECHAT_CREATE_SCHEMA", "1") not in ("0", "false", "no"),
        )

    def get_connection_info(self):
        return {"host": self.host, "port": self.port}
