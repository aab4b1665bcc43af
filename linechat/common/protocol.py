"""
Pydantic models and helpers for the line chat protocol.

Command types (one per line, space separated):
- REGISTER, LOGIN            (unauthenticated)
- CHAT, LIST, LOGOUT         (lobby)
- /exit, /who, /history      (chatting; any other line is a chat message)
"""

from __future__ import annotations

from typing import ClassVar, Dict, List, Literal, Sequence, Tuple, Type, Union

from pydantic import BaseModel, ValidationError, field_validator

from .utils import format_timestamp


CLEAR_SCREEN = "\033[2J\033[H"

WELCOME_BANNER: Tuple[str, ...] = (
    "Server: Welcome to chat",
    "===========================================",
    "To register:    REGISTER <login> <password>",
    "To login:       LOGIN    <login> <password>",
    "===========================================",
)

LOBBY_BANNER: Tuple[str, ...] = (
    "Server: you are in the lobby.",
    "Server: available commands:",
    "===========================================",
    "  CHAT  <login>   - start chat with user",
    "  LIST            - show online users",
    "  LOGOUT          - log out",
    "===========================================",
)


class ProtocolError(ValueError):
    """Raised for a malformed line; `reply` is the ERROR line to send back."""

    def __init__(self, reply: str):
        super().__init__(reply)
        self.reply = reply


# ------------------------------------------------------
# BASE
# ------------------------------------------------------

class Command(BaseModel):
    verb: ClassVar[str] = ""
    usage: ClassVar[str] = ""
    args: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_args(cls, args: Sequence[str]) -> "Command":
        """Build the command from positional tokens or raise ProtocolError with usage."""
        if len(args) != len(cls.args):
            raise ProtocolError(create_error(f"Usage: {cls.usage}"))
        try:
            return cls(**dict(zip(cls.args, args)))
        except ValidationError:
            raise ProtocolError(create_error(f"Usage: {cls.usage}")) from None


def _non_empty(v: str) -> str:
    if not v:
        raise ValueError("value must not be empty")
    return v


# ------------------------------------------------------
# REGISTER / LOGIN
# ------------------------------------------------------

class Register(Command):
    verb: ClassVar[str] = "REGISTER"
    usage: ClassVar[str] = "REGISTER <login> <password>"
    args: ClassVar[Tuple[str, ...]] = ("login", "password")

    type: Literal["register"] = "register"
    login: str
    password: str

    @field_validator("login", "password")
    @classmethod
    def check_not_empty(cls, v: str) -> str:
        return _non_empty(v)


class Login(Command):
    verb: ClassVar[str] = "LOGIN"
    usage: ClassVar[str] = "LOGIN <login> <password>"
    args: ClassVar[Tuple[str, ...]] = ("login", "password")

    type: Literal["login"] = "login"
    login: str
    password: str

    @field_validator("login", "password")
    @classmethod
    def check_not_empty(cls, v: str) -> str:
        return _non_empty(v)


# ------------------------------------------------------
# LOBBY
# ------------------------------------------------------

class Chat(Command):
    verb: ClassVar[str] = "CHAT"
    usage: ClassVar[str] = "CHAT <login>"
    args: ClassVar[Tuple[str, ...]] = ("login",)

    type: Literal["chat"] = "chat"
    login: str

    @field_validator("login")
    @classmethod
    def check_not_empty(cls, v: str) -> str:
        return _non_empty(v)


class ListUsers(Command):
    verb: ClassVar[str] = "LIST"
    usage: ClassVar[str] = "LIST"

    type: Literal["list"] = "list"


class Logout(Command):
    verb: ClassVar[str] = "LOGOUT"
    usage: ClassVar[str] = "LOGOUT"

    type: Literal["logout"] = "logout"


# ------------------------------------------------------
# IN-CHAT
# ------------------------------------------------------

class Exit(Command):
    verb: ClassVar[str] = "/exit"
    usage: ClassVar[str] = "/exit"

    type: Literal["exit"] = "exit"


class Who(Command):
    verb: ClassVar[str] = "/who"
    usage: ClassVar[str] = "/who"

    type: Literal["who"] = "who"


class History(Command):
    verb: ClassVar[str] = "/history"
    usage: ClassVar[str] = "/history <N>"
    args: ClassVar[Tuple[str, ...]] = ("n",)

    type: Literal["history"] = "history"
    n: int

    @field_validator("n")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("N must be a positive integer")
        return v


class ChatText(BaseModel):
    type: Literal["text"] = "text"
    body: str


# ------------------------------------------------------
# DISPATCH
# ------------------------------------------------------

CommandTable = Dict[str, Type[Command]]

AUTH_COMMANDS: CommandTable = {c.verb: c for c in (Register, Login)}
LOBBY_COMMANDS: CommandTable = {c.verb: c for c in (Chat, ListUsers, Logout)}
CHAT_COMMANDS: CommandTable = {c.verb: c for c in (Exit, Who, History)}

Message = Union[Register, Login, Chat, ListUsers, Logout, Exit, Who, History, ChatText]


def split_command(line: str) -> List[str]:
    """Split on spaces, compressing runs of them."""
    return [part for part in line.split(" ") if part]


def parse_command(line: str, table: CommandTable) -> Command:
    """
    Parse an upper-case command line against `table`.
    Raises ProtocolError on empty line, unknown verb or bad arguments.
    """
    parts = split_command(line)
    if not parts:
        raise ProtocolError(create_error("Empty command"))

    cls = table.get(parts[0])
    if cls is None:
        raise ProtocolError(create_error("Unknown command"))

    return cls.from_args(parts[1:])


def parse_chat_line(line: str) -> Union[Command, ChatText]:
    """
    Parse a line typed while chatting. Known slash-commands are parsed
    strictly; everything else is the message body, unchanged.
    """
    parts = split_command(line)
    if parts and parts[0] in CHAT_COMMANDS:
        return CHAT_COMMANDS[parts[0]].from_args(parts[1:])
    return ChatText(body=line)


# ------------------------------------------------------
# REPLIES
# ------------------------------------------------------

def create_error(reason: str) -> str:
    return f"ERROR {reason}"


def create_registered(login: str) -> str:
    return f"OK Registered user '{login}'"


def create_logged_in(login: str) -> str:
    return f"OK Logged in as '{login}'"


def create_user_list(logins: Sequence[str]) -> str:
    return " ".join(["USERS:", *logins])


def create_who(peer: str) -> str:
    return f"Server: chatting with {peer}"


def create_chat_line(timestamp: int, sender: str, body: str) -> str:
    return f"[{format_timestamp(timestamp)}] {sender}: {body}"


def create_chat_banner(peer: str) -> Tuple[str, ...]:
    return (
        CLEAR_SCREEN,
        "========================================",
        f"  Chat with  {peer}",
        "========================================",
        "Type /exit           - back to lobby",
        "Type /history <N>    - show last N messages",
        "Type /who            - show chat partner",
        "----------------------------------------",
    )


__all__ = [
    "CLEAR_SCREEN",
    "WELCOME_BANNER",
    "LOBBY_BANNER",
    "ProtocolError",
    "Command",
    "Register",
    "Login",
    "Chat",
    "ListUsers",
    "Logout",
    "Exit",
    "Who",
    "History",
    "ChatText",
    "Message",
    "AUTH_COMMANDS",
    "LOBBY_COMMANDS",
    "CHAT_COMMANDS",
    "split_command",
    "parse_command",
    "parse_chat_line",
    "create_error",
    "create_registered",
    "create_logged_in",
    "create_user_list",
    "create_who",
    "create_chat_line",
    "create_chat_banner",
]
