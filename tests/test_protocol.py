"""
Protocol tests: command splitting, per-state parsing, reply formatting.
"""

import re
import time

import pytest

from linechat.common.protocol import (
    AUTH_COMMANDS,
    CHAT_COMMANDS,
    LOBBY_COMMANDS,
    Chat,
    ChatText,
    Exit,
    History,
    ListUsers,
    Login,
    ProtocolError,
    Register,
    Who,
    create_chat_line,
    create_user_list,
    parse_chat_line,
    parse_command,
    split_command,
)
from linechat.common.utils import decode_line, encode_line


def test_split_compresses_spaces():
    assert split_command("REGISTER   alice  pw1") == ["REGISTER", "alice", "pw1"]
    assert split_command("") == []
    assert split_command("   ") == []


def test_auth_commands_parse():
    cmd = parse_command("REGISTER alice pw1", AUTH_COMMANDS)
    assert isinstance(cmd, Register)
    assert (cmd.login, cmd.password) == ("alice", "pw1")

    cmd = parse_command("LOGIN bob secret", AUTH_COMMANDS)
    assert isinstance(cmd, Login)
    assert cmd.login == "bob"


@pytest.mark.parametrize(
    "line, reply",
    [
        ("REGISTER alice", "ERROR Usage: REGISTER <login> <password>"),
        ("REGISTER a b c", "ERROR Usage: REGISTER <login> <password>"),
        ("LOGIN", "ERROR Usage: LOGIN <login> <password>"),
        ("", "ERROR Empty command"),
        ("register alice pw", "ERROR Unknown command"),
        ("LIST", "ERROR Unknown command"),
    ],
)
def test_auth_errors(line, reply):
    with pytest.raises(ProtocolError) as exc:
        parse_command(line, AUTH_COMMANDS)
    assert exc.value.reply == reply


def test_lobby_commands():
    assert isinstance(parse_command("CHAT bob", LOBBY_COMMANDS), Chat)
    assert isinstance(parse_command("LIST", LOBBY_COMMANDS), ListUsers)

    with pytest.raises(ProtocolError) as exc:
        parse_command("CHAT", LOBBY_COMMANDS)
    assert exc.value.reply == "ERROR Usage: CHAT <login>"

    with pytest.raises(ProtocolError) as exc:
        parse_command("LIST extra", LOBBY_COMMANDS)
    assert exc.value.reply == "ERROR Usage: LIST"

    with pytest.raises(ProtocolError) as exc:
        parse_command("LOGOUT now", LOBBY_COMMANDS)
    assert exc.value.reply == "ERROR Usage: LOGOUT"


def test_chat_slash_commands():
    assert isinstance(parse_chat_line("/exit"), Exit)
    assert isinstance(parse_chat_line("/who"), Who)

    cmd = parse_chat_line("/history 3")
    assert isinstance(cmd, History)
    assert cmd.n == 3

    assert set(CHAT_COMMANDS) == {"/exit", "/who", "/history"}


@pytest.mark.parametrize(
    "line, reply",
    [
        ("/history", "ERROR Usage: /history <N>"),
        ("/history abc", "ERROR Usage: /history <N>"),
        ("/history 0", "ERROR Usage: /history <N>"),
        ("/history -2", "ERROR Usage: /history <N>"),
        ("/history 1 2", "ERROR Usage: /history <N>"),
        ("/exit now", "ERROR Usage: /exit"),
        ("/who me", "ERROR Usage: /who"),
    ],
)
def test_chat_slash_command_errors(line, reply):
    with pytest.raises(ProtocolError) as exc:
        parse_chat_line(line)
    assert exc.value.reply == reply


@pytest.mark.parametrize("line", ["hello there", "/shrug", "/EXIT", "say /who", "  indented", "LIST"])
def test_anything_else_while_chatting_is_a_message(line):
    cmd = parse_chat_line(line)
    assert isinstance(cmd, ChatText)
    assert cmd.body == line


def test_chat_line_format():
    ts = int(time.mktime((2024, 5, 17, 9, 30, 5, 0, 0, -1)))
    assert create_chat_line(ts, "alice", "hi") == "[2024-05-17 09:30:05] alice: hi"
    assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] bob: x$", create_chat_line(0, "bob", "x"))


def test_user_list_format():
    assert create_user_list(["bob", "carol"]) == "USERS: bob carol"
    assert create_user_list([]) == "USERS:"


def test_line_framing():
    assert encode_line("OK") == b"OK\r\n"
    assert decode_line(b"LIST\r\n") == "LIST"
    assert decode_line(b"LIST\n") == "LIST"
    assert decode_line(b"partial") == "partial"
