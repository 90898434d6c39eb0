"""Tests for protocol constants, command encoding, and status parsing."""

import pytest

from idunsh.petscii import to_native
from idunsh.protocol import (
    LUA_PORT,
    MAX_RECV,
    NO_PROCESS,
    TERMINATOR,
    ChannelResponse,
    Command,
    CommandArgumentError,
    encode,
    encode_chdir,
    encode_reboot,
    encode_stop,
    parse_status,
    redirect_path_for_pid,
)


# --- Protocol Constants ---


class TestProtocolConstants:
    def test_lua_port(self):
        assert LUA_PORT == "/tmp/idunmm-lua"

    def test_terminator(self):
        assert TERMINATOR == b"\n"

    def test_no_process(self):
        assert NO_PROCESS == 0

    def test_max_recv(self):
        assert MAX_RECV == 4096

    def test_command_ids_are_stable(self):
        assert [(c.name, c.value) for c in Command] == [
            ("EXEC", 0),
            ("GO", 1),
            ("LOAD", 2),
            ("DIR", 3),
            ("CATALOG", 4),
            ("DRIVES", 5),
            ("MOUNT", 6),
            ("ASSIGN", 7),
        ]


class TestRedirectPath:
    def test_redirect_path_for_pid(self):
        assert redirect_path_for_pid(1000, 4321) == "/run/user/1000/4321"


# --- Encoding ---


class TestEncode:
    def test_dir(self):
        assert encode(Command.DIR, "0:", 1234) == b'sys.shell(3, "0:", 1234)'

    def test_default_pid(self):
        assert encode(Command.GO, "ultterm") == b'sys.shell(1, "ultterm", 0)'

    def test_empty_argument(self):
        assert encode(Command.DRIVES, "", 0) == b'sys.shell(5, "", 0)'

    def test_argument_with_spaces(self):
        assert encode(Command.MOUNT, "a: games.d64", 7) == b'sys.shell(6, "a: games.d64", 7)'

    def test_max_pid(self):
        assert encode(Command.EXEC, "x", 0xFFFFFFFF).endswith(b"4294967295)")

    @pytest.mark.parametrize("arg", ['say "hi"', "a\nb", "a\rb"])
    def test_rejects_breaking_characters(self, arg):
        with pytest.raises(CommandArgumentError):
            encode(Command.EXEC, arg, 0)

    def test_argument_error_is_value_error(self):
        assert issubclass(CommandArgumentError, ValueError)

    @pytest.mark.parametrize("pid", [-1, 2**32])
    def test_pid_out_of_range(self, pid):
        with pytest.raises(ValueError, match="out of range"):
            encode(Command.DIR, "0:", pid)


class TestFixedForms:
    def test_stop(self):
        assert encode_stop() == b"sys.stop()"

    def test_reboot(self):
        assert encode_reboot(0) == b"sys.reboot(0)"

    def test_reboot_mode(self):
        assert encode_reboot(1) == b"sys.reboot(1)"

    def test_chdir(self):
        assert encode_chdir("/home/user/c64") == b'sys.chdir("/home/user/c64")'

    def test_chdir_rejects_quote(self):
        with pytest.raises(CommandArgumentError):
            encode_chdir('/tmp/"odd"')


# --- Response Parsing ---


class TestParseStatus:
    def test_empty_reply_is_success(self):
        assert parse_status(b"") == ChannelResponse(success=True, status=0, message="")

    def test_zero_status(self):
        resp = parse_status(b"\x00")
        assert resp.success is True
        assert resp.message == ""

    def test_bytes_after_zero_status_are_ignored(self):
        resp = parse_status(b"\x00" + to_native("ignored"))
        assert resp.success is True
        assert resp.message == ""

    def test_failure_message_is_transcoded(self):
        native = to_native("File not found")
        resp = parse_status(b"\x01" + native)
        assert resp.success is False
        assert resp.status == 1
        assert resp.message == "File not found"

    def test_failure_without_message(self):
        resp = parse_status(b"\x02")
        assert resp.success is False
        assert resp.status == 2
        assert resp.message == ""

    def test_frozen(self):
        resp = parse_status(b"")
        with pytest.raises(AttributeError):
            resp.success = False  # type: ignore
