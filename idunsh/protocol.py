"""Protocol constants, command encoding and response parsing for the idun
cartridge's Lua control channel.

The command ids are part of the wire contract with the cartridge's
``sys.shell()`` handler and must never be renumbered.
"""

from dataclasses import dataclass
from enum import IntEnum

from .petscii import from_native


# --- Socket paths ---

LUA_PORT = "/tmp/idunmm-lua"

REDIRECT_DIR_TEMPLATE = "/run/user/{uid}"


def redirect_path_for_pid(uid: int, pid: int) -> str:
    """Return the socket path the cartridge connects back to for output."""
    return f"{REDIRECT_DIR_TEMPLATE.format(uid=uid)}/{pid}"


# --- Wire format ---

TERMINATOR = b"\n"

# No redirection requested.
NO_PROCESS = 0

_MAX_PID = 0xFFFFFFFF

# Characters that would break out of the quoted argument field.
_FORBIDDEN_ARG_CHARS = ('"', "\n", "\r")

MAX_RECV = 4096


class Command(IntEnum):
    """Shell command kinds understood by ``sys.shell()``."""

    EXEC = 0
    GO = 1
    LOAD = 2
    DIR = 3
    CATALOG = 4
    DRIVES = 5
    MOUNT = 6
    ASSIGN = 7


class CommandArgumentError(ValueError):
    """Raised when an argument would corrupt the textual wire format."""


def _check_argument(arg: str) -> None:
    for ch in _FORBIDDEN_ARG_CHARS:
        if ch in arg:
            raise CommandArgumentError(
                f"Argument may not contain {ch!r}: {arg!r}"
            )


def encode(kind: Command, arg: str, pid: int = NO_PROCESS) -> bytes:
    """Encode a ``sys.shell()`` call.

    Args:
        kind: The shell command to run.
        arg: Free-text argument, sent inside double quotes.
        pid: Requesting process id for output redirection, 0 for none.

    Returns:
        The wire message without its terminator.

    Raises:
        CommandArgumentError: If ``arg`` contains a quote or line break.
        ValueError: If ``pid`` does not fit in 32 bits.
    """
    _check_argument(arg)
    if not 0 <= pid <= _MAX_PID:
        raise ValueError(f"Process id out of range: {pid}")
    return f'sys.shell({int(kind)}, "{arg}", {pid})'.encode()


def encode_stop() -> bytes:
    """Encode ``sys.stop()``, which sends STOP to the running program."""
    return b"sys.stop()"


def encode_reboot(mode: int = 0) -> bytes:
    """Encode ``sys.reboot(mode)``."""
    return f"sys.reboot({int(mode)})".encode()


def encode_chdir(path: str) -> bytes:
    """Encode ``sys.chdir("path")`` to sync the shell's working directory."""
    _check_argument(path)
    return f'sys.chdir("{path}")'.encode()


# --- Response parsing ---


@dataclass(frozen=True, slots=True)
class ChannelResponse:
    """Parsed reply from the control channel.

    Attributes:
        success: True when the status byte is zero or the reply was empty.
        status: The raw status byte (0 for an empty reply).
        message: PETSCII message after the status byte, decoded to text.
            Always empty on success.
    """

    success: bool
    status: int
    message: str


def parse_status(raw: bytes) -> ChannelResponse:
    """Interpret a complete control-channel reply.

    The first byte is the status flag. Any bytes after a zero status are
    ignored; after a nonzero status they carry the error message.
    """
    if not raw:
        return ChannelResponse(success=True, status=0, message="")

    status = raw[0]
    if status == 0:
        return ChannelResponse(success=True, status=0, message="")

    return ChannelResponse(
        success=False,
        status=status,
        message=from_native(raw[1:]),
    )
