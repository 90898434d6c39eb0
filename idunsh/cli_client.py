"""Unix domain socket clients for the idun cartridge's Lua control process.

Each command is a single round trip on a fresh connection: the message is
written, then the reply is read until the cartridge closes the socket.
"""

import logging
import os
import socket
import threading
from collections.abc import Callable

from .petscii import PetsciiOutputDecoder
from .protocol import (
    LUA_PORT,
    MAX_RECV,
    TERMINATOR,
    ChannelResponse,
    parse_status,
    redirect_path_for_pid,
)

logger = logging.getLogger(__name__)


class ChannelUnavailableError(Exception):
    """Raised when the control socket cannot be reached or the exchange fails."""


class RemoteCommandError(Exception):
    """Raised when the cartridge rejects a command with a nonzero status."""

    def __init__(self, message: str, status: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class LuaChannelClient:
    """Synchronous client for the cartridge's command socket.

    Usage::

        client = LuaChannelClient()
        client.send(encode(Command.DIR, "0:"))

    Args:
        path: Filesystem path of the control socket.
        timeout: Seconds to wait for the reply, or None to block until the
            cartridge closes the connection.
    """

    def __init__(self, path: str = LUA_PORT, timeout: float | None = None) -> None:
        self.path = path
        self.timeout = timeout

    def exchange(self, message: bytes) -> bytes:
        """Send ``message`` and return the raw reply bytes.

        Raises:
            ChannelUnavailableError: On connect, send or receive failure.
        """
        if not message.endswith(TERMINATOR):
            message += TERMINATOR

        logger.debug("-> %s: %r", self.path, message)
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(self.timeout)
                sock.connect(self.path)
                sock.sendall(message)
                chunks = []
                while True:
                    chunk = sock.recv(MAX_RECV)
                    if not chunk:
                        break
                    chunks.append(chunk)
        except socket.timeout as exc:
            raise ChannelUnavailableError(
                f"Timed out waiting for reply on {self.path}"
            ) from exc
        except OSError as exc:
            raise ChannelUnavailableError(f"Cannot reach {self.path}: {exc}") from exc

        raw = b"".join(chunks)
        logger.debug("<- %s: %r", self.path, raw)
        return raw

    def send(self, message: bytes) -> ChannelResponse:
        """Send a command and check its status byte.

        Returns:
            The successful ChannelResponse.

        Raises:
            ChannelUnavailableError: If the socket is unreachable.
            RemoteCommandError: If the cartridge reports failure.
        """
        response = parse_status(self.exchange(message))
        if not response.success:
            raise RemoteCommandError(response.message, response.status)
        return response


class OutputListener:
    """Receives program output the cartridge redirects back to this process.

    The socket is bound on construction so it exists before the command that
    references ``pid`` is sent. ``start()`` drains it on a background thread
    while the command round trip runs, since the cartridge may stream output
    before it sends its status byte.

    Usage::

        with OutputListener() as listener:
            listener.start(click.echo)
            client.send(encode(Command.DIR, "0:", listener.pid))
            listener.join()
    """

    def __init__(
        self,
        pid: int | None = None,
        uid: int | None = None,
        path: str | None = None,
    ) -> None:
        self.pid = os.getpid() if pid is None else pid
        if path is None:
            path = redirect_path_for_pid(os.getuid() if uid is None else uid, self.pid)
        self.path = path
        self._decoder = PetsciiOutputDecoder()
        self._reader: threading.Thread | None = None
        self._reader_error: OSError | None = None
        self._stopping = threading.Event()

        self._sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self._sock.bind(self.path)
            self._sock.listen(1)
        except OSError as exc:
            self._sock.close()
            raise ChannelUnavailableError(
                f"Cannot listen for output on {self.path}: {exc}"
            ) from exc
        logger.debug("Listening for redirected output on %s", self.path)

    def drain(self, write: Callable[[str], object]) -> None:
        """Accept one connection and relay its output until EOF.

        A final newline is written once the stream ends.
        """
        conn, _ = self._sock.accept()
        with conn:
            while True:
                chunk = conn.recv(MAX_RECV)
                if not chunk:
                    break
                text = self._decoder.feed(chunk)
                if text:
                    write(text)
        write("\n")

    # --- Background reader ---

    def start(self, write: Callable[[str], object]) -> None:
        """Run ``drain(write)`` on a background thread."""
        self._reader = threading.Thread(
            target=self._read, args=(write,), name="idunsh-output", daemon=True
        )
        self._reader.start()

    def join(self) -> None:
        """Wait for the cartridge to close the output stream.

        Raises:
            ChannelUnavailableError: If the reader thread hit a socket error.
        """
        if self._reader is not None:
            self._reader.join()
            self._reader = None
        if self._reader_error is not None:
            raise ChannelUnavailableError(
                f"Failed receiving redirected output: {self._reader_error}"
            ) from self._reader_error

    def _read(self, write: Callable[[str], object]) -> None:
        try:
            self.drain(write)
        except OSError as exc:
            if not self._stopping.is_set():
                self._reader_error = exc

    def close(self) -> None:
        """Stop the reader, close the listening socket and remove its path."""
        self._stopping.set()
        if self._reader is not None:
            # Wakes a reader still blocked in accept().
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._reader.join(timeout=2.0)
            self._reader = None
        self._sock.close()
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> "OutputListener":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
