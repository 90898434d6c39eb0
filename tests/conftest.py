"""Shared test fixtures for the idunsh test suite."""

import socket
import threading

import pytest


class FakeCartridge:
    """Threaded stand-in for the cartridge's Lua control socket.

    Accepts ``connections`` connections in turn; for each one it reads a
    newline-terminated command, sends ``reply`` and closes. When
    ``redirect_to`` is set, the last command is followed by a connection back
    to that path carrying ``output``. With ``output_first`` the output is
    streamed before the last reply is sent, as a running program does.
    """

    def __init__(
        self,
        path: str,
        reply: bytes = b"\x00",
        *,
        connections: int = 1,
        redirect_to: str | None = None,
        output: bytes = b"",
        output_first: bool = False,
    ) -> None:
        self.path = path
        self.reply = reply
        self.connections = connections
        self.redirect_to = redirect_to
        self.output = output
        self.output_first = output_first
        self.received: list[bytes] = []

        self._sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._sock.bind(path)
        self._sock.listen(1)
        self._sock.settimeout(5.0)
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        for index in range(self.connections):
            try:
                conn, _ = self._sock.accept()
            except OSError:
                return
            with conn:
                data = b""
                while not data.endswith(b"\n"):
                    chunk = conn.recv(4096)
                    if not chunk:
                        break
                    data += chunk
                self.received.append(data)
                if self.output_first and index == self.connections - 1:
                    self._send_output()
                conn.sendall(self.reply)

        if self.redirect_to is not None and not self.output_first:
            self._send_output()

    def _send_output(self) -> None:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as out:
            out.settimeout(5.0)
            out.connect(self.redirect_to)
            out.sendall(self.output)

    def close(self) -> None:
        self._thread.join(timeout=5.0)
        self._sock.close()


@pytest.fixture
def cartridge(tmp_path):
    """Factory for FakeCartridge instances bound inside tmp_path."""
    started = []

    def _start(reply: bytes = b"\x00", **kwargs) -> FakeCartridge:
        fake = FakeCartridge(str(tmp_path / "lua.sock"), reply, **kwargs)
        started.append(fake)
        return fake

    yield _start

    for fake in started:
        fake.close()


@pytest.fixture
def prg_file(tmp_path):
    """Factory writing a file with a little-endian load address header."""

    def _write(name: str, address: int, size: int):
        path = tmp_path / name
        body = address.to_bytes(2, "little") + bytes(max(size - 2, 0))
        path.write_bytes(body[:size])
        return path

    return _write
