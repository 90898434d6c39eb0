"""Click CLI entry point for idunsh.

Handles argument parsing and turns each subcommand into either one
control-channel round trip to the idun cartridge or, with ``-u``, one REST
call to a C64 Ultimate.
"""

import logging
import os
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .cli_client import (
    ChannelUnavailableError,
    LuaChannelClient,
    OutputListener,
    RemoteCommandError,
)
from .discovery import detect
from .protocol import (
    LUA_PORT,
    NO_PROCESS,
    Command,
    CommandArgumentError,
    encode,
    encode_chdir,
    encode_reboot,
    encode_stop,
)
from .ultimate import UltimateClient, UltimateError, format_drives, resolve_address

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

# Gives the cartridge time to finish the chdir before the next command.
CHDIR_SETTLE_DELAY = 0.25  # seconds

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


@dataclass(frozen=True, slots=True)
class Session:
    """Options shared by every subcommand."""

    socket_path: str = LUA_PORT
    syncdir: bool = False
    output: bool = False
    ultimate: bool = False
    xarg: str | None = None
    ultimate_ip: str | None = None

    @property
    def xargs(self) -> str:
        """Expand ``-x abc`` into ``/a /b /c `` switch-style flags."""
        return "".join(f"/{ch} " for ch in self.xarg or "")


@click.group(no_args_is_help=True)
@click.option(
    "-s",
    "--syncdir",
    is_flag=True,
    default=False,
    help="Synchronize idun shell current directory with linux.",
)
@click.option(
    "-o",
    "--output",
    is_flag=True,
    default=False,
    help="Redirect program output to terminal.",
)
@click.option(
    "-u",
    "--ultimate",
    is_flag=True,
    default=False,
    help="Use the C64 Ultimate runner to load content.",
)
@click.option(
    "-x",
    "--xarg",
    metavar="FLAGS",
    default=None,
    help="Add flag arguments to the command.",
)
@click.option(
    "--ultimate-ip",
    envvar="C64_ULTIMATE_IP",
    default=None,
    help="Address of the C64 Ultimate; skips LAN discovery.",
)
@click.option(
    "--socket",
    "socket_path",
    default=LUA_PORT,
    show_default=True,
    type=click.Path(),
    help="Path of the cartridge control socket.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log protocol traffic.")
@click.version_option(version=__version__, prog_name="idunsh")
@click.pass_context
def cli(
    ctx: click.Context,
    syncdir: bool,
    output: bool,
    ultimate: bool,
    xarg: str | None,
    ultimate_ip: str | None,
    socket_path: str,
    verbose: bool,
) -> None:
    """Shell bridge to the idun cartridge for the Commodore 64/128."""
    if verbose:
        logging.basicConfig(stream=sys.stderr, level=logging.DEBUG, format=LOG_FORMAT)
    ctx.obj = Session(
        socket_path=socket_path,
        syncdir=syncdir,
        output=output,
        ultimate=ultimate,
        xarg=xarg,
        ultimate_ip=ultimate_ip,
    )


# --- Shared plumbing ---


@contextmanager
def _reporting_errors():
    """Print known failures and exit with status 1."""
    try:
        yield
    except RemoteCommandError as exc:
        err_console.print(f"[red]Remote sys.shell() fail:[/red] {escape(exc.message)}")
        sys.exit(1)
    except (ChannelUnavailableError, CommandArgumentError, UltimateError, OSError) as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)


def _echo_raw(text: str) -> None:
    click.echo(text, nl=False)


def _channel(session: Session) -> LuaChannelClient:
    """Return a channel client, after syncing the directory if requested."""
    if session.ultimate:
        raise click.UsageError("Command not supported for the C64 Ultimate")
    client = LuaChannelClient(session.socket_path)
    if session.syncdir:
        client.send(encode_chdir(os.getcwd()))
        time.sleep(CHDIR_SETTLE_DELAY)
    return client


def _shell(session: Session, kind: Command, arg: str, *, redirect: bool = True) -> None:
    """Run one ``sys.shell()`` command, relaying its output with ``-o``."""
    with _reporting_errors():
        client = _channel(session)
        if not (redirect and session.output):
            client.send(encode(kind, arg, NO_PROCESS))
            return
        with OutputListener() as listener:
            listener.start(_echo_raw)
            client.send(encode(kind, arg, listener.pid))
            listener.join()


def _ultimate_client(session: Session) -> UltimateClient:
    address = resolve_address(session.ultimate_ip, detect_fn=detect)
    logger.info("Using C64 Ultimate at %s", address)
    return UltimateClient(address)


# --- Subcommands ---


@cli.command()
@click.argument("app")
@click.pass_obj
def go(session: Session, app: str) -> None:
    """Launch an application on the Commodore."""
    _shell(session, Command.GO, app, redirect=False)


@cli.command()
@click.argument("prg")
@click.pass_obj
def load(session: Session, prg: str) -> None:
    """Launch a native program on the Commodore."""
    if session.ultimate:
        with _reporting_errors(), _ultimate_client(session) as ultimate:
            ultimate.load(prg)
        return
    _shell(session, Command.LOAD, prg, redirect=False)


@cli.command("exec")
@click.argument("cmd")
@click.argument("args", nargs=-1)
@click.pass_obj
def exec_(session: Session, cmd: str, args: tuple[str, ...]) -> None:
    """Execute remote idun command/program with arguments."""
    _shell(session, Command.EXEC, f"{cmd} {session.xargs}{' '.join(args)}")


@cli.command("dir")
@click.argument("dev")
@click.pass_obj
def dir_(session: Session, dev: str) -> None:
    """Get file list from Idun device using short format."""
    _shell(session, Command.DIR, dev)


@cli.command()
@click.argument("dev")
@click.pass_obj
def catalog(session: Session, dev: str) -> None:
    """Get file list from Idun device using long format."""
    _shell(session, Command.CATALOG, f"{session.xargs}{dev}")


@cli.command()
@click.argument("dev", required=False)
@click.pass_obj
def drives(session: Session, dev: str | None) -> None:
    """Show list of the active virtual drives and mounts."""
    if session.ultimate:
        with _reporting_errors(), _ultimate_client(session) as ultimate:
            listing = ultimate.drives()
        for line in format_drives(listing):
            console.print(line, markup=False, highlight=False)
        return
    _shell(session, Command.DRIVES, dev or "")


@cli.command()
@click.argument("dev")
@click.argument("dimage")
@click.pass_obj
def mount(session: Session, dev: str, dimage: str) -> None:
    """Mount a virtual floppy image."""
    if session.ultimate:
        with _reporting_errors(), _ultimate_client(session) as ultimate:
            ultimate.mount(dev, dimage)
        return
    _shell(session, Command.MOUNT, f"{dev} {dimage}")


@cli.command()
@click.argument("dev")
@click.argument("path")
@click.pass_obj
def assign(session: Session, dev: str, path: str) -> None:
    """Assign local path to a virtual drive."""
    _shell(session, Command.ASSIGN, f"{dev} {path}")


@cli.command()
@click.pass_obj
def reboot(session: Session) -> None:
    """Fully reboot the idun cartridge and Commodore."""
    with _reporting_errors():
        _channel(session).send(encode_reboot(0))


@cli.command()
@click.pass_obj
def stop(session: Session) -> None:
    """Stop a running program (sends "STOP" key)."""
    with _reporting_errors():
        _channel(session).send(encode_stop())


if __name__ == "__main__":
    cli()
