"""Access to a C64 Ultimate on the LAN through its REST API.

For this to work the "Web Remote Control Service" and the "Ident Service"
must be enabled in the Ultimate's configuration.

Endpoint resolution is kept separate from transport: ``resolve_*`` functions
inspect the file name (and, for PRGs only, the load address) and either
return an Endpoint or raise ContentRejectedError. ``UltimateClient`` then
uploads the raw file bytes with httpx.
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePath

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .discovery import detect

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 30.0  # seconds

# Highest address + 1 in the C64's 16-bit address space.
ADDRESS_SPACE = 0x10000

RUN_PRG = "/v1/runners:run_prg"
RUN_CRT = "/v1/runners:run_crt"
SID_PLAY = "/v1/runners:sidplay"
MOD_PLAY = "/v1/runners:modplay"
DRIVES = "/v1/drives"

_RUNNERS = {
    "crt": RUN_CRT,
    "sid": SID_PLAY,
    "mod": MOD_PLAY,
}

DISK_IMAGE_TYPES = ("d64", "g64", "d71", "g71", "d81")


class UltimateError(Exception):
    """Base class for C64 Ultimate failures."""


class NoDeviceError(UltimateError):
    """No device address was configured and none was discovered."""


class ContentRejectedError(UltimateError):
    """The file cannot be sent: wrong type or it does not fit in memory."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class UltimateRequestError(UltimateError):
    """The HTTP request to the device failed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"C64 Ultimate web request fail: {url} ({reason})")
        self.url = url
        self.reason = reason


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A REST path on the device, e.g. ``/v1/runners:run_prg``."""

    path: str

    def url(self, address: str) -> str:
        return f"http://{address}{self.path}"


# --- Drive listing ---


class DriveSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    bus_id: int
    # Not every device reports a type.
    device_type: str | None = Field(default=None, alias="type")
    rom: str | None = None
    image_file: str | None = None
    image_path: str | None = None


class DriveListing(BaseModel):
    """``GET /v1/drives`` document.

    Each entry is a single-key map from a slot id ("a", "b", or a longer
    sub-device name) to its settings.
    """

    drives: list[dict[str, DriveSettings]]


def format_drives(listing: DriveListing) -> list[str]:
    """Render ``slot:=image`` lines for the single-letter drive slots.

    Multi-character slots (printer, soft IEC and other sub-devices) are
    skipped.
    """
    lines = []
    for entry in listing.drives:
        for slot, settings in entry.items():
            if len(slot) != 1:
                continue
            if settings.enabled:
                lines.append(f"{slot}:={settings.image_file or ''}")
            else:
                lines.append(f"{slot}:=<Disabled>")
    return lines


# --- Endpoint resolution ---


def _extension(path: str) -> str | None:
    """Lower-cased extension without the dot.

    Returns None when the name has no extension (``demo``, ``.hidden``) and
    "" when it ends in a bare dot (``demo.``).
    """
    stem, dot, ext = PurePath(path.lower()).name.rpartition(".")
    if not dot or not stem:
        return None
    return ext


def read_load_header(path: str) -> tuple[int, int]:
    """Return ``(size, load_address)`` for a PRG file.

    Raises:
        ContentRejectedError: If the file is too short to hold an address.
        OSError: If the file cannot be read.
    """
    with open(path, "rb") as fh:
        size = os.fstat(fh.fileno()).st_size
        header = fh.read(2)
    if len(header) < 2:
        raise ContentRejectedError("PRG file has no load address", path)
    return size, int.from_bytes(header, "little")


def resolve_load_endpoint(path: str) -> Endpoint:
    """Pick the runner for ``path`` based on its extension.

    Only PRG files (``.prg`` or no extension) are opened, to check that the
    file fits between its load address and the top of memory.

    Raises:
        ContentRejectedError: For oversized PRGs or unknown extensions.
    """
    ext = _extension(path)

    if ext is None or ext == "prg":
        size, start = read_load_header(path)
        if size + start >= ADDRESS_SPACE:
            raise ContentRejectedError("PRG file is too large", path)
        return Endpoint(RUN_PRG)

    if ext in _RUNNERS:
        return Endpoint(_RUNNERS[ext])

    raise ContentRejectedError(f"File extension not recognized ({ext})", path)


def resolve_mount_endpoint(device: str, path: str) -> Endpoint:
    """Build the mount endpoint for a disk image on ``device``.

    The Ultimate switches the drive type based on the image extension.

    Raises:
        ContentRejectedError: If the extension is not a supported image type.
    """
    ext = _extension(path)
    if ext not in DISK_IMAGE_TYPES:
        raise ContentRejectedError("Unrecognized disk image file type", path)
    return Endpoint(f"/v1/drives/{device}mount?type={ext}")


def resolve_address(
    configured: str | None,
    detect_fn: Callable[[], str | None] = detect,
) -> str:
    """Return the configured device address, falling back to discovery.

    Raises:
        NoDeviceError: If neither yields an address.
    """
    if configured:
        return configured
    address = detect_fn()
    if address is None:
        raise NoDeviceError(
            "No C64 Ultimate found on the LAN; set --ultimate-ip or C64_ULTIMATE_IP"
        )
    return address


# --- Client ---


class UltimateClient:
    """Synchronous REST client for one C64 Ultimate.

    Args:
        address: Host or IP (optionally with port) of the device.
        http_client: Optional preconfigured httpx.Client, mainly for tests.
    """

    def __init__(self, address: str, http_client: httpx.Client | None = None) -> None:
        self.address = address
        self._client = http_client or httpx.Client(timeout=HTTP_TIMEOUT)

    def load(self, path: str) -> Endpoint:
        """Run a PRG or CRT, or play a SID or MOD file."""
        endpoint = resolve_load_endpoint(path)
        self._post_file(endpoint, path)
        return endpoint

    def mount(self, device: str, path: str) -> Endpoint:
        """Mount a disk image on a floppy device ("a" or "b")."""
        endpoint = resolve_mount_endpoint(device, path)
        self._post_file(endpoint, path)
        return endpoint

    def drives(self) -> DriveListing:
        """Fetch the IEC drive settings."""
        url = Endpoint(DRIVES).url(self.address)
        logger.debug("GET %s", url)
        try:
            response = self._client.get(url)
            response.raise_for_status()
            return DriveListing.model_validate(response.json())
        except httpx.HTTPError as exc:
            raise UltimateRequestError(url, str(exc)) from exc
        except (ValueError, ValidationError) as exc:
            raise UltimateRequestError(url, f"invalid drive listing: {exc}") from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "UltimateClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _post_file(self, endpoint: Endpoint, path: str) -> None:
        with open(path, "rb") as fh:
            body = fh.read()

        url = endpoint.url(self.address)
        logger.debug("POST %s (%d bytes)", url, len(body))
        try:
            response = self._client.post(url, content=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UltimateRequestError(url, str(exc)) from exc
