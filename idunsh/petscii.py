"""PETSCII transcoding for text exchanged with the Commodore.

The mapping is an affine shift over a few ranges only, so it is not a
bijection: ``to_native`` and ``from_native`` are defined independently and
bytes outside their ranges pass through unchanged.
"""

from __future__ import annotations

from typing import Final


# Standard -> native ranges (inclusive) and the shift applied.
_UPPER_ASCII: Final = (0x41, 0x5A)
_LOWER_ASCII: Final = (0x61, 0x7A)
_GRAPHICS_ASCII: Final = (0x7B, 0x7F)

# Native -> standard. The shifted upper-case range reads as "Á".."Ú" in
# Latin-1 and the single "Þ" code maps back to "~".
_SHIFTED_UPPER: Final = (0xC1, 0xDA)
_THORN: Final = 0xDE


def _asc2pet(code: int) -> int:
    if _UPPER_ASCII[0] <= code <= _UPPER_ASCII[1]:
        return code + 0x80
    if _LOWER_ASCII[0] <= code <= _LOWER_ASCII[1]:
        return code - 0x20
    if _GRAPHICS_ASCII[0] <= code <= _GRAPHICS_ASCII[1]:
        return code + 0x60
    return code


def _pet2asc(code: int) -> int:
    if _LOWER_ASCII[0] <= code <= _LOWER_ASCII[1]:
        return code - 0x20
    if _UPPER_ASCII[0] <= code <= _UPPER_ASCII[1]:
        return code + 0x20
    if _SHIFTED_UPPER[0] <= code <= _SHIFTED_UPPER[1]:
        return code - 0x80
    if code == _THORN:
        return code - 0x60
    return code


def to_native(text: str) -> bytes:
    """Encode ``text`` as PETSCII, one byte per character.

    Raises:
        ValueError: If a character lies outside 0-255.
    """
    out = bytearray()
    for ch in text:
        code = ord(ch)
        if code > 0xFF:
            raise ValueError(f"Character {ch!r} has no PETSCII equivalent")
        out.append(_asc2pet(code))
    return bytes(out)


def from_native(data: bytes | bytearray | list[int]) -> str:
    """Decode PETSCII bytes to text.

    The shifted bytes are interpreted as UTF-8. If that is invalid the
    longest valid prefix is returned; this is a display path, so it never
    raises.
    """
    converted = bytes(_pet2asc(code) for code in data)
    try:
        return converted.decode("utf-8")
    except UnicodeDecodeError as exc:
        return converted[: exc.start].decode("utf-8")


class PetsciiOutputDecoder:
    """Turns redirected program output into terminal text.

    Each chunk is transcoded on its own and the Commodore's carriage return
    line ending is translated to ``\\n``.
    """

    def feed(self, chunk: bytes) -> str:
        if not chunk:
            return ""
        return from_native(chunk).replace("\r", "\n")
