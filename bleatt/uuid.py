"""Bluetooth UUIDs in their little-endian over-the-air form."""

from __future__ import annotations

import string

MAX_LENGTH = 16

_DASH_AFTER = frozenset({6, 8, 10, 12})


def _leading_hex(pair: str) -> int:
    """Value of a byte written as up to two hex digits, lenient like strtoul."""
    try:
        return int(pair, 16) & 0xFF
    except ValueError:
        digits = ""
        for char in pair:
            if char not in string.hexdigits:
                break
            digits += char
        return int(digits, 16) if digits else 0


def _parse(text: str) -> bytes:
    raw = bytearray()
    i = len(text) - 1
    while i >= 0 and len(raw) < MAX_LENGTH:
        if text[i] == "-":
            i -= 1
            continue
        raw.append(_leading_hex(text[max(i - 1, 0):i + 1]))
        i -= 2

    length = 2 if len(raw) <= 2 else MAX_LENGTH
    raw.extend(bytes(length - len(raw)))
    return bytes(raw[:length])


class Uuid:
    """A UUID parsed from text into its 2- or 16-byte little-endian form."""

    __slots__ = ("text", "data")

    def __init__(self, text: str) -> None:
        self.text = text
        self.data = _parse(text)

    @property
    def length(self) -> int:
        return len(self.data)

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"Uuid({self.text!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Uuid):
            return self.data == other.data
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.data)


def uuid_to_string(data: bytes) -> str:
    """Render little-endian UUID bytes as lower-case text with the usual dashes."""
    parts = []
    for index in range(len(data) - 1, -1, -1):
        parts.append(f"{data[index]:02x}")
        if index in _DASH_AFTER:
            parts.append("-")
    return "".join(parts)