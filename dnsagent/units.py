"""Parsing of human-readable byte sizes."""

from __future__ import annotations

_UNITS = {
    "": 1,
    "b": 1,
    "k": 1 << 10,
    "kb": 1 << 10,
    "m": 1 << 20,
    "mb": 1 << 20,
    "g": 1 << 30,
    "gb": 1 << 30,
    "t": 1 << 40,
    "tb": 1 << 40,
    "p": 1 << 50,
    "pb": 1 << 50,
    "e": 1 << 60,
    "eb": 1 << 60,
}

_MAX_UINT64 = float(2**64)


def parse_bytes(s: str) -> int:
    """Number of bytes in a size like "42", "1.5GB" or "1,234 kb".

    Raises ValueError on a missing number, an unknown unit or a value that
    does not fit in 64 bits.
    """
    end = 0
    for ch in s:
        if not (ch.isdecimal() or ch in ".,"):
            break
        end += 1
    num = s[:end].replace(",", "")
    if not num:
        raise ValueError("invalid number")
    if not num.isascii():
        raise ValueError(f"invalid number: {num}")
    value = float(num)
    unit = s[end:].strip().lower()
    try:
        value *= _UNITS[unit]
    except KeyError:
        raise ValueError(f"unknown unit name: {unit}") from None
    if value >= _MAX_UINT64:
        raise ValueError(f"too large: {s}")
    return int(value)