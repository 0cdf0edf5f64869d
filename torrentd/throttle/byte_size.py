"""Human-readable byte sizes such as ``10MB`` or ``512 k``."""

from __future__ import annotations

import re

from torrentd.utils.exceptions import RateParseError

MAX_UINT64 = 2**64 - 1

_SIZE_PATTERN = re.compile(r"^([0-9]+)\s*([a-z]*)$")

_UNIT_NAMES = {
    0: ("", "b", "byte", "bytes"),
    1: ("k", "kb", "kilo", "kilobyte", "kilobytes"),
    2: ("m", "mb", "mega", "megabyte", "megabytes"),
    3: ("g", "gb", "giga", "gigabyte", "gigabytes"),
    4: ("t", "tb", "tera", "terabyte", "terabytes"),
    5: ("p", "pb", "peta", "petabyte", "petabytes"),
    6: ("e", "eb", "exa", "exabyte", "exabytes"),
}

# Binary multiples, as operators expect from disk and bandwidth tools
UNITS: dict[str, int] = {
    name: 1024**power for power, names in _UNIT_NAMES.items() for name in names
}


def parse_byte_size(text: str) -> int:
    """Parse a byte size into an integer number of bytes.

    Accepts an unsigned integer followed by an optional unit, case-insensitive.
    Units are powers of 1024. Fractions and signs are rejected.

    Raises:
        RateParseError: malformed number, unknown unit or a value that does
            not fit in an unsigned 64-bit integer.

    """
    normalized = text.strip().lower()
    match = _SIZE_PATTERN.match(normalized)
    if not match:
        msg = f"invalid byte size: {text!r}"
        raise RateParseError(msg)

    number, unit = match.groups()
    multiplier = UNITS.get(unit)
    if multiplier is None:
        msg = f"unknown size unit {unit!r} in {text!r}"
        raise RateParseError(msg, {"unit": unit})

    value = int(number) * multiplier
    if value > MAX_UINT64:
        msg = f"byte size overflows: {text!r}"
        raise RateParseError(msg)
    return value
