"""Number formatting and small string helpers."""

from __future__ import annotations

_U32_MAX = 0xFFFFFFFF
_U64_MAX = 0xFFFFFFFFFFFFFFFF


def u32_to_hex(value: int) -> str:
    """Format an unsigned 32-bit integer as lower-case hexadecimal."""
    if not 0 <= value <= _U32_MAX:
        raise ValueError(f"value {value} is not an unsigned 32-bit integer")
    return format(value, "x")


def u64_to_dec(value: int) -> str:
    """Format an unsigned 64-bit integer in decimal."""
    if not 0 <= value <= _U64_MAX:
        raise ValueError(f"value {value} is not an unsigned 64-bit integer")
    return str(value)


def has_ext(file: str, ext: str) -> bool:
    """Return whether a file name or URL ends with the given extension."""
    if len(ext) > len(file):
        return False
    return file.endswith(ext)