"""A small 256-bit Bloom filter tuned for HTTP header names."""

from __future__ import annotations

_HASH_MULTIPLIER = 1843993368
_MASK32 = 0xFFFFFFFF


def _as_bytes(key: str | bytes | bytearray | memoryview) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    return bytes(key)


def _positions(key: bytes) -> bytes:
    """Return the four bit positions a key of at least two bytes maps to."""
    features = bytes((key[0], key[-1], key[-2], key[len(key) >> 1]))
    hashed = (int.from_bytes(features, "little") * _HASH_MULTIPLIER) & _MASK32
    return hashed.to_bytes(4, "little")


class BloomFilter:
    """Bloom filter over 256 bits, hashing four bytes of each key.

    Keys shorter than two bytes are never recorded and always reported
    as possibly present.
    """

    __slots__ = ("_bits",)

    def __init__(self) -> None:
        self._bits = 0

    def might_have(self, key: str | bytes) -> bool:
        """Return False only if the key was certainly never added."""
        raw = _as_bytes(key)
        if len(raw) < 2:
            return True
        return all((self._bits >> position) & 1 for position in _positions(raw))

    def add(self, key: str | bytes) -> None:
        """Record a key; keys shorter than two bytes are ignored."""
        raw = _as_bytes(key)
        if len(raw) < 2:
            return
        for position in _positions(raw):
            self._bits |= 1 << position

    def reset(self) -> None:
        """Forget every recorded key."""
        self._bits = 0