"""Seeded 64-bit hashes used wherever the pipeline needs reproducible noise."""

from __future__ import annotations

MASK64 = 0xFFFF_FFFF_FFFF_FFFF
FNV_OFFSET = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3


def fnv1a64(data: bytes, basis: int = FNV_OFFSET) -> int:
    value = basis & MASK64
    for byte in data:
        value ^= byte
        value = (value * FNV_PRIME) & MASK64
    return value


def unit_from_key(key: str, seed: int = 0) -> float:
    """Map (key, seed) to [0, 1] independently of any iteration order."""

    return fnv1a64(key.encode("utf-8"), FNV_OFFSET ^ (seed & MASK64)) / MASK64


def color_from_key(key: str) -> tuple[float, float, float]:
    value = fnv1a64(key.encode("utf-8"))
    r = (value & 0xFF) / 255.0
    g = ((value >> 8) & 0xFF) / 255.0
    b = ((value >> 16) & 0xFF) / 255.0
    return (0.2 + 0.8 * r, 0.2 + 0.8 * g, 0.2 + 0.8 * b)
