"""Per-sample random streams and hemisphere sampling.

Every primary sample owns a 64-bit LCG whose start state is a splitmix64
hash of (seed, pixel x, pixel y, sample index). Nothing about threads or
scheduling enters the stream, which is what keeps renders reproducible
across worker counts.
"""

from __future__ import annotations

import numpy as np

_U64 = np.uint64
_GOLDEN = _U64(0x9E3779B97F4A7C15)
_MIX1 = _U64(0xBF58476D1CE4E5B9)
_MIX2 = _U64(0x94D049BB133111EB)
_LCG_MUL = _U64(6364136223846793005)
_LCG_INC = _U64(1)
_ZERO_STATE = _U64(0xDEADBEEFCAFEBABE)


def _splitmix(v: np.ndarray) -> np.ndarray:
    v = v + _GOLDEN
    v = (v ^ (v >> _U64(30))) * _MIX1
    v = (v ^ (v >> _U64(27))) * _MIX2
    return v ^ (v >> _U64(31))


def hash_seed(seed: int, x: np.ndarray, y: np.ndarray, sample: int) -> np.ndarray:
    x = np.asarray(x, dtype=np.uint64)
    y = np.asarray(y, dtype=np.uint64)
    # Each input gets its own mixing round.
    with np.errstate(over="ignore"):
        v = np.full(x.shape, seed & 0xFFFF_FFFF_FFFF_FFFF, dtype=np.uint64)
        v = _splitmix(v ^ x)
        v = _splitmix(v ^ y)
        v = _splitmix(v ^ _U64(sample & 0xFFFF_FFFF_FFFF_FFFF))
    v[v == 0] = _ZERO_STATE
    return v


class SampleRng:
    """A vector of independent LCG streams, one per ray in a packet."""

    def __init__(self, states: np.ndarray) -> None:
        self.states = np.array(states, dtype=np.uint64)

    def uniform(self, rays: np.ndarray | None = None) -> np.ndarray:
        """Advance the selected streams (all when `rays` is None) and return floats in [0, 1)."""

        with np.errstate(over="ignore"):
            if rays is None:
                self.states = self.states * _LCG_MUL + _LCG_INC
                drawn = self.states
            else:
                drawn = self.states[rays] * _LCG_MUL + _LCG_INC
                self.states[rays] = drawn
        return (drawn >> _U64(32)).astype(np.float64) / 4294967296.0


def cosine_hemisphere(normals: np.ndarray, r1: np.ndarray, r2: np.ndarray) -> np.ndarray:
    """Cosine-weighted directions about each unit normal."""

    phi = 2.0 * np.pi * r1
    radius = np.sqrt(r2)
    lx = np.cos(phi) * radius
    ly = np.sin(phi) * radius
    lz = np.sqrt(np.maximum(0.0, 1.0 - r2))

    nx, ny, nz = normals[:, 0], normals[:, 1], normals[:, 2]
    sign = np.where(nz >= 0.0, 1.0, -1.0)
    a = -1.0 / (sign + nz)
    b = nx * ny * a
    tangent = np.stack([1.0 + sign * nx * nx * a, sign * b, -sign * nx], axis=1)
    bitangent = np.stack([b, sign + ny * ny * a, -ny], axis=1)

    direction = tangent * lx[:, None] + bitangent * ly[:, None] + normals * lz[:, None]
    length = np.sqrt(
        direction[:, 0] * direction[:, 0]
        + direction[:, 1] * direction[:, 1]
        + direction[:, 2] * direction[:, 2]
    )
    return direction / length[:, None]
