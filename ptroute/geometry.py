"""Sphere primitives stored as parallel numpy arrays, with batched ray hits."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def dot3(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    # Row-wise dot product of two (N, 3) arrays.
    return a[:, 0] * b[:, 0] + a[:, 1] * b[:, 1] + a[:, 2] * b[:, 2]


@dataclass
class Spheres:
    """Structure-of-arrays sphere primitives."""

    centers: np.ndarray
    radii: np.ndarray
    albedo: np.ndarray
    emission: np.ndarray

    @classmethod
    def from_lists(cls, centers, radii, albedo, emission) -> "Spheres":
        return cls(
            centers=np.asarray(centers, dtype=np.float64).reshape(-1, 3),
            radii=np.asarray(radii, dtype=np.float64).reshape(-1),
            albedo=np.asarray(albedo, dtype=np.float64).reshape(-1, 3),
            emission=np.asarray(emission, dtype=np.float64).reshape(-1, 3),
        )

    def __len__(self) -> int:
        return int(self.radii.shape[0])

    @property
    def emissive(self) -> np.ndarray:
        return (self.emission > 0.0).any(axis=1)

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        r = self.radii[:, None]
        return self.centers - r, self.centers + r

    def hit(
        self,
        index: int,
        origins: np.ndarray,
        directions: np.ndarray,
        t_min: float,
        t_max: np.ndarray,
    ) -> np.ndarray:
        """Nearest hit distance of sphere `index` per ray, `inf` where it misses."""

        oc = origins - self.centers[index][None, :]
        a = dot3(directions, directions)
        half_b = dot3(oc, directions)
        c = dot3(oc, oc) - self.radii[index] * self.radii[index]
        discriminant = half_b * half_b - a * c

        sqrt_d = np.sqrt(np.maximum(discriminant, 0.0))
        near = (-half_b - sqrt_d) / a
        far = (-half_b + sqrt_d) / a
        near_ok = (near > t_min) & (near < t_max)
        far_ok = (far > t_min) & (far < t_max)
        t = np.where(near_ok, near, np.where(far_ok, far, np.inf))
        t[discriminant < 0.0] = np.inf
        return t
