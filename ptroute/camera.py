from __future__ import annotations

import math

import numpy as np

from .model import CameraSpec
from .types import Vec3

VFOV_DEG = 35.0
DISTANCE_FACTOR = 1.6


def frame_camera(bounds_min: Vec3, bounds_max: Vec3, vfov_deg: float = VFOV_DEG) -> CameraSpec:
    """Place the camera so the whole bounding box is in view."""

    low = np.asarray(bounds_min, dtype=np.float64)
    high = np.asarray(bounds_max, dtype=np.float64)
    center = (low + high) * 0.5
    extent = max(float(np.linalg.norm(high - low)), 1.0)
    distance = extent * DISTANCE_FACTOR
    look_from = center + np.array([distance, distance * 0.6, distance])
    return CameraSpec(
        look_from=tuple(float(v) for v in look_from),
        look_at=tuple(float(v) for v in center),
        vup=(0.0, 1.0, 0.0),
        vfov_deg=vfov_deg,
    )


def _normalize(vector: np.ndarray) -> np.ndarray:
    length = float(np.sqrt(vector @ vector))
    return vector if length == 0.0 else vector / length


class Camera:
    """Pinhole camera generating normalised primary ray directions."""

    def __init__(self, spec: CameraSpec, aspect: float) -> None:
        theta = math.radians(spec.vfov_deg)
        viewport_height = 2.0 * math.tan(theta * 0.5)
        viewport_width = aspect * viewport_height

        look_from = np.asarray(spec.look_from, dtype=np.float64)
        look_at = np.asarray(spec.look_at, dtype=np.float64)
        w = _normalize(look_from - look_at)
        u = _normalize(np.cross(np.asarray(spec.vup, dtype=np.float64), w))
        v = np.cross(w, u)

        self.origin = look_from
        self.horizontal = u * viewport_width
        self.vertical = v * viewport_height
        self.lower_left = look_from - self.horizontal * 0.5 - self.vertical * 0.5 - w

    def directions(self, s: np.ndarray, t: np.ndarray) -> np.ndarray:
        """Unit directions through viewport coordinates (s, t) in [0, 1]."""

        target = (
            self.lower_left[None, :]
            + s[:, None] * self.horizontal[None, :]
            + t[:, None] * self.vertical[None, :]
        )
        direction = target - self.origin[None, :]
        length = np.sqrt(
            direction[:, 0] * direction[:, 0]
            + direction[:, 1] * direction[:, 1]
            + direction[:, 2] * direction[:, 2]
        )
        return direction / length[:, None]
