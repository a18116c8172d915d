"""CPU path tracer for hop-graph scenes.

Nodes become matte spheres and every link becomes a chain of small emissive
spheres, so the links are the only light in the scene besides a dim sky.
Rows are split into disjoint bands rendered on a thread pool; each band
accumulates into its own slice of the radiance buffer.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Tuple

import numpy as np

from .bvh import Bvh
from .camera import Camera, frame_camera
from .config import RenderSettings
from .enums import NodeKind
from .errors import SceneEmpty
from .geometry import Spheres, dot3
from .hashing import color_from_key
from .model import SceneEdge, SceneFile, SceneNode
from .sampling import SampleRng, cosine_hemisphere, hash_seed

logger = logging.getLogger(__name__)

T_MIN = 1e-3
SURFACE_OFFSET = 1e-3
SKY = np.array([0.6, 0.8, 1.0])
GROUND = np.array([0.05, 0.05, 0.07])
AMBIENT_SCALE = 0.15
LINK_ALBEDO = (0.08, 0.08, 0.08)
SILENT_ALBEDO = (0.25, 0.25, 0.28)
MIN_LINK_BRIGHTNESS = 0.25

PassCallback = Callable[[np.ndarray, int], None]


def node_radius(seen: int) -> float:
    return 0.15 + math.log(max(seen, 1)) * 0.05


def link_radius(samples: int) -> float:
    return 0.04 + math.log(max(samples, 1)) * 0.01


def link_intensity(edge: SceneEdge) -> float:
    frequency = math.log(max(edge.samples, 1)) + 1.0
    latency = 1.0 / (1.0 + abs(edge.rtt_delta_ms_avg) / 50.0)
    delivered = max(edge.delivered_fraction, MIN_LINK_BRIGHTNESS)
    return 3.0 * frequency * latency * delivered


def _node_albedo(node: SceneNode) -> Tuple[float, float, float]:
    if node.kind is NodeKind.SILENT:
        return SILENT_ALBEDO
    return color_from_key(node.key)


def build_spheres(scene: SceneFile) -> Spheres:
    """Turn scene nodes and edges into sphere primitives."""

    centers: List[Tuple[float, float, float]] = []
    radii: List[float] = []
    albedo: List[Tuple[float, float, float]] = []
    emission: List[Tuple[float, float, float]] = []

    for node in scene.nodes:
        centers.append(node.position)
        radii.append(node_radius(node.seen))
        albedo.append(_node_albedo(node))
        emission.append((0.0, 0.0, 0.0))

    positions = scene.positions()
    for edge in scene.edges:
        if edge.source not in positions or edge.destination not in positions:
            logger.warning("skipping link %s -> %s with unplaced endpoint", edge.source, edge.destination)
            continue
        start = np.asarray(positions[edge.source], dtype=np.float64)
        delta = np.asarray(positions[edge.destination], dtype=np.float64) - start
        distance = float(np.sqrt(delta @ delta))
        if distance <= 1e-4:
            continue

        radius = link_radius(edge.samples)
        spacing = max(radius * 3.0, 0.05)
        steps = max(int(math.ceil(distance / spacing)), 2)
        glow = np.asarray(color_from_key(f"{edge.source}->{edge.destination}")) * link_intensity(edge)

        for step in range(1, steps):
            center = start + delta * (step / steps)
            centers.append((float(center[0]), float(center[1]), float(center[2])))
            radii.append(radius)
            albedo.append(LINK_ALBEDO)
            emission.append((float(glow[0]), float(glow[1]), float(glow[2])))

    return Spheres.from_lists(centers, radii, albedo, emission)


def background(directions: np.ndarray) -> np.ndarray:
    t = 0.5 * (directions[:, 1] + 1.0)
    return (GROUND[None, :] * (1.0 - t)[:, None] + SKY[None, :] * t[:, None]) * AMBIENT_SCALE


@dataclass
class RenderContext:
    spheres: Spheres
    bvh: Bvh
    camera: Camera

    @classmethod
    def from_scene(cls, scene: SceneFile, settings: RenderSettings) -> "RenderContext":
        if not scene.nodes:
            raise SceneEmpty("scene has no nodes to render")
        spheres = build_spheres(scene)
        camera_spec = scene.camera or frame_camera(*scene.bounds())
        camera = Camera(camera_spec, settings.width / settings.height)
        logger.debug("scene: %d primitives", len(spheres))
        return cls(spheres=spheres, bvh=Bvh(spheres), camera=camera)


def trace_paths(
    context: RenderContext,
    origins: np.ndarray,
    directions: np.ndarray,
    rng: SampleRng,
    bounces: int,
) -> np.ndarray:
    """Radiance carried back along each primary ray."""

    count = origins.shape[0]
    radiance = np.zeros((count, 3), dtype=np.float64)
    throughput = np.ones((count, 3), dtype=np.float64)
    alive = np.arange(count, dtype=np.int64)
    spheres = context.spheres
    emissive = spheres.emissive

    for _ in range(bounces):
        if alive.size == 0:
            break
        t, prim = context.bvh.intersect(origins, directions, T_MIN)

        missed = prim < 0
        if missed.any():
            radiance[alive[missed]] += throughput[missed] * background(directions[missed])

        lit = ~missed
        lit[lit] = emissive[prim[lit]]
        if lit.any():
            radiance[alive[lit]] += throughput[lit] * spheres.emission[prim[lit]]

        bounce = ~missed & ~lit
        alive = alive[bounce]
        if alive.size == 0:
            break

        prim = prim[bounce]
        hit_t = t[bounce]
        hit_dirs = directions[bounce]
        points = origins[bounce] + hit_dirs * hit_t[:, None]
        normals = (points - spheres.centers[prim]) / spheres.radii[prim][:, None]
        outward = dot3(normals, hit_dirs) < 0.0
        normals = np.where(outward[:, None], normals, -normals)

        r1 = rng.uniform(alive)
        r2 = rng.uniform(alive)
        directions = cosine_hemisphere(normals, r1, r2)
        origins = points + normals * SURFACE_OFFSET
        throughput = throughput[bounce] * spheres.albedo[prim]

    # Paths still alive here ran out of bounces and contribute black.
    return radiance


def render_rows(
    context: RenderContext,
    settings: RenderSettings,
    accum: np.ndarray,
    row_start: int,
    row_end: int,
    sample_offset: int,
    samples: int,
) -> None:
    """Add `samples` samples per pixel for rows [row_start, row_end) into `accum`."""

    width, height = settings.width, settings.height
    ys, xs = np.mgrid[row_start:row_end, 0:width]
    xs = xs.reshape(-1)
    ys = ys.reshape(-1)
    band = accum[row_start:row_end].reshape(-1, 3)

    for sample in range(sample_offset, sample_offset + samples):
        rng = SampleRng(hash_seed(settings.seed, xs, ys, sample))
        s = (xs + rng.uniform()) / width
        t = 1.0 - (ys + rng.uniform()) / height
        directions = context.camera.directions(s, t)
        origins = np.broadcast_to(context.camera.origin, directions.shape).copy()
        band += trace_paths(context, origins, directions, rng, settings.bounces)

    accum[row_start:row_end] = band.reshape(row_end - row_start, width, 3)


def row_bands(height: int, workers: int) -> List[Tuple[int, int]]:
    rows_per_band = max(1, math.ceil(height / (workers * 4)))
    return [(start, min(start + rows_per_band, height)) for start in range(0, height, rows_per_band)]


class _RowProgress:
    def __init__(self, total: int, every: int) -> None:
        self.total = total
        self.every = every
        self.done = 0
        self.started = time.monotonic()
        self._lock = threading.Lock()

    def advance(self, rows: int) -> None:
        if self.every <= 0:
            return
        with self._lock:
            before = self.done
            self.done += rows
            crossed = self.done // self.every > before // self.every
            if not crossed and self.done != self.total:
                return
            elapsed = time.monotonic() - self.started
            estimate = elapsed * self.total / self.done if self.done else 0.0
            logger.info(
                "render: %d/%d (%.1f%%) elapsed %.1fs eta %.1fs",
                self.done,
                self.total,
                100.0 * self.done / self.total,
                elapsed,
                max(estimate - elapsed, 0.0),
            )


def _accumulate(
    context: RenderContext,
    settings: RenderSettings,
    accum: np.ndarray,
    sample_offset: int,
    samples: int,
) -> None:
    workers = settings.resolved_threads()
    bands = row_bands(settings.height, workers)
    progress = _RowProgress(settings.height, settings.progress_every)

    def work(band: Tuple[int, int]) -> None:
        render_rows(context, settings, accum, band[0], band[1], sample_offset, samples)
        progress.advance(band[1] - band[0])

    if workers == 1:
        for band in bands:
            work(band)
        return
    with ThreadPoolExecutor(max_workers=workers) as pool:
        # list() re-raises the first worker exception here.
        list(pool.map(work, bands))


def to_image(accum: np.ndarray, samples: int) -> np.ndarray:
    """Mean radiance -> gamma-2 corrected, clamped 8-bit RGB."""

    color = np.clip(accum / max(samples, 1), 0.0, 1.0)
    return (np.sqrt(color) * 255.0).astype(np.uint8)


def render_scene(scene: SceneFile, settings: RenderSettings) -> np.ndarray:
    context = RenderContext.from_scene(scene, settings)
    accum = np.zeros((settings.height, settings.width, 3), dtype=np.float64)
    _accumulate(context, settings, accum, 0, settings.spp)
    return to_image(accum, settings.spp)


def render_scene_progressive(
    scene: SceneFile,
    settings: RenderSettings,
    on_pass: PassCallback,
    every: int | None = None,
) -> np.ndarray:
    """Render in passes of `every` samples, handing each running mean to `on_pass`.

    The final image equals `render_scene` for the same settings.
    """

    step = settings.progressive_every if every is None else every
    if step <= 0:
        step = settings.spp

    context = RenderContext.from_scene(scene, settings)
    accum = np.zeros((settings.height, settings.width, 3), dtype=np.float64)

    done = 0
    image = to_image(accum, 1)
    while done < settings.spp:
        batch = min(step, settings.spp - done)
        _accumulate(context, settings, accum, done, batch)
        done += batch
        image = to_image(accum, done)
        on_pass(image, done)
    return image
