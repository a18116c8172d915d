from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class TraceSettings:
    """Collector parameters for one multi-target trace pass."""

    max_hops: int = 30
    probes: int = 3
    timeout_ms: int = 2000
    concurrency: int = 4
    repeat: int = 1
    interval_ms: int = 0

    def __post_init__(self) -> None:
        if self.max_hops < 1:
            raise ValueError("max_hops must be at least 1")
        if self.probes < 1:
            raise ValueError("probes must be at least 1")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.repeat < 1:
            raise ValueError("repeat must be at least 1")
        if self.interval_ms < 0:
            raise ValueError("interval_ms must not be negative")

    @property
    def timeout_secs(self) -> int:
        """Whole seconds for the collector's -w flag."""

        return max(1, (self.timeout_ms + 999) // 1000)


@dataclass(frozen=True)
class LayoutSettings:
    seed: int = 1
    depth_spacing: float = 1.0
    lane_spacing: float = 2.0
    jitter_scale: float = 0.5

    def __post_init__(self) -> None:
        if self.seed < 0:
            raise ValueError("seed must not be negative")
        if self.depth_spacing <= 0:
            raise ValueError("depth_spacing must be positive")
        if self.lane_spacing <= 0:
            raise ValueError("lane_spacing must be positive")
        if self.jitter_scale < 0:
            raise ValueError("jitter_scale must not be negative")


@dataclass(frozen=True)
class RenderSettings:
    """Image size, sampling budget and worker pool size for one render."""

    width: int = 1600
    height: int = 900
    spp: int = 64
    bounces: int = 6
    seed: int = 1
    threads: int = 0
    progressive_every: int = 0
    progress_every: int = 32

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError("width and height must be positive")
        if self.spp < 1:
            raise ValueError("spp must be at least 1")
        if self.bounces < 1:
            raise ValueError("bounces must be at least 1")
        if self.seed < 0:
            raise ValueError("seed must not be negative")
        if self.threads < 0:
            raise ValueError("threads must not be negative")
        if self.progressive_every < 0:
            raise ValueError("progressive_every must not be negative")
        if self.progress_every < 0:
            raise ValueError("progress_every must not be negative")

    def resolved_threads(self) -> int:
        if self.threads == 0:
            return os.cpu_count() or 1
        return self.threads


@dataclass(frozen=True)
class RunOptions:
    """Everything an orchestrated run needs, as resolved from the command line."""

    out_dir: Path
    targets: Tuple[str, ...] = ()
    targets_file: Path | None = None
    trace: TraceSettings = field(default_factory=TraceSettings)
    layout: LayoutSettings = field(default_factory=LayoutSettings)
    render: RenderSettings = field(default_factory=RenderSettings)
    resume: bool = False
    force: bool = False
    plain: bool = False
    open: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "out_dir": str(self.out_dir),
            "targets": list(self.targets),
            "targets_file": str(self.targets_file) if self.targets_file else None,
            "trace": asdict(self.trace),
            "layout": asdict(self.layout),
            "render": {**asdict(self.render), "resolved_threads": self.render.resolved_threads()},
            "resume": self.resume,
            "force": self.force,
            "plain": self.plain,
            "open": self.open,
        }
