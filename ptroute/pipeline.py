"""Trace -> Build -> Layout -> Render orchestration.

Each stage reads the previous stage's artifact from the output directory and
writes its own, so any stage can be re-entered on its own. `Pipeline.run`
adds the run-level policy on top: refusing to clobber an existing directory,
resuming from valid artifacts, forcing a full re-run, and recording a
receipt once the run reaches a terminal state.
"""

from __future__ import annotations

import logging
import platform
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from . import __version__
from .artifacts import is_valid_artifact, load_artifact, write_json
from .config import LayoutSettings, RenderSettings, RunOptions, TraceSettings
from .enums import RunMode, RunState, Stage, StageStatus
from .errors import ArtifactParseError, OutputConflict
from .graph import build_graph, graph_from_file, graph_to_file
from .image_out import is_valid_png, write_png
from .layout import layout_graph
from .model import GraphFile, SceneFile, TraceFile
from .renderer import render_scene, render_scene_progressive
from .trace import TracerouteRunner, check_collector, load_targets, run_traces, utc_timestamp

logger = logging.getLogger(__name__)

RECEIPT_VERSION = 1
RECEIPT_NAME = "run.json"
ARTIFACT_NAMES: Dict[Stage, str] = {
    Stage.TRACE: "traces.json",
    Stage.BUILD: "graph.json",
    Stage.LAYOUT: "scene.json",
    Stage.RENDER: "render.png",
}
SUPPORTED_SYSTEMS = ("Darwin", "Linux")

# (kind, step, detail) where kind is one of "ok", "skip", "fail".
StepReporter = Callable[[str, str, str], None]


def default_out_dir(now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return Path("output") / stamp


def artifact_paths(out_dir: Path) -> Dict[Stage, Path]:
    return {stage: out_dir / name for stage, name in ARTIFACT_NAMES.items()}


def trace_stage(
    targets: Sequence[str],
    settings: TraceSettings,
    out_path: Path,
    runner: TracerouteRunner | None = None,
) -> TraceFile:
    if not targets:
        raise ValueError("no targets given")
    trace_file = TraceFile(runs=run_traces(targets, settings, runner))
    write_json(out_path, trace_file.to_dict())
    return trace_file


def build_stage(in_path: Path, out_path: Path) -> GraphFile:
    trace_file = load_artifact(in_path, TraceFile)
    graph_file = graph_to_file(build_graph(trace_file.runs))
    write_json(out_path, graph_file.to_dict())
    return graph_file


def layout_stage(in_path: Path, out_path: Path, settings: LayoutSettings) -> SceneFile:
    graph_file = load_artifact(in_path, GraphFile)
    try:
        graph = graph_from_file(graph_file)
    except ValueError as exc:
        raise ArtifactParseError(in_path, str(exc)) from exc
    scene = layout_graph(graph, settings)
    write_json(out_path, scene.to_dict())
    return scene


def render_stage(in_path: Path, out_path: Path, settings: RenderSettings) -> Path:
    """Render a scene artifact to PNG, rewriting the PNG after every progressive pass."""

    scene = load_artifact(in_path, SceneFile)
    if settings.progressive_every > 0:

        def write_pass(image, done: int) -> None:
            write_png(out_path, image, spp=done)
            logger.info("render: wrote %d spp to %s", done, out_path)

        render_scene_progressive(scene, settings, write_pass)
    else:
        write_png(out_path, render_scene(scene, settings), spp=settings.spp)
    return out_path


@dataclass
class StageOutcome:
    stage: Stage
    status: StageStatus = StageStatus.PENDING
    resumed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.stage.value,
            "status": self.status.value,
            "resumed": self.resumed,
            "error": self.error,
        }


@dataclass
class RunReceipt:
    mode: RunMode
    started_at_utc: str
    options: Dict[str, Any]
    outputs: Dict[str, str]
    stages: List[StageOutcome] = field(default_factory=list)
    state: RunState | None = None
    finished_at_utc: str | None = None
    error: str | None = None

    def outcome(self, stage: Stage) -> StageOutcome:
        return next(item for item in self.stages if item.stage is stage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": RECEIPT_VERSION,
            "tool_version": __version__,
            "mode": self.mode.value,
            "state": self.state.value if self.state else None,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "options": self.options,
            "stages": [item.to_dict() for item in self.stages],
            "outputs": self.outputs,
            "host": {"os": platform.system().lower(), "arch": platform.machine()},
            "error": self.error,
        }


def resolve_mode(options: RunOptions) -> RunMode:
    if options.force:
        if options.resume:
            logger.warning("--force overrides --resume; re-running all steps")
        return RunMode.FORCING
    if options.resume:
        return RunMode.RESUMING
    return RunMode.FRESH


def prepare_out_dir(out_dir: Path, mode: RunMode) -> None:
    """Create `out_dir`, or refuse when it already holds results and the run is fresh."""

    if out_dir.exists():
        if not out_dir.is_dir():
            raise OutputConflict(f"output path {out_dir} exists and is not a directory")
        if mode is RunMode.FRESH and any(out_dir.iterdir()):
            raise OutputConflict(f"output directory {out_dir} already exists (use --resume or --force)")
        return
    out_dir.mkdir(parents=True)


class Pipeline:
    """One orchestrated run over a single output directory."""

    def __init__(
        self,
        options: RunOptions,
        runner: TracerouteRunner | None = None,
        reporter: StepReporter | None = None,
    ) -> None:
        self.options = options
        self.runner = runner
        self.reporter = reporter
        self.paths = artifact_paths(options.out_dir)
        self.receipt_path = options.out_dir / RECEIPT_NAME

    def _report(self, kind: str, stage: Stage, detail: str) -> None:
        if self.reporter is not None:
            self.reporter(kind, stage.value, detail)
        else:
            logger.info("%s %s %s", kind, stage.value, detail)

    def artifact_is_valid(self, stage: Stage) -> bool:
        path = self.paths[stage]
        if stage is Stage.TRACE:
            return is_valid_artifact(path, TraceFile)
        if stage is Stage.BUILD:
            return is_valid_artifact(path, GraphFile)
        if stage is Stage.LAYOUT:
            return is_valid_artifact(path, SceneFile)
        render = self.options.render
        return is_valid_png(path, render.width, render.height, spp=render.spp)

    def _execute(self, stage: Stage) -> str:
        """Run one stage and return a one-line summary for the step report."""

        options = self.options
        paths = self.paths
        if stage is Stage.TRACE:
            targets = load_targets(options.targets_file, options.targets)
            trace_file = trace_stage(targets, options.trace, paths[stage], self.runner)
            return f"{paths[stage]} ({len(targets)} target(s), repeat {options.trace.repeat}, {len(trace_file.runs)} run(s))"
        if stage is Stage.BUILD:
            graph_file = build_stage(paths[Stage.TRACE], paths[stage])
            return f"{paths[stage]} (nodes {len(graph_file.nodes)}, edges {len(graph_file.edges)})"
        if stage is Stage.LAYOUT:
            layout_stage(paths[Stage.BUILD], paths[stage], options.layout)
            return f"{paths[stage]} (seed {options.layout.seed})"
        render = options.render
        render_stage(paths[Stage.LAYOUT], paths[stage], render)
        return (
            f"{paths[stage]} ({render.width}x{render.height}, spp {render.spp}, "
            f"bounces {render.bounces}, threads {render.resolved_threads()})"
        )

    def _write_receipt(self, receipt: RunReceipt, state: RunState) -> None:
        receipt.state = state
        receipt.finished_at_utc = utc_timestamp()
        write_json(self.receipt_path, receipt.to_dict())

    def run(self) -> RunReceipt:
        """Run every stage in order and write the receipt.

        Stage failures are recorded in the receipt and then re-raised.
        """

        mode = resolve_mode(self.options)
        prepare_out_dir(self.options.out_dir, mode)

        started = time.monotonic()
        receipt = RunReceipt(
            mode=mode,
            started_at_utc=utc_timestamp(),
            options=self.options.to_dict(),
            outputs={stage.value: str(path) for stage, path in self.paths.items()},
            stages=[StageOutcome(stage) for stage in Stage],
        )
        receipt.outputs["run"] = str(self.receipt_path)

        upstream_ran = False
        for stage in Stage:
            outcome = receipt.outcome(stage)
            if mode is RunMode.RESUMING and not upstream_ran and self.artifact_is_valid(stage):
                outcome.status = StageStatus.COMPLETED
                outcome.resumed = True
                self._report("skip", stage, str(self.paths[stage]))
                continue

            outcome.status = StageStatus.RUNNING
            upstream_ran = True
            try:
                detail = self._execute(stage)
            except Exception as exc:
                outcome.status = StageStatus.FAILED
                outcome.error = str(exc)
                receipt.error = f"{stage.value}: {exc}"
                self._report("fail", stage, str(exc))
                self._write_receipt(receipt, RunState.FAILED)
                raise
            outcome.status = StageStatus.COMPLETED
            self._report("ok", stage, detail)

        self._write_receipt(receipt, RunState.COMPLETED)
        logger.debug("run finished in %.1fs", time.monotonic() - started)
        return receipt


def run_pipeline(
    options: RunOptions,
    runner: TracerouteRunner | None = None,
    reporter: StepReporter | None = None,
) -> RunReceipt:
    return Pipeline(options, runner, reporter).run()


def check_output_dir(out_dir: Path) -> Tuple[bool, str]:
    probe = out_dir / ".ptroute-write-test"
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        probe.write_bytes(b"ok")
        probe.unlink()
    except OSError as exc:
        return False, f"{out_dir} not writable ({exc})"
    return True, f"writable ({out_dir})"


def doctor(out_dir: Path) -> List[Tuple[str, bool, str]]:
    """Preflight checks as (check, ok, detail) rows."""

    checks: List[Tuple[str, bool, str]] = []
    system = platform.system()
    if system in SUPPORTED_SYSTEMS:
        checks.append(("os", True, f"tracing supported ({system})"))
    else:
        checks.append(("os", False, f"tracing unsupported on {system} (macOS/Linux only)"))

    collector_ok, collector_detail = check_collector()
    checks.append(("traceroute", collector_ok, collector_detail))

    dir_ok, dir_detail = check_output_dir(out_dir)
    checks.append(("output dir", dir_ok, dir_detail))
    return checks

