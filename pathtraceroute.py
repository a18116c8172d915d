"""Command-line entry point for PathTraceRoute.

Traceroute measurements become a directed hop graph, the graph is laid out
in 3D, and the scene is path traced to a PNG. Each stage can be run on its
own against artifact files, or all four in sequence with `run`.
"""

from __future__ import annotations

import argparse
import logging
import platform
import subprocess
import sys
import time
from pathlib import Path
from typing import Sequence

from ptroute import __version__
from ptroute.config import LayoutSettings, RenderSettings, RunOptions, TraceSettings
from ptroute.errors import PtrouteError
from ptroute.logging_config import setup_logger
from ptroute.pipeline import (
    build_stage,
    default_out_dir,
    doctor,
    layout_stage,
    render_stage,
    run_pipeline,
    trace_stage,
)
from ptroute.trace import load_targets

STEP_COLORS = {
    "boot": "\x1b[36m",
    "ok": "\x1b[32m",
    "skip": "\x1b[33m",
    "fail": "\x1b[31m",
    "done": "\x1b[35m",
}
STEP_TAGS = {"boot": "[BOOT]", "ok": "[OK ]", "skip": "[SKIP]", "fail": "[FAIL]", "done": "[DONE]"}
RESET = "\x1b[0m"


class Console:
    """Loader-style step lines on stderr."""

    def __init__(self, plain: bool = False, stream=None) -> None:
        self.plain = plain
        self.stream = stream or sys.stderr

    def line(self, kind: str, text: str) -> None:
        tag = STEP_TAGS[kind]
        if not self.plain:
            tag = f"{STEP_COLORS[kind]}{tag}{RESET}"
        print(f"{tag} {text}", file=self.stream)

    def banner(self) -> None:
        self.line("boot", f"PathTraceRoute Loader v{__version__}")

    def step(self, kind: str, step: str, detail: str) -> None:
        self.line(kind, f"{step:<6}  {detail}")

    def done(self, detail: str) -> None:
        self.line("done", detail)


def add_trace_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--targets", type=Path, default=None, help="File with one target per line")
    parser.add_argument(
        "--target",
        dest="target_list",
        action="append",
        default=[],
        help="Target host or address (repeatable)",
    )
    parser.add_argument("--max-hops", type=int, default=30)
    parser.add_argument("--probes", type=int, default=3, help="Probes per hop")
    parser.add_argument("--timeout-ms", type=int, default=2000, help="Per-probe timeout")
    parser.add_argument("--concurrency", type=int, default=4, help="Targets traced in parallel")
    parser.add_argument("--repeat", type=int, default=1, help="Runs per target")
    parser.add_argument("--interval-ms", type=int, default=0, help="Pause between repeats")


def add_layout_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--seed", type=int, default=1)


def add_render_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--width", type=int, default=1600)
    parser.add_argument("--height", type=int, default=900)
    parser.add_argument("--spp", type=int, default=64, help="Samples per pixel")
    parser.add_argument("--bounces", type=int, default=6)
    parser.add_argument("--threads", type=int, default=0, help="Worker threads (0 = all cores)")
    parser.add_argument(
        "--progressive-every",
        type=int,
        default=0,
        help="Rewrite the PNG every N samples (0 disables)",
    )
    parser.add_argument(
        "--progress-every",
        type=int,
        default=32,
        help="Log render progress every N rows (0 disables)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ptroute", description="PathTraceRoute CLI")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    trace = sub.add_parser("trace", help="Run traceroute against targets")
    add_trace_options(trace)
    trace.add_argument("--out", type=Path, default=Path("traces.json"))

    build = sub.add_parser("build", help="Merge trace runs into a hop graph")
    build.add_argument("--in", dest="in_path", type=Path, default=Path("traces.json"))
    build.add_argument("--out", type=Path, default=Path("graph.json"))

    layout = sub.add_parser("layout", help="Place graph nodes in 3D")
    layout.add_argument("--in", dest="in_path", type=Path, default=Path("graph.json"))
    layout.add_argument("--out", type=Path, default=Path("scene.json"))
    add_layout_options(layout)

    render = sub.add_parser("render", help="Path trace a scene to PNG")
    render.add_argument("--in", dest="in_path", type=Path, default=Path("scene.json"))
    render.add_argument("--out", type=Path, default=Path("render.png"))
    add_layout_options(render)
    add_render_options(render)

    run = sub.add_parser("run", help="Trace, build, layout and render in one go")
    add_trace_options(run)
    add_layout_options(run)
    add_render_options(run)
    run.add_argument("--out-dir", type=Path, default=None, help="Defaults to output/<timestamp>")
    run.add_argument("--resume", action="store_true", help="Skip stages whose artifacts are valid")
    run.add_argument("--force", action="store_true", help="Re-run every stage")
    run.add_argument("--plain", action="store_true", help="No colors")
    run.add_argument("--open", action="store_true", help="Open the render when done")

    check = sub.add_parser("doctor", help="Check that tracing and output can work")
    check.add_argument("--out-dir", type=Path, default=Path("output"))
    check.add_argument("--plain", action="store_true")

    return parser


def trace_settings(args: argparse.Namespace) -> TraceSettings:
    return TraceSettings(
        max_hops=args.max_hops,
        probes=args.probes,
        timeout_ms=args.timeout_ms,
        concurrency=args.concurrency,
        repeat=args.repeat,
        interval_ms=args.interval_ms,
    )


def render_settings(args: argparse.Namespace) -> RenderSettings:
    return RenderSettings(
        width=args.width,
        height=args.height,
        spp=args.spp,
        bounces=args.bounces,
        seed=args.seed,
        threads=args.threads,
        progressive_every=args.progressive_every,
        progress_every=args.progress_every,
    )


def open_file(path: Path) -> None:
    system = platform.system()
    if system == "Darwin":
        opener = "open"
    elif system == "Linux":
        opener = "xdg-open"
    else:
        raise PtrouteError(f"--open is not supported on {system}")
    try:
        subprocess.run([opener, str(path)], check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise PtrouteError(f"failed to open {path}: {exc}") from exc


def cmd_run(args: argparse.Namespace) -> int:
    console = Console(plain=args.plain)
    console.banner()
    started = time.monotonic()

    options = RunOptions(
        out_dir=args.out_dir or default_out_dir(),
        targets=tuple(args.target_list),
        targets_file=args.targets,
        trace=trace_settings(args),
        layout=LayoutSettings(seed=args.seed),
        render=render_settings(args),
        resume=args.resume,
        force=args.force,
        plain=args.plain,
        open=args.open,
    )
    receipt = run_pipeline(options, reporter=console.step)

    if options.open:
        open_file(Path(receipt.outputs["render"]))
    console.done(f"elapsed {time.monotonic() - started:.1f}s")
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    console = Console(plain=args.plain)
    healthy = True
    for check, ok, detail in doctor(args.out_dir):
        console.line("ok" if ok else "fail", f"{check}: {detail}")
        healthy = healthy and ok
    if not healthy:
        print("       tip: build/layout/render still work with an existing traces.json", file=sys.stderr)
    return 0 if healthy else 1


def dispatch(args: argparse.Namespace) -> int:
    if args.command == "trace":
        targets = load_targets(args.targets, args.target_list)
        trace_file = trace_stage(targets, trace_settings(args), args.out)
        logging.getLogger("ptroute").info("wrote %d run(s) to %s", len(trace_file.runs), args.out)
        return 0
    if args.command == "build":
        graph_file = build_stage(args.in_path, args.out)
        logging.getLogger("ptroute").info(
            "wrote %s (nodes %d, edges %d)", args.out, len(graph_file.nodes), len(graph_file.edges)
        )
        return 0
    if args.command == "layout":
        layout_stage(args.in_path, args.out, LayoutSettings(seed=args.seed))
        return 0
    if args.command == "render":
        render_stage(args.in_path, args.out, render_settings(args))
        return 0
    if args.command == "run":
        return cmd_run(args)
    return cmd_doctor(args)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger("ptroute", logging.DEBUG if args.verbose else logging.INFO)
    try:
        return dispatch(args)
    except (PtrouteError, ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
