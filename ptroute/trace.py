"""Traceroute collection and numeric-mode output parsing."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from .config import TraceSettings
from .errors import CollectorFailed, CollectorUnavailable
from .model import Hop, TraceRun

logger = logging.getLogger(__name__)

TRACEROUTE = "traceroute"

_IPV4 = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")
_IPV6 = re.compile(r"^[0-9A-Fa-f:]*:[0-9A-Fa-f:]*$")
_HEADER_PAREN = re.compile(r"\(([^)]*)\)")
_HEADER_TARGET = re.compile(r"traceroute to\s+([^\s,]+)", re.IGNORECASE)
_RTT_INLINE = re.compile(r"^(\d+(?:\.\d+)?)ms$")
_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_ip_token(token: str) -> bool:
    if token.endswith("ms"):
        return False
    match = _IPV4.match(token)
    if match:
        return all(int(part) <= 255 for part in match.groups())
    return bool(_IPV6.match(token))


def parse_header_target(line: str) -> Optional[str]:
    paren = _HEADER_PAREN.search(line)
    if paren and paren.group(1).strip():
        return paren.group(1).strip()
    named = _HEADER_TARGET.search(line)
    if named:
        return named.group(1)
    return None


def parse_hop_line(line: str) -> Hop:
    tokens = line.split()
    try:
        ttl = int(tokens[0])
    except (IndexError, ValueError) as exc:
        raise ValueError(f"invalid hop line: {line!r}") from exc

    address: Optional[str] = None
    rtts: List[Optional[float]] = []
    index = 1
    while index < len(tokens):
        token = tokens[index]
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        index += 1

        if token == "*":
            rtts.append(None)
        elif token.startswith("!"):
            continue
        elif is_ip_token(token):
            # Later addresses on the same line are load-balanced siblings.
            if address is None:
                address = token
        elif _RTT_INLINE.match(token):
            rtts.append(float(_RTT_INLINE.match(token).group(1)))
        elif _NUMBER.match(token) and following is not None and following.startswith("ms"):
            rtts.append(float(token))
            index += 1

    if address is None:
        rtts = [None] * len(rtts)
    return Hop(ttl=ttl, address=address, rtt_ms=rtts)


def parse_traceroute_n(text: str) -> Tuple[str, List[Hop]]:
    """Parse `traceroute -n` output into (target, hops)."""

    target: Optional[str] = None
    hops: List[Hop] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.lower().startswith("traceroute"):
            if target is None:
                target = parse_header_target(line)
            continue
        if not line[0].isdigit():
            continue
        hops.append(parse_hop_line(line))

    if target is None:
        raise ValueError("missing target in traceroute output")
    return target, hops


class TracerouteRunner(Protocol):
    def run(self, target: str, settings: TraceSettings) -> str:
        ...


class SystemTracerouteRunner:
    """Runs the platform `traceroute` binary in numeric mode."""

    def __init__(self, executable: str = TRACEROUTE) -> None:
        self.executable = executable

    def command(self, target: str, settings: TraceSettings) -> List[str]:
        return [
            self.executable,
            "-n",
            "-q",
            str(settings.probes),
            "-m",
            str(settings.max_hops),
            "-w",
            str(settings.timeout_secs),
            target,
        ]

    def run(self, target: str, settings: TraceSettings) -> str:
        try:
            completed = subprocess.run(
                self.command(target, settings),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise CollectorUnavailable(f"{self.executable} not found on PATH") from exc
        except PermissionError as exc:
            raise CollectorUnavailable(f"{self.executable} is not executable") from exc

        if completed.returncode != 0:
            raise CollectorFailed(
                target,
                f"exit status {completed.returncode}: {completed.stderr.strip()}{completed.stdout.strip()}",
            )
        return completed.stdout


def trace_target(target: str, settings: TraceSettings, runner: TracerouteRunner) -> List[TraceRun]:
    """All repeats for one target, in order."""

    runs: List[TraceRun] = []
    for repeat in range(settings.repeat):
        if repeat and settings.interval_ms:
            time.sleep(settings.interval_ms / 1000.0)
        timestamp = utc_timestamp()
        output = runner.run(target, settings)
        try:
            _, hops = parse_traceroute_n(output)
        except ValueError as exc:
            raise CollectorFailed(target, str(exc)) from exc
        runs.append(TraceRun(target=target, timestamp_utc=timestamp, hops=hops))
        logger.debug("traced %s (%d/%d): %d hops", target, repeat + 1, settings.repeat, len(hops))
    return runs


def run_traces(
    targets: Sequence[str],
    settings: TraceSettings,
    runner: TracerouteRunner | None = None,
) -> List[TraceRun]:
    """Trace every target, at most `settings.concurrency` at a time.

    Results are returned in input order (target, then repeat) whatever order
    the traces finish in.
    """

    runner = runner or SystemTracerouteRunner()
    slots: List[List[TraceRun]] = [[] for _ in targets]

    def fill(index: int) -> None:
        try:
            slots[index] = trace_target(targets[index], settings, runner)
        except CollectorFailed as exc:
            logger.warning("%s; skipping target", exc)

    workers = max(1, min(settings.concurrency, len(targets)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(fill, range(len(targets))))

    return [run for slot in slots for run in slot]


def load_targets(path: Path | str | None, extra: Iterable[str] = ()) -> List[str]:
    targets: List[str] = []
    if path is not None:
        for line in Path(path).read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            targets.append(line)
    targets.extend(target.strip() for target in extra if target.strip())
    return targets


def check_collector(executable: str = TRACEROUTE) -> Tuple[bool, str]:
    """Probe that the collector can run at all: (ok, detail)."""

    resolved = shutil.which(executable)
    if resolved is None:
        return False, f"{executable} not found on PATH"
    try:
        completed = subprocess.run(
            [resolved, "-n", "-m", "1", "127.0.0.1"],
            capture_output=True,
            text=True,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        return False, f"{resolved}: {exc}"
    if completed.returncode != 0:
        return False, f"{resolved} exited with status {completed.returncode}"
    return True, resolved
