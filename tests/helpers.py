from __future__ import annotations

import threading
import time
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ptroute.config import TraceSettings
from ptroute.errors import CollectorFailed, CollectorUnavailable
from ptroute.model import Hop, TraceRun

HopSpec = Tuple[int, Optional[str], Sequence[Optional[float]]]

SHARED_HOP = "10.0.0.1"
EXAMPLE_TARGETS = ("1.1.1.1", "8.8.8.8")


def make_run(target: str, hops: Iterable[HopSpec], timestamp: str = "2024-01-01T00:00:00Z") -> TraceRun:
    return TraceRun(
        target=target,
        timestamp_utc=timestamp,
        hops=[Hop(ttl=ttl, address=address, rtt_ms=list(rtts)) for ttl, address, rtts in hops],
    )


def example_hops(target: str) -> List[HopSpec]:
    """Silent first hop, a shared responding hop, then the target itself."""

    return [
        (1, None, [None, None, None]),
        (2, SHARED_HOP, [1.5, 1.7, 1.6]),
        (3, target, [10.0, 11.0, 12.0]),
    ]


def example_runs() -> List[TraceRun]:
    return [make_run(target, example_hops(target)) for target in EXAMPLE_TARGETS]


def traceroute_output(target: str, hops: Iterable[HopSpec]) -> str:
    lines = [f"traceroute to {target} ({target}), 30 hops max, 60 byte packets"]
    for ttl, address, rtts in hops:
        parts = [f"{ttl:2d} "]
        if address is not None:
            parts.append(f" {address}")
        for rtt in rtts:
            parts.append("  *" if rtt is None else f"  {rtt:.3f} ms")
        lines.append("".join(parts))
    return "\n".join(lines) + "\n"


class FakeRunner:
    """Stands in for the system traceroute with canned numeric output."""

    def __init__(
        self,
        outputs: Dict[str, str] | None = None,
        delays: Dict[str, float] | None = None,
        failures: Iterable[str] = (),
        unavailable: bool = False,
    ) -> None:
        self.outputs = outputs or {}
        self.delays = delays or {}
        self.failures = set(failures)
        self.unavailable = unavailable
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def run(self, target: str, settings: TraceSettings) -> str:
        with self._lock:
            self.calls.append(target)
        if self.unavailable:
            raise CollectorUnavailable("traceroute not found on PATH")
        if target in self.failures:
            raise CollectorFailed(target, "exit status 1: unknown host")
        delay = self.delays.get(target, 0.0)
        if delay:
            time.sleep(delay)
        if target in self.outputs:
            return self.outputs[target]
        return traceroute_output(target, example_hops(target))
