"""Plot per-edge RTT and loss from a graph.json produced by `ptroute build`."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

import matplotlib.pyplot as plt

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from ptroute.artifacts import load_artifact
from ptroute.model import GraphFile


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plot hop-graph edge statistics")
    parser.add_argument("--input", type=Path, default=Path("graph.json"), help="Graph artifact")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("outputs/edge_plot.png"),
        help="Output image path",
    )
    parser.add_argument("--top", type=int, default=30, help="Plot the N most sampled edges")
    return parser.parse_args()


def short_key(key: str) -> str:
    # Silent hops are "*target#ttl"; keep them readable on the axis.
    return key if len(key) <= 18 else key[:15] + "..."


def main() -> None:
    args = parse_args()
    graph = load_artifact(args.input, GraphFile)
    if not graph.edges:
        raise SystemExit("No edges found in graph artifact.")

    edges = sorted(graph.edges, key=lambda edge: (-edge.samples, edge.source, edge.destination))[: args.top]
    labels = [f"{short_key(edge.source)} -> {short_key(edge.destination)}" for edge in edges]
    rtt_mean = [edge.rtt_mean if edge.rtt_mean is not None else 0.0 for edge in edges]
    rtt_low = [
        (edge.rtt_mean - edge.rtt_min) if edge.rtt_mean is not None and edge.rtt_min is not None else 0.0
        for edge in edges
    ]
    rtt_high = [
        (edge.rtt_max - edge.rtt_mean) if edge.rtt_mean is not None and edge.rtt_max is not None else 0.0
        for edge in edges
    ]
    loss_rate = [
        edge.loss / (edge.loss + edge.rtt_count) if (edge.loss + edge.rtt_count) else 0.0 for edge in edges
    ]

    fig, (ax1, ax2) = plt.subplots(nrows=2, figsize=(12, 7), sharex=True)

    x = range(len(labels))
    ax1.errorbar(x, rtt_mean, yerr=[rtt_low, rtt_high], fmt="o", capsize=3, label="RTT mean (min/max)")
    ax1.set_ylabel("RTT (ms)")
    ax1.legend()
    ax1.set_title(f"Edge statistics ({len(edges)} of {len(graph.edges)} edges, by samples)")

    ax2.bar(x, loss_rate, color="#d62728")
    ax2.set_ylabel("Loss rate")
    ax2.set_ylim(0.0, 1.0)
    ax2.set_xticks(list(x), labels, rotation=60, fontsize=7, ha="right")

    fig.tight_layout()

    args.output.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(args.output)


if __name__ == "__main__":
    main()
