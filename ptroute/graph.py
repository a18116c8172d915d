"""Fold repeated traceroute runs into a directed hop graph."""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

import networkx as nx

from .enums import NodeKind
from .model import GraphEdge, GraphFile, GraphNode, Hop, TraceRun
from .types import NodeKey


def silent_key(target: str, ttl: int) -> NodeKey:
    """Key for a hop nobody answered, scoped to the target it was probed for."""

    return f"*{target}#{ttl}"


def hop_key(run: TraceRun, hop: Hop) -> NodeKey:
    if hop.address is not None:
        return hop.address
    return silent_key(run.target, hop.ttl)


def _touch_node(graph: nx.DiGraph, key: NodeKey, run: TraceRun, hop: Hop, first_in_run: bool) -> None:
    if key not in graph:
        silent = hop.address is None
        graph.add_node(
            key,
            kind=NodeKind.SILENT if silent else NodeKind.RESPONDING,
            min_ttl=hop.ttl,
            seen=0,
            loss_probes=0,
            target=run.target if silent else None,
        )
    attrs = graph.nodes[key]
    attrs["min_ttl"] = min(attrs["min_ttl"], hop.ttl)
    if first_in_run:
        attrs["seen"] += 1
    attrs["loss_probes"] += hop.loss_count


def _fold_edge(graph: nx.DiGraph, source: NodeKey, destination: NodeKey, before: Hop, after: Hop) -> None:
    if not graph.has_edge(source, destination):
        graph.add_edge(
            source,
            destination,
            samples=0,
            loss=0,
            rtt_count=0,
            rtt_mean=None,
            rtt_min=None,
            rtt_max=None,
            delta_sum=0.0,
            delta_count=0,
        )
    attrs = graph.edges[source, destination]
    attrs["samples"] += 1
    attrs["loss"] += after.loss_count

    rtts = after.present_rtts
    if rtts:
        count = attrs["rtt_count"]
        previous_mean = attrs["rtt_mean"] if attrs["rtt_mean"] is not None else 0.0
        attrs["rtt_mean"] = (previous_mean * count + sum(rtts)) / (count + len(rtts))
        attrs["rtt_count"] = count + len(rtts)
        low, high = min(rtts), max(rtts)
        attrs["rtt_min"] = low if attrs["rtt_min"] is None else min(attrs["rtt_min"], low)
        attrs["rtt_max"] = high if attrs["rtt_max"] is None else max(attrs["rtt_max"], high)

    first_before, first_after = before.first_rtt(), after.first_rtt()
    if first_before is not None and first_after is not None:
        attrs["delta_sum"] += first_after - first_before
        attrs["delta_count"] += 1


def add_run(graph: nx.DiGraph, run: TraceRun) -> None:
    """Fold one run into `graph`, connecting every consecutive pair of hops."""

    seen_this_run: set[NodeKey] = set()
    previous: Optional[Tuple[NodeKey, Hop]] = None

    # TTL gaps are tolerated; the walk only needs a stable TTL order.
    for hop in sorted(run.hops, key=lambda item: item.ttl):
        key = hop_key(run, hop)
        _touch_node(graph, key, run, hop, first_in_run=key not in seen_this_run)
        seen_this_run.add(key)
        if previous is not None and previous[0] != key:
            _fold_edge(graph, previous[0], key, previous[1], hop)
        previous = (key, hop)


def build_graph(runs: Iterable[TraceRun], graph: nx.DiGraph | None = None) -> nx.DiGraph:
    """Merge `runs` into `graph` (a fresh DiGraph when omitted) and return it."""

    graph = nx.DiGraph() if graph is None else graph
    for run in runs:
        add_run(graph, run)
    return graph


def graph_to_file(graph: nx.DiGraph) -> GraphFile:
    nodes = [
        GraphNode(
            key=key,
            kind=attrs["kind"],
            min_ttl=attrs["min_ttl"],
            seen=attrs["seen"],
            loss_probes=attrs["loss_probes"],
            target=attrs["target"],
        )
        for key, attrs in sorted(graph.nodes(data=True), key=lambda item: item[0])
    ]
    edges = []
    for source, destination, attrs in sorted(graph.edges(data=True), key=lambda item: (item[0], item[1])):
        delta_count = attrs["delta_count"]
        edges.append(
            GraphEdge(
                source=source,
                destination=destination,
                samples=attrs["samples"],
                loss=attrs["loss"],
                rtt_count=attrs["rtt_count"],
                rtt_mean=attrs["rtt_mean"],
                rtt_min=attrs["rtt_min"],
                rtt_max=attrs["rtt_max"],
                rtt_delta_ms_avg=attrs["delta_sum"] / delta_count if delta_count else 0.0,
                rtt_delta_count=delta_count,
            )
        )
    return GraphFile(nodes=nodes, edges=edges)


def graph_from_file(graph_file: GraphFile) -> nx.DiGraph:
    graph = nx.DiGraph()
    for node in graph_file.nodes:
        graph.add_node(
            node.key,
            kind=node.kind,
            min_ttl=node.min_ttl,
            seen=node.seen,
            loss_probes=node.loss_probes,
            target=node.target,
        )
    for edge in graph_file.edges:
        if edge.source not in graph or edge.destination not in graph:
            raise ValueError(f"edge {edge.source} -> {edge.destination} references an unknown node")
        if edge.source == edge.destination:
            raise ValueError(f"self-loop on {edge.source}")
        graph.add_edge(
            edge.source,
            edge.destination,
            samples=edge.samples,
            loss=edge.loss,
            rtt_count=edge.rtt_count,
            rtt_mean=edge.rtt_mean,
            rtt_min=edge.rtt_min,
            rtt_max=edge.rtt_max,
            delta_sum=edge.rtt_delta_ms_avg * edge.rtt_delta_count,
            delta_count=edge.rtt_delta_count,
        )
    return graph


def graph_counts(graph: nx.DiGraph) -> Tuple[int, int]:
    return graph.number_of_nodes(), graph.number_of_edges()
