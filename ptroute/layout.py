"""Deterministic 3D placement of hop-graph nodes.

Depth from the source (minimum observed TTL) drives x, the node's total
degree picks a horizontal band for y, and z is a seeded per-key jitter so
that nodes sharing a (depth, band) cell do not overlap. Every coordinate is
a pure function of the node key, the graph and the seed.
"""

from __future__ import annotations

import networkx as nx

from .camera import frame_camera
from .config import LayoutSettings
from .hashing import unit_from_key
from .model import SceneEdge, SceneFile, SceneNode
from .types import NodeKey, PositionMap


def degree_bucket(degree: int) -> int:
    """floor(log2(degree)), with isolated nodes in band 0."""

    if degree <= 1:
        return 0
    return degree.bit_length() - 1


def jitter(seed: int, key: NodeKey) -> float:
    return unit_from_key(key, seed) * 2.0 - 1.0


def compute_positions(graph: nx.DiGraph, settings: LayoutSettings) -> PositionMap:
    positions: PositionMap = {}
    for key in sorted(graph.nodes):
        min_ttl = graph.nodes[key]["min_ttl"]
        x = (min_ttl - 1) * settings.depth_spacing
        y = degree_bucket(graph.degree(key)) * settings.lane_spacing
        z = jitter(settings.seed, key) * settings.jitter_scale
        positions[key] = (float(x), float(y), float(z))
    return positions


def layout_graph(graph: nx.DiGraph, settings: LayoutSettings | None = None) -> SceneFile:
    settings = settings or LayoutSettings()
    positions = compute_positions(graph, settings)

    nodes = [
        SceneNode(
            key=key,
            kind=graph.nodes[key]["kind"],
            position=position,
            min_ttl=graph.nodes[key]["min_ttl"],
            degree=graph.degree(key),
            seen=graph.nodes[key]["seen"],
            loss_probes=graph.nodes[key]["loss_probes"],
        )
        for key, position in positions.items()
    ]
    edges = [
        SceneEdge(
            source=source,
            destination=destination,
            samples=attrs["samples"],
            loss=attrs["loss"],
            rtt_count=attrs["rtt_count"],
            rtt_mean=attrs["rtt_mean"],
            rtt_delta_ms_avg=attrs["delta_sum"] / attrs["delta_count"] if attrs["delta_count"] else 0.0,
        )
        for source, destination, attrs in sorted(graph.edges(data=True), key=lambda item: (item[0], item[1]))
    ]

    scene = SceneFile(seed=settings.seed, camera=None, nodes=nodes, edges=edges)
    if nodes:
        scene.camera = frame_camera(*scene.bounds())
    return scene
