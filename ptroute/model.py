"""Artifact data structures shared by every pipeline stage.

Each dataclass mirrors one JSON object in the versioned artifacts
(`traces.json`, `graph.json`, `scene.json`). `to_dict` produces the on-disk
shape and `from_dict` accepts it back, raising `KeyError`, `TypeError` or
`ValueError` on malformed input; the artifact layer turns those into
`ArtifactParseError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .enums import NodeKind
from .types import NodeKey, RttSamples, Vec3

ARTIFACT_VERSION = 1


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number or null, got {value!r}")
    return float(value)


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {value!r}")
    return value


def _vec3(value: Any, name: str) -> Vec3:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ValueError(f"{name} must be a 3-element list")
    x, y, z = (float(component) for component in value)
    return (x, y, z)


def _object(data: Any, name: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"{name} must be an object, got {data!r}")
    return data


def _check_version(data: Dict[str, Any]) -> int:
    version = _int(data["version"], "version")
    if version != ARTIFACT_VERSION:
        raise ValueError(f"unsupported version {version} (expected {ARTIFACT_VERSION})")
    return version


@dataclass
class Hop:
    ttl: int
    address: Optional[str]
    rtt_ms: RttSamples = field(default_factory=list)

    @property
    def loss_count(self) -> int:
        return sum(1 for rtt in self.rtt_ms if rtt is None)

    @property
    def present_rtts(self) -> List[float]:
        return [rtt for rtt in self.rtt_ms if rtt is not None]

    def first_rtt(self) -> Optional[float]:
        return next((rtt for rtt in self.rtt_ms if rtt is not None), None)

    def to_dict(self) -> Dict[str, Any]:
        return {"ttl": self.ttl, "address": self.address, "rtt_ms": list(self.rtt_ms)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hop":
        data = _object(data, "hop")
        address = data.get("address")
        if address is not None and not isinstance(address, str):
            raise TypeError(f"address must be a string or null, got {address!r}")
        rtts = [_optional_float(value) for value in data.get("rtt_ms", [])]
        if address is None:
            # A hop nobody answered cannot carry round-trip times.
            rtts = [None] * len(rtts)
        return cls(ttl=_int(data["ttl"], "ttl"), address=address, rtt_ms=rtts)


@dataclass
class TraceRun:
    """One measurement pass against one target."""

    target: str
    timestamp_utc: str
    hops: List[Hop] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "timestamp_utc": self.timestamp_utc,
            "hops": [hop.to_dict() for hop in self.hops],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceRun":
        data = _object(data, "run")
        return cls(
            target=str(data["target"]),
            timestamp_utc=str(data["timestamp_utc"]),
            hops=[Hop.from_dict(hop) for hop in data["hops"]],
        )


@dataclass
class TraceFile:
    runs: List[TraceRun] = field(default_factory=list)
    version: int = ARTIFACT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "runs": [run.to_dict() for run in self.runs]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceFile":
        data = _object(data, "artifact")
        version = _check_version(data)
        return cls(runs=[TraceRun.from_dict(run) for run in data["runs"]], version=version)


@dataclass
class GraphNode:
    key: NodeKey
    kind: NodeKind
    min_ttl: int
    seen: int = 0
    loss_probes: int = 0
    target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "min_ttl": self.min_ttl,
            "seen": self.seen,
            "loss_probes": self.loss_probes,
            "target": self.target,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphNode":
        data = _object(data, "node")
        return cls(
            key=str(data["key"]),
            kind=NodeKind(data["kind"]),
            min_ttl=_int(data["min_ttl"], "min_ttl"),
            seen=_int(data.get("seen", 0), "seen"),
            loss_probes=_int(data.get("loss_probes", 0), "loss_probes"),
            target=data.get("target"),
        )


@dataclass
class GraphEdge:
    """Aggregated adjacency between two consecutive hops."""

    source: NodeKey
    destination: NodeKey
    samples: int
    loss: int = 0
    rtt_count: int = 0
    rtt_mean: Optional[float] = None
    rtt_min: Optional[float] = None
    rtt_max: Optional[float] = None
    rtt_delta_ms_avg: float = 0.0
    rtt_delta_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "samples": self.samples,
            "loss": self.loss,
            "rtt_count": self.rtt_count,
            "rtt_mean": self.rtt_mean,
            "rtt_min": self.rtt_min,
            "rtt_max": self.rtt_max,
            "rtt_delta_ms_avg": self.rtt_delta_ms_avg,
            "rtt_delta_count": self.rtt_delta_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphEdge":
        data = _object(data, "edge")
        samples = _int(data["samples"], "samples")
        if samples < 1:
            raise ValueError("edge samples must be at least 1")
        return cls(
            source=str(data["source"]),
            destination=str(data["destination"]),
            samples=samples,
            loss=_int(data.get("loss", 0), "loss"),
            rtt_count=_int(data.get("rtt_count", 0), "rtt_count"),
            rtt_mean=_optional_float(data.get("rtt_mean")),
            rtt_min=_optional_float(data.get("rtt_min")),
            rtt_max=_optional_float(data.get("rtt_max")),
            rtt_delta_ms_avg=float(data.get("rtt_delta_ms_avg", 0.0)),
            rtt_delta_count=_int(data.get("rtt_delta_count", 0), "rtt_delta_count"),
        )


@dataclass
class GraphFile:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    version: int = ARTIFACT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphFile":
        data = _object(data, "artifact")
        version = _check_version(data)
        return cls(
            nodes=[GraphNode.from_dict(node) for node in data["nodes"]],
            edges=[GraphEdge.from_dict(edge) for edge in data["edges"]],
            version=version,
        )


@dataclass
class SceneNode:
    key: NodeKey
    kind: NodeKind
    position: Vec3
    min_ttl: int
    degree: int
    seen: int = 1
    loss_probes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "position": list(self.position),
            "min_ttl": self.min_ttl,
            "degree": self.degree,
            "seen": self.seen,
            "loss_probes": self.loss_probes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneNode":
        data = _object(data, "node")
        return cls(
            key=str(data["key"]),
            kind=NodeKind(data["kind"]),
            position=_vec3(data["position"], "position"),
            min_ttl=_int(data["min_ttl"], "min_ttl"),
            degree=_int(data["degree"], "degree"),
            seen=_int(data.get("seen", 1), "seen"),
            loss_probes=_int(data.get("loss_probes", 0), "loss_probes"),
        )


@dataclass
class SceneEdge:
    source: NodeKey
    destination: NodeKey
    samples: int
    loss: int = 0
    rtt_count: int = 0
    rtt_mean: Optional[float] = None
    rtt_delta_ms_avg: float = 0.0

    @property
    def delivered_fraction(self) -> float:
        probes = self.rtt_count + self.loss
        if probes == 0:
            return 1.0
        return self.rtt_count / probes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "samples": self.samples,
            "loss": self.loss,
            "rtt_count": self.rtt_count,
            "rtt_mean": self.rtt_mean,
            "rtt_delta_ms_avg": self.rtt_delta_ms_avg,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneEdge":
        data = _object(data, "edge")
        return cls(
            source=str(data["source"]),
            destination=str(data["destination"]),
            samples=_int(data["samples"], "samples"),
            loss=_int(data.get("loss", 0), "loss"),
            rtt_count=_int(data.get("rtt_count", 0), "rtt_count"),
            rtt_mean=_optional_float(data.get("rtt_mean")),
            rtt_delta_ms_avg=float(data.get("rtt_delta_ms_avg", 0.0)),
        )


@dataclass(frozen=True)
class CameraSpec:
    look_from: Vec3
    look_at: Vec3
    vup: Vec3 = (0.0, 1.0, 0.0)
    vfov_deg: float = 35.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "look_from": list(self.look_from),
            "look_at": list(self.look_at),
            "vup": list(self.vup),
            "vfov_deg": self.vfov_deg,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraSpec":
        data = _object(data, "camera")
        return cls(
            look_from=_vec3(data["look_from"], "look_from"),
            look_at=_vec3(data["look_at"], "look_at"),
            vup=_vec3(data.get("vup", (0.0, 1.0, 0.0)), "vup"),
            vfov_deg=float(data.get("vfov_deg", 35.0)),
        )


@dataclass
class SceneFile:
    seed: int
    camera: Optional[CameraSpec]
    nodes: List[SceneNode] = field(default_factory=list)
    edges: List[SceneEdge] = field(default_factory=list)
    version: int = ARTIFACT_VERSION

    def positions(self) -> Dict[NodeKey, Vec3]:
        return {node.key: node.position for node in self.nodes}

    def bounds(self) -> Tuple[Vec3, Vec3]:
        if not self.nodes:
            return (0.0, 0.0, 0.0), (0.0, 0.0, 0.0)
        xs, ys, zs = zip(*(node.position for node in self.nodes))
        return (min(xs), min(ys), min(zs)), (max(xs), max(ys), max(zs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "seed": self.seed,
            "camera": self.camera.to_dict() if self.camera else None,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneFile":
        data = _object(data, "artifact")
        version = _check_version(data)
        camera = data.get("camera")
        return cls(
            seed=_int(data["seed"], "seed"),
            camera=CameraSpec.from_dict(camera) if camera else None,
            nodes=[SceneNode.from_dict(node) for node in data["nodes"]],
            edges=[SceneEdge.from_dict(edge) for edge in data["edges"]],
            version=version,
        )
