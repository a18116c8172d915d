from __future__ import annotations

from pathlib import Path


class PtrouteError(Exception):
    """Base class for pipeline failures."""


class CollectorUnavailable(PtrouteError):
    """The traceroute executable is missing or cannot be executed."""


class CollectorFailed(PtrouteError):
    """A single traceroute invocation failed or produced unusable output."""

    def __init__(self, target: str, message: str) -> None:
        super().__init__(f"traceroute failed for {target}: {message}")
        self.target = target


class ArtifactParseError(PtrouteError):
    """An input artifact is missing, malformed, or has the wrong version."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"failed to parse {path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class OutputConflict(PtrouteError):
    """The output directory already holds results and neither resume nor force was given."""


class SceneEmpty(PtrouteError):
    """The scene handed to the renderer has no nodes."""


class WriteFailure(PtrouteError):
    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"failed to write {path}: {reason}")
        self.path = Path(path)
