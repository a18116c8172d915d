"""Crash-safe artifact reads and writes.

Every file that lands in an output directory goes through `atomic_write`:
bytes are written to a hidden temp file beside the destination, flushed to
disk and renamed over the destination. A reader of the directory therefore
sees either the previous file or the complete new one, never a partial one.
"""

from __future__ import annotations

import contextlib
import json
import os
import time
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, Type, TypeVar

from .errors import ArtifactParseError, WriteFailure

T = TypeVar("T")


def temp_path(path: Path) -> Path:
    stamp = time.time_ns()
    return path.parent / f".{path.name}.part-{os.getpid()}-{stamp}"


def _sync_directory(directory: Path) -> None:
    # Not every platform can fsync a directory handle.
    with contextlib.suppress(OSError):
        fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


@contextlib.contextmanager
def atomic_write(path: Path | str) -> Iterator[BinaryIO]:
    """Yield a binary handle whose contents replace `path` only on success."""

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WriteFailure(path, f"cannot create directory {path.parent}: {exc}") from exc

    tmp = temp_path(path)
    try:
        with tmp.open("wb") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except BaseException as exc:
        tmp.unlink(missing_ok=True)
        if isinstance(exc, OSError):
            raise WriteFailure(path, str(exc)) from exc
        raise
    _sync_directory(path.parent)


def write_json(path: Path | str, payload: Dict[str, Any]) -> None:
    data = json.dumps(payload, indent=2) + "\n"
    with atomic_write(path) as handle:
        handle.write(data.encode("utf-8"))


def read_json(path: Path | str) -> Dict[str, Any]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ArtifactParseError(path, "file not found") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ArtifactParseError(path, str(exc)) from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ArtifactParseError(path, f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ArtifactParseError(path, "top-level value must be an object")
    return data


def load_artifact(path: Path | str, artifact_type: Type[T]) -> T:
    """Parse a versioned artifact into `artifact_type` (a model class with `from_dict`)."""

    data = read_json(path)
    try:
        return artifact_type.from_dict(data)  # type: ignore[attr-defined]
    except KeyError as exc:
        raise ArtifactParseError(path, f"missing field {exc}") from exc
    except (AttributeError, TypeError, ValueError) as exc:
        raise ArtifactParseError(path, str(exc)) from exc


def is_valid_artifact(path: Path | str, artifact_type: Type[Any]) -> bool:
    try:
        load_artifact(path, artifact_type)
    except ArtifactParseError:
        return False
    return True
