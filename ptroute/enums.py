from enum import Enum


class NodeKind(Enum):
    RESPONDING = "responding"
    SILENT = "silent"


class Stage(Enum):
    TRACE = "trace"
    BUILD = "build"
    LAYOUT = "layout"
    RENDER = "render"


class StageStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunMode(Enum):
    FRESH = "fresh"
    RESUMING = "resuming"
    FORCING = "forcing"


class RunState(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
