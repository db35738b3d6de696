from __future__ import annotations
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_PAUSED = "session_paused"
    SESSION_RESUMED = "session_resumed"
    SESSION_STOPPED = "session_stopped"
    SESSION_RESET = "session_reset"
    REP = "rep"
    PHASE = "phase"
    TRACE = "trace"

@dataclass
class SessionEvent:
    type: EventType
    session_id: str
    preset: str
    ts: float
    count: int = 0

    def to_dict(self) -> dict:
        return _plain(asdict(self))

@dataclass
class RepEvent:
    type: EventType
    session_id: str
    ts: float
    count: int
    angle: Optional[float] = None

    def to_dict(self) -> dict:
        return _plain(asdict(self))

@dataclass
class PhaseEvent:
    type: EventType
    session_id: str
    ts: float
    phase: str        # Phase value, e.g. "up"
    feedback: str     # Feedback value

    def to_dict(self) -> dict:
        return _plain(asdict(self))

def _plain(d: dict) -> dict:
    # enums → their values so the dict is JSON-ready
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in d.items()}
