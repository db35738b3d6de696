from __future__ import annotations
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Union

from repcounter.common.events import EventType, PhaseEvent, RepEvent, SessionEvent
from repcounter.counter.detector import Feedback, Phase, PhaseCounter, RepConfig
from repcounter.counter.web_pipeline import WebPosePipeline

if TYPE_CHECKING:
    from repcounter.counter.pipeline import PosePipeline

log = logging.getLogger(__name__)


class NoActiveSession(RuntimeError):
    """Raised when a control call needs a session and none is running."""


@dataclass
class SessionStatus:
    session_id: str
    state: str
    count: int
    phase: str = Phase.NEUTRAL.value
    feedback: str = Feedback.GET_IN_POSITION.value


@dataclass
class FinalSummary:
    session_id: str
    total_reps: int


class RepSessionManager:
    def __init__(self, camera_index: int = 0):
        self.camera_index = camera_index
        self.active_id: Optional[str] = None
        self.active_pipeline: Optional[Union[WebPosePipeline, PosePipeline]] = None
        self.active_cfg: Optional[RepConfig] = None
        self.active_preset: Optional[str] = None
        self.count = 0
        self.web_mode: bool = True           # browser is feeding poses?
        self._event_sink: Optional[Callable[[dict], None]] = None

    def set_event_sink(self, sink: Callable[[dict], None]):
        self._event_sink = sink

    def _emit(self, payload: dict):
        if self._event_sink is None:
            return
        try:
            self._event_sink(payload)
        except Exception:
            # sink errors are logged, never raised into the pipeline
            log.exception("event sink failed for %s", payload.get("type"))

    def _emit_debug(self, ev):
        """
        Accepts either a dict like {"type":"trace","msg": "..."} or any object;
        normalizes and forwards to the sink so it appears in the Trace panel.
        """
        payload = ev if isinstance(ev, dict) else {"type": EventType.TRACE.value, "msg": str(ev)}
        # rep events go out once, from _on_rep, with session context
        if payload.get("type") == EventType.REP.value:
            return
        log.debug("trace: %s", payload.get("msg"))
        self._emit(payload)

    def _detector(self) -> Optional[PhaseCounter]:
        return getattr(self.active_pipeline, "detector", None)

    def _on_rep(self, count: int):
        self.count = count
        det = self._detector()
        log.info("rep %d (session %s)", count, self.active_id)
        self._emit(RepEvent(
            type=EventType.REP,
            session_id=self.active_id or "",
            ts=time.time(),
            count=count,
            angle=det.last_angle if det else None,
        ).to_dict())

    def _on_phase(self, phase: Phase):
        det = self._detector()
        feedback = det.feedback.value if det else Feedback.GET_IN_POSITION.value
        self._emit(PhaseEvent(
            type=EventType.PHASE,
            session_id=self.active_id or "",
            ts=time.time(),
            phase=phase.value,
            feedback=feedback,
        ).to_dict())

    def _session_event(self, kind: EventType):
        self._emit(SessionEvent(
            type=kind,
            session_id=self.active_id or "",
            preset=self.active_preset or "",
            ts=time.time(),
            count=self.count,
        ).to_dict())

    def start(self, preset: str = "standard", **overrides) -> tuple[str, str]:
        """Start a session; threshold overrides are applied on top of the preset."""
        # build config first so a bad request leaves any running session alone
        cfg = RepConfig.preset(preset).with_overrides(**overrides)

        if self.active_pipeline is not None:
            log.info("stopping session %s before starting a new one", self.active_id)
            self.stop()

        self.active_id = str(uuid.uuid4())
        self.active_cfg = cfg
        self.active_preset = preset
        self.count = 0

        if self.web_mode:
            pipe = WebPosePipeline(
                cfg,
                on_rep=self._on_rep,
                on_phase=self._on_phase,
                debug_cb=self._emit_debug,
            )
        else:
            # camera stack is only needed when the server drives the webcam itself
            from repcounter.counter.pipeline import PosePipeline
            pipe = PosePipeline(
                cfg,
                on_rep=self._on_rep,
                on_phase=self._on_phase,
                on_error=self._on_error,
                debug_cb=self._emit_debug,
                camera_index=self.camera_index,
            )

        self.active_pipeline = pipe
        pipe.start()

        log.info("session %s started (preset=%s, web=%s)", self.active_id, preset, self.web_mode)
        self._session_event(EventType.SESSION_STARTED)
        return self.active_id, f"started {preset}"

    def push_pose(self, landmarks: Mapping[str, Any]) -> SessionStatus:
        if isinstance(self.active_pipeline, WebPosePipeline):
            self.active_pipeline.push_pose(landmarks)
        return self.status()

    def _require_active(self):
        if self.active_pipeline is None:
            raise NoActiveSession("no active session")
        return self.active_pipeline

    def pause(self) -> str:
        self._require_active().pause()
        self._session_event(EventType.SESSION_PAUSED)
        return self.active_id or ""

    def resume(self) -> str:
        self._require_active().resume()
        self._session_event(EventType.SESSION_RESUMED)
        return self.active_id or ""

    def reset(self) -> str:
        self._require_active().reset()
        self.count = 0
        self._session_event(EventType.SESSION_RESET)
        return self.active_id or ""

    def stop(self) -> FinalSummary:
        pipe = self._require_active()
        pipe.stop()
        # join only if it's a thread-like object
        if hasattr(pipe, "join"):
            pipe.join(timeout=1.0)

        summary = FinalSummary(session_id=self.active_id or "", total_reps=self.count)
        self._session_event(EventType.SESSION_STOPPED)
        log.info("session %s stopped with %d reps", summary.session_id, summary.total_reps)
        self.active_pipeline = None
        self.active_cfg = None
        self.active_preset = None
        self.active_id = None
        return summary

    def status(self) -> SessionStatus:
        det = self._detector()
        if self.active_pipeline is None or det is None:
            return SessionStatus(session_id="", state="stopped", count=self.count)
        return SessionStatus(
            session_id=self.active_id or "",
            state="running" if self.active_pipeline.running else "paused",
            count=det.count,
            phase=det.phase.value,
            feedback=det.feedback.value,
        )

    def _on_error(self, msg: str):
        # Called from pipeline thread on error
        log.error("pipeline error in session %s: %s", self.active_id, msg)
        self._emit({"type": EventType.TRACE.value, "msg": f"pipeline error: {msg}"})
        self.active_pipeline = None
        self.active_cfg = None
        self.active_preset = None
        self.active_id = None

    # Enable/disable web mode (server sets this from its config)
    def set_web_mode(self, active: bool):
        self.web_mode = bool(active)
