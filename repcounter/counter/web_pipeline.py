# repcounter/counter/web_pipeline.py
from __future__ import annotations
from typing import Any, Callable, Mapping, Optional

from repcounter.counter.detector import Phase, PhaseCounter, RepConfig
from repcounter.counter.pose_core import snapshot_from_dict

class WebPosePipeline:
    """
    A minimal 'pipeline' that consumes pose landmarks pushed by the browser.
    No camera, no threads. Just call push_pose(landmarks).
    """
    def __init__(
        self,
        cfg: RepConfig,
        on_rep: Callable[[int], None],
        on_phase: Optional[Callable[[Phase], None]] = None,
        debug_cb: Optional[Callable[[dict], None]] = None,
    ):
        self.cfg = cfg
        self.on_rep = on_rep
        self.on_phase = on_phase
        self.debug_cb = debug_cb
        # the counter emits "phase→..." traces through the same callback
        self.detector = PhaseCounter(cfg, debug_cb=debug_cb)
        self._running = True

    # keep for API parity with PosePipeline
    def start(self):
        self._running = True

    def stop(self):
        self._running = False

    def pause(self):
        self._running = False

    def resume(self):
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    def reset(self):
        self.detector.reset()

    def push_pose(self, landmarks: Mapping[str, Any]) -> int:
        """Feed one pose snapshot ({joint: {x, y, confidence}}). Returns the count."""
        if not self._running:
            return self.detector.count
        before_count = self.detector.count
        before_phase = self.detector.phase
        count = self.detector.process(snapshot_from_dict(landmarks))
        if self.detector.phase != before_phase and self.on_phase:
            self.on_phase(self.detector.phase)
        if count > before_count:
            self.on_rep(count)
        return count
