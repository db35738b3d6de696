from __future__ import annotations
import logging
import time
import threading
from typing import Callable, Optional

import cv2
import numpy as np
import mediapipe as mp
from repcounter.counter.detector import Phase, PhaseCounter, RepConfig
from repcounter.counter.pose_core import snapshot_from_landmarks

log = logging.getLogger(__name__)


class PosePipeline(threading.Thread):
    """Webcam → MediaPipe Pose → PhaseCounter, on its own thread."""
    def __init__(
            self,
            cfg: RepConfig,
            on_rep: Callable[[int], None],
            on_phase: Optional[Callable[[Phase], None]] = None,
            show_window: bool = False,
            on_error: Optional[Callable[[str], None]] = None,
            debug_cb: Optional[Callable[[dict], None]] = None,
            camera_index: int = 0,
    ):
        super().__init__(daemon=True)
        self.cfg = cfg
        self.on_rep = on_rep
        self.on_phase = on_phase
        self.show_window = show_window
        self.on_error = on_error
        self.camera_index = camera_index
        self._stop_evt = threading.Event()
        self._pause_evt = threading.Event()
        self._reset_evt = threading.Event()
        # one counter per capture thread; only this thread touches it
        self.detector = PhaseCounter(cfg, debug_cb=debug_cb)
        self.cap = None
        self.pose = None

    def run(self):
        mp_pose = mp.solutions.pose

        try:
            self.cap = cv2.VideoCapture(self.camera_index)
            if not self.cap.isOpened():
                raise RuntimeError(f"Webcam {self.camera_index} not available")

            self.pose = mp_pose.Pose(
                min_detection_confidence=0.5,
                min_tracking_confidence=0.5,
            )

            if self.show_window:
                try:
                    cv2.namedWindow("Reps", cv2.WINDOW_NORMAL)
                except cv2.error:
                    # If window creation fails, fallback to headless
                    log.warning("preview window unavailable, running headless")
                    self.show_window = False

            while not self._stop_evt.is_set():
                if self._reset_evt.is_set():
                    self.detector.reset()
                    self._reset_evt.clear()
                if self._pause_evt.is_set():
                    time.sleep(0.05)
                    continue
                ok, frame = self.cap.read()
                if not ok:
                    time.sleep(0.01)
                    continue
                image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                res = self.pose.process(image)
                if res.pose_landmarks:
                    self._step(snapshot_from_landmarks(res.pose_landmarks.landmark))
                else:
                    # no person: an empty snapshot is an invalid frame
                    self._step({})

                if self.show_window:
                    self._draw_overlay(frame)
                    cv2.imshow("Reps", frame)
                    # macOS: imshow requires waitKey even if we ignore keys
                    _ = cv2.waitKey(1)
        except Exception as e:
            log.exception("PosePipeline error")
            # surface error to manager
            if self.on_error:
                self.on_error(str(e))

        finally:
            if self.cap is not None:
                self.cap.release()
            if self.pose is not None:
                self.pose.close()
            if self.show_window:
                cv2.destroyAllWindows()

    def _step(self, snapshot) -> None:
        before_count = self.detector.count
        before_phase = self.detector.phase
        count = self.detector.process(snapshot)
        if self.detector.phase != before_phase and self.on_phase:
            self.on_phase(self.detector.phase)
        if count > before_count:
            self.on_rep(count)

    def _draw_overlay(self, frame: np.ndarray) -> None:
        d = self.detector
        cv2.putText(frame, f"Count: {d.count}", (20, 40),
                    cv2.FONT_HERSHEY_SIMPLEX, 1, (0, 255, 0), 2)
        cv2.putText(frame, d.phase_label, (20, 80),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, (255, 255, 0), 2)
        cv2.putText(frame, d.feedback.value, (20, 120),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 200, 255), 2)

    @property
    def running(self) -> bool:
        return not (self._pause_evt.is_set() or self._stop_evt.is_set())

    def stop(self):
        self._stop_evt.set()

    def pause(self):
        self._pause_evt.set()

    def resume(self):
        self._pause_evt.clear()

    def reset(self):
        # applied by the capture thread before its next frame
        self._reset_evt.set()
