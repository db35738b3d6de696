import importlib.util
import threading
import unittest

from repcounter.counter.detector import ConfigError, PhaseCounter, RepConfig
from repcounter.counter.session import NoActiveSession, RepSessionManager

from pose_fixtures import payload

REP = [150] * 3 + [60] * 3 + [150] * 3

HAS_CAMERA_STACK = all(importlib.util.find_spec(m) is not None for m in ("cv2", "mediapipe", "numpy"))


class ThreadedStubPipeline(threading.Thread):
    """Stands in for the webcam pipeline: same events, no capture."""

    def __init__(self, cfg: RepConfig):
        super().__init__(daemon=True)
        self.detector = PhaseCounter(cfg)
        self._stop_evt = threading.Event()
        self._pause_evt = threading.Event()

    def run(self):
        self._stop_evt.wait()

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
        self.detector.reset()


class RepSessionManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.events = []
        self.mgr = RepSessionManager()
        self.mgr.set_event_sink(self.events.append)

    def _types(self):
        return [e["type"] for e in self.events]

    def test_status_without_session(self) -> None:
        st = self.mgr.status()
        self.assertEqual(st.state, "stopped")
        self.assertEqual(st.count, 0)
        self.assertEqual(st.session_id, "")

    def test_session_counts_pushed_poses(self) -> None:
        sid, status = self.mgr.start()
        self.assertEqual(status, "started standard")
        for angle in REP:
            st = self.mgr.push_pose(payload(angle))
        self.assertEqual(st.count, 1)
        self.assertEqual(st.phase, "up")
        self.assertEqual(st.feedback, "go down")
        self.assertEqual(st.session_id, sid)

        reps = [e for e in self.events if e["type"] == "rep"]
        self.assertEqual(len(reps), 1)
        self.assertEqual(reps[0]["count"], 1)
        self.assertEqual(reps[0]["session_id"], sid)
        phases = [e["phase"] for e in self.events if e["type"] == "phase"]
        self.assertEqual(phases, ["up", "down", "up"])
        self.assertEqual(self._types()[0], "session_started")

    def test_overrides_apply_on_top_of_preset(self) -> None:
        self.mgr.start("standard", min_stable_frames=1)
        for angle in (150, 60, 150):
            self.mgr.push_pose(payload(angle))
        self.assertEqual(self.mgr.status().count, 1)

    def test_bad_config_keeps_running_session(self) -> None:
        sid, _ = self.mgr.start()
        with self.assertRaises(ConfigError):
            self.mgr.start("standard", down_threshold=150.0)
        with self.assertRaises(ConfigError):
            self.mgr.start("no-such-preset")
        self.assertEqual(self.mgr.active_id, sid)

    def test_pause_resume_reset_stop(self) -> None:
        sid, _ = self.mgr.start()
        for angle in REP:
            self.mgr.push_pose(payload(angle))

        self.mgr.pause()
        self.assertEqual(self.mgr.status().state, "paused")
        for angle in [60] * 3 + [150] * 3:
            self.mgr.push_pose(payload(angle))
        self.assertEqual(self.mgr.status().count, 1)

        self.mgr.resume()
        self.assertEqual(self.mgr.status().state, "running")

        self.mgr.reset()
        st = self.mgr.status()
        self.assertEqual((st.count, st.phase), (0, "neutral"))
        for angle in REP:
            self.mgr.push_pose(payload(angle))

        summary = self.mgr.stop()
        self.assertEqual(summary.session_id, sid)
        self.assertEqual(summary.total_reps, 1)
        self.assertEqual(self.mgr.status().state, "stopped")
        for kind in ("session_paused", "session_resumed", "session_reset", "session_stopped"):
            self.assertIn(kind, self._types())

    def test_starting_again_replaces_session(self) -> None:
        first, _ = self.mgr.start()
        second, _ = self.mgr.start("strict")
        self.assertNotEqual(first, second)
        self.assertEqual(self.mgr.active_preset, "strict")
        self.assertIn("session_stopped", self._types())

    def test_controls_need_a_session(self) -> None:
        for call in (self.mgr.stop, self.mgr.pause, self.mgr.resume, self.mgr.reset):
            with self.subTest(call=call.__name__):
                with self.assertRaises(NoActiveSession):
                    call()

    def test_push_without_session_is_harmless(self) -> None:
        st = self.mgr.push_pose(payload(150))
        self.assertEqual(st.state, "stopped")

    def test_failing_sink_does_not_break_counting(self) -> None:
        def boom(_ev):
            raise RuntimeError("sink down")

        self.mgr.set_event_sink(boom)
        self.mgr.start()
        with self.assertLogs("repcounter.counter.session", level="ERROR"):
            for angle in REP:
                self.mgr.push_pose(payload(angle))
        self.assertEqual(self.mgr.status().count, 1)


class ThreadedSessionTests(unittest.TestCase):
    def test_paused_thread_pipeline_reports_paused(self) -> None:
        mgr = RepSessionManager()
        pipe = ThreadedStubPipeline(RepConfig())
        mgr.active_id = "cam"
        mgr.active_pipeline = pipe
        pipe.start()

        self.assertEqual(mgr.status().state, "running")
        mgr.pause()
        self.assertEqual(mgr.status().state, "paused")
        mgr.resume()
        self.assertEqual(mgr.status().state, "running")

        mgr.stop()
        self.assertFalse(pipe.is_alive())
        self.assertEqual(mgr.status().state, "stopped")

    @unittest.skipUnless(HAS_CAMERA_STACK, "camera extra not installed")
    def test_camera_pipeline_running_follows_pause_and_stop(self) -> None:
        from repcounter.counter.pipeline import PosePipeline

        pipe = PosePipeline(RepConfig(), on_rep=lambda n: None)
        self.assertTrue(pipe.running)
        pipe.pause()
        self.assertFalse(pipe.running)
        pipe.resume()
        self.assertTrue(pipe.running)
        pipe.stop()
        self.assertFalse(pipe.running)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
