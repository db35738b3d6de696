import asyncio
import json
import unittest

from fastapi.testclient import TestClient

from repcounter.counter.session import RepSessionManager
from repcounter.runtime.server import create_app

from pose_fixtures import payload

REP = [150] * 3 + [60] * 3 + [150] * 3


def next_frame(ws) -> dict:
    # broadcasts (trace/phase/rep) may arrive in between frame replies
    while True:
        msg = ws.receive_json()
        if msg.get("type") == "frame":
            return msg


class ServerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(create_app(RepSessionManager()))

    def test_idle_status(self) -> None:
        body = self.client.get("/sessions/current").json()
        self.assertEqual(body["state"], "stopped")
        self.assertIsNone(body["session_id"])

    def test_start_and_count_over_websocket(self) -> None:
        resp = self.client.post("/counter/start", json={"preset": "standard"})
        self.assertEqual(resp.status_code, 200)
        sid = resp.json()["session_id"]

        with self.client.websocket_connect("/ws/pose") as ws:
            for angle in REP:
                ws.send_text(json.dumps({"type": "pose", "landmarks": payload(angle)}))
                frame = next_frame(ws)
        self.assertEqual(frame, {"type": "frame", "count": 1, "phase": "up", "feedback": "go down"})

        body = self.client.get("/sessions/current").json()
        self.assertEqual(body["session_id"], sid)
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["preset"], "standard")

        stopped = self.client.post("/counter/stop").json()
        self.assertEqual(stopped["total_reps"], 1)

    def test_malformed_messages_are_dropped(self) -> None:
        self.client.post("/counter/start", json={})
        with self.client.websocket_connect("/ws/pose") as ws:
            ws.send_text("not json")
            ws.send_text(json.dumps({"type": "pose", "landmarks": {"left_elbow": {"x": 0, "y": 0, "confidence": 7}}}))
            ws.send_text(json.dumps({"type": "pose", "landmarks": payload(150)}))
            frame = next_frame(ws)
        self.assertEqual(frame["count"], 0)
        self.assertEqual(frame["feedback"], "hold the up position")

    def test_invalid_config_is_rejected(self) -> None:
        resp = self.client.post("/counter/start", json={"down_threshold": 150})
        self.assertEqual(resp.status_code, 422)
        resp = self.client.post("/counter/start", json={"preset": "nope"})
        self.assertEqual(resp.status_code, 422)

    def test_controls_without_session_conflict(self) -> None:
        for path in ("/counter/stop", "/counter/pause", "/counter/resume", "/counter/reset"):
            with self.subTest(path=path):
                self.assertEqual(self.client.post(path).status_code, 409)

    def test_pause_and_reset(self) -> None:
        self.client.post("/counter/start", json={"min_stable_frames": 1})
        with self.client.websocket_connect("/ws/pose") as ws:
            for angle in (150, 60, 150):
                ws.send_text(json.dumps({"type": "pose", "landmarks": payload(angle)}))
                next_frame(ws)
        self.assertEqual(self.client.post("/counter/pause").json()["state"], "paused")
        self.assertEqual(self.client.post("/counter/resume").json()["state"], "running")
        body = self.client.post("/counter/reset").json()
        self.assertEqual((body["count"], body["phase"]), (0, "neutral"))


    def test_broadcast_tasks_are_held_until_done(self) -> None:
        app = create_app(RepSessionManager())
        held = []

        async def emit_once():
            app.state.manager._emit({"type": "trace", "msg": "hello"})
            held.append(len(app.state.broadcasts))
            await asyncio.gather(*app.state.broadcasts)
            await asyncio.sleep(0)

        asyncio.run(emit_once())
        self.assertEqual(held, [1])
        self.assertEqual(len(app.state.broadcasts), 0)

if __name__ == "__main__":  # pragma: no cover
    unittest.main()
