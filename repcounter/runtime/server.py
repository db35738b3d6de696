from __future__ import annotations
import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from pydantic import ValidationError

from repcounter.counter.detector import ConfigError
from repcounter.counter.session import NoActiveSession, RepSessionManager
from repcounter.runtime.schemas import (
    FrameResponse,
    PoseMessage,
    StartRequest,
    StartResponse,
    StatusResponse,
)

log = logging.getLogger(__name__)


def create_app(manager: Optional[RepSessionManager] = None) -> FastAPI:
    app = FastAPI(title="repcounter")
    # browser feeds landmarks over /ws/pose
    mgr = manager or RepSessionManager()
    mgr.set_web_mode(True)
    clients: Set[WebSocket] = set()
    pending: Set[asyncio.Task] = set()
    app.state.manager = mgr
    app.state.clients = clients
    app.state.broadcasts = pending

    async def broadcast(obj: dict):
        dead = []
        for ws in list(clients):
            try:
                await ws.send_text(json.dumps(obj))
            except (WebSocketDisconnect, RuntimeError, OSError):
                dead.append(ws)
        for d in dead:
            clients.discard(d)

    # let the manager emit events to all WS clients
    def _sink(ev: dict):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # called off the event loop (no clients to reach from here)
            return
        task = loop.create_task(broadcast(ev))
        pending.add(task)
        task.add_done_callback(pending.discard)

    mgr.set_event_sink(_sink)

    def _status() -> StatusResponse:
        st = mgr.status()
        return StatusResponse(
            session_id=st.session_id or None,
            state=st.state,
            count=st.count,
            phase=st.phase,
            feedback=st.feedback,
            preset=mgr.active_preset,
        )

    @app.get("/favicon.ico")
    async def favicon():
        return Response(status_code=204)

    @app.get("/sessions/current", response_model=StatusResponse)
    async def current():
        return _status()

    @app.post("/counter/start", response_model=StartResponse)
    async def start(req: StartRequest):
        try:
            sid, status = mgr.start(preset=req.preset, **req.overrides())
        except ConfigError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return StartResponse(session_id=sid, status=status)

    @app.post("/counter/stop")
    async def stop():
        try:
            summary = mgr.stop()
        except NoActiveSession as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"stopped": True, "session_id": summary.session_id, "total_reps": summary.total_reps}

    @app.post("/counter/pause", response_model=StatusResponse)
    async def pause():
        try:
            mgr.pause()
        except NoActiveSession as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _status()

    @app.post("/counter/resume", response_model=StatusResponse)
    async def resume():
        try:
            mgr.resume()
        except NoActiveSession as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _status()

    @app.post("/counter/reset", response_model=StatusResponse)
    async def reset():
        try:
            mgr.reset()
        except NoActiveSession as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _status()

    @app.websocket("/ws/pose")
    async def ws_pose(ws: WebSocket):
        await ws.accept()
        clients.add(ws)
        await broadcast({"type": "trace", "msg": "ws: client connected"})
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    msg = PoseMessage.model_validate_json(raw)
                except ValidationError as e:
                    log.warning("dropping malformed pose message: %s", e.errors()[:1])
                    continue
                landmarks = {k: (v.model_dump() if v is not None else None) for k, v in msg.landmarks.items()}
                st = mgr.push_pose(landmarks)
                frame = FrameResponse(count=st.count, phase=st.phase, feedback=st.feedback)
                await ws.send_text(frame.model_dump_json())
        except WebSocketDisconnect:
            pass
        finally:
            clients.discard(ws)
            await broadcast({"type": "trace", "msg": "ws closed"})

    return app


app = create_app()
