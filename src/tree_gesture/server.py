"""HTTP and WebSocket surface for the scene.

Runs the webcam detection loop in the background and exposes the current
gesture and scene state to the presentation layer:

- GET  /api/status        detector readiness and loop counters
- GET  /api/state         current scene snapshot
- POST /api/state         set the scene state from UI controls
- POST /api/state/toggle  flip between CHAOS and FORMED
- GET  /metrics           Prometheus metrics
- WS   /ws                snapshot pushed on every change

Usage:
    tree-gesture serve
    # or
    uvicorn tree_gesture.server:app --host 0.0.0.0 --port 8765
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from tree_gesture import __version__
from tree_gesture.classifier import GestureClassifier
from tree_gesture.config import EngineConfig
from tree_gesture.detector import open_webcam_source
from tree_gesture.loop import DetectionLoop, FrameScheduler
from tree_gesture.metrics import MetricsCollector
from tree_gesture.state import SceneSnapshot, SceneState, SceneStateReducer

logger = logging.getLogger("tree_gesture.server")

app = FastAPI(title="tree-gesture", version=__version__)


# --- State ---

class ServerState:
    def __init__(self, config: Optional[EngineConfig] = None):
        self.configure(config or EngineConfig())
        self.autostart = True

    def configure(self, config: EngineConfig):
        """Rebuild the pipeline objects for ``config``."""
        self.config = config
        self.clients: set[WebSocket] = set()
        self.metrics = MetricsCollector()
        self.reducer = SceneStateReducer()
        self.loop = DetectionLoop(
            classifier=GestureClassifier.from_config(config),
            reducer=self.reducer,
            metrics=self.metrics,
        )
        self.scheduler: Optional[FrameScheduler] = None
        self.outbox: asyncio.Queue[dict] = asyncio.Queue()
        self.broadcaster: Optional[asyncio.Task] = None
        self.reducer.subscribe(self._enqueue)

    def _enqueue(self, snapshot: SceneSnapshot):
        self.outbox.put_nowait({"type": "state", **snapshot.to_dict()})


state = ServerState()


class StateUpdate(BaseModel):
    scene_state: SceneState


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    snap = state.reducer.snapshot()
    return {
        "ready": snap.ready,
        "error": snap.error,
        "running": bool(state.scheduler and state.scheduler.running),
        "gesture": snap.gesture.value,
        "scene_state": snap.scene_state.value,
        "frames": state.loop.frames_processed,
        "skipped": state.loop.frames_skipped,
        "clients": len(state.clients),
        "thresholds": {
            "fold_ratio": state.loop.classifier.fold_ratio,
            "min_folded": state.loop.classifier.min_folded,
        },
    }


@app.get("/api/state")
async def get_state():
    return state.reducer.snapshot().to_dict()


@app.post("/api/state")
async def set_state(update: StateUpdate):
    state.reducer.set_state(update.scene_state)
    return state.reducer.snapshot().to_dict()


@app.post("/api/state/toggle")
async def toggle_state():
    state.reducer.toggle()
    return state.reducer.snapshot().to_dict()


@app.get("/metrics")
async def metrics():
    state.metrics.set_connections(len(state.clients))
    return PlainTextResponse(
        state.metrics.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    state.clients.add(ws)
    logger.info("Client connected (%d total)", len(state.clients))

    try:
        await ws.send_json({"type": "connected", **state.reducer.snapshot().to_dict()})

        while True:
            try:
                msg = await asyncio.wait_for(ws.receive_text(), timeout=30)
                data = json.loads(msg)
                if data.get("type") == "ping":
                    await ws.send_json({"type": "pong", "server_time": time.time()})
                elif data.get("type") == "get_state":
                    await ws.send_json({"type": "state", **state.reducer.snapshot().to_dict()})
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.debug("WebSocket error: %s", e)
    finally:
        state.clients.discard(ws)
        logger.info("Client disconnected (%d total)", len(state.clients))


async def broadcast(message: dict):
    """Send message to all connected clients."""
    if not state.clients:
        return
    dead = set()
    payload = json.dumps(message)
    for ws in list(state.clients):
        try:
            await ws.send_text(payload)
        except Exception:
            dead.add(ws)
    state.clients -= dead


async def broadcast_loop():
    """Forward reducer changes to WebSocket clients."""
    while True:
        message = await state.outbox.get()
        try:
            await broadcast(message)
        except Exception:
            logger.exception("Broadcast of %s update failed", message.get("type"))


# --- Lifecycle ---

@app.on_event("startup")
async def startup():
    # The queue must belong to the serving event loop.
    state.outbox = asyncio.Queue()
    state.broadcaster = asyncio.create_task(broadcast_loop())
    if not state.autostart:
        logger.info("Detection loop autostart disabled")
        return

    state.scheduler = FrameScheduler(
        state.loop,
        lambda: open_webcam_source(state.config),
        frame_interval=state.config.frame_interval,
    )
    state.scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    if state.scheduler:
        state.scheduler.stop()
        await state.scheduler.wait_stopped()
    if state.broadcaster:
        state.broadcaster.cancel()

