from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import math
import time
from dataclasses import asdict
from functools import partial
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# Ensure session and rep logging is visible when running under uvicorn
for _name in ("posereps.worker", "posereps.detector", "posereps.pose", "web_app"):
    logging.getLogger(_name).setLevel(logging.INFO)

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from posereps.config import CONFIG_BOUNDS, TARGET_FPS_OPTIONS, VIEW_CALIBRATION, settings_from_env
from posereps.pose import POSE_MODELS, create_pose_estimator
from posereps.errors import PoseWorkerError
from posereps.protocol import ErrorEvent, Event, StopCommand, event_to_dict, parse_command
from posereps.worker import PoseWorker

logger = logging.getLogger("web_app")

SETTINGS = settings_from_env()

app = FastAPI(title="posereps")
app.state.estimator_factory = partial(
    create_pose_estimator,
    cache_dir=SETTINGS["model_dir"],
    delegate=SETTINGS["delegate"],
)

# Inference runs here so the event loop keeps serving websocket pings.
_POSE_EXECUTOR = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose_worker")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/config")
def config() -> dict:
    """Defaults, bounds and view calibration for client settings panels."""
    return {
        "defaults": SETTINGS["config"].to_dict(),
        "bounds": {k: list(v) for k, v in CONFIG_BOUNDS.items()},
        "views": {view.value: asdict(tuning) for view, tuning in VIEW_CALIBRATION.items()},
        "target_fps_options": list(TARGET_FPS_OPTIONS),
        "models": list(POSE_MODELS),
    }


async def _sender(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        event = await outbox.get()
        await websocket.send_text(json.dumps(event_to_dict(event)))


@app.websocket("/ws/pose")
async def pose_socket(websocket: WebSocket) -> None:
    """
    One PoseWorker per connection. Inbound JSON commands (INIT, FRAME,
    FRAME_IMAGE_DATA, CONFIG, STOP); outbound JSON events in emission order.
    """
    await websocket.accept()
    outbox: asyncio.Queue[Event] = asyncio.Queue()
    worker = PoseWorker(
        outbox.put_nowait,
        estimator_factory=websocket.app.state.estimator_factory,
        config=SETTINGS["config"],
        view=SETTINGS["view"],
        executor=_POSE_EXECUTOR,
    )
    sender = asyncio.create_task(_sender(websocket, outbox))
    logger.info("ws: session opened")
    messages = 0
    try:
        while True:
            msg = await websocket.receive_text()
            messages += 1
            try:
                payload = json.loads(msg)
            except json.JSONDecodeError:
                logger.warning("ws: ignoring non-JSON message")
                continue
            try:
                command = parse_command(payload)
            except PoseWorkerError as e:
                ts = payload.get("ts")
                if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts):
                    ts = time.perf_counter() * 1000.0
                outbox.put_nowait(ErrorEvent(ts=ts, code=e.code, message=str(e)))
                continue
            except ValueError as e:
                logger.warning("ws: ignoring command: %s", e)
                continue
            worker.dispatch(command)
    except WebSocketDisconnect:
        logger.info("ws: client disconnected (messages=%s, reps=%s)", messages, worker.detector.rep_count)
    finally:
        await worker.handle(StopCommand())
        await worker.drain()
        # Flush anything emitted before the stop.
        while not outbox.empty() and not sender.done():
            await asyncio.sleep(0)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web_app:app", host="0.0.0.0", port=8000, reload=True)
