from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
import uvicorn

from view_planner.config import METRIC_NAMES, load_planner_config
from view_planner.planner import ViewPlanner
from view_planner.recorder import PlanningDataRecorder
from view_planner.services import ModelInformationClient, RobotInterfaceClient
from view_planner.state_machine import CommandChannel, PlannerSession
from view_planner.termination import make_termination_policy

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent
CONFIG, CONFIG_NOTES = load_planner_config(REPO_ROOT)

CHANNEL = CommandChannel(max_queue_size=CONFIG.command_queue_size)
SESSION = PlannerSession(channel=CHANNEL)
RECORDER = PlanningDataRecorder(data_folder=CONFIG.data_folder, metric_names=METRIC_NAMES)
ROBOT = RobotInterfaceClient(CONFIG.robot_interface_url, timeout_s=CONFIG.request_timeout_s)
MODEL = ModelInformationClient(CONFIG.model_url, timeout_s=CONFIG.request_timeout_s)
PLANNER = ViewPlanner(
    config=CONFIG,
    session=SESSION,
    robot=ROBOT,
    model=MODEL,
    recorder=RECORDER,
    termination=make_termination_policy(CONFIG.termination),
)
PLANNER_TASK: Optional[asyncio.Task[Any]] = None

app = FastAPI(title="Next-Best-View Planner Service", version="0.1.0")


def _require_token(token: str) -> None:
    expected = CONFIG.api_token.strip()
    if not expected:
        return
    if token.strip() != expected:
        raise HTTPException(status_code=401, detail="Invalid API token.")


def _command_text(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("data", "")).strip()
    return str(payload).strip()


def _on_planner_done(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    logger.error("View planner stopped unexpectedly.", exc_info=exc)
    SESSION.mark_terminated(f"Planner stopped unexpectedly: {exc}")


@app.on_event("startup")
async def _on_startup() -> None:
    global PLANNER_TASK

    logging.basicConfig(level=logging.INFO)
    for note in CONFIG_NOTES:
        logging.warning(note)

    PLANNER_TASK = asyncio.create_task(PLANNER.run())
    PLANNER_TASK.add_done_callback(_on_planner_done)


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    global PLANNER_TASK

    if PLANNER_TASK is not None:
        PLANNER_TASK.cancel()
        try:
            await PLANNER_TASK
        except asyncio.CancelledError:
            pass
        PLANNER_TASK = None

    await ROBOT.close()
    await MODEL.close()


@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "service": "nbv-view-planner",
        "mode": SESSION.snapshot()["mode"],
        "planner": PLANNER.debug_snapshot(),
    }


@app.get("/state")
def get_state(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    snapshot = SESSION.snapshot()
    snapshot["command_queue_size"] = CHANNEL.queue_size
    snapshot["planner"] = PLANNER.debug_snapshot()
    snapshot["data_columns"] = RECORDER.names
    return snapshot


@app.post("/command")
def post_command(
    payload: Dict[str, Any] = Body(...),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    ok, msg = SESSION.submit(_command_text(payload))
    return {"ok": ok, "message": msg}


@app.websocket("/stream/command")
async def ws_command_stream(websocket: WebSocket) -> None:
    expected = CONFIG.api_token.strip()
    token = websocket.query_params.get("token", "")
    if expected and token.strip() != expected:
        await websocket.close(code=1008)
        return

    await websocket.accept()

    try:
        while True:
            message = (await websocket.receive_text()).strip()
            if not message:
                continue

            if message.lower() == "ping":
                await websocket.send_text("pong")
                continue

            await _handle_text_ws_message(websocket, message)
    except WebSocketDisconnect:
        return


async def _handle_text_ws_message(websocket: WebSocket, message: str) -> None:
    command_text = message
    if message.startswith("{"):
        try:
            command_text = _command_text(json.loads(message))
        except json.JSONDecodeError as exc:
            await websocket.send_json({"type": "error", "message": f"Invalid JSON: {exc}"})
            return

    ok, msg = SESSION.submit(command_text)
    await websocket.send_json({"type": "ack" if ok else "ignored", "message": msg})


def main() -> None:
    uvicorn.run(
        "view_planner.main:app",
        host=CONFIG.host,
        port=CONFIG.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
