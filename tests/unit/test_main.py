import asyncio
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from view_planner import main
from view_planner.state_machine import Command, PlannerSession, RunMode


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main.CONFIG, "api_token", "")
    main.CHANNEL.drain()
    yield TestClient(main.app)
    main.CHANNEL.drain()


@pytest.mark.unit
def test_post_command_enqueues_without_applying(client):
    response = client.post("/command", json={"data": "START"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "message": "START queued."}
    assert main.SESSION.snapshot()["mode"] == "waiting"
    assert main.CHANNEL.drain() == [Command.START]


@pytest.mark.unit
def test_post_unknown_command_is_ignored(client):
    response = client.post("/command", json={"data": "DANCE"})

    assert response.json()["ok"] is False
    assert main.CHANNEL.queue_size == 0


@pytest.mark.unit
def test_api_token_is_enforced(client, monkeypatch):
    monkeypatch.setattr(main.CONFIG, "api_token", "secret")

    assert client.post("/command", json={"data": "PAUSE"}).status_code == 401
    assert client.get("/state", headers={"X-API-Token": "wrong"}).status_code == 401
    assert client.get("/state", headers={"X-API-Token": "secret"}).status_code == 200


@pytest.mark.unit
def test_state_reports_session_planner_and_schema(client):
    body = client.get("/state").json()

    assert body["mode"] == "waiting"
    assert body["command_queue_size"] == 0
    assert body["planner"]["record_count"] == 0
    assert body["data_columns"][:3] == ["pos_x", "pos_y", "pos_z"]


@pytest.mark.unit
def test_websocket_accepts_plain_and_json_commands(client):
    with client.websocket_connect("/stream/command") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        ws.send_text("PAUSE")
        assert ws.receive_json() == {"type": "ack", "message": "PAUSE queued."}

        ws.send_text('{"data": "ABORT_LOOP"}')
        assert ws.receive_json()["type"] == "ack"

        ws.send_text("HOVER")
        assert ws.receive_json()["type"] == "ignored"

    assert main.CHANNEL.drain() == [Command.PAUSE, Command.ABORT_LOOP]


@pytest.fixture
def terminated_session(monkeypatch):
    session = PlannerSession(channel=main.CHANNEL, print_handler=Mock())
    session.mark_terminated("Planner finished.")
    monkeypatch.setattr(main, "SESSION", session)
    return session


@pytest.mark.unit
def test_commands_after_termination_are_answered_not_queued(client, terminated_session):
    saved = client.post("/command", json={"data": "PRINT_DATA"})
    rejected = client.post("/command", json={"data": "START"})

    assert saved.json() == {"ok": True, "message": "Planning data saved."}
    assert rejected.json() == {"ok": False, "message": "Planner has terminated."}
    terminated_session.print_handler.assert_called_once_with()
    assert main.CHANNEL.queue_size == 0


@pytest.mark.unit
def test_websocket_after_termination_reports_rejection(client, terminated_session):
    with client.websocket_connect("/stream/command") as ws:
        ws.send_text("PAUSE")
        assert ws.receive_json() == {"type": "ignored", "message": "Planner has terminated."}

    assert main.CHANNEL.queue_size == 0


def _finished_task(coro_factory):
    async def runner():
        task = asyncio.ensure_future(coro_factory())
        await asyncio.wait([task])
        return task

    return asyncio.run(runner())


@pytest.mark.unit
def test_planner_crash_is_surfaced_in_session_status(monkeypatch):
    session = PlannerSession()
    monkeypatch.setattr(main, "SESSION", session)

    async def crash():
        raise RuntimeError("view space service unreachable")

    main._on_planner_done(_finished_task(crash))

    assert session.mode == RunMode.TERMINATED
    assert session.snapshot()["status_text"] == "Planner stopped unexpectedly: view space service unreachable"


@pytest.mark.unit
def test_clean_planner_exit_leaves_session_alone(monkeypatch):
    session = PlannerSession()
    monkeypatch.setattr(main, "SESSION", session)

    async def finish():
        return None

    main._on_planner_done(_finished_task(finish))

    assert session.mode == RunMode.WAITING
