import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.transport.ws import router as ws_router
from app.transport.ws_manager import WSManager

URL = "/ws/r1?user_id=u-guest&pin=1234"


@pytest.fixture
def app(repo, bus, settings):
    app = FastAPI()
    app.state.settings = settings
    app.state.repo = repo
    app.state.broadcaster = bus
    app.state.wsman = WSManager()
    app.state.registries = {}
    app.include_router(ws_router)
    return app


def _recv_until(ws, type_, action=None):
    while True:
        msg = ws.receive_json()
        if msg["type"] == type_ and (action is None or msg.get("action") == action):
            return msg


def _eventually(pred, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not pred():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


def test_closing_one_tab_keeps_the_session(app, bus):
    with TestClient(app) as client:
        with client.websocket_connect(URL) as tab1:
            assert _recv_until(tab1, "hello")["is_host"] is False
            tab1.send_json({"type": "join", "name": "Gabe"})
            assert _recv_until(tab1, "action_result", "join")["ok"] is True

            with client.websocket_connect(URL) as tab2:
                _recv_until(tab2, "hello")

            time.sleep(0.2)
            assert "player-left" not in bus.sent_events()
            assert "r1" in app.state.registries["u-guest"]

            tab1.send_json({"type": "snapshot"})
            state = _recv_until(tab1, "game_state")["state"]
            assert [p["user_id"] for p in state["participants"]] == ["u-guest"]

        # last tab gone: the user leaves and the registry is released
        _eventually(lambda: "u-guest" not in app.state.registries)
        assert "player-left" in bus.sent_events()


def test_unknown_room_does_not_keep_a_registry(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/missing?user_id=u-guest") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "error"
            assert msg["code"] == "ROOM_NOT_FOUND"
        assert app.state.registries == {}


class _Sock:
    def __init__(self):
        self.closed_with = None

    async def close(self, code=1000):
        self.closed_with = code


@pytest.mark.asyncio
async def test_ws_manager_tracks_every_tab():
    wsman = WSManager()
    a, b = _Sock(), _Sock()
    assert await wsman.add("r1", "u1", a) == 1
    assert await wsman.add("r1", "u1", b) == 2
    assert await wsman.room_size("r1") == 1

    assert await wsman.remove("r1", "u1", a) == 1
    assert await wsman.room_size("r1") == 1

    await wsman.close_room("r1")
    assert b.closed_with == 4000
    assert a.closed_with is None
    assert await wsman.room_size("r1") == 0
    assert await wsman.remove("r1", "u1", b) == 0
