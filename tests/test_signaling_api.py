import time

import pytest
from fastapi.testclient import TestClient

from rendezvous.hub import RelayHub
from rendezvous.main import app
from rendezvous.routers import signaling


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(signaling, "hub", RelayHub())
    with TestClient(app) as test_client:
        yield test_client


def wait_until(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition not reached"
        time.sleep(0.01)


def join(ws, room_id):
    peer_id = ws.receive_json()["peerId"]
    ws.send_json({"type": "join-room", "roomId": room_id})
    wait_until(lambda: signaling.hub.room_of(peer_id) == room_id)
    return peer_id


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_config_lists_public_stun(client):
    ice_servers = client.get("/config").json()["iceServers"]
    assert {"urls": "stun:stun.l.google.com:19302"} in ice_servers


def test_unknown_room_is_404(client):
    assert client.get("/rooms/nowhere").status_code == 404


def test_offer_answer_exchange_over_websocket(client):
    offer = {"type": "offer", "sdp": "v=0 a"}
    answer = {"type": "answer", "sdp": "v=0 b"}

    with client.websocket_connect("/ws") as ws_a:
        a = join(ws_a, "alpha")
        with client.websocket_connect("/ws") as ws_b:
            b = join(ws_b, "alpha")

            assert ws_a.receive_json() == {"type": "user-connected", "peerId": b}
            assert client.get("/rooms/alpha").json() == {"room": "alpha", "members": sorted([a, b])}
            assert client.get("/rooms").json() == {"rooms": 1, "clients": 2}

            ws_a.send_json({"type": "offer", "offer": offer, "to": b})
            assert ws_b.receive_json() == {"type": "offer", "offer": offer, "from": a}

            ws_b.send_json({"type": "answer", "answer": answer, "to": a})
            assert ws_a.receive_json() == {"type": "answer", "answer": answer, "from": b}

        assert ws_a.receive_json() == {"type": "user-disconnected", "peerId": b}
        assert client.get("/rooms/alpha").json()["members"] == [a]


def test_rooms_are_isolated(client):
    with client.websocket_connect("/ws") as ws_b:
        b = join(ws_b, "beta")
        with client.websocket_connect("/ws") as ws_a:
            a = join(ws_a, "alpha")
            ws_a.send_text("{not json")
            ws_a.send_json({"type": "offer", "offer": {"type": "offer", "sdp": "v=0"}, "to": b})

        # The first thing B hears about A is its departure
        assert ws_b.receive_json() == {"type": "user-disconnected", "peerId": a}
        wait_until(lambda: signaling.hub.room_count() == 1)


def test_binary_frames_are_skipped(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(b"\x00\x01")
        peer_id = join(ws, "alpha")
        assert client.get("/rooms/alpha").json()["members"] == [peer_id]
