"""Live location WebSocket tests."""

import re

import pytest
from fastapi import WebSocketDisconnect

from safeguard.core.security import create_tracking_token
from tests.conftest import add_guardian, auth, register, trigger_body


def _sample(user_id: int, n: int) -> dict:
    return {
        "event": "update-location",
        "data": {"userId": user_id, "lat": 12.9 + n / 1000, "lng": 77.6, "accuracy": 5.0, "msg": f"s{n}"},
    }


def _me(client, token) -> dict:
    return client.get("/auth/me", headers=auth(token)).json()


def _join(ws, user_id: int) -> dict:
    ws.send_json({"event": "join-room", "data": {"userId": user_id}})
    return ws.receive_json()


def _triggered_subject(client, email="subject@test.com"):
    token = register(client, email, full_name="Uma")
    add_guardian(client, token, "Alice", "+15550000011")
    client.post("/sos/trigger", headers=auth(token), json=trigger_body())
    return token, _me(client, token)["id"]


def test_missing_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/location"):
            pass
    assert exc.value.code == 4001


def test_invalid_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/location?token=garbage"):
            pass
    assert exc.value.code == 4003


def test_ping_pong(client):
    token = register(client, "ping@test.com")
    with client.websocket_connect(f"/ws/location?token={token}") as ws:
        ws.send_text("ping")
        assert ws.receive_json() == {"event": "pong"}


def test_viewer_receives_samples_in_publish_order(client):
    token, uid = _triggered_subject(client)

    with client.websocket_connect(f"/ws/location?token={token}") as viewer:
        assert _join(viewer, uid) == {"event": "room-joined", "data": {"userId": uid}}

        with client.websocket_connect(f"/ws/location?token={token}") as publisher:
            for n in (1, 2, 3):
                publisher.send_json(_sample(uid, n))
                assert publisher.receive_json() == {"event": "location-accepted", "data": {"delivered": 1}}

        received = [viewer.receive_json() for _ in range(3)]

    assert [m["event"] for m in received] == ["location-broadcast"] * 3
    assert [m["data"]["msg"] for m in received] == ["s1", "s2", "s3"]
    assert received[0]["data"]["fullName"] == "Uma"
    assert received[0]["data"]["userId"] == uid


def test_first_publish_moves_session_to_streaming(client):
    token, uid = _triggered_subject(client)
    with client.websocket_connect(f"/ws/location?token={token}") as ws:
        ws.send_json(_sample(uid, 1))
        assert ws.receive_json()["event"] == "location-accepted"
    status = client.get("/sos/status", headers=auth(token)).json()
    assert status["state"] == "streaming"
    assert status["last_location"]["lat"] == pytest.approx(12.901)


def test_publish_without_active_sos_is_rejected(client):
    token = register(client, "quiet@test.com")
    uid = _me(client, token)["id"]
    with client.websocket_connect(f"/ws/location?token={token}") as ws:
        ws.send_json(_sample(uid, 1))
        msg = ws.receive_json()
    assert msg["event"] == "error"
    assert msg["data"]["code"] == "SessionNotActive"


def test_cannot_publish_for_someone_else(client):
    token, uid = _triggered_subject(client)
    with client.websocket_connect(f"/ws/location?token={token}") as ws:
        ws.send_json(_sample(uid + 1, 1))
        msg = ws.receive_json()
    assert msg["data"]["code"] == "Forbidden"


def test_resolve_closes_open_viewers(client):
    token, uid = _triggered_subject(client)
    with client.websocket_connect(f"/ws/location?token={token}") as viewer:
        _join(viewer, uid)
        assert client.get("/sos/status", headers=auth(token)).json()["subscribers"] == 1

        client.post("/sos/resolve", headers=auth(token))
        assert viewer.receive_json() == {"event": "room-closed", "data": {"userId": uid}}

        # samples after resolve are refused
        viewer.send_json(_sample(uid, 9))
        assert viewer.receive_json()["data"]["code"] == "SessionNotActive"

    assert client.get("/sos/status", headers=auth(token)).json()["subscribers"] == 0


def test_join_after_resolve_closes_immediately(client):
    token, uid = _triggered_subject(client)
    client.post("/sos/resolve", headers=auth(token))

    with client.websocket_connect(f"/ws/location?token={token}") as viewer:
        assert _join(viewer, uid)["event"] == "room-joined"
        assert viewer.receive_json() == {"event": "room-closed", "data": {"userId": uid}}


def test_guardian_tracking_link_grants_view(client, transport):
    token, uid = _triggered_subject(client)
    (_, body), = transport.texts
    tracking_token = re.search(r"token=(\S+)", body).group(1)

    with client.websocket_connect(f"/ws/location?token={tracking_token}") as guardian:
        assert _join(guardian, uid)["event"] == "room-joined"
        with client.websocket_connect(f"/ws/location?token={token}") as publisher:
            publisher.send_json(_sample(uid, 1))
            publisher.receive_json()
        assert guardian.receive_json()["data"]["msg"] == "s1"

        # a tracking token cannot publish or watch anyone else
        guardian.send_json(_sample(uid, 2))
        assert guardian.receive_json()["data"]["code"] == "Forbidden"
        assert _join(guardian, uid + 1)["data"]["code"] == "Forbidden"

    # nor call the REST API
    assert client.get("/auth/me", headers=auth(tracking_token)).status_code == 401


def test_guardian_without_live_permission_cannot_view(client):
    token = register(client, "priv@test.com")
    uid = _me(client, token)["id"]
    gid = add_guardian(
        client, token, "NoView", "+15550000012", permissions={"can_view_live_location": False}
    ).json()["id"]

    with client.websocket_connect(f"/ws/location?token={create_tracking_token(uid, gid)}") as ws:
        msg = _join(ws, uid)
    assert msg["event"] == "error"
    assert msg["data"]["code"] == "Forbidden"


def test_account_with_guardian_phone_cannot_view(client):
    """Registration phones are unverified, so a matching number grants nothing."""
    token, uid = _triggered_subject(client)
    impostor_token = register(client, "mallory@test.com", full_name="Mallory", phone="+15550000011")

    with client.websocket_connect(f"/ws/location?token={impostor_token}") as ws:
        msg = _join(ws, uid)
    assert msg["event"] == "error"
    assert msg["data"]["code"] == "Forbidden"
    assert client.get("/sos/status", headers=auth(token)).json()["subscribers"] == 0


def test_bad_messages_get_error_events(client):
    token = register(client, "bad@test.com")
    with client.websocket_connect(f"/ws/location?token={token}") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["data"]["code"] == "BadMessage"
        ws.send_json({"event": "dance", "data": {}})
        assert ws.receive_json()["data"]["code"] == "UnknownEvent"
        ws.send_json({"event": "join-room", "data": {}})
        assert ws.receive_json()["data"]["code"] == "BadMessage"
