"""Gateway protocol over a real Starlette WebSocket session."""
import pytest
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from insureconnect.core.exceptions import TransientStorageError
from insureconnect.db.enums import NotificationType
from insureconnect.services import chat_service, notification_service, post_service


def _handshake(ws) -> tuple[dict, dict]:
    online = ws.receive_json()
    unread = ws.receive_json()
    assert online["event"] == "online-users"
    assert unread["event"] == "unread-count"
    return online, unread


def _receive_until(ws, event: str, limit: int = 20) -> list[dict]:
    """Frames up to and including the first `event` (presence frames may interleave)."""
    frames = []
    for _ in range(limit):
        frame = ws.receive_json()
        frames.append(frame)
        if frame["event"] == event:
            return frames
    raise AssertionError(f"no {event!r} within {limit} frames: {frames}")


@pytest.fixture
def alex(make_user):
    return make_user(name="Alex")


@pytest.fixture
def blake(make_user):
    return make_user(name="Blake")


@pytest.fixture
def chat(session_factory, alex, blake):
    with session_factory() as session:
        return chat_service.get_or_create_direct_chat(session, alex.id, blake.id)


# =============================================================================
# Authentication & presence
# =============================================================================

def test_connect_without_token_is_refused(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect("/ws"):
            pass
    assert exc.value.code == 4001


def test_connect_with_bad_token_is_refused(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect("/ws?token=not-a-jwt"):
            pass
    assert exc.value.code == 4001


def test_bearer_header_is_accepted(ws_client, alex, auth_headers):
    with ws_client.websocket_connect("/ws", headers=auth_headers(alex)) as ws:
        online, unread = _handshake(ws)

    assert online["data"] == [str(alex.id)]
    assert unread["data"] == {"count": 0}


def test_presence_announced_to_others(ws_client, ws_url, alex, blake, registry):
    with ws_client.websocket_connect(ws_url(alex)) as ws_a:
        _handshake(ws_a)
        with ws_client.websocket_connect(ws_url(blake)) as ws_b:
            online, _ = _handshake(ws_b)
            assert set(online["data"]) == {str(alex.id), str(blake.id)}
            assert ws_a.receive_json() == {
                "event": "user-online",
                "data": {"user_id": str(blake.id)},
            }

        assert not registry.is_online(blake.id)
        assert registry.is_online(alex.id)
        ws_a.send_json({"event": "ping"})
        assert _receive_until(ws_a, "pong")[-1]["data"] == {}

    assert registry.online_user_ids() == []


def test_invalid_frames_report_errors(ws_client, ws_url, alex):
    with ws_client.websocket_connect(ws_url(alex)) as ws:
        _handshake(ws)

        ws.send_text("not json")
        assert ws.receive_json()["data"]["error"] == "validation_error"

        ws.send_json({"event": "dance"})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["event"] == "dance"

        ws.send_json({"event": "join-chat", "data": {"chat_id": "nope"}})
        assert ws.receive_json()["data"]["error"] == "validation_error"


# =============================================================================
# Chat rooms
# =============================================================================

def test_join_chat_requires_membership(ws_client, ws_url, make_user, chat):
    outsider = make_user(name="Casey")

    with ws_client.websocket_connect(ws_url(outsider)) as ws:
        _handshake(ws)
        ws.send_json({"event": "join-chat", "data": {"chat_id": str(chat.id)}})
        frame = ws.receive_json()

    assert frame == {
        "event": "error",
        "data": {
            "event": "join-chat",
            "error": "forbidden",
            "detail": "Not a participant of this chat",
        },
    }


def test_message_delivered_to_room_after_persist(ws_client, ws_url, session_factory, alex, blake, chat):
    room = {"chat_id": str(chat.id)}

    with ws_client.websocket_connect(ws_url(alex)) as ws_a, \
            ws_client.websocket_connect(ws_url(blake)) as ws_b:
        _handshake(ws_a)
        _handshake(ws_b)
        ws_a.send_json({"event": "join-chat", "data": room})
        _receive_until(ws_a, "joined-chat")
        ws_b.send_json({"event": "join-chat", "data": room})
        _receive_until(ws_b, "joined-chat")

        ws_a.send_json({"event": "send-message", "data": {**room, "content": "hello"}})

        received = _receive_until(ws_b, "new-message")[-1]["data"]
        echoed = _receive_until(ws_a, "new-message")[-1]["data"]

    assert received["content"] == "hello"
    assert received["seq"] == 1
    assert received["sender_id"] == str(alex.id)
    assert echoed["id"] == received["id"]
    with session_factory() as session:
        messages, total = chat_service.list_messages(session, chat.id, blake.id)
    assert total == 1
    assert str(messages[0].id) == received["id"]


def test_send_failure_reported_to_sender_only(ws_client, ws_url, alex, blake, chat):
    room = {"chat_id": str(chat.id)}

    with ws_client.websocket_connect(ws_url(alex)) as ws_a, \
            ws_client.websocket_connect(ws_url(blake)) as ws_b:
        _handshake(ws_a)
        _handshake(ws_b)
        for ws in (ws_a, ws_b):
            ws.send_json({"event": "join-chat", "data": room})
            _receive_until(ws, "joined-chat")

        ws_a.send_json({"event": "send-message", "data": {**room, "content": "  "}})
        error = _receive_until(ws_a, "message-error")[-1]["data"]

        ws_b.send_json({"event": "ping"})
        b_frames = _receive_until(ws_b, "pong")

    assert error == {
        "chat_id": str(chat.id),
        "error": "validation_error",
        "detail": "Message content is required",
    }
    assert not any(f["event"] in ("new-message", "message-error") for f in b_frames)


def test_typing_relayed_to_others_only(ws_client, ws_url, alex, blake, chat):
    room = {"chat_id": str(chat.id)}

    with ws_client.websocket_connect(ws_url(alex)) as ws_a, \
            ws_client.websocket_connect(ws_url(blake)) as ws_b:
        _handshake(ws_a)
        _handshake(ws_b)
        for ws in (ws_a, ws_b):
            ws.send_json({"event": "join-chat", "data": room})
            _receive_until(ws, "joined-chat")

        ws_a.send_json({"event": "typing-start", "data": room})
        typing = _receive_until(ws_b, "user-typing")[-1]["data"]
        ws_a.send_json({"event": "typing-stop", "data": room})
        stopped = _receive_until(ws_b, "user-stopped-typing")[-1]["data"]

        ws_a.send_json({"event": "ping"})
        a_frames = _receive_until(ws_a, "pong")

    assert typing == {"chat_id": str(chat.id), "user_id": str(alex.id), "user_name": "Alex"}
    assert stopped == {"chat_id": str(chat.id), "user_id": str(alex.id)}
    assert not any(f["event"].startswith("user-") and "typing" in f["event"] for f in a_frames)


def test_typing_outside_room_is_refused(ws_client, ws_url, alex, chat):
    with ws_client.websocket_connect(ws_url(alex)) as ws:
        _handshake(ws)
        ws.send_json({"event": "typing-start", "data": {"chat_id": str(chat.id)}})
        frame = ws.receive_json()

    assert frame["event"] == "error"
    assert frame["data"]["error"] == "forbidden"


def test_leave_chat_stops_delivery(ws_client, ws_url, session_factory, alex, blake, chat, registry):
    room = {"chat_id": str(chat.id)}

    with ws_client.websocket_connect(ws_url(blake)) as ws_b:
        _handshake(ws_b)
        ws_b.send_json({"event": "join-chat", "data": room})
        _receive_until(ws_b, "joined-chat")
        ws_b.send_json({"event": "leave-chat", "data": room})
        assert _receive_until(ws_b, "left-chat")[-1]["data"] == room

        with session_factory() as session:
            chat_service.send_message(session, alex.id, "anyone?", chat_id=chat.id, registry=registry)

        ws_b.send_json({"event": "ping"})
        frames = _receive_until(ws_b, "pong")

    assert [f["event"] for f in frames] == ["pong"]


# =============================================================================
# Notifications over the gateway
# =============================================================================

def test_mark_notification_read_returns_unread_count(ws_client, ws_url, session_factory, alex):
    with session_factory() as session:
        note = notification_service.notify(
            session, alex.id, NotificationType.TOKENS, "Tokens Added", "Approved"
        )

    with ws_client.websocket_connect(ws_url(alex)) as ws:
        _, unread = _handshake(ws)
        assert unread["data"] == {"count": 1}

        ws.send_json({"event": "mark-notification-read", "data": {"notification_id": str(note.id)}})
        assert ws.receive_json() == {"event": "unread-count", "data": {"count": 0}}

        # Already read: still succeeds
        ws.send_json({"event": "mark-notification-read", "data": str(note.id)})
        assert ws.receive_json() == {"event": "unread-count", "data": {"count": 0}}


def test_moderation_decision_pushed_live(ws_client, ws_url, auth_headers, session_factory, alex, admin):
    with session_factory() as session:
        post = post_service.submit_post(session, alex.id, "Cyber 101", "Phishing is the top vector.", "cyber")

    with ws_client.websocket_connect(ws_url(alex)) as ws:
        _handshake(ws)
        response = ws_client.post(
            f"/admin/posts/{post.id}/reject",
            json={"reason": "needs sources"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200

        notification = _receive_until(ws, "notification")[-1]["data"]
        unread = ws.receive_json()

    assert notification["title"] == "Post Rejected"
    assert "needs sources" in notification["message"]
    assert unread == {"event": "unread-count", "data": {"count": 1}}


def test_like_post_broadcasts_and_notifies_author(ws_client, ws_url, session_factory, alex, blake, admin):
    with session_factory() as session:
        post = post_service.submit_post(session, blake.id, "Life riders", "Riders add coverage.", "life")
        post_service.approve_post(session, post.id, admin.id)

    with ws_client.websocket_connect(ws_url(blake)) as ws_b:
        _handshake(ws_b)
        with ws_client.websocket_connect(ws_url(alex)) as ws_a:
            _handshake(ws_a)
            ws_a.send_json({"event": "like-post", "data": {"post_id": str(post.id)}})
            update = _receive_until(ws_a, "post-like-updated")[-1]["data"]

            author_frames = _receive_until(ws_b, "post-like-updated")

    assert update == {"post_id": str(post.id), "user_id": str(alex.id), "liked": True}
    events = [f["event"] for f in author_frames]
    assert events.index("notification") < events.index("post-like-updated")
    like_note = next(f for f in author_frames if f["event"] == "notification")["data"]
    assert like_note["type"] == NotificationType.LIKE.value


# =============================================================================
# Revocation
# =============================================================================

def test_revoke_sessions_closes_live_connections(ws_client, ws_url, auth_headers, alex):
    stale_url = ws_url(alex)

    with ws_client.websocket_connect(stale_url) as ws:
        _handshake(ws)
        response = ws_client.post("/users/me/revoke-sessions", headers=auth_headers(alex))
        assert response.status_code == 200
        assert response.json()["connections_closed"] == 1

        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 4001

    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect(stale_url):
            pass
    assert exc.value.code == 4001


# =============================================================================
# Storage failures
# =============================================================================

def test_storage_failure_on_join_keeps_connection_open(ws_client, ws_url, monkeypatch, alex, chat):
    def locked(db, chat_id, user_id):
        raise OperationalError("SELECT chat_participants.id", {}, Exception("database is locked"))

    monkeypatch.setattr(chat_service, "is_participant", locked)

    with ws_client.websocket_connect(ws_url(alex)) as ws:
        _handshake(ws)
        ws.send_json({"event": "join-chat", "data": {"chat_id": str(chat.id)}})
        frame = ws.receive_json()

        ws.send_json({"event": "ping"})
        pong = _receive_until(ws, "pong")[-1]

    assert frame["event"] == "error"
    assert frame["data"]["event"] == "join-chat"
    assert frame["data"]["error"] == TransientStorageError.category
    assert pong == {"event": "pong", "data": {}}
