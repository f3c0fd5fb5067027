import json

import pytest

from conftest import drain, events
from schemas.messages import parse_inbound
from session.dispatch import MessageDispatcher


@pytest.fixture
def dispatcher(manager):
    return MessageDispatcher(manager)


def send(dispatcher, connection_id, **frame):
    dispatcher.dispatch(connection_id, parse_inbound(json.dumps(frame)))


def _joined_pair(dispatcher, connect):
    a, b = connect("A"), connect("B")
    send(dispatcher, "A", event="join-request", roomId="r1", username="alice")
    send(dispatcher, "B", event="join-request", roomId="r1", username="bob")
    drain(a), drain(b)
    return a, b


def test_join_success_acknowledges_with_snapshot(dispatcher, connect):
    a = connect("A")

    send(dispatcher, "A", event="join-request", roomId="r1", username="alice", ref="42")

    frames = drain(a)
    assert [f["event"] for f in frames] == ["joined", "join-ack"]
    ack = frames[1]
    assert ack["success"] is True
    assert ack["ref"] == "42"
    assert ack["user"]["username"] == "alice"
    assert [u["id"] for u in ack["users"]] == ["A"]


def test_join_conflict_emits_username_exists_and_failed_ack(dispatcher, manager, connect):
    a, b = connect("A"), connect("B")
    send(dispatcher, "B", event="join-request", roomId="r1", username="bob")
    drain(b)

    send(dispatcher, "A", event="join-request", roomId="r1", username="bob")

    frames = drain(a)
    assert [f["event"] for f in frames] == ["username-exists", "join-ack"]
    assert "already taken" in frames[0]["error"]
    assert frames[1]["success"] is False
    assert frames[1]["code"] == "conflict"
    assert drain(b) == []
    assert manager.directory.member_ids("r1") == ["B"]


def test_join_missing_fields_is_validation_failure(dispatcher, manager, connect):
    a = connect("A")

    send(dispatcher, "A", event="join-request", roomId="r1")

    frames = drain(a)
    assert len(frames) == 1
    assert frames[0]["event"] == "join-ack"
    assert frames[0]["success"] is False
    assert frames[0]["code"] == "validation"
    assert len(manager.directory) == 0


def test_join_unexpected_error_is_internal_failure(dispatcher, manager, connect):
    a = connect("A")

    def explode(*args):
        raise KeyError("boom")

    manager.request_join = explode
    send(dispatcher, "A", event="join-request", roomId="r1", username="alice")

    frames = drain(a)
    assert frames[0]["event"] == "join-ack"
    assert frames[0]["code"] == "internal"


def test_code_change_reaches_others_but_not_sender(dispatcher, connect):
    a, b = _joined_pair(dispatcher, connect)

    send(dispatcher, "A", event="code-change", roomId="r1", code="print(1)", cursorPos={"line": 1}, filePath="main.py")

    assert drain(a) == []
    frames = drain(b)
    assert len(frames) == 1
    update = frames[0]
    assert update["event"] == "code-update"
    assert update["sender"] == "A"
    assert update["code"] == "print(1)"
    assert update["cursorPos"] == {"line": 1}
    assert update["filePath"] == "main.py"
    assert isinstance(update["timestamp"], int)


def test_code_change_is_relayed(dispatcher, connect, relay):
    _joined_pair(dispatcher, connect)

    send(dispatcher, "A", event="code-change", roomId="r1", code="x")

    assert [(r[0], r[1], r[3]) for r in relay.published] == [("r1", "code-update", "A")]


def test_pass_through_requires_membership_of_named_room(dispatcher, connect, relay):
    a, b = _joined_pair(dispatcher, connect)
    outsider = connect("C")

    send(dispatcher, "C", event="code-change", roomId="r1", code="x")
    send(dispatcher, "A", event="code-change", roomId="other", code="x")

    assert drain(b) == []
    assert drain(outsider)[0] == {"event": "error", "code": "not-in-room", "message": "Not a member of room r1"}
    assert drain(a)[0]["code"] == "not-in-room"
    assert relay.published == []


def test_chat_message_includes_sender_and_uses_committed_username(dispatcher, connect):
    a, b = _joined_pair(dispatcher, connect)

    send(dispatcher, "A", event="send-message", roomId="r1", text="hi", username="mallory")

    for conn in (a, b):
        frames = drain(conn)
        assert frames[0]["event"] == "receive-message"
        assert frames[0]["username"] == "alice"
        assert frames[0]["text"] == "hi"


def test_cursor_and_file_events(dispatcher, connect):
    a, b = _joined_pair(dispatcher, connect)

    send(dispatcher, "A", event="cursor-move", roomId="r1", x=1, y=2)
    send(dispatcher, "A", event="file-open", roomId="r1", filePath="a.py")
    send(dispatcher, "A", event="file-content", roomId="r1", filePath="a.py", code="x = 1")
    send(dispatcher, "A", event="file-save", roomId="r1", filePath="a.py")

    to_b = drain(b)
    assert [f["event"] for f in to_b] == ["cursor-move", "file-opened", "file-update", "file-saved"]
    assert to_b[0]["username"] == "alice"
    assert to_b[1]["openedBy"] == "alice"
    assert to_b[2]["updatedBy"] == "alice"
    assert to_b[3]["savedBy"] == "alice"
    # only the save is echoed back to the sender
    assert events(a) == ["file-saved"]


def test_drawing_request_and_directed_sync(dispatcher, connect):
    a, b = _joined_pair(dispatcher, connect)
    outsider = connect("C")

    send(dispatcher, "B", event="request-drawing", roomId="r1")
    assert drain(a) == [{"event": "request-drawing", "connectionId": "B"}]
    assert drain(b) == []

    send(dispatcher, "A", event="sync-drawing", roomId="r1", connectionId="B", drawingData={"strokes": []})
    send(dispatcher, "A", event="sync-drawing", roomId="r1", connectionId="C", drawingData={"strokes": []})

    assert drain(b) == [{"event": "sync-drawing", "drawingData": {"strokes": []}, "sender": "A"}]
    assert drain(outsider) == []


def test_drawing_update_excludes_sender(dispatcher, connect):
    a, b = _joined_pair(dispatcher, connect)

    send(dispatcher, "A", event="drawing-update", roomId="r1", drawingData=[1, 2])

    assert drain(a) == []
    assert drain(b)[0]["drawingData"] == [1, 2]


def test_leave_room(dispatcher, manager, connect):
    a, b = _joined_pair(dispatcher, connect)

    send(dispatcher, "A", event="leave-room", roomId="elsewhere")
    assert manager.room_of("A") == "r1"

    send(dispatcher, "A", event="leave-room", roomId="r1")
    assert manager.room_of("A") is None
    assert events(b) == ["member-removed"]

    send(dispatcher, "A", event="leave-room", roomId="r1")
    assert drain(b) == []


def test_ping_is_answered(dispatcher, connect):
    a = connect("A")

    send(dispatcher, "A", event="ping")
    send(dispatcher, "A", event="pong")

    assert events(a) == ["pong"]


@pytest.mark.parametrize("fields", [
    {"roomId": 123, "username": "alice"},
    {"roomId": "r1", "username": []},
    {"roomId": {"id": "r1"}, "username": None},
])
def test_join_mistyped_fields_is_validation_failure(dispatcher, manager, connect, fields):
    a = connect("A")

    send(dispatcher, "A", event="join-request", ref="j9", **fields)

    frames = drain(a)
    assert [f["event"] for f in frames] == ["join-ack"]
    assert frames[0]["ref"] == "j9"
    assert frames[0]["success"] is False
    assert frames[0]["code"] == "validation"
    assert len(manager.directory) == 0


def test_padded_room_id_matches_the_committed_room(dispatcher, manager, connect):
    a, b = connect("A"), connect("B")
    send(dispatcher, "A", event="join-request", roomId=" r1 ", username="alice")
    send(dispatcher, "B", event="join-request", roomId="r1", username="bob")
    drain(a), drain(b)

    send(dispatcher, "A", event="code-change", roomId=" r1 ", code="x")
    assert events(b) == ["code-update"]
    assert drain(a) == []

    send(dispatcher, "A", event="leave-room", roomId=" r1 ")
    assert manager.room_of("A") is None
    assert events(b) == ["member-removed"]
