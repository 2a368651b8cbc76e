from datetime import datetime

import pytest

from ChatBackend.models.chat_models import Conversation, Message
from ChatBackend.services.chat_service import build_context
from ChatBackend.services.chat_stream import derive_title, relay_chat_stream
from conftest import make_character, make_conversation, parse_sse, signup


@pytest.fixture
def conversation(client):
    signup(client, "alice")
    char = make_character(client)
    return make_conversation(client, char["id"])


def _send(client, conv_id, content="Hello"):
    return client.post(f"/api/conversations/{conv_id}/messages", json={"content": content})


def _roles(client, conv_id):
    return [(m["role"], m["content"]) for m in client.get(f"/api/conversations/{conv_id}").json()["messages"]]


def test_streams_deltas_then_done(client, conversation, provider):
    provider.deltas = ["Well", " met", ", friend."]
    res = _send(client, conversation["id"])

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"

    events = parse_sse(res.text)
    assert events[:-1] == [{"content": "Well"}, {"content": " met"}, {"content": ", friend."}]
    assert events[-1] == {"done": True}
    assert "".join(e["content"] for e in events[:-1]) == "Well met, friend."


def test_exchange_is_persisted_in_order(client, conversation, provider):
    _send(client, conversation["id"], "  Hello  ")

    detail = client.get(f"/api/conversations/{conversation['id']}").json()
    assert [(m["role"], m["content"]) for m in detail["messages"]] == [
        ("assistant", "Greetings, traveller."),
        ("user", "Hello"),
        ("assistant", "Hello there!"),
    ]
    stamps = [datetime.fromisoformat(m["createdAt"]) for m in detail["messages"]]
    assert stamps == sorted(stamps)
    assert datetime.fromisoformat(detail["lastMessageAt"]) > datetime.fromisoformat(detail["createdAt"])


def test_context_is_system_prompt_then_transcript(client, conversation, provider):
    _send(client, conversation["id"], "Hello")
    _send(client, conversation["id"], "Tell me more")

    first, second = provider.calls
    assert first["max_tokens"] == 2048
    assert first["messages"] == [
        {"role": "system", "content": "You are Xena, a warrior princess."},
        {"role": "assistant", "content": "Greetings, traveller."},
        {"role": "user", "content": "Hello"},
    ]
    assert [m["role"] for m in second["messages"]] == ["system", "assistant", "user", "assistant", "user"]
    assert second["messages"][-1] == {"role": "user", "content": "Tell me more"}

    # The system entry is never stored as a message
    assert all(role != "system" for role, _ in _roles(client, conversation["id"]))


def test_blank_prompt_falls_back_to_name_and_description(client, provider):
    signup(client, "alice")
    char = make_character(client, systemPrompt="", greeting="")
    conv = make_conversation(client, char["id"])
    _send(client, conv["id"])
    assert provider.calls[0]["messages"][0] == {"role": "system", "content": "You are Xena. Warrior princess"}


@pytest.mark.parametrize("content", ["", "   ", "\n\t"])
def test_blank_message_is_rejected_before_side_effects(client, conversation, provider, content):
    res = _send(client, conversation["id"], content)
    assert res.status_code == 400
    assert provider.calls == []
    assert _roles(client, conversation["id"]) == [("assistant", "Greetings, traveller.")]


def test_missing_content_is_rejected(client, conversation, provider):
    res = client.post(f"/api/conversations/{conversation['id']}/messages", json={})
    assert res.status_code == 400
    assert provider.calls == []


def test_provider_failure_before_streaming_keeps_user_turn(client, conversation, provider):
    provider.fail_on_open = True
    res = _send(client, conversation["id"], "Hello")

    assert res.status_code == 502
    assert res.headers["content-type"].startswith("application/json")
    assert res.json() == {"detail": "Failed to send message"}
    assert _roles(client, conversation["id"]) == [
        ("assistant", "Greetings, traveller."),
        ("user", "Hello"),
    ]


def test_provider_failure_mid_stream_reports_error_in_band(client, conversation, provider):
    provider.deltas = ["Part", "ial", " reply"]
    provider.fail_after = 2
    res = _send(client, conversation["id"], "Hello")

    assert res.status_code == 200
    events = parse_sse(res.text)
    assert events == [{"content": "Part"}, {"content": "ial"}, {"error": "Failed to generate response"}]
    # Partial text is discarded; the user turn stays
    assert _roles(client, conversation["id"]) == [
        ("assistant", "Greetings, traveller."),
        ("user", "Hello"),
    ]
    assert provider.closed == 1


def test_provider_failure_on_first_delta_is_a_plain_error(client, conversation, provider):
    provider.fail_after = 0
    res = _send(client, conversation["id"], "Hello")

    assert res.status_code == 502
    assert res.headers["content-type"].startswith("application/json")
    assert res.json() == {"detail": "Failed to send message"}
    assert _roles(client, conversation["id"]) == [
        ("assistant", "Greetings, traveller."),
        ("user", "Hello"),
    ]
    assert provider.closed == 1


def test_empty_reply_still_completes(client, conversation, provider):
    provider.deltas = []
    res = _send(client, conversation["id"], "Hello")

    assert res.status_code == 200
    assert parse_sse(res.text) == [{"done": True}]
    assert _roles(client, conversation["id"])[-1] == ("assistant", "")


def test_error_details_do_not_leak(client, conversation, provider):
    provider.fail_after = 0
    res = _send(client, conversation["id"])
    assert "upstream connection dropped" not in res.text

    provider.fail_after = 1
    res = _send(client, conversation["id"])
    assert res.status_code == 200
    assert "upstream connection dropped" not in res.text


def test_first_exchange_sets_title(client, conversation, provider):
    provider.deltas = ["Hail, stranger!", "\nWhat brings you here?"]
    _send(client, conversation["id"])
    detail = client.get(f"/api/conversations/{conversation['id']}").json()
    assert detail["title"] == "Hail, stranger!"


def test_long_first_line_is_truncated(client, conversation, provider):
    provider.deltas = ["A" * 30, "B" * 30]
    _send(client, conversation["id"])
    title = client.get(f"/api/conversations/{conversation['id']}").json()["title"]
    assert title == "A" * 30 + "B" * 10 + "..."
    assert len(title) == 43


def test_later_exchanges_keep_the_title(client, conversation, provider):
    provider.deltas = ["First reply"]
    _send(client, conversation["id"])
    provider.deltas = ["Second reply"]
    _send(client, conversation["id"], "Again")
    assert client.get(f"/api/conversations/{conversation['id']}").json()["title"] == "First reply"


def test_title_without_greeting(client, provider):
    signup(client, "alice")
    char = make_character(client, greeting="")
    conv = make_conversation(client, char["id"])
    provider.deltas = ["Fresh start"]
    _send(client, conv["id"])
    assert client.get(f"/api/conversations/{conv['id']}").json()["title"] == "Fresh start"


def test_blank_first_line_keeps_default_title(client, conversation, provider):
    provider.deltas = ["   \nSecond line"]
    _send(client, conversation["id"])
    assert client.get(f"/api/conversations/{conversation['id']}").json()["title"] == "Chat with Xena"


@pytest.mark.parametrize(
    "reply,expected",
    [
        ("Short", "Short"),
        ("Line one\nLine two", "Line one"),
        ("x" * 40, "x" * 40),
        ("x" * 41, "x" * 40 + "..."),
        ("y" * 200, "y" * 40 + "..."),
        ("", None),
        ("\n\nLater", None),
    ],
)
def test_derive_title(reply, expected):
    assert derive_title(reply) == expected


def test_context_window_keeps_most_recent_messages():
    character = type("C", (), {"system_prompt": "Be brief.", "name": "X", "description": "Y"})()
    history = [Message(role="user" if i % 2 else "assistant", content=str(i)) for i in range(6)]

    full = build_context(character, history)
    assert [m["content"] for m in full] == ["Be brief.", "0", "1", "2", "3", "4", "5"]

    windowed = build_context(character, history, max_messages=2)
    assert [m["content"] for m in windowed] == ["Be brief.", "4", "5"]


@pytest.mark.anyio
async def test_disconnect_stops_generation_without_persisting(app, client, provider):
    signup(client, "alice")
    char = make_character(client)
    conv = make_conversation(client, char["id"])

    session_factory = app.state.session_factory
    user_id = _owner_id(session_factory, conv["id"])

    provider.deltas = ["one", "two", "three"]
    deltas = await provider.open_stream([], max_tokens=16)
    stream = relay_chat_stream(
        user_id=user_id,
        conversation_id=conv["id"],
        deltas=deltas,
        session_factory=session_factory,
        history_count=2,
    )

    first = await stream.__anext__()
    assert first == 'data: {"content": "one"}\n\n'
    # Client goes away before `done`
    await stream.aclose()

    assert provider.closed == 1
    session = session_factory()
    try:
        roles = [m.role for m in session.query(Message).filter_by(conversation_id=conv["id"]).all()]
    finally:
        session.close()
    assert roles == ["assistant"]  # the greeting only


def _owner_id(session_factory, conversation_id):
    session = session_factory()
    try:
        return session.get(Conversation, conversation_id).user_id
    finally:
        session.close()
