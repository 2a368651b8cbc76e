import logging

from fastapi.testclient import TestClient

from ChatBackend.models.chat_models import Message
from ChatBackend.services import chat_service
from conftest import make_character, make_conversation, make_shared_character, parse_sse, signup


def test_conversations_require_auth(client):
    assert client.get("/api/conversations").status_code == 401
    assert client.post("/api/conversations", json={"characterId": 1}).status_code == 401
    assert client.get("/api/conversations/1").status_code == 401
    assert client.delete("/api/conversations/1").status_code == 401
    assert client.post("/api/conversations/1/messages", json={"content": "hi"}).status_code == 401


def test_start_conversation_seeds_greeting_verbatim(client):
    signup(client, "alice")
    greeting = "  Greetings, traveller.\nSit by the fire.  "
    char = make_character(client, greeting=greeting)
    conv = make_conversation(client, char["id"])

    assert conv["title"] == "Chat with Xena"
    assert conv["characterId"] == char["id"]

    detail = client.get(f"/api/conversations/{conv['id']}").json()
    assert detail["character"]["id"] == char["id"]
    assert len(detail["messages"]) == 1
    first = detail["messages"][0]
    assert first["role"] == "assistant"
    assert first["content"] == greeting


def test_start_conversation_without_greeting_has_no_messages(client):
    signup(client, "alice")
    char = make_character(client, greeting="")
    conv = make_conversation(client, char["id"])
    assert client.get(f"/api/conversations/{conv['id']}").json()["messages"] == []


def test_greeting_failure_still_creates_usable_conversation(client, provider, monkeypatch, caplog):
    real_append = chat_service.append_message

    def append_without_greeting(session, conversation, role, content):
        if role == "assistant":
            raise RuntimeError("greeting insert failed")
        return real_append(session, conversation, role, content)

    monkeypatch.setattr(chat_service, "append_message", append_without_greeting)
    signup(client, "alice")
    char = make_character(client)

    with caplog.at_level(logging.ERROR, logger="ChatBackend.services.chat_service"):
        res = client.post("/api/conversations", json={"characterId": char["id"]})

    assert res.status_code == 201
    conv = res.json()
    assert conv["title"] == "Chat with Xena"
    assert any("chat.greeting.error" in r.getMessage() for r in caplog.records)
    assert client.get(f"/api/conversations/{conv['id']}").json()["messages"] == []

    res = client.post(f"/api/conversations/{conv['id']}/messages", json={"content": "Hello"})
    assert res.status_code == 200
    assert parse_sse(res.text)[-1] == {"done": True}
    roles = [(m["role"], m["content"]) for m in client.get(f"/api/conversations/{conv['id']}").json()["messages"]]
    assert roles == [("user", "Hello"), ("assistant", "Hello there!")]


def test_start_conversation_with_shared_character(client, db):
    shared = make_shared_character(db)
    signup(client, "alice")
    conv = make_conversation(client, shared.id)
    assert conv["title"] == "Chat with Dr. Nova"


def test_start_conversation_validation(client, make_client):
    signup(client, "alice")
    assert client.post("/api/conversations", json={}).status_code == 400
    assert client.post("/api/conversations", json={"characterId": "abc"}).status_code == 400
    assert client.post("/api/conversations", json={"characterId": 9999}).status_code == 404

    bob = make_client()
    signup(bob, "bob")
    bobs = make_character(bob)
    assert client.post("/api/conversations", json={"characterId": bobs["id"]}).status_code == 404


def test_list_sorted_by_recency(client):
    signup(client, "alice")
    char = make_character(client)
    first = make_conversation(client, char["id"])
    second = make_conversation(client, char["id"])

    ids = [c["id"] for c in client.get("/api/conversations").json()]
    assert ids == [second["id"], first["id"]]

    res = client.post(f"/api/conversations/{first['id']}/messages", json={"content": "Hello"})
    assert parse_sse(res.text)[-1] == {"done": True}

    listing = client.get("/api/conversations").json()
    assert [c["id"] for c in listing] == [first["id"], second["id"]]
    assert listing[0]["character"]["name"] == "Xena"


def test_users_are_isolated(client, make_client):
    signup(client, "alice")
    char = make_character(client)
    conv = make_conversation(client, char["id"])

    bob = make_client()
    signup(bob, "bob")
    assert bob.get("/api/conversations").json() == []
    assert bob.get(f"/api/conversations/{conv['id']}").status_code == 404
    assert bob.delete(f"/api/conversations/{conv['id']}").status_code == 404
    assert bob.post(f"/api/conversations/{conv['id']}/messages", json={"content": "hi"}).status_code == 404

    # Still there for its owner, untouched
    detail = client.get(f"/api/conversations/{conv['id']}").json()
    assert len(detail["messages"]) == 1


def test_delete_conversation_cascades_messages(client, db):
    signup(client, "alice")
    char = make_character(client)
    conv = make_conversation(client, char["id"])
    client.post(f"/api/conversations/{conv['id']}/messages", json={"content": "Hello"})
    assert db.query(Message).filter_by(conversation_id=conv["id"]).count() == 3

    res = client.delete(f"/api/conversations/{conv['id']}")
    assert res.status_code == 204
    assert res.content == b""
    assert client.get(f"/api/conversations/{conv['id']}").status_code == 404
    db.expire_all()
    assert db.query(Message).filter_by(conversation_id=conv["id"]).count() == 0


def test_unknown_conversation_is_not_found(client):
    signup(client, "alice")
    assert client.get("/api/conversations/424242").status_code == 404
    assert client.delete("/api/conversations/424242").status_code == 404


def test_unexpected_error_is_a_generic_500(app, client, monkeypatch):
    def broken_list(session, user_id):
        raise RuntimeError("connection reset by database")

    monkeypatch.setattr(chat_service, "list_conversations", broken_list)
    quiet = TestClient(app, raise_server_exceptions=False)
    signup(quiet, "alice")

    res = quiet.get("/api/conversations")
    assert res.status_code == 500
    assert res.json() == {"detail": "Internal server error"}
    assert "connection reset" not in res.text
