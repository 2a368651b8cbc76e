import json

import pytest
from fastapi.testclient import TestClient

from ChatBackend.app import create_app
from ChatBackend.config import Settings
from ChatBackend.crud.characters import create_character

PASSWORD = "correct-horse-battery"


# Scripted stand-in for the completion provider
class FakeProvider:
    def __init__(self):
        self.deltas = ["Hello", " there", "!"]
        self.fail_on_open = False
        self.fail_after = None
        self.calls = []
        self.opened = 0
        self.closed = 0

    async def open_stream(self, messages, *, max_tokens):
        self.calls.append({"messages": [dict(m) for m in messages], "max_tokens": max_tokens})
        if self.fail_on_open:
            raise RuntimeError("provider unavailable")
        self.opened += 1
        return self._stream()

    async def _stream(self):
        try:
            for i, delta in enumerate(self.deltas):
                if self.fail_after is not None and i >= self.fail_after:
                    raise RuntimeError("upstream connection dropped")
                yield delta
        finally:
            self.closed += 1


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", seed_default_characters=False)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def app(settings, provider):
    app = create_app(settings)
    app.state.completion_provider = provider
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


# Extra clients share the app (and database) but keep their own cookie jars
@pytest.fixture
def make_client(app, client):
    def _make():
        return TestClient(app)

    return _make


@pytest.fixture
def db(app, client):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def signup(client, username, password=PASSWORD):
    res = client.post("/api/auth/register", json={"username": username, "password": password})
    assert res.status_code == 201, res.text
    return res.json()


def make_character(client, **overrides):
    body = {
        "name": "Xena",
        "description": "Warrior princess",
        "systemPrompt": "You are Xena, a warrior princess.",
        "greeting": "Greetings, traveller.",
        "avatarColor": "#8B5CF6",
    }
    body.update(overrides)
    res = client.post("/api/characters", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def make_conversation(client, character_id):
    res = client.post("/api/conversations", json={"characterId": character_id})
    assert res.status_code == 201, res.text
    return res.json()


def make_shared_character(db, **overrides):
    fields = {
        "name": "Dr. Nova",
        "description": "Astrophysicist",
        "system_prompt": "You are Dr. Nova.",
        "greeting": None,
    }
    fields.update(overrides)
    char = create_character(db, None, **fields)
    db.commit()
    return char


def parse_sse(text):
    return [json.loads(line[len("data: "):]) for line in text.split("\n") if line.startswith("data: ")]
