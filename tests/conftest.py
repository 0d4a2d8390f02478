"""Shared fixtures for the API tests.

The app is pointed at a throwaway sqlite database and upload directory before
``soun`` is imported, and the LLM is unconfigured unless a test asks for the
``llm`` fixture.
"""

import json
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="soun-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["OPENAI_API_KEY"] = ""
os.environ["LLM_FALLBACK_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from soun.db import Base, SessionLocal, engine
from soun.exceptions import LLMError
from soun.main import app
from soun.openai_client import OpenAIClient
from soun.services import flashcards
from soun.services.learning_path import learning_paths
from soun.services.semantic_memory import semantic_memory
from soun.settings import settings


@pytest.fixture(autouse=True)
def fresh_state():
    """Empty database and in-memory stores for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    flashcards.reset_sessions()
    semantic_memory.reset()
    learning_paths.reset()
    yield
    flashcards.reset_sessions()
    semantic_memory.reset()
    learning_paths.reset()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def register(client, email="ada@example.com", password="secret123", **extra):
    return client.post("/api/auth/register", json={"email": email, "password": password, **extra})


@pytest.fixture
def auth_headers(client):
    """Bearer headers for a freshly registered user."""
    token = register(client).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_id(client, auth_headers):
    return client.get("/api/auth/me", headers=auth_headers).json()["id"]


@pytest.fixture
def course(client, auth_headers):
    response = client.post(
        "/api/courses",
        json={"course_id": "CS101", "name": "Intro to Computer Science", "semester": "Fall", "year": 2026, "credits": 4},
        headers=auth_headers,
    )
    return response.json()


class FakeLLM:
    """Queued chat replies; dicts are sent back as JSON text."""

    def __init__(self):
        self.replies = []
        self.prompts = []

    def queue(self, *replies):
        self.replies.extend(replies)


@pytest.fixture
def llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(settings, "openai_api_key", "test-key")

    async def chat(self, messages, *, json_mode=False, temperature=0.7, max_tokens=None):
        fake.prompts.append(messages[-1]["content"])
        if not fake.replies:
            raise LLMError(details="no reply queued")
        reply = fake.replies.pop(0)
        return reply if isinstance(reply, str) else json.dumps(reply)

    monkeypatch.setattr(OpenAIClient, "chat", chat)
    return fake
