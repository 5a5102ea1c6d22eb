# tests/conftest.py

import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from main import create_app
from routers.render import get_llm_service, get_renderer_client
from services import LLMError, RenderSubmission

VALID_CODE = """from manim import *

class Demo(Scene):
    def construct(self):
        self.play(Create(Circle()))
        self.wait(1)"""


class FakeLLM:
    """Stands in for LLMService; records prompts and can be told to fail."""

    def __init__(self):
        self.prompts = []
        self.error = None

    def generate_manim_code(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return VALID_CODE


class FakeRenderer:
    """Stands in for RendererClient."""

    def __init__(self):
        self.submissions = []
        self.status_code = 202
        self.submit_error = None
        self.merge_calls = []
        self.merge_body = {
            "message": "merged",
            "merged_video_id": "merged-1",
            "merged_video_url": "https://internal.r2.dev/merged/merged-1.mp4",
        }
        self.merge_error = None

    def submit_render(self, project_id, script_content, callback_url, render_version):
        self.submissions.append({
            "project_id": project_id,
            "script_content": script_content,
            "callback_url": callback_url,
            "render_version": render_version,
        })
        if self.submit_error is not None:
            raise self.submit_error
        error = "" if self.status_code == 202 else "renderer is busy"
        return RenderSubmission(self.status_code, error)

    def merge_videos(self, ids):
        self.merge_calls.append(list(ids))
        if self.merge_error is not None:
            raise self.merge_error
        return dict(self.merge_body)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret-key-that-is-long-enough-for-hs256",
        public_base_url="http://api.test",
        manim_renderer_url="http://renderer.test",
        r2_internal_domain="https://internal.r2.dev",
        r2_public_domain="https://pub.r2.dev",
        llm_provider="ollama",
        log_level="WARNING",
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def app(settings, fake_llm, fake_renderer):
    app = create_app(settings)
    app.dependency_overrides[get_llm_service] = lambda: fake_llm
    app.dependency_overrides[get_renderer_client] = lambda: fake_renderer
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db_session(app):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def register_and_login(client, username="alice", email="alice@example.com", password="correct-horse"):
    response = client.post("/auth/register", json={"username": username, "email": email, "password": password})
    assert response.status_code == 201, response.text
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


def create_project(client, headers, name="Demo", prompt="Animate a blue circle fading in", **extra):
    body = {"name": name, "description": "a test project", "prompt": prompt}
    body.update(extra)
    return client.post("/api/projects", json=body, headers=headers)


@pytest.fixture
def alice(client):
    return register_and_login(client)


@pytest.fixture
def bob(client):
    return register_and_login(client, username="bob", email="bob@example.com", password="hunter2-hunter2")


@pytest.fixture
def llm_error():
    return LLMError("model offline")
