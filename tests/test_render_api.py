# tests/test_render_api.py

import uuid
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import VALID_CODE, create_project
from models import MergedVideo, Project
from routers.render import get_llm_service, get_renderer_client
from services import LLMService, RendererRequestError, RendererResponseError, RendererUnavailableError

CALLBACK = "/api/projects/render-callback"


def _trigger(client, headers, project_id):
    return client.post(f"/api/projects/{project_id}/generate-render", headers=headers)


def _project(client, headers, project_id):
    return client.get(f"/api/projects/{project_id}", headers=headers).json()["data"]


def _failing_commits(monkeypatch, failures):
    """Make the first `failures` Session.commit calls raise, like a dropped database connection."""
    original = Session.commit
    calls = []

    def commit(self):
        calls.append(self)
        if failures is None or len(calls) <= failures:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        return original(self)

    monkeypatch.setattr(Session, "commit", commit)
    return calls


@pytest.fixture
def project_id(client, alice):
    return create_project(client, alice).json()["data"]["id"]


@pytest.fixture
def rendering_project(client, alice, project_id):
    """A project whose first render was accepted by the renderer."""
    assert _trigger(client, alice, project_id).status_code == 202
    return project_id


def test_trigger_hands_code_and_callback_to_renderer(client, alice, project_id, fake_llm, fake_renderer):
    response = _trigger(client, alice, project_id)

    assert response.status_code == 202
    assert response.json()["data"] == {
        "project_id": project_id,
        "status": "rendering_initiated",
        "message": "Manim rendering is in progress. The video URL will be updated via callback.",
    }
    assert fake_llm.prompts == ["Animate a blue circle fading in"]
    assert fake_renderer.submissions == [{
        "project_id": project_id,
        "script_content": VALID_CODE,
        "callback_url": "http://api.test/api/projects/render-callback?render_version=1",
        "render_version": 1,
    }]
    # The stored status stays "generating" until the callback arrives
    assert _project(client, alice, project_id)["render_status"] == "generating"


def test_whitespace_prompt_is_rejected_before_any_outbound_call(client, alice, fake_llm, fake_renderer):
    project_id = create_project(client, alice, prompt=" " * 12).json()["data"]["id"]

    response = _trigger(client, alice, project_id)

    assert response.status_code == 400
    assert fake_llm.prompts == []
    assert fake_renderer.submissions == []
    assert _project(client, alice, project_id)["render_status"] == "pending"


def test_llm_failure_marks_code_gen_error(client, alice, project_id, fake_llm, fake_renderer, llm_error):
    fake_llm.error = llm_error

    response = _trigger(client, alice, project_id)

    assert response.status_code == 500
    assert fake_renderer.submissions == []
    assert _project(client, alice, project_id)["render_status"] == "failed: code_gen_error"


@pytest.mark.parametrize("error, expected_status, expected_tag", [
    (RendererRequestError("bad url"), 500, "failed: renderer_req_error"),
    (RendererUnavailableError("refused"), 502, "failed: renderer_comm_error"),
])
def test_renderer_transport_failures(client, alice, project_id, fake_renderer, error, expected_status, expected_tag):
    fake_renderer.submit_error = error

    response = _trigger(client, alice, project_id)

    assert response.status_code == expected_status
    assert response.json()["success"] is False
    assert _project(client, alice, project_id)["render_status"] == expected_tag


def test_renderer_refusing_the_job(client, alice, project_id, fake_renderer):
    fake_renderer.status_code = 503

    response = _trigger(client, alice, project_id)

    assert response.status_code == 502
    assert response.json()["error"] == "renderer is busy"
    assert _project(client, alice, project_id)["render_status"] == "failed: renderer_status_503"


def test_completed_callback_stores_url(client, alice, rendering_project):
    response = client.post(f"{CALLBACK}?render_version=1", json={
        "project_id": rendering_project,
        "status": "completed",
        "video_url": "https://cdn.example.com/videos/demo.mp4",
        "message": "done",
    })

    assert response.status_code == 200
    project = _project(client, alice, rendering_project)
    assert project["render_status"] == "completed"
    assert project["video_url"] == "https://cdn.example.com/videos/demo.mp4"


def test_completed_callback_without_url_clears_it(client, alice, rendering_project):
    response = client.post(CALLBACK, json={
        "project_id": rendering_project, "status": "completed", "video_url": "N/A",
    })

    assert response.status_code == 200
    project = _project(client, alice, rendering_project)
    assert project["render_status"] == "completed"
    assert project["video_url"] == ""


def test_failed_callback_clears_previous_url(client, alice, rendering_project):
    client.post(CALLBACK, json={
        "project_id": rendering_project, "status": "completed", "video_url": "https://cdn.example.com/a.mp4",
    })
    assert _trigger(client, alice, rendering_project).status_code == 202

    response = client.post(f"{CALLBACK}?render_version=2", json={
        "project_id": rendering_project,
        "status": "failed",
        "video_url": "N/A",
        "error_details": "manim crashed",
    })

    assert response.status_code == 200
    project = _project(client, alice, rendering_project)
    assert project["render_status"] == "failed"
    assert project["video_url"] == ""


def test_other_callback_statuses_are_failures(client, alice, rendering_project):
    client.post(CALLBACK, json={"project_id": rendering_project, "status": "upload_failed", "video_url": ""})

    assert _project(client, alice, rendering_project)["render_status"] == "failed: upload_failed"


def test_stale_callback_is_rejected(client, alice, rendering_project):
    assert _trigger(client, alice, rendering_project).status_code == 202

    stale = client.post(f"{CALLBACK}?render_version=1", json={
        "project_id": rendering_project, "status": "completed", "video_url": "https://cdn.example.com/old.mp4",
    })

    assert stale.status_code == 409
    project = _project(client, alice, rendering_project)
    assert project["render_status"] == "generating"
    assert project["video_url"] == ""


def test_render_version_in_body_is_honoured(client, alice, rendering_project):
    assert _trigger(client, alice, rendering_project).status_code == 202

    stale = client.post(CALLBACK, json={
        "project_id": rendering_project, "status": "failed", "render_version": 1,
    })
    current = client.post(CALLBACK, json={
        "project_id": rendering_project, "status": "completed", "video_url": "https://x/new.mp4",
        "render_version": 2,
    })

    assert stale.status_code == 409
    assert current.status_code == 200
    assert _project(client, alice, rendering_project)["video_url"] == "https://x/new.mp4"


def test_callback_for_unknown_project(client, alice, rendering_project):
    response = client.post(CALLBACK, json={
        "project_id": str(uuid.uuid4()), "status": "completed", "video_url": "https://x/y.mp4",
    })

    assert response.status_code == 404
    project = _project(client, alice, rendering_project)
    assert project["render_status"] == "generating"
    assert len(client.get("/api/projects", headers=alice).json()["data"]) == 1


def test_malformed_callbacks(client):
    assert client.post(CALLBACK, json={"project_id": "nope", "status": "completed"}).status_code == 400
    assert client.post(CALLBACK, json={"status": "completed"}).status_code == 400


def test_merge_records_public_url(client, fake_renderer, db_session):
    response = client.post("/api/merge_videos", json={"ids": ["a", "b"]})

    assert response.status_code == 200
    assert response.json()["data"] == {
        "message": "Videos merged, uploaded and URL recorded successfully.",
        "merged_video_id": "merged-1",
        "merged_video_url": "https://pub.r2.dev/merged/merged-1.mp4",
    }
    assert fake_renderer.merge_calls == [["a", "b"]]
    assert db_session.get(MergedVideo, "merged-1").r2_url == "https://pub.r2.dev/merged/merged-1.mp4"


def test_merge_upserts_existing_record(client, fake_renderer, db_session):
    client.post("/api/merge_videos", json={"ids": ["a"]})
    fake_renderer.merge_body["merged_video_url"] = "https://elsewhere.example.com/m.mp4"

    response = client.post("/api/merge_videos", json={"ids": ["a", "c"]})

    assert response.status_code == 200
    assert db_session.get(MergedVideo, "merged-1").r2_url == "https://elsewhere.example.com/m.mp4"


def test_merge_requires_ids(client, fake_renderer):
    response = client.post("/api/merge_videos", json={"ids": []})

    assert response.status_code == 400
    assert fake_renderer.merge_calls == []


@pytest.mark.parametrize("error", [
    RendererUnavailableError("refused"),
    RendererResponseError(500, "ffmpeg failed"),
])
def test_merge_upstream_failures_are_bad_gateway(client, fake_renderer, error):
    fake_renderer.merge_error = error

    response = client.post("/api/merge_videos", json={"ids": ["a"]})

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_generating_write_happens_before_llm_call(client, alice, project_id, fake_llm, app):
    seen = {}

    def generate(prompt):
        session = app.state.session_factory()
        try:
            project = session.get(Project, project_id)
            seen["status"] = project.render_status
            seen["version"] = project.render_version
        finally:
            session.close()
        return VALID_CODE

    fake_llm.generate_manim_code = generate

    assert _trigger(client, alice, project_id).status_code == 202
    assert seen == {"status": "generating", "version": 1}


def test_lost_generating_write_still_lets_the_callback_land(client, alice, project_id, fake_renderer, monkeypatch):
    _failing_commits(monkeypatch, failures=1)

    response = _trigger(client, alice, project_id)

    assert response.status_code == 202
    submission = fake_renderer.submissions[0]
    assert submission["callback_url"] == "http://api.test/api/projects/render-callback"
    assert submission["render_version"] is None

    callback = client.post(submission["callback_url"], json={
        "project_id": project_id, "status": "completed", "video_url": "https://cdn.example.com/late.mp4",
    })

    assert callback.status_code == 200
    project = _project(client, alice, project_id)
    assert project["render_status"] == "completed"
    assert project["video_url"] == "https://cdn.example.com/late.mp4"


def test_failed_status_writes_do_not_change_the_response(client, alice, project_id, fake_llm, fake_renderer,
                                                         llm_error, monkeypatch):
    fake_llm.error = llm_error
    calls = _failing_commits(monkeypatch, failures=None)

    response = _trigger(client, alice, project_id)

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "message": "Failed to generate Manim code",
        "error": "model offline",
    }
    # Both the generating and the failed write were attempted
    assert len(calls) == 2
    assert fake_renderer.submissions == []
    monkeypatch.undo()
    assert _project(client, alice, project_id)["render_status"] == "pending"


def test_malformed_llm_answer_marks_code_gen_error(client, alice, project_id, app, settings, fake_renderer):
    response = mock.Mock(status_code=200)
    response.json.return_value = {"message": None}
    session = mock.Mock()
    session.post.return_value = response
    app.dependency_overrides[get_llm_service] = lambda: LLMService(settings, session=session)

    result = _trigger(client, alice, project_id)

    assert result.status_code == 500
    assert fake_renderer.submissions == []
    assert _project(client, alice, project_id)["render_status"] == "failed: code_gen_error"


def test_merge_that_cannot_be_recorded_is_an_internal_error(client, fake_renderer, monkeypatch):
    _failing_commits(monkeypatch, failures=None)

    response = client.post("/api/merge_videos", json={"ids": ["a"]})

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to record merged video in database."
    # The renderer already did the merge
    assert fake_renderer.merge_calls == [["a"]]


@pytest.mark.parametrize("dependency", [get_llm_service, get_renderer_client])
def test_collaborator_dependencies_close_their_http_session(settings, dependency):
    provider = dependency(settings)
    collaborator = next(provider)
    collaborator.session = mock.Mock()

    provider.close()

    collaborator.session.close.assert_called_once_with()
