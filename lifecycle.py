"""
Render lifecycle of a project.

A project moves pending -> generating -> completed | failed. Triggering a render
bumps the project's render_version; the renderer's callback is only applied when
it belongs to the latest render attempt.
"""

import logging
from typing import NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings
from errors import BadGateway, BadRequest, Conflict, InternalError, NotFound
from models import Project, RenderStatus
from schemas import RenderCallbackRequest, RenderTriggerResponse
from services import (
    LLMError,
    LLMService,
    RendererClient,
    RendererRequestError,
    RendererUnavailableError,
)

MISSING_VIDEO_URL = "N/A"


class StatusWrite(NamedTuple):
    """Outcome of a best-effort status write. Callers log it and move on."""
    ok: bool
    error: Optional[Exception] = None


def persist_best_effort(db: Session, project: Project) -> StatusWrite:
    """Commit the project's pending status change without letting a failure escape."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(f"Failed to persist status '{project.status_label}' for project {project.id}: {e}")
        return StatusWrite(False, e)
    logging.info(f"Project {project.id} status updated to '{project.status_label}'.")
    return StatusWrite(True)


def _fail(db: Session, project: Project, reason: str) -> StatusWrite:
    project.mark_failed(reason)
    return persist_best_effort(db, project)


def trigger_render(db: Session, project: Project, llm: LLMService, renderer: RendererClient,
                   settings: Settings) -> RenderTriggerResponse:
    """
    Generate Manim code for `project` and hand it to the renderer.

    The caller has already checked ownership. Returns as soon as the renderer
    accepts the job; the final status arrives later through the callback.
    """
    if not (project.prompt or "").strip():
        logging.warning(f"Project {project.id} has an empty prompt.")
        raise BadRequest("Project prompt is empty. Please update the project with a valid prompt.")

    render_version = project.begin_render()
    if not persist_best_effort(db, project).ok:
        # The bumped version was rolled back; an unversioned callback is still accepted.
        render_version = None

    try:
        code = llm.generate_manim_code(project.prompt)
    except LLMError as e:
        logging.error(f"Failed to generate Manim code for project {project.id}: {e}")
        _fail(db, project, "code_gen_error")
        raise InternalError("Failed to generate Manim code", str(e))

    callback_url = settings.callback_url(render_version)
    try:
        submission = renderer.submit_render(project.id, code, callback_url, render_version)
    except RendererRequestError as e:
        logging.error(f"Failed to create request to renderer for project {project.id}: {e}")
        _fail(db, project, "renderer_req_error")
        raise InternalError("Failed to prepare render request")
    except RendererUnavailableError as e:
        logging.error(f"Renderer unreachable for project {project.id}: {e}")
        _fail(db, project, "renderer_comm_error")
        raise BadGateway("Failed to connect to Manim renderer")

    if submission.status_code != 202:
        logging.error(
            f"Renderer returned unexpected status {submission.status_code} for project {project.id}: "
            f"{submission.error}"
        )
        _fail(db, project, f"renderer_status_{submission.status_code}")
        raise BadGateway("Failed to start Manim rendering process", submission.error)

    logging.info(f"🎬 Manim rendering initiated for project {project.id} (render {render_version}).")
    return RenderTriggerResponse(
        project_id=project.id,
        status="rendering_initiated",
        message="Manim rendering is in progress. The video URL will be updated via callback.",
    )


def apply_render_callback(db: Session, callback: RenderCallbackRequest,
                          render_version: Optional[int] = None) -> Project:
    """
    Reconcile a renderer callback into the project row.

    `render_version` (from the callback URL) takes precedence over the one in the body.
    """
    version = render_version if render_version is not None else callback.render_version
    logging.info(
        f"Received render callback for project {callback.project_id}, status: {callback.status}, "
        f"video URL: {callback.video_url}, render: {version}"
    )

    project = db.get(Project, callback.project_id)
    if project is None:
        logging.warning(f"Project {callback.project_id} not found for callback. Perhaps already deleted?")
        raise NotFound("Project not found for callback")

    if version is not None and version != project.render_version:
        logging.warning(
            f"Ignoring stale callback for project {project.id}: render {version}, "
            f"current render {project.render_version}."
        )
        raise Conflict(
            "Stale render callback",
            f"callback is for render {version}, project is on render {project.render_version}",
        )

    status = callback.status.strip()
    if status == RenderStatus.COMPLETED.value:
        video_url = (callback.video_url or "").strip()
        if video_url and video_url != MISSING_VIDEO_URL:
            project.mark_completed(video_url)
            logging.info(f"Project {project.id} render completed. Video URL: {video_url}")
        else:
            project.mark_completed(None)
            logging.warning(f"Project {project.id} completed, but no valid video URL provided in callback.")
    else:
        # A bare "failed" is kept as is; any other status becomes the failure reason.
        project.mark_failed(None if status == RenderStatus.FAILED.value else status)
        logging.error(
            f"Project {project.id} rendering failed with status: {status}. Details: {callback.error_details}"
        )

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(f"Failed to update project {project.id} after rendering callback: {e}")
        raise InternalError("Failed to update project after rendering callback")
    return project
