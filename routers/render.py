"""
Router for render orchestration endpoints.
Handles the generate-render trigger, the renderer's callback and video merging.
"""

import logging
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import get_db
from errors import BadGateway, BadRequest, InternalError
from lifecycle import apply_render_callback, trigger_render
from models import MergedVideo
from routers.projects import load_owned_project, parse_project_id
from schemas import Identity, MergedVideoResponse, MergeVideoRequest, RenderCallbackRequest, envelope
from security import get_current_identity
from services import (
    LLMService,
    RendererClient,
    RendererError,
    RendererRequestError,
    RendererResponseError,
    RendererUnavailableError,
    rewrite_storage_url,
)

router = APIRouter(prefix="/api", tags=["render"])


def get_llm_service(settings: Settings = Depends(get_settings)) -> Iterator[LLMService]:
    llm = LLMService(settings)
    try:
        yield llm
    finally:
        llm.close()


def get_renderer_client(settings: Settings = Depends(get_settings)) -> Iterator[RendererClient]:
    renderer = RendererClient(settings.manim_renderer_url)
    try:
        yield renderer
    finally:
        renderer.close()


@router.post("/projects/render-callback")
def render_callback(callback: RenderCallbackRequest,
                    render_version: Optional[int] = Query(default=None),
                    db: Session = Depends(get_db)):
    """Receives the result of a render from the renderer service. Unauthenticated."""
    callback.project_id = parse_project_id(callback.project_id)
    apply_render_callback(db, callback, render_version)
    return envelope(True, "Callback processed successfully")


@router.post("/projects/{project_id}/generate-render", status_code=status.HTTP_202_ACCEPTED)
def generate_render(project_id: str,
                    identity: Identity = Depends(get_current_identity),
                    db: Session = Depends(get_db),
                    llm: LLMService = Depends(get_llm_service),
                    renderer: RendererClient = Depends(get_renderer_client),
                    settings: Settings = Depends(get_settings)):
    project = load_owned_project(db, project_id, identity, "trigger rendering for")
    result = trigger_render(db, project, llm, renderer, settings)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=envelope(True, "Manim rendering process initiated", result.model_dump()),
    )


@router.post("/merge_videos")
def merge_videos(request: MergeVideoRequest,
                 db: Session = Depends(get_db),
                 renderer: RendererClient = Depends(get_renderer_client),
                 settings: Settings = Depends(get_settings)):
    """
    Ask the renderer to merge rendered videos and record the merged URL.

    No authentication and no ownership check on the ids: this endpoint is open by
    product decision.
    """
    if not request.ids:
        logging.warning("No video IDs provided for merging.")
        raise BadRequest("No video IDs provided for merging.")
    if not settings.manim_renderer_url:
        logging.error("MANIM_RENDERER_URL is not set. Cannot proceed with merging.")
        raise InternalError("Backend configuration error: renderer URL for merging not set.")

    try:
        body = renderer.merge_videos(request.ids)
    except RendererRequestError as e:
        logging.error(f"Failed to prepare merge request: {e}")
        raise InternalError("Internal server error preparing merge request.")
    except RendererUnavailableError as e:
        logging.error(f"Failed to connect to renderer for merging: {e}")
        raise BadGateway("Failed to connect to video processing service for merging.")
    except RendererResponseError as e:
        raise BadGateway(e.message, {"upstream_status": e.status_code})
    except RendererError as e:
        raise BadGateway(str(e))

    merged_id = str(body.get("merged_video_id") or "")
    merged_url = str(body.get("merged_video_url") or "")
    if not merged_id:
        logging.error(f"Renderer merge response has no merged_video_id: {body}")
        raise BadGateway("Video merging service returned no merged video id.")

    if not (settings.r2_internal_domain and settings.r2_public_domain):
        logging.warning("R2 domains not configured. Merged video URL is not transformed.")
    final_url = rewrite_storage_url(merged_url, settings.r2_internal_domain, settings.r2_public_domain)
    if final_url != merged_url:
        logging.info(f"Transformed URL from {merged_url} to {final_url}")

    try:
        db.merge(MergedVideo(id=merged_id, r2_url=final_url))
        db.commit()
    except SQLAlchemyError as e:
        # The merge already happened upstream; only the record is missing.
        db.rollback()
        logging.error(f"Failed to record merged video {merged_id}: {e}")
        raise InternalError("Failed to record merged video in database.")

    logging.info(f"Stored URL '{final_url}' for merged video '{merged_id}'.")
    result = MergedVideoResponse(
        message="Videos merged, uploaded and URL recorded successfully.",
        merged_video_id=merged_id,
        merged_video_url=final_url,
    )
    return envelope(True, "Videos merged and uploaded successfully", result.model_dump())
