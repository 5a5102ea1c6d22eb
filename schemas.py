"""
Pydantic models for data validation in the Manim Orchestrator API.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field


def envelope(success: bool, message: str, data: Any = None, error: Any = None) -> dict:
    """Build the `{success, message, data?, error?}` body every endpoint returns."""
    body = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if error is not None:
        body["error"] = error
    return body


# --- Auth ---

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    token: str


class Identity(BaseModel):
    """The authenticated caller, as carried by a verified bearer token."""
    user_id: str
    email: str
    username: str


# --- Projects ---

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=255)
    description: str = ""
    prompt: str = Field(..., min_length=10)
    parent_project_id: Optional[str] = None


class ProjectUpdate(BaseModel):
    """Partial update; render fields are owned by the orchestrator."""
    name: Optional[str] = Field(default=None, min_length=3, max_length=255)
    description: Optional[str] = None
    prompt: Optional[str] = Field(default=None, min_length=10)


class ProjectResponse(BaseModel):
    id: str
    user_id: str
    name: str
    description: str
    prompt: str
    render_status: str
    video_url: str = ""
    parent_project_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_project(cls, project, video_url: Optional[str] = None) -> "ProjectResponse":
        return cls(
            id=project.id,
            user_id=project.user_id,
            name=project.name,
            description=project.description or "",
            prompt=project.prompt or "",
            render_status=project.status_label,
            video_url=video_url if video_url is not None else (project.video_url or ""),
            parent_project_id=project.parent_project_id,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


# --- Rendering ---

class RenderTriggerResponse(BaseModel):
    project_id: str
    status: str
    message: str


class RenderCallbackRequest(BaseModel):
    """Result posted back by the renderer once a job finishes."""
    project_id: str
    status: str = Field(..., min_length=1)  # "completed" | "failed" | "upload_failed" | ...
    video_url: Optional[str] = None  # "N/A" or empty on failure
    message: Optional[str] = None
    error_details: Optional[str] = None
    render_version: Optional[int] = None


class MergeVideoRequest(BaseModel):
    ids: List[str]


class MergedVideoResponse(BaseModel):
    message: str
    merged_video_id: str
    merged_video_url: str
