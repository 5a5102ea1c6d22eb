"""
Router for the caller's Manim projects.
All routes are scoped to the authenticated owner.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import get_db
from errors import BadRequest, Conflict, Forbidden, NotFound
from models import Project
from schemas import Identity, ProjectCreate, ProjectResponse, ProjectUpdate, envelope
from security import get_current_identity
from services import rewrite_storage_url

router = APIRouter(prefix="/api/projects", tags=["projects"])


def parse_project_id(raw_id: str) -> str:
    try:
        return str(uuid.UUID(raw_id))
    except (ValueError, TypeError):
        logging.warning(f"Invalid project ID format '{raw_id}'")
        raise BadRequest("Invalid project ID format")


def load_owned_project(db: Session, raw_id: str, identity: Identity, action: str = "access") -> Project:
    """Fetch a project, raising 404 when it is missing and 403 when someone else owns it."""
    project = db.get(Project, parse_project_id(raw_id))
    if project is None:
        logging.debug(f"Project with ID {raw_id} not found.")
        raise NotFound("Manim project not found")
    if project.user_id != identity.user_id:
        logging.warning(
            f"User {identity.user_id} attempted to {action} project {project.id} owned by {project.user_id}."
        )
        raise Forbidden(f"You do not have permission to {action} this project")
    return project


def find_project_by_name(db: Session, user_id: str, name: str):
    return db.scalars(select(Project).where(Project.user_id == user_id, Project.name == name)).first()


def _serialize(project: Project, settings: Settings = None) -> dict:
    video_url = project.video_url or ""
    if settings is not None:
        video_url = rewrite_storage_url(video_url, settings.r2_internal_domain, settings.r2_public_domain)
    return ProjectResponse.from_project(project, video_url=video_url).model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(request: ProjectCreate, identity: Identity = Depends(get_current_identity),
                   db: Session = Depends(get_db)):
    name = request.name.strip()
    if not name:
        raise BadRequest("Invalid request body", "name must not be blank")
    if find_project_by_name(db, identity.user_id, name) is not None:
        logging.debug(f"Project with name '{name}' already exists for user {identity.user_id}.")
        raise Conflict("Project with this name already exists for your account")

    parent_id = None
    if request.parent_project_id:
        parent_id = load_owned_project(db, request.parent_project_id, identity, "extend").id

    project = Project(
        user_id=identity.user_id,
        name=name,
        description=request.description.strip(),
        prompt=request.prompt.strip(),
        parent_project_id=parent_id,
    )
    db.add(project)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Project with this name already exists for your account")

    logging.info(f"Manim project '{project.name}' created for user {identity.user_id}. ID: {project.id}")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=envelope(True, "Manim project created successfully", _serialize(project)),
    )


@router.get("")
def list_projects(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db),
                  settings: Settings = Depends(get_settings)):
    projects = db.scalars(
        select(Project).where(Project.user_id == identity.user_id).order_by(Project.created_at.desc())
    ).all()
    logging.info(f"Found {len(projects)} projects for user {identity.user_id}.")
    return envelope(True, "Manim projects retrieved successfully", [_serialize(p, settings) for p in projects])


@router.get("/{project_id}")
def get_project(project_id: str, identity: Identity = Depends(get_current_identity),
                db: Session = Depends(get_db)):
    project = load_owned_project(db, project_id, identity)
    return envelope(True, "Manim project retrieved successfully", _serialize(project))


@router.get("/{project_id}/subprojects")
def list_subprojects(project_id: str, identity: Identity = Depends(get_current_identity),
                     db: Session = Depends(get_db)):
    """Parts of a decomposed animation, in creation order."""
    parent = load_owned_project(db, project_id, identity)
    children = db.scalars(
        select(Project).where(Project.parent_project_id == parent.id).order_by(Project.created_at.asc())
    ).all()
    return envelope(True, "Sub-projects retrieved successfully", [_serialize(p) for p in children])


@router.put("/{project_id}")
def update_project(project_id: str, request: ProjectUpdate, identity: Identity = Depends(get_current_identity),
                   db: Session = Depends(get_db)):
    project = load_owned_project(db, project_id, identity, "modify")

    if request.name is not None:
        new_name = request.name.strip()
        if not new_name:
            raise BadRequest("Invalid request body", "name must not be blank")
        if new_name != project.name:
            clash = find_project_by_name(db, identity.user_id, new_name)
            if clash is not None and clash.id != project.id:
                raise Conflict("Another project with this name already exists for your account")
        project.name = new_name
    if request.description is not None:
        project.description = request.description.strip()
    if request.prompt is not None:
        project.prompt = request.prompt.strip()

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Another project with this name already exists for your account")

    logging.info(f"Manim project {project.id} updated successfully for user {identity.user_id}.")
    return envelope(True, "Manim project updated successfully", _serialize(project))


@router.delete("/{project_id}")
def delete_project(project_id: str, identity: Identity = Depends(get_current_identity),
                   db: Session = Depends(get_db)):
    project = load_owned_project(db, project_id, identity, "delete")
    db.delete(project)
    db.commit()
    logging.info(f"Manim project {project.id} deleted successfully for user {identity.user_id}.")
    return envelope(True, "Manim project deleted successfully")
