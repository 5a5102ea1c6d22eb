# models.py

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DDL, Column, DateTime, ForeignKey, Index, Integer, String, Text, CheckConstraint, event
from sqlalchemy.orm import backref, relationship

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenderStatus(str, enum.Enum):
    """Closed set of render states a project moves through."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class User(Base):
    """Registered account; owns projects."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    projects = relationship(
        "Project",
        back_populates="owner",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


class Project(Base):
    """A Manim animation project and the state of its latest render."""

    __tablename__ = "manim_projects"
    __table_args__ = (
        Index("idx_manim_projects_user_id_name", "user_id", "name", unique=True),
        CheckConstraint("name <> ''", name="name_not_empty"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    prompt = Column(Text, nullable=False, default="")
    render_status = Column(String(50), nullable=False, default=RenderStatus.PENDING.value, index=True)
    failure_reason = Column(Text, nullable=True)
    video_url = Column(Text, nullable=True)
    render_version = Column(Integer, nullable=False, default=0)
    parent_project_id = Column(
        String(36), ForeignKey("manim_projects.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    owner = relationship("User", back_populates="projects")
    parent = relationship(
        "Project",
        remote_side=[id],
        backref=backref("children", passive_deletes=True),
    )

    @property
    def status(self) -> RenderStatus:
        return RenderStatus(self.render_status)

    @property
    def status_label(self) -> str:
        """Client-facing status tag, e.g. ``failed: code_gen_error``."""
        if self.status is RenderStatus.FAILED and self.failure_reason:
            return f"{RenderStatus.FAILED.value}: {self.failure_reason}"
        return self.render_status

    def begin_render(self) -> int:
        """Start a new render attempt; older callbacks become stale."""
        self.render_version = (self.render_version or 0) + 1
        self.mark_generating()
        return self.render_version

    def mark_generating(self):
        self.render_status = RenderStatus.GENERATING.value
        self.failure_reason = None
        self.video_url = None

    def mark_failed(self, reason: Optional[str]):
        self.render_status = RenderStatus.FAILED.value
        self.failure_reason = reason or None
        self.video_url = None

    def mark_completed(self, video_url: Optional[str]):
        self.render_status = RenderStatus.COMPLETED.value
        self.failure_reason = None
        self.video_url = video_url or None

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}', status='{self.status_label}')>"


class MergedVideo(Base):
    """Outcome of a merge request: merged video id to its public URL."""

    __tablename__ = "merged_videos"

    id = Column(String(255), primary_key=True)
    r2_url = Column(Text, nullable=False)


# PostgreSQL refreshes updated_at itself as well, for writes that bypass the ORM.
_updated_at_function = DDL(
    """
    CREATE OR REPLACE FUNCTION update_updated_at_column()
    RETURNS TRIGGER AS $$
    BEGIN
        NEW.updated_at = NOW();
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
    """
).execute_if(dialect="postgresql")

event.listen(User.__table__, "after_create", _updated_at_function)
for _table in (User.__table__, Project.__table__):
    event.listen(
        _table,
        "after_create",
        DDL(
            f"CREATE TRIGGER update_{_table.name}_updated_at BEFORE UPDATE ON {_table.name} "
            "FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();"
        ).execute_if(dialect="postgresql"),
    )
