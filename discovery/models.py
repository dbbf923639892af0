"""SQLModel database models for Unfold."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Source(SQLModel, table=True):
    """Pseudo-identity of one top-level folder. Never mutated after creation."""

    __tablename__ = "sources"
    id: str = Field(primary_key=True)
    folder_path: str = Field(unique=True, index=True)
    display_name: str = Field(unique=True, index=True)
    avatar_seed: str
    created_at: datetime = Field(default_factory=_utcnow)


class Media(SQLModel, table=True):
    __tablename__ = "media"
    id: str = Field(primary_key=True)
    path: str = Field(unique=True, index=True)
    source_id: str = Field(foreign_key="sources.id", index=True)
    depth: int
    media_type: str = Field(index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class UserInteraction(SQLModel, table=True):
    """Per-(user, source, media) interaction state used as ranking input."""

    __tablename__ = "user_interactions"
    user_id: str = Field(primary_key=True)
    source_id: str = Field(primary_key=True, foreign_key="sources.id")
    media_id: str = Field(primary_key=True, foreign_key="media.id", index=True)
    liked: bool = False
    saved: bool = False
    hidden: bool = False
    view_count: int = 0
    last_viewed_at: Optional[datetime] = None


class UserFolder(SQLModel, table=True):
    """Grant of one source to one user; the feed only shows granted sources."""

    __tablename__ = "user_folders"
    user_id: str = Field(primary_key=True)
    source_id: str = Field(primary_key=True, foreign_key="sources.id")
    created_at: datetime = Field(default_factory=_utcnow)


class UserHiddenFolder(SQLModel, table=True):
    __tablename__ = "user_hidden_folders"
    user_id: str = Field(primary_key=True)
    source_id: str = Field(primary_key=True, foreign_key="sources.id")
    folder_path: str = Field(primary_key=True)
    hidden: bool = True
