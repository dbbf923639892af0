"""Data Access Layer for Unfold.

Encapsulates database operations using SQLModel/SQLAlchemy.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlmodel import Session, and_, col, func, or_, select

from .exceptions import MediaNotFoundError
from .feed import FeedCandidate
from .folders import FolderNode, build_folder_tree
from .identity import identity_for, unique_display_name
from .models import Media, Source, UserFolder, UserHiddenFolder, UserInteraction
from .path_utils import under_prefix

# Keeps IN (...) lists below SQLite's bound-parameter limit
_CHUNK = 500

INTERACTION_FLAGS = ("liked", "saved", "hidden")


def _chunks(items: List[str]) -> Iterable[List[str]]:
    for start in range(0, len(items), _CHUNK):
        yield items[start:start + _CHUNK]


def _to_candidate(
    media: Media, source: Source, interaction: Optional[UserInteraction]
) -> FeedCandidate:
    return FeedCandidate(
        media_id=media.id,
        media_type=media.media_type,
        source_id=source.id,
        display_name=source.display_name,
        avatar_seed=source.avatar_seed,
        depth=media.depth,
        created_at=media.created_at,
        liked=bool(interaction and interaction.liked),
        saved=bool(interaction and interaction.saved),
        view_count=interaction.view_count if interaction else 0,
        last_viewed_at=interaction.last_viewed_at if interaction else None,
    )


class Repository:
    """Data access layer over one session.

    Paths are stored as absolute strings; callers pass normalized Paths.
    Nothing is committed implicitly: callers decide when to commit.
    """

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        """Commit the current transaction. Callers control when to commit."""
        self.session.commit()

    # --- Sources ---

    def get_source(self, source_id: str) -> Optional[Source]:
        return self.session.get(Source, source_id)

    def ensure_source(self, folder_path: Path) -> Tuple[Source, bool]:
        """Return the Source for folder_path, creating it if missing.

        Returns (source, created). An existing source is never rewritten, so
        its display name stays stable even if a later source collides with it.
        """
        identity = identity_for(folder_path)
        existing = self.session.get(Source, identity.id)
        if existing:
            return existing, False

        taken = self.session.exec(
            select(Source.display_name).where(
                col(Source.display_name).startswith(identity.display_name, autoescape=True)
            )
        ).all()

        source = Source(
            id=identity.id,
            folder_path=str(folder_path),
            display_name=unique_display_name(identity.display_name, taken),
            avatar_seed=identity.avatar_seed,
        )
        self.session.add(source)
        self.session.flush()
        return source, True

    def list_sources(self, user_id: Optional[str] = None) -> List[Source]:
        statement = select(Source)
        if user_id is not None:
            statement = statement.join(
                UserFolder,
                and_(UserFolder.source_id == Source.id, UserFolder.user_id == user_id),
            )
        return list(self.session.exec(statement.order_by(Source.display_name)).all())

    def sources_under(self, root: Path) -> List[Source]:
        statement = select(Source).where(
            col(Source.folder_path).startswith(under_prefix(root), autoescape=True)
        )
        return list(self.session.exec(statement).all())

    def grant_source(self, user_id: str, source_id: str) -> bool:
        """Grant a source to a user. Returns True if the grant is new."""
        if self.session.get(UserFolder, {"user_id": user_id, "source_id": source_id}):
            return False
        self.session.add(UserFolder(user_id=user_id, source_id=source_id))
        self.session.flush()
        return True

    def has_grant(self, user_id: str, source_id: str) -> bool:
        key = {"user_id": user_id, "source_id": source_id}
        return self.session.get(UserFolder, key) is not None

    def delete_source(self, source_id: str) -> List[str]:
        """Delete a source with its media, interactions and grants. Returns deleted media ids."""
        media_ids = list(
            self.session.exec(select(Media.id).where(Media.source_id == source_id)).all()
        )
        self.delete_media_ids(media_ids)

        for model in (UserInteraction, UserFolder, UserHiddenFolder):
            rows = self.session.exec(
                select(model).where(model.source_id == source_id)
            ).all()
            for row in rows:
                self.session.delete(row)

        source = self.session.get(Source, source_id)
        if source:
            self.session.delete(source)
        self.session.flush()
        return media_ids

    # --- Media ---

    def get_media(self, media_id: str) -> Optional[Media]:
        return self.session.get(Media, media_id)

    def get_media_by_path(self, path: Path) -> Optional[Media]:
        return self.session.exec(select(Media).where(Media.path == str(path))).first()

    def media_paths_under(self, root: Path) -> Dict[str, str]:
        """Map path -> media id for every stored record below root."""
        statement = select(Media.path, Media.id).where(
            col(Media.path).startswith(under_prefix(root), autoescape=True)
        )
        return {path: media_id for path, media_id in self.session.exec(statement).all()}

    def add_media(
        self,
        *,
        media_id: str,
        path: Path,
        source_id: str,
        depth: int,
        media_type: str,
    ) -> bool:
        """Insert a media record unless the path is already indexed."""
        if self.get_media_by_path(path) or self.session.get(Media, media_id):
            return False
        self.session.add(
            Media(
                id=media_id,
                path=str(path),
                source_id=source_id,
                depth=depth,
                media_type=media_type,
            )
        )
        self.session.flush()
        return True

    def delete_media_ids(self, media_ids: Iterable[str]) -> int:
        """Delete media records and their interactions. Returns number of media deleted."""
        media_ids = list(media_ids)
        deleted = 0
        for chunk in _chunks(media_ids):
            interactions = self.session.exec(
                select(UserInteraction).where(col(UserInteraction.media_id).in_(chunk))
            ).all()
            for interaction in interactions:
                self.session.delete(interaction)
            self.session.flush()

            for media in self.session.exec(select(Media).where(col(Media.id).in_(chunk))).all():
                self.session.delete(media)
                deleted += 1
        self.session.flush()
        return deleted

    def delete_media_by_path(self, path: Path) -> List[str]:
        """Delete the record at path, or every record below it if path was a folder."""
        exact = self.session.exec(select(Media.id).where(Media.path == str(path))).all()
        nested = self.session.exec(
            select(Media.id).where(
                col(Media.path).startswith(under_prefix(path), autoescape=True)
            )
        ).all()
        ids = list(exact) + list(nested)
        self.delete_media_ids(ids)
        return ids

    def get_all_media(self) -> List[Media]:
        return list(self.session.exec(select(Media)).all())

    def get_all_media_ids(self) -> Set[str]:
        return set(self.session.exec(select(Media.id)).all())

    def get_invalid_media(self, valid_types: Set[str]) -> List[Media]:
        """Records with an empty path or a media type the engine does not produce."""
        statement = select(Media).where(
            or_(
                Media.path == "",
                col(Media.media_type).not_in(sorted(valid_types)),
            )
        )
        return list(self.session.exec(statement).all())

    def count_media(self) -> int:
        return self.session.exec(select(func.count()).select_from(Media)).one()

    def count_sources(self) -> int:
        return self.session.exec(select(func.count()).select_from(Source)).one()

    # --- Interactions ---

    def require_media(self, media_id: str, source_id: Optional[str] = None) -> Media:
        media = self.session.get(Media, media_id)
        if media is None:
            raise MediaNotFoundError(f"Media not found: {media_id}")
        if source_id is not None and media.source_id != source_id:
            raise MediaNotFoundError(f"Media {media_id} does not belong to source {source_id}")
        return media

    def _interaction(self, user_id: str, source_id: str, media_id: str) -> UserInteraction:
        key = {"user_id": user_id, "source_id": source_id, "media_id": media_id}
        interaction = self.session.get(UserInteraction, key)
        if interaction is None:
            interaction = UserInteraction(**key)
        return interaction

    def toggle_interaction(
        self, user_id: str, source_id: str, media_id: str, flag: str
    ) -> bool:
        """Flip liked/saved/hidden for one (user, source, media). Returns the new state."""
        if flag not in INTERACTION_FLAGS:
            raise ValueError(f"Unknown interaction flag: {flag}")
        self.require_media(media_id, source_id)

        interaction = self._interaction(user_id, source_id, media_id)
        new_state = not getattr(interaction, flag)
        setattr(interaction, flag, new_state)
        self.session.add(interaction)
        self.session.flush()
        return new_state

    def record_view(self, user_id: str, source_id: str, media_id: str) -> UserInteraction:
        self.require_media(media_id, source_id)

        interaction = self._interaction(user_id, source_id, media_id)
        interaction.view_count = (interaction.view_count or 0) + 1
        interaction.last_viewed_at = datetime.now(timezone.utc)
        self.session.add(interaction)
        self.session.flush()
        return interaction

    def toggle_hidden_folder(self, user_id: str, source_id: str, folder_path: str) -> bool:
        key = {"user_id": user_id, "source_id": source_id, "folder_path": folder_path}
        row = self.session.get(UserHiddenFolder, key)
        if row is None:
            row = UserHiddenFolder(hidden=True, **key)
        else:
            row.hidden = not row.hidden
        self.session.add(row)
        self.session.flush()
        return row.hidden

    def hidden_folders(self, user_id: str, source_id: Optional[str] = None) -> List[str]:
        statement = select(UserHiddenFolder.folder_path).where(
            UserHiddenFolder.user_id == user_id,
            UserHiddenFolder.hidden == True,  # noqa: E712
        )
        if source_id is not None:
            statement = statement.where(UserHiddenFolder.source_id == source_id)
        return list(self.session.exec(statement.order_by(UserHiddenFolder.folder_path)).all())

    def folder_tree(self, user_id: str, source_id: str) -> Optional[FolderNode]:
        """Folders of a source that hold media, flagged with the user's hidden folders.

        Returns None for an unknown source. Does not check the grant.
        """
        source = self.get_source(source_id)
        if source is None:
            return None
        media_paths = self.session.exec(
            select(Media.path).where(Media.source_id == source_id)
        ).all()
        return build_folder_tree(
            Path(source.folder_path),
            media_paths,
            self.hidden_folders(user_id, source_id),
            root_name=source.display_name,
        )

    def get_feed_candidates(
        self, user_id: str, source_id: Optional[str] = None
    ) -> List[FeedCandidate]:
        """Media eligible for the user's feed, filtered before any scoring.

        Excludes media the user hid, media under the user's hidden folders
        and media from sources not granted to the user.
        """
        statement = (
            select(Media, Source, UserInteraction)
            .join(Source, Source.id == Media.source_id)
            .join(
                UserFolder,
                and_(UserFolder.source_id == Media.source_id, UserFolder.user_id == user_id),
            )
            .join(
                UserInteraction,
                and_(UserInteraction.media_id == Media.id, UserInteraction.user_id == user_id),
                isouter=True,
            )
            .where(
                or_(
                    col(UserInteraction.hidden).is_(None),
                    UserInteraction.hidden == False,  # noqa: E712
                )
            )
        )
        if source_id is not None:
            statement = statement.where(Media.source_id == source_id)

        hidden_prefixes = tuple(
            folder.rstrip(os.sep) + os.sep for folder in self.hidden_folders(user_id)
        )

        candidates = []
        for media, source, interaction in self.session.exec(statement).all():
            if hidden_prefixes and media.path.startswith(hidden_prefixes):
                continue
            candidates.append(_to_candidate(media, source, interaction))
        return candidates

    def get_interacted_media(self, user_id: str, flag: str) -> List[FeedCandidate]:
        """Media the user liked or saved, most recently indexed first."""
        if flag not in ("liked", "saved"):
            raise ValueError(f"Unknown interaction flag: {flag}")

        statement = (
            select(Media, Source, UserInteraction)
            .join(Source, Source.id == Media.source_id)
            .join(UserInteraction, UserInteraction.media_id == Media.id)
            .where(UserInteraction.user_id == user_id)
            .where(getattr(UserInteraction, flag) == True)  # noqa: E712
            .order_by(col(Media.created_at).desc())
        )
        return [
            _to_candidate(media, source, interaction)
            for media, source, interaction in self.session.exec(statement).all()
        ]
