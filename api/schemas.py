"""Request and response bodies for the HTTP API.

Feed-facing models carry ids and pseudo-identities only, never paths.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class IndexRequest(BaseModel):
    path: Optional[str] = None
    watch: bool = True


class IndexResponse(BaseModel):
    scanned: int
    added: int
    removed: int
    source_count: int
    duration_ms: int
    watcher_active: bool
    watcher_error: Optional[str] = None


class IndexStatusResponse(BaseModel):
    indexing: bool
    watcher: str
    watcher_error: Optional[str] = None
    events_processed: int
    media_count: int
    source_count: int


class SourceOut(BaseModel):
    id: str
    display_name: str
    avatar_seed: str
    created_at: datetime


class FeedItem(BaseModel):
    media_id: str
    media_type: str
    source_id: str
    display_name: str
    avatar_seed: str
    liked: bool
    saved: bool
    view_count: int
    thumbnail_url: str
    file_url: str


class FeedResponse(BaseModel):
    items: List[FeedItem]
    page: int
    has_more: bool
    last_source_id: Optional[str] = None


class InteractionRequest(BaseModel):
    media_id: str
    source_id: str


class ToggleResponse(BaseModel):
    media_id: str
    state: bool


class ViewResponse(BaseModel):
    media_id: str
    view_count: int


class HideFolderRequest(BaseModel):
    source_id: str
    folder_path: str = Field(..., min_length=1, description="Sub-folder relative to the source")


class HideFolderResponse(BaseModel):
    source_id: str
    hidden: bool


class FolderNodeOut(BaseModel):
    path: str = Field(..., description="Relative to the source, empty for the source itself")
    name: str
    media_count: int
    total_count: int
    hidden: bool
    children: List["FolderNodeOut"] = []


class FolderTreeResponse(BaseModel):
    source_id: str
    root: FolderNodeOut


class HiddenFoldersResponse(BaseModel):
    source_id: str
    folders: List[str]


class BatchThumbnailRequest(BaseModel):
    media_ids: List[str]


class BatchThumbnailItem(BaseModel):
    media_id: str
    status: str
    url: Optional[str] = None
    error: Optional[str] = None


class BatchThumbnailResponse(BaseModel):
    results: List[BatchThumbnailItem]


class IntegrityResponse(BaseModel):
    total: int
    valid: int
    missing: int
    unreadable: int
    removed: int
    started_at: datetime
    duration_ms: int
    success: bool


class CleanupResponse(BaseModel):
    invalid_records_removed: int
    orphaned_thumbnails_removed: int
    total_removed: int


class FileStatusResponse(BaseModel):
    path: str
    exists: bool
    is_file: bool
    size: Optional[int] = None
    error: Optional[str] = None
