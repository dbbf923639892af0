"""FastAPI router: thin mapping from HTTP onto DiscoveryService.

Authentication is handled in front of this service; the caller's user id
arrives in the X-User-Id header.
"""

from __future__ import annotations

import dataclasses
import mimetypes
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import FileResponse

from discovery.feed import FeedCandidate
from discovery.service import DiscoveryService

from .schemas import (
    BatchThumbnailItem,
    BatchThumbnailRequest,
    BatchThumbnailResponse,
    CleanupResponse,
    FeedItem,
    FeedResponse,
    FileStatusResponse,
    FolderNodeOut,
    FolderTreeResponse,
    HiddenFoldersResponse,
    HideFolderRequest,
    HideFolderResponse,
    IndexRequest,
    IndexResponse,
    IndexStatusResponse,
    IntegrityResponse,
    InteractionRequest,
    SourceOut,
    ToggleResponse,
    ViewResponse,
)

router = APIRouter(prefix="/api", tags=["discovery"])


def get_service(request: Request) -> DiscoveryService:
    return request.app.state.service


def get_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None),
) -> str:
    return x_user_id or request.app.state.service.config.library.default_user


def _thumbnail_url(media_id: str) -> str:
    return f"/api/thumbnail/{media_id}"


def _file_url(media_id: str) -> str:
    return f"/api/media/file/{media_id}"


def _feed_item(candidate: FeedCandidate) -> FeedItem:
    return FeedItem(
        media_id=candidate.media_id,
        media_type=candidate.media_type,
        source_id=candidate.source_id,
        display_name=candidate.display_name,
        avatar_seed=candidate.avatar_seed,
        liked=candidate.liked,
        saved=candidate.saved,
        view_count=candidate.view_count,
        thumbnail_url=_thumbnail_url(candidate.media_id),
        file_url=_file_url(candidate.media_id),
    )


# --- Indexing ---


@router.post("/index", response_model=IndexResponse)
def trigger_index(
    body: Optional[IndexRequest] = None,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    body = body or IndexRequest()
    root = Path(body.path).expanduser() if body.path else None
    outcome = service.trigger_index(root, user_id=user_id, watch=body.watch)
    return IndexResponse(
        **outcome.result._asdict(),
        watcher_active=outcome.watcher_active,
        watcher_error=outcome.watcher_error,
    )


@router.get("/index/status", response_model=IndexStatusResponse)
def index_status(service: DiscoveryService = Depends(get_service)):
    return service.index_status()


@router.post("/index/stop-watcher")
def stop_watcher(service: DiscoveryService = Depends(get_service)):
    service.stop_watcher()
    return {"watcher": "stopped"}


# --- Sources ---


@router.get("/sources", response_model=list[SourceOut])
def list_sources(
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    return [
        SourceOut(
            id=s.id,
            display_name=s.display_name,
            avatar_seed=s.avatar_seed,
            created_at=s.created_at,
        )
        for s in service.list_sources(user_id)
    ]


@router.get("/sources/{source_id}", response_model=SourceOut)
def get_source(source_id: str, service: DiscoveryService = Depends(get_service)):
    source = service.get_source(source_id)
    return SourceOut(
        id=source.id,
        display_name=source.display_name,
        avatar_seed=source.avatar_seed,
        created_at=source.created_at,
    )


# --- Feed ---


@router.get("/feed", response_model=FeedResponse)
def get_feed(
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1),
    last_source_id: Optional[str] = None,
    source_id: Optional[str] = None,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    feed_page = service.get_feed_page(
        user_id,
        page=page,
        page_size=page_size,
        last_source_id=last_source_id,
        source_id=source_id,
    )
    return FeedResponse(
        items=[_feed_item(c) for c in feed_page.items],
        page=feed_page.page,
        has_more=feed_page.has_more,
        last_source_id=feed_page.last_source_id,
    )


@router.get("/liked", response_model=list[FeedItem])
def list_liked(
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    return [_feed_item(c) for c in service.list_interacted(user_id, "liked")]


@router.get("/saved", response_model=list[FeedItem])
def list_saved(
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    return [_feed_item(c) for c in service.list_interacted(user_id, "saved")]


# --- Interactions ---


@router.post("/like", response_model=ToggleResponse)
def toggle_like(
    body: InteractionRequest,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    state = service.toggle_like(body.media_id, body.source_id, user_id)
    return ToggleResponse(media_id=body.media_id, state=state)


@router.post("/save", response_model=ToggleResponse)
def toggle_save(
    body: InteractionRequest,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    state = service.toggle_save(body.media_id, body.source_id, user_id)
    return ToggleResponse(media_id=body.media_id, state=state)


@router.post("/hide", response_model=ToggleResponse)
def toggle_hide(
    body: InteractionRequest,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    state = service.toggle_hide(body.media_id, body.source_id, user_id)
    return ToggleResponse(media_id=body.media_id, state=state)


@router.post("/view", response_model=ViewResponse)
def record_view(
    body: InteractionRequest,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    view_count = service.record_view(body.media_id, body.source_id, user_id)
    return ViewResponse(media_id=body.media_id, view_count=view_count)


@router.post("/folders/hide", response_model=HideFolderResponse)
def toggle_hidden_folder(
    body: HideFolderRequest,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    hidden = service.toggle_hidden_folder(user_id, body.source_id, body.folder_path)
    return HideFolderResponse(source_id=body.source_id, hidden=hidden)


@router.get("/folders/tree", response_model=FolderTreeResponse)
def folder_tree(
    source_id: str,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    tree = service.folder_tree(user_id, source_id)
    return FolderTreeResponse(source_id=source_id, root=FolderNodeOut(**dataclasses.asdict(tree)))


@router.get("/folders/hidden", response_model=HiddenFoldersResponse)
def hidden_folders(
    source_id: str,
    service: DiscoveryService = Depends(get_service),
    user_id: str = Depends(get_user_id),
):
    folders = service.list_hidden_folders(user_id, source_id)
    return HiddenFoldersResponse(source_id=source_id, folders=folders)


# --- Media & thumbnails ---


@router.get("/media/file/{media_id}")
def media_file(media_id: str, service: DiscoveryService = Depends(get_service)):
    path, _ = service.get_media_file(media_id)
    media_type, _ = mimetypes.guess_type(path.name)
    return FileResponse(path, media_type=media_type or "application/octet-stream")


@router.get("/thumbnail/{media_id}")
def thumbnail(media_id: str, service: DiscoveryService = Depends(get_service)):
    path = service.get_thumbnail(media_id)
    return FileResponse(
        path,
        media_type=service.thumbnails.media_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )


@router.post("/thumbnails/batch", response_model=BatchThumbnailResponse)
def batch_thumbnails(
    body: BatchThumbnailRequest,
    service: DiscoveryService = Depends(get_service),
):
    results = service.batch_thumbnails(body.media_ids)
    return BatchThumbnailResponse(
        results=[
            BatchThumbnailItem(
                media_id=r.media_id,
                status=r.status,
                url=_thumbnail_url(r.media_id) if r.status == "ok" else None,
                error=r.error,
            )
            for r in results
        ]
    )


# --- Admin ---


@router.get("/admin/health")
def health(service: DiscoveryService = Depends(get_service)):
    return service.health()


@router.post("/admin/integrity/check", response_model=IntegrityResponse)
def integrity_check(service: DiscoveryService = Depends(get_service)):
    report = service.run_integrity_check()
    return IntegrityResponse(
        total=report.total,
        valid=report.valid,
        missing=report.missing,
        unreadable=report.unreadable,
        removed=len(report.removed_ids),
        started_at=report.started_at,
        duration_ms=report.duration_ms,
        success=report.success,
    )


@router.post("/admin/integrity/cleanup", response_model=CleanupResponse)
def integrity_cleanup(service: DiscoveryService = Depends(get_service)):
    return CleanupResponse(**service.run_cleanup()._asdict())


@router.get("/admin/integrity/file-status", response_model=FileStatusResponse)
def integrity_file_status(
    path: str = Query(..., min_length=1),
    service: DiscoveryService = Depends(get_service),
):
    resolved, status = service.file_status(path)
    return FileStatusResponse(path=str(resolved), **status._asdict())


@router.get("/admin/thumbnails/stats")
def thumbnail_stats(service: DiscoveryService = Depends(get_service)):
    return service.thumbnails.stats()


@router.post("/admin/thumbnails/clear")
def thumbnail_clear(service: DiscoveryService = Depends(get_service)):
    return {"removed": service.thumbnails.clear()}
