# FILE: preview_server/api/preview.py
"""
Preview API
- POST /api/preview/create        -> run the full pipeline for one preview id
- POST /api/preview/cleanup       -> remove the published output of an id
- GET  /api/preview/status/{id}   -> last known workspace state
- GET  /preview/{id}/...          -> serve published files (index.html fallback)
"""

import mimetypes
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, JSONResponse

from preview_server.api.deps import get_preview_service, get_settings
from preview_server.core.config import PreviewSettings
from preview_server.schemas.preview import (
    CleanupRequest,
    CleanupResponse,
    CreatePreviewRequest,
    WorkspaceStatus,
)
from preview_server.services.preview_service import PreviewService

router = APIRouter(prefix="/api/preview", tags=["preview"])
serve_router = APIRouter(tags=["preview"])

mimetypes.init()
mimetypes.add_type("application/javascript", ".js")
mimetypes.add_type("application/javascript", ".mjs")
mimetypes.add_type("application/json", ".map")
mimetypes.add_type("text/css", ".css")
mimetypes.add_type("image/svg+xml", ".svg")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.post("/create")
async def create_preview(
        payload: CreatePreviewRequest,
        service: PreviewService = Depends(get_preview_service),
):
    # PreviewError is rendered as {error, details} by the app-level handler
    return await service.create_preview(payload.id, payload.files, payload.dependencies)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_preview(
        payload: CleanupRequest,
        service: PreviewService = Depends(get_preview_service),
):
    await service.cleanup_public(payload.id)
    return CleanupResponse(success=True)


@router.get("/status/{preview_id}", response_model=WorkspaceStatus)
async def preview_status(preview_id: str, service: PreviewService = Depends(get_preview_service)):
    workspace = service.status(preview_id)
    if workspace is None:
        raise HTTPException(status_code=404, detail="Preview not found")
    return {**workspace.to_status(), "busy": service.is_busy(preview_id)}


def _not_found(checked: Path) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not found",
            "message": f"File not found: {checked}",
            "checkedPath": str(checked),
        },
    )


@serve_router.get("/{preview_id}")
@serve_router.get("/{preview_id}/")
@serve_router.get("/{preview_id}/{file_path:path}")
async def serve_preview_file(
        preview_id: str,
        file_path: str = "",
        settings: PreviewSettings = Depends(get_settings),
):
    public_root = settings.public_dir.resolve()
    serve_root = (settings.public_dir / preview_id).resolve()
    index_file = serve_root / "index.html"

    # Path traversal guard
    if serve_root.parent != public_root or preview_id.startswith("."):
        raise HTTPException(status_code=403, detail="Access denied")

    target_file = index_file
    if file_path:
        candidate = (serve_root / file_path).resolve()
        if serve_root not in candidate.parents:
            raise HTTPException(status_code=403, detail="Access denied")
        if candidate.is_dir():
            candidate = candidate / "index.html"
        if candidate.is_file():
            target_file = candidate

    # unknown paths fall back to the entry document (client-side routing)
    if not target_file.is_file():
        return _not_found(index_file)

    content_type = mimetypes.guess_type(str(target_file))[0] or "application/octet-stream"
    if target_file.suffix.lower() in {".html", ".htm"}:
        content_type = "text/html"

    return FileResponse(str(target_file), media_type=content_type, headers=NO_CACHE_HEADERS)
