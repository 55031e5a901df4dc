# FILE: preview_server/api/diagnostics.py

from fastapi import APIRouter, Depends, HTTPException

from preview_server.api.deps import get_settings
from preview_server.core.config import PreviewSettings
from preview_server.services.public_listing import debug_preview, list_preview_files, list_public_root

router = APIRouter(prefix="/api", tags=["diagnostics"])


@router.get("/files")
async def public_files(settings: PreviewSettings = Depends(get_settings)):
    return list_public_root(settings.public_dir)


@router.get("/preview/files/{preview_id}")
async def preview_files(preview_id: str, settings: PreviewSettings = Depends(get_settings)):
    files = list_preview_files(settings.public_dir, preview_id)
    if files is None:
        raise HTTPException(status_code=404, detail="Preview not found")
    return {"files": files}


@router.get("/debug/preview/{preview_id}")
async def preview_debug(preview_id: str, settings: PreviewSettings = Depends(get_settings)):
    return debug_preview(settings.public_dir, preview_id)
