# FILE: preview_server/api/deps.py

from fastapi import HTTPException, Request

from preview_server.core.config import PreviewSettings
from preview_server.services.preview_service import PreviewService


def get_preview_service(request: Request) -> PreviewService:
    service = getattr(request.app.state, "preview_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Preview service not ready")
    return service


def get_settings(request: Request) -> PreviewSettings:
    return request.app.state.settings
