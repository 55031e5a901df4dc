# preview_server/services/public_listing.py
"""Read-only views of PUBLIC_DIR for the diagnostics routes."""

from pathlib import Path
from typing import Any, Dict, List, Optional

from preview_server.services.publisher import STAGING_PREFIX, TRASH_PREFIX


def _visible(p: Path) -> bool:
    return not p.name.startswith((STAGING_PREFIX, TRASH_PREFIX))


def list_public_root(public_dir: Path) -> Dict[str, Any]:
    files: Dict[str, Any] = {}
    if public_dir.is_dir():
        for item in sorted(public_dir.iterdir()):
            if not _visible(item):
                continue
            stats = item.stat()
            files[item.name] = {
                "isDirectory": item.is_dir(),
                "size": stats.st_size,
                "contents": sorted(c.name for c in item.iterdir()) if item.is_dir() else None,
            }
    return {"PUBLIC_DIR": str(public_dir), "files": files}


def _preview_path(public_dir: Path, preview_id: str) -> Optional[Path]:
    if not preview_id or preview_id.startswith(".") or "/" in preview_id or "\\" in preview_id:
        return None
    return public_dir / preview_id


def list_preview_files(public_dir: Path, preview_id: str) -> Optional[List[Dict[str, Any]]]:
    preview_path = _preview_path(public_dir, preview_id)
    if preview_path is None or not preview_path.is_dir():
        return None
    return [
        {
            "name": f.name,
            "isDirectory": f.is_dir(),
            "size": f.stat().st_size,
            "path": str(f),
        }
        for f in sorted(preview_path.iterdir())
    ]


def debug_preview(public_dir: Path, preview_id: str) -> Dict[str, Any]:
    preview_path = _preview_path(public_dir, preview_id) or public_dir / "_invalid_"
    exists = preview_path.is_dir()
    return {
        "previewPath": str(preview_path),
        "exists": exists,
        "indexExists": (preview_path / "index.html").is_file(),
        "dirContents": sorted(p.name for p in preview_path.iterdir()) if exists else [],
        "PUBLIC_DIR": str(public_dir),
    }
