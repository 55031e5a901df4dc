# preview_server/services/cleanup_service.py
import logging
import shutil
import time
from pathlib import Path

from preview_server.models.workspace import Workspace
from preview_server.services.errors import PreviewError
from preview_server.services.publisher import STAGING_PREFIX, TRASH_PREFIX

logger = logging.getLogger("preview-server.cleanup")


def _is_within(path: Path, root: Path) -> bool:
    p = path.resolve()
    r = root.resolve()
    return p == r or r in p.parents


class CleanupManager:
    def __init__(self, workspace_dir: Path, public_dir: Path):
        self.workspace_dir = workspace_dir
        self.public_dir = public_dir

    def cleanup_workspace(self, workspace: Workspace) -> bool:
        """Remove the ephemeral root. Never raises; returns False when something was left behind."""
        root = workspace.root_path
        try:
            if _is_within(root, self.public_dir) or not _is_within(root, self.workspace_dir) or root.resolve() == self.workspace_dir.resolve():
                logger.warning(f"Refusing to clean up {root}: outside the workspace root")
                return False
            if not root.exists():
                return True
            shutil.rmtree(root)
            logger.info(f"Cleaned up preview directory: {root}")
            return True
        except OSError as e:
            logger.warning(f"Warning: Failed to cleanup preview directory: {root}: {e}")
            return False

    def cleanup_public(self, preview_id: str) -> bool:
        """Remove PUBLIC_DIR/<preview_id>. Returns False when there was nothing to remove."""
        target = self.public_dir / preview_id
        if not _is_within(target, self.public_dir) or target.resolve() == self.public_dir.resolve():
            raise PreviewError(f"Invalid preview id: {preview_id}")
        if not target.exists():
            return False
        try:
            shutil.rmtree(target)
        except OSError as e:
            logger.error(f"Failed to clean up public directory for {preview_id}: {e}")
            raise PreviewError("Failed to clean up public directory", details=str(e)) from e
        logger.info(f"Cleaned up public directory for preview: {preview_id}")
        return True

    def sweep_stale_workspaces(self, max_age_hours: int = 24) -> int:
        """Remove workspaces left behind by a crashed process, plus interrupted publish dirs."""
        removed = 0
        now = time.time()
        max_age_seconds = max_age_hours * 3600

        if self.workspace_dir.is_dir():
            for d in self.workspace_dir.iterdir():
                if not d.is_dir():
                    continue
                try:
                    if now - d.stat().st_mtime > max_age_seconds:
                        shutil.rmtree(d)
                        removed += 1
                except OSError as e:
                    logger.warning(f"Could not remove stale workspace {d}: {e}")

        if self.public_dir.is_dir():
            for d in self.public_dir.iterdir():
                if d.is_dir() and d.name.startswith((STAGING_PREFIX, TRASH_PREFIX)):
                    try:
                        shutil.rmtree(d)
                        removed += 1
                    except OSError as e:
                        logger.warning(f"Could not remove interrupted publish dir {d}: {e}")

        if removed:
            logger.info(f"Removed {removed} stale preview directories")
        return removed
