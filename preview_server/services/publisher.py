# preview_server/services/publisher.py
"""
Local publish strategy.

Build output is copied into a hidden staging dir under PUBLIC_DIR, verified there,
then renamed onto PUBLIC_DIR/<preview_id>. A reader of /preview/<id> sees either
the previous complete build or the new complete build, never a half copy.
"""

import asyncio
import logging
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from preview_server.models.workspace import Workspace
from preview_server.services.build_pipeline import verify_build_artifacts
from preview_server.services.errors import ArtifactVerificationError, PublishError

logger = logging.getLogger("preview-server.publisher")

STAGING_PREFIX = ".staging-"
TRASH_PREFIX = ".trash-"


@dataclass
class PublishResult:
    url: str
    payload: Dict[str, Any] = field(default_factory=dict)
    public_path: Optional[Path] = None


class LocalPublisher:
    name = "local"

    def __init__(self, public_dir: Path, path_prefix: str = "/preview", required_artifacts: Sequence[str] = ("index.html",)):
        self.public_dir = public_dir
        self.path_prefix = "/" + path_prefix.strip("/")
        self.required_artifacts = tuple(required_artifacts)

    def base_url_for(self, preview_id: str) -> Optional[str]:
        return f"{self.path_prefix}/{preview_id}"

    def public_path_for(self, preview_id: str) -> Path:
        return self.public_dir / preview_id

    async def publish(self, workspace: Workspace, build_dir: Path) -> PublishResult:
        return await asyncio.to_thread(self._publish_sync, workspace.id, build_dir)

    def _publish_sync(self, preview_id: str, build_dir: Path) -> PublishResult:
        # never copy an unverified build
        verify_build_artifacts(build_dir, self.required_artifacts)

        self.public_dir.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex[:8]
        staging = self.public_dir / f"{STAGING_PREFIX}{preview_id}-{token}"
        dest = self.public_path_for(preview_id)

        try:
            shutil.copytree(build_dir, staging)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise PublishError(f"Failed to copy build output for {preview_id}", details=str(e)) from e

        try:
            verify_build_artifacts(staging, self.required_artifacts)
        except ArtifactVerificationError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise PublishError(f"Published output failed verification: {e.message}", details=e.details) from e

        trash: Optional[Path] = None
        try:
            if dest.exists():
                trash = self.public_dir / f"{TRASH_PREFIX}{preview_id}-{token}"
                dest.rename(trash)
            staging.rename(dest)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            if trash is not None and trash.exists() and not dest.exists():
                trash.rename(dest)
            raise PublishError(f"Failed to swap published output for {preview_id}", details=str(e)) from e

        if trash is not None:
            shutil.rmtree(trash, ignore_errors=True)

        try:
            verify_build_artifacts(dest, self.required_artifacts)
        except ArtifactVerificationError as e:
            raise PublishError(f"Published output failed verification: {e.message}", details=e.details) from e

        logger.info(f"Public directory contents for {preview_id}: {sorted(p.name for p in dest.iterdir())}")
        url = f"{self.path_prefix}/{preview_id}"
        return PublishResult(url=url, payload={"url": url, "preview_id": preview_id}, public_path=dest)
