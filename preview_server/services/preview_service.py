# FILE: preview_server/services/preview_service.py
"""
Preview Service (lifecycle coordinator)
- One pipeline run per POST /api/preview/create: materialize -> install -> build -> verify -> publish
- Per-preview_id asyncio.Lock held from request start until the workspace is cleaned up,
  so a second request for the same id waits for the first one
- Sole owner of Workspace.state; the last run per id is kept for the status endpoint
- Ephemeral workspace is removed on success, failure and cancellation alike
"""

import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional, Protocol, Sequence, Union

from preview_server.models.workspace import NEXT_STATE, Workspace, WorkspaceState
from preview_server.schemas.preview import FileEntry, FolderEntry
from preview_server.services.build_pipeline import BuildPipeline
from preview_server.services.cleanup_service import CleanupManager
from preview_server.services.errors import PreviewError
from preview_server.services.materializer import WorkspaceMaterializer
from preview_server.services.publisher import PublishResult
from preview_server.services.template_registry import TemplateRegistry

logger = logging.getLogger("preview-server.preview")


class Publisher(Protocol):
    name: str

    def base_url_for(self, preview_id: str) -> Optional[str]: ...

    async def publish(self, workspace: Workspace, build_dir) -> PublishResult: ...


class PreviewService:
    def __init__(
            self,
            registry: TemplateRegistry,
            materializer: WorkspaceMaterializer,
            pipeline: BuildPipeline,
            publisher: Publisher,
            cleanup: CleanupManager,
            max_status_records: int = 500,
    ):
        self.registry = registry
        self.materializer = materializer
        self.pipeline = pipeline
        self.publisher = publisher
        self.cleanup = cleanup
        self.max_status_records = max_status_records
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._workspaces: "OrderedDict[str, Workspace]" = OrderedDict()

    # ----------------------------
    # State
    # ----------------------------
    @asynccontextmanager
    async def _id_lock(self, preview_id: str) -> AsyncIterator[None]:
        """Per-id lock; dropped again once nobody holds or waits for it."""
        lock = self._locks.setdefault(preview_id, asyncio.Lock())
        if lock.locked():
            logger.info(f"[{preview_id}] waiting for the running pipeline of the same id")
        self._lock_users[preview_id] = self._lock_users.get(preview_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[preview_id] -= 1
            if not self._lock_users[preview_id]:
                del self._lock_users[preview_id]
                del self._locks[preview_id]

    def is_busy(self, preview_id: str) -> bool:
        lock = self._locks.get(preview_id)
        return bool(lock and lock.locked())

    def _transition(self, workspace: Workspace, state: WorkspaceState) -> None:
        if workspace.is_terminal:
            raise RuntimeError(f"workspace {workspace.id} is already {workspace.state.value}")
        if state != WorkspaceState.failed and NEXT_STATE.get(workspace.state) != state:
            raise RuntimeError(f"illegal transition {workspace.state.value} -> {state.value}")
        workspace.state = state
        workspace.updated_at = datetime.now(timezone.utc)
        logger.info(f"[{workspace.id}] state={state.value}")

    def _fail(self, workspace: Workspace, error: PreviewError) -> None:
        workspace.last_error = error
        if not workspace.is_terminal:
            self._transition(workspace, WorkspaceState.failed)

    def status(self, preview_id: str) -> Optional[Workspace]:
        return self._workspaces.get(preview_id)

    def _remember(self, workspace: Workspace) -> None:
        # oldest records go first; a record whose id is still running is kept
        self._workspaces.pop(workspace.id, None)
        self._workspaces[workspace.id] = workspace
        for stale_id in list(self._workspaces):
            if len(self._workspaces) <= self.max_status_records:
                break
            if not self.is_busy(stale_id):
                del self._workspaces[stale_id]

    # ----------------------------
    # Operations
    # ----------------------------
    async def create_preview(
            self,
            preview_id: str,
            files: Sequence[Union[FileEntry, FolderEntry]],
            dependencies: Sequence[str] = (),
    ) -> Dict[str, object]:
        if not self.registry.ready:
            raise PreviewError("Base template is not initialized")

        async with self._id_lock(preview_id):
            start = time.time()
            workspace = Workspace(id=preview_id, root_path=self.materializer.root_for(preview_id))
            self._remember(workspace)
            logger.info(f"Starting preview creation for ID: {preview_id}")

            try:
                self._transition(workspace, WorkspaceState.materializing)
                await self.materializer.materialize(workspace, files)

                out_dir = await self.pipeline.run(
                    workspace,
                    list(dependencies),
                    on_stage=lambda state: self._transition(workspace, state),
                    base_url=self.publisher.base_url_for(preview_id),
                )

                self._transition(workspace, WorkspaceState.publishing)
                result = await self.publisher.publish(workspace, out_dir)
                workspace.public_path = result.public_path
                workspace.result = result.payload
                self._transition(workspace, WorkspaceState.published)

            except PreviewError as e:
                self._fail(workspace, e)
                logger.error(f"Preview creation failed after {int((time.time() - start) * 1000)}ms: {e.message}")
                raise
            except asyncio.CancelledError:
                self._fail(workspace, PreviewError("Preview creation cancelled"))
                logger.warning(f"[{preview_id}] preview creation cancelled")
                raise
            except Exception as e:
                err = PreviewError(f"Unexpected failure: {e}", details=type(e).__name__)
                self._fail(workspace, err)
                logger.exception(f"Preview creation crashed for {preview_id}")
                raise err from e
            finally:
                workspace.cleaned_up = await asyncio.to_thread(self.cleanup.cleanup_workspace, workspace)

            duration = int((time.time() - start) * 1000)
            logger.info(f"Preview creation completed in {duration}ms (id={preview_id}, url={result.url})")
            return result.payload

    async def cleanup_public(self, preview_id: str) -> bool:
        async with self._id_lock(preview_id):
            removed = await asyncio.to_thread(self.cleanup.cleanup_public, preview_id)
            workspace = self._workspaces.get(preview_id)
            if workspace is not None and removed:
                workspace.public_path = None
            return removed
