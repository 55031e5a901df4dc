# preview_server/services/materializer.py
"""
Workspace Materializer
- Allocates WORKSPACE_DIR/<preview_id>/ (stale leftovers of a crashed run are removed first)
- Copies the template root into it
- Writes the submitted file tree in submission order, creating parents as needed
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import List, Sequence, Union

from preview_server.models.workspace import Workspace
from preview_server.schemas.preview import FileEntry, FolderEntry
from preview_server.services.errors import MaterializationError
from preview_server.services.template_registry import TemplateRegistry

logger = logging.getLogger("preview-server.materializer")

FENCE = "```"

Node = Union[FileEntry, FolderEntry]


def strip_code_fence(content: str) -> str:
    """Drop the opening ``` line and the closing ``` line of a fenced block."""
    if not content.startswith(FENCE):
        return content

    body = content.split("\n")[1:]
    end = len(body)
    while end and not body[end - 1].strip():
        end -= 1
    if end and body[end - 1].strip().startswith(FENCE):
        body = body[:end - 1]
    return "\n".join(body)


def safe_join(root: Path, rel_path: str) -> Path:
    """Resolve rel_path under root; anything escaping root is rejected."""
    rel = (rel_path or "").replace("\\", "/").lstrip("/")
    if not rel:
        raise MaterializationError(rel_path, "empty path")
    if "\x00" in rel:
        raise MaterializationError(rel_path, "path contains a NUL byte")
    try:
        p = (root / rel).resolve()
    except (OSError, ValueError) as e:
        raise MaterializationError(rel_path, str(e)) from e
    r = root.resolve()
    if p == r or r not in p.parents:
        raise MaterializationError(rel_path, "path escapes the workspace root")
    return p


class WorkspaceMaterializer:
    def __init__(self, workspace_dir: Path, registry: TemplateRegistry):
        self.workspace_dir = workspace_dir
        self.registry = registry

    def root_for(self, preview_id: str) -> Path:
        return self.workspace_dir / preview_id

    async def materialize(self, workspace: Workspace, nodes: Sequence[Node]) -> List[Path]:
        return await asyncio.to_thread(self._materialize_sync, workspace, list(nodes))

    def _materialize_sync(self, workspace: Workspace, nodes: List[Node]) -> List[Path]:
        root = workspace.root_path
        try:
            if root.exists():
                logger.warning(f"Removing stale workspace before reuse: {root}")
                shutil.rmtree(root)
            root.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created preview directory: {root}")

            self.registry.copy_into(root)
            logger.info("Copied template files")
        except OSError as e:
            raise MaterializationError(".", f"template copy failed: {e}") from e

        created: List[Path] = []
        for node in nodes:
            self._write_node(root, node, created)
        return created

    def _write_node(self, root: Path, node: Node, created: List[Path]) -> None:
        target = safe_join(root, node.path)
        try:
            if isinstance(node, FolderEntry):
                target.mkdir(parents=True, exist_ok=True)
                created.append(target)
                logger.info(f"Created folder: {node.path}")
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                if node.content is None:
                    target.write_text("", encoding="utf-8")
                    logger.info(f"Created empty file: {node.path}")
                else:
                    target.write_text(strip_code_fence(node.content), encoding="utf-8")
                    logger.info(f"Created file: {node.path}")
                created.append(target)
        except (OSError, ValueError) as e:
            # ValueError covers content that cannot be encoded (lone surrogates)
            logger.error(f"Failed to process file: {node.path}: {e}")
            raise MaterializationError(node.path, str(e)) from e

        if isinstance(node, FolderEntry):
            for child in node.children:
                self._write_node(root, child, created)
