# /preview_server/models/workspace.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from preview_server.services.errors import PreviewError


class WorkspaceState(str, Enum):
    created = "created"
    materializing = "materializing"
    installing = "installing"
    building = "building"
    verifying = "verifying"
    publishing = "publishing"
    published = "published"
    failed = "failed"


TERMINAL_STATES = {WorkspaceState.published, WorkspaceState.failed}

# Forward edges only. `failed` is reachable from every non-terminal state.
NEXT_STATE = {
    WorkspaceState.created: WorkspaceState.materializing,
    WorkspaceState.materializing: WorkspaceState.installing,
    WorkspaceState.installing: WorkspaceState.building,
    WorkspaceState.building: WorkspaceState.verifying,
    WorkspaceState.verifying: WorkspaceState.publishing,
    WorkspaceState.publishing: WorkspaceState.published,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Workspace:
    """One pipeline run for a preview id. Only the coordinator changes `state`."""

    id: str
    root_path: Path
    state: WorkspaceState = WorkspaceState.created
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    public_path: Optional[Path] = None
    last_error: Optional[PreviewError] = None
    cleaned_up: bool = False
    result: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_status(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "cleaned_up": self.cleaned_up,
            "last_error": self.last_error.to_payload() if self.last_error else None,
            "url": (self.result or {}).get("url"),
        }
