# preview_server/schemas/preview.py
import re
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

PREVIEW_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"

# npm package spec: optional @scope/, name, optional @version/range. Never a flag.
_DEPENDENCY_RE = re.compile(r"^(@[a-z0-9][\w.-]*/)?[a-z0-9][\w.-]*(@[^\s]+)?$", re.IGNORECASE)


class FileEntry(BaseModel):
    type: Literal["file"]
    path: str = Field(..., min_length=1)
    content: Optional[str] = None


class FolderEntry(BaseModel):
    type: Literal["folder"]
    path: str = Field(..., min_length=1)
    children: List["FileNode"] = Field(default_factory=list)


FileNode = Annotated[Union[FileEntry, FolderEntry], Field(discriminator="type")]

FolderEntry.model_rebuild()


class CreatePreviewRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(..., min_length=1, max_length=128, pattern=PREVIEW_ID_PATTERN)
    files: List[FileNode] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)

    @field_validator("dependencies")
    @classmethod
    def _check_dependencies(cls, value: List[str]) -> List[str]:
        cleaned = [str(d).strip() for d in value if str(d or "").strip()]
        for dep in cleaned:
            if not _DEPENDENCY_RE.match(dep):
                raise ValueError(f"invalid dependency name: {dep}")
        return cleaned


class CleanupRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=128, pattern=PREVIEW_ID_PATTERN)


class LocalPreviewResponse(BaseModel):
    url: str
    preview_id: str


class RemotePreviewResponse(BaseModel):
    url: str
    deployment_id: str
    project_id: str


class CleanupResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


class WorkspaceStatus(BaseModel):
    id: str
    state: str
    created_at: str
    updated_at: str
    cleaned_up: bool
    last_error: Optional[ErrorResponse] = None
    url: Optional[str] = None
    busy: bool = False
