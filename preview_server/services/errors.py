# preview_server/services/errors.py
from typing import Optional


class PreviewError(Exception):
    """Base for every failure a preview pipeline run can end in."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        return {"error": self.message, "details": self.details}


class TemplateInitError(PreviewError):
    pass


class MaterializationError(PreviewError):
    status_code = 400

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to materialize {path}: {reason}", details=reason)
        self.path = path


class DependencyInstallError(PreviewError):
    pass


class BuildError(PreviewError):
    pass


class ArtifactVerificationError(PreviewError):
    def __init__(self, missing: str, location: str):
        super().__init__(f"Required build artifact not found: {missing}", details=f"checked {location}")
        self.missing = missing


class PublishError(PreviewError):
    pass


class DeploymentError(PreviewError):
    status_code = 502

    def __init__(self, message: str, body: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, details=body)
        self.status = status
