from preview_server.models.workspace import NEXT_STATE, TERMINAL_STATES, Workspace, WorkspaceState

__all__ = ["Workspace", "WorkspaceState", "NEXT_STATE", "TERMINAL_STATES"]
