# preview_server/services/build_pipeline.py
"""
Build Pipeline: install -> build -> verify, strictly in that order for one workspace.
A failed stage raises and nothing after it runs.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from preview_server.models.workspace import Workspace, WorkspaceState
from preview_server.services.command_runner import CommandRunner
from preview_server.services.errors import (
    ArtifactVerificationError,
    BuildError,
    DependencyInstallError,
)

logger = logging.getLogger("preview-server.pipeline")

StageCallback = Callable[[WorkspaceState], None]


def verify_build_artifacts(build_path: Path, required_files: Sequence[str] = ("index.html",)) -> None:
    for name in required_files:
        if not (build_path / name).exists():
            raise ArtifactVerificationError(name, str(build_path))


def _failure_details(stderr: str, stdout: str) -> str:
    # npm reports some failures on stdout only
    return (stderr or "").strip() or (stdout or "").strip()


class BuildPipeline:
    def __init__(
            self,
            runner: CommandRunner,
            npm_bin: str = "npm",
            output_dir: str = "dist",
            required_artifacts: Sequence[str] = ("index.html",),
            install_timeout: Optional[float] = None,
            build_timeout: Optional[float] = None,
    ):
        self.runner = runner
        self.npm_bin = npm_bin
        self.output_dir = output_dir
        self.required_artifacts = tuple(required_artifacts)
        self.install_timeout = install_timeout
        self.build_timeout = build_timeout

    async def install(self, workspace: Workspace, extra_dependencies: Sequence[str]) -> None:
        logger.info(f"[{workspace.id}] Installing dependencies")
        result = await self.runner.run([self.npm_bin, "install"], cwd=workspace.root_path, timeout=self.install_timeout)
        if not result.ok:
            raise DependencyInstallError(
                f"npm install failed (exit {result.exit_status})",
                details=_failure_details(result.stderr, result.stdout),
            )

        if extra_dependencies:
            deps = list(extra_dependencies)
            logger.info(f"[{workspace.id}] Installing additional dependencies: {' '.join(deps)}")
            result = await self.runner.run(
                [self.npm_bin, "install", *deps], cwd=workspace.root_path, timeout=self.install_timeout
            )
            if not result.ok:
                raise DependencyInstallError(
                    f"Failed to install additional dependencies: {' '.join(deps)} (exit {result.exit_status})",
                    details=_failure_details(result.stderr, result.stdout),
                )

    async def build(self, workspace: Workspace, base_url: Optional[str] = None) -> Path:
        cmd: List[str] = [self.npm_bin, "run", "build"]
        if base_url:
            # assets must resolve under the serving prefix, not the host root
            cmd += ["--", f"--base={base_url.rstrip('/')}/"]

        logger.info(f"[{workspace.id}] Starting build process")
        result = await self.runner.run(cmd, cwd=workspace.root_path, timeout=self.build_timeout)
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exit {result.exit_status}"
            raise BuildError(f"Build failed ({reason})", details=_failure_details(result.stderr, result.stdout))

        out_dir = workspace.root_path / self.output_dir
        if not out_dir.is_dir():
            raise BuildError(
                f"Build completed but {self.output_dir} folder not found",
                details=result.stdout.strip() or None,
            )
        logger.info(f"[{workspace.id}] Build completed: {out_dir}")
        return out_dir

    def verify(self, build_path: Path) -> None:
        verify_build_artifacts(build_path, self.required_artifacts)

    async def run(
            self,
            workspace: Workspace,
            extra_dependencies: Sequence[str],
            on_stage: Optional[StageCallback] = None,
            base_url: Optional[str] = None,
    ) -> Path:
        def enter(state: WorkspaceState) -> None:
            if on_stage is not None:
                on_stage(state)

        enter(WorkspaceState.installing)
        await self.install(workspace, extra_dependencies)

        enter(WorkspaceState.building)
        out_dir = await self.build(workspace, base_url=base_url)

        enter(WorkspaceState.verifying)
        self.verify(out_dir)
        logger.info(f"[{workspace.id}] Build artifacts verified in {out_dir}")
        return out_dir
