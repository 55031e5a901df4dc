import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from preview_server.core.config import PreviewSettings
from preview_server.services.command_runner import CommandResult


def classify(cmd: List[str]) -> str:
    if cmd[1:2] == ["install"]:
        return "install" if len(cmd) == 2 else "install-extra"
    if cmd[1:3] == ["run", "build"]:
        return "build"
    return "other"


class FakeRunner:
    """Plays npm: install does nothing, build writes dist/ from src/App.tsx."""

    def __init__(self):
        self.calls: List[Tuple[List[str], Path]] = []
        self.exit_codes: Dict[str, int] = {}
        self.timed_out: Dict[str, bool] = {}
        self.write_output = True
        self.write_index = True
        self.delay = 0.0
        self.app_sources: Dict[str, str] = {}
        self.active: Dict[Path, int] = {}
        self.max_active: Dict[Path, int] = {}

    def kinds(self) -> List[str]:
        return [classify(cmd) for cmd, _ in self.calls]

    async def run(self, cmd: List[str], cwd: Path, timeout: Optional[float] = None) -> CommandResult:
        cwd = Path(cwd)
        kind = classify(cmd)
        self.calls.append((list(cmd), cwd))

        self.active[cwd] = self.active.get(cwd, 0) + 1
        self.max_active[cwd] = max(self.max_active.get(cwd, 0), self.active[cwd])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)

            status = self.exit_codes.get(kind, 0)
            if status != 0:
                return CommandResult(
                    stdout="",
                    stderr=f"{kind} exploded",
                    exit_status=status,
                    timed_out=self.timed_out.get(kind, False),
                )

            if kind == "build":
                app = cwd / "src" / "App.tsx"
                source = app.read_text(encoding="utf-8") if app.exists() else ""
                self.app_sources[cwd.name] = source
                if self.write_output:
                    dist = cwd / "dist"
                    (dist / "assets").mkdir(parents=True, exist_ok=True)
                    (dist / "assets" / "app.js").write_text("console.log('app')", encoding="utf-8")
                    if self.write_index:
                        (dist / "index.html").write_text(f"<html><body>{source}</body></html>", encoding="utf-8")

            return CommandResult(stdout=f"{kind} ok", stderr="", exit_status=0)
        finally:
            self.active[cwd] -= 1


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def settings(tmp_path):
    return PreviewSettings(
        template_dir=tmp_path / "template",
        workspace_dir=tmp_path / "previews",
        public_dir=tmp_path / "public",
        vercel_token="test-token",
        vercel_api_base="https://vercel.test",
    )
