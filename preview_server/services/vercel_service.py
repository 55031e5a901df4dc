# preview_server/services/vercel_service.py
import asyncio
import base64
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from preview_server.models.workspace import Workspace
from preview_server.services.errors import DeploymentError
from preview_server.services.publisher import PublishResult

logger = logging.getLogger("preview-server.vercel")

VERCEL_API_BASE = "https://api.vercel.com"

REQUIRED_FILES = ["package.json", "index.html", "vite.config.ts"]
CONFIG_FILES = ["tsconfig.json", "tsconfig.node.json"]
SOURCE_DIR = "src"

PROJECT_SETTINGS = {
    "framework": "vite",
    "buildCommand": "npm run build",
    "outputDirectory": "dist",
    "installCommand": "npm install",
    "devCommand": "vite",
}


def _encode(site_path: Path, rel_path: str) -> Dict[str, str]:
    content = (site_path / rel_path).read_bytes()
    return {
        "file": rel_path.replace("\\", "/"),
        "data": base64.b64encode(content).decode("ascii"),
        "encoding": "base64",
    }


def collect_deployment_files(site_path: Path) -> List[Dict[str, str]]:
    """Allow-listed project files, base64-encoded, in the shape /v13/deployments expects."""
    files: List[Dict[str, str]] = []

    for name in REQUIRED_FILES:
        if (site_path / name).is_file():
            files.append(_encode(site_path, name))

    src = site_path / SOURCE_DIR
    if src.is_dir():
        for p in sorted(src.rglob("*")):
            if p.is_file():
                files.append(_encode(site_path, str(p.relative_to(site_path))))

    for name in CONFIG_FILES:
        if (site_path / name).is_file():
            files.append(_encode(site_path, name))

    logger.info(f"Completed processing {len(files)} files")
    return files


def _project_name(preview_id: str) -> str:
    slug = re.sub(r"[^a-z0-9-]+", "-", preview_id.lower()).strip("-")[:40]
    ms = int(time.time() * 1000)
    return f"preview-{slug}-{ms}" if slug else f"preview-{ms}"


def _check(resp: httpx.Response, what: str) -> None:
    if resp.is_success:
        return
    body = resp.text
    logger.error(f"{what} failed: {resp.status_code} {body[:500]}")
    raise DeploymentError(f"{what} failed: {resp.status_code}", body=body, status=resp.status_code)


def _json(resp: httpx.Response, what: str) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise DeploymentError(f"{what} returned a non-JSON response", body=resp.text, status=resp.status_code) from e
    if not isinstance(data, dict):
        raise DeploymentError(f"{what} returned an unexpected payload", body=resp.text, status=resp.status_code)
    return data


class VercelPublisher:
    name = "vercel"

    def __init__(
            self,
            token: Optional[str],
            api_base: str = VERCEL_API_BASE,
            transport: Optional[httpx.AsyncBaseTransport] = None,
            timeout: float = 60,
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def base_url_for(self, preview_id: str) -> Optional[str]:
        # the remote host serves the deployment at its own root
        return None

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    async def verify_token(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        resp = await client.get(f"{self.api_base}/v2/user", headers=self._headers())
        _check(resp, "Token verification")
        data = _json(resp, "Token verification")
        return data.get("user", data)

    async def create_project(self, client: httpx.AsyncClient, name: str) -> Dict[str, Any]:
        resp = await client.post(
            f"{self.api_base}/v9/projects",
            headers=self._headers(),
            json={"name": name, "framework": "vite"},
        )
        _check(resp, "Project creation")
        return _json(resp, "Project creation")

    async def create_deployment(
            self,
            client: httpx.AsyncClient,
            name: str,
            files: List[Dict[str, str]],
            team_id: Optional[str],
    ) -> Dict[str, Any]:
        resp = await client.post(
            f"{self.api_base}/v13/deployments",
            params={"teamId": team_id or ""},
            headers=self._headers(),
            json={
                "name": name,
                "files": files,
                "framework": "vite",
                "projectSettings": PROJECT_SETTINGS,
            },
        )
        _check(resp, "Deployment")
        return _json(resp, "Deployment")

    async def publish(self, workspace: Workspace, build_dir: Path) -> PublishResult:
        if not self.token:
            raise DeploymentError("VERCEL_TOKEN not configured")

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            try:
                user = await self.verify_token(client)
                team_id = user.get("teamId") or user.get("defaultTeamId")
                logger.info(f"Token verified (user={user.get('id')}, team={team_id})")

                name = _project_name(workspace.id)
                project = await self.create_project(client, name)
                logger.info(f"Project created: {project.get('id')}")

                files = await asyncio.to_thread(collect_deployment_files, workspace.root_path)
                deployment = await self.create_deployment(client, name, files, team_id)
            except httpx.HTTPError as e:
                raise DeploymentError(f"Vercel API request failed: {e}") from e

        url = f"https://{deployment.get('url')}"
        logger.info(f"Deployment completed: {url} (deployment={deployment.get('id')})")
        return PublishResult(
            url=url,
            payload={
                "url": url,
                "deployment_id": deployment.get("id"),
                "project_id": project.get("id"),
            },
        )
