import asyncio
import base64
import json

import httpx
import pytest

from preview_server.models.workspace import Workspace
from preview_server.services import publisher as publisher_module
from preview_server.services.errors import ArtifactVerificationError, DeploymentError, PublishError
from preview_server.services.publisher import STAGING_PREFIX, LocalPublisher
from preview_server.services.vercel_service import VercelPublisher, collect_deployment_files


def _build_dir(root, index="<html>v1</html>"):
    dist = root / "dist"
    (dist / "assets").mkdir(parents=True)
    if index is not None:
        (dist / "index.html").write_text(index, encoding="utf-8")
    (dist / "assets" / "app.js").write_text("js", encoding="utf-8")
    return dist


# ----------------------------
# Local
# ----------------------------
def test_local_publish_copies_and_returns_serving_path(tmp_path):
    dist = _build_dir(tmp_path / "ws")
    public = tmp_path / "public"
    publisher = LocalPublisher(public, "/preview")

    result = asyncio.run(publisher.publish(Workspace(id="abc", root_path=tmp_path / "ws"), dist))

    assert result.url == "/preview/abc"
    assert result.payload == {"url": "/preview/abc", "preview_id": "abc"}
    assert result.public_path == public / "abc"
    assert (public / "abc" / "index.html").read_text(encoding="utf-8") == "<html>v1</html>"
    assert (public / "abc" / "assets" / "app.js").exists()
    assert [p.name for p in public.iterdir()] == ["abc"]


def test_local_publish_replaces_previous_build(tmp_path):
    public = tmp_path / "public"
    old = public / "abc"
    old.mkdir(parents=True)
    (old / "index.html").write_text("old", encoding="utf-8")
    (old / "stale.js").write_text("old", encoding="utf-8")
    dist = _build_dir(tmp_path / "ws", index="new")

    asyncio.run(LocalPublisher(public).publish(Workspace(id="abc", root_path=tmp_path / "ws"), dist))

    assert (public / "abc" / "index.html").read_text(encoding="utf-8") == "new"
    assert not (public / "abc" / "stale.js").exists()
    assert [p.name for p in public.iterdir()] == ["abc"]


def test_local_publish_refuses_unverified_output(tmp_path):
    dist = _build_dir(tmp_path / "ws", index=None)
    public = tmp_path / "public"

    with pytest.raises(ArtifactVerificationError):
        asyncio.run(LocalPublisher(public).publish(Workspace(id="abc", root_path=tmp_path / "ws"), dist))

    assert not (public / "abc").exists()


def _fail_verification_where(monkeypatch, predicate):
    real = publisher_module.verify_build_artifacts

    def verify(path, required):
        if predicate(path):
            raise ArtifactVerificationError("index.html", str(path))
        return real(path, required)

    monkeypatch.setattr(publisher_module, "verify_build_artifacts", verify)


def test_staging_verification_failure_keeps_previous_publish(tmp_path, monkeypatch):
    public = tmp_path / "public"
    old = public / "abc"
    old.mkdir(parents=True)
    (old / "index.html").write_text("old", encoding="utf-8")
    dist = _build_dir(tmp_path / "ws", index="new")
    _fail_verification_where(monkeypatch, lambda p: p.name.startswith(STAGING_PREFIX))

    with pytest.raises(PublishError):
        asyncio.run(LocalPublisher(public).publish(Workspace(id="abc", root_path=tmp_path / "ws"), dist))

    assert (public / "abc" / "index.html").read_text(encoding="utf-8") == "old"
    assert [p.name for p in public.iterdir()] == ["abc"]


def test_destination_verification_failure_is_publish_error(tmp_path, monkeypatch):
    public = tmp_path / "public"
    dist = _build_dir(tmp_path / "ws")
    _fail_verification_where(monkeypatch, lambda p: p == public / "abc")

    with pytest.raises(PublishError) as exc:
        asyncio.run(LocalPublisher(public).publish(Workspace(id="abc", root_path=tmp_path / "ws"), dist))

    assert "failed verification" in exc.value.message
    assert not any(p.name.startswith(STAGING_PREFIX) for p in public.iterdir())
    assert not (public / "abc").exists()


# ----------------------------
# Vercel
# ----------------------------
def _site(root):
    (root / "src" / "components").mkdir(parents=True)
    (root / "package.json").write_text("{}", encoding="utf-8")
    (root / "index.html").write_text("<html></html>", encoding="utf-8")
    (root / "vite.config.ts").write_text("export default {}", encoding="utf-8")
    (root / "tsconfig.json").write_text("{}", encoding="utf-8")
    (root / "src" / "App.tsx").write_text("app", encoding="utf-8")
    (root / "src" / "components" / "Nav.tsx").write_text("nav", encoding="utf-8")
    (root / "node_modules").mkdir()
    (root / "node_modules" / "junk.js").write_text("junk", encoding="utf-8")
    return root


def test_collect_deployment_files_uses_allow_list(tmp_path):
    site = _site(tmp_path / "site")

    files = collect_deployment_files(site)

    names = [f["file"] for f in files]
    assert names == [
        "package.json",
        "index.html",
        "vite.config.ts",
        "src/App.tsx",
        "src/components/Nav.tsx",
        "tsconfig.json",
    ]
    app = next(f for f in files if f["file"] == "src/App.tsx")
    assert app["encoding"] == "base64"
    assert base64.b64decode(app["data"]) == b"app"


class FakeVercel:
    def __init__(self, fail_at=None):
        self.fail_at = fail_at
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        assert request.headers["Authorization"] == "Bearer test-token"
        if path == "/v2/user":
            if self.fail_at == "auth":
                return httpx.Response(403, text="forbidden token")
            return httpx.Response(200, json={"user": {"id": "u1", "teamId": "team_1"}})
        if path == "/v9/projects":
            if self.fail_at == "project":
                return httpx.Response(400, text="bad project")
            if self.fail_at == "project-html":
                return httpx.Response(200, text="<html>gateway</html>")
            return httpx.Response(200, json={"id": "prj_1"})
        if path == "/v13/deployments":
            if self.fail_at == "deploy":
                return httpx.Response(500, text="deploy broke")
            return httpx.Response(200, json={"id": "dpl_1", "url": "preview-abc.vercel.app"})
        return httpx.Response(404)


def test_vercel_publish_request_sequence(tmp_path):
    site = _site(tmp_path / "ws")
    fake = FakeVercel()
    publisher = VercelPublisher("test-token", api_base="https://vercel.test", transport=httpx.MockTransport(fake))

    result = asyncio.run(publisher.publish(Workspace(id="ABC_1", root_path=site), site / "dist"))

    assert result.payload == {
        "url": "https://preview-abc.vercel.app",
        "deployment_id": "dpl_1",
        "project_id": "prj_1",
    }
    assert [r.url.path for r in fake.requests] == ["/v2/user", "/v9/projects", "/v13/deployments"]

    deploy = fake.requests[-1]
    assert deploy.url.params["teamId"] == "team_1"
    body = json.loads(deploy.content)
    assert body["projectSettings"]["outputDirectory"] == "dist"
    assert body["projectSettings"]["buildCommand"] == "npm run build"
    assert body["name"].startswith("preview-abc-1-")
    assert len(body["files"]) == 6


@pytest.mark.parametrize("stage,body", [
    ("auth", "forbidden token"), ("project", "bad project"), ("deploy", "deploy broke"),
    ("project-html", "<html>gateway</html>"),
])
def test_vercel_non_success_aborts(tmp_path, stage, body):
    site = _site(tmp_path / "ws")
    fake = FakeVercel(fail_at=stage)
    publisher = VercelPublisher("test-token", api_base="https://vercel.test", transport=httpx.MockTransport(fake))

    with pytest.raises(DeploymentError) as exc:
        asyncio.run(publisher.publish(Workspace(id="abc", root_path=site), site / "dist"))

    assert exc.value.details == body


def test_vercel_requires_token(tmp_path):
    publisher = VercelPublisher(None, transport=httpx.MockTransport(FakeVercel()))
    with pytest.raises(DeploymentError):
        asyncio.run(publisher.publish(Workspace(id="abc", root_path=tmp_path), tmp_path))
