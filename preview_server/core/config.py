# preview_server/core/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / ".env", override=False)


def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")


def _csv(value: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


# ================== PUBLISH ==================

PUBLISH_LOCAL = "local"
PUBLISH_VERCEL = "vercel"
PUBLISH_STRATEGIES = (PUBLISH_LOCAL, PUBLISH_VERCEL)


@dataclass(frozen=True)
class PreviewSettings:
    template_dir: Path
    workspace_dir: Path
    public_dir: Path
    publish_strategy: str = PUBLISH_LOCAL
    path_prefix: str = "/preview"
    required_artifacts: Tuple[str, ...] = ("index.html",)
    output_dir: str = "dist"
    npm_bin: str = "npm"
    install_timeout_seconds: float = 900   # 15 min
    build_timeout_seconds: float = 1200    # 20 min
    max_log_bytes: int = 12000
    stale_hours: int = 24
    max_status_records: int = 500
    vercel_token: Optional[str] = None
    vercel_api_base: str = "https://api.vercel.com"
    cors_origins: Tuple[str, ...] = ("*",)

    def ensure_dirs(self) -> None:
        for d in (self.template_dir, self.workspace_dir, self.public_dir):
            d.mkdir(parents=True, exist_ok=True)


def load_settings() -> PreviewSettings:
    data_root = Path(env("PREVIEW_DATA_ROOT", default=str(ROOT_DIR / "data")))

    strategy = env("PREVIEW_PUBLISH_STRATEGY", default=PUBLISH_LOCAL).strip().lower()
    if strategy not in PUBLISH_STRATEGIES:
        raise ValueError(f"PREVIEW_PUBLISH_STRATEGY must be one of {', '.join(PUBLISH_STRATEGIES)}, got {strategy!r}")

    prefix = "/" + env("PREVIEW_PATH_PREFIX", default="/preview").strip().strip("/")

    return PreviewSettings(
        template_dir=Path(env("PREVIEW_TEMPLATE_DIR", default=str(data_root / "template"))),
        workspace_dir=Path(env("PREVIEW_WORKSPACE_DIR", default=str(data_root / "previews"))),
        public_dir=Path(env("PREVIEW_PUBLIC_DIR", default=str(data_root / "public"))),
        publish_strategy=strategy,
        path_prefix=prefix,
        required_artifacts=_csv(env("PREVIEW_REQUIRED_ARTIFACTS", default="index.html")),
        output_dir=env("PREVIEW_OUTPUT_DIR", default="dist").strip().strip("/"),
        npm_bin=env("NPM_BIN", default="npm"),
        install_timeout_seconds=float(env("PREVIEW_INSTALL_TIMEOUT_SECONDS", default="900")),
        build_timeout_seconds=float(env("PREVIEW_BUILD_TIMEOUT_SECONDS", default="1200")),
        max_log_bytes=int(env("PREVIEW_MAX_LOG_BYTES", default="12000")),
        stale_hours=int(env("PREVIEW_STALE_HOURS", default="24")),
        max_status_records=int(env("PREVIEW_MAX_STATUS_RECORDS", default="500")),
        vercel_token=os.environ.get("VERCEL_TOKEN") or None,
        vercel_api_base=env("VERCEL_API_BASE", default="https://api.vercel.com").rstrip("/"),
        cors_origins=_csv(env("CORS_ORIGINS", default="*")),
    )


PORT = int(env("PORT", default="5000"))
