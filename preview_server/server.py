# FILE: preview_server/server.py
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from preview_server.api import diagnostics, preview
from preview_server.core.config import PORT, PUBLISH_VERCEL, PreviewSettings, load_settings
from preview_server.services.build_pipeline import BuildPipeline
from preview_server.services.cleanup_service import CleanupManager
from preview_server.services.command_runner import CommandRunner
from preview_server.services.errors import PreviewError
from preview_server.services.materializer import WorkspaceMaterializer
from preview_server.services.preview_service import PreviewService
from preview_server.services.publisher import LocalPublisher
from preview_server.services.template_registry import TemplateRegistry
from preview_server.services.vercel_service import VercelPublisher

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("preview-server")


def build_preview_service(
        settings: PreviewSettings,
        runner: Optional[CommandRunner] = None,
        vercel_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PreviewService:
    runner = runner or CommandRunner(max_log_bytes=settings.max_log_bytes)

    registry = TemplateRegistry(
        settings.template_dir,
        runner,
        npm_bin=settings.npm_bin,
        install_timeout=settings.install_timeout_seconds,
    )
    pipeline = BuildPipeline(
        runner,
        npm_bin=settings.npm_bin,
        output_dir=settings.output_dir,
        required_artifacts=settings.required_artifacts,
        install_timeout=settings.install_timeout_seconds,
        build_timeout=settings.build_timeout_seconds,
    )

    if settings.publish_strategy == PUBLISH_VERCEL:
        publisher = VercelPublisher(settings.vercel_token, api_base=settings.vercel_api_base, transport=vercel_transport)
    else:
        publisher = LocalPublisher(settings.public_dir, settings.path_prefix, settings.required_artifacts)

    return PreviewService(
        registry=registry,
        materializer=WorkspaceMaterializer(settings.workspace_dir, registry),
        pipeline=pipeline,
        publisher=publisher,
        cleanup=CleanupManager(settings.workspace_dir, settings.public_dir),
        max_status_records=settings.max_status_records,
    )


def create_app(
        settings: Optional[PreviewSettings] = None,
        runner: Optional[CommandRunner] = None,
        vercel_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = build_preview_service(settings, runner=runner, vercel_transport=vercel_transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.ensure_dirs()
        logger.info("Directories initialized successfully")
        service.cleanup.sweep_stale_workspaces(settings.stale_hours)
        # requests are only accepted once the template is fully written and installed
        await service.registry.initialize()
        logger.info(f"Preview server ready (publish strategy: {service.publisher.name})")
        yield

    app = FastAPI(title="preview-server", lifespan=lifespan)
    app.state.settings = settings
    app.state.preview_service = service

    app.include_router(preview.router)
    app.include_router(diagnostics.router)
    app.include_router(preview.serve_router, prefix=settings.path_prefix)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PreviewError)
    async def preview_error_handler(request: Request, exc: PreviewError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": str(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            message = f"Route {request.method} {request.url.path} not found"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": HTTPStatus(exc.status_code).phrase, "message": message},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error in request")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )

    return app


app = create_app()


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
