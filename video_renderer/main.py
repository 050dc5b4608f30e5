import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from video_renderer.api import render, storage
from video_renderer.api.deps import build_pipeline
from video_renderer.config import Settings, get_settings
from video_renderer.exceptions import InternalError, RendererError
from video_renderer.services.storage_service import ObjectStorage, create_storage_service

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    storage_service: Optional[ObjectStorage] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the application.

    ``storage_service`` and ``http_client`` override the clients normally
    created at startup; the caller then owns their lifecycle.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.fetch_timeout_s, connect=10.0),
        )
        store = storage_service
        if store is None and settings.publish_mode == "upload":
            store = create_storage_service(settings)
        app.state.storage = store
        app.state.pipeline = build_pipeline(settings, client, store)
        logger.info(
            f"Renderer ready: publish_mode={settings.publish_mode}, "
            f"storage={settings.storage_backend if store is not None else 'none'}"
        )
        yield
        # Shutdown
        if http_client is None:
            await client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RendererError)
    async def renderer_exception_handler(request: Request, exc: RendererError) -> JSONResponse:
        logger.error(f"[{(exc.stage or 'render').upper()}] {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response().to_json())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
        )

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        error = InternalError()
        return JSONResponse(status_code=error.status_code, content=error.to_response().to_json())

    # Routers
    app.include_router(render.router, tags=["render"])
    app.include_router(storage.router, tags=["storage"])

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "FFmpeg Render Server Running"

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("video_renderer.main:app", host=settings.host, port=settings.port)
