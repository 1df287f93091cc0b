from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from branchchat.api import conversations as conversations_api
from branchchat.api import provider as provider_api
from branchchat.api import streams as streams_api
from branchchat.api import websocket as websocket_api
from branchchat.core.config import get_settings
from branchchat.core.logging import setup_logging
from branchchat.schemas.common import ErrorResponse
from branchchat.services.conversation_service import ConversationService
from branchchat.services.provider_service import ProviderService
from branchchat.services.streaming import StreamManager
from branchchat.storage.json_file import SnapshotReadError
from branchchat.storage.json_log import LogReadError
from branchchat.storage.paths import DataPaths

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Serving conversations from %s", app.state.data_paths.root)
        yield
        await app.state.stream_manager.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.data_paths = DataPaths(settings.data_path())
    app.state.ws_manager = websocket_api.WebSocketManager()
    app.state.stream_manager = StreamManager()
    app.state.provider_service = ProviderService(settings)
    app.state.conversation_service = ConversationService(
        app.state.data_paths,
        app.state.provider_service,
        app.state.stream_manager,
        app.state.ws_manager,
        settings,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LogReadError)
    @app.exception_handler(SnapshotReadError)
    async def store_corrupt_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Corrupt store while handling %s: %s", request.url.path, exc)
        payload = ErrorResponse(code="STORE_CORRUPT", message=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": payload.model_dump()},
        )

    app.include_router(conversations_api.router)
    app.include_router(provider_api.router)
    app.include_router(streams_api.router)
    app.include_router(websocket_api.router)

    return app


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""

    settings = get_settings()
    config = uvicorn.Config(
        create_app(),
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
    uvicorn.Server(config).run()


app = create_app()
