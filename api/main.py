# api/main.py
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.cli import router as cli_router
from api.errors import register_error_handlers
from api.projects import router as projects_router
from api.security import check_key
from api.sessions import router as sessions_router
from config import Settings, load_settings
from services.app_services import build_services
from services.types import utcnow

logger = logging.getLogger(__name__)

SERVICE_NAME = "gemini-desk-backend"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app with its services already connected.

    A database or project-store failure raises here, before the server binds.
    """
    settings = settings or load_settings()
    services = build_services(settings)
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.watcher is not None:
            services.watcher.start()
        yield
        logger.info("Shutting down, terminating %d CLI processes", len(services.executor.get_active_processes()))
        await services.shutdown()

    app = FastAPI(title="Gemini Desk API", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    def health():
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat() + "Z",
            "service": SERVICE_NAME,
            "uptime": round(time.monotonic() - started, 3),
        }

    app.add_api_route("/health", health, methods=["GET"])

    api = APIRouter(prefix="/api", dependencies=[Depends(check_key)])
    api.add_api_route("/health", health, methods=["GET"])
    api.include_router(sessions_router)
    api.include_router(projects_router)
    api.include_router(cli_router)
    app.include_router(api)

    @app.get("/")
    def root():
        return {
            "service": SERVICE_NAME,
            "environment": settings.environment,
            "endpoints": ["/api/health", "/api/sessions", "/api/projects", "/api/cli"],
        }

    return app
