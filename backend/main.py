import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.admin.controller import AdminController
from backend.admin.routes import router as admin_router
from backend.config import Settings, get_settings
from backend.services.connection_registry import ConnectionRegistry
from backend.services.repository import MeetingRepository
from backend.services.text_service import TextService
from backend.services.transcription import TranscriptionOrchestrator
from backend.session.controller import SessionController
from backend.session.routes import router as session_router

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    repository: MeetingRepository | None = None,
    text_service: TextService | None = None,
    registry: ConnectionRegistry | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    repository = repository or MeetingRepository()
    text_service = text_service or TextService(settings=settings)
    registry = registry or ConnectionRegistry(liveness_interval=settings.liveness_interval_seconds)
    orchestrator = TranscriptionOrchestrator(repository, text_service, settings=settings)
    admin_controller = AdminController(repository, registry, orchestrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.seed_default_user:
            await admin_controller.seed_default_user()
        registry.start()
        logger.info("Realtime coordinator started (liveness every %ss)", registry.liveness_interval)
        try:
            yield
        finally:
            registry.shutdown()

    app = FastAPI(title="MeetingFlow API", lifespan=lifespan)
    app.state.settings = settings
    app.state.repository = repository
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.admin_controller = admin_controller
    app.state.session_controller = SessionController(registry, orchestrator, text_service, settings=settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(session_router, tags=["session"])
    app.include_router(admin_router, prefix="/api", tags=["meetings"])

    @app.get("/health")
    def health_check():
        return admin_controller.health()

    return app


configure_logging(get_settings())
app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
