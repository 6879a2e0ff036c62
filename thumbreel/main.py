import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from thumbreel.api import videos, websocket
from thumbreel.config import Settings, get_settings
from thumbreel.exceptions import ThumbreelError
from thumbreel.models.database import create_db_engine, create_session_maker, init_db
from thumbreel.render.encoder import EncodingPipeline
from thumbreel.services.account_service import AccountService
from thumbreel.services.event_broker import RenderEventBroker
from thumbreel.services.orchestrator import RenderOrchestrator

logger = logging.getLogger(__name__)

# Upper bound on waiting for queued renders at shutdown
SHUTDOWN_DRAIN_TIMEOUT_S = 60.0


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    encoder: EncodingPipeline | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = create_db_engine(settings.database_url, echo=settings.database_echo)
    accounts = AccountService(
        create_session_maker(engine),
        default_quota=settings.default_quota,
        quota_reset_days=settings.quota_reset_days,
    )
    broker = RenderEventBroker()
    orchestrator = RenderOrchestrator(settings, accounts, broker, encoder=encoder)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        init_db(engine)
        Path(settings.output_dir).mkdir(parents=True, exist_ok=True)
        Path(settings.scratch_root).mkdir(parents=True, exist_ok=True)
        orchestrator.start()
        logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
        yield
        # Shutdown
        await orchestrator.shutdown(drain=True, timeout=SHUTDOWN_DRAIN_TIMEOUT_S)
        engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.accounts = accounts
    app.state.broker = broker
    app.state.orchestrator = orchestrator

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ThumbreelError)
    async def thumbreel_exception_handler(request: Request, exc: ThumbreelError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Routers
    app.include_router(videos.router, prefix="/api/videos", tags=["videos"])
    app.include_router(videos.download_router, prefix="/api/upload", tags=["videos"])
    app.include_router(websocket.router, tags=["events"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
