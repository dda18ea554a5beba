from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import Settings, settings as default_settings
from core.dependencies import ServiceRegistry
from core.exceptions import setup_exception_handlers
from core.logging import app_logger, setup_logging, shutdown_logging
from core.middleware import setup_middleware
from db_config import create_db_engine, create_session_factory, init_db
from routers import audio, auth, content, health, transcripts, usage, users
from services.ai_manager import AIRetryConfig
from services.content_generation import ContentGenerator
from services.identity import IdentityProvider
from services.pdf_generation import PDFRenderer
from services.storage import BlobStorage
from services.transcription import Transcriber


def build_services(app_settings: Settings) -> ServiceRegistry:
    """Construct the external adapters from settings."""
    retry_config = AIRetryConfig(
        max_retries=app_settings.ai_max_retries,
        timeout_seconds=app_settings.ai_timeout_seconds,
    )
    return ServiceRegistry(
        identity=IdentityProvider(
            app_settings.identity_token_secret,
            algorithm=app_settings.identity_token_algorithm,
            issuer=app_settings.identity_token_issuer,
            session_expire_days=app_settings.session_expire_days,
        ),
        storage=BlobStorage(app_settings.storage_directory),
        transcriber=Transcriber(app_settings.openai_api_key, retry_config=retry_config),
        content_generator=ContentGenerator(
            provider=app_settings.content_provider,
            openai_api_key=app_settings.openai_api_key,
            gemini_api_key=app_settings.gemini_api_key,
            openai_model=app_settings.content_generation_model,
            gemini_model=app_settings.gemini_content_model,
            retry_config=retry_config,
        ),
        pdf_renderer=PDFRenderer(),
    )


def create_app(app_settings: Optional[Settings] = None, services: Optional[ServiceRegistry] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The database engine and the service registry live on ``app.state`` and are
    created by the lifespan; passing ``services`` replaces the real adapters.
    """
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        engine = create_db_engine(app_settings.sqlalchemy_database_url)
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        await init_db(engine)
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(app_settings)

        app_logger.info("Application starting up", environment=app_settings.environment)
        yield

        app_logger.info("Application shutting down")
        await engine.dispose()
        shutdown_logging()

    app = FastAPI(
        title=app_settings.app_name,
        description="Audio upload, transcription and AI learning content API",
        version=app_settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    setup_exception_handlers(app)
    setup_middleware(app, app_settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(audio.router)
    app.include_router(transcripts.router)
    app.include_router(content.router)
    app.include_router(usage.router)
    app.include_router(users.router)

    @app.get("/", tags=["Root"])
    async def root():
        """Basic API information."""
        return {
            "message": f"Welcome to {app_settings.app_name}",
            "version": app_settings.app_version,
            "docs": "/docs",
            "redoc": "/redoc",
            "health": "/health",
        }

    return app


app = create_app()
