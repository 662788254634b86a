"""
FastAPI application for the safety assessment service.

The service is created once per process in the lifespan handler
and stored on app.state; handlers receive it via get_service.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import SafetyAssessmentConfig
from .database import create_database_engine, create_session_factory
from .repository import SqlAlchemySafetyDataStore
from .router import router as safety_router
from .service import SafetyAssessmentService

logger = logging.getLogger(__name__)


def create_app(service: Optional[SafetyAssessmentService] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        service: Pre-built service (tests); when omitted the
            lifespan handler builds one from the environment
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is not None:
            app.state.safety_service = service
            yield
            return

        config = SafetyAssessmentConfig.from_env()
        errors = config.validate()
        if errors:
            raise RuntimeError(f"Invalid safety configuration: {errors}")

        engine = create_database_engine()
        store = SqlAlchemySafetyDataStore(create_session_factory(engine))
        owned = SafetyAssessmentService(store, config=config)
        await owned.start()
        app.state.safety_service = owned
        try:
            yield
        finally:
            await owned.stop()
            await engine.dispose()
            logger.info("Database engine disposed")

    app = FastAPI(
        title="Venue Safety Assessment API",
        description="Confidence-weighted venue safety scores for dietary restrictions.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS (Allow local frontend development)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(safety_router)

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Venue Safety Assessment API is running"}

    if service is not None:
        app.state.safety_service = service

    return app
