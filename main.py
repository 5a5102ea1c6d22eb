import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, get_settings
from database import build_engine, build_session_factory, init_database
from errors import register_exception_handlers
from routers import auth, health, projects, render

# --------------------------------------------------------------------------
# --- Application Factory ---
# --------------------------------------------------------------------------


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s - %(levelname)s - %(message)s")


def create_app(settings: Optional[Settings] = None, create_tables: bool = True) -> FastAPI:
    """Build the API around an explicitly constructed settings object and database handle."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url)
    if create_tables:
        init_database(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        engine.dispose()
        logging.info("Database connection pool closed.")

    app = FastAPI(
        lifespan=lifespan,
        title="Manim Orchestrator API",
        description="Generates Manim code from prompts and orchestrates rendering of the resulting videos.",
    )

    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
        max_age=12 * 3600,
    )
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(auth.account_router)
    app.include_router(render.router)
    app.include_router(projects.router)

    logging.info(f"🚀 Manim Orchestrator API ready on {settings.host}:{settings.port}")
    return app

