"""medtrack API — FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that connects the database and builds the engine
- Health endpoint at GET /api/health
- The medtrack router under /api/medtrack
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medtrack import __version__
from medtrack.api.deps import init_services, shutdown_services, wire_dependencies
from medtrack.api.middleware import register_error_handlers
from medtrack.api.router import router as medtrack_router
from medtrack.config import MedtrackConfig

logger = logging.getLogger(__name__)


def create_app(
    config: MedtrackConfig | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Loaded configuration; defaults are used when omitted.
    cors_origins:
        Allowed CORS origins. Defaults to ["http://localhost:5173"].
    """
    config = config or MedtrackConfig()
    if cors_origins is None:
        cors_origins = ["http://localhost:5173"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Connect the database on startup and close it on shutdown."""
        await init_services(config)
        wire_dependencies(app)
        logger.info("medtrack services initialized (db=%s)", config.db_name)

        yield

        await shutdown_services()

    app = FastAPI(
        title="medtrack API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(medtrack_router)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
