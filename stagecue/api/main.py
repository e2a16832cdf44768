"""
stagecue.api.main — FastAPI application entry point
====================================================

Local-only control surface: the event relay posts stream events here,
and the editor UI reads diagnostics and edits tasks.

Run with::

    python -m stagecue
    # or
    uvicorn stagecue.api.main:app --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

from stagecue import __version__  # noqa: E402
from stagecue.api.deps import get_config, get_engine  # noqa: E402
from stagecue.api.routes.diagnostics import router as diagnostics_router  # noqa: E402
from stagecue.api.routes.events import router as events_router  # noqa: E402
from stagecue.api.routes.tasks import router as tasks_router  # noqa: E402
from stagecue.runtime import Runtime, build_runtime  # noqa: E402

logger = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the app.  Without *runtime* one is wired from config on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle — own the runtime."""
        rt = runtime or build_runtime(get_config(), get_engine())
        await rt.start()
        app.state.runtime = rt
        logger.info("Stagecue API started — engine ready (%s)", rt.engine.url.database)
        yield
        logger.info("Stagecue API shutting down")
        await rt.stop()

    app = FastAPI(
        title="Stagecue API",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(events_router, prefix="/api")
    app.include_router(diagnostics_router, prefix="/api")
    app.include_router(tasks_router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
