import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from eventlens.adapters.clock import SystemClock
from eventlens.adapters.registry import load_registry
from eventlens.adapters.sqlite_store import SQLiteEventStore
from eventlens.api.deps import get_settings
from eventlens.api.routes import analytics
from eventlens.core.errors import Cancelled, EngineError
from eventlens.rules.loader import load_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Resolve rules, store and registries once for the process."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Fail fast on bad configuration
    try:
        rules = load_rules(settings.rules_path)
        sites, goals = load_registry(settings.registry_path)
    except (FileNotFoundError, ValueError) as e:
        logger.critical("Configuration load failed: %s", e)
        raise

    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    store = SQLiteEventStore(settings.db_path)
    store.init_schema()

    app.state.rules = rules
    app.state.store = store
    app.state.sites = sites
    app.state.goals = goals
    app.state.clock = SystemClock()
    logger.info("Rules loaded from %s; event store at %s", settings.rules_path, settings.db_path)

    yield


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    if isinstance(exc, Cancelled):
        logger.info("Query cancelled: %s %s (%s)", request.method, request.url.path, exc.message)
    elif exc.status_code >= 500:
        logger.warning("Query failed: %s %s (%s)", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def log_timing(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    logger.debug(
        "%s %s -> %d in %.1f ms",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="eventlens",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.add_exception_handler(EngineError, engine_error_handler)
    app.middleware("http")(log_timing)

    # --- Routers ---
    app.include_router(analytics.router, prefix="/api/sites/{site_id}", tags=["Analytics"])

    @app.get("/health")
    def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "service": "eventlens"}

    return app


app = create_app()
