import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from managers.sample_manager import get_sample_manager
from schema_registry import get_schema_registry

# Configure logging
handler = logging.StreamHandler()
handler.setFormatter(
    logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
)

for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logger = logging.getLogger(logger_name)
    logger.setLevel(os.environ.get("WEB_SERVER_LOG_LEVEL", "WARNING").upper())
    logger.handlers.clear()
    logger.handlers = [handler]
    logger.propagate = False

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
logger.handlers = [handler]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown.

    Loads the node definitions and the sample topologies before the first
    request is served; both exit the process when they cannot be loaded.
    """
    logger.info("Application starting...")
    registry = get_schema_registry()
    samples_count = len(get_sample_manager().get_samples())
    logger.info(
        f"Loaded {len(registry)} node definitions and {samples_count} samples"
    )

    yield

    logger.info("Application shutting down...")


app = FastAPI(
    title="Media Graph Topology Editor API",
    description="API for converting and validating media graph topologies",
    version="1.0.0",
    root_path="/api/v1",
    # without explicitly setting servers to the same value as root_path,
    # generating openapi schema would omit whole servers section
    servers=[
        {"url": "/api/v1"},
    ],
    lifespan=lifespan,
)


def register_routers(app: FastAPI) -> None:
    """Register all API routers."""
    from api.routes import convert, definitions, samples, validation

    app.include_router(convert.router, prefix="/convert", tags=["convert"])
    app.include_router(definitions.router, prefix="/definitions", tags=["definitions"])
    app.include_router(samples.router, prefix="/samples", tags=["samples"])
    app.include_router(validation.router, prefix="/validate", tags=["validation"])


register_routers(app)
