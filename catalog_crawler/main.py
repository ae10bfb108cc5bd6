"""HTTP entry point: serves the stored records over the CRUD API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from catalog_crawler.config import settings
from catalog_crawler.api.deps import get_record_service
from catalog_crawler.api.routes import records

# Configure structured logging
from catalog_crawler.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting catalog API...")
    service = get_record_service()
    logger.info(f"Serving records from {service.store.describe()}")

    yield

    close = getattr(service.store, "close", None)
    if close is not None:
        close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Catalog Crawler",
    description="Stored product records collected by the category crawler",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(records.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/favicon.ico")
async def favicon():
    """Return empty favicon response to avoid 404 noise."""
    return Response(status_code=204)


def run() -> None:
    """Run the API with uvicorn."""
    uvicorn.run(
        "catalog_crawler.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
