"""FastAPI application for CVE Manager, a cluster vulnerability query service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI
from prometheus_client import generate_latest
from starlette.responses import Response

from app.config import get_settings
from app.db import check_connection, close_pool, init_pool
from app.routes.clusters import router as clusters_router
from app.routes.cves import router as cves_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    settings = get_settings()
    settings.configure_logging()

    logger.info("Initialising CVE Manager")

    if settings.database_configured:
        await init_pool(
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
            user=settings.db_username,
            password=settings.db_password,
            ssl=settings.db_sslmode,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
    else:
        logger.warning("Database connection not configured, running without database")

    yield

    logger.info("Shutting down CVE Manager...")
    await close_pool()
    logger.info("CVE Manager shutdown complete")


app = FastAPI(
    title="CVE Manager",
    description="Filtered, paginated CVE data for an organization's clusters and images",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(cves_router)
app.include_router(clusters_router)


@app.get("/healthz")
async def healthz() -> dict:
    """Liveness check: app is running."""
    return {"status": "healthy"}


@app.get("/readyz")
async def readyz() -> dict:
    """Readiness check: database is connected."""
    settings = get_settings()
    if not settings.database_configured:
        return {"status": "healthy", "database": "not configured"}

    db_ok = await check_connection()
    if not db_ok:
        return Response(
            content='{"status": "unhealthy", "database": "disconnected"}',
            status_code=503,
            media_type="application/json",
        )
    return {"status": "healthy", "database": "connected"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
