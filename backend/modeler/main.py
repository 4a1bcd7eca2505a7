"""Main FastAPI application for the process modeler backend."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
import logging
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from modeler.core.db import init_db, bootstrap_db
from modeler.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    logger = logging.getLogger(__name__)
    init_db()
    bootstrap_db()
    logger.info("modeler_started")

    yield

    logger.info("modeler_stopped")


app = FastAPI(
    title="Process Modeler API",
    description="Model store with app definition export, import and publishing",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from modeler.api import health, models, app_definitions

# Probes stay unversioned (/health, /ready)
app.include_router(health.router)

app.include_router(models.router, prefix="/api/v1")
app.include_router(app_definitions.router, prefix="/api/v1")


@app.get("/")
async def root() -> RedirectResponse:
    """Redirect root to Swagger UI."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
