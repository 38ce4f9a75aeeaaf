"""Main module of the FastAPI application.

This module sets up the FastAPI application, the middleware that logs incoming
requests and unhandled exceptions, and the mapping of error kinds to responses.
"""

import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import ValidationError

from clubhouse.api.middleware import (
    add_request_id,
    clubhouse_exception_handler,
    exception_logging_middleware,
    log_requests,
    validation_exception_handler,
)
from clubhouse.api.router import TrailingSlashRouter
from clubhouse.api.v1.api import api_router
from clubhouse.core.config import settings
from clubhouse.core.exceptions import ClubhouseException
from clubhouse.core.logging import logger
from clubhouse.core.redis_client import redis_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events.

    Runs alembic migrations on startup and releases the Redis connections on shutdown.
    """
    if settings.RUN_ALEMBIC_MIGRATIONS:
        logger.info("Running alembic migrations...")
        env = os.environ.copy()
        root_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        env["PYTHONPATH"] = root_dir
        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            cwd=root_dir,
            env=env,
        )

    if not settings.STRIPE_ENABLED:
        logger.warning("Stripe credentials missing, billing endpoints will report 503")

    yield

    await redis_client.close()


# Create FastAPI app with our custom router and disable FastAPI's built-in redirects
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    lifespan=lifespan,
    router=TrailingSlashRouter(),
    redirect_slashes=False,
)

app.include_router(api_router)

# Register middleware directly
app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

# Register exception handlers
app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(ClubhouseException)(clubhouse_exception_handler)

CORS_ORIGINS = [settings.app_url]

if settings.ADDITIONAL_CORS_ORIGINS:
    if settings.ENVIRONMENT == "local":
        CORS_ORIGINS.append("*")
    else:
        additional_origins = settings.ADDITIONAL_CORS_ORIGINS.split(",")
        CORS_ORIGINS.extend(origin.strip() for origin in additional_origins if origin.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", response_class=HTMLResponse, include_in_schema=False)
async def show_docs_reference() -> HTMLResponse:
    """Root endpoint pointing at the interactive API documentation.

    Returns:
    -------
        HTMLResponse: The HTML content linking to the docs.

    """
    html_content = """
<!DOCTYPE html>
<html>
    <head>
        <title>Clubhouse API</title>
    </head>
    <body>
        <h1>Welcome to the Clubhouse membership API</h1>
        <p>Please visit the <a href="/docs">docs</a> for more information.</p>
    </body>
</html>
    """
    return HTMLResponse(content=html_content)
