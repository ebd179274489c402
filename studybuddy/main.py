"""main.py

FastAPI entry point for the Study Buddy monitoring service.

Exposes the error-handling core (health, alerts, event metrics, error
details) and the feedback pipeline over HTTP. One ``ErrorHandlingContainer``
is created in the lifespan handler and stored on ``app.state``; its periodic
jobs run on the application's event loop.

Run with:
    uvicorn studybuddy.main:app
"""

# Load environment variables FIRST - before any other imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studybuddy.api.middleware import RequestContextMiddleware
from studybuddy.api.v1.routes import feedback, monitoring
from studybuddy.container import ErrorHandlingContainer


logger = logging.getLogger(__name__)

ContainerFactory = Callable[[], ErrorHandlingContainer]


def create_app(container_factory: Optional[ContainerFactory] = None) -> FastAPI:
    """Build the application; ``container_factory`` overrides the default wiring."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Study Buddy monitoring service...")
        container = (container_factory or ErrorHandlingContainer)()
        app.state.container = container
        await container.start()
        try:
            yield
        finally:
            logger.info("Shutting down Study Buddy monitoring service...")
            await container.stop()
            app.state.container = None

    app = FastAPI(
        title="Study Buddy Monitoring API",
        description="Error handling, system health and feedback analytics for Study Buddy",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(monitoring.router, prefix="/api/v1")
    app.include_router(feedback.router, prefix="/api/v1")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.error(f"Validation error on {request.method} {request.url}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.get("/")
    async def root():
        return {
            "message": "Study Buddy Monitoring API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Liveness plus the current overall health status."""
        container = getattr(request.app.state, "container", None)
        if container is None:
            return JSONResponse(status_code=503, content={"status": "starting"})
        status = container.health_monitor.get_health_status()
        return {"status": status.overall.value, "score": status.score}

    return app


app = create_app()
