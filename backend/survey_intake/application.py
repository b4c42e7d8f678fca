from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .container import Container
from .routes import submission_router

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Settings are loaded here, so a missing environment variable stops the
    process before it starts serving.
    """

    container = container or Container()
    logging.basicConfig(level=container.settings.log_level, format=LOG_FORMAT)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await container.orchestrator.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    frontend_origin = container.settings.frontend_origin
    allow_origins = [frontend_origin] if frontend_origin != "*" else ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=frontend_origin != "*",
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(submission_router)

    @app.get("/")
    def read_root() -> dict[str, str]:
        return {
            "project": "survey-intake",
            "status": "running",
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
