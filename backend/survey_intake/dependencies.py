from __future__ import annotations

from fastapi import Depends, Request

from .container import Container
from .services.orchestrator import SubmissionOrchestrator


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if not isinstance(container, Container):
        raise RuntimeError("Application container is not configured on FastAPI app state.")
    return container


def get_orchestrator(container: Container = Depends(get_container)) -> SubmissionOrchestrator:
    return container.orchestrator
