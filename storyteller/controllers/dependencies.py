"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from storyteller.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Return the service container created during application startup."""

    return request.app.state.services


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]


__all__ = ["ServicesDep", "get_services"]
