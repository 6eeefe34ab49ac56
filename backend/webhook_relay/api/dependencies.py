"""
API Dependencies

FastAPI dependencies resolving services from the application container.
"""

from fastapi import HTTPException, Request, status

from ..container import RelayContainer


def get_container(request: Request) -> RelayContainer:
    """Container built by the application lifespan."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return container
