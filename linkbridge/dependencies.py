from fastapi import Depends, HTTPException, Request, status

from linkbridge.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return container


async def enforce_rate_limit(request: Request, container: ServiceContainer = Depends(get_container)) -> None:
    client_key = request.client.host if request.client else "unknown"
    if not await container.rate_limiter.allow(client_key):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests from this IP, please try again after 15 minutes.",
        )
