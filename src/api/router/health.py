from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Request, status

from src.api.controller.auth.dto.output_dto import HealthCheckResponseDto
from src.core.logger.logger import logger

router = APIRouter()


async def check_storage_health(request: Request) -> Dict[str, str]:
    """Check session storage connection health."""
    runtime = getattr(request.app.state, "auth", None)
    if runtime is None:
        return {"status": "unhealthy", "message": "Auth runtime not initialized"}
    try:
        await runtime.store.storage.ping()
        return {"status": "healthy", "message": "Connected"}
    except Exception as e:
        logger.warning("Session storage health check failed", extra={"error": str(e)})
        return {"status": "unhealthy", "message": f"Connection failed: {str(e)}"}


def check_wallet_health(request: Request) -> str:
    runtime = getattr(request.app.state, "auth", None)
    if runtime is None:
        return "unhealthy"
    return "healthy" if runtime.environment.ethereum is not None else "not_configured"


@router.get("/health", status_code=status.HTTP_200_OK, response_model=HealthCheckResponseDto)
async def health_check(request: Request):
    """
    Health check endpoint.
    Reports session storage, wallet provider and the current auth flow state.
    """
    storage_health = await check_storage_health(request)

    services = {
        "session_storage": storage_health["status"],
        "wallet_provider": check_wallet_health(request),
        "api_gateway": "healthy"
    }

    overall_status = "healthy"
    if any(s == "unhealthy" for s in services.values()):
        overall_status = "unhealthy"

    runtime = getattr(request.app.state, "auth", None)
    return HealthCheckResponseDto(
        status=overall_status,
        timestamp=datetime.utcnow(),
        services=services,
        flow_state=runtime.controller.state if runtime else None
    )
