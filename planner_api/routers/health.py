"""Health check endpoint."""

from fastapi import APIRouter

from planner_api import __version__
from planner_api.config.env import get_planner_env
from planner_api.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness only; the service has no hard runtime dependencies."""
    return HealthResponse(version=__version__, environment=get_planner_env())
