"""Health check endpoints for load balancer and monitoring."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from sitescan.core.config import get_settings
from sitescan.core.rule_engine import get_rule_registry
from sitescan.services.registry import AnalysisRegistry, get_registry

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    checks: dict[str, str]
    active_analyses: int


@router.get("", response_model=HealthResponse, include_in_schema=False)
async def health_check(registry: AnalysisRegistry = Depends(get_registry)) -> HealthResponse:
    settings = get_settings()

    checks: dict[str, str] = {}

    rules = get_rule_registry()
    checks["rules"] = "healthy" if rules.loaded and rules.get_all() else "unhealthy: no rules loaded"

    overall = "healthy" if all("unhealthy" not in v for v in checks.values()) else "degraded"

    return HealthResponse(
        status=overall,
        version=settings.APP_VERSION,
        checks=checks,
        active_analyses=sum(1 for run in registry.runs() if run.is_active),
    )


@router.get("/ready", include_in_schema=False)
async def readiness() -> dict:
    """Kubernetes readiness probe."""
    return {"ready": get_rule_registry().loaded}


@router.get("/live", include_in_schema=False)
async def liveness() -> dict:
    """Kubernetes liveness probe."""
    return {"alive": True}
