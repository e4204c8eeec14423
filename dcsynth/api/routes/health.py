"""
NeuroSynth DCS - Health Routes
==============================
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from dcsynth.api.dependencies import ServiceContainer, Settings, get_container, get_settings
from dcsynth.api.models import ComponentStatus, HealthResponse
from dcsynth.core.learned_patterns import LearnedPatternCache
from dcsynth.utils.circuit_breaker import get_circuit_health

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Pipeline availability and LLM circuit state",
)
async def health_check(
    container: ServiceContainer = Depends(get_container),
    settings: Settings = Depends(get_settings),
):
    components = {}
    overall_status = "healthy"

    orchestrator = container.orchestrator
    if orchestrator is None:
        components["pipeline"] = ComponentStatus(status="unhealthy", details={"error": "Not initialized"})
        overall_status = "unhealthy"
    else:
        store = orchestrator.pattern_store
        details = {"learned_patterns": len(store)} if isinstance(store, LearnedPatternCache) else {}
        components["pipeline"] = ComponentStatus(status="healthy", details=details)

        if not orchestrator.config.llm.enabled:
            components["llm"] = ComponentStatus(status="disabled", details={"mode": "pattern-only"})
        else:
            circuits = get_circuit_health(orchestrator.circuit_breakers())
            healthy = all(c["healthy"] for c in circuits.values())
            components["llm"] = ComponentStatus(
                status="healthy" if healthy else "degraded",
                details={"provider": orchestrator.config.llm.provider, "circuits": circuits},
            )
            if not healthy:
                overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.api_version,
        components=components,
        timestamp=datetime.now(timezone.utc),
    )
