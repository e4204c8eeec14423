"""
NeuroSynth DCS - API Dependencies
=================================

Dependency injection for FastAPI routes.
"""

import logging
import os
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, status

from dcsynth.core.config import PipelineConfig
from dcsynth.pipeline.orchestrator import ClinicalExtractionOrchestrator

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class Settings:
    """Application settings from environment."""

    # LLM
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    llm_model: str = os.getenv("DCS_LLM_MODEL", "claude-sonnet-4-20250514")
    llm_timeout: float = float(os.getenv("DCS_LLM_TIMEOUT", "30"))

    # Learned patterns
    learned_patterns_path: str = os.getenv("LEARNED_PATTERNS_PATH", "")

    # API
    api_version: str = "1.0.0"
    api_title: str = "NeuroSynth DCS API"
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"

    @property
    def cors_origins(self) -> list[str]:
        """Allowed origins from CORS_ORIGINS (comma separated, default "*")."""
        origins_str = os.getenv("CORS_ORIGINS", "*")
        return [origin.strip() for origin in origins_str.split(",")]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Holds the process-wide orchestrator."""

    _instance: Optional["ServiceContainer"] = None

    def __init__(self):
        self._orchestrator: Optional[ClinicalExtractionOrchestrator] = None

    @classmethod
    def get_instance(cls) -> "ServiceContainer":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def initialize(self, settings: Optional[Settings] = None) -> None:
        if self._orchestrator is not None:
            return
        settings = settings or get_settings()
        config = PipelineConfig.from_env()
        self._orchestrator = ClinicalExtractionOrchestrator(config=config)
        logger.info(
            f"Orchestrator ready (llm={'on' if config.llm.enabled else 'off'}, "
            f"learned patterns={settings.learned_patterns_path or 'none'})"
        )

    def shutdown(self) -> None:
        self._orchestrator = None

    @property
    def orchestrator(self) -> Optional[ClinicalExtractionOrchestrator]:
        return self._orchestrator


def get_container() -> ServiceContainer:
    return ServiceContainer.get_instance()


def get_orchestrator(
    container: ServiceContainer = Depends(get_container),
) -> ClinicalExtractionOrchestrator:
    if container.orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Extraction service not initialized",
        )
    return container.orchestrator
