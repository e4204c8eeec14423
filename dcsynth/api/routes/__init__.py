"""
NeuroSynth DCS - API Routes
===========================

Route modules for the FastAPI application.
"""

from dcsynth.api.routes.extraction import router as extraction_router
from dcsynth.api.routes.health import router as health_router

__all__ = [
    'extraction_router',
    'health_router',
]
