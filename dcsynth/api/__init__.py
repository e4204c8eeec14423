"""
NeuroSynth DCS - API Package
============================

FastAPI REST API over the extraction pipeline.

Components:
- main.py: FastAPI application
- models.py: Pydantic request/response models
- dependencies.py: Dependency injection
- routes/: API route handlers

Quick Start:
    uvicorn dcsynth.api.main:app --reload

Endpoints:
    GET  /health           - Health check
    POST /api/v1/extract   - Extract a clinical record from notes
"""
