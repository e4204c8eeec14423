"""
NeuroSynth DCS - Test Suite
===========================

Structure:
    tests/
    ├── conftest.py              - Shared fixtures and note builders
    ├── unit/                    - Stage-level tests (no network)
    └── integration/
        ├── test_pipeline.py     - End-to-end extract() behaviour
        └── test_api.py          - API endpoint tests

Running Tests:
    # All tests
    pytest

    # Unit tests only
    pytest tests/unit/

    # Specific test file
    pytest tests/unit/test_temporal_resolver.py -v
"""
