"""
VOICETURN Test Suite

This package contains all tests for the VOICETURN voice conversation
orchestrator.

Test Organization:
    tests/
    ├── __init__.py          # This file
    ├── conftest.py          # Shared fixtures and the orchestrator harness
    ├── fixtures/            # Fake clock, audio devices and backends
    ├── unit/                # Unit tests (no devices, no network)
    └── e2e/                 # Full conversations against fakes

Running Tests:
    # Run all tests
    pytest tests/

    # Run only end-to-end conversations
    pytest tests/ -m e2e

    # Run with coverage
    pytest tests/ --cov=voiceturn --cov-report=html

Requirements:
    pip install -e ".[test]"
"""
