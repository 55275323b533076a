"""Import sanity tests.

These lightweight tests verify that the WSGI entrypoint and core modules
can be imported without errors, the minimum bar for a deploy.
"""

import os

import pytest

os.environ.setdefault("CHECKIN_API_BASE_URL", "http://checkin.test/api")


def test_app_module_imports():
    """The Flask app module must import without errors."""
    import app  # noqa: F401


def test_wsgi_app_object():
    """The 'app:app' entrypoint must resolve to a Flask instance."""
    from app import app as flask_app
    assert flask_app is not None
    assert hasattr(flask_app, "route"), "app object is not a Flask instance"


def test_orchestrator_imports():
    """Core symbols used by app.py must be importable."""
    from fetch_orchestrator import FetchOrchestrator, DashboardView, classify_error_message
    assert FetchOrchestrator is not None
    assert DashboardView is not None
    assert classify_error_message is not None


def test_pipeline_imports():
    from enrichment import enrich
    from checkin_stats import reconcile
    from request_cache import RequestCache
    assert enrich is not None
    assert reconcile is not None
    assert RequestCache is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
