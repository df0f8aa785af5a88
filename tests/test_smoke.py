"""Smoke tests: the packages import and the entry points are wired."""

import sys


def test_python_version():
    """Verify Python version meets requirements."""
    assert sys.version_info >= (3, 11), "Python 3.11 or higher required"


def test_package_imports():
    import scribe_pipeline
    from scribe_pipeline import huey_app

    assert scribe_pipeline.__version__
    assert huey_app.huey.name == "scribe_pipeline"


def test_utils_reexports():
    from scribe_pipeline import utils
    from scribe_pipeline.utils import paths

    assert utils.is_managed_path is paths.is_managed_path
    assert set(utils.__all__) >= {"is_managed_path", "recording_dir", "recording_source_path"}


def test_api_routes_registered():
    from services.recordings_api.main import app

    paths = {route.path for route in app.routes}
    assert {
        "/health",
        "/v1/recordings",
        "/v1/recordings/{recording_id}",
        "/v1/recordings/{recording_id}/process",
        "/v1/recordings/{recording_id}/title",
    } <= paths
