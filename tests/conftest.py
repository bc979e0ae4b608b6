import sys
import os
from tempfile import TemporaryDirectory
import pytest
# Ensure the project root is on sys.path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

@pytest.fixture
def temp_dir():
    """Create a temporary directory for generated .proto and .schema files."""
    with TemporaryDirectory() as dir_path:
        yield dir_path

@pytest.fixture(autouse=True)
def quiet_environment(monkeypatch):
    """BQ_SCHEMA_* variables from the developer's shell must not leak into tests."""
    for name in ("BQ_SCHEMA_VERBOSE", "BQ_SCHEMA_OUTPUT_DIR"):
        monkeypatch.delenv(name, raising=False)
