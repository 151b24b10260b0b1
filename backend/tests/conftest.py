"""Pytest configuration and shared fixtures for backend tests."""
import pytest
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from cellbridge.host import MemoryHost
from cellbridge.models import Notebook
from tests.test_utils import ScriptedRuntime, create_test_notebook


@pytest.fixture
def notebook() -> Notebook:
    """Create a notebook with two code cells."""
    return create_test_notebook(cells=["print('hello')", "42"])


@pytest.fixture
def cell(notebook):
    """First cell of the test notebook."""
    return notebook.cells[0]


@pytest.fixture
def host():
    return MemoryHost()


@pytest.fixture
def runtime():
    """Runtime that replies ok without emitting messages."""
    return ScriptedRuntime()
