"""Shared pytest fixtures for mcp-timemachine tests."""

import logging
import tempfile
from pathlib import Path

import pytest

from mcp_timemachine.config import ProjectConfig
from mcp_timemachine.session import TimeMachine
from mcp_timemachine.store import LogStore


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def config(temp_project):
    """Create a test configuration."""
    return ProjectConfig(
        project_name="test-project",
        project_root=temp_project,
        checkpoint_interval=4,
    )


@pytest.fixture
def store(config):
    return LogStore(config)


@pytest.fixture
def machine(config):
    """Create a test session."""
    return TimeMachine(config)


@pytest.fixture
def document(temp_project):
    """A document on disk with some starting text."""
    path = temp_project / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo handler changes made by setup_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
