"""Shared pytest fixtures for greekfeed tests."""

import sys
from pathlib import Path

import pytest

# Add src and the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

# Import all fixtures for global availability
from tests.fixtures.market_fixtures import *  # noqa: E402,F401,F403


@pytest.fixture
def lake_path(tmp_path):
    """
    Create a fresh Delta Lake directory for each test.

    Returns:
        Path: Path to temporary Delta Lake directory

    Example:
        def test_with_lake(lake_path):
            table = HourlySnapshotsTable(str(lake_path / "hourly_snapshots"))
    """
    return tmp_path / "lake"
