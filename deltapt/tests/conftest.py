"""
Global pytest fixtures and configuration for the test suite.

Provides reusable fixtures for testing study components without
duplicating setup code across test modules.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import numpy as np
import pytest

from deltapt.modules.config import StudyConfig

from .utils.mock_data_generator import (
    create_mock_study_file,
    generate_track_columns,
    generate_truth_columns,
)


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test operations.

    Automatically cleaned up after test completion.

    Yields:
        Path to temporary directory
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="deltapt_test_"))
    try:
        yield tmp_dir
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)


@pytest.fixture
def small_binning() -> Dict[str, tuple]:
    """Coarse binning for fast histogram tests."""
    return {
        "pt": (20, 0.0, 10.0),
        "frac": (40, 0.0, 4.0),
        "delta": (100, 0.0, 0.5),
        "phi": (36, -3.15, 3.15),
    }


@pytest.fixture
def truth_columns() -> Dict[str, np.ndarray]:
    """Synthetic truth tuple: 6000 particles, 80% primary."""
    return generate_truth_columns(6000, seed=42)


@pytest.fixture
def track_columns(truth_columns: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
    """Synthetic track tuple matched to the first 4000 truth particles."""
    return generate_track_columns(truth_columns["gpt"][:4000], seed=43)


@pytest.fixture
def study_overrides(tmp_test_dir: Path) -> Dict[str, Any]:
    """Config values that keep a study run fast and its fits well populated."""
    return {
        "io": {"output_file": str(tmp_test_dir / "output" / "study.root")},
        "projection": {"pt_anchors": [1.0, 2.0, 4.0, 6.0, 8.0]},
        "envelope": {"pt_fit_range": [0.5, 10.0]},
        "reader": {"step_size": 1500},
    }


@pytest.fixture
def mock_study_file(tmp_test_dir: Path) -> Path:
    """ROOT file with ntp_track (4000 rows) and ntp_gtrack (6000 rows, 4800 primary)."""
    return create_mock_study_file(tmp_test_dir / "input" / "tracks.root")


@pytest.fixture
def study_config(mock_study_file: Path, study_overrides: Dict[str, Any]) -> StudyConfig:
    """Default configuration pointed at the mock input file."""
    overrides = dict(study_overrides)
    overrides["io"] = dict(overrides["io"], input_file=str(mock_study_file))
    return StudyConfig(overrides)


def pytest_configure(config: pytest.Config) -> None:
    """
    Configure pytest with custom markers and settings.

    Args:
        config: pytest configuration object
    """
    config.addinivalue_line("markers", "unit: Fast unit tests for individual components")
    config.addinivalue_line("markers", "validation: Error handling and edge case validation")
    config.addinivalue_line("markers", "integration: End-to-end study runs on mock ROOT files")
    config.addinivalue_line("markers", "slow: Tests that take longer to run")
