"""Shared pytest configuration and fixtures for the simdeploy test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "macos: mark test as requiring a real Xcode toolchain"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-macos",
        action="store_true",
        default=False,
        help="Run tests that drive the real simulator toolchain",
    )


def pytest_collection_modifyitems(config, items):
    """Skip toolchain tests unless --run-macos is specified."""
    if config.getoption("--run-macos") and sys.platform == "darwin":
        return

    skip_macos = pytest.mark.skip(reason="Need --run-macos on macOS to run")
    for item in items:
        if "macos" in item.keywords:
            item.add_marker(skip_macos)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def repo_root() -> Path:
    """Return the repository root directory."""
    return PROJECT_ROOT
