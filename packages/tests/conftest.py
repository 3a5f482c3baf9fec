"""Pytest configuration and shared fixtures."""

import pytest

# The hearth testing plugin is registered via a ``pytest11`` entry point
# for external consumers.  Our own suite disables it (``-p no:hearth``)
# and loads it here so the hearth import chain runs after ``pytest-cov``
# has started tracing.
pytest_plugins = ["hearth.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (wire several components)"
    )
