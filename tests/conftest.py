"""
Pytest configuration and shared fixtures for graceful shutdown tests.
"""

import logging
from unittest.mock import Mock

import pytest

from connection_registry import ConnectionRegistry
from shutdown_config import ShutdownOptions
from shutdown_orchestrator import ShutdownOrchestrator
from tests.test_fixtures import ExitRecorder, FakeServer


@pytest.fixture
def test_logger():
    """Create a real logger for testing."""
    logger = logging.getLogger(f"test_logger_{id(object())}")
    logger.setLevel(logging.DEBUG)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(handler)

    return logger


@pytest.fixture
def mock_logger():
    """Create a mock logger that skips debug-only diagnostics."""
    logger = Mock(spec=logging.Logger)
    logger.isEnabledFor.return_value = False
    return logger


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def exit_recorder():
    return ExitRecorder()


@pytest.fixture
def registry(fake_server, mock_logger):
    """Registry subscribed to the fake server."""
    registry = ConnectionRegistry(fake_server.destroy, mock_logger)
    fake_server.subscribe(registry)
    return registry


@pytest.fixture
def orchestrator_factory(fake_server, registry, mock_logger, exit_recorder):
    """Build orchestrators around the shared fake server and registry."""
    created: list[ShutdownOrchestrator] = []

    def create(**option_values) -> ShutdownOrchestrator:
        option_values.setdefault("signals", "")
        orchestrator = ShutdownOrchestrator(
            fake_server, registry, ShutdownOptions(**option_values), mock_logger, exit_recorder
        )
        created.append(orchestrator)
        return orchestrator

    yield create

    for orchestrator in created:
        orchestrator._cancel_force_timer()
