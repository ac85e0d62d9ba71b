"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import os
from pathlib import Path

import pytest

from transcription_engine.config import EngineConfig
from transcription_engine.services.chunk_encoder.manager import ChunkEncoder

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)

PROVIDER_KEY_VARS = ("GROQ_KEY", "GROQ_API_KEY", "OPENAI_API_KEY", "TRANSCRIPTION_RELAY_ENDPOINT")


# ============================================================================
# Pytest Configuration
# ============================================================================


def has_provider_credentials() -> bool:
    """Whether a live speech backend is configured in the environment."""
    return any(os.getenv(name) for name in PROVIDER_KEY_VARS)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom settings and markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """
    Skip live-backend tests without credentials and apply the default timeout.

    Integration tests talk to a real speech backend, so they only run when
    one of the provider variables is set.
    """
    if not has_provider_credentials():
        skip_marker = pytest.mark.skip(reason="No transcription backend credentials configured")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_marker)

    # Apply timeout to all tests except those marked as slow
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


@pytest.fixture(scope="session")
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    This prevents creating a new timestamped log file for each test,
    consolidating all test logs into one file for easier debugging.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"test_run_{timestamp}.log"

    return str(log_file)


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture
def fast_config() -> EngineConfig:
    """Engine config with a cadence short enough for unit tests."""
    return EngineConfig(
        recording_window_seconds=0.05,
        restart_settle_seconds=0.01,
        max_restart_attempts=5,
        restart_delay_seconds=0.01,
        health_check_interval_seconds=5.0,
        side_channel_watchdog_seconds=5.0,
    )


@pytest.fixture
def wav_encoder() -> ChunkEncoder:
    """Encoder producing plain WAV chunks."""
    return ChunkEncoder()


# ============================================================================
# Testing Environment Fixtures
# ============================================================================


@pytest.fixture
async def test_context(fast_config):
    """
    Create a test context instance.

    Yields:
        Context: Test context carrying the fast config
    """
    from transcription_engine.context import Context

    context = Context(config=fast_config)
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager.

    The relay client is a MockTranscriptionRelayClient, so no chunk ever
    leaves the process.

    Yields:
        ServerManager: Connected test server manager instance
    """
    from transcription_engine.constructor import EngineType
    from transcription_engine.server.constructor import construct_server_manager

    server = construct_server_manager(EngineType.TESTING, test_context)
    test_context.set_server_manager(server)
    await server.connect_all()

    yield server

    await server.disconnect_all()


@pytest.fixture
async def mock_relay(test_server_manager):
    """The scripted relay client from the test server manager."""
    yield test_server_manager.relay_client


@pytest.fixture
async def services_manager(test_server_manager, tmp_path, shared_test_log_file):
    """
    Create and initialize a services manager with temporary storage.

    Yields:
        ServicesManager: Initialized services manager instance
    """
    from transcription_engine.constructor import EngineType
    from transcription_engine.services.constructor import construct_services_manager

    log_path = Path(shared_test_log_file)
    context = test_server_manager.context

    services = construct_services_manager(
        EngineType.TESTING,
        context=context,
        log_dir=str(log_path.parent),
        log_file=log_path.name,
        use_timestamp_logs=False,
        export_dir=str(tmp_path / "transcripts"),
    )
    context.set_services_manager(services)
    await services.initialize_all()

    yield services

    if services.session_manager_service:
        await services.session_manager_service.on_close()
    await services.logging_service.on_close()
