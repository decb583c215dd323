"""Pytest configuration and shared fixtures."""

import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing settings
os.environ.update({
    "ENVIRONMENT": "development",
    "VOICE_TRANSPORT": "mock",  # No network
    "AUDIO_BACKEND": "memory",  # No sound card
    "GREETING_ENABLED": "false",  # Enabled per test where needed
    "GREETING_DELAY_S": "0.05",
    "LOG_JSON": "false",
})
os.environ.pop("GEMINI_API_KEY", None)


@pytest.fixture
def test_settings():
    """Provide test settings instance."""
    from src.config.settings import Settings
    return Settings(
        _env_file=None,
        voice_transport="mock",
        audio_backend="memory",
        greeting_enabled=False,
        greeting_delay_s=0.05,
    )


@pytest.fixture
def audio_io():
    """In-memory audio backend."""
    from src.audio.memory_io import MemoryAudioIO
    return MemoryAudioIO()


@pytest.fixture
def transport():
    """Scripted streaming transport."""
    from src.transport.mock import MockTransport
    return MockTransport()


@pytest.fixture
def synthesizer():
    """Greeting synthesizer that needs no network."""
    from src.orchestrator.greeting import ToneGreetingSynthesizer
    return ToneGreetingSynthesizer(duration_s=0.1)


@pytest.fixture
async def orchestrator(test_settings, transport, audio_io, synthesizer):
    """Orchestrator wired to fakes. Greeting disabled unless a test enables it."""
    from src.orchestrator.orchestrator import VoiceSessionOrchestrator

    orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)
    yield orch
    await orch.aclose()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Provide FastAPI test client."""
    from src.config.settings import get_settings
    from src.main import app

    get_settings.cache_clear()
    with TestClient(app) as c:
        yield c


@pytest.fixture
def audio_clock():
    """Provide fresh 24 kHz audio clock for testing."""
    from src.audio.clock import AudioClock
    return AudioClock(sample_rate=24000)

