"""WorkLens test configuration."""
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Make tests/helpers.py importable regardless of the rootdir
sys.path.insert(0, str(Path(__file__).parent))

from helpers import StubOracle  # noqa: E402

from worklens.config.loader import reset_config  # noqa: E402
from worklens.core.coordinator import PipelineCoordinator  # noqa: E402
from worklens.core.db import DatabaseManager, reset_db  # noqa: E402
from worklens.core.settings import PipelineSettings, reset_settings  # noqa: E402
from worklens.llm.prompt_manager import PromptManager  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Point config and data directories at a temp dir and drop global singletons."""
    monkeypatch.setenv("WORKLENS_HOME", str(tmp_path / "home"))
    reset_config()
    reset_settings()
    reset_db()
    yield
    reset_config()
    reset_settings()
    reset_db()


@pytest.fixture
def settings():
    """Default thresholds with zero backoff so retries run immediately."""
    return PipelineSettings(
        flush_retry_base_seconds=0.0,
        queue_retry_base_seconds=0.0,
        sweep_batch_delay=0.0,
    )


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(tmp_path / "worklens.db")


@pytest.fixture
def prompt_manager():
    return PromptManager()


@pytest.fixture
def oracle(prompt_manager):
    return StubOracle(prompt_manager)


@pytest.fixture
def coordinator(settings, db, oracle, prompt_manager):
    """Fully wired coordinator; the queue is not started."""
    return PipelineCoordinator(settings, db, oracle, prompt_manager)


@pytest_asyncio.fixture
async def running(coordinator):
    """Coordinator with its background queue running."""
    await coordinator.start()
    yield coordinator
    await coordinator.stop(drain=False)
