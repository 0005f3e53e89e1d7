"""
Test configuration for pagewatch.

Provides isolated configuration, a temporary SQLite store and a container
wired with in-memory fakes for the fetcher, extractor and notifier.
"""

# Standard library imports
import asyncio
from pathlib import Path
from typing import AsyncGenerator, List

# Third-party imports
import pytest
import pytest_asyncio

# Local imports
from pagewatch.config import Config, ExtractionConfig, NotifierConfig, RunnerConfig, StorageConfig
from pagewatch.container import DependencyContainer
from pagewatch.protocols import Link
from pagewatch.storage import MonitorStore
from tests.helpers.fakes import FakeExtractor, FakeFetcher, FakeNotifier, RecordingSleep


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Provide test configuration backed by a temporary database."""
    return Config(
        storage=StorageConfig(db_path=tmp_path / "pagewatch.db", pool_size=2),
        extraction=ExtractionConfig(api_key="test-key"),
        notifier=NotifierConfig(bot_token="123:abc", chat_id="42"),
        runner=RunnerConfig(inter_page_delay_seconds=5.0, rate_limit_backoff_seconds=60.0),
    )


@pytest_asyncio.fixture
async def store(config: Config) -> AsyncGenerator[MonitorStore, None]:
    manager = MonitorStore(config.storage)
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest_asyncio.fixture
async def container(
    config: Config, fetcher: FakeFetcher, extractor: FakeExtractor, notifier: FakeNotifier
) -> AsyncGenerator[DependencyContainer, None]:
    """Container with real storage and fake external collaborators."""
    c = DependencyContainer(config=config, overrides={"fetcher": fetcher, "extractor": extractor, "notifier": notifier})
    async with c.lifecycle():
        yield c


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """Cancel any asyncio tasks a test leaves behind."""
    tasks_before = asyncio.all_tasks()
    yield
    for task in asyncio.all_tasks() - tasks_before:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


@pytest.fixture
def sample_links() -> List[Link]:
    return [
        Link(href="https://other-sauna.example/", text="Other Sauna Club"),
        Link(href="https://facebook.com/sauna", text="Facebook"),
    ]
