"""Unit tests for the dependency container."""

import pytest

from pagewatch.container import DependencyContainer, LazyInstance
from pagewatch.crawler import PageFetcher
from pagewatch.extraction import GeminiExtractor
from pagewatch.notify import TelegramNotifier
from pagewatch.storage import MonitorStore


class Closable:
    def __init__(self):
        self.initialized = 0
        self.closed = 0

    async def initialize(self):
        self.initialized += 1

    async def close(self):
        self.closed += 1


@pytest.mark.unit
class TestLazyInstance:
    @pytest.mark.asyncio
    async def test_created_once_and_cleaned_up(self):
        created = []

        def factory():
            created.append(Closable())
            return created[-1]

        lazy = LazyInstance(factory)
        first = await lazy.get()
        assert await lazy.get() is first
        assert first.initialized == 1

        await lazy.cleanup()
        assert first.closed == 1
        assert len(created) == 1


@pytest.mark.unit
class TestDependencyContainer:
    @pytest.mark.asyncio
    async def test_default_components(self, config):
        async with DependencyContainer(config=config).lifecycle() as container:
            assert isinstance(await container.get_store(), MonitorStore)
            assert isinstance(await container.get_fetcher(), PageFetcher)
            assert isinstance(await container.get_extractor(), GeminiExtractor)
            assert isinstance(await container.get_notifier(), TelegramNotifier)
            assert await container.get_store() is await container.get_store()
        assert not container.is_running

    @pytest.mark.asyncio
    async def test_overrides_replace_components(self, container, fetcher, extractor, notifier):
        assert await container.get_fetcher() is fetcher
        assert await container.get_extractor() is extractor
        assert await container.get_notifier() is notifier

    @pytest.mark.asyncio
    async def test_override_lifecycle_is_managed(self, config):
        fake = Closable()
        container = DependencyContainer(config=config, overrides={"notifier": fake})

        assert await container.get_notifier() is fake
        assert container.is_running
        await container.shutdown()

        assert fake.initialized == 1
        assert fake.closed == 1

    @pytest.mark.asyncio
    async def test_loads_config_file(self, tmp_path):
        path = tmp_path / "pagewatch.yaml"
        path.write_text(f"storage:\n  db_path: {tmp_path / 'from-file.db'}\n")

        container = DependencyContainer(config_path=path)
        await container.initialize()
        await container.initialize()

        assert container.config.storage.db_path == tmp_path / "from-file.db"
        await container.shutdown()
