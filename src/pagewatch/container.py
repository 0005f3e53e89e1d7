"""
Dependency injection container for pagewatch components.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, Generic, Optional, TypeVar

import structlog

from pagewatch.config import Config, load_config

if TYPE_CHECKING:
    from pagewatch.crawler import PageFetcher
    from pagewatch.extraction import GeminiExtractor
    from pagewatch.notify import TelegramNotifier
    from pagewatch.storage import MonitorStore

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """A component built on first `get` and closed on `cleanup`."""

    def __init__(self, factory: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None
        self._initialized = False

    async def get(self) -> T:
        """Build and initialize the component once, then reuse it."""
        if not self._initialized:
            self._instance = self._factory(*self._args, **self._kwargs)
            if callable(getattr(self._instance, "initialize", None)):
                await self._instance.initialize()  # type: ignore
            self._initialized = True
        return self._instance  # type: ignore[return-value]

    async def cleanup(self) -> None:
        """Close the component if it was built."""
        if self._instance is not None and callable(getattr(self._instance, "close", None)):
            await self._instance.close()  # type: ignore
        self._instance = None
        self._initialized = False


class DependencyContainer:
    """
    Central container managing the store and the external collaborators.

    Components are created on first use. `overrides` replaces a component by
    name ("store", "fetcher", "extractor", "notifier") with a ready instance.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[Config] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.config_path = config_path
        self.config: Optional[Config] = config
        self.logger = structlog.get_logger(self.__class__.__name__)

        self._overrides = dict(overrides or {})
        self._instances: Dict[str, LazyInstance[Any]] = {}
        self._instances_lock = asyncio.Lock()
        self.is_running = False

    async def initialize(self) -> None:
        """Load configuration and prepare lazy instances."""
        if self.is_running:
            return
        if self.config is None:
            self.load_config()
        self._create_instances()
        self.is_running = True
        self.logger.info(
            "Dependency container initialized",
            config_path=str(self.config_path) if self.config_path else "default",
            db_path=str(self.config.storage.db_path) if self.config else None,
        )

    def load_config(self) -> None:
        self.config = load_config(self.config_path)

    def _create_instances(self) -> None:
        """Create lazy instances with current configuration."""
        if self.config is None:
            raise RuntimeError("Configuration must be loaded before creating instances")

        # Deferred so importing the container stays cheap
        from pagewatch.crawler import PageFetcher
        from pagewatch.extraction import GeminiExtractor
        from pagewatch.notify import TelegramNotifier
        from pagewatch.storage import MonitorStore

        self._instances = {
            "store": LazyInstance(MonitorStore, self.config.storage),
            "fetcher": LazyInstance(PageFetcher, self.config.fetcher),
            "extractor": LazyInstance(GeminiExtractor, self.config.extraction),
            "notifier": LazyInstance(TelegramNotifier, self.config.notifier),
        }
        for name, instance in self._overrides.items():
            self._instances[name] = LazyInstance(lambda obj=instance: obj)

    async def _get(self, name: str) -> Any:
        if not self.is_running:
            await self.initialize()
        async with self._instances_lock:
            return await self._instances[name].get()

    async def get_store(self) -> MonitorStore:
        """Get the SQLite store instance."""
        return await self._get("store")

    async def get_fetcher(self) -> PageFetcher:
        """Get the page fetcher instance."""
        return await self._get("fetcher")

    async def get_extractor(self) -> GeminiExtractor:
        """Get the structured extractor instance."""
        return await self._get("extractor")

    async def get_notifier(self) -> TelegramNotifier:
        """Get the notifier instance."""
        return await self._get("notifier")

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator[DependencyContainer]:
        """Initialize on entry and close every component on exit."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Close all components built so far."""
        if not self.is_running:
            return
        for name, instance in self._instances.items():
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error(f"Error cleaning up {name}", error=str(e))
        self.is_running = False
        self.logger.info("Dependency container shutdown complete")
