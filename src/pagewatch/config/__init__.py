"""Configuration models for pagewatch."""

from __future__ import annotations

from .config import (
    Config,
    DedupConfig,
    DetectionConfig,
    DiscoveryConfig,
    ExtractionConfig,
    FetcherConfig,
    MonitoringConfig,
    NotifierConfig,
    RunnerConfig,
    StorageConfig,
    find_config_file,
    load_config,
)

__all__ = [
    "Config",
    "DedupConfig",
    "DetectionConfig",
    "DiscoveryConfig",
    "ExtractionConfig",
    "FetcherConfig",
    "MonitoringConfig",
    "NotifierConfig",
    "RunnerConfig",
    "StorageConfig",
    "find_config_file",
    "load_config",
]
