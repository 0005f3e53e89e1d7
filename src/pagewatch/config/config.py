"""
Configuration management for pagewatch using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

DEFAULT_NOISE_PATTERNS: List[str] = [
    r"(?i)\b(we|this (site|website)) uses? cookies\b.*",
    r"(?i)\b(accept|allow|manage) (all )?cookies\b.*",
    r"(?i)\bcookie (policy|settings|preferences|consent)\b.*",
    r"(?i)(©|\(c\)|copyright)\s*\d{0,4}.*",
    r"(?i)\ball rights reserved\b.*",
    r"(?i)\b(subscribe|sign up) (to|for) (our|the) newsletter\b.*",
    r"(?i)\bnewsletter\b.*\b(subscribe|sign up|e-?mail)\b.*",
    r"(?i)\b(privacy policy|terms of (use|service)|imprint|impressum)\b",
]

# --- Nested Configuration Models ---


class FetcherConfig(BaseModel):
    """Page retrieval configuration."""

    timeout: float = Field(default=30.0, description="HTTP request timeout in seconds.")
    render_timeout: float = Field(default=30.0, description="Page load timeout for browser rendering in seconds.")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent string for HTTP requests.",
    )
    min_content_length: int = Field(
        default=500, description="HTML shorter than this is treated as blocked or empty and triggers rendering."
    )
    render_fallback: bool = Field(default=True, description="Fall back to browser rendering when a static fetch fails.")
    max_link_text: int = Field(default=100, description="Outbound link text is truncated to this many characters.")


class DetectionConfig(BaseModel):
    """Segmenter and change classifier configuration."""

    min_segment_length: int = Field(default=20, ge=1, description="Segments shorter than this are noise.")
    similarity_threshold: float = Field(
        default=0.92,
        ge=0.0,
        le=1.0,
        description="Jaccard similarity above which a change without important-pattern delta is ignored.",
    )
    noise_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_NOISE_PATTERNS),
        description="Regular expressions removed from page text before segmenting.",
    )


class ExtractionConfig(BaseModel):
    """Structured extractor configuration."""

    api_key: Optional[str] = Field(default=None, description="API key for the extraction service.")
    model: str = Field(default="gemini-2.0-flash-lite", description="Model name used by the extractor.")
    endpoint: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        description="Base URL of the generateContent API.",
    )
    request_timeout: float = Field(default=60.0, description="Extractor request timeout in seconds.")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=8192, gt=0)
    max_text_chars: int = Field(default=100_000, gt=0, description="Page text is capped at this length.")
    max_attempts: int = Field(default=3, ge=1, description="Total extraction attempts for empty responses.")
    backoff_base_seconds: float = Field(default=2.0, ge=0.0, description="First retry delay; doubles per attempt.")
    backoff_max_seconds: float = Field(default=60.0, ge=0.0)
    min_summary_words: int = Field(default=30, ge=0, description="Shorter summaries are rebuilt from fields.")
    default_language: str = Field(default="ENGLISH", description="Output language when none is stored.")


class DedupConfig(BaseModel):
    """Event deduplication configuration."""

    title_similarity_threshold: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Normalized edit similarity above which titles match."
    )
    suspect_similarity_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Lower bound of the band reported as duplicate suspects.",
    )


class RunnerConfig(BaseModel):
    """Run loop and throttling configuration."""

    inter_page_delay_seconds: float = Field(default=5.0, ge=0.0, description="Pause between pages.")
    rate_limit_backoff_seconds: float = Field(
        default=60.0, ge=0.0, description="Extra pause before the next page after a rate limit."
    )
    watch_interval_seconds: float = Field(default=6 * 60 * 60, gt=0, description="Interval for `pagewatch watch`.")


class StorageConfig(BaseModel):
    """Configuration for SQLite storage."""

    db_path: Path = Field(
        default_factory=lambda: Path.home() / ".pagewatch" / "pagewatch.db",
        description="SQLite database file path",
    )
    pool_size: int = Field(default=2, ge=1, description="Size of the connection pool.")
    wal_mode: bool = Field(default=True, description="Enable Write-Ahead Logging.")

    @field_validator("db_path", mode="before")
    @classmethod
    def ensure_db_directory(cls, v: Any) -> Path:
        """Ensure database directory exists."""
        path = Path(v) if not isinstance(v, Path) else v
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


class NotifierConfig(BaseModel):
    """Telegram delivery configuration."""

    bot_token: Optional[str] = Field(default=None, description="Telegram bot token.")
    chat_id: Optional[str] = Field(default=None, description="Default chat receiving notifications.")
    api_url: str = Field(default="https://api.telegram.org/bot", description="Bot API base URL.")
    timeout: float = Field(default=15.0, description="Send timeout in seconds.")


class DiscoveryConfig(BaseModel):
    """Outbound link discovery configuration."""

    enabled: bool = Field(default=True, description="Screen outbound links of changed pages.")
    max_links: int = Field(default=20, ge=1, description="Links sent to the extractor per page.")
    announce_limit: int = Field(default=5, ge=1, description="Discoveries listed in one message.")


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    prometheus_port: int | None = Field(default=None, description="Port for Prometheus metrics exporter.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "pagewatch"
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="PAGEWATCH_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        """
        Load configuration from a YAML file.

        Values from the file take precedence; anything the file leaves out is
        read from `PAGEWATCH_*` environment variables, then defaults.
        """
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls()
        if not isinstance(yaml_data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")
        return cls(**yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "pagewatch.yaml", current_dir / "pagewatch.yml", current_dir / "config.yaml"):
        if path.exists():
            return path
    return None


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from `path`, a discovered config file, or the environment.

    Raises:
        FileNotFoundError: An explicit path does not exist
        ValidationError: The configuration is invalid
    """
    config_path = path or find_config_file()
    if config_path is not None:
        log.info("Loading configuration from: %s", config_path)
        return Config.from_yaml(config_path)
    log.info("No config file found. Using environment and default settings.")
    return Config()
