"""Unified configuration loaded from .margin.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".margin.toml"
CONFIG_SEARCH_PATHS = [
    Path(CONFIG_FILENAME),
    Path.home() / ".config" / "margin" / "config.toml",
]


class FeedSectionConfig(BaseModel):
    """[feed] section."""

    page_size: int = Field(default=50, ge=1)
    group_collections: bool = True
    sort: str = "none"
    motivation: str = "all"


class ThreadsSectionConfig(BaseModel):
    """[threads] section."""

    max_display_depth: int = Field(default=8, ge=1)


class LoggingSectionConfig(BaseModel):
    """[logging] section."""

    level: str = "WARNING"


class MarginConfig(BaseModel):
    """Top-level configuration model."""

    feed: FeedSectionConfig = Field(default_factory=FeedSectionConfig)
    threads: ThreadsSectionConfig = Field(default_factory=ThreadsSectionConfig)
    logging: LoggingSectionConfig = Field(default_factory=LoggingSectionConfig)

    @property
    def log_level(self) -> int:
        """Numeric logging level, falling back to WARNING for unknown names."""
        level = logging.getLevelName(self.logging.level.upper())
        return level if isinstance(level, int) else logging.WARNING


def load_config(path: str | Path | None = None) -> MarginConfig:
    """Build the effective configuration.

    An explicit ``path`` is the only file consulted. Without one, the first
    of ``CONFIG_SEARCH_PATHS`` that exists is used. Environment variables
    are layered on top. A layer whose values fail validation is skipped
    with a warning, leaving the layer beneath in effect.
    """
    if path is not None:
        config_file: Path | None = Path(path)
        if not config_file.exists():
            logger.warning("Config file not found: %s", config_file)
            config_file = None
    else:
        config_file = next((p for p in CONFIG_SEARCH_PATHS if p.is_file()), None)

    config = MarginConfig()
    if config_file is not None:
        data = _load_toml(config_file)
        if data:
            try:
                config = MarginConfig.model_validate(data)
            except ValidationError as exc:
                logger.warning("Ignoring invalid settings in %s: %s", config_file, exc)
            else:
                logger.info("Loaded config from %s", config_file)

    return _apply_env_vars(config)


def merge_cli_overrides(config: MarginConfig, **cli_kwargs: object) -> MarginConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).

    Args:
        config: Base config.
        **cli_kwargs: CLI flag values, keyed by flag name
            (e.g., ``page_size``, ``sort``, ``log_level``).

    Returns:
        Updated config with CLI overrides applied.
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "page_size": ("feed", "page_size"),
        "group_collections": ("feed", "group_collections"),
        "sort": ("feed", "sort"),
        "motivation": ("feed", "motivation"),
        "max_depth": ("threads", "max_display_depth"),
        "log_level": ("logging", "level"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = value

    return MarginConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: MarginConfig) -> MarginConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "MARGIN_PAGE_SIZE": ("feed", "page_size"),
        "MARGIN_FEED_SORT": ("feed", "sort"),
        "MARGIN_FEED_MOTIVATION": ("feed", "motivation"),
        "MARGIN_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    group_raw = os.environ.get("MARGIN_GROUP_COLLECTIONS")
    if group_raw is not None:
        data["feed"]["group_collections"] = group_raw.lower() in ("true", "1", "yes")

    try:
        return MarginConfig.model_validate(data)
    except ValidationError as exc:
        logger.warning("Ignoring invalid MARGIN_* environment settings: %s", exc)
        return config
