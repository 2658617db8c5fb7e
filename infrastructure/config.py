"""
LINEAGE CONFIG - Engine and Link Store Settings

Configuration is read once from config/lineage.toml and kept as frozen
msgspec structs. Every section has working defaults, so a missing or
broken file degrades to defaults with a warning instead of failing.

Usage:
    from infrastructure.config import get_config

    config = get_config()
    config.links.timeout_seconds   # 10.0
    config.graph.cross_chat_scope  # "roots"
"""
import logging
import tomllib
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import msgspec

from core.ontology import CrossChatScope


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "lineage.toml"


# =============================================================================
# CONFIG SECTIONS
# =============================================================================

class GraphConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Settings for graph assembly."""
    cross_chat_scope: CrossChatScope = "roots"
    alternative_label: str = "Alternative path {ordinal}"


class LinkStoreConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Settings for calls into the external link store."""
    timeout_seconds: float = 10.0            # Per-call bound; <= 0 disables


class LoggingConfig(msgspec.Struct, kw_only=True, frozen=True):
    level: str = "WARNING"


class LineageConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Top-level configuration."""
    graph: GraphConfig = msgspec.field(default_factory=GraphConfig)
    links: LinkStoreConfig = msgspec.field(default_factory=LinkStoreConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load the raw configuration dict from lineage.toml.

    Returns:
        Dict with all configuration sections ({} if unreadable)
    """
    config_path = path or DEFAULT_CONFIG_PATH
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}


_SECTION_TYPES = {
    "graph": GraphConfig,
    "links": LinkStoreConfig,
    "logging": LoggingConfig,
}


def _convert_section(name: str, raw: Any) -> Any:
    """Convert one section, replacing it by its defaults if invalid."""
    section_type = _SECTION_TYPES[name]
    try:
        return msgspec.convert(raw, type=section_type)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid [{name}] config, using defaults: {e}")
        return section_type()


def config_from_dict(raw: Dict[str, Any]) -> LineageConfig:
    """
    Build a LineageConfig from a raw dict, falling back to defaults.

    Unknown keys are ignored. Each section is validated on its own: a
    section with invalid values is replaced by its defaults and a warning
    is emitted, while valid sections are kept.
    """
    sections = {
        name: _convert_section(name, raw[name])
        for name in _SECTION_TYPES
        if name in raw
    }
    config = LineageConfig(**sections)

    try:
        config.graph.alternative_label.format(ordinal=1)
    except Exception as e:
        warnings.warn(f"Invalid alternative_label ({e}); using the default label")
        config = msgspec.structs.replace(
            config,
            graph=msgspec.structs.replace(
                config.graph, alternative_label=GraphConfig().alternative_label
            ),
        )
    return config


def load_config(path: Optional[Path] = None) -> LineageConfig:
    """Load configuration from TOML (or defaults)."""
    return config_from_dict(load_toml_config(path))


def configure_logging(config: Optional[LineageConfig] = None) -> None:
    """Apply the configured level to the engine's loggers."""
    config = config or get_config()
    level = getattr(logging, config.logging.level.upper(), logging.WARNING)
    for name in ("core", "infrastructure", "lineage"):
        logging.getLogger(name).setLevel(level)


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[LineageConfig] = None


def get_config() -> LineageConfig:
    """Get the process-wide configuration (loaded on first use)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[LineageConfig]) -> None:
    """Replace the process-wide configuration (None = reload on next use)."""
    global _config
    _config = config


def reset_config() -> None:
    set_config(None)
