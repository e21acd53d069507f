"""Config model — the desired state of each environment, loaded from disk."""

from envsync.config.loader import DEFAULT_CONFIG_PATH, build_config, load_config, parse_config

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "build_config",
    "load_config",
    "parse_config",
]
