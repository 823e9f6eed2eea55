"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- static defaults checked into the repo
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set at deploy time
#
# load_config() reads the YAML file, then deep-merges the values coming
# from Settings on top:
#   base      = {"ingestion": {"chunk_size": 800, "batch_size": 10}}
#   overrides = {"ingestion": {"chunk_size": 1000}}
#   result    = {"ingestion": {"chunk_size": 1000, "batch_size": 10}}
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path

import yaml

from iqrchat.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Settings instance to merge; a fresh one is built when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "providers": {
            "available": settings.get_available_providers(),
        },
        "storage": {
            "root": settings.storage_root,
            "targets": list(settings.storage_targets),
            "signed_url_ttl": settings.signed_url_ttl_seconds,
        },
        "ingestion": {
            "chunk_size": settings.chunk_size,
            "overlap": settings.chunk_overlap,
            "batch_size": settings.embed_batch_size,
            "max_workers": settings.embed_max_workers,
            "max_retries": settings.embed_max_retries,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
