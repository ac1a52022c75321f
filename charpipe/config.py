"""Configuration loading, API key resolution and output paths.

The Gemini API uses a plain API key, handed to the google-genai client.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml

_DEFAULT_CONFIG = "config.yaml"
_PLACEHOLDER_KEY = "YOUR_GEMINI_API_KEY"
_ENV_KEYS = ("GEMINI_API_KEY", "API_KEY")

DEFAULTS: dict = {
    "api": {
        "api_key": "",
        "base_url": "https://generativelanguage.googleapis.com",
        "timeout_seconds": 120,
        "max_attempts": 1,
    },
    "models": {
        "text": "gemini-2.5-pro",
        "image": "gemini-2.5-flash-image",
    },
    "output": {
        "base_dir": "output",
    },
}


def load_config(config_path: str | Path | None = None) -> dict:
    """Load the YAML configuration file, filling in defaults.

    Args:
        config_path: Path to config.yaml. Defaults to ./config.yaml.

    Returns:
        The parsed config dict, with every section from DEFAULTS present.

    Raises:
        FileNotFoundError: If the config file does not exist.
    """
    path = Path(config_path or _DEFAULT_CONFIG)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    config: dict = {}
    for section, values in DEFAULTS.items():
        config[section] = {**values, **(loaded.get(section) or {})}
    for section, values in loaded.items():
        config.setdefault(section, values)
    return config


def get_api_key(config: dict) -> str:
    """Return the API key from config, falling back to the environment.

    Raises:
        ValueError: If no key is configured anywhere.
    """
    api_key: str = config.get("api", {}).get("api_key") or ""
    if api_key and api_key != _PLACEHOLDER_KEY:
        return api_key

    for name in _ENV_KEYS:
        value = os.environ.get(name, "")
        if value:
            return value

    raise ValueError(
        "API key not configured. Set 'api.api_key' in config.yaml "
        "or the GEMINI_API_KEY environment variable."
    )


def resolve_output_paths(config: dict, scenes_path: str | Path) -> dict:
    """Resolve output paths scoped to one scene file.

    Returns dict with keys: batch_dir, images_dir, status_file.
    """
    base_dir = Path(config["output"].get("base_dir", "output"))
    batch_dir = base_dir / Path(scenes_path).stem
    return {
        "batch_dir": batch_dir,
        "images_dir": batch_dir / "images",
        "status_file": batch_dir / "status.json",
    }
