"""Configuration — YAML file merged over built-in defaults, plus well-known paths."""

import copy
import logging
import os
from pathlib import Path

import yaml

CONFIG_FILENAME = "config.yaml"
HOME_ENV_VAR = "CAD_FORGE_HOME"
API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"

DEFAULT_CONFIG = {
    "model": {
        "name": "claude-3-5-sonnet-latest",
        "max_tokens": 4096,
        "api_url": "https://api.anthropic.com/v1/messages",
        "api_version": "2023-06-01",
        "timeout": 180,
    },
    "render": {
        "openscad_executable": "openscad",
        "image_size": [1024, 768],
        "colorscheme": "Cornfield",
        "timeout": 120,
        "poll_interval": 0.1,
    },
    "state": {
        "dir": "~/.cad-forge",
    },
}


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None) -> dict:
    """Load *config_path* (or ./config.yaml when present) over the defaults.

    An explicitly given path that does not exist is an error; a missing
    ./config.yaml just means "defaults".
    """
    path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILENAME
    if not path.exists():
        if config_path:
            raise FileNotFoundError(f"Config file not found: {path}")
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return _merge(DEFAULT_CONFIG, data)


def state_dir(config: dict) -> Path:
    raw = os.environ.get(HOME_ENV_VAR) or config.get("state", {}).get("dir", "~/.cad-forge")
    return Path(raw).expanduser()


def state_file(config: dict) -> Path:
    return state_dir(config) / "state.json"


def renders_dir(config: dict) -> Path:
    return state_dir(config) / "renders"


def get_api_key() -> str | None:
    key = os.environ.get(API_KEY_ENV_VAR, "").strip()
    return key or None
