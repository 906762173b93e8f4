"""Application configuration (LLM connection, project directory, logging).

Values are resolved in three layers, later ones winning:

    _CONFIG_DEFAULTS  ->  {project_dir}/config.json  ->  environment

Environment variables (a `.env` file is read by load_env()):

    OPENAI_API_KEY      llm.api_key
    SPICA_LLM_URL       llm.url
    SPICA_LLM_FORMAT    llm.format        "openai" | "koboldcpp"
    SPICA_LLM_MODEL     llm.model
    SPICA_LLM_TIMEOUT   llm.timeout       seconds
    SPICA_PROJECT_DIR   project_dir       also where config.json lives
    LOG_LEVEL           log_level
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from spica_writer.llm import HttpLLM

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent
DEFAULT_PROJECT_DIR = "data"

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm": {
        "url": "https://api.openai.com",
        "format": "openai",
        "model": "gpt-4o-mini",
        "api_key": "",
        "timeout": 120.0,
    },
    "project_dir": DEFAULT_PROJECT_DIR,
    "log_level": "INFO",
}

_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "OPENAI_API_KEY": ("llm", "api_key"),
    "SPICA_LLM_URL": ("llm", "url"),
    "SPICA_LLM_FORMAT": ("llm", "format"),
    "SPICA_LLM_MODEL": ("llm", "model"),
    "SPICA_LLM_TIMEOUT": ("llm", "timeout"),
    "SPICA_PROJECT_DIR": ("project_dir",),
    "LOG_LEVEL": ("log_level",),
}

_LLM_FORMATS = ("openai", "koboldcpp")


def load_env(path: Path | None = None) -> bool:
    """Load a .env file into os.environ without overriding set variables."""
    return load_dotenv(path or ROOT / ".env")


def project_dir() -> Path:
    return Path(os.getenv("SPICA_PROJECT_DIR", DEFAULT_PROJECT_DIR))


def _config_path() -> Path:
    return project_dir() / "config.json"


def _merge(config: dict[str, Any], fields: dict[str, Any]) -> None:
    if isinstance(fields.get("llm"), dict):
        config["llm"].update(
            {k: v for k, v in fields["llm"].items() if k in _CONFIG_DEFAULTS["llm"]}
        )
    for key in ("project_dir", "log_level"):
        if key in fields:
            config[key] = fields[key]


def _stored_config() -> dict[str, Any]:
    """Defaults merged with config.json, without environment overrides."""
    config = copy.deepcopy(_CONFIG_DEFAULTS)
    path = _config_path()
    if path.is_file():
        _merge(config, json.loads(path.read_text()))
    return config


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and the environment."""
    config = _stored_config()
    for var, keys in _ENV_OVERRIDES.items():
        value = os.getenv(var)
        if not value:
            continue
        target = config
        for key in keys[:-1]:
            target = target[key]
        target[keys[-1]] = value

    try:
        config["llm"]["timeout"] = float(config["llm"]["timeout"])
    except (TypeError, ValueError):
        logger.warning("Invalid LLM timeout %r, using default", config["llm"]["timeout"])
        config["llm"]["timeout"] = _CONFIG_DEFAULTS["llm"]["timeout"]
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into the stored config and persist. Returns the full config.

    Environment values are never written to disk.
    """
    config = _stored_config()
    _merge(config, fields)
    path = _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2))
    return get_config()


def build_llm(config: dict[str, Any] | None = None) -> HttpLLM:
    llm = (config or get_config())["llm"]
    if llm["format"] not in _LLM_FORMATS:
        raise ValueError(
            f"Unknown LLM format {llm['format']!r}, expected one of {', '.join(_LLM_FORMATS)}"
        )
    return HttpLLM(
        provider_url=llm["url"],
        api_key=llm["api_key"],
        provider_format=llm["format"],
        model=llm["model"],
        timeout=float(llm["timeout"]),
    )


def configure_logging(level: str | None = None) -> None:
    """Install a root handler. The level defaults to the configured log_level."""
    name = (level or get_config()["log_level"]).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
