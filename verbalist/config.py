"""Persisted configuration management."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from .models import Config

CONFIG_PATH = (Path.home() / ".verbalist" / "config.json").expanduser()

AVAILABLE_LLM_MODELS = ("llama3-8b-8192", "llama3-70b-8192")
AVAILABLE_WHISPER_MODELS = ("whisper-large-v3",)
SORT_POLICIES = ("newest", "oldest", "alphabetical", "incomplete_first")

ENV_OVERRIDES = {
    "GROQ_API_KEY": "groq_api_key",
    "GROQ_LLM_MODEL": "llm_model",
    "GROQ_WHISPER_MODEL": "whisper_model",
}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or saved."""


def load_config(apply_env: bool = True) -> Config:
    """Read the config file, then layer environment overrides on top."""

    config = _read_config_file()
    if apply_env:
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                setattr(config, key, value)
    return validate_models(config)


def _read_config_file() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
    return Config(**payload)


def validate_models(config: Config) -> Config:
    if config.llm_model not in AVAILABLE_LLM_MODELS:
        logging.debug("Unknown LLM model %s; using %s.", config.llm_model, AVAILABLE_LLM_MODELS[0])
        config.llm_model = AVAILABLE_LLM_MODELS[0]
    if config.whisper_model not in AVAILABLE_WHISPER_MODELS:
        logging.debug("Unknown whisper model %s; using %s.", config.whisper_model, AVAILABLE_WHISPER_MODELS[0])
        config.whisper_model = AVAILABLE_WHISPER_MODELS[0]
    if config.sort_policy not in SORT_POLICIES:
        raise ConfigError(f"Unknown sort policy: {config.sort_policy}")
    return config


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = load_config(apply_env=False)
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    validate_models(config)
    save_config(config)
    return config
