from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from feedcore.constants import (
    DURABLE_CACHE_DIR,
    DURABLE_CACHE_TTL,
    EVENT_LOG_MAX_EVENTS,
    EVENT_SWEEP_INTERVAL,
    GENERATION_TIMEOUT,
    LLM_MAX_RETRIES,
    MEMORY_CACHE_TTL,
    OLLAMA_BASE_URL,
    OLLAMA_DEFAULT_MODEL,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_MS,
)

CONFIG_DIR = Path.home() / ".config" / "feedcore"
CONFIG_FILE = CONFIG_DIR / "config.json"
ENV_PREFIX = "FEEDCORE_"


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return json.load(f)
    except Exception:
        return {}


def save_config(key: str, value: Any):
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config[key] = value
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


@dataclass
class Settings:
    """Runtime settings: constants, overridden by config file, then env."""

    use_mock_data: bool = True
    ollama_base_url: str = OLLAMA_BASE_URL
    ollama_model: str = OLLAMA_DEFAULT_MODEL
    generation_timeout: float = GENERATION_TIMEOUT
    generation_max_retries: int = LLM_MAX_RETRIES
    rate_limit_max_requests: int = RATE_LIMIT_MAX_REQUESTS
    rate_limit_window_ms: int = RATE_LIMIT_WINDOW_MS
    memory_cache_ttl: int = MEMORY_CACHE_TTL
    durable_cache_ttl: int = DURABLE_CACHE_TTL
    durable_cache_dir: str = DURABLE_CACHE_DIR
    event_log_max_events: int = EVENT_LOG_MAX_EVENTS
    event_sweep_interval: int = EVENT_SWEEP_INTERVAL
    log_level: str = "INFO"


def _coerce(raw: Any, current: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in {"1", "true", "yes", "on"}
        return bool(raw)
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return str(raw)


def load_settings(overrides: dict[str, Any] | None = None) -> Settings:
    settings = Settings()
    sources: list[dict[str, Any]] = [load_config()]
    sources.append(
        {
            f.name: os.environ[ENV_PREFIX + f.name.upper()]
            for f in fields(Settings)
            if ENV_PREFIX + f.name.upper() in os.environ
        }
    )
    if overrides:
        sources.append(overrides)

    for source in sources:
        for f in fields(Settings):
            if f.name not in source:
                continue
            current = getattr(settings, f.name)
            try:
                setattr(settings, f.name, _coerce(source[f.name], current))
            except (TypeError, ValueError):
                # Keep the previous value for malformed overrides
                continue
    return settings
