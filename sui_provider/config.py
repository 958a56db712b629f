"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderConfig:
    endpoint: str = ""
    ws_endpoint: str | None = None
    ws_port: int = 9001
    request_timeout: float = 30.0
    call_timeout: float = 30.0
    heartbeat: float | None = 20.0
    subscribe_method: str = "sui_subscribeEvent"


@dataclass(frozen=True)
class ReconnectConfig:
    interval: float = 3.0
    backoff_factor: float = 1.0
    max_interval: float = 30.0
    jitter: float = 0.0
    max_attempts: int | None = None


@dataclass(frozen=True)
class AppConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _get(raw: dict[str, Any], key: str, default: Any) -> Any:
    """``raw[key]``, or ``default`` when the key is missing, null or empty."""
    value = raw.get(key)
    return default if value is None or value == "" else value


def _build_provider(raw: dict[str, Any]) -> ProviderConfig:
    return ProviderConfig(
        endpoint=_get(raw, "endpoint", ""),
        ws_endpoint=raw.get("ws_endpoint") or None,
        ws_port=int(_get(raw, "ws_port", 9001)),
        request_timeout=float(_get(raw, "request_timeout", 30.0)),
        call_timeout=float(_get(raw, "call_timeout", 30.0)),
        heartbeat=_optional_float(raw.get("heartbeat", 20.0)),
        subscribe_method=_get(raw, "subscribe_method", "sui_subscribeEvent"),
    )


def _build_reconnect(raw: dict[str, Any]) -> ReconnectConfig:
    return ReconnectConfig(
        interval=float(_get(raw, "interval", 3.0)),
        backoff_factor=float(_get(raw, "backoff_factor", 1.0)),
        max_interval=float(_get(raw, "max_interval", 30.0)),
        jitter=float(_get(raw, "jitter", 0.0)),
        max_attempts=_optional_int(raw.get("max_attempts")),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate provider configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    try:
        cfg = AppConfig(
            provider=_build_provider(raw.get("provider") or {}),
            reconnect=_build_reconnect(raw.get("reconnect") or {}),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value in {config_path}: {e}") from e

    validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    provider = cfg.provider
    if not provider.endpoint:
        raise ValueError("provider.endpoint must be set")
    if urlsplit(provider.endpoint).scheme not in ("http", "https"):
        raise ValueError(
            f"provider.endpoint must be an http(s) URL, got '{provider.endpoint}'"
        )
    if provider.ws_endpoint and urlsplit(provider.ws_endpoint).scheme not in ("ws", "wss"):
        raise ValueError(
            f"provider.ws_endpoint must be a ws(s) URL, got '{provider.ws_endpoint}'"
        )
    if not 1 <= provider.ws_port <= 65535:
        raise ValueError(f"provider.ws_port out of range: {provider.ws_port}")
    if provider.request_timeout <= 0 or provider.call_timeout <= 0:
        raise ValueError("provider timeouts must be positive")
    if provider.heartbeat is not None and provider.heartbeat <= 0:
        raise ValueError("provider.heartbeat must be positive or null")

    reconnect = cfg.reconnect
    if reconnect.interval <= 0:
        raise ValueError("reconnect.interval must be positive")
    if reconnect.backoff_factor < 1:
        raise ValueError("reconnect.backoff_factor must be >= 1")
    if not 0 <= reconnect.jitter <= 1:
        raise ValueError("reconnect.jitter must be between 0 and 1")
    if reconnect.max_attempts is not None and reconnect.max_attempts < 1:
        raise ValueError("reconnect.max_attempts must be >= 1 or null")
