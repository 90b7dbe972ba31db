"""Typed settings for mailferry runs.

Settings live in an optional JSON file (``~/.mailferry/config.json`` by
default). Values are validated with Pydantic, then environment variables
and finally command line flags override them.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError


DEFAULT_HOME = Path.home() / ".mailferry"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"


class RemoteSettings(BaseModel):
    """Where the indexing server listens."""

    host: str = Field(default="localhost", description="Indexing server host")
    port: int = Field(default=8042, ge=1, le=65535, description="Indexing server port")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout")
    max_retries: int = Field(
        default=0, ge=0, le=10, description="Retries for transport failures"
    )


class IngestSettings(BaseModel):
    """Top-level configuration for an ingestion run."""

    state_dir: Path = Field(
        default=DEFAULT_HOME / "state", description="Directory for resume state files"
    )
    store_dir: Optional[Path] = Field(
        default=None, description="Local storage root; remote submission when unset"
    )
    bad_message_path: Path = Field(
        default=Path("bad-message.txt"),
        description="File receiving the raw message that aborted a run",
    )
    report_interval_seconds: float = Field(
        default=5.0, gt=0, description="Seconds between throughput lines"
    )
    imap_page_size: int = Field(
        default=100, ge=1, le=2000, description="Messages fetched per IMAP round trip"
    )
    remote: RemoteSettings = Field(default_factory=RemoteSettings)

    @field_validator("state_dir", "store_dir")
    @classmethod
    def _expand(cls, value: Optional[Path]) -> Optional[Path]:  # type: ignore[override]
        if value is None:
            return None
        return value.expanduser()


def load_settings(
    path: Optional[Path] = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
) -> IngestSettings:
    """Load settings from disk, environment and explicit overrides.

    A missing file at the default location is not an error; a missing file
    that was asked for explicitly is.
    """

    data: Dict[str, Any] = {}
    config_path = path or DEFAULT_CONFIG_PATH
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Settings file {config_path} is not valid JSON: {exc}"
            ) from exc
    elif path is not None:
        raise ConfigurationError(f"Settings file not found at {config_path}")

    data = _apply_env_overrides(data)
    data = _apply_overrides(data, overrides or {})
    try:
        return IngestSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _apply_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict):
            merged[key] = _apply_overrides(dict(merged.get(key) or {}), value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    _set_env_override(data, "state_dir", "MAILFERRY_STATE_DIR")
    _set_env_override(data, "store_dir", "MAILFERRY_STORE_DIR")
    _set_env_override(data, "bad_message_path", "MAILFERRY_BAD_MESSAGE_PATH")
    remote = dict(data.get("remote") or {})
    _set_env_override(remote, "host", "MAILFERRY_SERVER_HOST")
    _set_env_override(remote, "port", "MAILFERRY_SERVER_PORT", cast_int=True)
    if remote:
        data["remote"] = remote
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_int: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    if not cast_int:
        mapping[key] = raw
        return
    try:
        mapping[key] = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"Environment variable {env_name} must be an integer, got {raw!r}"
        ) from exc


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_HOME",
    "IngestSettings",
    "RemoteSettings",
    "load_settings",
]
