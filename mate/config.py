"""Settings loader: defaults, optional YAML file, then environment overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

logger = structlog.get_logger()

DEFAULT_CONFIG_RELPATH = Path("config") / "mate.yaml"
SIMPLE_RUNNERS = {"cli", "sdk"}
PROVIDER_NAMES = {"anthropic", "openai", "groq"}


class SettingsError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(frozen=True)
class Settings:
    bot_name: str = "Mate"
    telegram_token: str | None = None
    allowed_users: tuple[str, ...] = ()
    data_dir: Path = Path("data")
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    groq_api_key: str | None = None
    ai_provider: str | None = None
    ai_model: str | None = None
    log_level: str = "INFO"
    log_json: bool = False
    rate_limit_capacity: float = 10.0
    rate_limit_refill_rate: float = 0.5
    rate_limit_idle_seconds: float = 3600.0
    rate_limit_cleanup_interval: float = 300.0
    conversation_max_messages: int = 100
    simple_history_limit: int = 20
    flow_history_limit: int = 30
    simple_timeout_seconds: float = 120.0
    flow_timeout_seconds: float = 300.0
    simple_max_output_bytes: int = 1024 * 1024
    simple_runner: str = "cli"
    cli_command: str = "claude"
    flow_max_tokens: int = 16000
    flow_thinking_budget: int = 10000
    flow_fallback_to_simple: bool = True
    extended_thinking: bool = True
    recent_notes_limit: int = 5
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "mate.db"

    @property
    def memory_root(self) -> Path:
        return self.data_dir

    def api_key_for(self, provider: str) -> str | None:
        return {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "groq": self.groq_api_key,
        }.get(provider)


_INT_FIELDS = {
    "conversation_max_messages",
    "simple_history_limit",
    "flow_history_limit",
    "simple_max_output_bytes",
    "flow_max_tokens",
    "flow_thinking_budget",
    "recent_notes_limit",
}
_FLOAT_FIELDS = {
    "rate_limit_capacity",
    "rate_limit_refill_rate",
    "rate_limit_idle_seconds",
    "rate_limit_cleanup_interval",
    "simple_timeout_seconds",
    "flow_timeout_seconds",
}
_BOOL_FIELDS = {"log_json", "flow_fallback_to_simple", "extended_thinking"}

_ENV_MAP = {
    "TELEGRAM_BOT_TOKEN": "telegram_token",
    "TELEGRAM_ALLOWED_USERS": "allowed_users",
    "DATA_DIR": "data_dir",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
    "OPENAI_API_KEY": "openai_api_key",
    "GROQ_API_KEY": "groq_api_key",
    "AI_PROVIDER": "ai_provider",
    "AI_MODEL": "ai_model",
    "BOT_NAME": "bot_name",
    "LOG_LEVEL": "log_level",
    "LOG_JSON": "log_json",
    "SIMPLE_RUNNER": "simple_runner",
}


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off", ""}:
        return False
    raise SettingsError(f"{name} must be a boolean, got {value!r}")


def _parse_users(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return tuple(item.strip() for item in items if item.strip())


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        try:
            out = int(value)
        except (TypeError, ValueError) as exc:
            raise SettingsError(f"{name} must be an integer, got {value!r}") from exc
        if out <= 0:
            raise SettingsError(f"{name} must be positive")
        return out
    if name in _FLOAT_FIELDS:
        try:
            out_f = float(value)
        except (TypeError, ValueError) as exc:
            raise SettingsError(f"{name} must be a number, got {value!r}") from exc
        if out_f <= 0:
            raise SettingsError(f"{name} must be positive")
        return out_f
    if name in _BOOL_FIELDS:
        return _parse_bool(name, value)
    if name == "allowed_users":
        return _parse_users(value)
    if name == "data_dir":
        return Path(str(value)).expanduser()
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise SettingsError(f"Config file must contain a mapping: {path}")
    return raw


def load_settings(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    repo_root: Path | None = None,
) -> Settings:
    """Build Settings from defaults, YAML file and environment (in that order)."""
    if env is None:
        env = os.environ
    if repo_root is None:
        repo_root = Path(__file__).resolve().parent.parent

    values: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    known = set(Settings.__dataclass_fields__) - {"extra"}

    path = config_path or (repo_root / DEFAULT_CONFIG_RELPATH)
    if config_path is not None and not config_path.exists():
        raise SettingsError(f"Config file not found: {config_path}")
    if path.exists():
        for key, value in _read_yaml(path).items():
            if key in known:
                values[key] = _coerce(key, value)
            else:
                extra[key] = value

    for env_name, field_name in _ENV_MAP.items():
        if env_name in env and str(env[env_name]).strip() != "":
            values[field_name] = _coerce(field_name, env[env_name])

    settings = Settings(**values, extra=extra)
    if settings.simple_runner not in SIMPLE_RUNNERS:
        raise SettingsError(
            f"simple_runner must be one of {sorted(SIMPLE_RUNNERS)}, got {settings.simple_runner!r}"
        )
    if settings.ai_provider is not None and settings.ai_provider not in PROVIDER_NAMES:
        raise SettingsError(f"Unknown AI provider: {settings.ai_provider}")
    return settings


def load_web_config(data_dir: Path) -> dict[str, Any]:
    """Read the admin UI's config.json; empty dict when missing or unreadable."""
    path = data_dir / "config.json"
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug("web_config_unreadable", path=str(path), error=str(exc))
        return {}
    return raw if isinstance(raw, dict) else {}


def ensure_data_directories(settings: Settings) -> None:
    """Create the storage root without touching existing data."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    (settings.data_dir / "memory").mkdir(parents=True, exist_ok=True)
