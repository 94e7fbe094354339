"""Provider table and selection.

Selection priority: the admin UI's ``config.json`` (``models.reasoning``),
then ``AI_PROVIDER``, then anthropic. The model is the web config's model,
else ``AI_MODEL``, else the provider default.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from mate.config import Settings, load_web_config
from mate.llm.anthropic_provider import AnthropicProvider
from mate.llm.base import LLMAuthError, LLMError, LLMProvider
from mate.llm.openai_compat import GROQ_BASE, OPENAI_BASE, OpenAICompatibleProvider

DEFAULT_PROVIDER = "anthropic"


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    default_model: str
    supports_thinking: bool
    base_url: str | None = None


PROVIDERS: dict[str, ProviderInfo] = {
    "anthropic": ProviderInfo("anthropic", "claude-sonnet-4-20250514", True),
    "openai": ProviderInfo("openai", "gpt-4o", False, OPENAI_BASE),
    "groq": ProviderInfo("groq", "llama-3.3-70b-versatile", False, GROQ_BASE),
}


def _reasoning_config(web_config: dict[str, Any] | None) -> dict[str, Any]:
    models = (web_config or {}).get("models") or {}
    reasoning = models.get("reasoning") if isinstance(models, dict) else None
    return reasoning if isinstance(reasoning, dict) else {}


def get_active_provider(settings: Settings, web_config: dict[str, Any] | None = None) -> str:
    configured = _reasoning_config(web_config).get("provider")
    if isinstance(configured, str) and configured in PROVIDERS:
        return configured
    if settings.ai_provider in PROVIDERS:
        return str(settings.ai_provider)
    return DEFAULT_PROVIDER


def resolve_model(
    settings: Settings,
    provider: str,
    web_config: dict[str, Any] | None = None,
) -> str:
    reasoning = _reasoning_config(web_config)
    model = reasoning.get("model")
    if isinstance(model, str) and model.strip() and reasoning.get("provider", provider) == provider:
        return model.strip()
    if settings.ai_model:
        return settings.ai_model
    return PROVIDERS[provider].default_model


def supports_thinking(provider: str) -> bool:
    info = PROVIDERS.get(provider)
    return bool(info and info.supports_thinking)


def thinking_enabled(settings: Settings, web_config: dict[str, Any] | None = None) -> bool:
    features = (web_config or {}).get("features") or {}
    if isinstance(features, dict) and isinstance(features.get("extendedThinking"), bool):
        return features["extendedThinking"]
    return settings.extended_thinking


def build_provider(
    settings: Settings,
    name: str,
    model: str | None = None,
    *,
    timeout: float | None = None,
) -> LLMProvider:
    info = PROVIDERS.get(name)
    if info is None:
        raise LLMError(f"Unknown provider: {name}")
    api_key = settings.api_key_for(name)
    if not api_key:
        raise LLMAuthError(f"No API key configured for {name}")
    model = model or info.default_model
    if name == "anthropic":
        return AnthropicProvider(api_key, model, timeout=timeout)
    return OpenAICompatibleProvider(
        api_key,
        model,
        base_url=info.base_url,
        provider_name=name,
        timeout=timeout or settings.flow_timeout_seconds,
    )


@dataclass(frozen=True)
class ProviderSelection:
    name: str
    model: str
    thinking: bool


class ProviderSelector:
    """Picks the active provider per call so admin UI edits apply without restart."""

    def __init__(
        self,
        settings: Settings,
        *,
        web_config_loader: Callable[[Path], dict[str, Any]] = load_web_config,
        factory: Callable[..., LLMProvider] = build_provider,
    ) -> None:
        self._settings = settings
        self._load_web_config = web_config_loader
        self._factory = factory

    def select(self) -> ProviderSelection:
        web_config = self._load_web_config(self._settings.data_dir)
        name = get_active_provider(self._settings, web_config)
        return ProviderSelection(
            name=name,
            model=resolve_model(self._settings, name, web_config),
            thinking=supports_thinking(name) and thinking_enabled(self._settings, web_config),
        )

    def build(self, selection: ProviderSelection, *, timeout: float | None = None) -> LLMProvider:
        return self._factory(self._settings, selection.name, selection.model, timeout=timeout)
