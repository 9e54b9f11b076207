"""Provider registry: endpoints, credentials and model catalogs."""

import os
from dataclasses import dataclass, field

from .errors import ConfigurationError

PRIMARY_PROVIDER = "openrouter"
SECONDARY_PROVIDER = "huggingface"

# Model key -> remote model name. Dict order is the catalog order; the
# first entry is the provider's default model.
BUILTIN_PROVIDERS: dict[str, dict] = {
    "openrouter": {
        "base_url": "https://openrouter.ai/api/v1",
        "api_key_env": "OPENROUTER_API_KEY",
        "models": {
            "qwen3": "qwen/qwen3-235b-a22b",
            "glm": "z-ai/glm-4.6",
            "deepseek": "deepseek/deepseek-chat-v3.1",
            "free": "openrouter/free",
        },
    },
    "huggingface": {
        "base_url": "https://router.huggingface.co/v1",
        "api_key_env": "HF_TOKEN",
        "models": {
            "llama": "meta-llama/Llama-3.3-70B-Instruct",
            "qwen3": "Qwen/Qwen3-235B-A22B",
            "glm": "zai-org/GLM-4.6",
        },
    },
}


@dataclass
class Provider:
    name: str
    base_url: str
    api_key: str | None = None
    models: dict[str, str] = field(default_factory=dict)

    @property
    def default_model(self) -> str:
        return next(iter(self.models))


@dataclass
class Selection:
    """The currently selected (provider, model) pair.

    Mutable: the fallback policy reassigns it in place, and the change is
    visible to every later call in the session.
    """

    provider: str
    model: str


@dataclass
class Resolved:
    """Everything the remote call needs for one (provider, model) pair."""

    provider: str
    model: str
    base_url: str
    api_key: str
    remote_model: str


class ProviderRegistry:
    """Static mapping of provider key -> Provider, read once at startup.

    ``primary``/``secondary`` name the providers taking part in the
    fallback policy; ``fallback_model`` is the model selected on the
    secondary when the primary fails.
    """

    def __init__(
        self,
        providers: dict[str, Provider],
        *,
        primary: str = PRIMARY_PROVIDER,
        secondary: str = SECONDARY_PROVIDER,
        fallback_model: str | None = None,
    ):
        self.providers = providers
        self.primary = primary
        self.secondary = secondary
        if fallback_model is None and secondary in providers:
            fallback_model = providers[secondary].default_model
        self.fallback_model = fallback_model

    def __contains__(self, name: str) -> bool:
        return name in self.providers

    def names(self) -> list[str]:
        return list(self.providers)

    def get(self, name: str) -> Provider:
        try:
            return self.providers[name]
        except KeyError:
            raise ConfigurationError(f"unknown provider {name!r}") from None

    def has_model(self, provider: str, model: str) -> bool:
        return provider in self.providers and model in self.providers[provider].models

    def has_credential(self, name: str) -> bool:
        return name in self.providers and bool(self.providers[name].api_key)

    def resolve(self, provider: str, model: str) -> Resolved:
        """Look up the endpoint, credential and remote model name.

        Raises ConfigurationError when the model is not in the provider's
        catalog or the provider has no credential configured.
        """
        p = self.get(provider)
        if model not in p.models:
            raise ConfigurationError(
                f"model {model!r} is not available on provider {provider!r}"
            )
        if not p.api_key:
            raise ConfigurationError(f"no API key configured for provider {provider!r}")
        return Resolved(
            provider=provider,
            model=model,
            base_url=p.base_url,
            api_key=p.api_key,
            remote_model=p.models[model],
        )


def _resolve_api_key(spec: dict) -> str | None:
    if spec.get("api_key"):
        return spec["api_key"]
    env_name = spec.get("api_key_env")
    if env_name:
        return os.environ.get(env_name) or None
    return None


def build_registry(config: dict | None = None) -> ProviderRegistry:
    """Merge built-in providers with ``[providers.<name>]`` config tables.

    A config table for a built-in provider overrides only the fields it
    sets; a ``models`` table replaces the whole catalog.
    """
    config = config or {}
    specs: dict[str, dict] = {name: dict(spec) for name, spec in BUILTIN_PROVIDERS.items()}
    for name, override in (config.get("providers") or {}).items():
        merged = specs.setdefault(name, {})
        merged.update(override)
        if "base_url" not in merged:
            raise ConfigurationError(f"providers.{name}: 'base_url' is required")
        if not merged.get("models"):
            raise ConfigurationError(f"providers.{name}: 'models' must not be empty")

    providers = {
        name: Provider(
            name=name,
            base_url=spec["base_url"],
            api_key=_resolve_api_key(spec),
            models=dict(spec["models"]),
        )
        for name, spec in specs.items()
    }

    primary = config.get("primary_provider", PRIMARY_PROVIDER)
    secondary = config.get("secondary_provider", SECONDARY_PROVIDER)
    fallback_model = config.get("fallback_model")
    if primary not in providers:
        raise ConfigurationError(f"primary_provider {primary!r} is not a known provider")
    if secondary in providers and fallback_model is not None:
        if fallback_model not in providers[secondary].models:
            raise ConfigurationError(
                f"fallback_model {fallback_model!r} is not available on provider {secondary!r}"
            )
    return ProviderRegistry(
        providers,
        primary=primary,
        secondary=secondary,
        fallback_model=fallback_model,
    )
