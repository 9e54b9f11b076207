"""Configuration file loading and merging for forkchat.

Reads TOML config from ~/.config/forkchat/config.toml (global) and
<base_dir>/forkchat.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigurationError

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "model": str,
    "temperature": (int, float),
    "system_prompt": str,
    "data_dir": str,
    "quiet": bool,
    "color": bool,
    "primary_provider": str,
    "secondary_provider": str,
    "fallback_model": str,
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": None,
    "model": None,
    "temperature": 0.7,
    "system_prompt": None,
    "data_dir": None,
    "quiet": False,
    "color": False,
    "no_color": False,
}

_PROVIDER_FIELD_TYPES: dict[str, type] = {
    "base_url": str,
    "api_key": str,
    "api_key_env": str,
    "models": dict,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "forkchat"
    return Path.home() / ".config" / "forkchat"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types of flat keys. Prints warnings for unknown keys."""
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject it for numeric fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigurationError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigurationError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )


def _validate_provider_configs(providers: dict, source: str) -> None:
    for name, cfg in providers.items():
        prefix = f"{source}: providers.{name}"
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"{prefix} must be a table")
        for field, value in cfg.items():
            expected = _PROVIDER_FIELD_TYPES.get(field)
            if expected is None:
                print(f"warning: {prefix}: unknown field {field!r}", file=sys.stderr)
                continue
            if not isinstance(value, expected):
                raise ConfigurationError(
                    f"{prefix}.{field}: expected {expected.__name__}, "
                    f"got {type(value).__name__}"
                )
        models = cfg.get("models")
        if models is not None:
            if not models:
                raise ConfigurationError(f"{prefix}.models must not be empty")
            for key, remote in models.items():
                if not isinstance(remote, str):
                    raise ConfigurationError(
                        f"{prefix}.models.{key}: expected string, got {type(remote).__name__}"
                    )
        for field in list(cfg):
            if field not in _PROVIDER_FIELD_TYPES:
                del cfg[field]


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve data_dir against the config file's parent directory."""
    if "data_dir" in config:
        expanded = Path(config["data_dir"]).expanduser()
        if expanded.is_absolute():
            config["data_dir"] = str(expanded)
        else:
            config["data_dir"] = str(config_dir / config["data_dir"])


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if an api_key is set in a project config inside a git repo."""
    if not any("api_key" in p for p in config.get("providers", {}).values()):
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using api_key_env.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"{label}: cannot read file: {e}") from e

    # Nested table, validated separately from the flat keys
    providers = config.pop("providers", None)

    _validate_config(config, label)
    known = {k: v for k, v in config.items() if k in CONFIG_KEYS}

    if providers is not None:
        if not isinstance(providers, dict):
            raise ConfigurationError(f"{label}: 'providers' must be a table")
        _validate_provider_configs(providers, label)
        known["providers"] = providers

    return known


def merge_provider_configs(global_providers: dict | None, project_providers: dict | None) -> dict:
    """Merge provider tables field by field. Project wins on conflicts."""
    merged: dict[str, dict] = {}
    for source in (global_providers, project_providers):
        for name, cfg in (source or {}).items():
            merged.setdefault(name, {}).update(cfg)
    return merged


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with config-canonical keys plus an optional
    ``providers`` table. Only keys actually set in config files are
    included (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    _resolve_paths(global_config, global_path.parent)

    project_path = Path(base_dir).resolve() / "forkchat.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)
        _resolve_paths(project_config, project_path.parent)

    global_providers = global_config.pop("providers", None)
    project_providers = project_config.pop("providers", None)
    merged = {**global_config, **project_config}

    providers = merge_provider_configs(global_providers, project_providers)
    if providers:
        merged["providers"] = providers
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to the argparse namespace where the CLI didn't set one.

    Remaining _UNSET sentinels are then replaced by hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive color pair
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color" or key not in _ARGPARSE_DEFAULTS:
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# forkchat configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/forkchat.toml' if project else '~/.config/forkchat/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Provider / model ---",
        '# provider = "openrouter"',
        '# model = "qwen3"',
        "# temperature = 0.7",
        '# system_prompt = "You are a helpful assistant."',
        "",
        "# --- Fallback ---",
        '# primary_provider = "openrouter"',
        '# secondary_provider = "huggingface"',
        '# fallback_model = "llama"',
        "",
        "# --- Storage ---",
        '# data_dir = "~/.local/share/forkchat/agents"',
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
        "# --- Providers ---",
        "# [providers.openrouter]",
        '# api_key_env = "OPENROUTER_API_KEY"',
        "",
        "# [providers.local]",
        '# base_url = "http://127.0.0.1:1234/v1"',
        '# api_key = "lm-studio"',
        '# models = { default = "qwen/qwen3-8b" }',
        "",
    ]
    return "\n".join(lines)
