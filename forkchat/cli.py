import argparse
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .client import CompletionClient
from .config import _UNSET, apply_config_to_args, generate_config, load_config
from .errors import ConfigurationError
from .providers import ProviderRegistry, Selection, build_registry
from .repl import repl_loop
from .session import SessionState
from .store import AgentStore, default_data_dir


def build_parser():
    """Build and return the argument parser.

    Defaults are the _UNSET sentinel so that config files can fill in
    whatever the command line left out.
    """
    parser = argparse.ArgumentParser(
        prog="forkchat",
        description="Chat with LLM agents you can fork, switch between, and keep on disk.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Start in quiet mode: bare replies, no decorations or diagnostics.",
    )
    parser.add_argument(
        "--provider",
        type=str,
        default=_UNSET,
        help="Provider to start with (default: the primary provider).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model key to start with (default: the provider's first model).",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=_UNSET,
        help="Directory holding agent histories (default: ~/.local/share/forkchat/agents).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: 0.7).",
    )
    parser.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="System prompt sent ahead of every conversation.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a template config file and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, print the project (./forkchat.toml) template instead.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when the output is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when the output is a TTY.",
    )

    return parser


def initial_selection(
    registry: ProviderRegistry, provider: str | None, model: str | None
) -> Selection:
    """Validate the startup provider/model, falling back to defaults with an error."""
    if provider is None:
        provider = registry.primary
    elif provider not in registry:
        fmt.error(f"unknown provider {provider!r}, using {registry.primary!r}")
        provider = registry.primary

    default_model = registry.get(provider).default_model
    if model is None:
        model = default_model
    elif not registry.has_model(provider, model):
        fmt.error(
            f"model {model!r} is not available on provider {provider!r}, using {default_model!r}"
        )
        model = default_model
    return Selection(provider=provider, model=model)


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("forkchat")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.project))
        sys.exit(0)

    config_error = None
    try:
        config = load_config(Path.cwd())
    except ConfigurationError as e:
        config_error = e
        config = {}
    apply_config_to_args(args, config)

    fmt.init(color=args.color, no_color=args.no_color)
    if config_error is not None:
        fmt.error(f"{config_error} (continuing with defaults)")

    try:
        registry = build_registry(config)
    except ConfigurationError as e:
        fmt.error(f"{e} (continuing with built-in providers)")
        registry = build_registry()

    selection = initial_selection(registry, args.provider, args.model)
    store = AgentStore(args.data_dir or default_data_dir())
    state = SessionState.open(store, registry, selection, verbose=not args.quiet)
    client = CompletionClient(
        registry,
        temperature=args.temperature,
        system_prompt=args.system_prompt,
    )

    repl_loop(state, client)
    sys.exit(0)


if __name__ == "__main__":
    main()
