"""Command dispatcher and interactive read loop."""

import contextlib
import sys

from . import fmt
from .client import CompletionClient
from .errors import UserInputError
from .session import SessionState
from .store import default_data_dir

HELP_TEXT = (
    "Available commands:\n"
    "  /fork <id>         Start a new agent with an empty history\n"
    "  /subfork <id>      Start a new agent with a copy of the current history\n"
    "  /switch <id>       Switch to an existing agent\n"
    "  /delete <id>       Delete an agent and its stored history\n"
    "  /list              List agents\n"
    "  /models            List models of the current provider\n"
    "  /model <name>      Select a model of the current provider\n"
    "  /providers         List providers\n"
    "  /provider <name>   Select a provider (resets the model)\n"
    "  /status            Show provider, model, agent and history size\n"
    "  /quiet, /normal    Toggle minimal output\n"
    "  /help              Show this help message\n"
    "  /exit, /quit       Save and exit\n"
    "Anything else is sent to the active agent."
)

# Commands that take a required argument -> placeholder shown in usage
_ARG_COMMANDS = {
    "/fork": "id",
    "/subfork": "id",
    "/switch": "id",
    "/delete": "id",
    "/model": "name",
    "/provider": "name",
}


# ---------------------------------------------------------------------------
# REPL command helpers
# ---------------------------------------------------------------------------


def _repl_help() -> None:
    fmt.output(HELP_TEXT)


def _repl_fork(state: SessionState, arg: str) -> None:
    agent_id = state.fork(arg)
    if state.verbose:
        fmt.notice(f"forked new agent {agent_id!r} with an empty history")


def _repl_subfork(state: SessionState, arg: str) -> None:
    source = state.active
    agent_id = state.subfork(arg)
    if state.verbose:
        fmt.notice(
            f"subforked {source!r} into {agent_id!r} ({len(state.history)} entries copied)"
        )


def _repl_switch(state: SessionState, arg: str) -> None:
    agent_id = state.switch(arg)
    if state.verbose:
        fmt.notice(f"switched to agent {agent_id!r} ({len(state.history)} entries)")


def _repl_delete(state: SessionState, arg: str) -> None:
    agent_id, was_active = state.delete(arg)
    if was_active:
        fmt.notice(f"deleted active agent {agent_id!r}, switched back to {state.active!r}")
    elif state.verbose:
        fmt.notice(f"deleted agent {agent_id!r}")


def _repl_list(state: SessionState) -> None:
    for agent_id in state.list_agents():
        if state.verbose:
            marker = "*" if agent_id == state.active else " "
            fmt.output(f"{marker} {agent_id}")
        else:
            fmt.output(agent_id)


def _repl_models(state: SessionState) -> None:
    for model in state.models():
        if state.verbose:
            marker = "*" if model == state.selection.model else " "
            remote = state.registry.get(state.selection.provider).models[model]
            fmt.output(f"{marker} {model} ({remote})")
        else:
            fmt.output(model)


def _repl_providers(state: SessionState) -> None:
    for name in state.registry.names():
        if state.verbose:
            marker = "*" if name == state.selection.provider else " "
            suffix = "" if state.registry.has_credential(name) else "  (no API key)"
            fmt.output(f"{marker} {name}{suffix}")
        else:
            fmt.output(name)


def _repl_model(state: SessionState, arg: str) -> None:
    model = state.select_model(arg)
    if state.verbose:
        fmt.notice(f"model set to {model!r}")


def _repl_provider(state: SessionState, arg: str) -> None:
    model = state.select_provider(arg)
    provider = state.selection.provider
    if not state.registry.has_credential(provider):
        fmt.warning(f"no API key configured for provider {provider!r}")
    if state.verbose:
        fmt.notice(f"provider set to {provider!r}, model reset to {model!r}")


def _repl_status(state: SessionState) -> None:
    s = state.status()
    if state.verbose:
        fmt.output(
            f"provider: {s.provider}\n"
            f"model:    {s.model}\n"
            f"agent:    {s.agent}\n"
            f"history:  {s.entries} entries"
        )
    else:
        fmt.output(
            f"provider={s.provider} model={s.model} agent={s.agent} entries={s.entries}"
        )


def _repl_set_mode(state: SessionState, verbose: bool) -> None:
    state.verbose = verbose
    if verbose:
        fmt.notice("normal mode")


# ---------------------------------------------------------------------------
# Chat turns
# ---------------------------------------------------------------------------


def chat_turn(state: SessionState, client: CompletionClient, line: str) -> str | None:
    """Send one user line to the active agent.

    The history grows by the (user, assistant) pair only when a reply
    arrives; on failure it is left untouched.
    """
    turns = state.request_turns(line)
    spinner = fmt.llm_spinner() if state.verbose else contextlib.nullcontext()
    try:
        with spinner:
            reply = client.complete(state.selection, turns, verbose=state.verbose)
    except KeyboardInterrupt:
        fmt.warning("interrupted, nothing recorded.")
        return None

    if reply is None:
        fmt.warning("no response")
        return None

    state.record_round(line, reply)
    fmt.reply(state.active, reply, quiet=not state.verbose)
    return reply


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def handle_line(state: SessionState, client: CompletionClient, line: str) -> bool:
    """Process one line of input. Returns False when the session should end."""
    line = line.strip()
    if not line:
        return True

    if not line.startswith("/"):
        chat_turn(state, client, line)
        return True

    cmd_parts = line.split(None, 1)
    cmd = cmd_parts[0].lower()
    cmd_arg = cmd_parts[1].strip() if len(cmd_parts) > 1 else ""

    if cmd in ("/exit", "/quit"):
        return False

    try:
        if cmd in _ARG_COMMANDS and not cmd_arg:
            raise UserInputError(f"usage: {cmd} <{_ARG_COMMANDS[cmd]}>")

        if cmd == "/help":
            _repl_help()
        elif cmd == "/fork":
            _repl_fork(state, cmd_arg)
        elif cmd == "/subfork":
            _repl_subfork(state, cmd_arg)
        elif cmd == "/switch":
            _repl_switch(state, cmd_arg)
        elif cmd == "/delete":
            _repl_delete(state, cmd_arg)
        elif cmd == "/list":
            _repl_list(state)
        elif cmd == "/models":
            _repl_models(state)
        elif cmd == "/model":
            _repl_model(state, cmd_arg)
        elif cmd == "/providers":
            _repl_providers(state)
        elif cmd == "/provider":
            _repl_provider(state, cmd_arg)
        elif cmd == "/status":
            _repl_status(state)
        elif cmd == "/quiet":
            _repl_set_mode(state, False)
        elif cmd == "/normal":
            _repl_set_mode(state, True)
        else:
            raise UserInputError(f"unknown command {cmd} (type /help for a list)")
    except UserInputError as e:
        fmt.error(str(e))
    return True


# ---------------------------------------------------------------------------
# Read loop
# ---------------------------------------------------------------------------


def _input_history():
    """File-backed prompt history, or an in-memory one if the file is unusable."""
    from prompt_toolkit.history import FileHistory, InMemoryHistory

    history_path = default_data_dir().parent / "repl_history"
    try:
        history_path.parent.mkdir(parents=True, exist_ok=True)
        return FileHistory(str(history_path))
    except OSError as e:
        fmt.warning(f"could not use input history {history_path}: {e}, keeping it in memory")
        return InMemoryHistory()


def _prompt_lines(state: SessionState):
    """Yield lines typed at an interactive prompt until Ctrl-D."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText

    session = PromptSession(
        history=_input_history(),
        enable_history_search=True,
    )

    while True:
        prompt_text = FormattedText([("bold fg:ansigreen", f"forkchat:{state.active}> ")])
        try:
            yield session.prompt(prompt_text)
        except KeyboardInterrupt:
            continue
        except EOFError:
            print(file=sys.stderr)  # newline after ^D
            return


def repl_loop(state: SessionState, client: CompletionClient) -> None:
    """Interactive read-eval-print loop.

    Ends on /exit or end of input; the active history is flushed on the
    way out.
    """
    if sys.stdin.isatty():
        lines = _prompt_lines(state)
        if state.verbose:
            fmt.repl_banner(state.active)
    else:
        lines = iter(sys.stdin)

    for line in lines:
        if not handle_line(state, client, line):
            break

    state.flush()
    if state.verbose:
        fmt.farewell()
