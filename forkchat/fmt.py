"""ANSI-formatted terminal output using Rich.

Diagnostics go to stderr; replies and command listings go to stdout so
that quiet mode stays pipe-friendly.
"""

from rich.console import Console
from rich.text import Text

_console = Console(stderr=True)
_out = Console(soft_wrap=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _console, _out
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(stderr=True, **kwargs)
    _out = Console(soft_wrap=True, **kwargs)


# -- Conversation ------------------------------------------------------------


def reply(agent_id: str, text: str, *, quiet: bool = False) -> None:
    if quiet:
        _out.print(Text(text))
        return
    line = Text()
    line.append(f"[{agent_id}] ", style="bold blue")
    line.append(text)
    _out.print(line)


def llm_spinner(label: str = "Waiting for model"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def output(text: str) -> None:
    """Print an essential result line on stdout, without decoration."""
    _out.print(Text(text))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def notice(msg: str) -> None:
    line = Text()
    line.append("  ✓ ", style="green")
    line.append(msg, style="green")
    _console.print(line)


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(agent_id: str) -> None:
    _console.print(
        Text(
            f"Chatting with agent '{agent_id}'. Type /help for commands, /exit or Ctrl-D to quit.",
            style="dim",
        )
    )


def farewell() -> None:
    _console.print(Text("Goodbye.", style="dim"))
