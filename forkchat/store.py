"""Per-agent conversation history persistence.

Each agent's history lives in ``<data_dir>/<agent-id>.json``. Saves
replace the whole file atomically; there is no append-merge.
"""

import json
import os
import re
import tempfile
from pathlib import Path

from . import fmt
from .errors import PersistenceError

FORMAT_VERSION = 1
ROLES = ("user", "assistant")

_AGENT_FILE_RE = re.compile(r"^[a-z0-9_-]+$")


def default_data_dir() -> Path:
    """Return the agent data directory, respecting XDG_DATA_HOME."""
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "forkchat" / "agents"
    return Path.home() / ".local" / "share" / "forkchat" / "agents"


def _turns_from_strings(items: list) -> list[dict]:
    """Convert a bare list of strings into tagged turns by position parity."""
    turns = []
    for i, content in enumerate(items):
        if not isinstance(content, str):
            raise PersistenceError(f"entry {i}: expected string, got {type(content).__name__}")
        turns.append({"role": ROLES[i % 2], "content": content})
    return turns


def _validate_turns(turns: list) -> list[dict]:
    if len(turns) % 2:
        raise PersistenceError(f"odd number of turns ({len(turns)})")
    result = []
    for i, turn in enumerate(turns):
        if not isinstance(turn, dict):
            raise PersistenceError(f"turn {i}: expected object, got {type(turn).__name__}")
        role = turn.get("role")
        content = turn.get("content")
        if role != ROLES[i % 2]:
            raise PersistenceError(f"turn {i}: expected role {ROLES[i % 2]!r}, got {role!r}")
        if not isinstance(content, str):
            raise PersistenceError(f"turn {i}: content must be a string")
        result.append({"role": role, "content": content})
    return result


def decode_history(text: str) -> list[dict]:
    """Parse a stored history document. Raises PersistenceError on bad input."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"invalid JSON: {e}") from e

    if isinstance(data, list):
        return _validate_turns(_turns_from_strings(data))
    if not isinstance(data, dict) or not isinstance(data.get("turns"), list):
        raise PersistenceError("expected an object with a 'turns' list")
    return _validate_turns(data["turns"])


def encode_history(agent_id: str, history: list[dict]) -> str:
    doc = {
        "version": FORMAT_VERSION,
        "agent": agent_id,
        "turns": [{"role": t["role"], "content": t["content"]} for t in history],
    }
    return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


class AgentStore:
    """Reads and writes agent histories under a single data directory.

    Failures never propagate: ``load`` degrades to an empty history and
    ``save`` returns False. Load warnings are suppressed in quiet mode.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser()

    def path_for(self, agent_id: str) -> Path:
        """Build the history path, verify it resolves inside the data directory."""
        if not _AGENT_FILE_RE.match(agent_id):
            raise PersistenceError(f"invalid agent identifier {agent_id!r}")
        try:
            base = self.root.resolve()
            path = (self.root / f"{agent_id}.json").resolve()
        except (OSError, RuntimeError) as e:
            raise PersistenceError(f"cannot resolve history path: {e}") from e
        if not path.is_relative_to(base):
            raise PersistenceError(f"history path {path} escapes data directory {base}")
        return path

    def exists(self, agent_id: str) -> bool:
        try:
            return self.path_for(agent_id).is_file()
        except (PersistenceError, OSError):
            return False

    def list_ids(self) -> list[str]:
        """Agent identifiers that have a persisted history, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            p.stem
            for p in self.root.glob("*.json")
            if p.is_file() and _AGENT_FILE_RE.match(p.stem)
        )

    def load(self, agent_id: str, *, verbose: bool = True) -> list[dict]:
        try:
            path = self.path_for(agent_id)
            try:
                text = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return []
            except (OSError, UnicodeDecodeError) as e:
                raise PersistenceError(f"cannot read {path}: {e}") from e
            return decode_history(text)
        except PersistenceError as e:
            if verbose:
                fmt.warning(f"could not load history for agent {agent_id!r}: {e}")
            return []

    def save(self, agent_id: str, history: list[dict]) -> bool:
        try:
            path = self.path_for(agent_id)
            payload = encode_history(agent_id, history)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=path.parent, prefix=f".{agent_id}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(payload)
                    os.replace(tmp_name, path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise PersistenceError(f"cannot write {path}: {e}") from e
        except PersistenceError as e:
            fmt.warning(f"could not save history for agent {agent_id!r}: {e}")
            return False
        return True

    def delete(self, agent_id: str) -> bool:
        """Remove an agent's history file. A missing file counts as success."""
        try:
            path = self.path_for(agent_id)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"cannot remove {path}: {e}") from e
        except PersistenceError as e:
            fmt.warning(f"could not delete history for agent {agent_id!r}: {e}")
            return False
        return True
