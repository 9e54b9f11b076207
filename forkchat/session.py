"""Session state: the active agent, its in-memory history, and the agent registry.

History is flushed to the store only at agent-boundary events (fork,
subfork, switch) and at normal exit, never after an individual chat
round. Turns entered after the last boundary are lost if the process is
killed; this trade-off is intended.
"""

import copy
import re
from dataclasses import dataclass

from .errors import UserInputError
from .providers import ProviderRegistry, Selection
from .store import AgentStore

MAIN_AGENT = "main"

_DISALLOWED_RE = re.compile(r"[^a-z0-9_-]")


def sanitize(raw: str) -> str:
    """Normalize an agent name: lower-case, anything outside [a-z0-9_-] becomes '_'."""
    return _DISALLOWED_RE.sub("_", raw.lower())


@dataclass
class Status:
    provider: str
    model: str
    agent: str
    entries: int


class SessionState:
    """Mutable record of the interactive session.

    Invariants: ``active`` is always in ``agents``; ``main`` is always in
    ``agents``; ``history`` has even length and alternates user and
    assistant turns.
    """

    def __init__(
        self,
        store: AgentStore,
        registry: ProviderRegistry,
        selection: Selection,
        *,
        agents=(),
        verbose: bool = True,
    ):
        self.store = store
        self.registry = registry
        self.selection = selection
        self.verbose = verbose
        self.agents: set[str] = {MAIN_AGENT, *agents}
        self.active = MAIN_AGENT
        self.history: list[dict] = store.load(MAIN_AGENT, verbose=verbose)

    @classmethod
    def open(
        cls,
        store: AgentStore,
        registry: ProviderRegistry,
        selection: Selection,
        *,
        verbose: bool = True,
    ) -> "SessionState":
        """Create the session, registering every agent already on disk."""
        return cls(store, registry, selection, agents=store.list_ids(), verbose=verbose)

    # -- Persistence ---------------------------------------------------------

    def flush(self) -> bool:
        """Write the active agent's in-memory history to the store."""
        return self.store.save(self.active, self.history)

    def _load(self, agent_id: str) -> list[dict]:
        return self.store.load(agent_id, verbose=self.verbose)

    # -- Agent operations ----------------------------------------------------

    def _agent_id(self, raw: str) -> str:
        agent_id = sanitize(raw.strip())
        if not agent_id:
            raise UserInputError("an agent name is required")
        return agent_id

    def _require_new(self, raw: str) -> str:
        agent_id = self._agent_id(raw)
        if agent_id in self.agents:
            raise UserInputError(f"agent {agent_id!r} already exists")
        return agent_id

    def _require_known(self, raw: str) -> str:
        agent_id = self._agent_id(raw)
        if agent_id not in self.agents:
            raise UserInputError(f"agent {agent_id!r} does not exist")
        return agent_id

    def fork(self, raw: str) -> str:
        """Start a new agent with an empty history."""
        agent_id = self._require_new(raw)
        self.flush()
        self.active = agent_id
        self.history = []
        self.agents.add(agent_id)
        return agent_id

    def subfork(self, raw: str) -> str:
        """Start a new agent whose history is a copy of the current one."""
        agent_id = self._require_new(raw)
        self.flush()
        self.active = agent_id
        self.history = copy.deepcopy(self.history)
        self.agents.add(agent_id)
        self.flush()
        return agent_id

    def switch(self, raw: str) -> str:
        agent_id = self._require_known(raw)
        self.flush()
        self.active = agent_id
        self.history = self._load(agent_id)
        return agent_id

    def delete(self, raw: str) -> tuple[str, bool]:
        """Remove an agent and its stored history.

        Returns ``(agent_id, was_active)``. Deleting the active agent
        moves the session back to ``main`` with its stored history.
        """
        agent_id = self._agent_id(raw)
        if agent_id == MAIN_AGENT:
            raise UserInputError(f"agent {MAIN_AGENT!r} cannot be deleted")
        if agent_id not in self.agents:
            raise UserInputError(f"agent {agent_id!r} does not exist")

        if not self.store.delete(agent_id):
            raise UserInputError(
                f"agent {agent_id!r} was kept because its history file could not be removed"
            )
        self.agents.discard(agent_id)
        was_active = agent_id == self.active
        if was_active:
            self.active = MAIN_AGENT
            self.history = self._load(MAIN_AGENT)
        return agent_id, was_active

    def list_agents(self) -> list[str]:
        return sorted(self.agents)

    # -- Conversation --------------------------------------------------------

    def request_turns(self, line: str) -> list[dict]:
        """The active history plus a new user turn, ready for the completion call."""
        turns = [{"role": t["role"], "content": t["content"]} for t in self.history]
        turns.append({"role": "user", "content": line})
        return turns

    def record_round(self, line: str, reply: str) -> None:
        self.history.append({"role": "user", "content": line})
        self.history.append({"role": "assistant", "content": reply})

    # -- Provider / model selection ------------------------------------------

    def models(self) -> list[str]:
        return list(self.registry.get(self.selection.provider).models)

    def select_model(self, name: str) -> str:
        name = name.strip()
        provider = self.selection.provider
        if not self.registry.has_model(provider, name):
            raise UserInputError(
                f"model {name!r} is not available on provider {provider!r}"
            )
        self.selection.model = name
        return name

    def select_provider(self, name: str) -> str:
        """Select a provider and reset the model to that provider's first model."""
        name = name.strip()
        if name not in self.registry:
            raise UserInputError(f"unknown provider {name!r}")
        self.selection.provider = name
        self.selection.model = self.registry.get(name).default_model
        return self.selection.model

    def status(self) -> Status:
        return Status(
            provider=self.selection.provider,
            model=self.selection.model,
            agent=self.active,
            entries=len(self.history),
        )
