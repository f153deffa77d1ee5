"""Registry of identities authorized to act as payout agents."""

from __future__ import annotations

from .storage import KeyValueStore, WriteBatch


_AGENT_PREFIX = "agent:"


class AgentRegistry:
    """A set of agent addresses. Presence is the only state."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, agent: str) -> str:
        return f"{_AGENT_PREFIX}{agent}"

    def is_registered(self, agent: str) -> bool:
        return self.store.get(self._key(agent)) is not None

    def list_agents(self) -> list[str]:
        return [key[len(_AGENT_PREFIX):] for key, _ in self.store.scan(_AGENT_PREFIX)]

    def stage_add(self, batch: WriteBatch, agent: str) -> None:
        batch.set(self._key(agent), True)

    def stage_remove(self, batch: WriteBatch, agent: str) -> None:
        batch.remove(self._key(agent))
