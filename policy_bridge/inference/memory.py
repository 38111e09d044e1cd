"""Per-episode state owned by one runner: recurrent memories and decisions."""

from __future__ import annotations

from typing import Iterator

import numpy as np

from .actions import ActionBuffers, ActionSpec


class RecurrentMemoryStore:
    """Episode id -> recurrent memory vector.

    Entries are created by the recurrent-output applier, read by the
    recurrent-input generator and evicted whenever the episode is done.
    """

    def __init__(self, memory_size: int = 0) -> None:
        self.memory_size = memory_size
        self._memories: dict[int, np.ndarray] = {}

    def read(self, episode_id: int) -> np.ndarray | None:
        return self._memories.get(episode_id)

    def write(self, episode_id: int, values: np.ndarray) -> None:
        """Store a copy of ``values``, zero-padded to ``memory_size``."""
        values = np.asarray(values, dtype=np.float32).ravel()
        size = max(self.memory_size, values.size)
        memory = np.zeros(size, dtype=np.float32)
        memory[:values.size] = values
        self._memories[episode_id] = memory

    def evict(self, episode_id: int) -> None:
        self._memories.pop(episode_id, None)

    def clear(self) -> None:
        self._memories.clear()

    def __contains__(self, episode_id: object) -> bool:
        return episode_id in self._memories

    def __len__(self) -> int:
        return len(self._memories)

    def __iter__(self) -> Iterator[int]:
        return iter(self._memories)


class DecisionCache:
    """Episode id -> most recent ``ActionBuffers``.

    An entry exists from the first decision request of an episode until the
    request that marks it done. Each decode step hands out fresh buffers
    (``buffers_for``) so actions returned by ``get`` on earlier steps are
    never mutated.
    """

    def __init__(self) -> None:
        self._actions: dict[int, ActionBuffers] = {}
        self._written_this_step: set[int] = set()

    def register(self, episode_id: int) -> None:
        self._actions.setdefault(episode_id, ActionBuffers.EMPTY)

    def discard(self, episode_id: int) -> None:
        self._actions.pop(episode_id, None)
        self._written_this_step.discard(episode_id)

    def get(self, episode_id: int) -> ActionBuffers:
        return self._actions.get(episode_id, ActionBuffers.EMPTY)

    def begin_step(self) -> None:
        self._written_this_step.clear()

    def buffers_for(self, episode_id: int, spec: ActionSpec) -> ActionBuffers:
        """Buffers to decode into for this step, shared by all appliers."""
        if episode_id not in self._written_this_step:
            self._actions[episode_id] = ActionBuffers.from_spec(spec)
            self._written_this_step.add(episode_id)
        return self._actions[episode_id]

    def __contains__(self, episode_id: object) -> bool:
        return episode_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[int]:
        return iter(self._actions)
