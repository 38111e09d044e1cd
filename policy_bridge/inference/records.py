"""Decision requests and the per-step batch that carries them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .actions import ActionBuffers
from .memory import DecisionCache, RecurrentMemoryStore
from .sensors import Sensor


@dataclass(frozen=True)
class AgentDecisionRecord:
    """One agent's input for a single decision step.

    Parameters
    ----------
    episode_id : int
        Unique per in-flight episode; keys memories and decisions.
    done : bool
        The episode ended; no action is produced and its sensors are not read.
    stored_actions : ActionBuffers
        Actions taken on the previous step (fed to ``prev_action``).
    action_mask : Sequence[bool] | None
        Flat discrete mask over all branches, ``True`` = masked out.
    sensors : Sequence[Sensor]
        Observation producers, in the same order for every agent.
    """

    episode_id: int
    done: bool = False
    stored_actions: ActionBuffers = field(default_factory=lambda: ActionBuffers.EMPTY)
    action_mask: Sequence[bool] | None = None
    sensors: Sequence[Sensor] = ()


@dataclass
class DecisionBatch:
    """Everything one decode step reads or mutates.

    Row ``i`` of every tensor corresponds to ``records[i]``; arrival order
    is the only ordering used to build and to scatter the batch.
    """

    records: list[AgentDecisionRecord] = field(default_factory=list)
    memories: RecurrentMemoryStore = field(default_factory=RecurrentMemoryStore)
    decisions: DecisionCache = field(default_factory=DecisionCache)

    @property
    def size(self) -> int:
        return len(self.records)

    @property
    def episode_ids(self) -> list[int]:
        return [record.episode_id for record in self.records]

    def accepts_action(self, row: int) -> bool:
        """Whether decoded values for ``row`` should be written back."""
        record = self.records[row]
        return not record.done and record.episode_id in self.decisions
