"""Action layout and per-agent action buffers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Sequence

import numpy as np


@dataclass(frozen=True)
class ActionSpec:
    """Shape of an agent's action space.

    Parameters
    ----------
    continuous_size : int
        Number of continuous action values.
    branch_sizes : tuple[int, ...]
        Number of choices in each discrete branch.
    """

    continuous_size: int = 0
    branch_sizes: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.continuous_size < 0:
            raise ValueError(f"continuous_size must be >= 0, got {self.continuous_size}")
        object.__setattr__(self, "branch_sizes", tuple(int(b) for b in self.branch_sizes))
        if any(b <= 0 for b in self.branch_sizes):
            raise ValueError(f"branch sizes must be positive, got {self.branch_sizes}")

    @classmethod
    def make_continuous(cls, size: int) -> "ActionSpec":
        return cls(continuous_size=size)

    @classmethod
    def make_discrete(cls, *branch_sizes: int) -> "ActionSpec":
        return cls(branch_sizes=tuple(branch_sizes))

    @property
    def num_discrete_actions(self) -> int:
        return len(self.branch_sizes)

    @property
    def sum_of_discrete_branch_sizes(self) -> int:
        return sum(self.branch_sizes)


@dataclass(eq=False)
class ActionBuffers:
    """Continuous and discrete action values decided for one agent.

    ``ActionBuffers.EMPTY`` is the shared sentinel for "no decision yet";
    it must never be written to.
    """

    continuous: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    discrete: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int32))

    EMPTY: ClassVar["ActionBuffers"]

    def __post_init__(self) -> None:
        self.continuous = np.asarray(self.continuous, dtype=np.float32)
        self.discrete = np.asarray(self.discrete, dtype=np.int32)

    @classmethod
    def from_spec(cls, spec: ActionSpec) -> "ActionBuffers":
        """Zero-filled buffers sized for ``spec``."""
        return cls(
            continuous=np.zeros(spec.continuous_size, dtype=np.float32),
            discrete=np.zeros(spec.num_discrete_actions, dtype=np.int32),
        )

    @classmethod
    def from_lists(
        cls,
        continuous: Sequence[float] = (),
        discrete: Sequence[int] = (),
    ) -> "ActionBuffers":
        return cls(continuous=np.array(continuous), discrete=np.array(discrete))

    def is_empty(self) -> bool:
        return self.continuous.size == 0 and self.discrete.size == 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ActionBuffers):
            return NotImplemented
        return np.array_equal(self.continuous, other.continuous) and np.array_equal(
            self.discrete, other.discrete
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self.is_empty():
            return "ActionBuffers.EMPTY"
        return (
            f"ActionBuffers(continuous={self.continuous.tolist()}, "
            f"discrete={self.discrete.tolist()})"
        )


ActionBuffers.EMPTY = ActionBuffers()
ActionBuffers.EMPTY.continuous.flags.writeable = False
ActionBuffers.EMPTY.discrete.flags.writeable = False
