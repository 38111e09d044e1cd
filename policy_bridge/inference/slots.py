"""Closed set of tensor roles and the name -> role lookup built from metadata.

Every tensor a model may declare plays exactly one ``TensorRole``.
Observation slots carry the index of the sensor (or visual input) they
belong to. ``build_input_slots`` and ``build_output_slots`` produce the only
tables the generators and appliers consult; a name missing from them is a
configuration error, not a silent skip.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from . import tensor_names as tn
from .model_info import ModelMetadata


class TensorRole(enum.Enum):
    BATCH_SIZE = enum.auto()
    SEQUENCE_LENGTH = enum.auto()
    RECURRENT_INPUT = enum.auto()
    PREVIOUS_ACTION = enum.auto()
    ACTION_MASK = enum.auto()
    RANDOM_NORMAL = enum.auto()
    OBSERVATION = enum.auto()
    CONTINUOUS_OUTPUT = enum.auto()
    DISCRETE_OUTPUT = enum.auto()
    RECURRENT_OUTPUT = enum.auto()
    VALUE_ESTIMATE = enum.auto()


@dataclass(frozen=True)
class TensorSlot:
    """A role, plus the observation index for ``OBSERVATION`` slots."""

    role: TensorRole
    index: int | None = None

    def __post_init__(self) -> None:
        if (self.role is TensorRole.OBSERVATION) != (self.index is not None):
            raise ValueError(f"Only observation slots carry an index, got {self}")

    @classmethod
    def observation(cls, index: int) -> "TensorSlot":
        return cls(TensorRole.OBSERVATION, index)


BATCH_SIZE = TensorSlot(TensorRole.BATCH_SIZE)
SEQUENCE_LENGTH = TensorSlot(TensorRole.SEQUENCE_LENGTH)
RECURRENT_INPUT = TensorSlot(TensorRole.RECURRENT_INPUT)
PREVIOUS_ACTION = TensorSlot(TensorRole.PREVIOUS_ACTION)
ACTION_MASK = TensorSlot(TensorRole.ACTION_MASK)
RANDOM_NORMAL = TensorSlot(TensorRole.RANDOM_NORMAL)
CONTINUOUS_OUTPUT = TensorSlot(TensorRole.CONTINUOUS_OUTPUT)
DISCRETE_OUTPUT = TensorSlot(TensorRole.DISCRETE_OUTPUT)
RECURRENT_OUTPUT = TensorSlot(TensorRole.RECURRENT_OUTPUT)
VALUE_ESTIMATE = TensorSlot(TensorRole.VALUE_ESTIMATE)

FIXED_INPUT_SLOTS: dict[str, TensorSlot] = {
    tn.BATCH_SIZE_PLACEHOLDER: BATCH_SIZE,
    tn.SEQUENCE_LENGTH_PLACEHOLDER: SEQUENCE_LENGTH,
    tn.RECURRENT_IN_PLACEHOLDER: RECURRENT_INPUT,
    tn.PREVIOUS_ACTION_PLACEHOLDER: PREVIOUS_ACTION,
    tn.ACTION_MASK_PLACEHOLDER: ACTION_MASK,
    tn.RANDOM_NORMAL_EPSILON_PLACEHOLDER: RANDOM_NORMAL,
}


def build_input_slots() -> dict[str, TensorSlot]:
    """Always-present input slots; observation slots are added later."""
    return dict(FIXED_INPUT_SLOTS)


def build_output_slots(metadata: ModelMetadata) -> dict[str, TensorSlot]:
    """Output name -> slot for the action kinds this model has active.

    In the legacy format both kinds resolve to the combined ``action``
    output; only the active kind is registered.
    """
    slots: dict[str, TensorSlot] = {}
    if metadata.has_continuous_outputs and metadata.continuous_output_name:
        slots[metadata.continuous_output_name] = CONTINUOUS_OUTPUT
    if metadata.has_discrete_outputs and metadata.discrete_output_name:
        slots[metadata.discrete_output_name] = DISCRETE_OUTPUT
    slots[tn.RECURRENT_OUTPUT] = RECURRENT_OUTPUT
    slots[tn.VALUE_ESTIMATE_OUTPUT] = VALUE_ESTIMATE
    return slots
