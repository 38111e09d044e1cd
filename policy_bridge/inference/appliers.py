"""Output tensor appliers: scatter model outputs back to agents.

Row ``i`` of every output belongs to ``batch.records[i]``. Rows of episodes
that are done (or no longer in the decision cache) are skipped, but still
consume their row index.

Appliers:
    ContinuousActionOutputApplier      [batch x continuous] float -> continuous actions
    DiscreteActionOutputApplier        [batch x branches] int -> discrete actions
    LegacyDiscreteActionOutputApplier  [batch x sum(branch sizes)] float logits ->
                                       masked argmax per branch
    MemoryOutputApplier                [batch x memory] float -> memory store
    ShapeOnlyOutputApplier             value estimates; nothing agent-visible
"""

from __future__ import annotations

from typing import Protocol, Sequence

import numpy as np

from . import slots as sl
from .actions import ActionSpec
from .errors import ConfigurationError, UnknownTensorError
from .model_info import ModelApiVersion, ModelMetadata
from .records import DecisionBatch
from .tensors import TensorDescriptor


class Applier(Protocol):
    def apply(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None: ...


class ContinuousActionOutputApplier:
    def __init__(self, action_spec: ActionSpec) -> None:
        self.action_spec = action_spec

    def apply(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        rows = tensor.as_float().reshape(tensor.batch_size, -1)
        size = min(self.action_spec.continuous_size, rows.shape[1])
        for row, episode_id in enumerate(batch.episode_ids):
            if not batch.accepts_action(row):
                continue
            buffers = batch.decisions.buffers_for(episode_id, self.action_spec)
            buffers.continuous[:size] = rows[row, :size]


class DiscreteActionOutputApplier:
    """Model already sampled: one chosen index per branch."""

    def __init__(self, action_spec: ActionSpec) -> None:
        self.action_spec = action_spec

    def apply(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        rows = tensor.as_int().reshape(tensor.batch_size, -1)
        size = min(self.action_spec.num_discrete_actions, rows.shape[1])
        for row, episode_id in enumerate(batch.episode_ids):
            if not batch.accepts_action(row):
                continue
            buffers = batch.decisions.buffers_for(episode_id, self.action_spec)
            buffers.discrete[:size] = rows[row, :size]


def masked_argmax(logits: np.ndarray, mask: np.ndarray | None = None) -> int:
    """Index of the largest logit after zeroing masked entries.

    ``mask`` uses ``True`` for disallowed entries. Ties resolve to the
    first occurrence, so a fully masked branch selects index 0.
    """
    values = np.array(logits, dtype=np.float32)
    if mask is not None:
        values[np.asarray(mask, dtype=bool)] = 0.0
    return int(np.argmax(values))


class LegacyDiscreteActionOutputApplier:
    """Decodes the legacy combined output: per-branch logits, masked argmax."""

    def __init__(self, action_spec: ActionSpec) -> None:
        self.action_spec = action_spec
        offsets = np.cumsum((0,) + action_spec.branch_sizes)
        self._branches = [
            (int(start), int(stop)) for start, stop in zip(offsets[:-1], offsets[1:])
        ]

    def apply(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        rows = tensor.as_float().reshape(tensor.batch_size, -1)
        for row, record in enumerate(batch.records):
            if not batch.accepts_action(row):
                continue
            mask = None
            if record.action_mask is not None:
                mask = np.asarray(record.action_mask, dtype=bool)
            buffers = batch.decisions.buffers_for(record.episode_id, self.action_spec)
            for branch, (start, stop) in enumerate(self._branches):
                branch_mask = None if mask is None else mask[start:stop]
                buffers.discrete[branch] = masked_argmax(rows[row, start:stop], branch_mask)


class MemoryOutputApplier:
    """Stores each live episode's recurrent output for the next step."""

    def apply(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        rows = tensor.as_float().reshape(tensor.batch_size, -1)
        for row, record in enumerate(batch.records):
            if record.done:
                continue
            batch.memories.write(record.episode_id, rows[row])


class ShapeOnlyOutputApplier:
    """Outputs consumed outside the core (value estimates)."""

    def apply(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        return None


class TensorApplier:
    """Registry of output appliers keyed by tensor slot.

    Parameters
    ----------
    metadata : ModelMetadata
        Selects which action outputs are active and their format.
    action_spec : ActionSpec
        Sizes of the per-agent action buffers.
    """

    def __init__(self, metadata: ModelMetadata, action_spec: ActionSpec) -> None:
        self.metadata = metadata
        self.action_spec = action_spec
        self._slots = sl.build_output_slots(metadata)

        if metadata.version == ModelApiVersion.MLAGENTS_1_0:
            discrete_applier: Applier = LegacyDiscreteActionOutputApplier(action_spec)
        else:
            discrete_applier = DiscreteActionOutputApplier(action_spec)

        self._appliers: dict[sl.TensorSlot, Applier] = {
            sl.RECURRENT_OUTPUT: MemoryOutputApplier(),
            sl.VALUE_ESTIMATE: ShapeOnlyOutputApplier(),
        }
        if metadata.has_continuous_outputs:
            self._appliers[sl.CONTINUOUS_OUTPUT] = ContinuousActionOutputApplier(action_spec)
        if metadata.has_discrete_outputs:
            self._appliers[sl.DISCRETE_OUTPUT] = discrete_applier

    def slot_for(self, name: str) -> sl.TensorSlot | None:
        return self._slots.get(name)

    def applier_for(self, name: str) -> Applier:
        slot = self._slots.get(name)
        if slot is None or slot not in self._appliers:
            raise UnknownTensorError(name, "output")
        return self._appliers[slot]

    def apply_tensors(self, tensors: Sequence[TensorDescriptor], batch: DecisionBatch) -> None:
        """Decode every output tensor into ``batch``'s cache and store.

        Raises
        ------
        UnknownTensorError
            An output has no registered applier.
        ConfigurationError
            An output row count differs from the batch size.
        """
        for tensor in tensors:
            if tensor.batch_size != batch.size:
                raise ConfigurationError(
                    f"Output {tensor.name} has {tensor.batch_size} rows for a batch of {batch.size}"
                )
            self.applier_for(tensor.name).apply(tensor, batch)
