"""Input tensor generators: build each model input from the current batch.

Every generator reallocates its tensor with the batch size as leading
dimension before filling it (see ``TensorDescriptor.resize``).

Generators:
    BatchSizeGenerator          [1] int: batch size
    SequenceLengthGenerator     [1] int: always 1 (one timestep per decision)
    RecurrentInputGenerator     [batch x memory] float from the memory store;
                                done episodes are evicted first, so they read zeros
    PreviousActionGenerator     [batch x branches] int from stored discrete actions
    ActionMaskGenerator         [batch x logits] float, 1.0 = allowed, 0.0 = masked
    RandomNormalGenerator       [batch x ...] float, seeded standard normal
    ObservationGenerator        sensor observations concatenated per row;
                                done agents get an all-zero row, sensors untouched

``TensorGenerator`` owns one generator per slot and resolves tensor names
through the slot table. Observation slots are registered by
``initialize_observations`` from a representative agent's sensors:

    legacy (v2):  rank-1 sensors share ``vector_observation``;
                  rank-2 sensors get ``obs_<i>``;
                  rank-3 sensors get ``visual_observation_<k>``
    current (v3): every sensor gets ``obs_<i>``
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

import numpy as np

from . import slots as sl
from . import tensor_names as tn
from .errors import UnknownTensorError, UnsupportedSensorRankError
from .model_info import ModelApiVersion, ModelMetadata
from .records import DecisionBatch
from .sensors import ObservationWriter, Sensor
from .tensors import TensorDescriptor

logger = logging.getLogger(__name__)


class Generator(Protocol):
    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None: ...


class BatchSizeGenerator:
    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        tensor.shape = (1,)
        tensor.allocate()[0] = batch.size


class SequenceLengthGenerator:
    """Recurrent policies only ever process one timestep per decision."""

    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        tensor.shape = (1,)
        tensor.allocate()[0] = 1


class RecurrentInputGenerator:
    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        tensor.resize(batch.size)
        rows = tensor.rows()
        width = rows.shape[1]
        for row, record in enumerate(batch.records):
            if record.done:
                batch.memories.evict(record.episode_id)
            memory = batch.memories.read(record.episode_id)
            if memory is None:
                continue
            count = min(width, memory.size)
            rows[row, :count] = memory[:count]


class PreviousActionGenerator:
    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        tensor.resize(batch.size)
        rows = tensor.rows()
        width = rows.shape[1]
        for row, record in enumerate(batch.records):
            past = record.stored_actions.discrete
            if past.size == 0:
                continue
            count = min(width, past.size)
            rows[row, :count] = past[:count]


class ActionMaskGenerator:
    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        tensor.resize(batch.size)
        rows = tensor.rows()
        rows[:] = 1.0
        width = rows.shape[1]
        for row, record in enumerate(batch.records):
            if record.action_mask is None:
                continue
            mask = np.asarray(record.action_mask, dtype=bool)[:width]
            rows[row, :mask.size][mask] = 0.0


class RandomNormalGenerator:
    """Standard-normal noise from a generator seeded once per runner."""

    def __init__(self, seed: int) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        data = tensor.resize(batch.size)
        data[...] = self._rng.standard_normal(data.shape, dtype=np.float32)


class ObservationGenerator:
    """Concatenates the observations of one or more sensors into each row."""

    def __init__(self) -> None:
        self.sensor_indices: list[int] = []
        self._writer = ObservationWriter()

    def add_sensor_index(self, sensor_index: int) -> None:
        self.sensor_indices.append(sensor_index)

    def generate(self, tensor: TensorDescriptor, batch: DecisionBatch) -> None:
        tensor.resize(batch.size)
        for row, record in enumerate(batch.records):
            if record.done:
                # Sensors of a finished episode may already be torn down.
                tensor.fill_batch(row, 0.0)
                continue
            offset = 0
            for sensor_index in self.sensor_indices:
                sensor = record.sensors[sensor_index]
                self._writer.set_target(tensor, row, offset)
                offset += sensor.write(self._writer)


class TensorGenerator:
    """Registry of input generators keyed by tensor slot.

    Parameters
    ----------
    metadata : ModelMetadata
        Inspected model facts; the API version selects the observation layout.
    seed : int
        Seed of the random-normal generator.
    """

    def __init__(self, metadata: ModelMetadata, seed: int = 0) -> None:
        self.metadata = metadata
        self._slots = sl.build_input_slots()
        self._generators: dict[sl.TensorSlot, Generator] = {
            sl.BATCH_SIZE: BatchSizeGenerator(),
            sl.SEQUENCE_LENGTH: SequenceLengthGenerator(),
            sl.RECURRENT_INPUT: RecurrentInputGenerator(),
            sl.PREVIOUS_ACTION: PreviousActionGenerator(),
            sl.ACTION_MASK: ActionMaskGenerator(),
            sl.RANDOM_NORMAL: RandomNormalGenerator(seed),
        }
        self._observations_initialized = False

    @property
    def observations_initialized(self) -> bool:
        return self._observations_initialized

    @property
    def tensor_names(self) -> list[str]:
        return sorted(self._slots)

    def slot_for(self, name: str) -> sl.TensorSlot | None:
        return self._slots.get(name)

    def generator_for(self, name: str) -> Generator:
        slot = self._slots.get(name)
        if slot is None or slot not in self._generators:
            raise UnknownTensorError(name, "input")
        return self._generators[slot]

    def initialize_observations(self, sensors: Sequence[Sensor]) -> None:
        """Register observation slots from a representative agent's sensors.

        Runs once; later calls are no-ops. Nothing is registered unless
        every sensor has a layout.

        Raises
        ------
        UnsupportedSensorRankError
            A sensor's rank has no tensor layout in this model format.
        """
        if self._observations_initialized:
            return
        if self.metadata.version == ModelApiVersion.MLAGENTS_1_0:
            staged = self._legacy_observation_slots(sensors)
        else:
            staged = self._current_observation_slots(sensors)

        for name, (index, generator) in staged.items():
            slot = sl.TensorSlot.observation(index)
            self._slots[name] = slot
            self._generators[slot] = generator
        self._observations_initialized = True
        logger.debug(
            "Observation inputs initialized from %d sensors: %s", len(sensors), sorted(staged)
        )

    @staticmethod
    def _single_sensor(sensor_index: int) -> ObservationGenerator:
        generator = ObservationGenerator()
        generator.add_sensor_index(sensor_index)
        return generator

    def _legacy_observation_slots(
        self, sensors: Sequence[Sensor]
    ) -> dict[str, tuple[int, ObservationGenerator]]:
        staged: dict[str, tuple[int, ObservationGenerator]] = {}
        vector_generator: ObservationGenerator | None = None
        visual_index = 0
        for sensor_index, sensor in enumerate(sensors):
            rank = sensor.observation_spec.rank
            if rank == 1:
                if vector_generator is None:
                    vector_generator = ObservationGenerator()
                    staged[tn.VECTOR_OBSERVATION_PLACEHOLDER] = (sensor_index, vector_generator)
                vector_generator.add_sensor_index(sensor_index)
            elif rank == 2:
                staged[tn.observation_name(sensor_index)] = (
                    sensor_index, self._single_sensor(sensor_index)
                )
            elif rank == 3:
                staged[tn.visual_observation_name(visual_index)] = (
                    sensor_index, self._single_sensor(sensor_index)
                )
                visual_index += 1
            else:
                raise UnsupportedSensorRankError(sensor.name, rank)
        return staged

    def _current_observation_slots(
        self, sensors: Sequence[Sensor]
    ) -> dict[str, tuple[int, ObservationGenerator]]:
        staged: dict[str, tuple[int, ObservationGenerator]] = {}
        for sensor_index, sensor in enumerate(sensors):
            rank = sensor.observation_spec.rank
            if rank not in (1, 2, 3):
                raise UnsupportedSensorRankError(sensor.name, rank)
            staged[tn.observation_name(sensor_index)] = (
                sensor_index, self._single_sensor(sensor_index)
            )
        return staged

    def generate_tensors(self, tensors: Sequence[TensorDescriptor], batch: DecisionBatch) -> None:
        """Fill every tensor, in order, from ``batch``.

        Raises
        ------
        UnknownTensorError
            A tensor has no registered generator.
        """
        for tensor in tensors:
            self.generator_for(tensor.name).generate(tensor, batch)
