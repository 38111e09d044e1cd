"""Tests for input tensor generators.

Tests for policy_bridge.inference.generators:
    - batch_size / sequence_length scalars
    - recurrent_in from the memory store (done episodes evicted first)
    - prev_action from stored discrete actions
    - action_masks: 1 = allowed, 0 = masked, absent mask = all allowed
    - epsilon reproducible for a fixed seed
    - Observation layout: current obs_<i>, legacy shared vector + obs_<i> + visual_<k>
    - Observation init is all-or-nothing and runs once
    - Done agents get zero rows and their sensors are not invoked
    - Unknown tensors and unsupported sensor ranks raise

Run:
    pytest tests/test_generators.py -v
"""

from __future__ import annotations

import numpy as np
import pytest

from fakes import ArraySensor, make_metadata
from policy_bridge.inference import slots as sl
from policy_bridge.inference import tensor_names as tn
from policy_bridge.inference.actions import ActionBuffers
from policy_bridge.inference.errors import ConfigurationError, UnknownTensorError, UnsupportedSensorRankError
from policy_bridge.inference.generators import (
    ActionMaskGenerator,
    BatchSizeGenerator,
    ObservationGenerator,
    PreviousActionGenerator,
    RandomNormalGenerator,
    RecurrentInputGenerator,
    SequenceLengthGenerator,
    TensorGenerator,
)
from policy_bridge.inference.memory import RecurrentMemoryStore
from policy_bridge.inference.records import AgentDecisionRecord, DecisionBatch
from policy_bridge.inference.tensors import TensorDescriptor, TensorType


def _batch(*records: AgentDecisionRecord, memories: RecurrentMemoryStore | None = None) -> DecisionBatch:
    batch = DecisionBatch(records=list(records))
    if memories is not None:
        batch.memories = memories
    return batch


# ---------------------------------------------------------------------------
# Fixed slots
# ---------------------------------------------------------------------------


class TestScalarGenerators:
    def test_batch_size(self) -> None:
        tensor = TensorDescriptor(tn.BATCH_SIZE_PLACEHOLDER, (1,), TensorType.INTEGER)
        BatchSizeGenerator().generate(tensor, _batch(AgentDecisionRecord(1), AgentDecisionRecord(2)))
        np.testing.assert_array_equal(tensor.data, [2])

    def test_sequence_length_always_one(self) -> None:
        tensor = TensorDescriptor(tn.SEQUENCE_LENGTH_PLACEHOLDER, (1,), TensorType.INTEGER)
        SequenceLengthGenerator().generate(tensor, _batch(*(AgentDecisionRecord(i) for i in range(5))))
        np.testing.assert_array_equal(tensor.data, [1])


class TestRecurrentInput:
    def test_reads_memory_or_zeros(self) -> None:
        memories = RecurrentMemoryStore(3)
        memories.write(2, [1.0, 2.0, 3.0])
        tensor = TensorDescriptor(tn.RECURRENT_IN_PLACEHOLDER, (-1, 3))
        batch = _batch(AgentDecisionRecord(1), AgentDecisionRecord(2), memories=memories)
        RecurrentInputGenerator().generate(tensor, batch)
        np.testing.assert_array_equal(tensor.data, [[0, 0, 0], [1, 2, 3]])

    def test_done_episode_evicted_before_read(self) -> None:
        memories = RecurrentMemoryStore(2)
        memories.write(5, [4.0, 4.0])
        tensor = TensorDescriptor(tn.RECURRENT_IN_PLACEHOLDER, (-1, 2))
        RecurrentInputGenerator().generate(
            tensor, _batch(AgentDecisionRecord(5, done=True), memories=memories)
        )
        assert 5 not in memories
        np.testing.assert_array_equal(tensor.data, [[0, 0]])

    def test_longer_memory_truncated(self) -> None:
        memories = RecurrentMemoryStore(4)
        memories.write(1, [1.0, 2.0, 3.0, 4.0])
        tensor = TensorDescriptor(tn.RECURRENT_IN_PLACEHOLDER, (-1, 2))
        RecurrentInputGenerator().generate(tensor, _batch(AgentDecisionRecord(1), memories=memories))
        np.testing.assert_array_equal(tensor.data, [[1, 2]])


class TestPreviousAction:
    def test_stored_discrete_actions(self) -> None:
        tensor = TensorDescriptor(tn.PREVIOUS_ACTION_PLACEHOLDER, (-1, 2), TensorType.INTEGER)
        batch = _batch(
            AgentDecisionRecord(1, stored_actions=ActionBuffers.from_lists([0.5], [2, 1])),
            AgentDecisionRecord(2),
        )
        PreviousActionGenerator().generate(tensor, batch)
        assert tensor.data.dtype == np.int32
        np.testing.assert_array_equal(tensor.data, [[2, 1], [0, 0]])


class TestActionMask:
    def test_mask_inverted_to_allowed(self) -> None:
        tensor = TensorDescriptor(tn.ACTION_MASK_PLACEHOLDER, (-1, 3))
        batch = _batch(
            AgentDecisionRecord(1, action_mask=[False, True, False]),
            AgentDecisionRecord(2),
        )
        ActionMaskGenerator().generate(tensor, batch)
        np.testing.assert_array_equal(tensor.data, [[1, 0, 1], [1, 1, 1]])


class TestRandomNormal:
    def test_same_seed_same_values(self) -> None:
        batch = _batch(AgentDecisionRecord(1), AgentDecisionRecord(2))
        a = TensorDescriptor(tn.RANDOM_NORMAL_EPSILON_PLACEHOLDER, (-1, 4))
        b = TensorDescriptor(tn.RANDOM_NORMAL_EPSILON_PLACEHOLDER, (-1, 4))
        RandomNormalGenerator(7).generate(a, batch)
        RandomNormalGenerator(7).generate(b, batch)
        assert a.data.shape == (2, 4)
        np.testing.assert_array_equal(a.data, b.data)

    def test_successive_draws_differ(self) -> None:
        generator = RandomNormalGenerator(0)
        tensor = TensorDescriptor(tn.RANDOM_NORMAL_EPSILON_PLACEHOLDER, (-1, 8))
        batch = _batch(AgentDecisionRecord(1))
        generator.generate(tensor, batch)
        first = tensor.data.copy()
        generator.generate(tensor, batch)
        assert not np.array_equal(first, tensor.data)


# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------


class TestObservationGenerator:
    def test_concatenates_sensors(self) -> None:
        generator = ObservationGenerator()
        generator.add_sensor_index(0)
        generator.add_sensor_index(2)
        sensors = (ArraySensor("a", [1, 2]), ArraySensor("b", [9]), ArraySensor("c", [3]))
        tensor = TensorDescriptor(tn.VECTOR_OBSERVATION_PLACEHOLDER, (-1, 3))
        generator.generate(tensor, _batch(AgentDecisionRecord(1, sensors=sensors)))
        np.testing.assert_array_equal(tensor.data, [[1, 2, 3]])
        assert sensors[1].write_count == 0

    def test_done_row_zero_and_sensor_untouched(self) -> None:
        generator = ObservationGenerator()
        generator.add_sensor_index(0)
        live = ArraySensor("live", [1, 1])
        finished = ArraySensor("finished", [5, 5])
        tensor = TensorDescriptor("obs_0", (-1, 2))
        batch = _batch(
            AgentDecisionRecord(1, sensors=(live,)),
            AgentDecisionRecord(2, done=True, sensors=(finished,)),
        )
        generator.generate(tensor, batch)
        np.testing.assert_array_equal(tensor.data, [[1, 1], [0, 0]])
        assert live.write_count == 1
        assert finished.write_count == 0

    def test_visual_sensor_fills_rank3_tensor(self) -> None:
        generator = ObservationGenerator()
        generator.add_sensor_index(0)
        image = np.arange(12, dtype=np.float32).reshape(2, 2, 3)
        tensor = TensorDescriptor(tn.visual_observation_name(0), (-1, 2, 2, 3))
        generator.generate(tensor, _batch(AgentDecisionRecord(1, sensors=(ArraySensor("cam", image),))))
        np.testing.assert_array_equal(tensor.data[0], image)

    def test_overflow_raises(self) -> None:
        generator = ObservationGenerator()
        generator.add_sensor_index(0)
        tensor = TensorDescriptor("obs_0", (-1, 2))
        with pytest.raises(ValueError, match="overflows"):
            generator.generate(tensor, _batch(AgentDecisionRecord(1, sensors=(ArraySensor("big", [1, 2, 3]),))))


class TestTensorGenerator:
    def test_fixed_slots_registered(self) -> None:
        generator = TensorGenerator(make_metadata())
        assert generator.slot_for(tn.BATCH_SIZE_PLACEHOLDER) == sl.BATCH_SIZE
        assert generator.slot_for("obs_0") is None
        assert not generator.observations_initialized

    def test_current_layout(self) -> None:
        generator = TensorGenerator(make_metadata(version=3))
        sensors = (ArraySensor("v", [1, 2]), ArraySensor("cam", np.zeros((2, 2, 1))), ArraySensor("grid", np.zeros((3, 2))))
        generator.initialize_observations(sensors)
        assert generator.observations_initialized
        for index in range(3):
            assert generator.slot_for(tn.observation_name(index)) == sl.TensorSlot.observation(index)
        assert generator.slot_for(tn.VECTOR_OBSERVATION_PLACEHOLDER) is None

    def test_legacy_layout(self) -> None:
        generator = TensorGenerator(make_metadata(version=2))
        sensors = (
            ArraySensor("v0", [1, 2]),
            ArraySensor("cam0", np.zeros((2, 2, 3))),
            ArraySensor("v1", [3]),
            ArraySensor("cam1", np.zeros((2, 2, 1))),
        )
        generator.initialize_observations(sensors)
        assert generator.slot_for(tn.VECTOR_OBSERVATION_PLACEHOLDER) == sl.TensorSlot.observation(0)
        assert generator.slot_for(tn.visual_observation_name(0)) == sl.TensorSlot.observation(1)
        assert generator.slot_for(tn.visual_observation_name(1)) == sl.TensorSlot.observation(3)

        tensor = TensorDescriptor(tn.VECTOR_OBSERVATION_PLACEHOLDER, (-1, 3))
        generator.generate_tensors([tensor], _batch(AgentDecisionRecord(1, sensors=sensors)))
        np.testing.assert_array_equal(tensor.data, [[1, 2, 3]])

    @pytest.mark.parametrize("version,shape", [(3, (1, 1, 1, 1)), (2, (1, 1, 1, 1)), (2, (5,) * 5)])
    def test_unsupported_rank(self, version: int, shape) -> None:
        generator = TensorGenerator(make_metadata(version=version))
        with pytest.raises(UnsupportedSensorRankError) as excinfo:
            generator.initialize_observations((ArraySensor("odd", np.zeros(shape)),))
        assert excinfo.value.sensor_name == "odd"
        assert excinfo.value.rank == len(shape)

    def test_legacy_rank2_gets_own_tensor(self) -> None:
        generator = TensorGenerator(make_metadata(version=2))
        sensors = (ArraySensor("v0", [1, 2, 3]), ArraySensor("grid", [[4, 5], [6, 7]]))
        generator.initialize_observations(sensors)
        assert generator.slot_for(tn.VECTOR_OBSERVATION_PLACEHOLDER) == sl.TensorSlot.observation(0)
        assert generator.slot_for(tn.observation_name(1)) == sl.TensorSlot.observation(1)

        vector = TensorDescriptor(tn.VECTOR_OBSERVATION_PLACEHOLDER, (-1, 3))
        grid = TensorDescriptor(tn.observation_name(1), (-1, 2, 2))
        generator.generate_tensors([grid, vector], _batch(AgentDecisionRecord(1, sensors=sensors)))
        np.testing.assert_array_equal(vector.data, [[1, 2, 3]])
        np.testing.assert_array_equal(grid.data, [[[4, 5], [6, 7]]])

    def test_failed_initialization_registers_nothing(self) -> None:
        generator = TensorGenerator(make_metadata(version=3))
        sensors = (ArraySensor("v", [1, 2]), ArraySensor("odd", np.zeros((1, 1, 1, 1))))
        with pytest.raises(UnsupportedSensorRankError):
            generator.initialize_observations(sensors)
        assert not generator.observations_initialized
        assert generator.slot_for(tn.observation_name(0)) is None

        generator.initialize_observations(sensors[:1])
        assert generator.observations_initialized
        assert generator.slot_for(tn.observation_name(0)) == sl.TensorSlot.observation(0)

    def test_initialization_happens_once(self) -> None:
        generator = TensorGenerator(make_metadata(version=3))
        generator.initialize_observations((ArraySensor("v", [1]),))
        generator.initialize_observations((ArraySensor("a", [1]), ArraySensor("b", [2])))
        assert generator.slot_for(tn.observation_name(1)) is None

    def test_unknown_tensor(self) -> None:
        generator = TensorGenerator(make_metadata())
        tensor = TensorDescriptor("mystery_input", (-1, 1))
        with pytest.raises(UnknownTensorError, match="Unknown tensor expected as input: mystery_input"):
            generator.generate_tensors([tensor], _batch(AgentDecisionRecord(1)))

    def test_errors_are_configuration_errors(self) -> None:
        assert issubclass(UnknownTensorError, ConfigurationError)
        assert issubclass(UnsupportedSensorRankError, ConfigurationError)
