"""Tests for tensor buffers, action buffers and per-episode stores.

Tests for policy_bridge.inference.{tensors,actions,memory,records}:
    - Dynamic (-1) dimensions concretize to 1
    - resize() reallocates zeros with the batch as leading dimension
    - Checked conversion: as_int() refuses float buffers
    - ActionSpec validation, ActionBuffers equality and the EMPTY sentinel
    - RecurrentMemoryStore copy/pad/evict semantics
    - DecisionCache hands out fresh buffers each step

Run:
    pytest tests/test_tensors.py -v
"""

from __future__ import annotations

import numpy as np
import pytest

from policy_bridge.inference.actions import ActionBuffers, ActionSpec
from policy_bridge.inference.errors import TensorTypeError
from policy_bridge.inference.memory import DecisionCache, RecurrentMemoryStore
from policy_bridge.inference.records import AgentDecisionRecord, DecisionBatch
from policy_bridge.inference.tensors import TensorDescriptor, TensorType, concretize_shape


# ---------------------------------------------------------------------------
# TensorDescriptor
# ---------------------------------------------------------------------------


class TestConcretize:
    def test_dynamic_dims_become_one(self) -> None:
        assert concretize_shape((-1, 1, 16)) == (1, 1, 16)
        assert concretize_shape((-1, -1)) == (1, 1)

    def test_static_dims_untouched(self) -> None:
        assert concretize_shape((3, 84, 84, 3)) == (3, 84, 84, 3)

    def test_allocate_uses_concrete_shape(self) -> None:
        tensor = TensorDescriptor("obs_0", shape=(-1, 5))
        data = tensor.allocate()
        assert data.shape == (1, 5)
        assert data.dtype == np.float32
        assert not data.any()


class TestResize:
    def test_leading_dimension_is_batch(self) -> None:
        tensor = TensorDescriptor("obs_0", shape=(-1, 4, 2))
        tensor.resize(7)
        assert tensor.shape == (7, 4, 2)
        assert tensor.data.shape == (7, 4, 2)

    def test_resize_reallocates_zeros(self) -> None:
        tensor = TensorDescriptor("obs_0", shape=(-1, 3))
        first = tensor.resize(2)
        first[:] = 5.0
        second = tensor.resize(2)
        assert second is not first
        assert not second.any()

    def test_integer_tensor_keeps_type(self) -> None:
        tensor = TensorDescriptor("prev_action", shape=(-1, 2), dtype=TensorType.INTEGER)
        assert tensor.resize(3).dtype == np.int32

    def test_zero_batch(self) -> None:
        tensor = TensorDescriptor("obs_0", shape=(-1, 3))
        assert tensor.resize(0).shape == (0, 3)

    def test_negative_batch_rejected(self) -> None:
        with pytest.raises(ValueError):
            TensorDescriptor("obs_0", shape=(-1, 3)).resize(-1)

    def test_rows_flattens_trailing_dims(self) -> None:
        tensor = TensorDescriptor("visual_observation_0", shape=(-1, 2, 2, 3))
        tensor.resize(2)
        tensor.rows()[1, :] = 1.0
        assert tensor.data[1].sum() == 12.0
        assert tensor.data[0].sum() == 0.0
        assert tensor.width == 12

    def test_fill_batch(self) -> None:
        tensor = TensorDescriptor("obs_0", shape=(-1, 2))
        tensor.resize(3)
        tensor.fill_batch(1, 2.5)
        np.testing.assert_array_equal(tensor.data, [[0, 0], [2.5, 2.5], [0, 0]])


class TestCheckedConversion:
    def test_as_int_refuses_float(self) -> None:
        tensor = TensorDescriptor.from_array("discrete_actions", np.array([[1.0, 2.0]]))
        with pytest.raises(TensorTypeError, match="discrete_actions"):
            tensor.as_int()

    def test_tensor_type_error_is_type_error(self) -> None:
        assert issubclass(TensorTypeError, TypeError)

    def test_as_float_widens_int(self) -> None:
        tensor = TensorDescriptor.from_array("x", np.array([[1, 2]], dtype=np.int64))
        assert tensor.dtype is TensorType.INTEGER
        values = tensor.as_float()
        assert values.dtype == np.float32
        np.testing.assert_array_equal(values, [[1.0, 2.0]])

    def test_from_array_bool_is_integer(self) -> None:
        tensor = TensorDescriptor.from_array("mask", np.array([True, False]))
        assert tensor.dtype is TensorType.INTEGER
        np.testing.assert_array_equal(tensor.as_int(), [1, 0])

    def test_released_buffer(self) -> None:
        tensor = TensorDescriptor.from_array("x", np.zeros((1, 2)))
        tensor.release()
        assert tensor.data is None
        assert tensor.batch_size == 0
        with pytest.raises(ValueError):
            tensor.as_float()


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class TestActions:
    def test_spec_sizes(self) -> None:
        spec = ActionSpec(continuous_size=2, branch_sizes=(3, 2))
        assert spec.num_discrete_actions == 2
        assert spec.sum_of_discrete_branch_sizes == 5

    def test_spec_rejects_bad_branches(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            ActionSpec.make_discrete(3, 0)
        with pytest.raises(ValueError):
            ActionSpec(continuous_size=-1)

    def test_from_spec_zeroed(self) -> None:
        buffers = ActionBuffers.from_spec(ActionSpec(2, (3,)))
        np.testing.assert_array_equal(buffers.continuous, [0.0, 0.0])
        np.testing.assert_array_equal(buffers.discrete, [0])

    def test_equality_by_value(self) -> None:
        assert ActionBuffers.from_lists([1.0, 2.0], [1]) == ActionBuffers.from_lists([1.0, 2.0], [1])
        assert ActionBuffers.from_lists([1.0]) != ActionBuffers.from_lists([2.0])

    def test_empty_sentinel_is_read_only(self) -> None:
        assert ActionBuffers.EMPTY.is_empty()
        assert ActionBuffers() == ActionBuffers.EMPTY
        with pytest.raises(ValueError):
            ActionBuffers.EMPTY.continuous[...] = 1.0


# ---------------------------------------------------------------------------
# Per-episode stores
# ---------------------------------------------------------------------------


class TestRecurrentMemoryStore:
    def test_missing_entry(self) -> None:
        store = RecurrentMemoryStore(4)
        assert store.read(1) is None
        assert 1 not in store

    def test_write_copies_and_pads(self) -> None:
        store = RecurrentMemoryStore(4)
        row = np.array([1.0, 2.0], dtype=np.float32)
        store.write(1, row)
        row[0] = 9.0
        np.testing.assert_array_equal(store.read(1), [1.0, 2.0, 0.0, 0.0])

    def test_evict(self) -> None:
        store = RecurrentMemoryStore(2)
        store.write(1, [1.0, 1.0])
        store.evict(1)
        store.evict(99)
        assert len(store) == 0


class TestDecisionCache:
    def test_register_defaults_to_empty(self) -> None:
        cache = DecisionCache()
        cache.register(3)
        assert 3 in cache
        assert cache.get(3) is ActionBuffers.EMPTY
        assert cache.get(4) is ActionBuffers.EMPTY

    def test_buffers_shared_within_step(self) -> None:
        cache = DecisionCache()
        spec = ActionSpec(1, (2,))
        cache.begin_step()
        first = cache.buffers_for(1, spec)
        assert cache.buffers_for(1, spec) is first

    def test_fresh_buffers_each_step(self) -> None:
        cache = DecisionCache()
        spec = ActionSpec.make_continuous(1)
        cache.begin_step()
        cache.buffers_for(1, spec).continuous[0] = 4.0
        returned = cache.get(1)
        cache.begin_step()
        cache.buffers_for(1, spec).continuous[0] = 8.0
        assert returned.continuous[0] == 4.0
        assert cache.get(1).continuous[0] == 8.0

    def test_discard(self) -> None:
        cache = DecisionCache()
        cache.register(1)
        cache.discard(1)
        cache.discard(2)
        assert 1 not in cache
        assert len(cache) == 0


class TestDecisionBatch:
    def test_accepts_action(self) -> None:
        cache = DecisionCache()
        cache.register(1)
        batch = DecisionBatch(
            records=[
                AgentDecisionRecord(1),
                AgentDecisionRecord(2, done=True),
                AgentDecisionRecord(3),
            ],
            decisions=cache,
        )
        assert batch.size == 3
        assert batch.episode_ids == [1, 2, 3]
        assert batch.accepts_action(0)
        assert not batch.accepts_action(1)
        assert not batch.accepts_action(2)
