"""Shared test doubles for the inference core.

    - ArraySensor: sensor writing a fixed array, counting write() calls
    - EchoPolicy: torch module whose outputs are simple functions of inputs
    - make_model / current_model / legacy_model: PolicyModel builders
    - RecordingWorkerFactory: wraps TorchWorker, records calls and inputs
    - make_metadata: ModelMetadata with overridable fields
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Sequence

import numpy as np
import torch
from torch import nn

from policy_bridge.inference import tensor_names as tn
from policy_bridge.inference.executor import (
    InferenceDevice,
    ModelTensorSpec,
    PolicyModel,
    TorchWorker,
)
from policy_bridge.inference.model_info import ModelMetadata
from policy_bridge.inference.sensors import ObservationSpec
from policy_bridge.inference.tensors import TensorDescriptor

ComputeFn = Callable[[Dict[str, torch.Tensor]], Dict[str, torch.Tensor]]


class ArraySensor:
    """Writes ``values`` (any shape) and counts how often it was asked to."""

    def __init__(self, name: str, values, shape: Sequence[int] | None = None) -> None:
        values = np.asarray(values, dtype=np.float32)
        self.name = name
        self.values = values
        self.observation_spec = ObservationSpec(tuple(shape) if shape else values.shape)
        self.write_count = 0

    def write(self, writer) -> int:
        self.write_count += 1
        return writer.write_array(self.values)


class EchoPolicy(nn.Module):
    """Returns constant markers plus whatever ``compute`` derives from inputs."""

    def __init__(self, markers: Dict[str, Sequence[float]], compute: ComputeFn | None = None):
        super().__init__()
        self.markers = {name: torch.tensor([float(v) for v in values]) for name, values in markers.items()}
        self.compute = compute
        self.calls = 0

    def forward(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        self.calls += 1
        outputs = dict(self.markers)
        if self.compute is not None:
            outputs.update(self.compute(inputs))
        return outputs


def make_model(
    inputs: Iterable[ModelTensorSpec],
    markers: Dict[str, Sequence[float]],
    outputs: Iterable[str] = (),
    compute: ComputeFn | None = None,
    name: str = "echo",
) -> PolicyModel:
    """PolicyModel declaring ``markers`` and ``outputs`` as its outputs."""
    return PolicyModel(
        name=name,
        module=EchoPolicy(markers, compute),
        inputs=tuple(inputs),
        outputs=tuple(markers) + tuple(outputs),
    )


def current_model(
    obs_size: int = 4,
    continuous_size: int = 0,
    branch_sizes: Sequence[int] = (),
    memory_size: int = 0,
    deterministic_outputs: bool = True,
    version: int = 3,
) -> PolicyModel:
    """Current-format model echoing its single observation.

    continuous_actions               obs[:, :continuous_size]
    deterministic_continuous_actions -obs[:, :continuous_size]
    discrete_actions                 round(obs[:, :branches])
    deterministic_discrete_actions   round(obs[:, :branches]) + 1
    recurrent_out                    recurrent_in + 1
    value_estimate                   row sum of obs
    """
    num_branches = len(branch_sizes)
    inputs = [ModelTensorSpec(tn.observation_name(0), (-1, obs_size))]
    markers: Dict[str, Sequence[float]] = {
        tn.VERSION_NUMBER: [version],
        tn.MEMORY_SIZE: [memory_size],
    }
    outputs = [tn.VALUE_ESTIMATE_OUTPUT]
    if continuous_size:
        markers[tn.CONTINUOUS_ACTION_OUTPUT_SHAPE] = [continuous_size]
        outputs.append(tn.CONTINUOUS_ACTION_OUTPUT)
        if deterministic_outputs:
            outputs.append(tn.DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT)
    if branch_sizes:
        markers[tn.DISCRETE_ACTION_OUTPUT_SHAPE] = list(branch_sizes)
        outputs.append(tn.DISCRETE_ACTION_OUTPUT)
        if deterministic_outputs:
            outputs.append(tn.DETERMINISTIC_DISCRETE_ACTION_OUTPUT)
        inputs.append(ModelTensorSpec(tn.ACTION_MASK_PLACEHOLDER, (-1, sum(branch_sizes))))
    if memory_size:
        inputs.append(ModelTensorSpec(tn.RECURRENT_IN_PLACEHOLDER, (-1, memory_size)))
        outputs.append(tn.RECURRENT_OUTPUT)

    def compute(x: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        obs = x[tn.observation_name(0)].float()
        out = {tn.VALUE_ESTIMATE_OUTPUT: obs.sum(dim=1, keepdim=True)}
        if continuous_size:
            out[tn.CONTINUOUS_ACTION_OUTPUT] = obs[:, :continuous_size]
            if deterministic_outputs:
                out[tn.DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT] = -obs[:, :continuous_size]
        if branch_sizes:
            chosen = obs[:, :num_branches].round().int()
            out[tn.DISCRETE_ACTION_OUTPUT] = chosen
            if deterministic_outputs:
                out[tn.DETERMINISTIC_DISCRETE_ACTION_OUTPUT] = chosen + 1
        if memory_size:
            out[tn.RECURRENT_OUTPUT] = x[tn.RECURRENT_IN_PLACEHOLDER].float() + 1.0
        return out

    return make_model(inputs, markers, outputs, compute, name="current_echo")


def legacy_model(
    obs_size: int = 4,
    continuous: bool = False,
    width: int = 3,
    memory_size: int = 0,
    grid_shape: Sequence[int] | None = None,
) -> PolicyModel:
    """Legacy model whose combined ``action`` output is vector_observation[:, :width].

    ``grid_shape`` adds an ``obs_1`` input for a rank-2 sensor placed after
    the vector sensor.
    """
    inputs = [ModelTensorSpec(tn.VECTOR_OBSERVATION_PLACEHOLDER, (-1, obs_size))]
    if grid_shape is not None:
        inputs.append(ModelTensorSpec(tn.observation_name(1), (-1, *grid_shape)))
    markers = {
        tn.VERSION_NUMBER: [2],
        tn.MEMORY_SIZE: [memory_size],
        tn.IS_CONTINUOUS_CONTROL_DEPRECATED: [1 if continuous else 0],
        tn.ACTION_OUTPUT_SHAPE_DEPRECATED: [width],
    }
    outputs = [tn.ACTION_OUTPUT_DEPRECATED]
    if memory_size:
        inputs.append(ModelTensorSpec(tn.RECURRENT_IN_PLACEHOLDER, (-1, memory_size)))
        outputs.append(tn.RECURRENT_OUTPUT)

    def compute(x: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        out = {tn.ACTION_OUTPUT_DEPRECATED: x[tn.VECTOR_OBSERVATION_PLACEHOLDER].float()[:, :width]}
        if memory_size:
            out[tn.RECURRENT_OUTPUT] = x[tn.RECURRENT_IN_PLACEHOLDER].float() * 2.0
        return out

    return make_model(inputs, markers, outputs, compute, name="legacy_echo")


class RecordingWorker(TorchWorker):
    """TorchWorker that keeps copies of submitted inputs and counts schedules."""

    def __init__(self, model: PolicyModel, device: InferenceDevice, hidden_outputs=()) -> None:
        super().__init__(model, device)
        self.device_requested = device
        self.hidden_outputs = set(hidden_outputs)
        self.schedule_count = 0
        self.submitted: list[Dict[str, np.ndarray]] = []
        self._pending: Dict[str, np.ndarray] = {}
        self.disposed = False

    def set_input(self, name: str, tensor: TensorDescriptor) -> None:
        self._pending[name] = np.array(tensor.data, copy=True)
        super().set_input(name, tensor)

    def schedule(self) -> None:
        self.schedule_count += 1
        self.submitted.append(self._pending)
        self._pending = {}
        super().schedule()

    def peek_output(self, name: str) -> TensorDescriptor | None:
        if name in self.hidden_outputs:
            return None
        return super().peek_output(name)

    def dispose(self) -> None:
        self.disposed = True
        super().dispose()


class RecordingWorkerFactory:
    """Worker factory remembering every worker it built (inspection included)."""

    def __init__(self, hidden_outputs=()) -> None:
        self.hidden_outputs = tuple(hidden_outputs)
        self.workers: list[RecordingWorker] = []

    def __call__(self, model: PolicyModel, device: InferenceDevice) -> RecordingWorker:
        worker = RecordingWorker(model, device, self.hidden_outputs)
        self.workers.append(worker)
        return worker

    @property
    def runner_worker(self) -> RecordingWorker:
        """The last worker built (the runner's own, after inspection)."""
        return self.workers[-1]


def int_tensor(name: str, rows) -> TensorDescriptor:
    return TensorDescriptor.from_array(name, np.asarray(rows, dtype=np.int32))


def float_tensor(name: str, rows) -> TensorDescriptor:
    return TensorDescriptor.from_array(name, np.asarray(rows, dtype=np.float32))


def make_metadata(**overrides) -> ModelMetadata:
    """ModelMetadata for a current-format continuous model, with overrides."""
    fields = dict(
        input_names=(),
        output_names=(),
        version=3,
        memory_size=0,
        num_visual_inputs=0,
        has_continuous_outputs=True,
        has_discrete_outputs=False,
        continuous_output_name=tn.CONTINUOUS_ACTION_OUTPUT,
        discrete_output_name=tn.DISCRETE_ACTION_OUTPUT,
        supports_continuous_and_discrete=True,
        continuous_output_size=0,
        discrete_output_size=0,
    )
    fields.update(overrides)
    return ModelMetadata(**fields)
