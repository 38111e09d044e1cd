"""Model handle and the worker that executes it.

The execution engine is opaque to the rest of the core. All it sees is the
``Worker`` protocol:

    set_input(name, tensor)   submit a named input buffer
    schedule()                run the model; blocks until outputs are ready
    peek_output(name)         named output buffer, or None if absent
    dispose()                 release the engine and held buffers

``TorchWorker`` is the default implementation: the loaded policy is a
``torch.nn.Module`` mapping a dict of named input tensors to a dict of named
output tensors. Marker constants (version, memory size, action shapes) are
ordinary outputs of that module.
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Protocol, Sequence

import torch
from torch import nn

from ..utils.torch_utils import resolve_device, to_numpy
from .tensors import TensorDescriptor, TensorType

logger = logging.getLogger(__name__)


class InferenceDevice(enum.Enum):
    """Where the worker executes the model."""

    DEFAULT = "default"
    CPU = "cpu"
    GPU = "gpu"


@dataclass(frozen=True)
class ModelTensorSpec:
    """A declared model input: name, shape (``-1`` = dynamic) and type."""

    name: str
    shape: tuple[int, ...]
    dtype: TensorType = TensorType.FLOATING_POINT


@dataclass(eq=False)
class PolicyModel:
    """A loaded policy as handed over by the model-loading collaborator.

    Equality is identity: two handles are the same model only if they are
    the same object.
    """

    name: str
    module: nn.Module
    inputs: Sequence[ModelTensorSpec] = field(default_factory=tuple)
    outputs: Sequence[str] = field(default_factory=tuple)

    def input_spec(self, name: str) -> ModelTensorSpec | None:
        for spec in self.inputs:
            if spec.name == name:
                return spec
        return None


class Worker(Protocol):
    def set_input(self, name: str, tensor: TensorDescriptor) -> None: ...

    def schedule(self) -> None: ...

    def peek_output(self, name: str) -> TensorDescriptor | None: ...

    def dispose(self) -> None: ...


WorkerFactory = Callable[[PolicyModel, InferenceDevice], Worker]


def _torch_dtype(tag: TensorType) -> torch.dtype:
    return torch.float32 if tag is TensorType.FLOATING_POINT else torch.int32


def _module_device(module: nn.Module) -> torch.device | None:
    """Device of the first parameter or buffer, None for a stateless module."""
    for tensor in module.parameters():
        return tensor.device
    for tensor in module.buffers():
        return tensor.device
    return None


class TorchWorker:
    """Runs a ``PolicyModel`` whose module is a torch network.

    Parameters
    ----------
    model : PolicyModel
        Model to execute. The module is used in place when it already lives
        on the target device, otherwise the worker runs its own copy there.
    device : InferenceDevice
        ``GPU`` falls back to CPU when CUDA is unavailable.
    """

    def __init__(self, model: PolicyModel, device: InferenceDevice = InferenceDevice.DEFAULT) -> None:
        self.model = model
        self.device = resolve_device(device.value)
        module = model.module
        if _module_device(module) not in (None, self.device):
            module = copy.deepcopy(module)
        self._module: nn.Module | None = module.to(self.device).eval()
        self._inputs: dict[str, torch.Tensor] = {}
        self._outputs: dict[str, torch.Tensor] = {}
        logger.debug("TorchWorker for %s on %s", model.name, self.device)

    def set_input(self, name: str, tensor: TensorDescriptor) -> None:
        if tensor.data is None:
            raise ValueError(f"Input tensor {name} has no buffer")
        self._inputs[name] = torch.as_tensor(
            tensor.data, dtype=_torch_dtype(tensor.dtype), device=self.device
        )

    def schedule(self) -> None:
        if self._module is None:
            raise RuntimeError(f"Worker for model {self.model.name} was disposed")
        with torch.inference_mode():
            outputs = self._module(dict(self._inputs))
        if not isinstance(outputs, Mapping):
            raise TypeError(
                f"Model {self.model.name} must return a mapping of output tensors, "
                f"got {type(outputs).__name__}"
            )
        self._outputs = dict(outputs)
        self._inputs.clear()

    def peek_output(self, name: str) -> TensorDescriptor | None:
        output = self._outputs.get(name)
        if output is None:
            return None
        array = to_numpy(output)
        if array.ndim == 0:
            array = array.reshape(1)
        return TensorDescriptor.from_array(name, array)

    def dispose(self) -> None:
        self._inputs.clear()
        self._outputs.clear()
        self._module = None


def zero_inputs(specs: Sequence[ModelTensorSpec]) -> list[TensorDescriptor]:
    """Placeholder inputs for every declared input, dynamic dims set to 1."""
    tensors = []
    for spec in specs:
        tensor = TensorDescriptor(name=spec.name, shape=tuple(spec.shape), dtype=spec.dtype)
        tensor.allocate()
        tensors.append(tensor)
    return tensors
