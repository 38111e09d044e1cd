"""Model metadata inspection and format validation.

The inspector runs the model once on CPU with zero-filled placeholder
inputs, caches every declared output and derives an immutable
``ModelMetadata`` from the marker tensors:

    version_number                   model API version (absent -> -1)
    memory_size                      recurrent memory width (absent -> 0)
    continuous_action_output_shape   continuous width
    discrete_action_output_shape     per-branch sizes (width = their sum)
    is_continuous_control            legacy: 1 = continuous, 0 = discrete
    action_output_shape              legacy: width of the combined output

Format detection:
    Legacy (version 2) models expose the combined ``action`` output and the
    two legacy markers, and none of the split action outputs. Exactly one of
    continuous/discrete is active, selected by ``is_continuous_control``.

    Current models activate each action kind independently: the stochastic
    or deterministic output (per ``deterministic_inference``) must be
    declared and its shape marker must be positive. Both kinds may be
    active at once (hybrid action space).

Output names are matched by substring, so ``continuous_actions`` also
matches ``deterministic_continuous_actions``.

Validation (``check_expected_tensors``) never raises. It returns a list of
``FailedCheck``; error severity means the model must not be used.

Usage:
    with ModelInspector(model, deterministic_inference=False) as inspector:
        metadata = inspector.metadata
        checks = inspector.check_expected_tensors()
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from . import tensor_names as tn
from .executor import InferenceDevice, ModelTensorSpec, PolicyModel, TorchWorker, WorkerFactory, zero_inputs
from .tensors import TensorDescriptor

logger = logging.getLogger(__name__)


class ModelApiVersion(enum.IntEnum):
    """Model API versions this core can run."""

    MLAGENTS_1_0 = 2
    MLAGENTS_2_0 = 3

    @classmethod
    def min_supported(cls) -> int:
        return int(cls.MLAGENTS_1_0)

    @classmethod
    def max_supported(cls) -> int:
        return int(cls.MLAGENTS_2_0)


class CheckSeverity(enum.Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class FailedCheck:
    """A model validation finding with a human-readable message."""

    severity: CheckSeverity
    message: str

    @classmethod
    def warning(cls, message: str) -> "FailedCheck":
        return cls(CheckSeverity.WARNING, message)

    @classmethod
    def error(cls, message: str) -> "FailedCheck":
        return cls(CheckSeverity.ERROR, message)

    @property
    def is_error(self) -> bool:
        return self.severity is CheckSeverity.ERROR


@dataclass(frozen=True)
class ModelMetadata:
    """Facts about a loaded model, derived once at load time."""

    input_names: tuple[str, ...]
    output_names: tuple[str, ...]
    version: int
    memory_size: int
    num_visual_inputs: int
    has_continuous_outputs: bool
    has_discrete_outputs: bool
    continuous_output_name: str | None
    discrete_output_name: str | None
    supports_continuous_and_discrete: bool
    continuous_output_size: int
    discrete_output_size: int
    deterministic_inference: bool = False

    @property
    def is_legacy(self) -> bool:
        return self.version == ModelApiVersion.MLAGENTS_1_0


def outputs_contain_name(outputs: Sequence[str], name: str) -> bool:
    return any(name in output for output in outputs)


def sorted_input_specs(model: PolicyModel) -> list[ModelTensorSpec]:
    """Declared inputs in deterministic (lexicographic) order."""
    return sorted(model.inputs, key=lambda spec: spec.name)


class ModelInspector:
    """Introspects a ``PolicyModel`` by executing it once.

    Parameters
    ----------
    model : PolicyModel
        Model to inspect.
    deterministic_inference : bool
        Resolve action outputs to their deterministic variants.
    worker_factory : WorkerFactory
        Engine used for the probing pass (always on CPU).
    """

    def __init__(
        self,
        model: PolicyModel,
        deterministic_inference: bool = False,
        worker_factory: WorkerFactory = TorchWorker,
    ) -> None:
        self.model = model
        self.deterministic_inference = deterministic_inference
        self._declared_outputs = list(model.outputs)
        self._outputs: dict[str, TensorDescriptor] = {}
        self._inputs = zero_inputs(sorted_input_specs(model))

        worker = worker_factory(model, InferenceDevice.CPU)
        try:
            for tensor in self._inputs:
                worker.set_input(tensor.name, tensor)
            worker.schedule()
            for name in self._declared_outputs:
                output = worker.peek_output(name)
                if output is not None:
                    self._outputs[name] = output
        finally:
            worker.dispose()

        self.metadata = self._build_metadata()

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def __enter__(self) -> "ModelInspector":
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()

    def dispose(self) -> None:
        """Release the probing buffers; ``metadata`` stays valid."""
        for tensor in self._inputs:
            tensor.release()
        self._inputs.clear()
        self._outputs.clear()

    # ------------------------------------------------------------------
    # Marker access
    # ------------------------------------------------------------------

    def tensor_by_name(self, name: str) -> TensorDescriptor | None:
        return self._outputs.get(name)

    def _int_marker(self, name: str) -> int:
        tensor = self.tensor_by_name(name)
        if tensor is None or tensor.data is None or tensor.data.size == 0:
            return 0
        return int(tensor.as_float().flat[0])

    def _outputs_contain(self, name: str) -> bool:
        return outputs_contain_name(self._declared_outputs, name)

    # ------------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------------

    def _version(self) -> int:
        version = self._int_marker(tn.VERSION_NUMBER)
        return version if version > 0 else -1

    def _supports_continuous_and_discrete(self) -> bool:
        return self._outputs_contain(tn.CONTINUOUS_ACTION_OUTPUT) or self._outputs_contain(
            tn.DISCRETE_ACTION_OUTPUT
        )

    def _legacy_is_continuous(self) -> bool | None:
        marker = self.tensor_by_name(tn.IS_CONTINUOUS_CONTROL_DEPRECATED)
        shape = self.tensor_by_name(tn.ACTION_OUTPUT_SHAPE_DEPRECATED)
        if marker is None or shape is None:
            return None
        return self._int_marker(tn.IS_CONTINUOUS_CONTROL_DEPRECATED) > 0

    def _continuous_output_name(self) -> str:
        if not self._supports_continuous_and_discrete():
            return tn.ACTION_OUTPUT_DEPRECATED
        if self.deterministic_inference:
            return tn.DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT
        return tn.CONTINUOUS_ACTION_OUTPUT

    def _discrete_output_name(self) -> str:
        if not self._supports_continuous_and_discrete():
            return tn.ACTION_OUTPUT_DEPRECATED
        if self.deterministic_inference:
            return tn.DETERMINISTIC_DISCRETE_ACTION_OUTPUT
        return tn.DISCRETE_ACTION_OUTPUT

    def _continuous_output_size(self) -> int:
        if not self._supports_continuous_and_discrete():
            if self._legacy_is_continuous():
                return self._int_marker(tn.ACTION_OUTPUT_SHAPE_DEPRECATED)
            return 0
        return self._int_marker(tn.CONTINUOUS_ACTION_OUTPUT_SHAPE)

    def _discrete_output_size(self) -> int:
        if not self._supports_continuous_and_discrete():
            if self._legacy_is_continuous() is False:
                return self._int_marker(tn.ACTION_OUTPUT_SHAPE_DEPRECATED)
            return 0
        marker = self.tensor_by_name(tn.DISCRETE_ACTION_OUTPUT_SHAPE)
        if marker is None or marker.data is None:
            return 0
        return int(np.sum(marker.as_float()))

    def _has_continuous_outputs(self) -> bool:
        if not self._supports_continuous_and_discrete():
            return self._legacy_is_continuous() is True
        return self._outputs_contain(self._continuous_output_name()) and self._continuous_output_size() > 0

    def _has_discrete_outputs(self) -> bool:
        if not self._supports_continuous_and_discrete():
            return self._legacy_is_continuous() is False
        return self._outputs_contain(self._discrete_output_name()) and self._discrete_output_size() > 0

    def _num_visual_inputs(self) -> int:
        return sum(
            1
            for spec in self.model.inputs
            if spec.name.startswith(tn.VISUAL_OBSERVATION_PLACEHOLDER_PREFIX)
        )

    def _build_metadata(self) -> ModelMetadata:
        has_continuous = self._has_continuous_outputs()
        has_discrete = self._has_discrete_outputs()
        memory_size = self._int_marker(tn.MEMORY_SIZE)

        output_names = set()
        if has_continuous:
            output_names.add(self._continuous_output_name())
        if has_discrete:
            output_names.add(self._discrete_output_name())
        if memory_size > 0:
            output_names.add(tn.RECURRENT_OUTPUT)

        return ModelMetadata(
            input_names=tuple(spec.name for spec in sorted_input_specs(self.model)),
            output_names=tuple(sorted(output_names)),
            version=self._version(),
            memory_size=memory_size,
            num_visual_inputs=self._num_visual_inputs(),
            has_continuous_outputs=has_continuous,
            has_discrete_outputs=has_discrete,
            continuous_output_name=self._continuous_output_name(),
            discrete_output_name=self._discrete_output_name(),
            supports_continuous_and_discrete=self._supports_continuous_and_discrete(),
            continuous_output_size=self._continuous_output_size(),
            discrete_output_size=self._discrete_output_size(),
            deterministic_inference=self.deterministic_inference,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_expected_tensors(self) -> list[FailedCheck]:
        """Check the model carries every tensor inference relies on.

        Returns
        -------
        list[FailedCheck]
            Empty when the model is complete. Missing version/memory
            constants and a missing action output are errors; a missing
            shape marker or inference-mode mismatch for one action kind
            is a warning (that kind stays disabled).
        """
        checks: list[FailedCheck] = []

        if self.tensor_by_name(tn.VERSION_NUMBER) is None:
            checks.append(
                FailedCheck.error(
                    f'Required constant "{tn.VERSION_NUMBER}" was not found in the model file.'
                )
            )
        if self.tensor_by_name(tn.MEMORY_SIZE) is None:
            checks.append(
                FailedCheck.error(
                    f'Required constant "{tn.MEMORY_SIZE}" was not found in the model file.'
                )
            )

        action_outputs = (
            tn.ACTION_OUTPUT_DEPRECATED,
            tn.CONTINUOUS_ACTION_OUTPUT,
            tn.DISCRETE_ACTION_OUTPUT,
            tn.DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT,
            tn.DETERMINISTIC_DISCRETE_ACTION_OUTPUT,
        )
        if not any(self._outputs_contain(name) for name in action_outputs):
            checks.append(FailedCheck.error("The model does not contain any Action Output Node."))
            return checks

        if not self._supports_continuous_and_discrete():
            if self.tensor_by_name(tn.ACTION_OUTPUT_SHAPE_DEPRECATED) is None:
                checks.append(
                    FailedCheck.warning("The model does not contain any Action Output Shape Node.")
                )
            if self.tensor_by_name(tn.IS_CONTINUOUS_CONTROL_DEPRECATED) is None:
                checks.append(
                    FailedCheck.warning(
                        f'Required constant "{tn.IS_CONTINUOUS_CONTROL_DEPRECATED}" was not found '
                        "in the model file. This is only required for models that use a "
                        "deprecated model format."
                    )
                )
            return checks

        inference_kind = "deterministic" if self.deterministic_inference else "stochastic"
        prefix = "Deterministic " if self.deterministic_inference else ""

        if self._outputs_contain(tn.CONTINUOUS_ACTION_OUTPUT):
            if self.tensor_by_name(tn.CONTINUOUS_ACTION_OUTPUT_SHAPE) is None:
                checks.append(
                    FailedCheck.warning(
                        "The model uses continuous action but does not contain Continuous "
                        "Action Output Shape Node."
                    )
                )
            elif not self._has_continuous_outputs():
                checks.append(
                    FailedCheck.warning(
                        f"The model uses {inference_kind} inference but does not contain "
                        f"{prefix}Continuous Action Output Tensor. Toggle the deterministic "
                        "inference flag."
                    )
                )

        if self._outputs_contain(tn.DISCRETE_ACTION_OUTPUT):
            if self.tensor_by_name(tn.DISCRETE_ACTION_OUTPUT_SHAPE) is None:
                checks.append(
                    FailedCheck.warning(
                        "The model uses discrete action but does not contain Discrete "
                        "Action Output Shape Node."
                    )
                )
            elif not self._has_discrete_outputs():
                checks.append(
                    FailedCheck.warning(
                        f"The model uses {inference_kind} inference but does not contain "
                        f"{prefix}Discrete Action Output Tensor. Toggle the deterministic "
                        "inference flag."
                    )
                )

        return checks


def check_model_version(metadata: ModelMetadata) -> FailedCheck | None:
    """Error if the model was exported by an unsupported trainer version."""
    version = metadata.version
    if version < ModelApiVersion.min_supported():
        return FailedCheck.error(
            "Model was trained with an older version of the trainer than is supported. "
            "Either retrain with a newer trainer, or use an older version of this package.\n"
            f"Model version: {version} Minimum supported version: {ModelApiVersion.min_supported()}"
        )
    if version > ModelApiVersion.max_supported():
        return FailedCheck.error(
            "Model was trained with a newer version of the trainer than is supported. "
            "Either retrain with an older trainer, or update to a newer version of this package.\n"
            f"Model version: {version} Maximum supported version: {ModelApiVersion.max_supported()}"
        )
    return None


def inspect_model(
    model: PolicyModel,
    deterministic_inference: bool = False,
    worker_factory: WorkerFactory = TorchWorker,
) -> tuple[ModelMetadata, list[FailedCheck]]:
    """Metadata plus every failed check (tensor checks, then version)."""
    with ModelInspector(model, deterministic_inference, worker_factory) as inspector:
        metadata = inspector.metadata
        checks = inspector.check_expected_tensors()
    version_check = check_model_version(metadata)
    if version_check is not None:
        checks.append(version_check)
    return metadata, checks
