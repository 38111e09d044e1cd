"""Exceptions raised by the inference core.

Hierarchy::

    InferenceError
    ├── ConfigurationError          model and agent setup disagree
    │   ├── UnknownTensorError      tensor name with no registered strategy
    │   └── UnsupportedSensorRankError
    ├── ModelLoadError              error-severity model checks failed
    ├── TensorTypeError             refused float -> int conversion
    └── RunnerDisposedError

Configuration errors abort the current decision step. They are never retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .model_info import FailedCheck


class InferenceError(Exception):
    """Base exception for all inference core errors."""

    pass


class ConfigurationError(InferenceError):
    """The model's declared tensors do not match the agents feeding it."""

    pass


class UnknownTensorError(ConfigurationError):
    """A tensor name required by the model has no generator or applier."""

    def __init__(self, name: str, direction: str = "input") -> None:
        super().__init__(f"Unknown tensor expected as {direction}: {name}")
        self.name = name
        self.direction = direction


class UnsupportedSensorRankError(ConfigurationError):
    """A sensor declares an observation rank the model format cannot batch."""

    def __init__(self, sensor_name: str, rank: int) -> None:
        super().__init__(f"Sensor {sensor_name} has an invalid rank {rank}")
        self.sensor_name = sensor_name
        self.rank = rank


class ModelLoadError(InferenceError):
    """The model failed an error-severity check and cannot run inference."""

    def __init__(self, checks: Sequence["FailedCheck"]) -> None:
        self.checks = list(checks)
        message = "; ".join(check.message for check in self.checks)
        super().__init__(f"Model cannot be used for inference: {message}")


class TensorTypeError(InferenceError, TypeError):
    """A floating-point buffer was read where an integer buffer is required."""

    pass


class RunnerDisposedError(InferenceError):
    """Operation attempted on a runner whose worker was already released."""

    pass
