"""Inference core: tensor contracts, generators, appliers and the runner.

Modules:
    - tensors: TensorDescriptor buffers and checked type conversion
    - actions: ActionSpec and per-agent ActionBuffers
    - sensors: Sensor protocol, ObservationWriter, shape validation
    - memory: recurrent memory store and decision cache
    - records: per-agent decision requests and the step batch
    - executor: PolicyModel handle, Worker protocol, TorchWorker
    - model_info: metadata derivation and model checks
    - slots: tensor roles and name lookup tables
    - generators / appliers: batch -> inputs, outputs -> agents
    - runner: ModelRunner, the per-step coordinator

Usage:
    from policy_bridge.inference import ModelRunner, AgentDecisionRecord

    runner = ModelRunner(model, ActionSpec.make_discrete(3))
    runner.put_observations(AgentDecisionRecord(episode_id=1, sensors=sensors))
    runner.decide_batch()
    actions = runner.get_action(1)
"""

from .actions import ActionBuffers, ActionSpec
from .appliers import TensorApplier, masked_argmax
from .errors import (
    ConfigurationError,
    InferenceError,
    ModelLoadError,
    RunnerDisposedError,
    TensorTypeError,
    UnknownTensorError,
    UnsupportedSensorRankError,
)
from .executor import InferenceDevice, ModelTensorSpec, PolicyModel, TorchWorker, Worker
from .generators import TensorGenerator
from .memory import DecisionCache, RecurrentMemoryStore
from .model_info import (
    CheckSeverity,
    FailedCheck,
    ModelApiVersion,
    ModelInspector,
    ModelMetadata,
    check_model_version,
    inspect_model,
)
from .records import AgentDecisionRecord, DecisionBatch
from .runner import ModelRunner
from .sensors import ObservationSpec, ObservationWriter, Sensor, SensorShapeValidator
from .tensors import TensorDescriptor, TensorType, concretize_shape

__all__ = [
    "ActionBuffers",
    "ActionSpec",
    "AgentDecisionRecord",
    "CheckSeverity",
    "ConfigurationError",
    "DecisionBatch",
    "DecisionCache",
    "FailedCheck",
    "InferenceDevice",
    "InferenceError",
    "ModelApiVersion",
    "ModelInspector",
    "ModelLoadError",
    "ModelMetadata",
    "ModelRunner",
    "ModelTensorSpec",
    "ObservationSpec",
    "ObservationWriter",
    "PolicyModel",
    "RecurrentMemoryStore",
    "RunnerDisposedError",
    "Sensor",
    "SensorShapeValidator",
    "TensorApplier",
    "TensorDescriptor",
    "TensorGenerator",
    "TensorType",
    "TensorTypeError",
    "TorchWorker",
    "UnknownTensorError",
    "UnsupportedSensorRankError",
    "Worker",
    "check_model_version",
    "concretize_shape",
    "inspect_model",
    "masked_argmax",
]
