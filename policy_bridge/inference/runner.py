"""Batch coordinator between decision-requesting agents and one policy.

Per decision step:

    1. ``put_observations(record)`` zero or more times (accumulating).
       A done record drops the episode's cached action and memory.
    2. ``decide_batch()`` once (deciding):
         - no-op when nothing is pending
         - first non-empty batch registers observation inputs from the
           first record's sensors (once per runner)
         - generate every declared input, in sorted name order
         - submit inputs to the worker and schedule it
         - fetch each declared output by name
         - decode outputs into the decision cache / memory store
         - clear the pending batch
    3. ``get_action(episode_id)`` any time; ``ActionBuffers.EMPTY`` when
       no decision exists yet.

Single-threaded by contract: one step driver calls into a runner at a time.
The memory store and decision cache are owned by the runner and only mutated
inside ``put_observations`` and ``decide_batch``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Mapping

import numpy as np

from ..utils.profiler import SectionTimers, nvtx_range
from .actions import ActionBuffers, ActionSpec
from .appliers import TensorApplier
from .errors import ModelLoadError, RunnerDisposedError
from .executor import InferenceDevice, PolicyModel, TorchWorker, Worker, WorkerFactory
from .generators import TensorGenerator
from .memory import DecisionCache, RecurrentMemoryStore
from .model_info import ModelMetadata, inspect_model, sorted_input_specs
from .records import AgentDecisionRecord, DecisionBatch
from .sensors import SensorShapeValidator
from .tensors import TensorDescriptor

if TYPE_CHECKING:
    from ..utils.validators import InferenceConfigV1

logger = logging.getLogger(__name__)

TIMED_SECTIONS = ("generate", "execute", "fetch", "apply")


class ModelRunner:
    """Runs one policy for every agent that shares it.

    Parameters
    ----------
    model : PolicyModel
        Loaded policy handle.
    action_spec : ActionSpec
        Action layout of the agents driven by this runner.
    inference_device : InferenceDevice
        Device the worker executes on.
    seed : int
        Seed of the random-normal sampling input.
    deterministic_inference : bool
        Read deterministic action outputs instead of sampled ones.
    validate_sensor_shapes : bool
        Log an error when a record's sensor layout differs from the first.
    worker_factory : WorkerFactory
        Builds the execution engine; ``TorchWorker`` by default.

    Raises
    ------
    ModelLoadError
        The model failed an error-severity check (missing version or memory
        markers, no action output, unsupported version).

    Examples
    --------
    >>> with ModelRunner(model, ActionSpec.make_discrete(3)) as runner:
    ...     runner.put_observations(AgentDecisionRecord(7, sensors=sensors))
    ...     runner.decide_batch()
    ...     actions = runner.get_action(7)
    """

    def __init__(
        self,
        model: PolicyModel,
        action_spec: ActionSpec,
        inference_device: InferenceDevice = InferenceDevice.DEFAULT,
        seed: int = 0,
        deterministic_inference: bool = False,
        *,
        validate_sensor_shapes: bool = True,
        worker_factory: WorkerFactory = TorchWorker,
    ) -> None:
        self._model = model
        self._inference_device = inference_device
        self.action_spec = action_spec
        self.deterministic_inference = deterministic_inference

        metadata, checks = inspect_model(model, deterministic_inference, worker_factory)
        errors = [check for check in checks if check.is_error]
        if errors:
            raise ModelLoadError(errors)
        for check in checks:
            logger.warning("Model %s: %s", model.name, check.message)
        self.metadata: ModelMetadata = metadata

        self._inference_inputs = [
            TensorDescriptor(name=spec.name, shape=tuple(spec.shape), dtype=spec.dtype)
            for spec in sorted_input_specs(model)
        ]
        self._memories = RecurrentMemoryStore(metadata.memory_size)
        self._decisions = DecisionCache()
        self._pending: list[AgentDecisionRecord] = []

        self._generator = TensorGenerator(metadata, seed)
        self._applier = TensorApplier(metadata, action_spec)
        self._sensor_validator = SensorShapeValidator() if validate_sensor_shapes else None
        self._timers = SectionTimers(TIMED_SECTIONS)

        self._worker: Worker | None = worker_factory(model, inference_device)

        logger.info(
            "Loaded model %s (version %d, memory %d, continuous %d, discrete %d%s) on %s",
            model.name,
            metadata.version,
            metadata.memory_size,
            metadata.continuous_output_size if metadata.has_continuous_outputs else 0,
            metadata.discrete_output_size if metadata.has_discrete_outputs else 0,
            ", deterministic" if deterministic_inference else "",
            inference_device.value,
        )

    @classmethod
    def from_config(
        cls,
        model: PolicyModel,
        action_spec: ActionSpec,
        cfg: "InferenceConfigV1",
        *,
        worker_factory: WorkerFactory = TorchWorker,
    ) -> "ModelRunner":
        """Build a runner from a validated ``inference.v1`` config."""
        return cls(
            model,
            action_spec,
            inference_device=InferenceDevice(cfg.device),
            seed=cfg.seed,
            deterministic_inference=cfg.deterministic_inference,
            validate_sensor_shapes=cfg.validate_sensor_shapes,
            worker_factory=worker_factory,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def model(self) -> PolicyModel:
        return self._model

    @property
    def inference_device(self) -> InferenceDevice:
        return self._inference_device

    @property
    def memories(self) -> RecurrentMemoryStore:
        return self._memories

    @property
    def decisions(self) -> DecisionCache:
        return self._decisions

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def observations_initialized(self) -> bool:
        return self._generator.observations_initialized

    @property
    def disposed(self) -> bool:
        return self._worker is None

    # ------------------------------------------------------------------
    # Step driver API
    # ------------------------------------------------------------------

    def put_observations(self, record: AgentDecisionRecord) -> None:
        """Queue one agent's decision request for the next ``decide_batch``."""
        self._ensure_live()
        if self._sensor_validator is not None and not record.done:
            self._sensor_validator.validate_sensors(record.sensors)

        self._pending.append(record)
        self._decisions.register(record.episode_id)
        if record.done:
            self._decisions.discard(record.episode_id)
            self._memories.evict(record.episode_id)

    def initialize_observations(self, record: AgentDecisionRecord) -> None:
        """Register observation inputs from ``record``'s sensors (once)."""
        self._generator.initialize_observations(record.sensors)

    def decide_batch(self) -> None:
        """Run the model once for every pending request.

        Raises
        ------
        ConfigurationError
            A declared input or output has no strategy, or a sensor rank is
            unsupported. The pending batch is dropped.
        RunnerDisposedError
            The runner was disposed.
        """
        self._ensure_live()
        if not self._pending:
            return

        batch = DecisionBatch(
            records=list(self._pending),
            memories=self._memories,
            decisions=self._decisions,
        )
        try:
            self.initialize_observations(batch.records[0])
            self._decisions.begin_step()

            with self._timers.measure("generate"):
                self._generator.generate_tensors(self._inference_inputs, batch)

            with self._timers.measure("execute"), nvtx_range(f"ModelRunner.{self._model.name}"):
                for tensor in self._inference_inputs:
                    self._worker.set_input(tensor.name, tensor)
                self._worker.schedule()

            with self._timers.measure("fetch"):
                outputs = self._fetch_outputs()

            with self._timers.measure("apply"):
                self._applier.apply_tensors(outputs, batch)

            logger.debug(
                "Decided batch of %d for model %s (%d done)",
                batch.size,
                self._model.name,
                sum(1 for record in batch.records if record.done),
            )
        finally:
            self._pending.clear()

    def _fetch_outputs(self) -> list[TensorDescriptor]:
        outputs = []
        for name in self.metadata.output_names:
            output = self._worker.peek_output(name)
            if output is None:
                logger.debug("Model %s produced no %s output", self._model.name, name)
                continue
            outputs.append(output)
        return outputs

    def get_action(self, episode_id: int) -> ActionBuffers:
        """Most recent decision for ``episode_id``, or ``ActionBuffers.EMPTY``."""
        return self._decisions.get(episode_id)

    def has_model(self, model: PolicyModel, inference_device: InferenceDevice) -> bool:
        """Whether this runner can be reused for ``(model, inference_device)``."""
        return self._model is model and self._inference_device == inference_device

    def timings(self) -> Mapping[str, Mapping[str, float]]:
        """Accumulated wall-clock time per decide_batch section."""
        return self._timers.summary()

    def memory_of(self, episode_id: int) -> np.ndarray | None:
        memory = self._memories.read(episode_id)
        return None if memory is None else memory.copy()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _ensure_live(self) -> None:
        if self._worker is None:
            raise RunnerDisposedError(f"ModelRunner for {self._model.name} was disposed")

    def dispose(self) -> None:
        """Release the worker and every input buffer (idempotent)."""
        if self._worker is not None:
            self._worker.dispose()
            self._worker = None
        for tensor in self._inference_inputs:
            tensor.release()
        self._pending.clear()

    def __enter__(self) -> "ModelRunner":
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()
