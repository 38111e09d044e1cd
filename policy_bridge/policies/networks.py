"""Reference policy honouring the full exported-model tensor contract.

``ContractPolicy`` is a small actor-critic network that behaves like a policy
exported by the trainer:

Inputs (dict of named tensors):
    - obs_<i>                 current format (v3), one per sensor
    - vector_observation      legacy format (v2), all rank-1 sensors concatenated
    - obs_<i>                 legacy format (v2), one per rank-2 sensor
    - visual_observation_<k>  legacy format (v2), one per rank-3 sensor
    - recurrent_in            [B, memory_size] when memory_size > 0
    - action_masks            [B, sum(branch_sizes)] float, 1 = allowed
    - epsilon                 [B, continuous_size] standard-normal noise

Outputs (dict of named tensors):
    - version_number, memory_size                   marker constants
    - continuous_action_output_shape (v3)          [continuous_size]
    - discrete_action_output_shape (v3)            branch sizes
    - is_continuous_control, action_output_shape   legacy markers (v2)
    - continuous_actions / deterministic_continuous_actions    [B, continuous]
    - discrete_actions / deterministic_discrete_actions        [B, branches] int32
    - action (v2)             continuous values, or per-branch probabilities
    - recurrent_out           [B, memory_size]
    - value_estimate          [B, 1]

Architecture:
    - Trunk: flatten + concatenate observations -> Linear -> ReLU
    - Memory: GRUCell(hidden, memory_size) when memory_size > 0
    - Heads: continuous mean (+ learned log-std), discrete logits, value

Discrete sampling uses torch's global RNG; seed it with
``torch_utils.seed_everything`` for reproducible runs.

Public API:
    build_policy_model(name, observation_shapes, ...) -> PolicyModel
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
from torch import nn

from ..inference import tensor_names as tn
from ..inference.executor import ModelTensorSpec, PolicyModel
from ..inference.model_info import ModelApiVersion
from ..inference.tensors import TensorType

logger = logging.getLogger(__name__)

# Masked logits are pushed this far below the rest before sampling
MASK_LOGIT = -1e8
# Continuous actions are clipped to [-ACTION_CLIP, ACTION_CLIP] and rescaled to [-1, 1]
ACTION_CLIP = 3.0


def _legacy_observation_layout(
    observation_shapes: Sequence[Sequence[int]],
) -> List[Tuple[str, Tuple[int, ...]]]:
    """(input name, per-row shape) pairs of the legacy format, in input order."""
    layout: List[Tuple[str, Tuple[int, ...]]] = []
    vector_width = sum(int(s[0]) for s in observation_shapes if len(s) == 1)
    visual_index = 0
    for index, shape in enumerate(observation_shapes):
        shape = tuple(int(d) for d in shape)
        if len(shape) == 1:
            if all(name != tn.VECTOR_OBSERVATION_PLACEHOLDER for name, _ in layout):
                layout.append((tn.VECTOR_OBSERVATION_PLACEHOLDER, (vector_width,)))
        elif len(shape) == 2:
            layout.append((tn.observation_name(index), shape))
        else:
            layout.append((tn.visual_observation_name(visual_index), shape))
            visual_index += 1
    return layout


def observation_input_names(
    observation_shapes: Sequence[Sequence[int]], version: int
) -> List[str]:
    """Input names observations are fed through, in input order."""
    if version == ModelApiVersion.MLAGENTS_1_0:
        return [name for name, _ in _legacy_observation_layout(observation_shapes)]
    return [tn.observation_name(i) for i in range(len(observation_shapes))]


class ContractPolicy(nn.Module):
    """Actor-critic network speaking the exported-policy tensor contract.

    Parameters
    ----------
    observation_shapes : Sequence[Sequence[int]]
        Per-sensor observation shapes (rank 1 vector, rank 2 grid, rank 3 visual).
    continuous_size : int
        Continuous action count (0 disables the continuous head).
    branch_sizes : Sequence[int]
        Discrete branch sizes (empty disables the discrete head).
    hidden_size : int
        Trunk width.
    memory_size : int
        Recurrent memory width (0 disables memory).
    version : int
        Model API version to emulate (2 = legacy, 3 = current).
    """

    def __init__(
        self,
        observation_shapes: Sequence[Sequence[int]],
        continuous_size: int = 0,
        branch_sizes: Sequence[int] = (),
        hidden_size: int = 32,
        memory_size: int = 0,
        version: int = ModelApiVersion.MLAGENTS_2_0,
    ):
        super().__init__()
        if continuous_size == 0 and not branch_sizes:
            raise ValueError("Policy needs at least one continuous action or discrete branch")
        if version == ModelApiVersion.MLAGENTS_1_0 and continuous_size > 0 and branch_sizes:
            raise ValueError("Legacy (version 2) policies support one action kind only")
        if version == ModelApiVersion.MLAGENTS_1_0 and any(
            len(shape) not in (1, 2, 3) for shape in observation_shapes
        ):
            raise ValueError("Legacy (version 2) policies take rank 1 to 3 observations only")

        self.observation_shapes = [tuple(int(d) for d in shape) for shape in observation_shapes]
        self.continuous_size = int(continuous_size)
        self.branch_sizes = [int(b) for b in branch_sizes]
        self.memory_size = int(memory_size)
        self.version = int(version)
        self.observation_names = observation_input_names(self.observation_shapes, self.version)

        obs_size = sum(int(np.prod(shape)) for shape in self.observation_shapes)
        self.trunk = nn.Sequential(nn.Linear(obs_size, hidden_size), nn.ReLU())
        self.memory = nn.GRUCell(hidden_size, memory_size) if memory_size > 0 else None
        feature_size = memory_size if memory_size > 0 else hidden_size

        self.value_head = nn.Linear(feature_size, 1)
        self.mu_head: Optional[nn.Linear] = None
        self.log_std: Optional[nn.Parameter] = None
        self.logits_head: Optional[nn.Linear] = None
        if self.continuous_size > 0:
            self.mu_head = nn.Linear(feature_size, self.continuous_size)
            self.log_std = nn.Parameter(torch.full((self.continuous_size,), -0.5))
        if self.branch_sizes:
            self.logits_head = nn.Linear(feature_size, sum(self.branch_sizes))

        self.register_buffer("version_marker", torch.tensor([float(self.version)]))
        self.register_buffer("memory_marker", torch.tensor([float(self.memory_size)]))
        self.register_buffer(
            "continuous_shape_marker", torch.tensor([float(self.continuous_size)])
        )
        self.register_buffer(
            "discrete_shape_marker",
            torch.tensor([float(b) for b in self.branch_sizes] or [0.0]),
        )

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def _features(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        obs = [inputs[name].float().flatten(start_dim=1) for name in self.observation_names]
        hidden = self.trunk(torch.cat(obs, dim=1))
        result = {"features": hidden}
        if self.memory is not None:
            memory_in = inputs.get(tn.RECURRENT_IN_PLACEHOLDER)
            if memory_in is None:
                memory_in = hidden.new_zeros(hidden.shape[0], self.memory_size)
            memory_out = self.memory(hidden, memory_in.float().reshape(hidden.shape[0], -1))
            result["features"] = memory_out
            result["memory"] = memory_out
        return result

    def _masked_logits(self, logits: torch.Tensor, inputs: Dict[str, torch.Tensor]) -> torch.Tensor:
        mask = inputs.get(tn.ACTION_MASK_PLACEHOLDER)
        if mask is None:
            return logits
        return logits.masked_fill(mask.reshape(logits.shape) <= 0.0, MASK_LOGIT)

    def _continuous(self, features: torch.Tensor, inputs: Dict[str, torch.Tensor]):
        mu = self.mu_head(features)
        epsilon = inputs.get(tn.RANDOM_NORMAL_EPSILON_PLACEHOLDER)
        if epsilon is None:
            epsilon = torch.zeros_like(mu)
        sampled = mu + self.log_std.exp() * epsilon.float().reshape(mu.shape)
        deterministic = torch.clamp(mu, -ACTION_CLIP, ACTION_CLIP) / ACTION_CLIP
        stochastic = torch.clamp(sampled, -ACTION_CLIP, ACTION_CLIP) / ACTION_CLIP
        return stochastic, deterministic

    def _discrete(self, logits: torch.Tensor):
        sampled, greedy = [], []
        for branch_logits in torch.split(logits, self.branch_sizes, dim=1):
            sampled.append(torch.multinomial(torch.softmax(branch_logits, dim=1), 1))
            greedy.append(torch.argmax(branch_logits, dim=1, keepdim=True))
        return torch.cat(sampled, dim=1).int(), torch.cat(greedy, dim=1).int()

    def _branch_probabilities(self, logits: torch.Tensor) -> torch.Tensor:
        return torch.cat(
            [torch.softmax(b, dim=1) for b in torch.split(logits, self.branch_sizes, dim=1)],
            dim=1,
        )

    def forward(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        state = self._features(inputs)
        features = state["features"]

        outputs: Dict[str, torch.Tensor] = {
            tn.VERSION_NUMBER: self.version_marker,
            tn.MEMORY_SIZE: self.memory_marker,
            tn.VALUE_ESTIMATE_OUTPUT: self.value_head(features),
        }
        if "memory" in state:
            outputs[tn.RECURRENT_OUTPUT] = state["memory"]

        if self.version == ModelApiVersion.MLAGENTS_1_0:
            outputs.update(self._legacy_actions(features, inputs))
            return outputs

        if self.mu_head is not None:
            stochastic, deterministic = self._continuous(features, inputs)
            outputs[tn.CONTINUOUS_ACTION_OUTPUT_SHAPE] = self.continuous_shape_marker
            outputs[tn.CONTINUOUS_ACTION_OUTPUT] = stochastic
            outputs[tn.DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT] = deterministic
        if self.logits_head is not None:
            logits = self._masked_logits(self.logits_head(features), inputs)
            sampled, greedy = self._discrete(logits)
            outputs[tn.DISCRETE_ACTION_OUTPUT_SHAPE] = self.discrete_shape_marker
            outputs[tn.DISCRETE_ACTION_OUTPUT] = sampled
            outputs[tn.DETERMINISTIC_DISCRETE_ACTION_OUTPUT] = greedy
        return outputs

    def _legacy_actions(
        self, features: torch.Tensor, inputs: Dict[str, torch.Tensor]
    ) -> Dict[str, torch.Tensor]:
        if self.mu_head is not None:
            action, _ = self._continuous(features, inputs)
            is_continuous, width = 1.0, self.continuous_size
        else:
            # Probabilities stay non-negative so zeroed masked entries never win
            logits = self._masked_logits(self.logits_head(features), inputs)
            action = self._branch_probabilities(logits)
            is_continuous, width = 0.0, sum(self.branch_sizes)
        return {
            tn.ACTION_OUTPUT_DEPRECATED: action,
            tn.IS_CONTINUOUS_CONTROL_DEPRECATED: features.new_tensor([is_continuous]),
            tn.ACTION_OUTPUT_SHAPE_DEPRECATED: features.new_tensor([float(width)]),
        }

    # ------------------------------------------------------------------
    # Contract description
    # ------------------------------------------------------------------

    def input_specs(self) -> List[ModelTensorSpec]:
        """Declared inputs, with ``-1`` as the dynamic batch dimension."""
        specs = []
        if self.version == ModelApiVersion.MLAGENTS_1_0:
            for name, shape in _legacy_observation_layout(self.observation_shapes):
                specs.append(ModelTensorSpec(name, (-1, *shape)))
            if self.branch_sizes:
                specs.append(
                    ModelTensorSpec(
                        tn.PREVIOUS_ACTION_PLACEHOLDER,
                        (-1, len(self.branch_sizes)),
                        TensorType.INTEGER,
                    )
                )
        else:
            for name, shape in zip(self.observation_names, self.observation_shapes):
                specs.append(ModelTensorSpec(name, (-1, *shape)))

        if self.memory_size > 0:
            specs.append(ModelTensorSpec(tn.RECURRENT_IN_PLACEHOLDER, (-1, self.memory_size)))
            specs.append(
                ModelTensorSpec(tn.SEQUENCE_LENGTH_PLACEHOLDER, (1,), TensorType.INTEGER)
            )
        if self.branch_sizes:
            specs.append(
                ModelTensorSpec(tn.ACTION_MASK_PLACEHOLDER, (-1, sum(self.branch_sizes)))
            )
        if self.continuous_size > 0:
            specs.append(
                ModelTensorSpec(tn.RANDOM_NORMAL_EPSILON_PLACEHOLDER, (-1, self.continuous_size))
            )
        return specs

    def output_names(self) -> List[str]:
        names = [tn.VERSION_NUMBER, tn.MEMORY_SIZE, tn.VALUE_ESTIMATE_OUTPUT]
        if self.memory_size > 0:
            names.append(tn.RECURRENT_OUTPUT)
        if self.version == ModelApiVersion.MLAGENTS_1_0:
            names += [
                tn.ACTION_OUTPUT_DEPRECATED,
                tn.IS_CONTINUOUS_CONTROL_DEPRECATED,
                tn.ACTION_OUTPUT_SHAPE_DEPRECATED,
            ]
            return names
        if self.continuous_size > 0:
            names += [
                tn.CONTINUOUS_ACTION_OUTPUT_SHAPE,
                tn.CONTINUOUS_ACTION_OUTPUT,
                tn.DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT,
            ]
        if self.branch_sizes:
            names += [
                tn.DISCRETE_ACTION_OUTPUT_SHAPE,
                tn.DISCRETE_ACTION_OUTPUT,
                tn.DETERMINISTIC_DISCRETE_ACTION_OUTPUT,
            ]
        return names


def build_policy_model(
    name: str,
    observation_shapes: Sequence[Sequence[int]],
    continuous_size: int = 0,
    branch_sizes: Sequence[int] = (),
    hidden_size: int = 32,
    memory_size: int = 0,
    version: int = ModelApiVersion.MLAGENTS_2_0,
) -> PolicyModel:
    """Build a ``ContractPolicy`` and wrap it in a ``PolicyModel`` handle.

    Examples
    --------
    >>> model = build_policy_model("walker", [(8,)], continuous_size=2, memory_size=16)
    >>> [spec.name for spec in model.inputs][:1]
    ['obs_0']
    """
    module = ContractPolicy(
        observation_shapes,
        continuous_size=continuous_size,
        branch_sizes=branch_sizes,
        hidden_size=hidden_size,
        memory_size=memory_size,
        version=version,
    )
    logger.debug(
        "Built %s: %d parameters, inputs=%s",
        name,
        sum(p.numel() for p in module.parameters()),
        [spec.name for spec in module.input_specs()],
    )
    return PolicyModel(
        name=name,
        module=module,
        inputs=tuple(module.input_specs()),
        outputs=tuple(module.output_names()),
    )
