"""Tensor names shared between exported policies and the inference core.

These strings are the contract with the trainer's exporter. Inputs are
filled by generators, outputs decoded by appliers, and the marker outputs
(version, memory size, action shapes) are read once at load time.
"""

from __future__ import annotations

# Inputs
BATCH_SIZE_PLACEHOLDER = "batch_size"
SEQUENCE_LENGTH_PLACEHOLDER = "sequence_length"
VECTOR_OBSERVATION_PLACEHOLDER = "vector_observation"
RECURRENT_IN_PLACEHOLDER = "recurrent_in"
VISUAL_OBSERVATION_PLACEHOLDER_PREFIX = "visual_observation_"
OBSERVATION_PLACEHOLDER_PREFIX = "obs_"
PREVIOUS_ACTION_PLACEHOLDER = "prev_action"
ACTION_MASK_PLACEHOLDER = "action_masks"
RANDOM_NORMAL_EPSILON_PLACEHOLDER = "epsilon"

# Outputs
VALUE_ESTIMATE_OUTPUT = "value_estimate"
RECURRENT_OUTPUT = "recurrent_out"
CONTINUOUS_ACTION_OUTPUT = "continuous_actions"
DISCRETE_ACTION_OUTPUT = "discrete_actions"
DETERMINISTIC_CONTINUOUS_ACTION_OUTPUT = "deterministic_continuous_actions"
DETERMINISTIC_DISCRETE_ACTION_OUTPUT = "deterministic_discrete_actions"

# Marker constants
MEMORY_SIZE = "memory_size"
VERSION_NUMBER = "version_number"
CONTINUOUS_ACTION_OUTPUT_SHAPE = "continuous_action_output_shape"
DISCRETE_ACTION_OUTPUT_SHAPE = "discrete_action_output_shape"

# Legacy (model API version 2) outputs
IS_CONTINUOUS_CONTROL_DEPRECATED = "is_continuous_control"
ACTION_OUTPUT_DEPRECATED = "action"
ACTION_OUTPUT_SHAPE_DEPRECATED = "action_output_shape"


def observation_name(index: int) -> str:
    """Name of the observation input fed by the sensor at ``index``."""
    return f"{OBSERVATION_PLACEHOLDER_PREFIX}{index}"


def visual_observation_name(index: int) -> str:
    """Name of the ``index``-th rank-3 observation input (legacy format)."""
    return f"{VISUAL_OBSERVATION_PLACEHOLDER_PREFIX}{index}"
