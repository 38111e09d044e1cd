"""Policy bridge: batched inference for agents sharing one exported policy.

Collects per-agent decision requests, packs their observations, recurrent
memories, previous actions and action masks into named tensors, runs an
opaque policy once per step and scatters the outputs back into per-agent
actions and memories.

Architecture layers (strict one-way dependency):
    scripts/ -> policy_bridge/policies/ -> policy_bridge/inference/ -> policy_bridge/utils/

Key invariants:
    - Row i of every tensor belongs to the i-th request of the step
    - Tensor buffers are reallocated (zero-filled) on every resize
    - Done episodes never receive actions and lose their memory
    - Model API versions 2 (legacy) and 3 (current) are supported
    - YAML-only configs, validated with pydantic
"""

__version__ = "0.3.0"
