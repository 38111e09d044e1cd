"""Reference policies for demos and tests.

Provides an actor-critic network that speaks the exported-policy tensor
contract (marker constants, split or legacy combined action outputs,
recurrent memory):
    - ContractPolicy: the torch module
    - build_policy_model: module + declared inputs/outputs as a PolicyModel

Real deployments load policies exported by the trainer instead; the
inference core treats both identically.
"""

from .networks import ContractPolicy, build_policy_model
