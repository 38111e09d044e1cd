"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Config validation (validators)
    - YAML I/O (fs)
    - Torch ergonomics (torch_utils)
    - Profiling (profiler)
    - Unified logging (logging_config)

No module in utils/ may import from upper layers (inference, policies).

Convenience imports:
    from policy_bridge.utils import fs, validators
    from policy_bridge.utils.logging_config import setup_logging, get_logger
"""

from . import fs
from . import logging_config
from . import profiler
from . import torch_utils
from . import validators
