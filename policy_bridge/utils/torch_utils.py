"""PyTorch ergonomics: seeding, device resolution, tensor conversion.

Provides:
    - seed_everything(): Reproducible runs (torch, numpy, Python RNG)
    - resolve_device(): "default" | "cpu" | "gpu" | "cuda:N" -> torch.device,
      falling back to CPU (with a warning) when CUDA is unavailable
    - to_numpy(): Detach, move to CPU and convert, for any tensor

The inference core keeps buffers in numpy; torch tensors only exist inside
the worker, so every crossing goes through to_numpy().
"""

import logging
import os
import random
from typing import Union

import numpy as np
import torch

logger = logging.getLogger(__name__)


def seed_everything(seed: int, deterministic: bool = False) -> None:
    """Seed Python, numpy and torch RNGs.

    Parameters
    ----------
    seed : int
        Seed value
    deterministic : bool
        Also request deterministic torch kernels, default False

    Examples
    --------
    >>> seed_everything(123)
    >>> a = torch.rand(3)
    >>> seed_everything(123)
    >>> torch.equal(a, torch.rand(3))
    True
    """
    os.environ["PYTHONHASHSEED"] = str(seed)
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
    if deterministic:
        torch.use_deterministic_algorithms(True, warn_only=True)


def resolve_device(device: Union[str, torch.device, None] = "default") -> torch.device:
    """Map a device name to a usable torch.device.

    Parameters
    ----------
    device : str | torch.device | None
        "default", "cpu", "gpu", "cuda" or "cuda:N"; None means "default"

    Returns
    -------
    torch.device
        CPU for "default"/"cpu"; CUDA when requested and available

    Raises
    ------
    ValueError
        If the name is not recognised
    """
    if isinstance(device, torch.device):
        return device
    name = (device or "default").lower()

    if name in ("default", "cpu"):
        return torch.device("cpu")

    if name == "gpu" or name.startswith("cuda"):
        if not torch.cuda.is_available():
            logger.warning("CUDA requested (%s) but not available; running on CPU", name)
            return torch.device("cpu")
        return torch.device("cuda" if name == "gpu" else name)

    raise ValueError(f"Unknown device: {device!r}. Use 'default', 'cpu', 'gpu' or 'cuda[:N]'.")


def to_numpy(t: torch.Tensor) -> np.ndarray:
    """Convert a tensor to a numpy array (detached, on CPU).

    bfloat16/float16 tensors are upcast to float32 since numpy lacks bf16.
    """
    t = t.detach()
    if t.dtype in (torch.bfloat16, torch.float16):
        t = t.float()
    return t.cpu().numpy()
