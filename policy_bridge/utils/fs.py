"""Filesystem helpers for config and log files.

Provides:
    - ensure_dir(): Directory creation with exist_ok semantics
    - load_yaml(): Safe YAML loading with actionable errors
    - atomic_yaml_dump(): tmp file -> fsync -> rename, for run summaries

All paths use pathlib.Path for cross-platform compatibility.

Usage:
    from policy_bridge.utils import fs
    cfg = fs.load_yaml("configs/inference.v1.yaml")
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Union

import yaml


def ensure_dir(p: Union[str, Path]) -> Path:
    """Create directory if it doesn't exist, return Path object."""
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Load YAML file safely.

    Parameters
    ----------
    path : Union[str, Path]
        YAML file path

    Returns
    -------
    Dict[str, Any]
        Parsed YAML content (empty dict for an empty file)

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    yaml.YAMLError
        If YAML parsing fails
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Failed to parse YAML file {path}: {e}") from e


def atomic_yaml_dump(obj: Any, path: Union[str, Path]) -> None:
    """Save object as YAML atomically.

    Notes
    -----
    Uses PyYAML safe_dump; the temporary file lives in the target
    directory so the final rename stays on one filesystem.
    """
    path = Path(path)
    ensure_dir(path.parent)
    yaml_str = yaml.safe_dump(obj, default_flow_style=False, sort_keys=False, allow_unicode=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(yaml_str.encode('utf-8'))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise
