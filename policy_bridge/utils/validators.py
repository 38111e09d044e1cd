"""YAML schema validation and config loading.

Provides centralized validation for configuration files using pydantic:
    - Inference schema (inference.v1.yaml): seed, determinism, device,
      sensor validation and logging settings for one model runner
    - Policy demo schema (policy_demo.v1.yaml): synthetic population and
      reference policy sizes for scripts/run_policy_demo.py

All loaders fail fast with actionable messages naming the offending file.

Usage:
    from policy_bridge.utils import validators

    cfg = validators.load_inference_config("configs/inference.v1.yaml")
    runner = ModelRunner.from_config(model, action_spec, cfg)
"""

from pathlib import Path
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# LOGGING SCHEMA
# ============================================================================

class LoggingConfig(BaseModel):
    """Arguments forwarded to logging_config.setup_logging()."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file: Optional[str] = Field(None, description="Log file path; None for console only")
    json_format: bool = Field(False, alias="json", description="JSON lines output")
    color: bool = True

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('level', mode='before')
    @classmethod
    def normalize_level(cls, v):
        return v.upper() if isinstance(v, str) else v


# ============================================================================
# INFERENCE SCHEMA V1
# ============================================================================

class InferenceConfigV1(BaseModel):
    """Runner settings (inference.v1.yaml schema)."""
    schema_version: str = Field("inference.v1", alias="schema", description="Schema version")
    seed: int = Field(0, ge=0, description="Seed of the random-normal sampling input")
    deterministic_inference: bool = Field(
        False, description="Use deterministic action outputs instead of sampled ones"
    )
    device: Literal["default", "cpu", "gpu"] = "default"
    validate_sensor_shapes: bool = Field(
        True, description="Log an error when agents expose mismatched sensor layouts"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "inference.v1":
            raise ValueError(f"Expected schema 'inference.v1', got '{v}'")
        return v


# ============================================================================
# POLICY DEMO SCHEMA V1
# ============================================================================

class DemoPopulation(BaseModel):
    """Synthetic agent population driven by the demo script."""
    num_agents: int = Field(16, ge=1)
    num_steps: int = Field(100, ge=1)
    episode_length: int = Field(25, ge=1, description="Steps before an agent's episode ends")
    observation_size: int = Field(8, ge=1)


class DemoPolicy(BaseModel):
    """Reference policy architecture."""
    hidden_size: int = Field(32, ge=1)
    memory_size: int = Field(0, ge=0, description="0 disables recurrent memory")
    continuous_size: int = Field(2, ge=0)
    branch_sizes: List[int] = Field(default_factory=lambda: [3])
    version: Literal[2, 3] = 3

    @model_validator(mode='after')
    def validate_action_space(self) -> 'DemoPolicy':
        if self.continuous_size == 0 and not self.branch_sizes:
            raise ValueError("Policy needs at least one continuous action or discrete branch")
        if any(b <= 0 for b in self.branch_sizes):
            raise ValueError(f"Branch sizes must be positive, got {self.branch_sizes}")
        if self.version == 2 and self.continuous_size > 0 and self.branch_sizes:
            raise ValueError("Legacy (version 2) policies support one action kind only")
        return self


class PolicyDemoV1(BaseModel):
    """Demo run specification (policy_demo.v1.yaml schema)."""
    schema_version: str = Field("policy_demo.v1", alias="schema")
    inference: InferenceConfigV1 = Field(default_factory=InferenceConfigV1)
    population: DemoPopulation = Field(default_factory=DemoPopulation)
    policy: DemoPolicy = Field(default_factory=DemoPolicy)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "policy_demo.v1":
            raise ValueError(f"Expected schema 'policy_demo.v1', got '{v}'")
        return v


# ============================================================================
# PUBLIC API
# ============================================================================

def load_inference_config(path: Union[str, Path]) -> InferenceConfigV1:
    """Load and validate an inference config from YAML.

    Parameters
    ----------
    path : Union[str, Path]
        Path to inference.v1.yaml file

    Returns
    -------
    InferenceConfigV1
        Validated configuration

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails (with actionable error message)
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Inference config not found: {path}")

    data = fs.load_yaml(path)
    try:
        return InferenceConfigV1(**data)
    except Exception as e:
        raise ValueError(f"Inference config validation failed at {path}: {e}") from e


def load_policy_demo_config(path: Union[str, Path]) -> PolicyDemoV1:
    """Load and validate a demo run config from YAML.

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy demo config not found: {path}")

    data = fs.load_yaml(path)
    try:
        return PolicyDemoV1(**data)
    except Exception as e:
        raise ValueError(f"Policy demo config validation failed at {path}: {e}") from e
