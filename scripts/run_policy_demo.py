#!/usr/bin/env python3
"""Drive a reference policy with a synthetic agent population.

Exercises the full decision loop the way an environment step driver would:
    1. Load and validate policy_demo.v1.yaml
    2. Setup logging and seed everything
    3. Build a ContractPolicy and wrap it in a ModelRunner
    4. For each step, every agent submits a decision request (episodes end
       after episode_length steps and restart under a new episode id)
    5. decide_batch() once per step, then read every agent's action
    6. Write a run summary (timings, action statistics) as YAML

Usage:
    python scripts/run_policy_demo.py --config configs/policy_demo.v1.yaml
    python scripts/run_policy_demo.py --config configs/policy_demo.v1.yaml \
        --steps 20 --deterministic --summary outputs/policy_demo/summary.yaml
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from policy_bridge.inference import (
    ActionBuffers,
    ActionSpec,
    AgentDecisionRecord,
    InferenceError,
    ModelRunner,
    ObservationSpec,
)
from policy_bridge.policies import build_policy_model
from policy_bridge.utils import fs, validators
from policy_bridge.utils.logging_config import push_context, setup_logging
from policy_bridge.utils.torch_utils import seed_everything

logger = logging.getLogger("policy_demo")


class NoisyVectorSensor:
    """Rank-1 sensor emitting a drifting random walk."""

    def __init__(self, name: str, size: int, rng: np.random.Generator):
        self.name = name
        self.observation_spec = ObservationSpec.vector(size)
        self._rng = rng
        self._state = np.zeros(size, dtype=np.float32)

    def step(self) -> None:
        self._state += self._rng.normal(0.0, 0.1, size=self._state.shape).astype(np.float32)

    def reset(self) -> None:
        self._state[:] = 0.0

    def write(self, writer) -> int:
        return writer.write_array(self._state)


class DemoAgent:
    """One member of the synthetic population."""

    def __init__(self, index: int, sensor: NoisyVectorSensor, episode_id: int):
        self.index = index
        self.sensor = sensor
        self.episode_id = episode_id
        self.episode_step = 0
        self.last_action = ActionBuffers.EMPTY


def parse_args():
    parser = argparse.ArgumentParser(
        description="Run a reference policy over a synthetic agent population",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/policy_demo.v1.yaml"),
        help="Path to policy_demo.v1.yaml, default: configs/policy_demo.v1.yaml",
    )
    parser.add_argument("--steps", type=int, default=None, help="Override population.num_steps")
    parser.add_argument(
        "--deterministic",
        action="store_true",
        help="Use deterministic action outputs",
    )
    parser.add_argument(
        "--summary",
        type=Path,
        default=None,
        help="Write a YAML run summary to this path",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def run(cfg: validators.PolicyDemoV1, num_steps: int, deterministic: bool) -> dict:
    """Run the decision loop; returns summary statistics."""
    pop = cfg.population
    pol = cfg.policy
    rng = np.random.default_rng(cfg.inference.seed)

    model = build_policy_model(
        "demo_policy",
        [(pop.observation_size,)],
        continuous_size=pol.continuous_size,
        branch_sizes=pol.branch_sizes,
        hidden_size=pol.hidden_size,
        memory_size=pol.memory_size,
        version=pol.version,
    )
    action_spec = ActionSpec(pol.continuous_size, tuple(pol.branch_sizes))
    inference_cfg = cfg.inference.model_copy(update={"deterministic_inference": deterministic})

    agents = [
        DemoAgent(i, NoisyVectorSensor(f"vector_{i}", pop.observation_size, rng), episode_id=i)
        for i in range(pop.num_agents)
    ]
    next_episode_id = pop.num_agents
    episodes_finished = 0
    decisions = 0
    continuous_sum = np.zeros(pol.continuous_size, dtype=np.float64)
    discrete_counts = [np.zeros(b, dtype=np.int64) for b in pol.branch_sizes]

    with ModelRunner.from_config(model, action_spec, inference_cfg) as runner:
        for step in range(num_steps):
            push_context(step=step)
            for agent in agents:
                agent.sensor.step()
                done = agent.episode_step >= pop.episode_length
                runner.put_observations(
                    AgentDecisionRecord(
                        episode_id=agent.episode_id,
                        done=done,
                        stored_actions=agent.last_action,
                        sensors=(agent.sensor,),
                    )
                )
                if done:
                    episodes_finished += 1
                    agent.episode_id = next_episode_id
                    next_episode_id += 1
                    agent.episode_step = 0
                    agent.last_action = ActionBuffers.EMPTY
                    agent.sensor.reset()

            runner.decide_batch()

            for agent in agents:
                action = runner.get_action(agent.episode_id)
                if action.is_empty():
                    continue
                agent.last_action = action
                agent.episode_step += 1
                decisions += 1
                continuous_sum += action.continuous
                for branch, choice in enumerate(action.discrete):
                    discrete_counts[branch][choice] += 1

        timings = runner.timings()

    return {
        "steps": num_steps,
        "agents": pop.num_agents,
        "decisions": decisions,
        "episodes_finished": episodes_finished,
        "mean_continuous_action": (continuous_sum / max(decisions, 1)).tolist(),
        "discrete_action_counts": [counts.tolist() for counts in discrete_counts],
        "timings": {name: dict(values) for name, values in timings.items()},
    }


def main() -> int:
    args = parse_args()

    try:
        cfg = validators.load_policy_demo_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    log_cfg = cfg.inference.logging
    setup_logging(
        log_level="DEBUG" if args.verbose else log_cfg.level,
        log_file=log_cfg.file,
        json=log_cfg.json_format,
        color=log_cfg.color,
        quiet_libs=["torch"],
        context={"app": "policy_demo"},
    )
    seed_everything(cfg.inference.seed)

    num_steps = args.steps if args.steps is not None else cfg.population.num_steps
    deterministic = args.deterministic or cfg.inference.deterministic_inference

    try:
        summary = run(cfg, num_steps, deterministic)
    except InferenceError as e:
        logger.error("Inference failed: %s", e)
        return 1

    logger.info(
        "Finished %d steps: %d decisions, %d episodes ended",
        summary["steps"],
        summary["decisions"],
        summary["episodes_finished"],
    )
    for name, values in summary["timings"].items():
        logger.info("  %-8s mean %.3f ms over %d calls", name, values["mean_s"] * 1e3, values["count"])

    if args.summary is not None:
        fs.atomic_yaml_dump(summary, args.summary)
        logger.info("Summary written to %s", args.summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
