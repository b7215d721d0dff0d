"""
General configs for constrained planning are loaded from this file!

Dataclass defaults below; planning_config.yaml (or any file passed to
load_config) overrides them section by section.
"""

import math
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "planning_config.yaml")


@dataclass
class ManifoldConfig:
    """Thresholds of the manifold representation and traversal."""

    # Atlas ------------------------------
    rho: float = 0.5                # Chart validity radius (tangent coordinates)
    alpha: float = math.pi / 8      # Max angle between chart and manifold tangent spaces (rad)
    epsilon: float = 0.2            # Max distance between chart and manifold
    exploration: float = 0.5        # Share of samples drawn beyond rho, in [0, 1)
    max_charts_per_extension: int = 200
    separate: bool = True           # Bisecting halfspaces between neighboring charts

    # Traversal ------------------------------
    delta: float = 0.02             # Step length along the manifold
    lambda_: float = 2.0            # Max walked length / straight-line distance

    # Projection ------------------------------
    projection_tolerance: float = 1e-6
    max_projection_iterations: int = 50
    max_sample_attempts: int = 100


@dataclass
class SessionConfig:
    """What to plan and how long to try."""

    problem: str = "sphere"         # sphere | torus | chain
    planner: str = "RRTConnect"     # RRT | RRTConnect | PRM
    space: str = "projected"        # projected | null | atlas
    time_limit: float = 5.0         # Planning wall-clock limit (s)
    links: int = 5                  # Chain problem only
    range: Optional[float] = None   # Max tree extension distance; None picks rho_s (atlas) or 0.707
    goal_bias: float = 0.05
    validity_sleep: float = 0.0     # Artificial delay per validity check (s)
    output_path: str = "anim.txt"
    seed: Optional[int] = None


@dataclass
class PlanningConfig:
    manifold: ManifoldConfig = field(default_factory=ManifoldConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


# Default configuration instance for quick access
DEFAULT_CONFIG = PlanningConfig()


def _coerce(section: str, key: str, field_type: Any, default: Any, value: Any) -> Any:
    if field_type == Optional[float]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{section}.{key} must be a number or null, got {value!r}")
        return float(value)
    if field_type == Optional[int]:
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValueError(f"{section}.{key} must be an integer or null, got {value!r}")
        return value
    if value is None:
        raise ValueError(f"{section}.{key} must not be null")
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{section}.{key} must be a number, got {value!r}")
        return float(value)
    if not isinstance(value, type(default)) or isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be of type {type(default).__name__}, got {value!r}")
    return value


def _merge_section(name: str, base: Any, overrides: Dict[str, Any]) -> Any:
    if not isinstance(overrides, dict):
        raise ValueError(f"Section '{name}' must be a mapping, got {type(overrides).__name__}")

    known = {f.name: f.type for f in fields(base)}
    unknown = sorted(set(overrides) - set(known))
    if unknown:
        raise ValueError(f"Unknown keys in section '{name}': {unknown}")

    values = {key: _coerce(name, key, known[key], getattr(base, key), value) for key, value in overrides.items()}
    return replace(base, **values)


def load_config(config_path: Optional[str] = None) -> PlanningConfig:
    """Load planning configuration from YAML, merged over the dataclass defaults.

    Args:
        config_path: Path to a YAML file. If None, uses planning_config.yaml next to this file.

    Returns:
        PlanningConfig with every section filled in.

    Raises:
        ValueError: If the file has unknown sections/keys or mistyped values
        yaml.YAMLError: If the file is not valid YAML
        OSError: If the file cannot be read
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping, got {type(raw).__name__}")

    unknown = sorted(set(raw) - {"manifold", "session"})
    if unknown:
        raise ValueError(f"Unknown configuration sections: {unknown}")

    return PlanningConfig(
        manifold=_merge_section("manifold", ManifoldConfig(), raw.get("manifold", {})),
        session=_merge_section("session", SessionConfig(), raw.get("session", {})),
    )
