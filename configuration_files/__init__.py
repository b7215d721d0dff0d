"""Planning configuration defaults and YAML loading."""

from .planning_config import (
    DEFAULT_CONFIG,
    DEFAULT_CONFIG_PATH,
    ManifoldConfig,
    PlanningConfig,
    SessionConfig,
    load_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_PATH",
    "ManifoldConfig",
    "PlanningConfig",
    "SessionConfig",
    "load_config",
]
