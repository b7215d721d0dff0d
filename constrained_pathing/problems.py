"""
Benchmark problems for constrained planning.

Each problem bundles a constraint, start and goal points on its manifold,
ambient sampling bounds and a validity checker built from box obstacles.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

import numpy as np

from .constraint import (
    ChainConstraint,
    Constraint,
    InvalidInputError,
    SphereConstraint,
    TorusConstraint,
)
from .manifold_utils import AmbientBounds, ObstacleChecker

logger = logging.getLogger(__name__)

# Sphere bands: (z_low, z_high, gap axis, gap side). The gap is a slot of
# width SPHERE_GAP_WIDTH around the plane <gap axis> = 0 on the given side.
SPHERE_BANDS = [
    (-0.80, -0.60, 1, +1),
    (-0.10, 0.10, 0, -1),
    (0.60, 0.80, 1, -1),
]
SPHERE_GAP_WIDTH = 0.1
SPHERE_EXTENT = 2.0


@dataclass
class ProblemDefinition:
    """Constraint, endpoints, bounds and obstacles of one planning problem."""
    name: str
    constraint: Constraint
    start: np.ndarray
    goal: np.ndarray
    bounds: AmbientBounds
    obstacles: ObstacleChecker

    def is_valid(self, x: np.ndarray) -> bool:
        return self.obstacles.is_point_collision_free(x)


def sphere_band_obstacles() -> List[Dict[str, np.ndarray]]:
    """Three latitude bands around the unit sphere, each with one narrow slot."""
    e = SPHERE_EXTENT
    half_gap = SPHERE_GAP_WIDTH / 2
    boxes = []
    for z_low, z_high, axis, side in SPHERE_BANDS:
        other = 1 - axis
        # Both sides of the slot strip
        for low_other, high_other in ((-e, -half_gap), (half_gap, e)):
            low = np.array([-e, -e, z_low])
            high = np.array([e, e, z_high])
            low[axis], high[axis] = low_other, high_other
            boxes.append(ObstacleChecker.box(low, high))
        # Closed half of the slot strip
        low = np.array([-e, -e, z_low])
        high = np.array([e, e, z_high])
        low[axis], high[axis] = -half_gap, half_gap
        if side > 0:
            high[other] = 0.0
        else:
            low[other] = 0.0
        boxes.append(ObstacleChecker.box(low, high))
    return boxes


def create_sphere_problem(links: int = 5, **constraint_kwargs) -> ProblemDefinition:
    constraint = SphereConstraint(**constraint_kwargs)
    return ProblemDefinition(
        name="sphere",
        constraint=constraint,
        start=np.array([0.0, 0.0, -1.0]),
        goal=np.array([0.0, 0.0, 1.0]),
        bounds=AmbientBounds.symmetric(3, SPHERE_EXTENT),
        obstacles=ObstacleChecker(sphere_band_obstacles()),
    )


def create_torus_problem(links: int = 5, **constraint_kwargs) -> ProblemDefinition:
    constraint = TorusConstraint(outer_radius=3.0, inner_radius=1.0, **constraint_kwargs)
    obstacles = [{"size": [1.2, 1.2, 2.4], "pos": [0.0, 3.0, 0.0]}]
    return ProblemDefinition(
        name="torus",
        constraint=constraint,
        start=np.array([4.0, 0.0, 0.0]),
        goal=np.array([-3.0, 0.0, 1.0]),
        bounds=AmbientBounds.symmetric(3, 5.0),
        obstacles=ObstacleChecker(obstacles),
    )


def create_chain_problem(links: int = 5, **constraint_kwargs) -> ProblemDefinition:
    constraint = ChainConstraint(links=links, **constraint_kwargs)
    reach = links * constraint.link_length
    obstacles = [{"size": [0.6, 0.6, 0.6], "pos": [0.0, 0.6 * reach, 0.0]}]
    return ProblemDefinition(
        name="chain",
        constraint=constraint,
        start=constraint.stretched_state(0.0),
        goal=constraint.stretched_state(np.pi),
        bounds=AmbientBounds.symmetric(constraint.ambient_dim, reach),
        obstacles=ObstacleChecker(obstacles, point_groups=links),
    )


PROBLEMS: Dict[str, Callable[..., ProblemDefinition]] = {
    "sphere": create_sphere_problem,
    "torus": create_torus_problem,
    "chain": create_chain_problem,
}


def create_problem(name: str, links: int = 5, **constraint_kwargs) -> ProblemDefinition:
    """
    Build a registered problem by name.

    Extra keyword arguments (tolerance, max_iterations, ...) go to the constraint.

    Raises:
        InvalidInputError: If the problem name is unknown
    """
    if name not in PROBLEMS:
        raise InvalidInputError(f"Unknown problem '{name}'. Choose from {sorted(PROBLEMS)}")
    problem = PROBLEMS[name](links=links, **constraint_kwargs)
    logger.info(f"Created '{name}' problem: ambient dim {problem.constraint.ambient_dim}, "
                f"manifold dim {problem.constraint.manifold_dim}")
    return problem
