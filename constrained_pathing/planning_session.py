"""
Planning session helpers.
=========================

Public-facing helpers that:
- Run a planner between two ambient points on a constrained state space.
- Shortcut the planner waypoints through validated manifold motions.
- Re-traverse every pair of waypoints to recover the fine-grained
  manifold path, and summarize the result (flagging approximate ones).

This keeps the planners focused on search, and collects the path
reconstruction and reporting in one place.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .constrained_spaces import AtlasStateSpace, ConstrainedState, ConstrainedStateSpace, ValidityChecker
from .planners import PlannerBase

logger = logging.getLogger(__name__)


@dataclass
class PlanningSummary:
    """Solution of one planning query."""
    waypoints: List[ConstrainedState]     # Simplified planner output
    states: List[ConstrainedState]        # Fine manifold path
    length: float
    elapsed: float                        # Planning wall-clock seconds
    approximate: bool = False             # Fine path stops short of the goal
    goal_distance: float = 0.0            # Distance from the last state to the goal
    chart_count: Optional[int] = None     # Atlas spaces only
    frontier_percent: Optional[float] = None

    def as_array(self) -> np.ndarray:
        return np.array([s.values for s in self.states])


def simplify_path(space: ConstrainedStateSpace, waypoints: List[ConstrainedState],
                  validity_checker: Optional[ValidityChecker] = None) -> List[ConstrainedState]:
    """
    Greedily shortcut waypoints.

    From each kept waypoint, jump to the farthest later waypoint that is
    reachable by a valid manifold motion and no longer than the waypoints
    it skips, so the waypoint path never gets longer.
    """
    if len(waypoints) <= 2:
        return list(waypoints)

    simplified = [waypoints[0]]
    i = 0
    while i < len(waypoints) - 1:
        for j in range(len(waypoints) - 1, i + 1, -1):
            skipped = space.path_length(waypoints[i:j + 1])
            if space.distance(waypoints[i], waypoints[j]) > skipped:
                continue
            if space.check_motion(waypoints[i], waypoints[j], validity_checker):
                i = j
                break
        else:
            i += 1
        simplified.append(waypoints[i])

    logger.debug(f"Simplified {len(waypoints)} waypoints to {len(simplified)}")
    return simplified


def reconstruct_path(space: ConstrainedStateSpace,
                     waypoints: List[ConstrainedState]) -> Tuple[List[ConstrainedState], bool]:
    """
    Fine-grained path through the waypoints, at most delta between states.

    Each waypoint pair is re-traversed without validity checks; the planner
    already validated the motions. A re-traversal that stops short is never
    bridged: the walk continues from where it stopped.

    Returns:
        (states, exact) where exact is False when some waypoint was not reached
    """
    if not waypoints:
        return [], True

    states = [waypoints[0].copy()]
    exact = True
    for target in waypoints[1:]:
        result = space.traverse_manifold(states[-1], target, interpolate=True)
        states.extend(result.states[1:])
        if not result.complete:
            exact = False
            logger.warning(f"Re-traversal toward waypoint stopped {space.distance(states[-1], target):.4f} "
                           f"short ({result.error})")
    return states, exact


def solve_with_path(space: ConstrainedStateSpace, planner: PlannerBase,
                    start: np.ndarray, goal: np.ndarray, simplify: bool = True) -> PlanningSummary:
    """
    Plan between two ambient points and reconstruct the full manifold path.

    Args:
        space: Constrained state space the planner searches
        planner: Planner bound to the same space
        start: Start point, on the manifold
        goal: Goal point, on the manifold
        simplify: Shortcut the planner waypoints before reconstruction

    Returns:
        PlanningSummary of the solution; approximate is set when the fine
        path does not end at the goal

    Raises:
        InvalidInputError: If start or goal is off the manifold or invalid
        NoPathFoundError: If the planner runs out of time
    """
    start_state = space.make_endpoint_state(start)
    goal_state = space.make_endpoint_state(goal)

    t0 = time.time()
    waypoints = planner.plan_path(start_state, goal_state)
    elapsed = time.time() - t0

    if simplify:
        waypoints = simplify_path(space, waypoints, planner.validity_checker)
    states, exact = reconstruct_path(space, waypoints)
    goal_distance = space.distance(states[-1], goal_state)
    summary = PlanningSummary(
        waypoints=waypoints,
        states=states,
        length=space.path_length(states),
        elapsed=elapsed,
        approximate=not exact or not space.equal_states(states[-1], goal_state),
        goal_distance=goal_distance,
    )

    if isinstance(space, AtlasStateSpace):
        summary.chart_count = space.chart_count
        summary.frontier_percent = space.estimate_frontier_percent()

    if summary.approximate:
        logger.warning(f"{planner.name} solution is approximate (goal distance {goal_distance:.4f})")
    logger.info(f"{planner.name} solved in {elapsed:.3f}s: {len(waypoints)} waypoints, "
                f"{len(states)} states, length {summary.length:.3f}")
    return summary


def write_states(path: str, states: List[ConstrainedState]):
    """Write one state per line, values separated by spaces."""
    np.savetxt(path, np.array([s.values for s in states]), fmt="%.8f")
    logger.info(f"Wrote {len(states)} states to {path}")
