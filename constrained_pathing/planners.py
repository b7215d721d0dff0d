"""
Sampling-Based Planners over Constrained State Spaces
=====================================================

Planners that only use the narrow capability interface of a constrained
state space: sample_valid, sample_near, distance, interpolate,
geodesic_interpolate and traverse_manifold.

Includes:
- RRT (Rapidly-exploring Random Tree)
- RRTConnect (bidirectional RRT with greedy connection)
- PRM (Probabilistic Roadmap)

All planners:
- Accept tuning parameters from configuration
- Stop at a wall-clock time limit and raise NoPathFoundError
- Return the coarse waypoint states of the solution; every consecutive pair
  is connected by a validated manifold traversal
"""

import heapq
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Type

import numpy as np

from .constrained_spaces import ConstrainedState, ConstrainedStateSpace, ValidityChecker
from .constraint import (
    InvalidConfigurationError,
    InvalidInputError,
    NoPathFoundError,
    NoValidSampleFound,
    ProjectionDivergence,
)

# ============================================================================
# Logging Configuration
# ============================================================================

logger = logging.getLogger(__name__)

# ============================================================================
# Algorithm Configuration Constants
# ============================================================================

RRT_PROGRESS_LOG_INTERVAL = 500
PRM_CONNECTIVITY_CHECK_INTERVAL = 25
PRM_PROGRESS_LOG_INTERVAL_SAMPLES = 200
MIN_EXTENSION_LENGTH = 1e-6


# ============================================================================
# Parameter Dataclasses
# ============================================================================

@dataclass
class PlannerParams:
    time_limit: float = 5.0       # Wall-clock seconds
    range: float = 0.707          # Max distance of a single tree extension
    goal_bias: float = 0.05
    max_iterations: Optional[int] = None

    def __post_init__(self):
        if self.time_limit <= 0.0:
            raise InvalidConfigurationError(f"time_limit must be positive, got {self.time_limit}")
        if self.range <= 0.0:
            raise InvalidConfigurationError(f"range must be positive, got {self.range}")
        if not 0.0 <= self.goal_bias <= 1.0:
            raise InvalidConfigurationError(f"goal_bias must be in [0, 1], got {self.goal_bias}")


@dataclass
class PRMParams(PlannerParams):
    connection_radius: Optional[float] = None   # Defaults to range
    max_connections_per_node: int = 10
    expand_probability: float = 0.25            # Share of iterations spent sampling near sparse nodes

    def __post_init__(self):
        super().__post_init__()
        if self.connection_radius is not None and self.connection_radius <= 0.0:
            raise InvalidConfigurationError(f"connection_radius must be positive, got {self.connection_radius}")
        if self.max_connections_per_node < 1:
            raise InvalidConfigurationError(
                f"max_connections_per_node must be at least 1, got {self.max_connections_per_node}")
        if not 0.0 <= self.expand_probability <= 1.0:
            raise InvalidConfigurationError(
                f"expand_probability must be in [0, 1], got {self.expand_probability}")


# ============================================================================
# Planner Base
# ============================================================================

class ExtendStatus(Enum):
    TRAPPED = "trapped"
    ADVANCED = "advanced"
    REACHED = "reached"


@dataclass(eq=False)
class TreeNode:
    """Node of an exploration tree."""
    state: ConstrainedState
    parent: Optional["TreeNode"] = None
    children: List["TreeNode"] = field(default_factory=list)
    cost: float = 0.0


class PlannerBase:
    """Common setup, steering and bookkeeping for all planners."""

    name = "base"
    params_type: Type[PlannerParams] = PlannerParams

    def __init__(self, space: ConstrainedStateSpace,
                 validity_checker: Optional[ValidityChecker] = None,
                 params: Optional[PlannerParams] = None):
        """
        Initialize planner.

        Args:
            space: Constrained state space to plan in
            validity_checker: Predicate over ambient points (obstacles)
            params: Planner parameters
        """
        self.space = space
        self.validity_checker = validity_checker
        self.params = params if params is not None else self.params_type()
        self._deadline = 0.0

    def _start_clock(self):
        self._deadline = time.time() + self.params.time_limit

    def _time_left(self) -> bool:
        return time.time() < self._deadline

    def _iterations(self):
        iteration = 0
        while self._time_left() and (self.params.max_iterations is None or iteration < self.params.max_iterations):
            yield iteration
            iteration += 1

    def _check_endpoints(self, start: ConstrainedState, goal: ConstrainedState):
        for label, state in (("Start", start), ("Goal", goal)):
            if not self.space.is_on_manifold(state):
                raise InvalidInputError(f"{label} state is off the manifold")
            if not self.space.is_valid(state, self.validity_checker):
                raise InvalidInputError(f"{label} state {state.values.round(4).tolist()} is invalid")

    def sample(self, goal: ConstrainedState) -> Optional[ConstrainedState]:
        """Random valid state, or the goal with probability goal_bias."""
        if self.space.rng.random() < self.params.goal_bias:
            return goal
        try:
            return self.space.sample_valid(self.validity_checker)
        except NoValidSampleFound as err:
            logger.debug(f"{self.name} sampling failed: {err}")
            return None

    def find_nearest_node(self, tree: List[TreeNode], state: ConstrainedState) -> TreeNode:
        """Find the tree node nearest to the given state."""
        return min(tree, key=lambda node: self.space.distance(node.state, state))

    def steer(self, from_state: ConstrainedState, to_state: ConstrainedState) -> Optional[ConstrainedState]:
        """Target at most `range` away from from_state, on the manifold."""
        distance = self.space.distance(from_state, to_state)
        if distance <= self.params.range:
            return to_state
        try:
            return self.space.interpolate(from_state, to_state, self.params.range / distance)
        except ProjectionDivergence as err:
            logger.debug(f"{self.name} chord target did not project ({err}), steering along the manifold")

        # Chord point is singular: cut the unchecked walk toward the target at `range` instead
        walk = self.space.traverse_manifold(from_state, to_state, interpolate=True)
        length = self.space.path_length(walk.states)
        if length < MIN_EXTENSION_LENGTH:
            return None
        return self.space.geodesic_interpolate(walk.states, min(self.params.range / length, 1.0))

    def extend(self, tree: List[TreeNode], target: ConstrainedState) -> Tuple[ExtendStatus, Optional[TreeNode]]:
        """
        Grow the tree toward target, keeping the valid prefix of a partial traversal.

        An extension that ends no closer to the target than its nearest node,
        or on a state already in the tree, is TRAPPED.
        """
        nearest = self.find_nearest_node(tree, target)
        steered = self.steer(nearest.state, target)
        if steered is None:
            return ExtendStatus.TRAPPED, None

        result = self.space.traverse_manifold(nearest.state, steered, validity_checker=self.validity_checker)
        if result.error is not None:
            logger.debug(f"{self.name} extension stopped: {result.error}")

        end = result.end
        step = self.space.distance(nearest.state, end)
        if len(result.states) < 2 or step < MIN_EXTENSION_LENGTH:
            return ExtendStatus.TRAPPED, None
        if self.space.distance(end, target) >= self.space.distance(nearest.state, target):
            return ExtendStatus.TRAPPED, None
        if any(self.space.equal_states(end, node.state) for node in tree):
            return ExtendStatus.TRAPPED, None

        node = TreeNode(state=end, parent=nearest, cost=nearest.cost + step)
        nearest.children.append(node)
        tree.append(node)

        if result.complete and steered is target:
            return ExtendStatus.REACHED, node
        return ExtendStatus.ADVANCED, node

    def extract_path(self, node: TreeNode) -> List[ConstrainedState]:
        """Path from the tree root to node by following parent pointers."""
        path = []
        current = node
        while current is not None:
            path.append(current.state)
            current = current.parent
        path.reverse()
        return path

    def plan_path(self, start: ConstrainedState, goal: ConstrainedState) -> List[ConstrainedState]:
        raise NotImplementedError("PlannerBase.plan_path must be implemented")


# ============================================================================
# RRT Family
# ============================================================================

class RRT(PlannerBase):
    """Single-tree RRT toward the goal."""

    name = "RRT"

    def plan_path(self, start: ConstrainedState, goal: ConstrainedState) -> List[ConstrainedState]:
        """
        Plan a path from start to goal using basic RRT.

        Returns:
            List of waypoint states from start to goal

        Raises:
            InvalidInputError: If start or goal is off the manifold or invalid
            NoPathFoundError: If the time limit expires without a solution
        """
        self._check_endpoints(start, goal)
        self._start_clock()

        tree = [TreeNode(state=start)]
        logger.info(f"RRT starting planning (straight-line distance {self.space.distance(start, goal):.3f})")

        for iteration in self._iterations():
            if iteration % RRT_PROGRESS_LOG_INTERVAL == 0 and iteration > 0:
                logger.debug(f"RRT iteration {iteration}, tree size: {len(tree)}")

            target = self.sample(goal)
            if target is None:
                continue

            status, node = self.extend(tree, target)
            if node is None:
                continue

            # REACHED only means the sampled target was reached
            if not (status is ExtendStatus.REACHED and target is goal):
                if self.space.distance(node.state, goal) > self.params.range:
                    continue
                status, node = self.extend(tree, goal)
                if status is not ExtendStatus.REACHED:
                    continue

            path = self.extract_path(node)
            logger.info(f"RRT goal reached at iteration {iteration}, tree size {len(tree)}, "
                        f"{len(path)} waypoints")
            return path

        raise NoPathFoundError(f"RRT found no path within {self.params.time_limit}s ({len(tree)} nodes)")


class RRTConnect(PlannerBase):
    """Bidirectional RRT: one tree from each endpoint, greedily connected."""

    name = "RRTConnect"

    def connect(self, tree: List[TreeNode], target: ConstrainedState) -> Tuple[ExtendStatus, Optional[TreeNode]]:
        status, node = ExtendStatus.ADVANCED, None
        while status is ExtendStatus.ADVANCED and self._time_left():
            status, extended = self.extend(tree, target)
            if extended is not None:
                node = extended
        return status, node

    def plan_path(self, start: ConstrainedState, goal: ConstrainedState) -> List[ConstrainedState]:
        """
        Plan a path from start to goal using RRTConnect.

        Returns:
            List of waypoint states from start to goal

        Raises:
            InvalidInputError: If start or goal is off the manifold or invalid
            NoPathFoundError: If the time limit expires without a solution
        """
        self._check_endpoints(start, goal)
        self._start_clock()

        start_tree = [TreeNode(state=start)]
        goal_tree = [TreeNode(state=goal)]
        tree_a, tree_b = start_tree, goal_tree
        logger.info(f"RRTConnect starting planning (straight-line distance {self.space.distance(start, goal):.3f})")

        for iteration in self._iterations():
            target = self.sample(goal if tree_a is start_tree else start)
            if target is not None:
                _, node = self.extend(tree_a, target)
                if node is not None:
                    status, other = self.connect(tree_b, node.state)
                    if status is ExtendStatus.REACHED:
                        # The connecting node duplicates `node`; drop it from the joined path
                        a_path = self.extract_path(node)
                        b_path = self.extract_path(other)[:-1]
                        if tree_a is start_tree:
                            path = a_path + b_path[::-1]
                        else:
                            path = b_path + a_path[::-1]
                        logger.info(f"RRTConnect connected trees at iteration {iteration} "
                                    f"({len(start_tree)} + {len(goal_tree)} nodes, {len(path)} waypoints)")
                        return path

            tree_a, tree_b = tree_b, tree_a

        raise NoPathFoundError(
            f"RRTConnect found no path within {self.params.time_limit}s "
            f"({len(start_tree)} + {len(goal_tree)} nodes)")


# ============================================================================
# PRM (Probabilistic Roadmap) Algorithm
# ============================================================================

class PRMRoadmap:
    """Undirected roadmap graph whose edge weights are traversed manifold lengths."""

    def __init__(self):
        self.states: List[ConstrainedState] = []
        self.edges: List[Dict[int, float]] = []

    def __len__(self) -> int:
        return len(self.states)

    def add_node(self, state: ConstrainedState) -> int:
        self.states.append(state)
        self.edges.append({})
        return len(self.states) - 1

    def add_edge(self, a: int, b: int, weight: float):
        self.edges[a][b] = weight
        self.edges[b][a] = weight

    def degree(self, node_id: int) -> int:
        return len(self.edges[node_id])

    def shortest_path(self, start_id: int, goal_id: int) -> List[ConstrainedState]:
        """States along the lightest edge chain from start to goal, or [] if disconnected."""
        frontier = [(0.0, start_id, start_id)]
        came_from: Dict[int, int] = {}

        while frontier and goal_id not in came_from:
            cost, node_id, via = heapq.heappop(frontier)
            if node_id in came_from:
                continue
            came_from[node_id] = via
            for other, weight in self.edges[node_id].items():
                if other not in came_from:
                    heapq.heappush(frontier, (cost + weight, other, node_id))

        if goal_id not in came_from:
            return []

        chain = [goal_id]
        while chain[-1] != start_id:
            chain.append(came_from[chain[-1]])
        return [self.states[i] for i in reversed(chain)]


class PRM(PlannerBase):
    """Probabilistic Roadmap grown until start and goal are connected."""

    name = "PRM"
    params_type = PRMParams

    def __init__(self, space: ConstrainedStateSpace,
                 validity_checker: Optional[ValidityChecker] = None,
                 params: Optional[PRMParams] = None):
        super().__init__(space, validity_checker, params)
        self.roadmap = PRMRoadmap()

    @property
    def connection_radius(self) -> float:
        radius = getattr(self.params, "connection_radius", None)
        return radius if radius is not None else self.params.range

    def find_nearby_nodes(self, state: ConstrainedState) -> List[int]:
        """Roadmap nodes within the connection radius, nearest first, capped in count."""
        nearby = []
        for node_id, other in enumerate(self.roadmap.states):
            distance = self.space.distance(state, other)
            if distance <= self.connection_radius:
                nearby.append((distance, node_id))
        nearby.sort()
        limit = getattr(self.params, "max_connections_per_node", len(nearby))
        return [node_id for _, node_id in nearby[:limit]]

    def add_and_connect(self, state: ConstrainedState) -> int:
        """Add a roadmap node and connect it to every nearby node it can fully traverse to."""
        nearby = self.find_nearby_nodes(state)
        node_id = self.roadmap.add_node(state)
        for other_id in nearby:
            result = self.space.traverse_manifold(state, self.roadmap.states[other_id],
                                                  validity_checker=self.validity_checker)
            if result.complete:
                self.roadmap.add_edge(node_id, other_id, self.space.path_length(result.states))
        return node_id

    def sample_roadmap_state(self) -> Optional[ConstrainedState]:
        """
        Next state to add: a uniform valid sample, or with probability
        expand_probability a state near a sparsely connected node.
        """
        expand = getattr(self.params, "expand_probability", 0.0)
        try:
            if len(self.roadmap) and self.space.rng.random() < expand:
                weights = np.array([1.0 / (1.0 + self.roadmap.degree(i)) for i in range(len(self.roadmap))])
                node_id = int(self.space.rng.choice(len(self.roadmap), p=weights / weights.sum()))
                state = self.space.sample_near(self.roadmap.states[node_id], 0.5 * self.connection_radius)
                return state if self.space.is_valid(state, self.validity_checker) else None
            return self.space.sample_valid(self.validity_checker)
        except NoValidSampleFound as err:
            logger.debug(f"PRM sampling failed: {err}")
            return None

    def plan_path(self, start: ConstrainedState, goal: ConstrainedState) -> List[ConstrainedState]:
        """
        Plan a path from start to goal using PRM.

        Returns:
            List of waypoint states from start to goal

        Raises:
            InvalidInputError: If start or goal is off the manifold or invalid
            NoPathFoundError: If the roadmap never connects start and goal in time
        """
        self._check_endpoints(start, goal)
        self._start_clock()

        start_id = self.add_and_connect(start)
        goal_id = self.add_and_connect(goal)
        logger.info(f"PRM growing roadmap (connection radius {self.connection_radius:.3f})")

        for iteration in self._iterations():
            if iteration % PRM_CONNECTIVITY_CHECK_INTERVAL == 0:
                path = self.roadmap.shortest_path(start_id, goal_id)
                if path:
                    logger.info(f"PRM path found with {len(path)} waypoints ({len(self.roadmap)} roadmap nodes)")
                    return path

            state = self.sample_roadmap_state()
            if state is None:
                continue
            self.add_and_connect(state)

            if len(self.roadmap) % PRM_PROGRESS_LOG_INTERVAL_SAMPLES == 0:
                logger.debug(f"PRM roadmap has {len(self.roadmap)} nodes")

        path = self.roadmap.shortest_path(start_id, goal_id)
        if path:
            return path
        raise NoPathFoundError(
            f"PRM found no path within {self.params.time_limit}s ({len(self.roadmap)} roadmap nodes)")


PLANNERS: Dict[str, Type[PlannerBase]] = {
    RRT.name: RRT,
    RRTConnect.name: RRTConnect,
    PRM.name: PRM,
}


def create_planner(name: str, space: ConstrainedStateSpace,
                   validity_checker: Optional[ValidityChecker] = None,
                   params: Optional[PlannerParams] = None) -> PlannerBase:
    """
    Build a registered planner by name.

    Raises:
        InvalidConfigurationError: If the planner name is unknown
    """
    if name not in PLANNERS:
        raise InvalidConfigurationError(f"Unknown planner '{name}'. Choose from {sorted(PLANNERS)}")
    return PLANNERS[name](space, validity_checker, params)
