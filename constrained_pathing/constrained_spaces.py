"""
Constrained State Spaces - NumPy Implementation
===============================================

State spaces whose states live on the manifold F(x) = 0 of a constraint.

Includes:
- ProjectedStateSpace (full Newton projection after every step)
- NullspaceStateSpace (tangent steps in ker J, then a corrective projection)
- AtlasStateSpace (tangent steps in lazily built charts, chart retraction)

All state spaces:
- Share one manifold traversal loop, parameterized by a per-variant stepper
- Report traversal failures as typed errors inside a TraversalResult
- Expose only the narrow interface planners need (sample, distance,
  interpolate, traverse / check motion)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Type

import numpy as np

from .atlas import ANCHOR_MATCH_TOLERANCE, Atlas, AtlasParams, Chart, ChartBudget, ChartRef
from .constraint import (
    ChartExplosion,
    ConstrainedPlanningError,
    Constraint,
    DivergentStep,
    InvalidConfigurationError,
    InvalidInputError,
    NoValidSampleFound,
    ProjectionDivergence,
)
from .manifold_utils import (
    AmbientBounds,
    locate_arc_length,
    normalize_vector,
    precompute_cumulative_distances,
)

# ============================================================================
# Logging Configuration
# ============================================================================

logger = logging.getLogger(__name__)

ValidityChecker = Callable[[np.ndarray], bool]

# ============================================================================
# State Space Constants
# ============================================================================

DEFAULT_AMBIENT_BOUND = 20.0
SAME_STATE_TOLERANCE = 1e-9
NULLSPACE_MIN_TANGENT_NORM = 1e-9


@dataclass
class ConstrainedSpaceParams:
    """Parameters shared by every constrained state space."""
    delta: float = 0.02                 # Max step length of a single traversal step
    lambda_: float = 2.0                # Max ratio of walked length to straight-line distance
    max_sample_attempts: int = 100
    max_traversal_steps: Optional[int] = None   # Derived from lambda_ and delta when None

    def __post_init__(self):
        if self.delta <= 0.0:
            raise InvalidConfigurationError(f"delta must be positive, got {self.delta}")
        if self.lambda_ <= 1.0:
            raise InvalidConfigurationError(f"lambda_ must exceed 1, got {self.lambda_}")
        if self.max_sample_attempts < 1:
            raise InvalidConfigurationError(
                f"max_sample_attempts must be at least 1, got {self.max_sample_attempts}")
        if self.max_traversal_steps is not None and self.max_traversal_steps < 1:
            raise InvalidConfigurationError(
                f"max_traversal_steps must be at least 1, got {self.max_traversal_steps}")


@dataclass
class ConstrainedState:
    """Point on the manifold plus an advisory reference to its chart."""
    values: np.ndarray
    chart_ref: Optional[ChartRef] = None

    def __post_init__(self):
        self.values = np.asarray(self.values, dtype=np.float64)

    def copy(self) -> "ConstrainedState":
        return ConstrainedState(self.values.copy(), self.chart_ref)


@dataclass
class TraversalResult:
    """Outcome of walking the manifold between two states."""
    states: List[ConstrainedState] = field(default_factory=list)
    complete: bool = False
    error: Optional[ConstrainedPlanningError] = None

    @property
    def end(self) -> ConstrainedState:
        return self.states[-1]

    def raise_for_error(self):
        if self.error is not None:
            raise self.error


# ============================================================================
# Traversal Steppers
# ============================================================================

class _ProjectedStepper:
    """Ambient chord step toward the goal, then full projection."""

    def __init__(self, space: "ConstrainedStateSpace", goal: ConstrainedState):
        self.space = space
        self.goal = goal.values

    def step(self, current: ConstrainedState) -> ConstrainedState:
        direction = self.goal - current.values
        candidate = current.values + self.space.params.delta * normalize_vector(direction)
        return ConstrainedState(self.space.constraint.project(candidate))


class _NullspaceStepper:
    """Step inside the null space of the Jacobian, then correct back onto the manifold."""

    def __init__(self, space: "ConstrainedStateSpace", goal: ConstrainedState):
        self.space = space
        self.goal = goal.values

    def step(self, current: ConstrainedState) -> ConstrainedState:
        constraint = self.space.constraint
        tangent = constraint.tangent_step(current.values, self.goal - current.values)
        if np.linalg.norm(tangent) < NULLSPACE_MIN_TANGENT_NORM:
            raise DivergentStep("Goal direction is orthogonal to the manifold at the current state")
        candidate = current.values + self.space.params.delta * normalize_vector(tangent)
        return ConstrainedState(constraint.project(candidate))


class _AtlasStepper:
    """Step in chart tangent coordinates, switching or creating charts on demand."""

    def __init__(self, space: "AtlasStateSpace", start: ConstrainedState, goal: ConstrainedState):
        self.space = space
        self.atlas = space.atlas
        self.goal = goal.values
        self.budget = ChartBudget(self.atlas.params.max_charts_per_extension)
        self.chart = self.atlas.resolve(start.values, start.chart_ref, self.budget)
        self._candidate: Optional[np.ndarray] = None

    def _try_chart(self, chart: Chart, x_r: np.ndarray, use_polytope: bool) -> Optional[np.ndarray]:
        u_r = chart.to_tangent(x_r)
        direction = chart.to_tangent(self.goal) - u_r
        length = float(np.linalg.norm(direction))
        if length < NULLSPACE_MIN_TANGENT_NORM:
            return None

        u_j = u_r + direction * (min(self.space.params.delta, length) / length)
        try:
            x_j = chart.from_tangent(u_j)
        except ProjectionDivergence:
            return None
        self._candidate = x_j

        if use_polytope and not chart.owns_tangent(u_j):
            return None
        if not chart.within_tolerance(u_j, x_j):
            return None
        return x_j

    def step(self, current: ConstrainedState) -> ConstrainedState:
        x_r = current.values
        self._candidate = None

        x_j = self._try_chart(self.chart, x_r, use_polytope=True)
        if x_j is not None:
            return ConstrainedState(x_j, self.chart.ref())

        # Leaving the chart: hand over to whichever chart owns the candidate point
        if self._candidate is not None:
            owner = self.atlas.owning_chart(self._candidate)
            if owner is not None and owner is not self.chart:
                x_j = self._try_chart(owner, x_r, use_polytope=True)
                if x_j is not None:
                    self.chart = owner
                    return ConstrainedState(x_j, owner.ref())

        # Nothing suitable: anchor a fresh chart at the current state
        if np.linalg.norm(self.chart.anchor - x_r) <= ANCHOR_MATCH_TOLERANCE:
            raise DivergentStep(f"No admissible step from the anchor of chart {self.chart.id}")
        self.chart = self.atlas.new_chart(x_r, self.budget)
        x_j = self._try_chart(self.chart, x_r, use_polytope=False)
        if x_j is None:
            raise DivergentStep(
                f"Step of {self.space.params.delta} leaves the tolerance of a chart anchored "
                f"at the current state (chart {self.chart.id})")
        return ConstrainedState(x_j, self.chart.ref())


# ============================================================================
# Constrained State Space Base
# ============================================================================

class ConstrainedStateSpace:
    """Common contract of the three constrained state space variants."""

    name = "constrained"

    def __init__(self, constraint: Constraint,
                 params: Optional[ConstrainedSpaceParams] = None,
                 bounds: Optional[AmbientBounds] = None,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize constrained state space.

        Args:
            constraint: Constraint defining the manifold
            params: Traversal and sampling parameters
            bounds: Ambient bounding box for sampling (default +/-20 per axis)
            rng: Random generator used for all sampling

        Raises:
            InvalidConfigurationError: If bounds and constraint dimensions differ
        """
        self.constraint = constraint
        self.params = params if params is not None else ConstrainedSpaceParams()
        self.bounds = bounds if bounds is not None else AmbientBounds.symmetric(
            constraint.ambient_dim, DEFAULT_AMBIENT_BOUND)
        self.rng = rng if rng is not None else np.random.default_rng()

        if self.bounds.dim != constraint.ambient_dim:
            raise InvalidConfigurationError(
                f"Ambient bounds have dimension {self.bounds.dim} but the constraint "
                f"expects {constraint.ambient_dim}")

    @property
    def ambient_dim(self) -> int:
        return self.constraint.ambient_dim

    @property
    def manifold_dim(self) -> int:
        return self.constraint.manifold_dim

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def make_state(self, x: np.ndarray, project: bool = False) -> ConstrainedState:
        """
        Wrap an ambient point as a state.

        Raises:
            InvalidInputError: If x is off the manifold and project is False
            ProjectionDivergence: If project is True and projection fails
        """
        x = self.constraint.check_dimension(x)
        if project:
            x = self.constraint.project(x)
        elif not self.constraint.is_satisfied(x):
            raise InvalidInputError(
                f"Point is off the manifold (residual {self.constraint.distance_to_manifold(x):.3e})")
        return self._wrap(x)

    def _wrap(self, x: np.ndarray) -> ConstrainedState:
        return ConstrainedState(np.array(x, dtype=np.float64))

    def make_endpoint_state(self, x: np.ndarray) -> ConstrainedState:
        """State for a start/goal point of a planning query."""
        return self.make_state(x)

    def is_on_manifold(self, state: ConstrainedState) -> bool:
        return self.constraint.is_satisfied(state.values)

    def is_valid(self, state: ConstrainedState, validity_checker: Optional[ValidityChecker] = None) -> bool:
        if not self.bounds.contains(state.values):
            return False
        return validity_checker is None or bool(validity_checker(state.values))

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample_uniform(self) -> ConstrainedState:
        """
        Sample the ambient box and project onto the manifold.

        Raises:
            NoValidSampleFound: If every attempt failed to project into bounds
        """
        for attempt in range(self.params.max_sample_attempts):
            try:
                x = self.constraint.project(self.bounds.sample(self.rng))
            except ProjectionDivergence as err:
                logger.debug(f"Sample attempt {attempt} did not project: {err}")
                continue
            if self.bounds.contains(x):
                return self._wrap(x)

        raise NoValidSampleFound(f"No sample projected into bounds after {self.params.max_sample_attempts} attempts")

    def sample_valid(self, validity_checker: Optional[ValidityChecker] = None) -> ConstrainedState:
        """
        Sample a manifold state accepted by the validity checker.

        Raises:
            NoValidSampleFound: If sampling retries are exhausted
        """
        for _ in range(self.params.max_sample_attempts):
            state = self.sample_uniform()
            if self.is_valid(state, validity_checker):
                return state

        raise NoValidSampleFound(f"No valid sample found after {self.params.max_sample_attempts} attempts")

    def sample_near(self, state: ConstrainedState, distance: float) -> ConstrainedState:
        """
        Sample a manifold state near the given one (Gaussian ambient perturbation).

        Raises:
            NoValidSampleFound: If every perturbation failed to project into bounds
        """
        for attempt in range(self.params.max_sample_attempts):
            candidate = state.values + self.rng.normal(scale=distance, size=self.ambient_dim)
            try:
                x = self.constraint.project(candidate)
            except ProjectionDivergence as err:
                logger.debug(f"Near sample attempt {attempt} did not project: {err}")
                continue
            if self.bounds.contains(x):
                return self._wrap(x)

        raise NoValidSampleFound(f"No nearby sample found after {self.params.max_sample_attempts} attempts")

    # ------------------------------------------------------------------
    # Metric and interpolation
    # ------------------------------------------------------------------

    def distance(self, a: ConstrainedState, b: ConstrainedState) -> float:
        return self.constraint.ambient_distance(a.values, b.values)

    def equal_states(self, a: ConstrainedState, b: ConstrainedState) -> bool:
        return self.constraint.ambient_distance(a.values, b.values) <= SAME_STATE_TOLERANCE

    def interpolate(self, a: ConstrainedState, b: ConstrainedState, t: float) -> ConstrainedState:
        """
        Point at fraction t of the ambient chord between a and b, re-projected.

        Only meant for coarse waypoints; traverse_manifold produces fine paths.

        Raises:
            ProjectionDivergence: If the chord point cannot be projected
        """
        if t <= 0.0:
            return a.copy()
        if t >= 1.0:
            return b.copy()
        return self._wrap(self.constraint.project(a.values + t * (b.values - a.values)))

    def geodesic_interpolate(self, states: List[ConstrainedState], t: float) -> ConstrainedState:
        """State of a traversal polyline closest to fraction t of its arc length."""
        if not states:
            raise InvalidInputError("Cannot interpolate along an empty traversal")
        cum_dist, total = precompute_cumulative_distances(np.array([s.values for s in states]))
        if len(states) == 1 or total == 0.0:
            return states[0].copy()
        i, local = locate_arc_length(cum_dist, min(max(t, 0.0), 1.0) * total)
        return (states[i] if local < 0.5 else states[i + 1]).copy()

    def path_length(self, states: List[ConstrainedState]) -> float:
        return float(sum(self.distance(a, b) for a, b in zip(states[:-1], states[1:])))

    # ------------------------------------------------------------------
    # Manifold traversal
    # ------------------------------------------------------------------

    def _make_stepper(self, start: ConstrainedState, goal: ConstrainedState):
        raise NotImplementedError("ConstrainedStateSpace._make_stepper must be implemented")

    def traverse_manifold(self, from_state: ConstrainedState, to_state: ConstrainedState,
                          interpolate: bool = False,
                          validity_checker: Optional[ValidityChecker] = None) -> TraversalResult:
        """
        Walk the manifold from one state toward another in steps of at most delta.

        Args:
            from_state: Start of the walk (included in the result)
            to_state: Target of the walk
            interpolate: If True, skip validity checks (path reconstruction)
            validity_checker: Predicate over ambient points; bounds always apply

        Returns:
            TraversalResult whose states run from from_state to the reached
            endpoint. complete is True only when to_state itself was reached.
        """
        delta = self.params.delta
        lambda_ = self.params.lambda_
        start = from_state.copy()
        goal = ConstrainedState(self.constraint.check_dimension(to_state.values), to_state.chart_ref)
        result = TraversalResult(states=[start])

        dist = self.constraint.ambient_distance(start.values, goal.values)
        if dist <= SAME_STATE_TOLERANCE:
            result.complete = True
            return result

        if dist > delta:
            try:
                stepper = self._make_stepper(start, goal)
            except (ProjectionDivergence, ChartExplosion) as err:
                result.error = err
                return result

            max_steps = self.params.max_traversal_steps or int(math.ceil(lambda_ * dist / delta)) + 1
            max_walk = lambda_ * dist
            walked = 0.0
            previous = start

            for _ in range(max_steps):
                try:
                    candidate = stepper.step(previous)
                except (ProjectionDivergence, ChartExplosion, DivergentStep) as err:
                    logger.debug(f"Traversal stopped after {len(result.states)} states: {err}")
                    result.error = err
                    return result

                step = self.constraint.ambient_distance(previous.values, candidate.values)
                if step > lambda_ * delta:
                    result.error = DivergentStep(
                        f"Retracted step of {step:.4f} exceeds {lambda_ * delta:.4f}")
                    return result

                if not interpolate and not self.is_valid(candidate, validity_checker):
                    return result

                walked += step
                new_dist = self.constraint.ambient_distance(candidate.values, goal.values)
                if walked > max_walk or new_dist >= dist:
                    logger.debug(f"Traversal stalled at distance {dist:.4f} after walking {walked:.4f}")
                    return result

                result.states.append(candidate)
                previous = candidate
                dist = new_dist
                if dist <= delta:
                    break
            else:
                logger.debug(f"Traversal hit the step cap ({max_steps}) at distance {dist:.4f}")
                return result

        if not interpolate and not self.is_valid(goal, validity_checker):
            return result

        result.states.append(goal.copy())
        result.complete = True
        return result

    def check_motion(self, a: ConstrainedState, b: ConstrainedState,
                     validity_checker: Optional[ValidityChecker] = None) -> bool:
        return self.traverse_manifold(a, b, interpolate=False, validity_checker=validity_checker).complete


# ============================================================================
# Projected and Nullspace Variants
# ============================================================================

class ProjectedStateSpace(ConstrainedStateSpace):
    """Every traversal step is re-projected with a full Newton solve."""

    name = "projected"

    def _make_stepper(self, start: ConstrainedState, goal: ConstrainedState) -> _ProjectedStepper:
        return _ProjectedStepper(self, goal)


class NullspaceStateSpace(ConstrainedStateSpace):
    """Traversal steps stay first-order tangent to the manifold before correction."""

    name = "null"

    def _make_stepper(self, start: ConstrainedState, goal: ConstrainedState) -> _NullspaceStepper:
        return _NullspaceStepper(self, goal)


# ============================================================================
# Atlas Variant
# ============================================================================

class AtlasStateSpace(ConstrainedStateSpace):
    """Traversal and sampling through an adaptively built atlas of charts."""

    name = "atlas"

    def __init__(self, constraint: Constraint,
                 params: Optional[ConstrainedSpaceParams] = None,
                 bounds: Optional[AmbientBounds] = None,
                 rng: Optional[np.random.Generator] = None,
                 atlas_params: Optional[AtlasParams] = None):
        super().__init__(constraint, params, bounds, rng)
        self.atlas = Atlas(constraint, atlas_params)

    @property
    def chart_count(self) -> int:
        return self.atlas.chart_count

    @property
    def rho_s(self) -> float:
        return self.atlas.rho_s

    def anchor_chart(self, x: np.ndarray) -> Chart:
        return self.atlas.anchor_chart(x)

    def make_endpoint_state(self, x: np.ndarray) -> ConstrainedState:
        """State for a start/goal point, anchoring a chart at it."""
        chart = self.anchor_chart(self.make_state(x).values)
        return ConstrainedState(chart.anchor.copy(), chart.ref())

    def _wrap(self, x: np.ndarray) -> ConstrainedState:
        owner = self.atlas.owning_chart(x)
        return ConstrainedState(np.array(x, dtype=np.float64), owner.ref() if owner is not None else None)

    def estimate_frontier_percent(self) -> float:
        return self.atlas.estimate_frontier_percent()

    def sample_uniform(self) -> ConstrainedState:
        """
        Sample inside a random chart's tangent ball of radius rho_s and retract.

        Falls back to ambient sampling until the atlas has a first chart.

        Raises:
            NoValidSampleFound: If every attempt failed
        """
        if self.atlas.chart_count == 0:
            state = super().sample_uniform()
            chart = self.atlas.find_or_create_chart(state.values)
            return ConstrainedState(state.values, chart.ref())

        for attempt in range(self.params.max_sample_attempts):
            chart = self.atlas.sample_chart(self.rng)
            u = self.atlas.sample_tangent(chart, self.rng)
            try:
                x = chart.from_tangent(u)
                if not self.bounds.contains(x):
                    continue
                owner = self.atlas.find_or_create_chart(x)
            except ProjectionDivergence as err:
                logger.debug(f"Chart sample attempt {attempt} in chart {chart.id} failed: {err}")
                continue
            return ConstrainedState(x, owner.ref())

        raise NoValidSampleFound(f"No chart sample retracted after {self.params.max_sample_attempts} attempts")

    def distance(self, a: ConstrainedState, b: ConstrainedState) -> float:
        """Tangent-coordinate distance when both states share a chart, else ambient."""
        if a.chart_ref is not None and b.chart_ref is not None and a.chart_ref.chart_id == b.chart_ref.chart_id:
            chart = self.atlas.get_chart(a.chart_ref.chart_id)
            if chart is not None:
                return float(np.linalg.norm(chart.to_tangent(a.values) - chart.to_tangent(b.values)))
        return self.constraint.ambient_distance(a.values, b.values)

    def _make_stepper(self, start: ConstrainedState, goal: ConstrainedState) -> _AtlasStepper:
        return _AtlasStepper(self, start, goal)


# ============================================================================
# Factory
# ============================================================================

SPACE_TYPES: Dict[str, Type[ConstrainedStateSpace]] = {
    ProjectedStateSpace.name: ProjectedStateSpace,
    NullspaceStateSpace.name: NullspaceStateSpace,
    AtlasStateSpace.name: AtlasStateSpace,
}


def create_state_space(space_type: str, constraint: Constraint,
                       params: Optional[ConstrainedSpaceParams] = None,
                       bounds: Optional[AmbientBounds] = None,
                       atlas_params: Optional[AtlasParams] = None,
                       seed: Optional[int] = None) -> ConstrainedStateSpace:
    """
    Build a constrained state space by name ("projected", "null" or "atlas").

    Raises:
        InvalidConfigurationError: If the name is unknown
    """
    if space_type not in SPACE_TYPES:
        raise InvalidConfigurationError(
            f"Unknown constrained state space '{space_type}'. Choose from {sorted(SPACE_TYPES)}")

    rng = np.random.default_rng(seed)
    if space_type == AtlasStateSpace.name:
        return AtlasStateSpace(constraint, params, bounds, rng, atlas_params=atlas_params)
    return SPACE_TYPES[space_type](constraint, params, bounds, rng)
