"""
Atlas of local charts over a constraint manifold.
=================================================

A chart linearizes the manifold around an anchor point: tangent
coordinates u map to the ambient point x0 + B u, and the retraction
pulls that point back onto the manifold orthogonally to the tangent
space. Neighboring charts carve each other's tangent balls with
bisecting halfspaces so every explored region has a clear owner.

The atlas only ever grows; charts are created lazily where the planner
explores and persist for the whole session.
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from .constraint import (
    Constraint,
    ChartExplosion,
    InvalidConfigurationError,
    ProjectionDivergence,
    solve_newton,
    orthonormal_nullspace,
    orthonormal_rowspace,
)
from .manifold_utils import (
    ball_volume,
    principal_angle,
    sample_in_ball,
    sample_on_sphere,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Atlas Constants
# ============================================================================

CHART_MEASURE_SAMPLES = 64
FRONTIER_SAMPLES_PER_CHART = 32
ANCHOR_MATCH_TOLERANCE = 1e-6
HALFSPACE_SLACK = 1e-12


@dataclass
class AtlasParams:
    """Parameters for atlas construction."""
    rho: float = 0.5                    # Max chart radius in tangent coordinates
    alpha: float = math.pi / 8          # Max angle between chart and manifold tangent spaces
    epsilon: float = 0.2                # Max linearization error before a smaller chart is needed
    exploration: float = 0.5            # Fraction of samples drawn beyond rho
    max_charts_per_extension: int = 200
    separate: bool = True               # Generate halfspaces between neighboring charts

    def __post_init__(self):
        if self.rho <= 0.0:
            raise InvalidConfigurationError(f"rho must be positive, got {self.rho}")
        if not 0.0 < self.alpha < math.pi / 2:
            raise InvalidConfigurationError(f"alpha must be in (0, pi/2), got {self.alpha}")
        if self.epsilon <= 0.0:
            raise InvalidConfigurationError(f"epsilon must be positive, got {self.epsilon}")
        if not 0.0 <= self.exploration < 1.0:
            raise InvalidConfigurationError(f"exploration must be in [0, 1), got {self.exploration}")
        if self.max_charts_per_extension < 1:
            raise InvalidConfigurationError(
                f"max_charts_per_extension must be at least 1, got {self.max_charts_per_extension}")


@dataclass(frozen=True)
class ChartRef:
    """Weak reference from a state to the chart it was last resolved in."""
    chart_id: int
    generation: int


class ChartBudget:
    """Counts charts created during one traversal call."""

    def __init__(self, limit: int):
        self.limit = limit
        self.created = 0

    def consume(self):
        if self.created >= self.limit:
            raise ChartExplosion(f"Traversal needed more than {self.limit} new charts")
        self.created += 1


# ============================================================================
# Halfspaces
# ============================================================================

class Halfspace:
    """Linear inequality w . u <= offset in a chart's tangent coordinates."""

    def __init__(self, neighbor_id: int, normal: np.ndarray):
        self.neighbor_id = neighbor_id
        self.normal = np.asarray(normal, dtype=np.float64)
        # Bisector between the owner's anchor (u = 0) and the neighbor's anchor
        self.offset = 0.5 * float(self.normal @ self.normal)

    def accepts(self, u: np.ndarray) -> bool:
        return float(self.normal @ u) <= self.offset + HALFSPACE_SLACK


# ============================================================================
# Chart
# ============================================================================

class Chart:
    """Local tangent-space parameterization of the manifold around an anchor."""

    def __init__(self, chart_id: int, constraint: Constraint, anchor: np.ndarray,
                 rho: float, epsilon: float, alpha: float):
        """
        Initialize chart.

        Args:
            chart_id: Identifier within the owning atlas
            constraint: Constraint defining the manifold
            anchor: Anchor point, already on the manifold
            rho: Radius bounding the trusted region in tangent coordinates
            epsilon: Max distance between tangent plane and manifold
            alpha: Max angle between chart and manifold tangent spaces

        Raises:
            ProjectionDivergence: If the Jacobian is rank deficient at the anchor
        """
        self.id = chart_id
        self.constraint = constraint
        self.anchor = np.array(anchor, dtype=np.float64)
        self.rho = rho
        self.epsilon = epsilon
        self.alpha = alpha

        jac = constraint.jacobian(self.anchor)
        self.tangent_basis = orthonormal_nullspace(jac, constraint.singular_value_threshold)
        if self.tangent_basis.shape[1] != constraint.manifold_dim:
            raise ProjectionDivergence(
                f"Jacobian is rank deficient at chart anchor "
                f"(tangent dimension {self.tangent_basis.shape[1]}, expected {constraint.manifold_dim})")
        self.normal_basis = orthonormal_rowspace(jac, constraint.singular_value_threshold)

        self.halfspaces: List[Halfspace] = []
        self.generation = 0
        self._measure_cache: Optional[tuple] = None

    @property
    def dim(self) -> int:
        return self.tangent_basis.shape[1]

    def ref(self) -> ChartRef:
        return ChartRef(self.id, self.generation)

    def phi(self, u: np.ndarray) -> np.ndarray:
        """Ambient point on the tangent plane for tangent coordinates u."""
        return self.anchor + self.tangent_basis @ u

    def to_tangent(self, x: np.ndarray) -> np.ndarray:
        return self.tangent_basis.T @ (np.asarray(x, dtype=np.float64) - self.anchor)

    def from_tangent(self, u: np.ndarray) -> np.ndarray:
        """
        Retract tangent coordinates onto the manifold.

        Solves F(x) = 0 together with B^T (x - phi(u)) = 0, i.e. moves from
        phi(u) along the chart's normal space only.

        Raises:
            ProjectionDivergence: If the retraction does not converge
        """
        target = self.phi(u)
        basis_t = self.tangent_basis.T

        def residual(x):
            return np.concatenate([self.constraint.function(x), basis_t @ (x - target)])

        def jacobian(x):
            return np.vstack([self.constraint.jacobian(x), basis_t])

        return solve_newton(
            target, residual, jacobian,
            tolerance=self.constraint.tolerance,
            max_iterations=self.constraint.max_iterations,
            divergence_patience=self.constraint.divergence_patience,
            singular_value_threshold=self.constraint.singular_value_threshold,
        )

    def linearization_error(self, x: np.ndarray) -> float:
        """Distance from x to the chart's tangent plane."""
        return float(np.linalg.norm(self.normal_basis.T @ (np.asarray(x, dtype=np.float64) - self.anchor)))

    def in_polytope(self, u: np.ndarray, ignore: Optional[int] = None) -> bool:
        for halfspace in self.halfspaces:
            if halfspace.neighbor_id != ignore and not halfspace.accepts(u):
                return False
        return True

    def owns_tangent(self, u: np.ndarray) -> bool:
        return float(np.linalg.norm(u)) <= self.rho + HALFSPACE_SLACK and self.in_polytope(u)

    def owns(self, x: np.ndarray) -> bool:
        """True iff x lies within rho of the anchor and inside every halfspace."""
        return self.owns_tangent(self.to_tangent(x))

    def within_tolerance(self, u: np.ndarray, x: Optional[np.ndarray] = None) -> bool:
        """
        Check whether the first-order approximation is still trusted at u.

        Args:
            u: Tangent coordinates
            x: Retracted point for u, computed when omitted

        Returns:
            False when the linearization error exceeds epsilon, the tangent
            spaces differ by more than alpha, or the retraction fails
        """
        if x is None:
            try:
                x = self.from_tangent(u)
            except ProjectionDivergence:
                return False

        if float(np.linalg.norm(self.phi(u) - x)) > self.epsilon:
            return False

        local_basis = self.constraint.nullspace(x)
        return principal_angle(self.tangent_basis, local_basis) <= self.alpha

    def add_halfspace(self, halfspace: Halfspace):
        self.halfspaces.append(halfspace)
        self.generation += 1
        self._measure_cache = None

    def neighbor_ids(self) -> List[int]:
        return [h.neighbor_id for h in self.halfspaces]

    def boundary_open_fraction(self, samples: int = FRONTIER_SAMPLES_PER_CHART,
                               rng: Optional[np.random.Generator] = None) -> float:
        """Fraction of the radius-rho boundary not cut off by any neighbor."""
        if not self.halfspaces:
            return 1.0
        rng = rng if rng is not None else np.random.default_rng(self.id)
        open_count = sum(
            1 for _ in range(samples)
            if self.in_polytope(sample_on_sphere(rng, self.dim, self.rho))
        )
        return open_count / samples

    def measure(self) -> float:
        """Volume estimate of the tangent ball clipped by the halfspaces."""
        if self._measure_cache is not None and self._measure_cache[0] == self.generation:
            return self._measure_cache[1]

        volume = ball_volume(self.dim, self.rho)
        if self.halfspaces:
            rng = np.random.default_rng(self.id)
            inside = sum(
                1 for _ in range(CHART_MEASURE_SAMPLES)
                if self.in_polytope(sample_in_ball(rng, self.dim, self.rho))
            )
            volume *= max(inside, 1) / CHART_MEASURE_SAMPLES

        self._measure_cache = (self.generation, volume)
        return volume

    def __repr__(self):
        return f"Chart(id={self.id}, anchor={np.round(self.anchor, 4).tolist()}, neighbors={len(self.halfspaces)})"


# ============================================================================
# Atlas
# ============================================================================

class Atlas:
    """Growing collection of charts covering the explored part of a manifold."""

    def __init__(self, constraint: Constraint, params: Optional[AtlasParams] = None):
        self.constraint = constraint
        self.params = params if params is not None else AtlasParams()
        self.charts: Dict[int, Chart] = {}
        self._next_id = 0
        self._creation_lock = threading.RLock()

    @property
    def chart_count(self) -> int:
        return len(self.charts)

    @property
    def rho_s(self) -> float:
        """Sampling radius; larger than rho to bias toward the frontier."""
        return self.params.rho / (1.0 - self.params.exploration) ** (1.0 / self.constraint.manifold_dim)

    def get_chart(self, chart_id: int) -> Optional[Chart]:
        return self.charts.get(chart_id)

    def new_chart(self, x: np.ndarray, budget: Optional[ChartBudget] = None) -> Chart:
        """
        Create and register a chart anchored at the projection of x.

        Raises:
            ChartExplosion: If the budget is exhausted
            ProjectionDivergence: If x cannot be projected or anchored
        """
        anchor = self.constraint.project(x)

        with self._creation_lock:
            if budget is not None:
                budget.consume()

            chart = Chart(self._next_id, self.constraint, anchor,
                          self.params.rho, self.params.epsilon, self.params.alpha)
            self._next_id += 1

            if self.params.separate:
                self._separate(chart)
            self.charts[chart.id] = chart

        logger.debug(f"Atlas created chart {chart.id} with {len(chart.halfspaces)} neighbors "
                     f"({self.chart_count} charts total)")
        return chart

    def _separate(self, chart: Chart):
        """Generate bisecting halfspaces between chart and nearby charts."""
        reach = 2.0 * self.params.rho
        for other in self.charts.values():
            if np.linalg.norm(other.anchor - chart.anchor) > reach:
                continue

            u_other = chart.to_tangent(other.anchor)
            u_chart = other.to_tangent(chart.anchor)
            if np.linalg.norm(u_other) < ANCHOR_MATCH_TOLERANCE or np.linalg.norm(u_chart) < ANCHOR_MATCH_TOLERANCE:
                continue

            chart.add_halfspace(Halfspace(other.id, u_other))
            other.add_halfspace(Halfspace(chart.id, u_chart))

    def anchor_chart(self, x: np.ndarray) -> Chart:
        """Return the chart anchored at x, creating it if needed."""
        x = self.constraint.check_dimension(x)
        with self._creation_lock:
            for chart in list(self.charts.values()):
                if np.linalg.norm(chart.anchor - x) <= ANCHOR_MATCH_TOLERANCE:
                    return chart
            chart = self.new_chart(x)
        logger.info(f"Atlas anchored chart {chart.id} at {np.round(chart.anchor, 4).tolist()}")
        return chart

    def owning_chart(self, x: np.ndarray) -> Optional[Chart]:
        """Existing chart that owns x with linearization error within epsilon."""
        reach = math.hypot(self.params.rho, self.params.epsilon)
        candidates = []
        for chart in list(self.charts.values()):
            dist = float(np.linalg.norm(chart.anchor - x))
            if dist <= reach:
                candidates.append((dist, chart.id))

        for _, chart_id in sorted(candidates):
            chart = self.charts[chart_id]
            if chart.owns(x) and chart.linearization_error(x) <= self.params.epsilon:
                return chart
        return None

    def find_or_create_chart(self, x: np.ndarray, budget: Optional[ChartBudget] = None) -> Chart:
        """
        Return the chart owning x, creating one anchored at project(x) if none does.

        Raises:
            ChartExplosion: If a chart must be created and the budget is exhausted
            ProjectionDivergence: If x cannot be projected onto the manifold
        """
        chart = self.owning_chart(x)
        if chart is not None:
            return chart
        with self._creation_lock:
            # Another thread may have created an owner meanwhile
            chart = self.owning_chart(x)
            if chart is not None:
                return chart
            return self.new_chart(x, budget)

    def resolve(self, x: np.ndarray, ref: Optional[ChartRef],
                budget: Optional[ChartBudget] = None) -> Chart:
        """Validate a state's chart reference, re-resolving it when stale."""
        if ref is not None:
            chart = self.charts.get(ref.chart_id)
            if chart is not None:
                if chart.generation == ref.generation or chart.owns(x):
                    return chart
        return self.find_or_create_chart(x, budget)

    def sample_chart(self, rng: np.random.Generator) -> Chart:
        """Pick a chart with probability proportional to its measure."""
        charts = list(self.charts.values())
        weights = np.array([c.measure() for c in charts])
        return charts[int(rng.choice(len(charts), p=weights / weights.sum()))]

    def sample_tangent(self, chart: Chart, rng: np.random.Generator) -> np.ndarray:
        return sample_in_ball(rng, chart.dim, self.rho_s)

    def estimate_frontier_percent(self, samples_per_chart: int = FRONTIER_SAMPLES_PER_CHART) -> float:
        """Percentage of chart boundary not yet bordered by another chart."""
        if not self.charts:
            return 100.0
        fractions = [c.boundary_open_fraction(samples_per_chart) for c in list(self.charts.values())]
        return 100.0 * float(np.mean(fractions))
