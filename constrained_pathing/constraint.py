"""
Constraint Definitions - NumPy Implementation
=============================================

Implicit equality constraints F(x) = 0 over an ambient space R^n.

Includes:
- Exception hierarchy shared by the whole engine
- Newton projection onto the constraint manifold (SVD pseudo-inverse steps)
- Null-space (tangent space) utilities
- Concrete constraints used by the bundled problems (sphere, torus, chain)

All constraints:
- Evaluate F(x) as a NumPy array of shape [k]
- Evaluate the Jacobian J(x) as a NumPy array of shape [k, n]
- Never return a point they could not bring within tolerance
"""

import logging
import math
from typing import Callable, Optional

import numpy as np

# ============================================================================
# Logging Configuration
# ============================================================================

logger = logging.getLogger(__name__)

# ============================================================================
# Custom Exceptions
# ============================================================================

class ConstrainedPlanningError(Exception):
    """Base exception for all constrained planning errors."""
    pass

class InvalidConfigurationError(ConstrainedPlanningError):
    """Raised when the engine is set up with inconsistent parameters."""
    pass

class InvalidInputError(ConstrainedPlanningError):
    """Raised when input parameters are invalid."""
    pass

class ProjectionDivergence(ConstrainedPlanningError):
    """Raised when Newton projection fails to converge from a starting point."""

    def __init__(self, message: str, residual: float = float('nan')):
        super().__init__(message)
        self.residual = residual

class ChartExplosion(ConstrainedPlanningError):
    """Raised when a single traversal would need more charts than allowed."""
    pass

class NoValidSampleFound(ConstrainedPlanningError):
    """Raised when sampling retries are exhausted."""
    pass

class DivergentStep(ConstrainedPlanningError):
    """Raised when a retracted traversal step lands too far from its target."""
    pass

class NoPathFoundError(ConstrainedPlanningError):
    """Raised when no valid path exists between start and goal."""
    pass

# ============================================================================
# Projection Constants
# ============================================================================

PROJECTION_DEFAULT_TOLERANCE = 1e-6
PROJECTION_DEFAULT_MAX_ITERATIONS = 50
PROJECTION_DIVERGENCE_PATIENCE = 3
SINGULAR_VALUE_THRESHOLD = 1e-10
FINITE_DIFFERENCE_STEP = 1e-6


# ============================================================================
# Newton Solver
# ============================================================================

def solve_newton(x0: np.ndarray,
                 residual_fn: Callable[[np.ndarray], np.ndarray],
                 jacobian_fn: Callable[[np.ndarray], np.ndarray],
                 tolerance: float = PROJECTION_DEFAULT_TOLERANCE,
                 max_iterations: int = PROJECTION_DEFAULT_MAX_ITERATIONS,
                 divergence_patience: int = PROJECTION_DIVERGENCE_PATIENCE,
                 singular_value_threshold: float = SINGULAR_VALUE_THRESHOLD) -> np.ndarray:
    """
    Drive residual_fn(x) to zero with minimum-norm Newton steps.

    Each step solves J dx = r through the SVD of J, so the same routine
    handles wide (projection) and square (chart retraction) systems.

    Args:
        x0: Starting point, left untouched
        residual_fn: Residual r(x), shape [m]
        jacobian_fn: Jacobian of the residual, shape [m, n]
        tolerance: Residual norm considered converged
        max_iterations: Hard cap on Newton steps
        divergence_patience: Consecutive residual increases tolerated
        singular_value_threshold: Smallest admissible singular value of J

    Returns:
        Converged point as a new array

    Raises:
        ProjectionDivergence: If the iteration does not converge
    """
    x = np.array(x0, dtype=np.float64)
    residual = np.asarray(residual_fn(x), dtype=np.float64)
    norm = float(np.linalg.norm(residual))
    if norm <= tolerance:
        return x

    increases = 0
    for iteration in range(max_iterations):
        jac = np.atleast_2d(np.asarray(jacobian_fn(x), dtype=np.float64))
        U, S, Vh = np.linalg.svd(jac, full_matrices=False)

        if S.size == 0 or S[-1] < singular_value_threshold:
            raise ProjectionDivergence(
                f"Jacobian is singular at iteration {iteration} "
                f"(min singular value {S[-1] if S.size else 0.0:.3e})",
                residual=norm,
            )

        step = Vh.T @ ((U.T @ residual) / S)
        x = x - step

        if not np.all(np.isfinite(x)):
            raise ProjectionDivergence(f"Newton iterate became non-finite at iteration {iteration}",
                                       residual=norm)

        residual = np.asarray(residual_fn(x), dtype=np.float64)
        new_norm = float(np.linalg.norm(residual))
        if new_norm <= tolerance:
            return x

        if new_norm > norm:
            increases += 1
            if increases >= divergence_patience:
                raise ProjectionDivergence(
                    f"Residual increased for {increases} consecutive steps ({new_norm:.3e})",
                    residual=new_norm,
                )
        else:
            increases = 0
        norm = new_norm

    raise ProjectionDivergence(
        f"Newton projection did not converge after {max_iterations} iterations (residual {norm:.3e})",
        residual=norm,
    )


def orthonormal_nullspace(jacobian: np.ndarray,
                          singular_value_threshold: float = SINGULAR_VALUE_THRESHOLD) -> np.ndarray:
    """Orthonormal basis (columns) of ker J, from the SVD of the Jacobian."""
    jac = np.atleast_2d(np.asarray(jacobian, dtype=np.float64))
    _, S, Vh = np.linalg.svd(jac, full_matrices=True)
    rank = int(np.sum(S > singular_value_threshold))
    return Vh[rank:].T.copy()


def orthonormal_rowspace(jacobian: np.ndarray,
                         singular_value_threshold: float = SINGULAR_VALUE_THRESHOLD) -> np.ndarray:
    """Orthonormal basis (columns) of the normal space spanned by the rows of J."""
    jac = np.atleast_2d(np.asarray(jacobian, dtype=np.float64))
    _, S, Vh = np.linalg.svd(jac, full_matrices=True)
    rank = int(np.sum(S > singular_value_threshold))
    return Vh[:rank].T.copy()


# ============================================================================
# Constraint Base Class
# ============================================================================

class Constraint:
    """Implicit equality constraint F: R^n -> R^k with Newton projection."""

    def __init__(self, ambient_dim: int, co_dim: int,
                 function: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                 jacobian: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                 tolerance: float = PROJECTION_DEFAULT_TOLERANCE,
                 max_iterations: int = PROJECTION_DEFAULT_MAX_ITERATIONS,
                 divergence_patience: int = PROJECTION_DIVERGENCE_PATIENCE,
                 singular_value_threshold: float = SINGULAR_VALUE_THRESHOLD):
        """
        Initialize constraint.

        Args:
            ambient_dim: Dimension n of the ambient space
            co_dim: Number k of scalar equations
            function: Residual F(x). Subclasses may override function() instead.
            jacobian: Jacobian J(x). Finite differences are used when omitted.
            tolerance: Residual norm accepted as "on the manifold"
            max_iterations: Maximum Newton iterations per projection
            divergence_patience: Consecutive residual increases before giving up
            singular_value_threshold: Jacobians below this are treated as singular
        """
        if ambient_dim <= 0:
            raise InvalidConfigurationError(f"Ambient dimension must be positive, got {ambient_dim}")
        if co_dim <= 0 or co_dim >= ambient_dim:
            raise InvalidConfigurationError(
                f"Co-dimension must be in [1, {ambient_dim - 1}], got {co_dim}")
        if tolerance <= 0.0:
            raise InvalidConfigurationError(f"Projection tolerance must be positive, got {tolerance}")
        if max_iterations < 1:
            raise InvalidConfigurationError(f"max_iterations must be at least 1, got {max_iterations}")

        self.ambient_dim = ambient_dim
        self.co_dim = co_dim
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.divergence_patience = divergence_patience
        self.singular_value_threshold = singular_value_threshold

        self._function = function
        self._jacobian = jacobian

    @property
    def manifold_dim(self) -> int:
        return self.ambient_dim - self.co_dim

    def function(self, x: np.ndarray) -> np.ndarray:
        """Evaluate F(x)."""
        if self._function is None:
            raise NotImplementedError("Constraint.function must be provided or overridden")
        return np.atleast_1d(np.asarray(self._function(x), dtype=np.float64))

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        """Evaluate J(x), falling back to central finite differences."""
        if self._jacobian is not None:
            return np.atleast_2d(np.asarray(self._jacobian(x), dtype=np.float64))

        x = np.asarray(x, dtype=np.float64)
        jac = np.zeros((self.co_dim, self.ambient_dim))
        for i in range(self.ambient_dim):
            offset = np.zeros(self.ambient_dim)
            offset[i] = FINITE_DIFFERENCE_STEP
            jac[:, i] = (self.function(x + offset) - self.function(x - offset)) / (2 * FINITE_DIFFERENCE_STEP)
        return jac

    def check_dimension(self, x: np.ndarray) -> np.ndarray:
        arr = np.asarray(x, dtype=np.float64)
        if arr.shape != (self.ambient_dim,):
            raise InvalidInputError(f"Expected a point of shape ({self.ambient_dim},), got {arr.shape}")
        return arr

    def distance_to_manifold(self, x: np.ndarray) -> float:
        return float(np.linalg.norm(self.function(self.check_dimension(x))))

    def is_satisfied(self, x: np.ndarray) -> bool:
        return self.distance_to_manifold(x) <= self.tolerance

    def project(self, x: np.ndarray) -> np.ndarray:
        """
        Project an ambient point onto the manifold with Newton iteration.

        Args:
            x: Ambient point of shape [n]

        Returns:
            New point x' with ||F(x')|| <= tolerance

        Raises:
            ProjectionDivergence: If the iteration fails to converge
        """
        x = self.check_dimension(x)
        projected = solve_newton(
            x, self.function, self.jacobian,
            tolerance=self.tolerance,
            max_iterations=self.max_iterations,
            divergence_patience=self.divergence_patience,
            singular_value_threshold=self.singular_value_threshold,
        )
        logger.debug(f"Projected point moved {np.linalg.norm(projected - x):.3e}")
        return projected

    def nullspace(self, x: np.ndarray) -> np.ndarray:
        """Orthonormal tangent basis at x, shape [n, n - rank(J)]."""
        return orthonormal_nullspace(self.jacobian(self.check_dimension(x)), self.singular_value_threshold)

    def tangent_step(self, x: np.ndarray, direction: np.ndarray) -> np.ndarray:
        """Orthogonal projection of an ambient direction onto the tangent space at x."""
        basis = self.nullspace(x)
        return basis @ (basis.T @ np.asarray(direction, dtype=np.float64))

    @staticmethod
    def ambient_distance(x: np.ndarray, y: np.ndarray) -> float:
        return float(np.linalg.norm(np.asarray(x, dtype=np.float64) - np.asarray(y, dtype=np.float64)))


# ============================================================================
# Concrete Constraints
# ============================================================================

class SphereConstraint(Constraint):
    """Sphere of given radius in R^3: F(x) = ||x||^2 - r^2."""

    def __init__(self, radius: float = 1.0, **kwargs):
        super().__init__(3, 1, **kwargs)
        self.radius = radius

    def function(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        return np.array([x @ x - self.radius ** 2])

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        return 2.0 * np.asarray(x, dtype=np.float64).reshape(1, 3)


class TorusConstraint(Constraint):
    """
    Torus around the z axis in implicit polynomial form.

    F(x) = (|x|^2 + R^2 - r^2)^2 - 4 R^2 (x^2 + y^2). The gradient vanishes
    at the origin and on the core circle, so projection from there diverges.
    """

    def __init__(self, outer_radius: float = 3.0, inner_radius: float = 1.0, **kwargs):
        if not 0.0 < inner_radius < outer_radius:
            raise InvalidConfigurationError(
                f"Torus needs 0 < inner_radius < outer_radius, got {inner_radius}, {outer_radius}")
        super().__init__(3, 1, **kwargs)
        self.outer_radius = outer_radius
        self.inner_radius = inner_radius

    def function(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        R2 = self.outer_radius ** 2
        s = x @ x + R2 - self.inner_radius ** 2
        return np.array([s * s - 4.0 * R2 * (x[0] ** 2 + x[1] ** 2)])

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        R2 = self.outer_radius ** 2
        s = x @ x + R2 - self.inner_radius ** 2
        grad = 4.0 * s * x
        grad[0] -= 8.0 * R2 * x[0]
        grad[1] -= 8.0 * R2 * x[1]
        return grad.reshape(1, 3)


class ChainConstraint(Constraint):
    """
    Kinematic chain of rigid links anchored at the origin.

    The state stacks the 3D joint positions p_1..p_n. Each link keeps its
    length, and the end effector p_n stays on the plane z = 0.
    """

    def __init__(self, links: int = 5, link_length: float = 1.0, **kwargs):
        if links < 2:
            raise InvalidConfigurationError(f"Chain needs at least 2 links, got {links}")
        super().__init__(3 * links, links + 1, **kwargs)
        self.links = links
        self.link_length = link_length

    def joints(self, x: np.ndarray) -> np.ndarray:
        """Joint positions as an array of shape [links, 3]."""
        return np.asarray(x, dtype=np.float64).reshape(self.links, 3)

    def function(self, x: np.ndarray) -> np.ndarray:
        joints = self.joints(x)
        previous = np.vstack([np.zeros((1, 3)), joints[:-1]])
        segments = joints - previous
        out = np.empty(self.co_dim)
        out[:self.links] = np.sum(segments * segments, axis=1) - self.link_length ** 2
        out[self.links] = joints[-1, 2]
        return out

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        joints = self.joints(x)
        jac = np.zeros((self.co_dim, self.ambient_dim))
        previous = np.zeros(3)
        for i in range(self.links):
            segment = joints[i] - previous
            jac[i, 3 * i:3 * i + 3] = 2.0 * segment
            if i > 0:
                jac[i, 3 * (i - 1):3 * i] = -2.0 * segment
            previous = joints[i]
        jac[self.links, 3 * (self.links - 1) + 2] = 1.0
        return jac

    def stretched_state(self, angle: float = 0.0) -> np.ndarray:
        """Fully stretched chain in the z = 0 plane pointing along `angle`."""
        direction = np.array([math.cos(angle), math.sin(angle), 0.0])
        return np.concatenate([(i + 1) * self.link_length * direction for i in range(self.links)])
