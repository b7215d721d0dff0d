"""
Tests for constraints and Newton projection.
"""

import numpy as np
import pytest

from configuration_files import DEFAULT_CONFIG
from constrained_pathing import (
    ChainConstraint,
    Constraint,
    InvalidConfigurationError,
    InvalidInputError,
    ProjectionDivergence,
    SphereConstraint,
    TorusConstraint,
    solve_newton,
)


class TestProjection:
    """Newton projection onto the unit sphere."""

    def test_valid_point_is_unchanged(self, sphere):
        x = np.array([0.6, 0.8, 0.0])
        projected = sphere.project(x)

        assert np.allclose(projected, x)
        assert projected is not x

    def test_projection_is_stable(self, sphere):
        """Projecting twice gives the same point as projecting once."""
        once = sphere.project(np.array([2.0, 0.5, -1.0]))
        twice = sphere.project(once)

        assert sphere.is_satisfied(once)
        assert np.allclose(once, twice)

    def test_projection_reaches_tolerance(self, sphere):
        rng = np.random.default_rng(7)
        for _ in range(20):
            x = rng.uniform(-3.0, 3.0, size=3)
            projected = sphere.project(x)
            assert sphere.distance_to_manifold(projected) <= sphere.tolerance

    def test_singular_jacobian_raises(self, sphere):
        """The gradient of the sphere residual vanishes at the origin."""
        with pytest.raises(ProjectionDivergence):
            sphere.project(np.zeros(3))

    def test_iteration_cap_raises(self):
        sphere = SphereConstraint(max_iterations=1)
        with pytest.raises(ProjectionDivergence) as excinfo:
            sphere.project(np.array([10.0, 0.0, 0.0]))
        assert excinfo.value.residual > sphere.tolerance

    def test_divergent_residual_raises(self):
        """A residual with no root keeps growing under Newton steps."""
        def residual(x):
            return np.array([np.exp(x[0])])

        def jacobian(x):
            return -np.array([[np.exp(x[0])]])

        with pytest.raises(ProjectionDivergence):
            solve_newton(np.array([0.0]), residual, jacobian, tolerance=1e-8, max_iterations=50)


class TestConstraintBasics:
    """Construction, dimensions and tangent spaces."""

    def test_default_tolerance(self, sphere):
        assert sphere.tolerance == 1e-6
        assert DEFAULT_CONFIG.manifold.projection_tolerance == sphere.tolerance

    @pytest.mark.parametrize("ambient_dim, co_dim", [(3, 3), (3, 0), (0, 1), (2, 5)])
    def test_invalid_dimensions(self, ambient_dim, co_dim):
        with pytest.raises(InvalidConfigurationError):
            Constraint(ambient_dim, co_dim, function=lambda x: x[:1])

    def test_wrong_point_shape(self, sphere):
        with pytest.raises(InvalidInputError):
            sphere.project(np.zeros(4))

    def test_finite_difference_jacobian(self, sphere):
        generic = Constraint(3, 1, function=lambda x: np.array([x @ x - 1.0]))
        x = np.array([0.3, -0.4, 0.9])

        assert np.allclose(generic.jacobian(x), sphere.jacobian(x), atol=1e-6)
        assert np.allclose(generic.project(np.array([1.5, 0.2, 0.1])),
                           sphere.project(np.array([1.5, 0.2, 0.1])), atol=1e-6)

    def test_nullspace_is_orthonormal_tangent_basis(self, sphere):
        x = np.array([1.0, 0.0, 0.0])
        basis = sphere.nullspace(x)

        assert basis.shape == (3, 2)
        assert np.allclose(basis.T @ basis, np.eye(2))
        assert np.allclose(sphere.jacobian(x) @ basis, 0.0)

    def test_tangent_step_removes_normal_component(self, sphere):
        x = np.array([1.0, 0.0, 0.0])
        step = sphere.tangent_step(x, np.array([-1.0, 1.0, 0.0]))
        assert np.allclose(step, [0.0, 1.0, 0.0])

    def test_manifold_dim(self, sphere):
        assert sphere.manifold_dim == 2
        assert ChainConstraint(links=5).manifold_dim == 15 - 6


class TestConcreteConstraints:
    """Torus and chain residuals."""

    def test_torus_points(self):
        torus = TorusConstraint(outer_radius=3.0, inner_radius=1.0)
        assert torus.is_satisfied(np.array([4.0, 0.0, 0.0]))
        assert torus.is_satisfied(np.array([-3.0, 0.0, 1.0]))
        assert torus.is_satisfied(torus.project(np.array([4.2, 0.1, 0.3])))

    def test_torus_invalid_radii(self):
        with pytest.raises(InvalidConfigurationError):
            TorusConstraint(outer_radius=1.0, inner_radius=2.0)

    def test_chain_stretched_state_is_valid(self):
        chain = ChainConstraint(links=4)
        for angle in (0.0, np.pi / 3, np.pi):
            assert chain.is_satisfied(chain.stretched_state(angle))

    def test_chain_jacobian_matches_finite_differences(self):
        chain = ChainConstraint(links=4)
        numeric = Constraint(chain.ambient_dim, chain.co_dim, function=chain.function)
        x = np.random.default_rng(3).normal(size=chain.ambient_dim)

        assert np.allclose(chain.jacobian(x), numeric.jacobian(x), atol=1e-5)

    def test_chain_projection(self):
        chain = ChainConstraint(links=3)
        x = chain.stretched_state(0.2) + np.random.default_rng(5).normal(scale=0.05, size=chain.ambient_dim)
        projected = chain.project(x)

        joints = chain.joints(projected)
        links = np.linalg.norm(np.diff(np.vstack([np.zeros(3), joints]), axis=0), axis=1)
        assert np.allclose(links, 1.0, atol=1e-5)
        assert abs(joints[-1, 2]) < 1e-5
