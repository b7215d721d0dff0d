"""
Tests for manifold traversal across all constrained state space variants.
"""

import math

import numpy as np
import pytest

from constrained_pathing import (
    AmbientBounds,
    AtlasParams,
    AtlasStateSpace,
    ChartExplosion,
    ConstrainedSpaceParams,
    DivergentStep,
)

START = np.array([1.0, 0.0, 0.0])
GOAL = np.array([0.0, 1.0, 0.0])


def step_tolerance(space):
    """Relative slack on the step length: chart steps are measured in tangent coordinates."""
    if isinstance(space, AtlasStateSpace):
        return 1.0 / math.cos(space.atlas.params.alpha) - 1.0 + 1e-3
    return 1e-3


class TestSphereTraversal:
    """Quarter great circle on the unit sphere from (1, 0, 0) to (0, 1, 0)."""

    def test_full_traversal(self, any_space):
        result = any_space.traverse_manifold(any_space.make_state(START), any_space.make_state(GOAL))
        delta = any_space.params.delta

        assert result.complete
        assert result.error is None
        assert np.allclose(result.states[0].values, START)
        assert np.allclose(result.states[-1].values, GOAL)

        for state in result.states:
            assert abs(np.linalg.norm(state.values) - 1.0) <= any_space.constraint.tolerance

        steps = np.linalg.norm(np.diff([s.values for s in result.states], axis=0), axis=1)
        assert np.all(steps <= delta * (1.0 + step_tolerance(any_space)))
        # The polyline is at least as long as the chord between the endpoints
        assert len(result.states) - 1 >= math.sqrt(2.0) / (delta * (1.0 + step_tolerance(any_space)))

    def test_zero_displacement(self, any_space):
        state = any_space.make_state(START)
        result = any_space.traverse_manifold(state, state)

        assert result.complete
        assert len(result.states) == 1
        assert np.allclose(result.states[0].values, START)

    def test_short_hop_includes_both_endpoints(self, any_space):
        near = np.array([math.cos(0.01), math.sin(0.01), 0.0])
        result = any_space.traverse_manifold(any_space.make_state(START), any_space.make_state(near))

        assert result.complete
        assert len(result.states) == 2
        assert np.allclose(result.states[-1].values, near)

    def test_validity_checker_truncates(self, any_space):
        def below_half(x):
            return x[1] <= 0.5

        result = any_space.traverse_manifold(any_space.make_state(START), any_space.make_state(GOAL),
                                             validity_checker=below_half)

        assert not result.complete
        assert result.error is None
        assert len(result.states) > 1
        assert all(below_half(s.values) for s in result.states)

    def test_interpolate_ignores_validity(self, any_space):
        result = any_space.traverse_manifold(any_space.make_state(START), any_space.make_state(GOAL),
                                             interpolate=True, validity_checker=lambda x: False)
        assert result.complete

    def test_invalid_goal_is_partial(self, any_space):
        def not_goal(x):
            return x[1] < 0.999

        result = any_space.traverse_manifold(any_space.make_state(START), any_space.make_state(GOAL),
                                             validity_checker=not_goal)
        assert not result.complete
        assert not np.allclose(result.states[-1].values, GOAL)

    def test_check_motion(self, any_space):
        a = any_space.make_state(START)
        b = any_space.make_state(GOAL)

        assert any_space.check_motion(a, b)
        assert not any_space.check_motion(a, b, lambda x: x[0] > 0.5)

    def test_steps_stay_inside_bounds(self, sphere):
        bounds = AmbientBounds(low=[-2.0, -2.0, -2.0], high=[2.0, 0.3, 2.0])
        space = AtlasStateSpace(sphere, ConstrainedSpaceParams(), bounds, np.random.default_rng(0))
        result = space.traverse_manifold(space.make_state(START), space.make_state(GOAL))

        assert not result.complete
        assert all(bounds.contains(s.values) for s in result.states)


class TestTraversalFailures:
    """Typed errors are reported inside the result."""

    def test_antipodal_nullspace_step(self, null_space):
        """The direction to the antipode has no tangent component."""
        a = null_space.make_state(np.array([0.0, 0.0, -1.0]))
        b = null_space.make_state(np.array([0.0, 0.0, 1.0]))
        result = null_space.traverse_manifold(a, b)

        assert not result.complete
        assert isinstance(result.error, DivergentStep)
        assert len(result.states) == 1
        with pytest.raises(DivergentStep):
            result.raise_for_error()

    def test_antipodal_projected_step_stalls(self, projected_space):
        a = projected_space.make_state(np.array([0.0, 0.0, -1.0]))
        b = projected_space.make_state(np.array([0.0, 0.0, 1.0]))
        result = projected_space.traverse_manifold(a, b)

        assert not result.complete
        assert result.error is None

    def test_chart_explosion_returns_prefix(self, sphere, space_params, sphere_bounds):
        space = AtlasStateSpace(sphere, space_params, sphere_bounds, np.random.default_rng(0),
                                atlas_params=AtlasParams(max_charts_per_extension=1))
        result = space.traverse_manifold(space.make_state(START), space.make_state(GOAL))

        assert not result.complete
        assert isinstance(result.error, ChartExplosion)
        assert len(result.states) > 1
        for state in result.states:
            assert sphere.is_satisfied(state.values)


class TestAtlasTraversal:
    """Chart bookkeeping during atlas traversals."""

    def test_chart_count_never_decreases(self, atlas_space):
        counts = [atlas_space.chart_count]
        targets = [GOAL, np.array([0.0, 0.0, 1.0]), np.array([-1.0, 0.0, 0.0]), np.array([0.0, -1.0, 0.0])]
        current = atlas_space.make_state(START)

        for target in targets:
            result = atlas_space.traverse_manifold(current, atlas_space.make_state(target))
            current = result.end
            counts.append(atlas_space.chart_count)

        assert counts == sorted(counts)
        assert counts[-1] > counts[0]

    def test_states_carry_chart_references(self, atlas_space):
        result = atlas_space.traverse_manifold(atlas_space.make_state(START), atlas_space.make_state(GOAL))

        for state in result.states[1:-1]:
            assert state.chart_ref is not None
            assert state.chart_ref.chart_id in atlas_space.atlas.charts

    def test_anchored_endpoints(self, atlas_space):
        start = atlas_space.make_endpoint_state(START)
        goal = atlas_space.make_endpoint_state(GOAL)

        assert atlas_space.chart_count == 2
        assert atlas_space.traverse_manifold(start, goal).complete


class TestGeodesicInterpolation:

    def test_fractions_along_traversal(self, projected_space):
        result = projected_space.traverse_manifold(projected_space.make_state(START),
                                                   projected_space.make_state(GOAL))

        assert np.allclose(projected_space.geodesic_interpolate(result.states, 0.0).values, START)
        assert np.allclose(projected_space.geodesic_interpolate(result.states, 1.0).values, GOAL)

        middle = projected_space.geodesic_interpolate(result.states, 0.5).values
        assert abs(middle[0] - middle[1]) < 0.05
        assert projected_space.constraint.is_satisfied(middle)
