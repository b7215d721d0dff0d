"""
Tests for the bundled planning problems and obstacle checking.
"""

import numpy as np
import pytest

from constrained_pathing import InvalidInputError, ObstacleChecker, PROBLEMS, create_problem


class TestProblems:

    @pytest.mark.parametrize("name", sorted(PROBLEMS))
    def test_endpoints_are_valid(self, name):
        problem = create_problem(name, links=4)

        for point in (problem.start, problem.goal):
            assert problem.constraint.is_satisfied(point)
            assert problem.is_valid(point)
            assert problem.bounds.contains(point)
        assert problem.bounds.dim == problem.constraint.ambient_dim

    def test_unknown_problem(self):
        with pytest.raises(InvalidInputError):
            create_problem("klein_bottle")

    def test_constraint_settings_are_forwarded(self):
        problem = create_problem("sphere", tolerance=1e-9, max_iterations=20)
        assert problem.constraint.tolerance == 1e-9
        assert problem.constraint.max_iterations == 20

    def test_chain_dimensions(self):
        problem = create_problem("chain", links=6)
        assert problem.constraint.ambient_dim == 18
        assert problem.constraint.co_dim == 7


class TestSphereBands:
    """Each band is blocked except for a narrow slot."""

    @pytest.fixture
    def problem(self):
        return create_problem("sphere")

    @staticmethod
    def at_height(z, x, y_sign=1.0):
        y = y_sign * np.sqrt(max(1.0 - z * z - x * x, 0.0))
        return np.array([x, y, z])

    def test_equator_slot(self, problem):
        assert problem.is_valid(np.array([0.0, -1.0, 0.0]))
        assert not problem.is_valid(np.array([0.0, 1.0, 0.0]))
        assert not problem.is_valid(np.array([1.0, 0.0, 0.0]))

    def test_lower_band_slot(self, problem):
        r = np.sqrt(1.0 - 0.7 ** 2)
        assert problem.is_valid(np.array([r, 0.0, -0.7]))
        assert not problem.is_valid(np.array([-r, 0.0, -0.7]))
        assert not problem.is_valid(self.at_height(-0.7, 0.0))

    def test_upper_band_slot(self, problem):
        r = np.sqrt(1.0 - 0.7 ** 2)
        assert problem.is_valid(np.array([-r, 0.0, 0.7]))
        assert not problem.is_valid(np.array([r, 0.0, 0.7]))

    def test_between_bands_is_free(self, problem):
        for z in (-0.4, 0.4, 0.9):
            assert problem.is_valid(self.at_height(z, 0.3))


class TestObstacleChecker:

    def test_box_membership(self):
        checker = ObstacleChecker([ObstacleChecker.box([0.0, 0.0], [1.0, 1.0])])
        assert not checker(np.array([0.5, 0.5]))
        assert checker(np.array([1.5, 0.5]))

    def test_safety_margin(self):
        checker = ObstacleChecker([{"size": [1.0, 1.0], "pos": [0.0, 0.0]}], safety_margin=0.2)
        assert not checker(np.array([0.65, 0.0]))
        assert checker(np.array([0.75, 0.0]))

    def test_point_groups(self):
        checker = ObstacleChecker([{"size": [0.2, 0.2, 0.2], "pos": [2.0, 0.0, 0.0]}], point_groups=2)
        assert checker(np.array([1.0, 0.0, 0.0, 3.0, 0.0, 0.0]))
        assert not checker(np.array([1.0, 0.0, 0.0, 2.0, 0.05, 0.0]))

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            ObstacleChecker([{"size": [1.0, 1.0], "pos": [0.0, 0.0, 0.0]}])
