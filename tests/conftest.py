"""Shared fixtures for constrained planning tests."""

import numpy as np
import pytest

from constrained_pathing import (
    AmbientBounds,
    AtlasParams,
    AtlasStateSpace,
    ConstrainedSpaceParams,
    NullspaceStateSpace,
    ProjectedStateSpace,
    SphereConstraint,
)


@pytest.fixture
def sphere():
    return SphereConstraint()


@pytest.fixture
def sphere_bounds():
    return AmbientBounds.symmetric(3, 2.0)


@pytest.fixture
def space_params():
    return ConstrainedSpaceParams(delta=0.02)


@pytest.fixture
def projected_space(sphere, space_params, sphere_bounds):
    return ProjectedStateSpace(sphere, space_params, sphere_bounds, np.random.default_rng(0))


@pytest.fixture
def null_space(sphere, space_params, sphere_bounds):
    return NullspaceStateSpace(sphere, space_params, sphere_bounds, np.random.default_rng(0))


@pytest.fixture
def atlas_space(sphere, space_params, sphere_bounds):
    return AtlasStateSpace(sphere, space_params, sphere_bounds, np.random.default_rng(0),
                           atlas_params=AtlasParams())


@pytest.fixture(params=["projected", "null", "atlas"])
def any_space(request, projected_space, null_space, atlas_space):
    return {"projected": projected_space, "null": null_space, "atlas": atlas_space}[request.param]
