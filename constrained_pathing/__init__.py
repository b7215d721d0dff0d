"""Constrained state spaces, manifold traversal and planners."""

from .constraint import (
    # Exceptions
    ConstrainedPlanningError,
    InvalidConfigurationError,
    InvalidInputError,
    ProjectionDivergence,
    ChartExplosion,
    NoValidSampleFound,
    DivergentStep,
    NoPathFoundError,
    # Constraints
    Constraint,
    SphereConstraint,
    TorusConstraint,
    ChainConstraint,
    solve_newton,
)

from .atlas import (
    AtlasParams,
    Atlas,
    Chart,
    ChartRef,
    ChartBudget,
    Halfspace,
)

from .constrained_spaces import (
    ConstrainedSpaceParams,
    ConstrainedState,
    TraversalResult,
    ConstrainedStateSpace,
    ProjectedStateSpace,
    NullspaceStateSpace,
    AtlasStateSpace,
    SPACE_TYPES,
    create_state_space,
)

from .manifold_utils import (
    AmbientBounds,
    ObstacleChecker,
    calculate_path_length,
    precompute_cumulative_distances,
    principal_angle,
)

from .planners import (
    PlannerParams,
    PRMParams,
    RRT,
    RRTConnect,
    PRM,
    PLANNERS,
    create_planner,
)

from .problems import ProblemDefinition, PROBLEMS, create_problem

from .planning_session import PlanningSummary, reconstruct_path, simplify_path, solve_with_path, write_states

__all__ = [
    # Exceptions
    "ConstrainedPlanningError",
    "InvalidConfigurationError",
    "InvalidInputError",
    "ProjectionDivergence",
    "ChartExplosion",
    "NoValidSampleFound",
    "DivergentStep",
    "NoPathFoundError",
    # Constraints
    "Constraint",
    "SphereConstraint",
    "TorusConstraint",
    "ChainConstraint",
    "solve_newton",
    # Atlas
    "AtlasParams",
    "Atlas",
    "Chart",
    "ChartRef",
    "ChartBudget",
    "Halfspace",
    # State spaces
    "ConstrainedSpaceParams",
    "ConstrainedState",
    "TraversalResult",
    "ConstrainedStateSpace",
    "ProjectedStateSpace",
    "NullspaceStateSpace",
    "AtlasStateSpace",
    "SPACE_TYPES",
    "create_state_space",
    # Utilities
    "AmbientBounds",
    "ObstacleChecker",
    "calculate_path_length",
    "precompute_cumulative_distances",
    "principal_angle",
    # Planners
    "PlannerParams",
    "PRMParams",
    "RRT",
    "RRTConnect",
    "PRM",
    "PLANNERS",
    "create_planner",
    # Problems and sessions
    "ProblemDefinition",
    "PROBLEMS",
    "create_problem",
    "PlanningSummary",
    "reconstruct_path",
    "simplify_path",
    "solve_with_path",
    "write_states",
]
