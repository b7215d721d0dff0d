"""Constrained planning demo: plan on a manifold problem and report the solution."""


import argparse
import logging
import sys
import time
from dataclasses import replace
from typing import List, Optional

import yaml

from configuration_files.planning_config import PlanningConfig, load_config
from constrained_pathing import (
    PLANNERS,
    PROBLEMS,
    SPACE_TYPES,
    AtlasParams,
    AtlasStateSpace,
    ConstrainedPlanningError,
    ConstrainedSpaceParams,
    InvalidConfigurationError,
    InvalidInputError,
    NoPathFoundError,
    PlannerParams,
    PRMParams,
    calculate_path_length,
    create_planner,
    create_problem,
    create_state_space,
    solve_with_path,
    write_states,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_NO_SOLUTION = 1
EXIT_CONFIG_ERROR = 2

DEFAULT_PLANNER_RANGE = 0.707


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Constrained manifold planning demo")
    parser.add_argument("-c", "--problem", type=str, default=None, choices=sorted(PROBLEMS),
                        help="Planning problem to solve.")
    parser.add_argument("-p", "--planner", type=str, default=None, choices=sorted(PLANNERS),
                        help="Planner to use.")
    parser.add_argument("-s", "--space", type=str, default=None, choices=sorted(SPACE_TYPES),
                        help="Constrained state space type.")
    parser.add_argument("-t", "--time", type=float, default=None, help="Planning time limit in seconds.")
    parser.add_argument("-n", "--links", type=int, default=None, help="Number of links (chain problem).")
    parser.add_argument("-r", "--range", type=float, default=None,
                        help="Planner range (default: rho_s for the atlas space, else 0.707).")
    parser.add_argument("-w", "--sleep", type=float, default=None,
                        help="Artificial delay per validity check in seconds.")
    parser.add_argument("-o", "--output", action="store_true", help="Dump the solution path to the output file.")
    parser.add_argument("--config", type=str, default=None, help="YAML configuration file.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for sampling.")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode with verbose logging")
    return parser


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return _build_arg_parser().parse_args(argv)


def _configure_logging(args: argparse.Namespace) -> None:
    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(message)s')
        logger.setLevel(logging.DEBUG)
        logging.getLogger("constrained_pathing").setLevel(logging.DEBUG)
        return
    logging.basicConfig(level=logging.WARNING, format='[%(levelname)s] %(message)s')
    logger.setLevel(logging.INFO)


def _apply_cli_overrides(config: PlanningConfig, args: argparse.Namespace) -> PlanningConfig:
    overrides = {
        "problem": args.problem,
        "planner": args.planner,
        "space": args.space,
        "time_limit": args.time,
        "range": args.range,
        "links": args.links,
        "validity_sleep": args.sleep,
        "seed": args.seed,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    return replace(config, session=replace(config.session, **overrides))


def _with_sleep(checker, seconds: float):
    if seconds <= 0.0:
        return checker

    def slow_checker(x):
        time.sleep(seconds)
        return checker(x)
    return slow_checker


def build_session(config: PlanningConfig):
    """
    Create the problem, state space and planner described by the configuration.

    Raises:
        InvalidConfigurationError: If any parameter is out of range or unknown
        InvalidInputError: If the problem is unknown
    """
    manifold = config.manifold
    session = config.session

    problem = create_problem(session.problem, links=session.links,
                             tolerance=manifold.projection_tolerance,
                             max_iterations=manifold.max_projection_iterations)

    space_params = ConstrainedSpaceParams(
        delta=manifold.delta,
        lambda_=manifold.lambda_,
        max_sample_attempts=manifold.max_sample_attempts,
    )
    atlas_params = AtlasParams(
        rho=manifold.rho,
        alpha=manifold.alpha,
        epsilon=manifold.epsilon,
        exploration=manifold.exploration,
        max_charts_per_extension=manifold.max_charts_per_extension,
        separate=manifold.separate,
    )
    space = create_state_space(session.space, problem.constraint, space_params,
                               bounds=problem.bounds, atlas_params=atlas_params, seed=session.seed)

    params_type = PRMParams if session.planner == "PRM" else PlannerParams
    planner_range = session.range
    if planner_range is None:
        planner_range = space.rho_s if isinstance(space, AtlasStateSpace) else DEFAULT_PLANNER_RANGE
    planner_params = params_type(time_limit=session.time_limit, range=planner_range, goal_bias=session.goal_bias)
    checker = _with_sleep(problem.is_valid, session.validity_sleep)
    planner = create_planner(session.planner, space, checker, planner_params)

    logger.info(f"Planning '{problem.name}' with {session.planner} in the {session.space} space "
                f"(time limit {session.time_limit}s, range {planner_range:.3f})")
    return problem, space, planner


def main(argv: Optional[List[str]] = None) -> int:
    """Main function. Returns the process exit code."""
    args = _parse_args(argv)
    _configure_logging(args)

    try:
        config = _apply_cli_overrides(load_config(args.config), args)
        problem, space, planner = build_session(config)
    except (ValueError, OSError, yaml.YAMLError, InvalidConfigurationError, InvalidInputError) as err:
        logger.error(f"Invalid configuration: {err}")
        return EXIT_CONFIG_ERROR

    try:
        summary = solve_with_path(space, planner, problem.start, problem.goal)
    except NoPathFoundError as err:
        logger.info(str(err))
        print("No solution found.")
        return EXIT_NO_SOLUTION
    except InvalidInputError as err:
        logger.error(f"Invalid planning query: {err}")
        return EXIT_CONFIG_ERROR
    except ConstrainedPlanningError as err:
        logger.error(f"Planning failed: {err}")
        return EXIT_NO_SOLUTION

    print("[INFO]: Found solution:")
    print(f"  Planning time: {summary.elapsed:.3f}s")
    print(f"  Waypoints: {len(summary.waypoints)}, states: {len(summary.states)}")
    print(f"  Path length: {summary.length:.4f} (ambient {calculate_path_length(summary.as_array()):.4f})")
    if summary.approximate:
        print(f"  Solution is approximate. Goal distance: {summary.goal_distance:.4f}")
    if summary.chart_count is not None:
        print(f"  Atlas charts: {summary.chart_count}, frontier: {summary.frontier_percent:.1f}%")

    if config.session.output_path and args.output:
        write_states(config.session.output_path, summary.states)
        print(f"  Path written to {config.session.output_path}")

    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
