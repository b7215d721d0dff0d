"""
Tests for the run_planning command line entry point.
"""

from dataclasses import replace

import numpy as np
import pytest

import run_planning
from constrained_pathing import PROBLEMS, AmbientBounds, AtlasStateSpace, ObstacleChecker, SphereConstraint
from constrained_pathing.problems import ProblemDefinition


def open_sphere_problem(links=5, **constraint_kwargs):
    return ProblemDefinition(
        name="open_sphere",
        constraint=SphereConstraint(**constraint_kwargs),
        start=np.array([1.0, 0.0, 0.0]),
        goal=np.array([0.0, 1.0, 0.0]),
        bounds=AmbientBounds.symmetric(3, 2.0),
        obstacles=ObstacleChecker([]),
    )


class TestMain:

    @pytest.mark.parametrize("text", [
        "manifold:\n  radius: 0.5\n",
        "manifold:\n  rho: abc\n",
        "manifold:\n  alpha: 2.0\n",
        "session:\n  range: -1.0\n",
    ])
    def test_bad_config_exit_code(self, tmp_path, text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        assert run_planning.main(["--config", str(path)]) == run_planning.EXIT_CONFIG_ERROR

    def test_missing_config_exit_code(self, tmp_path):
        assert run_planning.main(["--config", str(tmp_path / "missing.yaml")]) == run_planning.EXIT_CONFIG_ERROR

    def test_unknown_problem_is_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            run_planning.main(["-c", "klein_bottle"])

    def test_no_solution_exit_code(self, capsys):
        code = run_planning.main(["-c", "sphere", "-s", "projected", "-t", "0.01", "--seed", "1"])

        assert code == run_planning.EXIT_NO_SOLUTION
        assert "No solution found." in capsys.readouterr().out

    def test_solution_is_written(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setitem(PROBLEMS, "open_sphere", open_sphere_problem)
        monkeypatch.chdir(tmp_path)

        code = run_planning.main(["-c", "open_sphere", "-s", "projected", "-t", "30", "--seed", "3", "-o"])

        assert code == run_planning.EXIT_SUCCESS
        assert "Found solution" in capsys.readouterr().out
        states = np.loadtxt(tmp_path / "anim.txt")
        assert states.ndim == 2 and states.shape[1] == 3
        assert np.allclose(states[0], [1.0, 0.0, 0.0])
        assert np.allclose(states[-1], [0.0, 1.0, 0.0])

    def test_cli_overrides(self):
        args = run_planning._parse_args(["-p", "PRM", "-t", "2.5", "-n", "7"])
        config = run_planning._apply_cli_overrides(run_planning.load_config(), args)

        assert config.session.planner == "PRM"
        assert config.session.time_limit == 2.5
        assert config.session.links == 7
        assert config.session.problem == "sphere"


class TestBuildSession:
    """Planner range: explicit value, else rho_s on the atlas, else the fixed default."""

    def session_config(self, **session):
        config = run_planning.load_config()
        return replace(config, session=replace(config.session, **session))

    def test_atlas_range_defaults_to_sampling_radius(self):
        _, space, planner = run_planning.build_session(self.session_config(space="atlas", problem="chain"))

        assert isinstance(space, AtlasStateSpace)
        assert planner.params.range == pytest.approx(space.rho_s)

    def test_projected_range_uses_fixed_default(self):
        _, _, planner = run_planning.build_session(self.session_config(space="projected"))
        assert planner.params.range == pytest.approx(run_planning.DEFAULT_PLANNER_RANGE)

    def test_explicit_range_wins(self):
        _, _, planner = run_planning.build_session(self.session_config(space="atlas", range=0.3))
        assert planner.params.range == pytest.approx(0.3)

    def test_range_flag(self):
        args = run_planning._parse_args(["-r", "0.4"])
        config = run_planning._apply_cli_overrides(run_planning.load_config(), args)
        assert config.session.range == 0.4
