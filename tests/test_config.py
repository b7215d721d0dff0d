"""
Tests for YAML configuration loading.
"""

from dataclasses import replace

import pytest

from configuration_files import DEFAULT_CONFIG, load_config


def write_yaml(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


class TestLoadConfig:

    def test_bundled_file_matches_defaults(self):
        config = load_config()

        assert config.manifold.alpha == pytest.approx(DEFAULT_CONFIG.manifold.alpha)
        assert replace(config.manifold, alpha=DEFAULT_CONFIG.manifold.alpha) == DEFAULT_CONFIG.manifold
        assert config.session == DEFAULT_CONFIG.session

    def test_empty_file_keeps_defaults(self, tmp_path):
        assert load_config(write_yaml(tmp_path, "")) == DEFAULT_CONFIG

    def test_overrides(self, tmp_path):
        config = load_config(write_yaml(tmp_path, (
            "manifold:\n"
            "  rho: 0.25\n"
            "  delta: 1\n"
            "session:\n"
            "  planner: PRM\n"
            "  seed: 7\n"
            "  range: 1\n"
        )))

        assert config.manifold.rho == 0.25
        assert config.manifold.delta == 1.0
        assert isinstance(config.manifold.delta, float)
        assert config.session.planner == "PRM"
        assert config.session.seed == 7
        assert config.session.range == 1.0
        assert isinstance(config.session.range, float)
        assert config.manifold.epsilon == DEFAULT_CONFIG.manifold.epsilon

    @pytest.mark.parametrize("text", [
        "manifold:\n  radius: 0.5\n",
        "manifold:\n  rho: abc\n",
        "manifold:\n  separate: 1\n",
        "manifold:\n  max_charts_per_extension: 2.5\n",
        "session:\n  time_limit: null\n",
        "session:\n  seed: 1.5\n",
        "session:\n  range: abc\n",
        "session:\n  - planner\n",
        "solver:\n  rho: 0.5\n",
        "- manifold\n- session\n",
    ])
    def test_malformed_files(self, tmp_path, text):
        with pytest.raises(ValueError):
            load_config(write_yaml(tmp_path, text))

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_default_session(self):
        assert DEFAULT_CONFIG.session.space == "projected"
        assert DEFAULT_CONFIG.session.range is None
        assert load_config().session.space == "projected"

    def test_null_range_is_kept(self, tmp_path):
        config = load_config(write_yaml(tmp_path, "session:\n  range: 0.3\n"))
        assert config.session.range == 0.3

        config = load_config(write_yaml(tmp_path, "session:\n  range: null\n"))
        assert config.session.range is None
