"""Tests for the YAML config loader and the subject index file reader."""

import logging
from pathlib import Path

import pytest


@pytest.fixture
def config_file(tmp_path):
    index = tmp_path / "tStart.txt"
    index.write_text("0 3\n8\n")
    path = tmp_path / "config.yaml"
    path.write_text(
        "solver:\n"
        "  ode_solver: adaptive\n"
        "  tau_max_fraction: 0.05\n"
        "  error_limit: 2.0\n"
        "data:\n"
        f"  subject_index_path: {index}\n"
        "  num_sbj: 2\n"
    )
    return path


class TestLoadConfig:
    def test_parses_sections(self, config_file):
        from ctsem_ekf.config import load_config

        config = load_config(config_file)

        assert config.solver.ode_solver == "adaptive"
        assert config.solver.tau_max_fraction == 0.05
        assert config.solver.error_limit == 2.0
        assert config.data.num_sbj == 2

    def test_defaults_for_missing_sections(self, tmp_path):
        from ctsem_ekf.config import load_config

        path = tmp_path / "config.yaml"
        path.write_text("")

        config = load_config(path)

        assert config.solver.ode_solver == "rk4"
        assert config.solver.tau_max_fraction == 0.1
        assert config.data.subject_index_path is None

    def test_rejects_unknown_solver(self, tmp_path):
        from ctsem_ekf.config import load_config

        path = tmp_path / "config.yaml"
        path.write_text("solver:\n  ode_solver: euler\n")

        with pytest.raises(ValueError, match="ode_solver"):
            load_config(path)

    def test_project_config(self):
        """The repository ships a config.yaml next to pyproject.toml."""
        from ctsem_ekf.config import load_config

        config = load_config(Path(__file__).parent.parent / "config.yaml")

        assert config.solver.ode_solver == "rk4"
        assert config.data.subject_index_path is None

    def test_configured_subject_index(self, config_file):
        from ctsem_ekf.config import load_config, load_configured_subject_index

        table = load_configured_subject_index(load_config(config_file))

        assert table.offsets == (0, 3, 8)


class TestLoadSubjectIndex:
    def test_reads_offsets(self, tmp_path):
        from ctsem_ekf.config import load_subject_index

        path = tmp_path / "tStart.txt"
        path.write_text("0\n500\n1000\n")

        table = load_subject_index(path, num_sbj=2)

        assert table.num_sbj == 2
        assert table.total_obs == 1000

    def test_missing_file(self, tmp_path, caplog):
        from ctsem_ekf.config import load_subject_index

        with caplog.at_level(logging.ERROR), pytest.raises(FileNotFoundError):
            load_subject_index(tmp_path / "nope.txt")

        assert "not found" in caplog.text

    def test_non_integer_entry(self, tmp_path):
        from ctsem_ekf.config import SubjectIndexError, load_subject_index

        path = tmp_path / "tStart.txt"
        path.write_text("0 10 abc\n")

        with pytest.raises(SubjectIndexError, match="Non-integer"):
            load_subject_index(path)

    def test_count_mismatch(self, tmp_path, caplog):
        from ctsem_ekf.config import SubjectIndexError, load_subject_index

        path = tmp_path / "tStart.txt"
        path.write_text("0 10 20\n")

        with caplog.at_level(logging.ERROR), pytest.raises(SubjectIndexError, match="expected"):
            load_subject_index(path, num_sbj=3)

        assert "expected 4" in caplog.text

    def test_not_increasing(self, tmp_path):
        from ctsem_ekf.config import SubjectIndexError, load_subject_index

        path = tmp_path / "tStart.txt"
        path.write_text("0 10 10\n")

        with pytest.raises(SubjectIndexError, match="strictly increasing"):
            load_subject_index(path)

    def test_error_is_a_value_error(self):
        from ctsem_ekf.config import SubjectIndexError

        assert issubclass(SubjectIndexError, ValueError)

    def test_unset_path(self, tmp_path):
        from ctsem_ekf.config import SubjectIndexError, load_config, load_configured_subject_index

        path = tmp_path / "config.yaml"
        path.write_text("data:\n  num_sbj: 2\n")

        with pytest.raises(SubjectIndexError, match="subject_index_path"):
            load_configured_subject_index(load_config(path))


class TestSolverConfig:
    def test_rk4_propagator(self):
        from ctsem_ekf.config import SolverConfig
        from ctsem_ekf.integrators import rk4_step

        assert SolverConfig().propagator() is rk4_step

    def test_adaptive_propagator_uses_configured_limits(self):
        import jax.numpy as jnp

        from ctsem_ekf.config import SolverConfig

        seen = {}

        def solver(tstart, tend, xstart, tau_max, error_limit, regime, params, covariate, f):
            seen["tau_max"] = tau_max
            seen["error_limit"] = error_limit
            return xstart

        config = SolverConfig(ode_solver="adaptive", tau_max_fraction=0.05, error_limit=2.0)
        step = config.propagator(solver)
        step(0.0, 2.0, 0, jnp.zeros(2), jnp.zeros(1), jnp.zeros(1), lambda *a: jnp.zeros(2))

        assert seen == {"tau_max": pytest.approx(0.1), "error_limit": 2.0}
