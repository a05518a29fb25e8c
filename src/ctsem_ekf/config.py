"""Configuration loader for the EKF engine."""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml

from ctsem_ekf.integrators import AdaptiveODESolver, select_propagator
from ctsem_ekf.model import SubjectIndexTable

logger = logging.getLogger(__name__)


class SubjectIndexError(ValueError):
    """The subject index file is missing entries or holds invalid offsets."""


@dataclass(frozen=True)
class SolverConfig:
    """Which ODE solver advances states and covariances."""

    ode_solver: str = "rk4"  # "rk4" or "adaptive"
    tau_max_fraction: float = 0.1
    error_limit: float = 10.0

    def propagator(self, adaptive_solver: AdaptiveODESolver | None = None):
        """State propagator selected by this configuration."""
        return select_propagator(
            self.ode_solver, adaptive_solver, self.tau_max_fraction, self.error_limit
        )


@dataclass(frozen=True)
class DataConfig:
    """Location of the per-subject start offsets."""

    subject_index_path: str | None = None
    num_sbj: int | None = None


@dataclass(frozen=True)
class EngineConfig:
    """Full engine configuration."""

    solver: SolverConfig
    data: DataConfig


def _find_config_path() -> Path:
    """Find config.yaml by walking up from this file to the project root."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        config_path = parent / "config.yaml"
        if config_path.exists():
            return config_path
    raise FileNotFoundError("config.yaml not found in any parent directory")


@lru_cache(maxsize=4)
def load_config(path: Path | None = None) -> EngineConfig:
    """Load and parse the engine configuration.

    Returns cached config on subsequent calls with the same path.
    """
    config_path = Path(path) if path is not None else _find_config_path()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    solver = SolverConfig(**raw.get("solver", {}))
    if solver.ode_solver not in ("rk4", "adaptive"):
        raise ValueError(
            f"solver.ode_solver must be 'rk4' or 'adaptive', got {solver.ode_solver!r}"
        )

    config = EngineConfig(
        solver=solver,
        data=DataConfig(**raw.get("data", {})),
    )
    logger.debug("Loaded engine config from %s: %s", config_path, config)
    return config


def get_config() -> EngineConfig:
    """Get the engine configuration."""
    return load_config()


def load_subject_index(path: Path | str, num_sbj: int | None = None) -> SubjectIndexTable:
    """Read subject start offsets from a whitespace-separated text file.

    The file lists the first row of every subject followed by the total
    number of observations, e.g. "0 500 1000" for two subjects of 500 rows.

    Args:
        path: text file with num_sbj + 1 non-negative integers
        num_sbj: expected number of subjects (checked when given)

    Returns:
        SubjectIndexTable

    Raises:
        FileNotFoundError: the file does not exist
        SubjectIndexError: unparsable, wrong count, or not strictly increasing
    """
    path = Path(path)
    if not path.exists():
        logger.error("Subject index file not found: %s", path)
        raise FileNotFoundError(f"Subject index file not found: {path}")

    tokens = path.read_text().split()
    try:
        offsets = [int(tok) for tok in tokens]
    except ValueError as e:
        logger.error("Subject index file %s holds a non-integer entry: %s", path, e)
        raise SubjectIndexError(f"Non-integer entry in {path}: {e}") from e

    if num_sbj is not None and len(offsets) != num_sbj + 1:
        logger.error(
            "Subject index file %s has %d entries, expected %d", path, len(offsets), num_sbj + 1
        )
        raise SubjectIndexError(
            f"{path} has {len(offsets)} entries, expected num_sbj + 1 = {num_sbj + 1}"
        )

    try:
        table = SubjectIndexTable(offsets=tuple(offsets))
    except ValueError as e:
        logger.error("Invalid subject index file %s: %s", path, e)
        raise SubjectIndexError(str(e)) from e

    logger.debug("Loaded %d subjects (%d observations) from %s", table.num_sbj, table.total_obs, path)
    return table


def load_configured_subject_index(config: EngineConfig | None = None) -> SubjectIndexTable:
    """Subject index table named by the configuration."""
    config = config or get_config()
    if config.data.subject_index_path is None:
        raise SubjectIndexError("data.subject_index_path is not set in config.yaml")
    return load_subject_index(config.data.subject_index_path, num_sbj=config.data.num_sbj)
