"""Shared fixtures for engine tests.

- Coupled oscillator parameters and start state (end-to-end scenario)
- Subject index tables
- Random well-conditioned matrices

Importing ctsem_ekf here switches JAX to double precision before any test
module builds arrays.
"""

import jax.numpy as jnp
import pytest

import ctsem_ekf  # noqa: F401  (enables float64)
from ctsem_ekf.model import SubjectIndexTable
from tests.helpers import random_spd

# ══════════════════════════════════════════════════════════════════════════════
# MATRIX FACTORIES
# ══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def spd_factory():
    """Factory for symmetric positive definite matrices.

    Usage:
        def test_something(spd_factory):
            cov = spd_factory(3, seed=1)
    """

    def _make(n: int, seed: int = 0) -> jnp.ndarray:
        return jnp.asarray(random_spd(n, seed))

    return _make


# ══════════════════════════════════════════════════════════════════════════════
# COUPLED OSCILLATOR SCENARIO
# ══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def oscillator_params():
    """[a1, a2, c1, c2, log r1, log r2] on the natural scale for a1, a2."""
    return jnp.array([1.0, 1.0, 0.5, 0.5, 0.0, 0.0])


@pytest.fixture
def oscillator_state():
    return jnp.array([0.0, 1.0, 0.0, -1.0])


@pytest.fixture
def two_subject_index():
    """Two subjects with 3 and 5 observations."""
    return SubjectIndexTable(offsets=(0, 3, 8))
