"""Shared test helpers (non-fixtures).

These are utilities that can be imported directly into test modules.
For fixtures, see conftest.py.
"""

import numpy as np


def random_symmetric(n: int, seed: int = 0) -> np.ndarray:
    """Random symmetric n x n matrix."""
    rng = np.random.default_rng(seed)
    m = rng.normal(size=(n, n))
    return 0.5 * (m + m.T)


def random_spd(n: int, seed: int = 0) -> np.ndarray:
    """Random symmetric positive definite n x n matrix."""
    rng = np.random.default_rng(seed)
    m = rng.normal(size=(n, n))
    return m @ m.T + n * np.eye(n)


def oscillator_rk4_reference(x, params, dt):
    """Hand-written RK4 step of the coupled oscillator in plain numpy."""
    a1, a2, c1, c2 = params[:4]

    def f(x):
        return np.array(
            [
                x[1],
                -a1 * x[0] + c1 * (x[2] - x[0]) * x[1],
                x[3],
                -a2 * x[2] + c2 * (x[0] - x[2]) * x[3],
            ]
        )

    x = np.asarray(x, dtype=np.float64)
    k1 = f(x)
    k2 = f(x + dt / 2 * k1)
    k3 = f(x + dt / 2 * k2)
    k4 = f(x + dt * k3)
    return x + dt / 6 * (k1 + 2 * k2 + 2 * k3 + k4)
