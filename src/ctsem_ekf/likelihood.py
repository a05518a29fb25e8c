"""Multivariate normal densities and log-domain weight normalization.

Two density entry points exist and they deliberately differ in sign:

- mvn_log_density(x, cov)                   -> log N(x; 0, cov)
- mvn_neg_log_density_inv(x, inv_cov, det)  -> -log N(x; 0, cov)

The first is used when scoring a single residual, the second by filter code
that has already inverted the innovation covariance. Keep both; callers
depend on the convention of the one they use.

Neither entry point guards against a non-positive-definite covariance. A
negative or zero determinant produces NaN or Inf, which the caller's
convergence checks are expected to catch.
"""

import jax.numpy as jnp

from ctsem_ekf.linalg import inv_det_lu


def mvn_log_density(x: jnp.ndarray, cov: jnp.ndarray) -> jnp.ndarray:
    """Log-density of a zero-mean multivariate normal.

    log p = -(n/2) log(2 pi) - (1/2) log det(cov) - (1/2) x' cov^{-1} x

    The determinant and inverse come from one LU factorization of cov.
    cov itself is left untouched.

    Args:
        x: (n,) residual vector
        cov: (n, n) covariance matrix

    Returns:
        Scalar log-density
    """
    n = x.shape[0]
    inv_cov, det = inv_det_lu(cov)
    mahal = x @ (inv_cov @ x)
    return -0.5 * n * jnp.log(2 * jnp.pi) - 0.5 * jnp.log(det) - 0.5 * mahal


def mvn_neg_log_density_inv(
    x: jnp.ndarray, inv_cov: jnp.ndarray, det: float
) -> jnp.ndarray:
    """Negative log-density of a zero-mean MVN from a precomputed inverse.

    -log p = (n/2) log(2 pi) + (1/2) log det + (1/2) x' inv_cov x

    Args:
        x: (n,) residual vector
        inv_cov: (n, n) inverse covariance
        det: determinant of the covariance (not of its inverse)

    Returns:
        Scalar negative log-density
    """
    n = x.shape[0]
    mahal = x @ (inv_cov @ x)
    return 0.5 * n * jnp.log(2 * jnp.pi) + 0.5 * jnp.log(det) + 0.5 * mahal


def normalize_log(log_w: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Turn log-weights into probabilities that sum to one.

    Works for vectors and matrices alike (the sum runs over every entry).
    The values are shifted by the midpoint of their max and min before
    exponentiating, which keeps both extremes representable.

    Example: (-1, -2) -> (e^-1, e^-2) / (e^-1 + e^-2)

    Args:
        log_w: array of log-weights

    Returns:
        Tuple of (normalized weights, normalizer) where the normalizer is the
        sum of the shifted exponentials actually used for the division.
    """
    shift = 0.5 * (jnp.max(log_w) + jnp.min(log_w))
    w = jnp.exp(log_w - shift)
    total = jnp.sum(w)
    return w / total, total


def normalize(w: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Scale non-negative weights (vector or matrix) to sum to one.

    Returns:
        Tuple of (normalized weights, original sum)
    """
    total = jnp.sum(w)
    return w / total, total
