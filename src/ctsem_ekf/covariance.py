"""Continuous-time error-covariance derivative in packed storage.

The covariance ODE is propagated on the packed symmetric vector so that an
ordinary state stepper (rk4_step or an adaptive solver) can advance it:

    dP/dt = A P + (A P)' + eps I

where A is the continuous-time Jacobian of the dynamics at the current
state and eps = COVARIANCE_REGULARIZER keeps the propagated covariance
invertible when A P vanishes. Process noise is not injected here; the
caller adds it when the filter needs it.
"""

import jax.numpy as jnp

from ctsem_ekf.integrators import JacobianFn, rk4_step
from ctsem_ekf.linalg import pack_symmetric, packed_dim, unpack_symmetric

COVARIANCE_REGULARIZER = 1e-4


def covariance_derivative(
    t: float,
    regime: int,
    p_packed: jnp.ndarray,
    params: jnp.ndarray,
    covariate: jnp.ndarray,
    jacobian: JacobianFn,
) -> jnp.ndarray:
    """Time derivative of a packed covariance vector.

    The signature matches the dynamics contract once the Jacobian is bound,
    e.g. functools.partial(covariance_derivative, jacobian=dFdx).

    Args:
        t: current time
        regime: regime index passed to the Jacobian
        p_packed: (n(n+1)/2,) packed covariance
        params: function parameters followed by the current state estimate
        covariate: covariate vector passed to the Jacobian
        jacobian: dFdx(t, regime, params, covariate) -> (n, n)

    Returns:
        (n(n+1)/2,) packed dP/dt
    """
    n = packed_dim(p_packed.shape[0])
    P = unpack_symmetric(p_packed, n)
    A = jacobian(t, regime, params, covariate)

    AP = A @ P
    dP = AP + AP.T + COVARIANCE_REGULARIZER * jnp.eye(n, dtype=AP.dtype)

    return pack_symmetric(dP)


def propagate_covariance(
    tstart: float,
    tend: float,
    regime: int,
    cov: jnp.ndarray,
    params: jnp.ndarray,
    covariate: jnp.ndarray,
    jacobian: JacobianFn,
) -> jnp.ndarray:
    """Advance a full covariance matrix over one interval with a single RK4 step.

    Packs cov, steps the packed vector with covariance_derivative and
    unpacks the result.

    Args:
        tstart: start of the interval
        tend: end of the interval
        regime: regime index
        cov: (n, n) symmetric covariance at tstart
        params: function parameters followed by the current state estimate
        covariate: covariate vector
        jacobian: dFdx(t, regime, params, covariate) -> (n, n)

    Returns:
        (n, n) covariance at tend
    """

    def dynamics(t, regime, p, params, covariate):
        return covariance_derivative(t, regime, p, params, covariate, jacobian)

    p_end = rk4_step(tstart, tend, regime, pack_symmetric(cov), params, covariate, dynamics)
    return unpack_symmetric(p_end, cov.shape[0])
