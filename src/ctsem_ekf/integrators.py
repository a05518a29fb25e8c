"""Fixed-step integrators for latent states and transition Jacobians.

- rk4_step: one classical 4th-order Runge-Kutta step for the state ODE
- jacobian_rk4: discrete-time transition Jacobian over one interval, built
  from four evaluations of the continuous-time Jacobian
- adaptive_step: adapter that exposes an external adaptive ODE solver
  through the rk4_step call signature

Both integrators take exactly one step spanning [tstart, tend]. Stages are
evaluated at tstart; time is passed through to the callbacks but is not
advanced between stages.
"""

from collections.abc import Callable
from typing import Protocol

import jax.numpy as jnp

from ctsem_ekf.linalg import diag_out_scale

DynamicsFn = Callable[[float, int, jnp.ndarray, jnp.ndarray, jnp.ndarray], jnp.ndarray]
JacobianFn = Callable[[float, int, jnp.ndarray, jnp.ndarray], jnp.ndarray]


class AdaptiveODESolver(Protocol):
    """Call contract of the external adaptive step-size ODE solver."""

    def __call__(
        self,
        tstart: float,
        tend: float,
        xstart: jnp.ndarray,
        tau_max: float,
        error_limit: float,
        regime: int,
        params: jnp.ndarray,
        covariate: jnp.ndarray,
        dynamics: DynamicsFn,
    ) -> jnp.ndarray: ...


def rk4_step(
    tstart: float,
    tend: float,
    regime: int,
    xstart: jnp.ndarray,
    params: jnp.ndarray,
    covariate: jnp.ndarray,
    dynamics: DynamicsFn,
) -> jnp.ndarray:
    """Advance a state over [tstart, tend] with a single RK4 step.

    x_end = x + (dt/6) (k1 + 2 k2 + 2 k3 + k4)

    with k1..k4 evaluated at x, x + dt/2 k1, x + dt/2 k2 and x + dt k3.

    Args:
        tstart: start of the interval
        tend: end of the interval
        regime: regime index passed to the dynamics
        xstart: (n,) state at tstart
        params: model parameters passed to the dynamics
        covariate: covariate vector passed to the dynamics
        dynamics: f(t, regime, x, params, covariate) -> dx/dt

    Returns:
        (n,) state at tend
    """
    dt = tend - tstart
    k1 = dynamics(tstart, regime, xstart, params, covariate)
    k2 = dynamics(tstart, regime, xstart + 0.5 * dt * k1, params, covariate)
    k3 = dynamics(tstart, regime, xstart + 0.5 * dt * k2, params, covariate)
    k4 = dynamics(tstart, regime, xstart + dt * k3, params, covariate)
    return xstart + (dt / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def augment_params(
    params: jnp.ndarray, num_func_param: int, state: jnp.ndarray
) -> jnp.ndarray:
    """Function parameters followed by the current state estimate.

    Jacobian callbacks read the state from the trailing slice, so they can be
    written as functions of a single parameter vector.
    """
    return jnp.concatenate([params[:num_func_param], state])


def jacobian_rk4(
    tstart: float,
    tend: float,
    regime: int,
    xstart: jnp.ndarray,
    params: jnp.ndarray,
    num_func_param: int,
    covariate: jnp.ndarray,
    jacobian: JacobianFn,
) -> jnp.ndarray:
    """Discrete-time transition Jacobian over [tstart, tend].

    Uses RK4 stage weights on the Jacobian matrices themselves:

        Jx = I + dt/6 k1 + dt/3 k2 + dt/3 k3 + dt/6 k4

    Intermediate stage states advance by the scaled diagonal of the previous
    stage's Jacobian only:

        x1 = x + dt/2 diag(k1),  x2 = x + dt/2 diag(k2),  x3 = x + dt diag(k3)

    This is not a sensitivity-equation solve (dJ/dt = A J); see DESIGN.md.

    Args:
        tstart: start of the interval
        tend: end of the interval
        regime: regime index passed to the Jacobian
        xstart: (n,) state at tstart
        params: model parameters; only the first num_func_param are used
        num_func_param: number of function parameters
        covariate: covariate vector passed to the Jacobian
        jacobian: dFdx(t, regime, augmented_params, covariate) -> (n, n)

    Returns:
        (n, n) transition Jacobian
    """
    n = xstart.shape[0]
    dt = tend - tstart

    k1 = jacobian(tstart, regime, augment_params(params, num_func_param, xstart), covariate)
    x1 = xstart + diag_out_scale(k1, dt / 2.0)
    acc = (dt / 6.0) * k1

    k2 = jacobian(tstart, regime, augment_params(params, num_func_param, x1), covariate)
    x2 = xstart + diag_out_scale(k2, dt / 2.0)
    acc = acc + (dt / 3.0) * k2

    k3 = jacobian(tstart, regime, augment_params(params, num_func_param, x2), covariate)
    x3 = xstart + diag_out_scale(k3, dt)
    acc = acc + (dt / 3.0) * k3

    k4 = jacobian(tstart, regime, augment_params(params, num_func_param, x3), covariate)
    acc = acc + (dt / 6.0) * k4

    return jnp.eye(n, dtype=acc.dtype) + acc


def adaptive_step(
    solver: AdaptiveODESolver,
    tau_max_fraction: float = 0.1,
    error_limit: float = 10.0,
) -> Callable[..., jnp.ndarray]:
    """Wrap an adaptive ODE solver in the rk4_step call signature.

    The largest sub-step handed to the solver is a fixed fraction of the
    interval length.

    Args:
        solver: external adaptive solver
        tau_max_fraction: tau_max = (tend - tstart) * tau_max_fraction
        error_limit: global error limit passed through to the solver

    Returns:
        step(tstart, tend, regime, xstart, params, covariate, dynamics)
    """

    def step(tstart, tend, regime, xstart, params, covariate, dynamics):
        tau_max = (tend - tstart) * tau_max_fraction
        return solver(
            tstart, tend, xstart, tau_max, error_limit, regime, params, covariate, dynamics
        )

    return step


def select_propagator(
    ode_solver: str = "rk4",
    adaptive_solver: AdaptiveODESolver | None = None,
    tau_max_fraction: float = 0.1,
    error_limit: float = 10.0,
) -> Callable[..., jnp.ndarray]:
    """State propagator for a solver name ("rk4" or "adaptive").

    Raises:
        ValueError: unknown solver name, or "adaptive" without a solver
    """
    if ode_solver == "rk4":
        return rk4_step
    if ode_solver == "adaptive":
        if adaptive_solver is None:
            raise ValueError("ode_solver='adaptive' needs an adaptive_solver")
        return adaptive_step(adaptive_solver, tau_max_fraction, error_limit)
    raise ValueError(f"Unknown ode_solver {ode_solver!r}; expected 'rk4' or 'adaptive'")
