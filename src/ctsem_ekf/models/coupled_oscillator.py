"""Coupled damped oscillator for two affect processes.

Two second-order processes (e.g. positive and negative affect) whose
damping depends on the gap between them:

    d x0 = x1
    d x1 = -a1 x0 + c1 (x2 - x0) x1
    d x2 = x3
    d x3 = -a2 x2 + c2 (x0 - x2) x3

Function parameters (num_func_param = 6):
    [a1, a2, c1, c2, log r1, log r2]

a1 and a2 are estimated on the log scale and exponentiated by transform().
Only the levels x0 and x2 are measured.
"""

import jax.numpy as jnp

from ctsem_ekf.integrators import select_propagator
from ctsem_ekf.model import ModelSpec, SubjectIndexTable

DIM_LATENT = 4
DIM_OBS = 2
NUM_FUNC_PARAM = 6

T0_STATE = (-0.06391744, 0.29310816, 0.14081910, -0.14157076)
PROCESS_LOG_VAR = -10.0


def dynamics(t, regime, x, params, covariate):
    a1, a2, c1, c2 = params[0], params[1], params[2], params[3]
    return jnp.array(
        [
            x[1],
            -a1 * x[0] + c1 * (x[2] - x[0]) * x[1],
            x[3],
            -a2 * x[2] + c2 * (x[0] - x[2]) * x[3],
        ]
    )


def jacobian(t, regime, params, covariate):
    """Analytic dF/dx; the state is read from params[6:10].

    ODE functions go down the rows, latent states across the columns.
    """
    a1, a2, c1, c2 = params[0], params[1], params[2], params[3]
    x0, x1, x2, x3 = (params[NUM_FUNC_PARAM + i] for i in range(DIM_LATENT))
    return jnp.array(
        [
            [0.0, 1.0, 0.0, 0.0],
            [-a1 - c1 * x1, c1 * (x2 - x0), c1 * x1, 0.0],
            [0.0, 0.0, 0.0, 1.0],
            [c2 * x3, 0.0, -a2 - c2 * x3, c2 * (x0 - x2)],
        ]
    )


def measurement(t, regime, params, x, covariate):
    H = jnp.zeros((DIM_OBS, DIM_LATENT)).at[0, 0].set(1.0).at[1, 2].set(1.0)
    return H, H @ x


def noise_cov(t, regime, params):
    """LDL/log-encoded (measurement, process) noise covariances."""
    y_noise = jnp.diag(jnp.array([params[4], params[5]]))
    eta_noise = jnp.diag(jnp.full(DIM_LATENT, PROCESS_LOG_VAR))
    return y_noise, eta_noise


def initial_condition(params, covariates):
    """Same starting state for every subject, unit initial covariance.

    Args:
        params: model parameters (unused)
        covariates: (num_sbj, dim_co_variate) subject covariates

    Returns:
        Tuple of (regime prior (1,), states (1, num_sbj, 4),
        log-encoded covariances (1, 4, 4))
    """
    num_sbj = covariates.shape[0]
    prior = jnp.array([1.0])
    eta_0 = jnp.broadcast_to(jnp.array(T0_STATE), (1, num_sbj, DIM_LATENT))
    error_cov_0 = jnp.zeros((1, DIM_LATENT, DIM_LATENT))  # log(1) on the diagonal
    return prior, eta_0, error_cov_0


def regime_switch(t, switch_type, params, covariate):
    return jnp.eye(1)


def transform(params):
    return params.at[:2].set(jnp.exp(params[:2]))


def make_coupled_oscillator_spec(
    index_sbj: SubjectIndexTable,
    ode_solver: str = "rk4",
    adaptive_solver=None,
    tau_max_fraction: float = 0.1,
    error_limit: float = 10.0,
) -> ModelSpec:
    """Assemble the ModelSpec for the coupled oscillator.

    Args:
        index_sbj: subject boundaries in the flattened observations
        ode_solver: "rk4" or "adaptive"
        adaptive_solver: external solver, required when ode_solver="adaptive"
        tau_max_fraction: largest adaptive sub-step as a fraction of the interval
        error_limit: global error limit for the adaptive solver

    Returns:
        ModelSpec wired with this module's callbacks
    """
    propagator = select_propagator(ode_solver, adaptive_solver, tau_max_fraction, error_limit)

    return ModelSpec(
        dim_latent_var=DIM_LATENT,
        dim_obs_var=DIM_OBS,
        dim_co_variate=1,
        num_func_param=NUM_FUNC_PARAM,
        num_regime=1,
        index_sbj=index_sbj,
        dynamics=dynamics,
        jacobian=jacobian,
        measurement=measurement,
        noise_cov=noise_cov,
        initial_condition=initial_condition,
        regime_switch=regime_switch,
        transform=transform,
        state_propagator=propagator,
    )
