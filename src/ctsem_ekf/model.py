"""Model specification: the capability bundle a user supplies.

A ModelSpec is a record of callbacks plus static dimensions, built once per
study and passed explicitly to every engine call. It wires the callbacks
into the integrators and the covariance propagator but does no numerics of
its own.

Callback contracts (n = dim_latent_var, m = dim_obs_var):

    dynamics(t, regime, x, params, covariate) -> (n,) dx/dt
    jacobian(t, regime, params_with_trailing_state, covariate) -> (n, n)
    measurement(t, regime, params, x, covariate) -> ((m, n) H, (m,) y_pred)
    noise_cov(t, regime, params) -> ((m, m) R, (n, n) Q), LDL/log encoded
    initial_condition(params, covariates) -> (prior, eta_0, error_cov_0)
    regime_switch(t, type, params, covariate) -> (k, k) stochastic matrix
    transform(params) -> params
"""

import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import jax.numpy as jnp
import numpy as np
import polars as pl

from ctsem_ekf.covariance import covariance_derivative
from ctsem_ekf.integrators import augment_params, jacobian_rk4, rk4_step
from ctsem_ekf.linalg import pack_symmetric, unpack_symmetric

logger = logging.getLogger(__name__)


class DynamicsFn(Protocol):
    def __call__(
        self, t: float, regime: int, x: jnp.ndarray, params: jnp.ndarray, covariate: jnp.ndarray
    ) -> jnp.ndarray: ...


class JacobianFn(Protocol):
    def __call__(
        self, t: float, regime: int, params: jnp.ndarray, covariate: jnp.ndarray
    ) -> jnp.ndarray: ...


class MeasurementFn(Protocol):
    def __call__(
        self, t: float, regime: int, params: jnp.ndarray, x: jnp.ndarray, covariate: jnp.ndarray
    ) -> tuple[jnp.ndarray, jnp.ndarray]: ...


class NoiseCovFn(Protocol):
    def __call__(
        self, t: float, regime: int, params: jnp.ndarray
    ) -> tuple[jnp.ndarray, jnp.ndarray]: ...


class InitialConditionFn(Protocol):
    """Returns (regime prior (k,), states (k, num_sbj, n), covariances (k, n, n))."""

    def __call__(
        self, params: jnp.ndarray, covariates: jnp.ndarray
    ) -> tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]: ...


class RegimeSwitchFn(Protocol):
    def __call__(
        self, t: float, switch_type: int, params: jnp.ndarray, covariate: jnp.ndarray
    ) -> jnp.ndarray: ...


class TransformFn(Protocol):
    def __call__(self, params: jnp.ndarray) -> jnp.ndarray: ...


class StatePropagator(Protocol):
    """Same signature as integrators.rk4_step."""

    def __call__(
        self,
        tstart: float,
        tend: float,
        regime: int,
        xstart: jnp.ndarray,
        params: jnp.ndarray,
        covariate: jnp.ndarray,
        dynamics: DynamicsFn,
    ) -> jnp.ndarray: ...


def identity_transform(params: jnp.ndarray) -> jnp.ndarray:
    return params


# ══════════════════════════════════════════════════════════════════════════════
# SUBJECT INDEX TABLE
# ══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SubjectIndexTable:
    """Start offset of each subject's rows in the flattened observations.

    offsets has num_sbj + 1 entries: offsets[i] is the first row of subject
    i and the last entry is the total number of observations. Offsets start
    at 0 and are strictly increasing.
    """

    offsets: tuple[int, ...]

    def __post_init__(self):
        offsets = tuple(int(o) for o in self.offsets)
        object.__setattr__(self, "offsets", offsets)
        if len(offsets) == 0:
            raise ValueError("Subject index table needs at least the final sentinel")
        if offsets[0] != 0:
            raise ValueError(f"First subject must start at row 0, got {offsets[0]}")
        for i in range(len(offsets) - 1):
            if offsets[i] >= offsets[i + 1]:
                raise ValueError(
                    f"Subject offsets must be strictly increasing: "
                    f"index[{i}]={offsets[i]} >= index[{i + 1}]={offsets[i + 1]}"
                )

    @property
    def num_sbj(self) -> int:
        return len(self.offsets) - 1

    @property
    def total_obs(self) -> int:
        return self.offsets[-1]

    @property
    def counts(self) -> tuple[int, ...]:
        """Number of observations per subject."""
        return tuple(b - a for a, b in zip(self.offsets[:-1], self.offsets[1:], strict=True))

    def subject_slice(self, i: int) -> slice:
        """Rows belonging to subject i."""
        return slice(self.offsets[i], self.offsets[i + 1])

    @classmethod
    def from_counts(cls, counts: Sequence[int]) -> "SubjectIndexTable":
        """Build from observation counts per subject (each must be >= 1)."""
        return cls(offsets=(0, *np.cumsum(np.asarray(counts, dtype=np.int64)).tolist()))

    @classmethod
    def from_frame(cls, frame: pl.DataFrame, subject_col: str = "id") -> "SubjectIndexTable":
        """Build from a long-format observation table.

        Rows must already be grouped by subject (each subject in one
        contiguous block); the order of subjects is kept.

        Args:
            frame: observation table, one row per (subject, time)
            subject_col: column holding the subject identifier

        Returns:
            SubjectIndexTable with one entry per contiguous subject block
        """
        runs = (
            frame.select(pl.col(subject_col))
            .with_columns(pl.col(subject_col).rle_id().alias("_run"))
            .group_by("_run", maintain_order=True)
            .agg(pl.col(subject_col).first(), pl.len().alias("n_obs"))
        )
        if runs[subject_col].n_unique() != runs.height:
            raise ValueError(
                f"Rows of {subject_col!r} are not grouped by subject; sort the table first"
            )
        logger.debug("Built subject index table: %d subjects, %d rows", runs.height, frame.height)
        return cls.from_counts(runs["n_obs"].to_list())


# ══════════════════════════════════════════════════════════════════════════════
# ENCODED COVARIANCES AND REGIME SWITCHING
# ══════════════════════════════════════════════════════════════════════════════


def ldl_to_cov(encoded: jnp.ndarray) -> jnp.ndarray:
    """Reconstruct a covariance matrix from its LDL/log encoding.

    Noise and initial-covariance callbacks supply a matrix whose diagonal
    holds log(D) and whose strict lower triangle holds L:

        [a b]                               [1 0]
        [b c]  -->  L D L',  D = diag(e^a, e^c),  L = [b 1]

    Args:
        encoded: (n, n) encoded matrix (only diagonal and lower triangle read)

    Returns:
        (n, n) symmetric positive semi-definite covariance
    """
    n = encoded.shape[0]
    L = jnp.tril(encoded, k=-1) + jnp.eye(n, dtype=encoded.dtype)
    D = jnp.exp(jnp.diagonal(encoded))
    return (L * D) @ L.T


def is_stochastic(mat: jnp.ndarray, atol: float = 1e-8) -> bool:
    """Whether every row of mat is a probability distribution."""
    mat = np.asarray(mat)
    return bool(np.all(mat >= -atol) and np.allclose(mat.sum(axis=1), 1.0, atol=atol))


# ══════════════════════════════════════════════════════════════════════════════
# MODEL SPEC
# ══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ModelSpec:
    """Callbacks and static dimensions of one model.

    Dimensions:
    - dim_latent_var: number of latent states n
    - dim_obs_var: number of observed variables m
    - dim_co_variate: number of covariates
    - num_func_param: length of the function-parameter prefix of params
    - num_regime: number of regimes k
    """

    dim_latent_var: int
    dim_obs_var: int
    dim_co_variate: int
    num_func_param: int
    num_regime: int
    index_sbj: SubjectIndexTable

    dynamics: DynamicsFn
    jacobian: JacobianFn
    measurement: MeasurementFn
    noise_cov: NoiseCovFn
    initial_condition: InitialConditionFn
    regime_switch: RegimeSwitchFn
    transform: TransformFn = identity_transform

    # rk4_step, or integrators.adaptive_step(solver) for the adaptive solver
    state_propagator: StatePropagator = field(default=rk4_step)

    def __post_init__(self):
        for name in ("dim_latent_var", "dim_obs_var", "num_regime"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("dim_co_variate", "num_func_param"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        logger.debug(
            "ModelSpec: %d latent, %d observed, %d regimes, %d function params, %d subjects",
            self.dim_latent_var,
            self.dim_obs_var,
            self.num_regime,
            self.num_func_param,
            self.num_sbj,
        )

    @property
    def num_sbj(self) -> int:
        return self.index_sbj.num_sbj

    @property
    def total_obs(self) -> int:
        return self.index_sbj.total_obs

    @property
    def covariance_dynamics(self) -> DynamicsFn:
        """Packed dP/dt with this model's Jacobian bound in."""
        return functools.partial(covariance_derivative, jacobian=self.jacobian)

    def propagate_state(self, tstart, tend, regime, xstart, params, covariate) -> jnp.ndarray:
        """Advance a latent state over one interval with the configured propagator."""
        return self.state_propagator(tstart, tend, regime, xstart, params, covariate, self.dynamics)

    def transition_jacobian(self, tstart, tend, regime, xstart, params, covariate) -> jnp.ndarray:
        """Discrete-time transition Jacobian over one interval."""
        return jacobian_rk4(
            tstart, tend, regime, xstart, params, self.num_func_param, covariate, self.jacobian
        )

    def propagate_covariance(
        self, tstart, tend, regime, cov, state, params, covariate
    ) -> jnp.ndarray:
        """Advance an error covariance over one interval, linearized at state.

        The packed covariance is stepped with the same propagator as the
        latent state; the Jacobian sees params augmented with state.
        """
        params_aug = augment_params(params, self.num_func_param, state)
        p_end = self.state_propagator(
            tstart,
            tend,
            regime,
            pack_symmetric(cov),
            params_aug,
            covariate,
            self.covariance_dynamics,
        )
        return unpack_symmetric(p_end, self.dim_latent_var)

    def noise_covariances(self, t, regime, params) -> tuple[jnp.ndarray, jnp.ndarray]:
        """Decoded (measurement, process) noise covariances."""
        y_encoded, eta_encoded = self.noise_cov(t, regime, params)
        return ldl_to_cov(y_encoded), ldl_to_cov(eta_encoded)

    def transition_matrix(self, t, switch_type, params, covariate) -> jnp.ndarray:
        """Regime-switch matrix for time t; raises if a row is not a distribution."""
        mat = self.regime_switch(t, switch_type, params, covariate)
        if not is_stochastic(mat):
            raise ValueError(f"Regime-switch matrix at t={t} is not row-stochastic:\n{mat}")
        return mat
