"""Numerical kernels for continuous-time extended Kalman filtering.

Implements the pieces an EKF-style filter and its optimizer call once per
observation interval:

- Dense linear algebra and packed symmetric storage (linalg)
- Random variates via Box-Muller (variates)
- Multivariate normal densities and log-weight normalization (likelihood)
- RK4 state step and transition Jacobian (integrators)
- Packed error-covariance derivative (covariance)
- Model specification bundle (model)

Double precision is enabled on import; the kernels are specified against
IEEE double arithmetic.
"""

import jax

jax.config.update("jax_enable_x64", True)

from ctsem_ekf.covariance import (  # noqa: E402
    COVARIANCE_REGULARIZER,
    covariance_derivative,
    propagate_covariance,
)
from ctsem_ekf.integrators import (  # noqa: E402
    AdaptiveODESolver,
    adaptive_step,
    augment_params,
    jacobian_rk4,
    rk4_step,
    select_propagator,
)
from ctsem_ekf.likelihood import (  # noqa: E402
    mvn_log_density,
    mvn_neg_log_density_inv,
    normalize,
    normalize_log,
)
from ctsem_ekf.linalg import (  # noqa: E402
    PackedSymmetric,
    diag_in_scale,
    diag_out_scale,
    inv_det_lu,
    inv_lu,
    lu_det,
    matmul,
    pack_symmetric,
    packed_dim,
    packed_index,
    packed_length,
    scale,
    trace,
    unpack_symmetric,
)
from ctsem_ekf.model import (  # noqa: E402
    ModelSpec,
    SubjectIndexTable,
    is_stochastic,
    ldl_to_cov,
)

__all__ = [
    # Linear algebra
    "matmul",
    "trace",
    "scale",
    "diag_in_scale",
    "diag_out_scale",
    "lu_det",
    "inv_lu",
    "inv_det_lu",
    # Packed storage
    "PackedSymmetric",
    "pack_symmetric",
    "unpack_symmetric",
    "packed_dim",
    "packed_index",
    "packed_length",
    # Likelihood
    "mvn_log_density",
    "mvn_neg_log_density_inv",
    "normalize",
    "normalize_log",
    # Integrators
    "AdaptiveODESolver",
    "rk4_step",
    "jacobian_rk4",
    "augment_params",
    "adaptive_step",
    "select_propagator",
    # Covariance
    "COVARIANCE_REGULARIZER",
    "covariance_derivative",
    "propagate_covariance",
    # Model
    "ModelSpec",
    "SubjectIndexTable",
    "ldl_to_cov",
    "is_stochastic",
]
