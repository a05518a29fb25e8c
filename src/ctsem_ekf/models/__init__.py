"""Example models built on the EKF kernels."""

from ctsem_ekf.models.coupled_oscillator import make_coupled_oscillator_spec

__all__ = ["make_coupled_oscillator_spec"]
