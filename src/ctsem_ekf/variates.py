"""Random variates for noise simulation and search-point initialisation.

Standard normals are drawn with the Box-Muller transform from two uniforms
on (0, 1]. Keys are always passed explicitly; there is no module-level
generator state.
"""

import jax.numpy as jnp
import jax.random as random


def drand(key: jnp.ndarray, shape: tuple[int, ...] = ()) -> jnp.ndarray:
    """Uniform draw on (0, 1].

    Zero is excluded so that log(drand()) is always finite.
    """
    return 1.0 - random.uniform(key, shape)


def random_std_normal(key: jnp.ndarray, shape: tuple[int, ...] = ()) -> jnp.ndarray:
    """Standard normal draw via Box-Muller: sqrt(-2 log u1) * cos(2 pi u2)."""
    key_r, key_theta = random.split(key)
    u1 = drand(key_r, shape)
    u2 = drand(key_theta, shape)
    return jnp.sqrt(-2.0 * jnp.log(u1)) * jnp.cos(2.0 * jnp.pi * u2)


def random_normal(
    key: jnp.ndarray, mu: float, sigma: float, shape: tuple[int, ...] = ()
) -> jnp.ndarray:
    """Normal draw with mean mu and standard deviation sigma."""
    return random_std_normal(key, shape) * sigma + mu


def white_noise(key: jnp.ndarray, sigma: jnp.ndarray) -> jnp.ndarray:
    """Zero-mean normal vector with per-entry standard deviations sigma."""
    return random_std_normal(key, sigma.shape) * sigma


def random_pos_diag_matrix(key: jnp.ndarray, n: int) -> jnp.ndarray:
    """Diagonal matrix with |N(0, 1)| entries on the diagonal."""
    return jnp.diag(jnp.abs(random_std_normal(key, (n,))))
