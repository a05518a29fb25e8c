"""Dense linear-algebra primitives for the EKF kernels.

Implements the matrix operations shared by the integrators, the covariance
propagator and the likelihood:

1. Products with independent transpose flags: op(A) @ op(B)
2. LU-based inverse and determinant (one factorization for both)
3. Trace, scaling, diagonal in/out conversions
4. Packed symmetric storage: an n x n symmetric matrix as n(n+1)/2 values

Shapes are preconditions. Nothing here validates its inputs, so every
function stays traceable by jax.jit and branch-free.
"""

from functools import lru_cache
from typing import NamedTuple

import jax.numpy as jnp
import jax.scipy.linalg as jla
import numpy as np


def matmul(
    a: jnp.ndarray,
    b: jnp.ndarray,
    transpose_a: bool = False,
    transpose_b: bool = False,
) -> jnp.ndarray:
    """Compute C = op(A) @ op(B) where op is identity or transpose.

    Args:
        a: matrix A
        b: matrix B
        transpose_a: use A' instead of A
        transpose_b: use B' instead of B

    Returns:
        The product matrix
    """
    if transpose_a:
        a = a.T
    if transpose_b:
        b = b.T
    return a @ b


def trace(mat: jnp.ndarray) -> jnp.ndarray:
    """Trace of a square matrix."""
    return jnp.trace(mat)


def scale(arr: jnp.ndarray, x: float) -> jnp.ndarray:
    """Scale a vector or matrix by a constant."""
    return arr * x


def diag_in_scale(
    vec: jnp.ndarray, x: float, mat: jnp.ndarray | None = None
) -> jnp.ndarray:
    """Place vec * x on the diagonal of a matrix.

    Args:
        vec: (n,) values for the diagonal
        x: scale factor
        mat: optional (n, n) matrix whose off-diagonal entries are kept;
            a zero matrix is used when omitted

    Returns:
        (n, n) matrix with diagonal vec * x
    """
    n = vec.shape[0]
    if mat is None:
        return jnp.diag(vec * x)
    idx = jnp.arange(n)
    return mat.at[idx, idx].set(vec * x)


def diag_out_scale(mat: jnp.ndarray, x: float) -> jnp.ndarray:
    """Extract diag(mat) * x as a vector."""
    return jnp.diagonal(mat) * x


# ---------------------------------------------------------------------------
# LU-based inverse and determinant
# ---------------------------------------------------------------------------


def _lu_det(lu: jnp.ndarray, piv: jnp.ndarray) -> jnp.ndarray:
    """Determinant from an LU factorization and its LAPACK pivot vector."""
    n = lu.shape[0]
    n_swaps = jnp.sum(piv != jnp.arange(n))
    sign = jnp.where(n_swaps % 2 == 0, 1.0, -1.0)
    return sign * jnp.prod(jnp.diagonal(lu))


def lu_det(mat: jnp.ndarray) -> jnp.ndarray:
    """Determinant of a square matrix via LU decomposition.

    The sign is recovered from the row interchanges recorded in the pivot
    vector; the magnitude is the product of the diagonal of U.
    """
    lu, piv = jla.lu_factor(mat)
    return _lu_det(lu, piv)


def inv_lu(mat: jnp.ndarray) -> jnp.ndarray:
    """Inverse of a square matrix via LU decomposition."""
    n = mat.shape[0]
    lu_and_piv = jla.lu_factor(mat)
    return jla.lu_solve(lu_and_piv, jnp.eye(n, dtype=lu_and_piv[0].dtype))


def inv_det_lu(mat: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Inverse and determinant from a single LU factorization.

    A singular matrix yields a zero determinant and a non-finite inverse;
    neither is trapped here.

    Args:
        mat: (n, n) square matrix (not modified)

    Returns:
        Tuple of (inverse, determinant)
    """
    n = mat.shape[0]
    lu, piv = jla.lu_factor(mat)
    inv = jla.lu_solve((lu, piv), jnp.eye(n, dtype=lu.dtype))
    return inv, _lu_det(lu, piv)


# ---------------------------------------------------------------------------
# Packed symmetric storage
# ---------------------------------------------------------------------------
#
# Layout for n = 3:
#     [a d e]
#     [d b f]  -->  [a, b, c, d, e, f]
#     [e f c]
#
# The diagonal comes first, then the strict upper triangle row by row.
# For n <= 3 the off-diagonal (i, j) lands at i + j + n - 1.


def packed_length(n: int) -> int:
    """Number of stored values for an n x n symmetric matrix."""
    return n * (n + 1) // 2


def packed_dim(length: int) -> int:
    """Matrix dimension n recovered from a packed length n(n+1)/2."""
    return int(np.floor(np.sqrt(2 * length)))


def packed_index(i: int, j: int, n: int) -> int:
    """Position of entry (i, j) of an n x n symmetric matrix in packed storage."""
    if i == j:
        return i
    if i > j:
        i, j = j, i
    # rows 0..i-1 of the strict upper triangle hold sum_{r<i} (n - 1 - r) values
    row_start = n + i * (n - 1) - i * (i - 1) // 2
    return row_start + (j - i - 1)


@lru_cache(maxsize=32)
def _packed_rows_cols(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Row and column of every packed position, in packed order."""
    rows = list(range(n))
    cols = list(range(n))
    for i in range(n):
        for j in range(i + 1, n):
            rows.append(i)
            cols.append(j)
    return np.asarray(rows, dtype=np.int32), np.asarray(cols, dtype=np.int32)


def pack_symmetric(mat: jnp.ndarray) -> jnp.ndarray:
    """Pack the diagonal and upper triangle of a symmetric matrix.

    Only the upper triangle is read, so a matrix whose triangles agree packs
    the same regardless of which triangle the producer filled first.

    Args:
        mat: (n, n) symmetric matrix

    Returns:
        (n(n+1)/2,) packed vector
    """
    rows, cols = _packed_rows_cols(mat.shape[0])
    return mat[rows, cols]


def unpack_symmetric(vec: jnp.ndarray, n: int | None = None) -> jnp.ndarray:
    """Rebuild the full symmetric matrix from its packed vector.

    Args:
        vec: (n(n+1)/2,) packed vector
        n: matrix dimension (inferred from the vector length when omitted)

    Returns:
        (n, n) symmetric matrix
    """
    if n is None:
        n = packed_dim(vec.shape[0])
    rows, cols = _packed_rows_cols(n)
    mat = jnp.zeros((n, n), dtype=vec.dtype)
    mat = mat.at[rows, cols].set(vec)
    return mat.at[cols, rows].set(vec)


class PackedSymmetric(NamedTuple):
    """Typed view over a packed symmetric vector.

    Keeps the dimension next to the values so call sites never do raw
    index arithmetic.
    """

    values: jnp.ndarray  # (n(n+1)/2,)
    dim: int

    @classmethod
    def from_matrix(cls, mat: jnp.ndarray) -> "PackedSymmetric":
        return cls(values=pack_symmetric(mat), dim=mat.shape[0])

    @classmethod
    def from_vector(cls, vec: jnp.ndarray) -> "PackedSymmetric":
        return cls(values=vec, dim=packed_dim(vec.shape[0]))

    @classmethod
    def zeros(cls, n: int) -> "PackedSymmetric":
        return cls(values=jnp.zeros(packed_length(n)), dim=n)

    def to_matrix(self) -> jnp.ndarray:
        return unpack_symmetric(self.values, self.dim)

    def __getitem__(self, ij: tuple[int, int]) -> jnp.ndarray:
        i, j = ij
        return self.values[packed_index(i, j, self.dim)]

    def set(self, i: int, j: int, value: float) -> "PackedSymmetric":
        """Return a copy with entry (i, j) (and (j, i)) replaced."""
        return self._replace(values=self.values.at[packed_index(i, j, self.dim)].set(value))
