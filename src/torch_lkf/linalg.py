"""Dense linear algebra used by the Kalman recursion.

Thin layer over ``torch``: it copies user inputs into owned 2D tensors, checks operand shapes before
any product or sum (raising :class:`~torch_lkf.errors.DimensionMismatch` where torch would broadcast)
and inverts matrices reporting singularity instead of returning a degenerate result.

Conventions:
- Matrices are 2D tensors ``(rows, cols)``.
- Vectors are **column vectors** with shape ``(dim, 1)``.
"""

from __future__ import annotations

import dataclasses
from typing import Any

import torch
import torch.linalg

from .errors import DimensionMismatch, SingularMatrix

# Pivots of the LU factorization smaller than this (relative to the largest entry) are considered to be zero.
DEFAULT_SINGULARITY_THRESHOLD = 1e-11


@dataclasses.dataclass(frozen=True)
class Inversion:
    """Result of :func:`invert`.

    Attributes:
        inverse (torch.Tensor | None): Inverse of the matrix, or None if it is singular.
    """

    inverse: torch.Tensor | None

    @property
    def singular(self) -> bool:
        """True if the matrix could not be inverted."""
        return self.inverse is None


def as_matrix(data: Any, *, dtype=torch.float64, device: torch.device | None = None, name="matrix") -> torch.Tensor:
    """Copy any array-like into a 2D floating tensor.

    Scalars become ``1x1`` matrices and flat sequences become a single column.

    Args:
        data (Any): Nested sequences, numpy array or tensor.
        dtype (torch.dtype): Floating dtype of the result.
            Default: torch.float64
        device (torch.device | None): Device of the result. Default: the one of ``data`` (or cpu).
        name (str): Name used in error messages.

    Returns:
        torch.Tensor: A new tensor, never sharing memory with ``data``.
            Shape: ``(rows, cols)``

    """
    tensor = torch.as_tensor(data, device=device).detach().to(dtype=dtype, copy=True)
    if tensor.ndim == 0:
        return tensor.reshape(1, 1)
    if tensor.ndim == 1:
        return tensor.reshape(-1, 1)
    if tensor.ndim != 2:  # noqa: PLR2004
        raise DimensionMismatch(name, tuple(tensor.shape), "a matrix", ("rows", "cols"))
    return tensor


def as_vector(data: Any, *, dtype=torch.float64, device: torch.device | None = None, name="vector") -> torch.Tensor:
    """Copy any array-like into a column vector.

    Args:
        data (Any): Scalar, flat sequence or a ``(dim, 1)`` array-like.
        dtype (torch.dtype): Floating dtype of the result.
            Default: torch.float64
        device (torch.device | None): Device of the result. Default: the one of ``data`` (or cpu).
        name (str): Name used in error messages.

    Returns:
        torch.Tensor: A new column vector.
            Shape: ``(dim, 1)``

    """
    tensor = as_matrix(data, dtype=dtype, device=device, name=name)
    if tensor.shape[1] != 1:
        raise DimensionMismatch(name, tuple(tensor.shape), "a column vector", (tensor.shape[0], 1))
    return tensor


def multiply(first: torch.Tensor, second: torch.Tensor) -> torch.Tensor:
    """Matrix product ``first @ second``.

    Raises:
        DimensionMismatch: If the columns of ``first`` do not match the rows of ``second``.
    """
    if first.ndim != 2 or second.ndim != 2 or first.shape[1] != second.shape[0]:  # noqa: PLR2004
        raise DimensionMismatch("left operand", tuple(first.shape), "right operand", tuple(second.shape))
    return first @ second


def transpose(matrix: torch.Tensor) -> torch.Tensor:
    return matrix.mT


def add(first: torch.Tensor, second: torch.Tensor) -> torch.Tensor:
    """Element-wise sum of two matrices of the same shape (no broadcasting).

    Raises:
        DimensionMismatch: If the shapes differ.
    """
    if first.shape != second.shape:
        raise DimensionMismatch("left operand", tuple(first.shape), "right operand", tuple(second.shape))
    return first + second


def subtract(first: torch.Tensor, second: torch.Tensor) -> torch.Tensor:
    """Element-wise difference of two matrices of the same shape (no broadcasting).

    Raises:
        DimensionMismatch: If the shapes differ.
    """
    if first.shape != second.shape:
        raise DimensionMismatch("left operand", tuple(first.shape), "right operand", tuple(second.shape))
    return first - second


def scalar_multiply(matrix: torch.Tensor, scalar: float) -> torch.Tensor:
    return scalar * matrix


def is_square(matrix: torch.Tensor) -> bool:
    return matrix.shape[-1] == matrix.shape[-2]


def is_symmetric(matrix: torch.Tensor, atol=1e-8) -> bool:
    """Check that a matrix is square and equal to its transpose (up to ``atol``)."""
    return is_square(matrix) and torch.allclose(matrix, matrix.mT, rtol=0.0, atol=atol)


def identity(dim: int, like: torch.Tensor) -> torch.Tensor:
    """Identity matrix with the dtype and device of ``like``."""
    return torch.eye(dim, dtype=like.dtype, device=like.device)


def invert(
    matrix: torch.Tensor, singularity_threshold=DEFAULT_SINGULARITY_THRESHOLD, *, relative_threshold=True
) -> Inversion:
    """Invert a square matrix, reporting singularity instead of raising.

    The matrix is factorized with a partially pivoted LU decomposition. It is considered singular
    if one of the pivots is not finite or is smaller (in absolute value) than ``singularity_threshold``
    times the largest absolute entry of the matrix. The scaling makes the test independent of the
    units: ``1e-12 * I`` is as invertible as ``I``.

    Args:
        matrix (torch.Tensor): Square matrix to invert.
            Shape: ``(dim, dim)``
        singularity_threshold (float): Relative pivot magnitude under which the matrix is singular.
            Default: 1e-11
        relative_threshold (bool): If False, ``singularity_threshold`` is an absolute pivot magnitude.
            Default: True

    Returns:
        Inversion: The inverse, or a singular result.

    """
    if not is_square(matrix):
        raise DimensionMismatch("matrix rows", matrix.shape[-2], "matrix columns", matrix.shape[-1])

    lu, pivots, info = torch.linalg.lu_factor_ex(matrix)
    diagonal = lu.diagonal().abs()
    if info.item() != 0 or not torch.isfinite(diagonal).all():
        return Inversion(None)

    threshold = singularity_threshold
    if relative_threshold:
        threshold = singularity_threshold * matrix.abs().max().item()
    if (diagonal < threshold).any():
        return Inversion(None)

    return Inversion(torch.linalg.lu_solve(lu, pivots, identity(matrix.shape[-1], matrix)))


def inverse(
    matrix: torch.Tensor, singularity_threshold=DEFAULT_SINGULARITY_THRESHOLD, *, relative_threshold=True
) -> torch.Tensor:
    """Invert a square matrix.

    Raises:
        SingularMatrix: If the matrix is singular (see :func:`invert`).
    """
    result = invert(matrix, singularity_threshold, relative_threshold=relative_threshold)
    if result.inverse is None:
        raise SingularMatrix(matrix)
    return result.inverse
