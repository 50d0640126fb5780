"""Errors raised by torch-lkf.

Two failures are reported to the caller:

- :class:`DimensionMismatch` for any structural incompatibility between matrices or vectors.
  It is always detected before the filter is modified.
- :class:`SingularMatrix` when the innovation covariance cannot be inverted during a correction.
  The filter keeps its previous state.
"""

from __future__ import annotations

from typing import Any

import torch


class KalmanFilterError(Exception):
    """Base class of torch-lkf errors."""


class DimensionMismatch(KalmanFilterError, ValueError):
    """Two matrices (or vectors) do not have compatible dimensions.

    Attributes:
        first (str): Name of the first object (the one being checked).
        first_size (Any): Its size (an int or a shape tuple).
        second (str): Name of the object it is checked against.
        second_size (Any): Its size (an int or a shape tuple).
    """

    def __init__(self, first: str, first_size: Any, second: str, second_size: Any) -> None:
        self.first = first
        self.first_size = first_size
        self.second = second
        self.second_size = second_size
        super().__init__(
            f"Dimension mismatch: {first} {_fmt(first_size)} is incompatible with {second} {_fmt(second_size)}"
        )


class SingularMatrix(KalmanFilterError, ArithmeticError):
    """A matrix that has to be inverted is singular.

    Attributes:
        matrix (torch.Tensor): Copy of the offending matrix.
    """

    def __init__(self, matrix: torch.Tensor, message="Matrix is singular") -> None:
        self.matrix = matrix.detach().clone()
        super().__init__(message)


def _fmt(size: Any) -> str:
    if isinstance(size, (tuple, list, torch.Size)):
        return "(" + "x".join(str(s) for s in size) + ")"
    return f"({size})"
