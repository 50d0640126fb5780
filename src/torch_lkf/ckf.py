"""Helpers for building constant-derivative models.

The state is composed of values (one per spatial dimension) and their derivatives up to a given order:

- constant position (order = 0),
- constant velocity (order = 1),
- constant acceleration (order = 2), ...

Only the values are measured. The highest derivative is assumed either constant with additive noise,
or driven by a zero-mean Gaussian noise on the next derivative (the ``expected_model``).
Optionally, a control input acts as a known (order+1)-th derivative over each time step
(e.g. a commanded acceleration for a constant velocity model).
"""

from __future__ import annotations

import math

import torch

from .kalman_filter import DEFAULT_INITIAL_COVARIANCE_SCALE, KalmanFilter
from .models import MeasurementModel, ProcessModel


def interleave(x: torch.Tensor, size: int) -> torch.Tensor:
    """Interleave tensor along the first dimension.

    Indices ``0, 1, ..., k*size-1`` are remapped as:
    ``0, size, 2*size, ..., (k-1)*size, 1, 1+size, ..., size-1, 2*size-1, ..., k*size-1``

    It switches a state grouped by dimension (``x, x', y, y'``) into a state grouped by
    derivative order (``x, y, x', y'``) when ``size = order + 1``.

    Args:
        x (torch.Tensor): Tensor to interleave.
            Shape: ``(k * size, ...)``
        size (int): Block size used for interleaving.

    Returns:
        torch.Tensor: Interleaved tensor with the same shape as ``x``.

    """
    shape = list(x.shape)
    return x.reshape([-1, size, *shape[1:]]).transpose(0, 1).reshape([-1, *shape[1:]])


def _taylor_coefficients(length: int, dt: float) -> torch.Tensor:
    # (1, dt, dt^2 / 2, ..., dt^(length-1) / (length-1)!)
    return torch.tensor([dt**k / math.factorial(k) for k in range(length)], dtype=torch.float64)


def create_ckf_process_matrix(order: int, dt=1.0, approximate=False) -> torch.Tensor:
    r"""Create the transition matrix ``A`` of a single dimension.

    Assuming derivatives above ``order`` are zero, the Taylor expansion yields:

    x^{(i)}(t + dt) = \sum_{k=0}^{order - i} \frac{dt^k}{k!} x^{(i+k)}(t)

    For instance with order = 2 and dt = 0.5::

        [
            [1, 0.5, 0.125],
            [0, 1.0, 0.5],
            [0, 0.0, 1.0],
        ]

    Args:
        order (int): Highest derivative order included in the state.
        dt (float): Time step duration.
            Default: 1.0
        approximate (bool): Keep only first-order terms (``x^{(i)}(t+dt) = x^{(i)}(t) + dt x^{(i+1)}(t)``).
            Default: False

    Returns:
        torch.Tensor: Transition matrix.
            Shape: ``(order + 1, order + 1)``

    """
    coefficients = _taylor_coefficients(order + 1, dt)
    if approximate:
        coefficients[2:] = 0

    process_matrix = torch.zeros(order + 1, order + 1, dtype=torch.float64)
    for k, coefficient in enumerate(coefficients.tolist()):
        process_matrix += torch.diag(torch.full((order + 1 - k,), coefficient, dtype=torch.float64), k)
    return process_matrix


def create_ckf_process_noise(
    process_std: float, order: int, dt=1.0, expected_model=False, approximate=False
) -> torch.Tensor:
    r"""Create the process noise covariance ``Q`` of a single dimension.

    Two models are supported:

    **1. Constant order-th derivative (default)**
    x^{(order)}(t_k+h) = x^{(order)}(t_k) + w_k, where w_k \sim N(0, process_std**2).

    **2. Zero-mean (order+1)-th derivative (expected model)**
    x^{(order + 1)}(t_k+h) = w_k, where w_k \sim N(0, process_std**2)

    The noise is propagated to lower derivatives through the Taylor expansion, leading to a rank-one
    covariance. For instance, the expected model with order = 1 gives::

        process_std**2 * [
            [dt^4 / 4, dt^3 / 2],
            [dt^3 / 2, dt^2],
        ]

    Args:
        process_std (float): Process noise standard deviation.
        order (int): Highest derivative order included in the state.
        dt (float): Time step duration.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False
        approximate (bool): Only the highest derivative receives noise.
            Default: False

    Returns:
        torch.Tensor: Process noise covariance.
            Shape: ``(order + 1, order + 1)``

    """
    coefficients = _taylor_coefficients(order + 1 + expected_model, dt)
    if approximate:
        coefficients[1 + expected_model :] = 0

    # The expected model is shifted by one derivative
    coefficients = coefficients[int(expected_model) :].flip(0)
    return process_std**2 * torch.outer(coefficients, coefficients)


def create_ckf_control_matrix(order: int, dt=1.0) -> torch.Tensor:
    """Create the control matrix ``B`` of a single dimension.

    The control input is the (order+1)-th derivative, held constant over the time step.
    For order = 1 (constant velocity controlled by an acceleration)::

        [
            [dt^2 / 2],
            [dt],
        ]

    Args:
        order (int): Highest derivative order included in the state.
        dt (float): Time step duration.
            Default: 1.0

    Returns:
        torch.Tensor: Control matrix.
            Shape: ``(order + 1, 1)``

    """
    return _taylor_coefficients(order + 2, dt)[1:].flip(0)[:, None]


def constant_models(  # noqa: PLR0913
    measurement_std: float | torch.Tensor,
    process_std: float | torch.Tensor,
    *,
    dim=2,
    order=1,
    dt=1.0,
    expected_model=False,
    order_by_dim=False,
    approximate=False,
    control=False,
    initial_state=None,
    initial_covariance=None,
) -> tuple[ProcessModel, MeasurementModel]:
    """Create the process and measurement models of a constant-derivative system.

    The state dimension is ``(order + 1) * dim`` and the measure dimension is ``dim``.

    Args:
        measurement_std (float | torch.Tensor): Measurement noise standard deviation.
            Shape: broadcastable to ``(dim,)``
        process_std (float | torch.Tensor): Process noise standard deviation (see `create_ckf_process_noise`).
            Shape: broadcastable to ``(dim,)``
        dim (int): Number of independent dimensions (1D, 2D, 3D, ...).
            Default: 2
        order (int): Highest derivative order included in the state.
            Default: 1 (constant velocity)
        dt (float): Time step duration.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative noise model.
            Default: False
        order_by_dim (bool): State ordering. True: ``x, x', y, y'``. False: ``x, y, x', y'``.
            Default: False
        approximate (bool): First-order approximation of the model.
            Default: False
        control (bool): Add a control matrix, the control input being the (order+1)-th derivative
            in each dimension (``dim`` values).
            Default: False
        initial_state (Any): Optional initial state, forwarded to the process model.
        initial_covariance (Any): Optional initial covariance, forwarded to the process model.

    Returns:
        tuple[ProcessModel, MeasurementModel]: Models of the system.

    """
    measurement_std = torch.broadcast_to(torch.as_tensor(measurement_std, dtype=torch.float64), (dim,))
    process_std = torch.broadcast_to(torch.as_tensor(process_std, dtype=torch.float64), (dim,))

    state_dim = (order + 1) * dim

    # Only values are measured, independently in each dimension
    measurement_matrix = torch.eye(dim, state_dim, dtype=torch.float64)
    measurement_noise = torch.diag(measurement_std**2)

    # Block matrices (grouped by dimension)
    process_matrix = torch.block_diag(*(create_ckf_process_matrix(order, dt, approximate) for _ in range(dim)))
    process_noise = torch.block_diag(
        *(create_ckf_process_noise(process_std[k].item(), order, dt, expected_model, approximate) for k in range(dim))
    )
    control_matrix = torch.block_diag(*(create_ckf_control_matrix(order, dt) for _ in range(dim))) if control else None

    if order_by_dim:
        measurement_matrix = interleave(measurement_matrix.T, dim).T
    else:
        process_matrix = interleave(interleave(process_matrix, order + 1).T, order + 1).T
        process_noise = interleave(interleave(process_noise, order + 1).T, order + 1).T
        if control_matrix is not None:
            control_matrix = interleave(control_matrix, order + 1)

    return (
        ProcessModel(process_matrix, control_matrix, process_noise, initial_state, initial_covariance),
        MeasurementModel(measurement_matrix, measurement_noise),
    )


def constant_kalman_filter(
    measurement_std: float | torch.Tensor,
    process_std: float | torch.Tensor,
    *,
    joseph_update=False,
    initial_covariance_scale=DEFAULT_INITIAL_COVARIANCE_SCALE,
    **kwargs,
) -> KalmanFilter:
    """Create a constant-derivative Kalman filter.

    See `constant_models` for the model arguments (given as keyword arguments).

    Args:
        measurement_std (float | torch.Tensor): Measurement noise standard deviation.
        process_std (float | torch.Tensor): Process noise standard deviation.
        joseph_update (bool): Use the Joseph form covariance update.
            Default: False
        initial_covariance_scale (float): Scale of the default initial covariance.
            Default: 1000.0
        **kwargs: Forwarded to `constant_models`.

    Returns:
        KalmanFilter: Filter for constant position/velocity/acceleration/... models.

    """
    process_model, measurement_model = constant_models(measurement_std, process_std, **kwargs)
    return KalmanFilter(
        process_model,
        measurement_model,
        joseph_update=joseph_update,
        initial_covariance_scale=initial_covariance_scale,
    )
