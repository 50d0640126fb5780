"""Process and measurement models of a linear Kalman filter.

The estimated system follows:

    x_k = A x_{k-1} + B u_k + w_k,   w_k ~ N(0, Q)
    z_k = H x_k + v_k,               v_k ~ N(0, R)

Models own a private copy of every matrix they are given, and only expose copies. They are therefore
immutable: mutating the arrays used to build a model (or the ones read back from it) has no effect on it.
"""

from __future__ import annotations

from typing import Any, overload

import torch

from . import linalg
from .errors import DimensionMismatch


class ProcessModel:
    """Describe how the hidden state evolves through time.

    Attributes:
        transition_matrix (torch.Tensor): Transition matrix ``A``.
            Shape: ``(dim_x, dim_x)``
        control_matrix (torch.Tensor | None): Control matrix ``B``. None if the process has no control input.
            Shape: ``(dim_x, dim_u)``
        process_noise (torch.Tensor): Process noise covariance ``Q``.
            Shape: ``(dim_x, dim_x)``
        initial_state (torch.Tensor | None): Optional initial state estimate ``x0`` (column vector).
            Shape: ``(dim_x, 1)``
        initial_covariance (torch.Tensor | None): Optional initial error covariance ``P0``.
            Shape: ``(dim_x, dim_x)``
    """

    def __init__(  # noqa: PLR0913
        self,
        transition_matrix: Any,
        control_matrix: Any = None,
        process_noise: Any = None,
        initial_state: Any = None,
        initial_covariance: Any = None,
        *,
        dtype=torch.float64,
        device: torch.device | None = None,
    ) -> None:
        """Constructor.

        Args:
            transition_matrix (Any): Transition matrix ``A``. Must be square.
            control_matrix (Any): Optional control matrix ``B`` with ``dim_x`` rows.
                An empty matrix is equivalent to no control.
                Default: None
            process_noise (Any): Process noise covariance ``Q`` (``dim_x x dim_x``).
                Default: None (zero process noise)
            initial_state (Any): Optional initial state (``dim_x`` values).
                Default: None (Filters start from a null state)
            initial_covariance (Any): Optional initial error covariance (``dim_x x dim_x``).
                Default: None (Filters start from a scaled identity)
            dtype (torch.dtype): Floating dtype of the model.
                Default: torch.float64
            device (torch.device | None): Device of the model. Default: the one of ``transition_matrix``.

        Raises:
            DimensionMismatch: If any matrix is not compatible with the transition matrix.

        """
        transition = linalg.as_matrix(transition_matrix, dtype=dtype, device=device, name="transition matrix")
        if not linalg.is_square(transition):
            raise DimensionMismatch(
                "transition matrix rows", transition.shape[0], "transition matrix columns", transition.shape[1]
            )
        dim = transition.shape[0]
        device = transition.device

        control = None
        if control_matrix is not None:
            control = linalg.as_matrix(control_matrix, dtype=dtype, device=device, name="control matrix")
            if control.numel() == 0:
                control = None
            elif control.shape[0] != dim:
                raise DimensionMismatch("control matrix", tuple(control.shape), "transition matrix", (dim, dim))

        if process_noise is None:
            noise = torch.zeros(dim, dim, dtype=dtype, device=device)
        else:
            noise = linalg.as_matrix(process_noise, dtype=dtype, device=device, name="process noise")
            if noise.shape != (dim, dim):
                raise DimensionMismatch("process noise", tuple(noise.shape), "transition matrix", (dim, dim))

        state = None
        if initial_state is not None:
            state = linalg.as_vector(initial_state, dtype=dtype, device=device, name="initial state")
            if state.shape[0] != dim:
                raise DimensionMismatch("initial state", state.shape[0], "transition matrix", (dim, dim))

        covariance = None
        if initial_covariance is not None:
            covariance = linalg.as_matrix(initial_covariance, dtype=dtype, device=device, name="initial covariance")
            if covariance.shape != (dim, dim):
                raise DimensionMismatch("initial covariance", tuple(covariance.shape), "transition matrix", (dim, dim))

        self._transition_matrix = transition
        self._control_matrix = control
        self._process_noise = noise
        self._initial_state = state
        self._initial_covariance = covariance

    @property
    def transition_matrix(self) -> torch.Tensor:
        return self._transition_matrix.clone()

    @property
    def control_matrix(self) -> torch.Tensor | None:
        return None if self._control_matrix is None else self._control_matrix.clone()

    @property
    def process_noise(self) -> torch.Tensor:
        return self._process_noise.clone()

    @property
    def initial_state(self) -> torch.Tensor | None:
        return None if self._initial_state is None else self._initial_state.clone()

    @property
    def initial_covariance(self) -> torch.Tensor | None:
        return None if self._initial_covariance is None else self._initial_covariance.clone()

    @property
    def has_control(self) -> bool:
        """Whether the process accepts a control input."""
        return self._control_matrix is not None

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self._transition_matrix.shape[0]

    @property
    def control_dim(self) -> int:
        """Dimension of the control input (0 without control)."""
        return 0 if self._control_matrix is None else self._control_matrix.shape[1]

    @property
    def device(self) -> torch.device:
        return self._transition_matrix.device

    @property
    def dtype(self) -> torch.dtype:
        return self._transition_matrix.dtype

    @overload
    def to(self, dtype: torch.dtype) -> ProcessModel: ...

    @overload
    def to(self, device: torch.device) -> ProcessModel: ...

    def to(self, fmt):
        """Convert the model to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the model to.

        Returns:
            ProcessModel: A new model with the right format
        """
        transition = self._transition_matrix.to(fmt)
        return ProcessModel(
            transition,
            self._control_matrix,
            self._process_noise,
            self._initial_state,
            self._initial_covariance,
            dtype=transition.dtype,
            device=transition.device,
        )


class MeasurementModel:
    """Describe how the hidden state is observed.

    Attributes:
        measurement_matrix (torch.Tensor): Observation matrix ``H``.
            Shape: ``(dim_z, dim_x)``
        measurement_noise (torch.Tensor): Measurement noise covariance ``R``.
            Shape: ``(dim_z, dim_z)``
    """

    def __init__(
        self,
        measurement_matrix: Any,
        measurement_noise: Any,
        *,
        dtype=torch.float64,
        device: torch.device | None = None,
    ) -> None:
        """Constructor.

        Args:
            measurement_matrix (Any): Observation matrix ``H``.
            measurement_noise (Any): Measurement noise covariance ``R``. Must be square, with as many rows as ``H``.
            dtype (torch.dtype): Floating dtype of the model.
                Default: torch.float64
            device (torch.device | None): Device of the model. Default: the one of ``measurement_matrix``.

        Raises:
            DimensionMismatch: If ``R`` is not compatible with ``H``.

        """
        matrix = linalg.as_matrix(measurement_matrix, dtype=dtype, device=device, name="measurement matrix")
        noise = linalg.as_matrix(measurement_noise, dtype=dtype, device=matrix.device, name="measurement noise")
        if not linalg.is_square(noise) or noise.shape[0] != matrix.shape[0]:
            raise DimensionMismatch("measurement noise", tuple(noise.shape), "measurement matrix", tuple(matrix.shape))

        self._measurement_matrix = matrix
        self._measurement_noise = noise

    @property
    def measurement_matrix(self) -> torch.Tensor:
        return self._measurement_matrix.clone()

    @property
    def measurement_noise(self) -> torch.Tensor:
        return self._measurement_noise.clone()

    @property
    def measure_dim(self) -> int:
        """Dimension of the measured variable."""
        return self._measurement_matrix.shape[0]

    @property
    def state_dim(self) -> int:
        """Dimension of the observed state."""
        return self._measurement_matrix.shape[1]

    @property
    def device(self) -> torch.device:
        return self._measurement_matrix.device

    @property
    def dtype(self) -> torch.dtype:
        return self._measurement_matrix.dtype

    @overload
    def to(self, dtype: torch.dtype) -> MeasurementModel: ...

    @overload
    def to(self, device: torch.device) -> MeasurementModel: ...

    def to(self, fmt):
        """Convert the model to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the model to.

        Returns:
            MeasurementModel: A new model with the right format
        """
        matrix = self._measurement_matrix.to(fmt)
        return MeasurementModel(matrix, self._measurement_noise, dtype=matrix.dtype, device=matrix.device)
