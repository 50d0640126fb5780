from __future__ import annotations

import contextlib
import copy
import dataclasses
import logging
from typing import Any, overload

import torch

from . import linalg
from .errors import DimensionMismatch, SingularMatrix
from .models import MeasurementModel, ProcessModel

logger = logging.getLogger(__name__)

# Variance of each state component when no initial covariance is given
DEFAULT_INITIAL_COVARIANCE_SCALE = 1e3


if hasattr(torch._tensor_str, "printoptions"):  # noqa: SLF001
    printoptions = torch._tensor_str.printoptions  # noqa: SLF001
else:

    @contextlib.contextmanager
    def printoptions(**kwargs):
        """Change pytorch printoptions temporarily. From the future of pytorch."""
        old_printoptions = copy.copy(torch._tensor_str.PRINT_OPTS)  # noqa: SLF001
        torch.set_printoptions(**kwargs)
        try:
            yield
        finally:
            torch._tensor_str.PRINT_OPTS = old_printoptions  # noqa: SLF001


@dataclasses.dataclass
class GaussianState:
    """Gaussian state for Kalman filtering.

    This dataclass stores a multivariate Gaussian distribution:

        x ~ N(mean, covariance)

    Vectors are **column vectors** with shape ``(dim, 1)``.

    Attributes:
        mean: Mean of the distribution.
            Shape: ``(dim, 1)``
        covariance: Covariance matrix of the distribution.
            Shape: ``(dim, dim)``
        precision: Optional precision matrix (inverse covariance).
            Shape: ``(dim, dim)``
    """

    mean: torch.Tensor
    covariance: torch.Tensor
    precision: torch.Tensor | None = None

    def clone(self) -> GaussianState:
        """Return a deep copy of the state."""
        return GaussianState(
            self.mean.clone(), self.covariance.clone(), self.precision.clone() if self.precision is not None else None
        )

    @overload
    def to(self, dtype: torch.dtype) -> GaussianState: ...

    @overload
    def to(self, device: torch.device) -> GaussianState: ...

    def to(self, fmt):
        """Convert a GaussianState to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the state to.

        Returns:
            GaussianState: The GaussianState with the right format
        """
        return GaussianState(
            self.mean.to(fmt),
            self.covariance.to(fmt),
            self.precision.to(fmt) if self.precision is not None else None,
        )


class KalmanFilter:
    """Discrete-time linear Kalman filter.

    The filter estimates the hidden state of a linear dynamical system under Gaussian noise:

        x_k = A x_{k-1} + B u_k + w_k,   w_k ~ N(0, Q)
        z_k = H x_k + v_k,               v_k ~ N(0, R)

    where ``A, B, Q`` come from a :class:`ProcessModel` and ``H, R`` from a :class:`MeasurementModel`.

    In contrast with a functional API, the filter owns its current estimate ``x_k | z_{1:k} ~ N(x, P)``,
    and mutates it with :meth:`predict` (prior on the next time step) and :meth:`correct` (posterior
    given a new measurement). Both can be called in any order: several predictions in a row are valid
    (when measurements are less frequent than state transitions) and so are several corrections.

    A call either succeeds and replaces the estimate, or raises and leaves it untouched.

    The filter is not thread-safe.

    Attributes:
        joseph_update (bool): If True, use the Joseph form covariance update for improved numerical stability.
            P' = (I - K H) P (I - K H)ᵀ + K R Kᵀ
            Default: False
        singularity_threshold (float): Pivot magnitude, relative to the largest entry of the innovation
            covariance, under which it is deemed singular.
            Default: 1e-11
    """

    _REPR_SPLIT_LENGTH = 110

    def __init__(
        self,
        process_model: ProcessModel,
        measurement_model: MeasurementModel,
        *,
        joseph_update=False,
        singularity_threshold=linalg.DEFAULT_SINGULARITY_THRESHOLD,
        initial_covariance_scale=DEFAULT_INITIAL_COVARIANCE_SCALE,
    ) -> None:
        """Constructor.

        The estimate starts from the initial state and covariance of the process model.
        If not provided, it starts from a null state with a covariance ``initial_covariance_scale * I``.

        Args:
            process_model (ProcessModel): Transition, control and process noise of the system.
            measurement_model (MeasurementModel): Observation matrix and measurement noise.
                It is converted to the dtype and device of the process model.
            joseph_update (bool): Use the Joseph form covariance update.
                Default: False
            singularity_threshold (float): See :func:`torch_lkf.linalg.invert`.
                Default: 1e-11
            initial_covariance_scale (float): Scale of the default initial covariance.
                Large, as nothing is known about the state yet.
                Default: 1000.0

        Raises:
            DimensionMismatch: If the measurement matrix or the control matrix does not match the transition matrix.

        """
        transition_matrix = process_model.transition_matrix
        control_matrix = process_model.control_matrix
        measurement_model = measurement_model.to(process_model.dtype).to(process_model.device)
        measurement_matrix = measurement_model.measurement_matrix
        dim_x = transition_matrix.shape[0]

        if measurement_matrix.shape[1] != dim_x:
            raise DimensionMismatch(
                "measurement matrix",
                tuple(measurement_matrix.shape),
                "transition matrix",
                tuple(transition_matrix.shape),
            )
        if control_matrix is not None and control_matrix.shape[0] != dim_x:
            raise DimensionMismatch(
                "control matrix", tuple(control_matrix.shape), "transition matrix", tuple(transition_matrix.shape)
            )

        self._process_model = process_model
        self._measurement_model = measurement_model

        # Private copies, read at each step
        self._transition_matrix = transition_matrix
        self._control_matrix = control_matrix
        self._process_noise = process_model.process_noise
        self._measurement_matrix = measurement_matrix
        self._measurement_noise = measurement_model.measurement_noise

        self.joseph_update = joseph_update
        self.singularity_threshold = singularity_threshold

        mean = process_model.initial_state
        if mean is None:
            mean = torch.zeros(dim_x, 1, dtype=self.dtype, device=self.device)
        covariance = process_model.initial_covariance
        if covariance is None:
            covariance = initial_covariance_scale * linalg.identity(dim_x, transition_matrix)
        self._state = GaussianState(mean, covariance)

        logger.debug(
            "Kalman filter built (state dimension: %d, measure dimension: %d, control dimension: %d)",
            self.state_dim,
            self.measure_dim,
            process_model.control_dim,
        )

    @property
    def process_model(self) -> ProcessModel:
        return self._process_model

    @property
    def measurement_model(self) -> MeasurementModel:
        return self._measurement_model

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self._transition_matrix.shape[0]

    @property
    def measure_dim(self) -> int:
        """Dimension of the measured variable."""
        return self._measurement_matrix.shape[0]

    @property
    def device(self) -> torch.device:
        """Device of the Kalman filter."""
        return self._transition_matrix.device

    @property
    def dtype(self) -> torch.dtype:
        """Dtype of the Kalman filter."""
        return self._transition_matrix.dtype

    @property
    def state(self) -> GaussianState:
        """Copy of the current estimate N(x, P)."""
        return self._state.clone()

    @property
    def state_estimation(self) -> torch.Tensor:
        """Copy of the current state estimate ``x``.

        Shape: ``(dim_x,)``
        """
        return self._state.mean[:, 0].clone()

    @property
    def error_covariance(self) -> torch.Tensor:
        """Copy of the current error covariance ``P``.

        Shape: ``(dim_x, dim_x)``
        """
        return self._state.covariance.clone()

    def get_state_dimension(self) -> int:
        return self.state_dim

    def get_measurement_dimension(self) -> int:
        return self.measure_dim

    def get_state_estimation(self) -> list[float]:
        """Current state estimate ``x`` as a list of ``dim_x`` floats."""
        return self._state.mean[:, 0].tolist()

    def get_error_covariance(self) -> list[list[float]]:
        """Current error covariance ``P`` as ``dim_x`` rows of ``dim_x`` floats."""
        return self._state.covariance.tolist()

    @overload
    def to(self, dtype: torch.dtype) -> KalmanFilter: ...

    @overload
    def to(self, device: torch.device) -> KalmanFilter: ...

    def to(self, fmt):
        """Convert a Kalman filter to a specific device or dtype.

        The current estimate is carried over to the new filter.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the filter to.

        Returns:
            KalmanFilter: The filter with the right format
        """
        kalman_filter = KalmanFilter(
            self._process_model.to(fmt),
            self._measurement_model.to(fmt),
            joseph_update=self.joseph_update,
            singularity_threshold=self.singularity_threshold,
        )
        kalman_filter._state = self._state.to(fmt)  # noqa: SLF001
        return kalman_filter

    def predict(self, control_input: Any = None) -> None:
        """Advance the estimate by one time step (prior state).

        From the current estimate x_{k-1} ~ N(x, P), it applies the process model:

            x' = A x (+ B u)
            P' = A P Aᵀ + Q

        Args:
            control_input (Any): Optional control vector ``u`` (``dim_u`` values).
                Default: None (no control)

        Raises:
            DimensionMismatch: If ``u`` does not match the control matrix, or if ``u`` is given
                but the process has no control matrix.

        """
        mean = linalg.multiply(self._transition_matrix, self._state.mean)

        if control_input is not None:
            control = linalg.as_vector(control_input, dtype=self.dtype, device=self.device, name="control input")
            if self._control_matrix is None:
                raise DimensionMismatch("control input", control.shape[0], "control matrix", 0)
            if control.shape[0] != self._control_matrix.shape[1]:
                raise DimensionMismatch(
                    "control input", control.shape[0], "control matrix", tuple(self._control_matrix.shape)
                )
            mean = linalg.add(mean, linalg.multiply(self._control_matrix, control))

        covariance = linalg.multiply(
            linalg.multiply(self._transition_matrix, self._state.covariance), linalg.transpose(self._transition_matrix)
        )
        covariance = linalg.add(covariance, self._process_noise)

        self._state = GaussianState(mean, covariance)

    def project(self) -> GaussianState:
        """Project the current estimate into the measurement space.

        From x ~ N(x, P), it applies the measurement model and yields z ~ N(H x, S) with
        the innovation covariance:

            S = H P Hᵀ + R

        The inverse of ``S`` is stored in the precision of the returned state.

        Returns:
            GaussianState: Expected distribution of the next measurement.
                Shape (mean): ``(dim_z, 1)``
                Shape (covariance): ``(dim_z, dim_z)``

        Raises:
            SingularMatrix: If the innovation covariance cannot be inverted.

        """
        return GaussianState(*self._innovation())

    def _innovation(self) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """Predicted measure H x, innovation covariance S and its inverse."""
        mean = linalg.multiply(self._measurement_matrix, self._state.mean)
        covariance = linalg.multiply(self._measurement_matrix, self._state.covariance)
        covariance = linalg.multiply(covariance, linalg.transpose(self._measurement_matrix))
        covariance = linalg.add(covariance, self._measurement_noise)

        inversion = linalg.invert(covariance, self.singularity_threshold)
        if inversion.inverse is None:
            logger.debug("Singular innovation covariance: %s", covariance.tolist())
            raise SingularMatrix(covariance, "Innovation covariance is singular")

        return mean, covariance, inversion.inverse

    def correct(self, measurement: Any) -> None:
        """Update the estimate with a new measurement (posterior state).

        Given the current estimate x ~ N(x, P) and a measure z, it follows three steps:
        1. Innovation covariance with `project`: S = H P Hᵀ + R
        2. Kalman gain: K = P Hᵀ S^{-1}
        3. Incorporate z:
            x' = x + K (z - H x)
            P' = (I - K H) P   OR [JOSEPH_UPDATE] P' = (I - K H) P (I - K H)ᵀ + K R Kᵀ

        Args:
            measurement (Any): Measure ``z`` (``dim_z`` values).

        Raises:
            DimensionMismatch: If ``z`` does not have ``dim_z`` values.
            SingularMatrix: If the innovation covariance is singular. The estimate is left unchanged.

        """
        measure = linalg.as_vector(measurement, dtype=self.dtype, device=self.device, name="measurement")
        if measure.shape[0] != self.measure_dim:
            raise DimensionMismatch(
                "measurement", measure.shape[0], "measurement matrix", tuple(self._measurement_matrix.shape)
            )

        predicted_measure, _, precision = self._innovation()

        kalman_gain = linalg.multiply(
            linalg.multiply(self._state.covariance, linalg.transpose(self._measurement_matrix)), precision
        )
        residual = linalg.subtract(measure, predicted_measure)

        mean = linalg.add(self._state.mean, linalg.multiply(kalman_gain, residual))

        if self.joseph_update:
            factor = linalg.subtract(
                linalg.identity(self.state_dim, kalman_gain), linalg.multiply(kalman_gain, self._measurement_matrix)
            )
            covariance = linalg.add(
                linalg.multiply(linalg.multiply(factor, self._state.covariance), linalg.transpose(factor)),
                linalg.multiply(linalg.multiply(kalman_gain, self._measurement_noise), linalg.transpose(kalman_gain)),
            )
        else:
            covariance = linalg.subtract(
                self._state.covariance,
                linalg.multiply(linalg.multiply(kalman_gain, self._measurement_matrix), self._state.covariance),
            )

        self._state = GaussianState(mean, covariance)

    def __repr__(self) -> str:
        """Convert the Kalman filter model into a readable string."""
        header = (
            f"Kalman Filter (State dimension: {self.state_dim}, Measure dimension: {self.measure_dim}, "
            f"Control dimension: {self._process_model.control_dim})"
        )

        blocks = [
            self._format_matrices("Process: ", [("A", self._transition_matrix), ("Q", self._process_noise)], 80),
        ]
        if self._control_matrix is not None:
            blocks.append(self._format_matrices("Control: ", [("B", self._control_matrix)], 100))
        blocks.append(
            self._format_matrices(
                "Measurement: ", [("H", self._measurement_matrix), ("R", self._measurement_noise)], 100
            )
        )

        n_char = max(len(line) for line in "\n".join(blocks).split("\n"))
        return ("\n" + "-" * n_char + "\n").join([header, *blocks])

    def _format_matrices(self, title: str, matrices: list[tuple[str, torch.Tensor]], linewidth: int) -> str:
        """Format named matrices side by side if they fit in a line, else one under the other."""
        with printoptions(profile="short", sci_mode=False, linewidth=linewidth):
            reprs = [(name, str(matrix).split("\n")) for name, matrix in matrices]

        widths = [max(len(line) for line in lines) for _, lines in reprs]
        if sum(widths) <= self._REPR_SPLIT_LENGTH:  # Single line
            rows = []
            for i in range(max(len(lines) for _, lines in reprs)):
                row = ""
                for k, ((name, lines), width) in enumerate(zip(reprs, widths)):
                    prefix = f"{title if k == 0 else '  &  '}{name} = "
                    row += (prefix if i == 0 else " " * len(prefix)) + (lines[i] if i < len(lines) else "").ljust(width)
                rows.append(row.rstrip())
            return "\n".join(rows)

        paragraphs = []  # One matrix under the other
        for k, (name, lines) in enumerate(reprs):
            prefix = f"{title if k == 0 else ' ' * len(title)}{name} = "
            indent = " " * len(prefix)
            paragraphs.append("\n".join((prefix if i == 0 else indent) + line for i, line in enumerate(lines)))
        return "\n\n".join(paragraphs)
