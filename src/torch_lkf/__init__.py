"""Torch-LKF: a discrete-time linear Kalman filter in PyTorch.

torch-lkf maintains the best estimate of an unobserved state vector and of its uncertainty (error
covariance), given a linear process model and noisy linear measurements. Typical use cases are
tracking dynamic systems whose evolution is known up to some process noise: a constant value measured
by a noisy sensor, an accelerating vehicle, a projectile...

Getting started
---------------
The core API consists of:
- :class:`~torch_lkf.ProcessModel`: transition matrix ``A``, optional control matrix ``B``,
  process noise ``Q`` and optional initial state ``x0`` / covariance ``P0``.
- :class:`~torch_lkf.MeasurementModel`: observation matrix ``H`` and measurement noise ``R``.
- :class:`~torch_lkf.KalmanFilter` built from both models, with
  :meth:`~torch_lkf.KalmanFilter.predict` and :meth:`~torch_lkf.KalmanFilter.correct`.

```python
    process_model = ProcessModel([[1.0, 0.1], [0.0, 1.0]], [[0.005], [0.1]], process_noise, [0.0, 0.0])
    measurement_model = MeasurementModel([[1.0, 0.0]], [[100.0]])
    kf = KalmanFilter(process_model, measurement_model)

    for measure in measures:
        kf.predict([0.1])  # Control input
        kf.correct(measure)

    kf.get_state_estimation()  # [position, velocity]
    kf.get_error_covariance()
```

:mod:`torch_lkf.ckf` provides ready-to-use constant velocity / acceleration models.

Numerical notes
---------------
Models and filters run in ``float64`` by default. For improved robustness of the covariance
(symmetry and positiveness), enable ``joseph_update=True`` on :class:`~torch_lkf.KalmanFilter`.
"""

from .errors import DimensionMismatch, KalmanFilterError, SingularMatrix
from .kalman_filter import GaussianState, KalmanFilter
from .models import MeasurementModel, ProcessModel

__all__ = [
    "DimensionMismatch",
    "GaussianState",
    "KalmanFilter",
    "KalmanFilterError",
    "MeasurementModel",
    "ProcessModel",
    "SingularMatrix",
]
__version__ = "0.1.0"
