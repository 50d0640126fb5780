import pytest
import torch

from torch_lkf import KalmanFilter
from torch_lkf.ckf import (
    constant_kalman_filter,
    constant_models,
    create_ckf_control_matrix,
    create_ckf_process_matrix,
    create_ckf_process_noise,
    interleave,
)


def test_interleave_matches_expected():
    x = torch.tensor([[1, 1], [2, 2], [3, 3], [4, 4], [5, 5], [6, 6], [7, 7], [8, 8], [9, 9]])
    y = interleave(x, 3)
    expected = torch.tensor([[1, 1], [4, 4], [7, 7], [2, 2], [5, 5], [8, 8], [3, 3], [6, 6], [9, 9]])
    assert torch.equal(y, expected)


def test_create_ckf_process_matrix_order2_dt05():
    process_matrix = create_ckf_process_matrix(order=2, dt=0.5)
    expected = torch.tensor(
        [
            [1.0, 0.5, 0.125],
            [0.0, 1.0, 0.5],
            [0.0, 0.0, 1.0],
        ],
        dtype=torch.float64,
    )
    assert torch.allclose(process_matrix, expected)


def test_create_ckf_process_matrix_approximate_drops_higher_terms():
    process_matrix = create_ckf_process_matrix(order=2, dt=0.5, approximate=True)
    expected = torch.tensor(
        [
            [1.0, 0.5, 0.0],
            [0.0, 1.0, 0.5],
            [0.0, 0.0, 1.0],
        ],
        dtype=torch.float64,
    )
    assert torch.allclose(process_matrix, expected)


def test_create_ckf_process_noise_order_3():
    process_noise = create_ckf_process_noise(process_std=1.5, order=3, dt=1.0)

    expected = torch.tensor(
        [
            [0.0625, 0.1875, 0.3750, 0.3750],
            [0.1875, 0.5625, 1.1250, 1.1250],
            [0.3750, 1.1250, 2.2500, 2.2500],
            [0.3750, 1.1250, 2.2500, 2.2500],
        ],
        dtype=torch.float64,
    )

    assert torch.allclose(process_noise, expected)
    assert torch.allclose(process_noise, process_noise.mT)
    assert (torch.linalg.eigvalsh(process_noise) > -1e-9).all()


def test_create_ckf_process_noise_expected_model():
    process_noise = create_ckf_process_noise(process_std=1.0, order=5, dt=0.5)
    process_noise_expected = create_ckf_process_noise(process_std=1.0, order=5, dt=0.5, expected_model=True)

    # The expected model has an offset of 1 in the resulting noises
    assert torch.allclose(process_noise[:-1, :-1], process_noise_expected[1:, 1:])


@pytest.mark.parametrize(
    ("process_std", "order", "dt", "expected"),
    [
        (1.0, 3, 1.0, False),
        (1.0, 3, 0.5, True),
        (5.0, 2, 0.5, True),
        (0.2, 0, 2.0, False),
    ],
)
def test_create_ckf_process_noise_approximate(process_std: float, order: int, dt: float, expected: bool):
    process_noise = create_ckf_process_noise(
        process_std=process_std, order=order, dt=dt, expected_model=expected, approximate=True
    )
    assert torch.isclose(process_noise[-1, -1], torch.tensor(process_std**2 * (dt**2 if expected else 1.0)).double())
    process_noise[-1, -1] = 0

    assert (process_noise == 0).all()


def test_create_ckf_control_matrix():
    assert torch.allclose(create_ckf_control_matrix(0, dt=2.0), torch.tensor([[2.0]], dtype=torch.float64))
    assert torch.allclose(
        create_ckf_control_matrix(2, dt=0.5), torch.tensor([[0.5**3 / 6], [0.5**2 / 2], [0.5]], dtype=torch.float64)
    )


def test_constant_models_default_ordering():
    process_model, measurement_model = constant_models(3.0, 1.5, dim=2, order=1, control=True)

    # state_dim = (order+1)*dim = 4, measure_dim=dim=2
    assert process_model.state_dim == 4
    assert process_model.control_dim == 2
    assert measurement_model.measure_dim == 2
    assert torch.equal(measurement_model.measurement_noise, 9.0 * torch.eye(2, dtype=torch.float64))

    # x, y, dx, dy
    assert measurement_model.measurement_matrix.tolist() == [[1, 0, 0, 0], [0, 1, 0, 0]]
    assert process_model.transition_matrix.tolist() == [
        [1, 0, 1, 0],
        [0, 1, 0, 1],
        [0, 0, 1, 0],
        [0, 0, 0, 1],
    ]
    assert process_model.control_matrix is not None
    assert process_model.control_matrix.tolist() == [[0.5, 0], [0, 0.5], [1, 0], [0, 1]]


def test_constant_models_order_by_dim_changes_layout():
    process_model, measurement_model = constant_models(3.0, 1.5, dim=3, order=2, order_by_dim=False)
    process_model_2, measurement_model_2 = constant_models(3.0, 1.5, dim=3, order=2, order_by_dim=True)

    assert process_model.transition_matrix.shape == process_model_2.transition_matrix.shape
    assert not torch.allclose(process_model.transition_matrix, process_model_2.transition_matrix)
    assert not torch.allclose(measurement_model.measurement_matrix, measurement_model_2.measurement_matrix)

    # x,dx,ddx,y,dy,ddy,z,dz,ddz
    assert measurement_model_2.measurement_matrix.tolist() == [
        [1, 0, 0, 0, 0, 0, 0, 0, 0],
        [0, 0, 0, 1, 0, 0, 0, 0, 0],
        [0, 0, 0, 0, 0, 0, 1, 0, 0],
    ]


def test_constant_kalman_filter():
    kf = constant_kalman_filter(1.0, 0.1, dim=2, order=1, joseph_update=True, initial_covariance_scale=10.0)

    assert isinstance(kf, KalmanFilter)
    assert kf.joseph_update
    assert kf.state_dim == 4
    assert kf.measure_dim == 2
    assert torch.equal(kf.error_covariance, 10.0 * torch.eye(4, dtype=torch.float64))

    # Constant velocity along x
    for t in range(50):
        kf.predict()
        kf.correct([float(t + 1), 0.0])

    estimation = kf.get_state_estimation()
    assert abs(estimation[2] - 1.0) < 0.1
    assert abs(estimation[3]) < 0.1
