import numpy as np
import pytest
import torch

from torch_lkf import DimensionMismatch, MeasurementModel, ProcessModel


def test_process_model_defaults():
    model = ProcessModel([[1.0, 1.0], [0.0, 1.0]])

    assert model.state_dim == 2
    assert model.control_dim == 0
    assert not model.has_control
    assert model.control_matrix is None
    assert model.initial_state is None
    assert model.initial_covariance is None
    assert model.dtype == torch.float64
    assert torch.equal(model.process_noise, torch.zeros(2, 2, dtype=torch.float64))


def test_process_model_full():
    model = ProcessModel(
        [[1.0, 0.1], [0.0, 1.0]],
        [[0.005], [0.1]],
        torch.eye(2) * 1e-3,
        [1.0, 2.0],
        [[1.0, 0.0], [0.0, 2.0]],
    )

    assert model.has_control
    assert model.control_dim == 1
    assert model.control_matrix is not None
    assert model.control_matrix.shape == (2, 1)
    assert model.initial_state is not None
    assert model.initial_state.shape == (2, 1)
    assert model.initial_state[:, 0].tolist() == [1.0, 2.0]
    assert model.initial_covariance is not None
    assert model.initial_covariance.tolist() == [[1.0, 0.0], [0.0, 2.0]]


def test_empty_control_matrix_means_no_control():
    model = ProcessModel([[1.0]], torch.empty(1, 0), [[0.0]])

    assert not model.has_control
    assert model.control_dim == 0


def test_process_model_dimension_mismatches():
    with pytest.raises(DimensionMismatch):  # A is not square
        ProcessModel([[1.0, 0.0]])

    with pytest.raises(DimensionMismatch) as error:  # B has 2 rows
        ProcessModel([[1.0]], [1.0, 1.0], [[0.0]])
    assert error.value.first == "control matrix"
    assert error.value.first_size == (2, 1)
    assert error.value.second == "transition matrix"
    assert error.value.second_size == (1, 1)

    with pytest.raises(DimensionMismatch) as error:
        ProcessModel(torch.eye(2), process_noise=torch.eye(3))
    assert error.value.first == "process noise"

    with pytest.raises(DimensionMismatch) as error:
        ProcessModel(torch.eye(2), initial_state=[0.0, 0.0, 0.0])
    assert error.value.first == "initial state"
    assert error.value.first_size == 3

    with pytest.raises(DimensionMismatch) as error:
        ProcessModel(torch.eye(2), initial_covariance=torch.eye(1))
    assert error.value.first == "initial covariance"


def test_process_model_is_isolated_from_callers():
    transition = np.eye(2)
    initial_state = torch.zeros(2)
    model = ProcessModel(transition, initial_state=initial_state)

    transition[0, 1] = 1.0
    initial_state[0] = 5.0
    model.transition_matrix[1, 0] = 3.0  # Only a copy is modified

    assert torch.equal(model.transition_matrix, torch.eye(2, dtype=torch.float64))
    assert model.initial_state is not None
    assert torch.equal(model.initial_state, torch.zeros(2, 1, dtype=torch.float64))


def test_process_model_to_dtype():
    model = ProcessModel(torch.eye(2), [[1.0], [0.0]], initial_state=[1.0, 1.0])

    model32 = model.to(torch.float32)

    assert model32.dtype == torch.float32
    assert model32.process_noise.dtype == torch.float32
    assert model32.control_matrix is not None
    assert model32.control_matrix.dtype == torch.float32
    assert model32.initial_state is not None
    assert model32.initial_state.dtype == torch.float32
    assert model.dtype == torch.float64  # Unchanged


def test_measurement_model():
    model = MeasurementModel([[1.0, 0.0, 0.0]], [[0.1]])

    assert model.measure_dim == 1
    assert model.state_dim == 3
    assert model.measurement_noise.tolist() == [[0.1]]
    assert model.to(torch.float32).measurement_matrix.dtype == torch.float32


def test_measurement_model_dimension_mismatches():
    with pytest.raises(DimensionMismatch) as error:
        MeasurementModel([[1.0, 0.0], [0.0, 1.0]], [[1.0]])
    assert error.value.first == "measurement noise"
    assert error.value.first_size == (1, 1)
    assert error.value.second == "measurement matrix"
    assert error.value.second_size == (2, 2)

    with pytest.raises(DimensionMismatch):  # R is not square
        MeasurementModel([[1.0, 0.0]], [[1.0, 0.0]])


def test_measurement_model_is_isolated_from_callers():
    noise = torch.eye(2)
    model = MeasurementModel(torch.eye(2), noise)

    noise.mul_(10)

    assert torch.equal(model.measurement_noise, torch.eye(2, dtype=torch.float64))


def test_dimension_mismatch_message():
    with pytest.raises(DimensionMismatch, match=r"control matrix \(2x1\) is incompatible with transition matrix"):
        ProcessModel([[1.0]], [1.0, 1.0])
