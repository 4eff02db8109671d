"""
Shared fixtures: a small serial arm and helper functions used across tests.
"""

import numpy as np
import pytest

from constraint_solver.constraints.differentiable_function import DifferentiableFunction
from constraint_solver.data_io import device_from_dict
from constraint_solver.model.liegroup import LiegroupSpace
from constraint_solver.utils.quaternion_utils import (
    quaternion_to_rotation,
    right_jacobian_inverse
)

SKELETON = {
    'name': 'arm',
    'root_name': 'base',
    'joints': [
        {'name': 'base', 'type': 'fixed', 'offset': [0.0, 0.0, 0.0], 'parent': None},
        {'name': 'shoulder', 'type': 'revolute', 'offset': [0.0, 0.0, 0.3],
         'axis': [0.0, 0.0, 1.0], 'limits': [-3.0, 3.0], 'parent': 'base'},
        {'name': 'elbow', 'type': 'revolute', 'offset': [0.0, 0.0, 0.4],
         'axis': [0.0, 1.0, 0.0], 'limits': [-2.0, 2.0], 'parent': 'shoulder'},
        {'name': 'slider', 'type': 'prismatic', 'offset': [0.3, 0.0, 0.0],
         'axis': [1.0, 0.0, 0.0], 'limits': [0.0, 0.2], 'parent': 'elbow'},
        {'name': 'wrist', 'type': 'spherical', 'offset': [0.1, 0.0, 0.0], 'parent': 'slider'},
        {'name': 'tool', 'type': 'fixed', 'offset': [0.0, 0.0, 0.1],
         'quaternion': [0.9238795, 0.0, 0.3826834, 0.0], 'parent': 'wrist'},
    ]
}


@pytest.fixture
def skeleton():
    return SKELETON


@pytest.fixture
def arm():
    return device_from_dict(SKELETON)


@pytest.fixture
def arm_configuration(arm):
    """A configuration away from joint limits and singularities."""
    q = arm.neutral_configuration()
    q[0] = 0.2
    q[1] = 0.3
    q[2] = 0.1
    wrist = arm.config_space().integrate(q, np.array([0.0, 0.0, 0.0, 0.2, -0.1, 0.3]))
    return wrist


class Coordinate(DifferentiableFunction):
    """f(q) = q[iq] for a scalar variable of a configuration space."""

    def __init__(self, space: LiegroupSpace, iq: int, iv: int, name: str = 'Coordinate'):
        super().__init__(space.nq, space.nv, 1, name)
        self.iq = iq
        self.iv = iv

    def impl_compute(self, argument):
        return np.array([argument[self.iq]])

    def impl_jacobian(self, argument):
        jacobian = np.zeros((1, self.input_derivative_size()))
        jacobian[0, self.iv] = 1.0
        return jacobian


class ZRotation(DifferentiableFunction):
    """R^1 -> SO(3): rotation of angle t about z."""

    def __init__(self, name: str = 'ZRotation'):
        super().__init__(1, 1, LiegroupSpace.SO3(), name)

    def impl_compute(self, argument):
        t = argument[0]
        return np.array([np.cos(t / 2), 0.0, 0.0, np.sin(t / 2)])

    def impl_jacobian(self, argument):
        return np.array([[0.0], [0.0], [1.0]])


class RotationVector(DifferentiableFunction):
    """Rotation vector of the SO(3) block starting at (iq, iv)."""

    def __init__(self, space: LiegroupSpace, iq: int, iv: int, name: str = 'RotationVector'):
        super().__init__(space.nq, space.nv, 3, name)
        self.iq = iq
        self.iv = iv

    def impl_compute(self, argument):
        return quaternion_to_rotation(argument[self.iq:self.iq + 4]).as_rotvec()

    def impl_jacobian(self, argument):
        v = quaternion_to_rotation(argument[self.iq:self.iq + 4]).as_rotvec()
        jacobian = np.zeros((3, self.input_derivative_size()))
        jacobian[:, self.iv:self.iv + 3] = right_jacobian_inverse(v)
        return jacobian


class Plateau(DifferentiableFunction):
    """Constant value with a non-zero Jacobian: a step never changes the error."""

    def __init__(self, name: str = 'Plateau'):
        super().__init__(1, 1, 1, name)

    def impl_compute(self, argument):
        return np.array([1.0])

    def impl_jacobian(self, argument):
        return np.array([[1.0]])
