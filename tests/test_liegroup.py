"""
Tests for Lie group spaces: integrate / difference and their derivatives.
"""

import numpy as np
import pytest

from constraint_solver.model.liegroup import LiegroupSpace
from constraint_solver.utils.quaternion_utils import right_jacobian, right_jacobian_inverse

EPS = 1e-6


def _random_element(space, rng):
    return space.integrate(space.neutral(), rng.normal(size=space.nv))


class TestConstruction:

    def test_sizes(self):
        space = LiegroupSpace.R3xSO3()
        assert (space.nq, space.nv) == (7, 6)
        assert space.name == 'R^3*SO(3)'
        assert not space.is_vector_space()
        assert LiegroupSpace.Rn(4).is_vector_space()

    def test_adjacent_vector_blocks_merge(self):
        space = LiegroupSpace.Rn(2) * LiegroupSpace.Rn(3) * LiegroupSpace.SO3()
        assert space == LiegroupSpace([('R', 5), ('SO3', 1)])
        assert space.blocks() == [('R', 0, 5, 0, 5), ('SO3', 5, 4, 5, 3)]

    def test_neutral(self):
        assert LiegroupSpace.R3xSO3().neutral().tolist() == [0, 0, 0, 1, 0, 0, 0]

    def test_unknown_component(self):
        with pytest.raises(ValueError):
            LiegroupSpace([('SE3', 1)])

    def test_list_round_trip(self):
        space = LiegroupSpace.SO3() * LiegroupSpace.Rn(2)
        assert LiegroupSpace.from_list(space.to_list()) == space


class TestIntegrateDifference:

    @pytest.mark.parametrize('space', [LiegroupSpace.Rn(3), LiegroupSpace.SO3(), LiegroupSpace.R3xSO3()])
    def test_integrate_inverts_difference(self, space):
        rng = np.random.default_rng(0)
        q0 = _random_element(space, rng)
        q1 = _random_element(space, rng)
        v = space.difference(q0, q1)
        q = space.integrate(q0, v)
        assert np.allclose(space.difference(q, q1), 0.0, atol=1e-10)
        assert space.is_normalized(q)

    def test_so3_integration_is_right_multiplication(self):
        space = LiegroupSpace.SO3()
        quarter_z = np.array([np.cos(np.pi / 4), 0.0, 0.0, np.sin(np.pi / 4)])
        q = space.integrate(quarter_z, np.array([0.0, 0.0, np.pi / 2]))
        # 两次绕 z 旋转 90 度
        assert np.allclose(np.abs(q), [0.0, 0.0, 0.0, 1.0], atol=1e-12)

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            LiegroupSpace.SO3().integrate(np.array([1.0, 0.0, 0.0]), np.zeros(3))


class TestDerivatives:
    """Analytic derivatives against finite differences in the tangent spaces."""

    def setup_method(self):
        rng = np.random.default_rng(1)
        self.space = LiegroupSpace.R3xSO3()
        self.q0 = _random_element(self.space, rng)
        self.q1 = _random_element(self.space, rng)
        self.v = 0.5 * rng.normal(size=self.space.nv)

    def _numeric(self, f, base_value, q, nv):
        space = self.space
        jacobian = np.zeros((space.nv, nv))
        for k in range(nv):
            dv = np.zeros(nv)
            dv[k] = EPS
            jacobian[:, k] = space.difference(base_value, f(space.integrate(q, dv))) / EPS
        return jacobian

    def test_d_integrate_dq(self):
        space = self.space
        value = space.integrate(self.q0, self.v)
        numeric = self._numeric(lambda q: space.integrate(q, self.v), value, self.q0, space.nv)
        assert np.allclose(space.d_integrate_dq(self.q0, self.v), numeric, atol=1e-5)

    def test_d_integrate_dv(self):
        space = self.space
        value = space.integrate(self.q0, self.v)
        numeric = np.zeros((space.nv, space.nv))
        for k in range(space.nv):
            dv = np.zeros(space.nv)
            dv[k] = EPS
            numeric[:, k] = space.difference(value, space.integrate(self.q0, self.v + dv)) / EPS
        assert np.allclose(space.d_integrate_dv(self.q0, self.v), numeric, atol=1e-5)

    def test_d_difference_dq0(self):
        space = self.space
        d = space.difference(self.q0, self.q1)
        numeric = np.zeros((space.nv, space.nv))
        for k in range(space.nv):
            dv = np.zeros(space.nv)
            dv[k] = EPS
            numeric[:, k] = (space.difference(space.integrate(self.q0, dv), self.q1) - d) / EPS
        assert np.allclose(space.d_difference_dq0(self.q0, self.q1), numeric, atol=1e-5)

    def test_d_difference_dq1(self):
        space = self.space
        d = space.difference(self.q0, self.q1)
        numeric = np.zeros((space.nv, space.nv))
        for k in range(space.nv):
            dv = np.zeros(space.nv)
            dv[k] = EPS
            numeric[:, k] = (space.difference(self.q0, space.integrate(self.q1, dv)) - d) / EPS
        assert np.allclose(space.d_difference_dq1(self.q0, self.q1), numeric, atol=1e-5)


class TestRightJacobian:

    @pytest.mark.parametrize('angle', [1e-3, 1.0, 3.0, np.pi])
    def test_inverse(self, angle):
        v = angle * np.array([0.0, 0.6, 0.8])
        inverse = right_jacobian_inverse(v)
        assert np.all(np.isfinite(inverse))
        assert np.allclose(right_jacobian(v) @ inverse, np.identity(3), atol=1e-9)

    def test_difference_of_opposite_rotations(self):
        space = LiegroupSpace.SO3()
        q1 = np.array([0.0, 0.0, 0.0, 1.0])
        jacobian = space.d_difference_dq1(space.neutral(), q1)
        assert np.all(np.isfinite(jacobian))
