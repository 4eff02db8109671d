"""
Tests for the explicit constraint set and the by-substitution solver.
"""

import numpy as np
import pytest

from conftest import Coordinate, RotationVector, ZRotation
from constraint_solver.constraints import (
    AffineFunction,
    ComparisonType,
    Explicit,
    Implicit,
    Position
)
from constraint_solver.model.liegroup import LiegroupSpace
from constraint_solver.solver import (
    BySubstitution,
    Bounds,
    CyclicDependencyError,
    ExplicitConstraintSet,
    Status
)


def _sum_explicit(space, inputs, output):
    """q[output] = sum of q[inputs]."""
    n = sum(length for _, length in inputs)
    return Explicit.create(space, AffineFunction(np.ones((1, n)), name=f'sum->{output}'),
                           inputs, [(output, 1)], inputs, [(output, 1)])


class TestExplicitConstraintSet:

    def test_free_variables(self):
        space = LiegroupSpace.Rn(4)
        explicit_set = ExplicitConstraintSet(space)
        assert explicit_set.add(_sum_explicit(space, [(0, 2)], 2)) == 0
        assert explicit_set.free_velocity_segments() == [(0, 2), (3, 1)]
        assert explicit_set.output_conf() == [(2, 1)]
        assert explicit_set.free_config_segments() == [(0, 2), (3, 1)]

    def test_overlapping_output_is_rejected(self):
        space = LiegroupSpace.Rn(4)
        explicit_set = ExplicitConstraintSet(space)
        explicit_set.add(_sum_explicit(space, [(0, 2)], 2))
        assert explicit_set.add(_sum_explicit(space, [(3, 1)], 2)) == -1
        assert len(explicit_set) == 1

    def test_cycle(self):
        space = LiegroupSpace.Rn(3)
        explicit_set = ExplicitConstraintSet(space)
        explicit_set.add(_sum_explicit(space, [(0, 1)], 1))
        explicit_set.add(_sum_explicit(space, [(1, 1)], 2))
        with pytest.raises(CyclicDependencyError):
            explicit_set.add(_sum_explicit(space, [(2, 1)], 0))
        assert len(explicit_set) == 2

    def test_solve_in_dependency_order(self):
        space = LiegroupSpace.Rn(4)
        explicit_set = ExplicitConstraintSet(space)
        # q3 = q2 依赖于 q2 = q0 + q1，按相反顺序加入
        explicit_set.add(_sum_explicit(space, [(2, 1)], 3))
        explicit_set.add(_sum_explicit(space, [(0, 2)], 2))
        assert [c.output_conf() for c in explicit_set.order()] == [[(2, 1)], [(3, 1)]]
        q = np.array([1.0, 2.0, 0.0, 0.0])
        explicit_set.solve(q)
        assert q.tolist() == [1.0, 2.0, 3.0, 3.0]
        assert explicit_set.is_satisfied(q, 1e-12)

    def test_jacobian_not_output(self):
        space = LiegroupSpace.Rn(4)
        explicit_set = ExplicitConstraintSet(space)
        explicit_set.add(_sum_explicit(space, [(2, 1)], 3))
        explicit_set.add(_sum_explicit(space, [(0, 2)], 2))
        jacobian = explicit_set.jacobian_not_output(np.zeros(4))
        assert jacobian.tolist() == [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0], [1.0, 1.0]]

    def test_jacobian_not_output_so3(self):
        space = LiegroupSpace.Rn(1) * LiegroupSpace.SO3()
        explicit_set = ExplicitConstraintSet(space)
        c = Explicit.create(space, ZRotation(), [(0, 1)], [(1, 4)], [(0, 1)], [(1, 3)],
                            ComparisonType.n_times(3, ComparisonType.EQUALITY))
        c.set_right_hand_side(np.array([0.1, 0.2, -0.3]))
        explicit_set.add(c)
        q = np.array([0.4, 1.0, 0.0, 0.0, 0.0])
        explicit_set.solve(q)
        eps = 1e-6
        q_eps = q.copy()
        q_eps[0] += eps
        explicit_set.solve(q_eps)
        numeric = space.difference(q, q_eps) / eps
        assert np.allclose(explicit_set.jacobian_not_output(q)[:, 0], numeric, atol=1e-5)


class TestBySubstitution:

    def test_euclidean_output(self):
        space = LiegroupSpace.Rn(3)
        solver = BySubstitution(space)
        explicit = _sum_explicit(space, [(0, 2)], 2)
        solver.add(explicit)
        solver.add(Implicit.create(AffineFunction(np.array([[0.0, 0.0, 1.0]]), np.array([-1.0]))))
        assert solver.free_velocity_segments() == [(0, 2)]
        assert solver.contains(explicit)
        assert solver.constraints()[0] is explicit

        q = np.zeros(3)
        assert solver.solve(q) == Status.SUCCESS
        assert q[2] == pytest.approx(1.0)
        assert q[2] == pytest.approx(q[0] + q[1])
        assert solver.is_satisfied(q)[0]

    def test_so3_output(self):
        # q = (t, s, R)，R 由 t 显式确定，隐式约束要求 R 绕 z 转 0.6，s = 0.2
        space = LiegroupSpace.Rn(2) * LiegroupSpace.SO3()
        solver = BySubstitution(space)
        solver.add(Explicit.create(space, ZRotation(), [(0, 1)], [(2, 4)], [(0, 1)], [(2, 3)]))
        rotation = Implicit.create(RotationVector(space, 2, 2), ComparisonType.n_times(3, ComparisonType.EQUALITY))
        rotation.set_right_hand_side(np.array([0.0, 0.0, 0.6]))
        solver.add(rotation)
        coordinate = Implicit.create(Coordinate(space, 1, 1), [ComparisonType.EQUALITY])
        coordinate.set_right_hand_side(np.array([0.2]))
        solver.add(coordinate)

        q = space.neutral()
        assert solver.solve(q) == Status.SUCCESS
        assert q[0] == pytest.approx(0.6, abs=1e-4)
        assert q[1] == pytest.approx(0.2, abs=1e-4)
        assert np.allclose(q[2:], [np.cos(0.3), 0.0, 0.0, np.sin(0.3)], atol=1e-4)

    def test_overlapping_explicit_falls_back_to_implicit(self):
        space = LiegroupSpace.Rn(3)
        solver = BySubstitution(space)
        first = _sum_explicit(space, [(0, 1)], 2)
        second = Explicit.create(space, AffineFunction(np.array([[1.0]]), np.array([-0.5]), name='second'),
                                 [(1, 1)], [(2, 1)], [(1, 1)], [(2, 1)])
        solver.add(first)
        solver.add(second)
        assert solver.explicit_constraint_set().constraints() == [first]
        assert solver.number_stacks() == 1

        q = np.array([0.3, 0.0, 0.0])
        assert solver.solve(q) == Status.SUCCESS
        # q2 = q0 = q1 - 0.5
        assert q[2] == pytest.approx(q[0])
        assert q[2] == pytest.approx(q[1] - 0.5, abs=1e-4)

    @pytest.mark.parametrize('target, expected', [(0.4, Status.SUCCESS), (0.9, Status.INFEASIBLE)])
    def test_explicit_output_bounds(self, target, expected):
        # x1 = 2 x0 由显式约束决定，不经过裁剪
        space = LiegroupSpace.Rn(2)
        solver = BySubstitution(space)
        solver.add(Explicit.create(space, AffineFunction(np.array([[2.0]])), [(0, 1)], [(1, 1)], [(0, 1)], [(1, 1)]))
        solver.add(Implicit.create(AffineFunction(np.array([[1.0, 0.0]]), np.array([-target]))))
        solver.saturation = Bounds([0.0, 0.0], [1.0, 1.0])
        q = np.zeros(2)
        assert solver.solve(q) == expected
        assert q == pytest.approx([target, 2.0 * target])
        assert solver.saturation.is_within_bounds(q) == (expected == Status.SUCCESS)

    def test_cyclic_explicit_raises(self):
        space = LiegroupSpace.Rn(2)
        solver = BySubstitution(space)
        solver.add(_sum_explicit(space, [(0, 1)], 1))
        with pytest.raises(CyclicDependencyError):
            solver.add(_sum_explicit(space, [(1, 1)], 0))

    def test_right_hand_side_from_config_includes_explicit(self):
        space = LiegroupSpace.Rn(2)
        solver = BySubstitution(space)
        explicit = Explicit.create(space, AffineFunction(np.array([[2.0]])), [(0, 1)], [(1, 1)],
                                   [(0, 1)], [(1, 1)], [ComparisonType.EQUALITY])
        solver.add(explicit)
        q = np.array([1.0, 5.0])
        solver.right_hand_side_from_config(q)
        assert explicit.right_hand_side().tolist() == [3.0]
        assert solver.is_satisfied(q)[0]
        q = np.array([2.0, 0.0])
        assert solver.solve(q) == Status.SUCCESS
        assert q.tolist() == [2.0, 7.0]

    def test_device_position_with_explicit_slider(self, arm, arm_configuration):
        # 滑块位置由肘关节角度显式决定，末端位置由隐式约束固定
        space = arm.config_space()
        solver = BySubstitution(space)
        slider = Explicit.create(space, AffineFunction(np.array([[0.1]]), np.array([0.05])),
                                 [(1, 1)], [(2, 1)], [(1, 1)], [(2, 1)])
        solver.add(slider)
        position = Implicit.create(Position('p', arm, arm.get_joint_by_name('tool')),
                                   ComparisonType.n_times(3, ComparisonType.EQUALITY))
        solver.add(position)
        q_goal = arm_configuration.copy()
        slider_value = slider.output_value(q_goal[1:2])
        q_goal[2] = slider_value[0]
        solver.right_hand_side_from_config(q_goal)

        q = space.integrate(q_goal, np.array([0.05, -0.05, 0.0, 0.02, 0.0, 0.02]))
        solver.max_iterations = 50
        assert solver.solve(q) == Status.SUCCESS
        assert q[2] == pytest.approx(0.1 * q[1] + 0.05)
        assert solver.is_satisfied(q)[0]
