"""
Tests for JSON persistence and the command line runner.
"""

import json

import numpy as np
import pytest

from constraint_solver.constraints import (
    AffineFunction,
    ComparisonType,
    ConfigurationConstraint,
    Explicit,
    Implicit,
    Quadratic,
    Transformation
)
from constraint_solver.data_io import (
    SerializationError,
    constraints_from_dict,
    constraints_to_dict,
    device_from_dict,
    device_to_dict,
    function_from_dict,
    load_constraints,
    load_device,
    load_solver,
    save_constraints,
    save_device,
    save_solver,
    solver_from_dict,
    solver_to_dict
)
from constraint_solver.model.liegroup import LiegroupSpace
from constraint_solver.run_solver import run_solver
from constraint_solver.solver import BySubstitution, Bounds, HierarchicalIterative, Status, saturation


class TestDevice:

    def test_round_trip(self, arm, tmp_path):
        path = tmp_path / 'skeleton.json'
        path.write_text(json.dumps(device_to_dict(arm)))
        loaded = load_device(str(path))
        assert loaded.name == 'arm'
        assert [j.name for j in loaded.joints()] == [j.name for j in arm.joints()]
        q = arm.random_configuration(np.random.default_rng(5))
        assert np.allclose(loaded.forward_kinematics(q).transforms['tool'],
                           arm.forward_kinematics(q).transforms['tool'])

    def test_save_device(self, arm, tmp_path):
        path = tmp_path / 'arm.json'
        save_device(arm, str(path))
        assert load_device(str(path)).config_space() == arm.config_space()

    def test_unknown_joint_type(self, skeleton):
        data = json.loads(json.dumps(skeleton))
        data['joints'][1]['type'] = 'helical'
        with pytest.raises(ValueError):
            device_from_dict(data)

    def test_missing_parent(self, skeleton):
        data = json.loads(json.dumps(skeleton))
        data['joints'][2]['parent'] = 'nowhere'
        with pytest.raises(ValueError):
            device_from_dict(data)


class TestConstraints:

    def test_shared_function_is_stored_once(self):
        f = Quadratic(np.identity(2), -1.0)
        data = constraints_to_dict([Implicit.create(f), Implicit.create(f)])
        assert len(data['functions']) == 1
        assert [c['function'] for c in data['constraints']] == [0, 0]
        loaded = constraints_from_dict(data)
        assert loaded[0].function() is loaded[1].function()

    def test_round_trip(self, arm, tmp_path):
        space = LiegroupSpace.Rn(3)
        implicit = Implicit.create(AffineFunction(np.array([[1.0, 2.0, 0.0]]), np.array([0.5])),
                                   [ComparisonType.EQUALITY])
        implicit.set_right_hand_side(np.array([0.25]))
        explicit = Explicit.create(space, AffineFunction(np.array([[1.0, -1.0]])),
                                   [(0, 2)], [(2, 1)], [(0, 2)], [(2, 1)])
        tool = Implicit.create(Transformation('tool', arm, arm.get_joint_by_name('tool'), np.array([0.0, 0.0, 0.1])),
                               ComparisonType.n_times(6, ComparisonType.EQUALITY))
        tool.right_hand_side_from_config(arm.neutral_configuration())
        goal = Implicit.create(ConfigurationConstraint('goal', arm.config_space(), arm.neutral_configuration(),
                                                       [True, False]),
                               [ComparisonType.INFERIOR])

        path = tmp_path / 'constraints.json'
        save_constraints([implicit, explicit, tool, goal], str(path))
        loaded = load_constraints(str(path), {'arm': arm})

        assert [type(c) for c in loaded] == [Implicit, Explicit, Implicit, Implicit]
        assert [c.uid for c in loaded] == [implicit.uid, explicit.uid, tool.uid, goal.uid]
        assert loaded[0].right_hand_side().tolist() == [0.25]
        assert loaded[1].output_conf() == [(2, 1)]
        assert loaded[3].comparison_type() == [ComparisonType.INFERIOR]
        q = arm.random_configuration(np.random.default_rng(2))
        assert np.allclose(loaded[2].error(q), tool.error(q))
        assert np.allclose(loaded[3].function().value(q), goal.function().value(q))

    def test_unknown_device(self, arm):
        data = constraints_to_dict([Implicit.create(Transformation('tool', arm, arm.get_joint_by_name('tool')))])
        with pytest.raises(SerializationError):
            constraints_from_dict(data, {})

    def test_unknown_kind(self):
        with pytest.raises(SerializationError):
            function_from_dict({'kind': 'Spline'})


class TestSolver:

    def test_round_trip(self, tmp_path):
        space = LiegroupSpace.Rn(3)
        solver = BySubstitution(space)
        solver.add(Explicit.create(space, AffineFunction(np.ones((1, 2))), [(0, 2)], [(2, 1)], [(0, 2)], [(2, 1)]))
        solver.add(Implicit.create(AffineFunction(np.array([[0.0, 0.0, 1.0]]), np.array([-1.0]))), 0)
        solver.add(Implicit.create(Quadratic(np.identity(3))), 1)
        solver.last_is_optional = True
        solver.max_iterations = 7
        solver.saturation = Bounds([0.0, -np.inf], [1.0, 2.0])

        path = tmp_path / 'problem.json'
        save_solver(solver, str(path))
        loaded = load_solver(str(path))

        assert isinstance(loaded, BySubstitution)
        assert loaded.max_iterations == 7
        assert loaded.last_is_optional
        assert loaded.number_stacks() == 2
        assert len(loaded.explicit_constraint_set()) == 1
        assert loaded.free_velocity_segments() == [(0, 2)]
        assert loaded.saturation.variable_bounds() == solver.saturation.variable_bounds()

        q = np.zeros(3)
        assert loaded.solve(q) == Status.SUCCESS
        assert q[2] == pytest.approx(1.0)

    def test_device_saturation(self, arm):
        solver = HierarchicalIterative(arm.config_space())
        solver.saturation = saturation.Device(arm)
        loaded = solver_from_dict(solver_to_dict(solver), {'arm': arm})
        assert loaded.saturation.variable_bounds() == solver.saturation.variable_bounds()

    def test_unknown_solver_kind(self):
        with pytest.raises(SerializationError):
            solver_from_dict({'kind': 'Gradient', 'config_space': [['R', 1]]})


class TestRunSolver:
    """Headless runner: config file -> result file."""

    def _write_problem(self, arm, arm_configuration, tmp_path):
        space = arm.config_space()
        solver = HierarchicalIterative(space)
        tool = Implicit.create(Transformation('tool', arm, arm.get_joint_by_name('tool')),
                               ComparisonType.n_times(6, ComparisonType.EQUALITY))
        solver.add(tool)
        solver.saturation = saturation.Device(arm)
        solver.right_hand_side_from_config(arm_configuration)
        save_solver(solver, str(tmp_path / 'problem.json'))
        (tmp_path / 'skeleton.json').write_text(json.dumps(device_to_dict(arm)))

    def test_run(self, arm, arm_configuration, tmp_path, capsys):
        self._write_problem(arm, arm_configuration, tmp_path)
        start = arm.config_space().integrate(arm_configuration, np.full(6, 0.02))
        config = {
            'skeleton_path': str(tmp_path / 'skeleton.json'),
            'problem_path': str(tmp_path / 'problem.json'),
            'output_path': str(tmp_path / 'out' / 'result.json'),
            'initial_configuration': start.tolist(),
            'line_search': 'Backtracking',
            'max_iterations': 50
        }
        config_path = tmp_path / 'config.json'
        config_path.write_text(json.dumps(config))

        result = run_solver(str(config_path))
        assert result['status'] == 'SUCCESS'
        written = json.loads((tmp_path / 'out' / 'result.json').read_text())
        assert written['satisfied']
        assert written['joints']['slider']['type'] == 'prismatic'
        assert len(written['joints']['wrist']['quaternion']) == 4
        assert 'tool' not in written['joints']
        assert 'SUCCESS' in capsys.readouterr().out

    def test_missing_config(self, tmp_path):
        assert run_solver(str(tmp_path / 'missing.json')) is None

    def test_unknown_line_search(self, arm, arm_configuration, tmp_path):
        self._write_problem(arm, arm_configuration, tmp_path)
        config = {
            'skeleton_path': str(tmp_path / 'skeleton.json'),
            'problem_path': str(tmp_path / 'problem.json'),
            'line_search': 'Newton'
        }
        config_path = tmp_path / 'config.json'
        config_path.write_text(json.dumps(config))
        assert run_solver(str(config_path)) is None
