"""
数据交换功能实现

- 骨骼（运动学模型）JSON 的读写
- 函数 / 约束 / 求解器的 JSON 持久化：每个对象带 "kind" 标签，每种类型在注册表中有一对
  (序列化, 反序列化) 函数；函数存放在 "functions" 数组中，约束按下标引用；
  运动学模型按名称引用，加载时由调用方提供 {名称: Device} 注册表解析
- 求解结果导出
"""
import json
import logging
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .constraints.differentiable_function import (
    DifferentiableFunction,
    AffineFunction,
    ConstantFunction,
    Quadratic,
    ConfigurationConstraint
)
from .constraints.explicit import Explicit
from .constraints.generic_transformation import Position, Orientation, Transformation
from .constraints.implicit import ComparisonType, Implicit
from .model.device import Device
from .model.joint import JointNode, RevoluteJoint, PrismaticJoint, FixedJoint, SphericalJoint
from .model.liegroup import LiegroupSpace
from .solver import saturation as saturation_module
from .solver.by_substitution import BySubstitution
from .solver.hierarchical_iterative import HierarchicalIterative
from .utils.segments import segments_from_list, segments_to_list

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

Devices = Dict[str, Device]


class SerializationError(ValueError):
    """JSON 文档内容不合法（未知类型、缺少引用等）"""
    pass


# ----------------------------------------------------------------------
# 骨骼
# ----------------------------------------------------------------------
def _limits(joint_data: Dict) -> Optional[Tuple[float, float]]:
    if joint_data.get('limits') is None:
        return None
    return tuple(joint_data['limits'])


def device_from_dict(data: Dict) -> Device:
    """
    由骨骼描述构建运动学模型

    :param data: {"name": str, "root_name": str, "joints": [{"name", "type", "offset", "parent", ...}]}
    """
    root_name = data['root_name']
    joints_data = data['joints']

    # 创建所有关节对象
    joint_map: Dict[str, JointNode] = {}
    for joint_data in joints_data:
        name = joint_data['name']
        joint_type = joint_data['type']
        offset = np.array(joint_data['offset'], dtype=np.float64)

        if joint_type == 'fixed':
            quat = None
            if joint_data.get('quaternion') is not None:
                quat = np.array(joint_data['quaternion'], dtype=np.float64)
            joint = FixedJoint(name, offset, quat)
        elif joint_type == 'revolute':
            axis = np.array(joint_data['axis'], dtype=np.float64)
            joint = RevoluteJoint(name, offset, axis, _limits(joint_data))
        elif joint_type == 'prismatic':
            axis = np.array(joint_data['axis'], dtype=np.float64)
            joint = PrismaticJoint(name, offset, axis, _limits(joint_data))
        elif joint_type == 'spherical':
            joint = SphericalJoint(name, offset)
        else:
            raise ValueError(f"Unknown joint type: {joint_type}")

        if name in joint_map:
            raise ValueError(f"Duplicate joint name: {name}")
        joint_map[name] = joint

    # 建立父子关系
    for joint_data in joints_data:
        name = joint_data['name']
        parent_name = joint_data.get('parent')
        if parent_name is not None:
            if parent_name not in joint_map:
                raise ValueError(f"Parent '{parent_name}' not found for joint '{name}'")
            joint_map[parent_name].add_child(joint_map[name])

    if root_name not in joint_map:
        raise ValueError(f"Root node '{root_name}' not found")
    return Device(data.get('name', root_name), joint_map[root_name])


def device_to_dict(device: Device) -> Dict:
    joints = []
    for joint in device.joints():
        joint_data = {
            'name': joint.name,
            'parent': None if joint.parent is None else joint.parent.name,
            'offset': joint.local_offset.tolist()
        }
        if isinstance(joint, FixedJoint):
            joint_data['type'] = 'fixed'
            joint_data['quaternion'] = joint.quaternion.tolist()
        elif isinstance(joint, (RevoluteJoint, PrismaticJoint)):
            joint_data['type'] = 'revolute' if isinstance(joint, RevoluteJoint) else 'prismatic'
            joint_data['axis'] = joint.axis.tolist()
            joint_data['limits'] = None if joint.limits is None else list(joint.limits)
        elif isinstance(joint, SphericalJoint):
            joint_data['type'] = 'spherical'
        else:
            raise SerializationError(f"Cannot serialize joint {joint.name} of type {type(joint).__name__}")
        joints.append(joint_data)
    return {'name': device.name, 'root_name': device.root.name, 'joints': joints}


def load_device(json_path: str) -> Device:
    """
    从 skeleton.json 加载骨骼定义，构建运动学模型

    :param json_path: skeleton.json 文件路径
    """
    with open(json_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return device_from_dict(data)


def save_device(device: Device, json_path: str):
    with open(json_path, 'w', encoding='utf-8') as f:
        json.dump(device_to_dict(device), f, indent=2, ensure_ascii=False)


# ----------------------------------------------------------------------
# 函数
# ----------------------------------------------------------------------
def _device(devices: Devices, name: str) -> Device:
    if name not in devices:
        raise SerializationError(f"Unknown device '{name}'")
    return devices[name]


def _frame_to_dict(function) -> Dict:
    data = {'name': function.name, 'device': function.device.name, 'joint': function.joint.name}
    if not isinstance(function, Orientation):
        data['local_point'] = function.local_point.tolist()
    return data


def _frame_from_dict(cls):
    def build(data: Dict, devices: Devices):
        device = _device(devices, data['device'])
        joint = device.get_joint_by_name(data['joint'])
        if cls is Orientation:
            return cls(data['name'], device, joint)
        return cls(data['name'], device, joint, np.array(data['local_point'], dtype=np.float64))
    return build


# kind -> (类型, 序列化, 反序列化)
_FUNCTION_SERIALIZERS: Dict[str, Tuple[type, Callable, Callable]] = {
    'AffineFunction': (
        AffineFunction,
        lambda f: {'name': f.name, 'A': f.A.tolist(), 'b': f.b.tolist()},
        lambda d, devices: AffineFunction(np.array(d['A'], dtype=np.float64),
                                          np.array(d['b'], dtype=np.float64), d['name'])
    ),
    'ConstantFunction': (
        ConstantFunction,
        lambda f: {'name': f.name, 'constant': f.constant.tolist(),
                   'input_size': f.input_size(), 'input_derivative_size': f.input_derivative_size(),
                   'output_space': f.output_space().to_list()},
        lambda d, devices: ConstantFunction(np.array(d['constant'], dtype=np.float64),
                                            d['input_size'], d['input_derivative_size'],
                                            LiegroupSpace.from_list(d['output_space']), d['name'])
    ),
    'Quadratic': (
        Quadratic,
        lambda f: {'name': f.name, 'A': f.A.tolist(), 'c': f.c},
        lambda d, devices: Quadratic(np.array(d['A'], dtype=np.float64), d['c'], d['name'])
    ),
    'ConfigurationConstraint': (
        ConfigurationConstraint,
        lambda f: {'name': f.name, 'space': f.space.to_list(), 'goal': f.goal.tolist(),
                   'mask': f.mask.astype(bool).tolist()},
        lambda d, devices: ConfigurationConstraint(d['name'], LiegroupSpace.from_list(d['space']),
                                                   np.array(d['goal'], dtype=np.float64), d['mask'])
    ),
    'Position': (Position, _frame_to_dict, _frame_from_dict(Position)),
    'Orientation': (Orientation, _frame_to_dict, _frame_from_dict(Orientation)),
    'Transformation': (Transformation, _frame_to_dict, _frame_from_dict(Transformation)),
}


def function_to_dict(function: DifferentiableFunction) -> Dict:
    for kind, (cls, to_dict, _) in _FUNCTION_SERIALIZERS.items():
        if type(function) is cls:
            data = to_dict(function)
            data['kind'] = kind
            return data
    raise SerializationError(f"No serializer registered for function {function.name} "
                             f"of type {type(function).__name__}")


def function_from_dict(data: Dict, devices: Optional[Devices] = None) -> DifferentiableFunction:
    kind = data.get('kind')
    if kind not in _FUNCTION_SERIALIZERS:
        raise SerializationError(f"Unknown function kind: {kind}")
    return _FUNCTION_SERIALIZERS[kind][2](data, devices or {})


class _FunctionArena:
    """序列化时去重：同一个函数对象只写一次"""

    def __init__(self):
        self.items: List[Dict] = []
        self._index: Dict[int, int] = {}

    def add(self, function: DifferentiableFunction) -> int:
        key = id(function)
        if key not in self._index:
            self._index[key] = len(self.items)
            self.items.append(function_to_dict(function))
        return self._index[key]


# ----------------------------------------------------------------------
# 约束
# ----------------------------------------------------------------------
def _constraint_to_dict(constraint: Implicit, arena: _FunctionArena) -> Dict:
    data = {
        'uid': constraint.uid,
        'comparison': [c.value for c in constraint.comparison_type()],
        'rhs': constraint.right_hand_side().tolist()
    }
    if isinstance(constraint, Explicit):
        data.update({
            'kind': 'Explicit',
            'config_space': constraint.config_space.to_list(),
            'function': arena.add(constraint.explicit_function()),
            'input_conf': segments_to_list(constraint.input_conf()),
            'output_conf': segments_to_list(constraint.output_conf()),
            'input_velocity': segments_to_list(constraint.input_velocity()),
            'output_velocity': segments_to_list(constraint.output_velocity())
        })
    else:
        data.update({'kind': 'Implicit', 'function': arena.add(constraint.function())})
    return data


def _constraint_from_dict(data: Dict, functions: List[DifferentiableFunction]) -> Implicit:
    index = data['function']
    if not 0 <= index < len(functions):
        raise SerializationError(f"Function index {index} out of range")
    comparison = [ComparisonType(c) for c in data.get('comparison', [])]
    kind = data.get('kind')
    if kind == 'Implicit':
        constraint = Implicit.create(functions[index], comparison)
    elif kind == 'Explicit':
        constraint = Explicit.create(LiegroupSpace.from_list(data['config_space']), functions[index],
                                     segments_from_list(data['input_conf']),
                                     segments_from_list(data['output_conf']),
                                     segments_from_list(data['input_velocity']),
                                     segments_from_list(data['output_velocity']),
                                     comparison)
    else:
        raise SerializationError(f"Unknown constraint kind: {kind}")
    if data.get('rhs') is not None:
        constraint.set_right_hand_side(np.array(data['rhs'], dtype=np.float64))
    if data.get('uid'):
        constraint.uid = data['uid']
    return constraint


def constraints_to_dict(constraints: List[Implicit]) -> Dict:
    arena = _FunctionArena()
    items = [_constraint_to_dict(c, arena) for c in constraints]
    return {'version': FORMAT_VERSION, 'functions': arena.items, 'constraints': items}


def constraints_from_dict(data: Dict, devices: Optional[Devices] = None) -> List[Implicit]:
    functions = [function_from_dict(f, devices) for f in data.get('functions', [])]
    return [_constraint_from_dict(c, functions) for c in data.get('constraints', [])]


def save_constraints(constraints: List[Implicit], json_path: str):
    with open(json_path, 'w', encoding='utf-8') as f:
        json.dump(constraints_to_dict(constraints), f, indent=2, ensure_ascii=False)


def load_constraints(json_path: str, devices: Optional[Devices] = None) -> List[Implicit]:
    with open(json_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return constraints_from_dict(data, devices)


# ----------------------------------------------------------------------
# 求解器
# ----------------------------------------------------------------------
def _saturation_to_dict(saturation) -> Dict:
    if isinstance(saturation, saturation_module.Device):
        return {'kind': 'Device', 'device': saturation.device.name}
    if isinstance(saturation, saturation_module.Bounds):
        return {'kind': 'Bounds',
                'lower': [float(x) if np.isfinite(x) else None for x in saturation.lower],
                'upper': [float(x) if np.isfinite(x) else None for x in saturation.upper],
                'config_indices': saturation.config_indices,
                'velocity_indices': saturation.velocity_indices}
    if isinstance(saturation, saturation_module.NoSaturation):
        return {'kind': 'NoSaturation'}
    raise SerializationError(f"No serializer registered for saturation {type(saturation).__name__}")


def _saturation_from_dict(data: Dict, devices: Devices):
    kind = data.get('kind')
    if kind == 'NoSaturation':
        return saturation_module.NoSaturation()
    if kind == 'Bounds':
        lower = [-np.inf if x is None else x for x in data['lower']]
        upper = [np.inf if x is None else x for x in data['upper']]
        return saturation_module.Bounds(lower, upper, data.get('config_indices'), data.get('velocity_indices'))
    if kind == 'Device':
        return saturation_module.Device(_device(devices, data['device']))
    raise SerializationError(f"Unknown saturation kind: {kind}")


_SOLVER_KINDS = {
    'HierarchicalIterative': HierarchicalIterative,
    'BySubstitution': BySubstitution,
}


def solver_to_dict(solver: HierarchicalIterative) -> Dict:
    """
    求解器文档：参数 + 饱和策略 + 按优先级排列的约束
    """
    kind = type(solver).__name__
    if kind not in _SOLVER_KINDS:
        raise SerializationError(f"No serializer registered for solver {kind}")
    constraints: List[Implicit] = []
    priorities: List[int] = []
    if isinstance(solver, BySubstitution):
        explicit = solver.explicit_constraint_set().constraints()
        constraints.extend(explicit)
        priorities.extend([0] * len(explicit))
    for level in range(solver.number_stacks()):
        stack = solver.stack(level)
        constraints.extend(stack)
        priorities.extend([level] * len(stack))
    data = constraints_to_dict(constraints)
    for item, priority in zip(data['constraints'], priorities):
        item['priority'] = priority
    data.update({
        'kind': kind,
        'config_space': solver.config_space.to_list(),
        'max_iterations': solver.max_iterations,
        'error_threshold': solver.error_threshold,
        'max_error_increases': solver.max_error_increases,
        'svd_threshold': solver.svd_threshold,
        'last_is_optional': solver.last_is_optional,
        'saturation': _saturation_to_dict(solver.saturation)
    })
    return data


def solver_from_dict(data: Dict, devices: Optional[Devices] = None) -> HierarchicalIterative:
    devices = devices or {}
    kind = data.get('kind')
    if kind not in _SOLVER_KINDS:
        raise SerializationError(f"Unknown solver kind: {kind}")
    solver = _SOLVER_KINDS[kind](LiegroupSpace.from_list(data['config_space']))
    solver.max_iterations = data.get('max_iterations', solver.max_iterations)
    solver.error_threshold = data.get('error_threshold', solver.error_threshold)
    solver.max_error_increases = data.get('max_error_increases', solver.max_error_increases)
    solver.svd_threshold = data.get('svd_threshold', solver.svd_threshold)
    solver.last_is_optional = data.get('last_is_optional', False)
    if data.get('saturation') is not None:
        solver.saturation = _saturation_from_dict(data['saturation'], devices)
    constraints = constraints_from_dict(data, devices)
    for item, constraint in zip(data.get('constraints', []), constraints):
        solver.add(constraint, item.get('priority', 0))
    logger.debug("Loaded %s with %d constraints", kind, len(constraints))
    return solver


def save_solver(solver: HierarchicalIterative, json_path: str):
    with open(json_path, 'w', encoding='utf-8') as f:
        json.dump(solver_to_dict(solver), f, indent=2, ensure_ascii=False)


def load_solver(json_path: str, devices: Optional[Devices] = None) -> HierarchicalIterative:
    with open(json_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return solver_from_dict(data, devices)


# ----------------------------------------------------------------------
# 结果导出
# ----------------------------------------------------------------------
def joint_states(device: Device, q: np.ndarray) -> Dict[str, Dict]:
    """
    按关节拆分配置向量

    :return: 关节名称 -> {"type": ..., "angle" / "displacement" / "quaternion": ...}
    """
    states = {}
    for joint in device.joints():
        if isinstance(joint, FixedJoint):
            continue  # FixedJoint 不参与导出
        iq = joint.rank_in_configuration
        if isinstance(joint, RevoluteJoint):
            states[joint.name] = {'type': 'revolute', 'angle': float(q[iq])}
        elif isinstance(joint, PrismaticJoint):
            states[joint.name] = {'type': 'prismatic', 'displacement': float(q[iq])}
        elif isinstance(joint, SphericalJoint):
            states[joint.name] = {'type': 'spherical',
                                  'quaternion': [float(x) for x in q[iq:iq + 4]]}
    return states


def export_result(result: Dict, output_path: str):
    """
    导出求解结果 JSON
    """
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(result, f, indent=2, ensure_ascii=False)
