"""
约束层 (Constraint Layer)
可微函数接口、隐式约束与显式约束

导出：
- DifferentiableFunction: 可微函数抽象基类
- AffineFunction / ConstantFunction / Quadratic / ConfigurationConstraint: 通用函数
- Position / Orientation / Transformation: 运动学模型上的坐标系函数
- ComparisonType / Implicit: 比较类型与隐式约束
- Explicit: 显式约束
"""

from .differentiable_function import (
    DifferentiableFunction,
    AffineFunction,
    ConstantFunction,
    Quadratic,
    ConfigurationConstraint
)
from .generic_transformation import Position, Orientation, Transformation
from .implicit import ComparisonType, Implicit
from .explicit import Explicit, ExplicitResidual

__all__ = [
    'DifferentiableFunction',
    'AffineFunction',
    'ConstantFunction',
    'Quadratic',
    'ConfigurationConstraint',
    'Position',
    'Orientation',
    'Transformation',
    'ComparisonType',
    'Implicit',
    'Explicit',
    'ExplicitResidual'
]
