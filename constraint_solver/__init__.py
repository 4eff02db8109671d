"""
分层约束求解器

在由 R^n 与 SO(3) 组成的配置空间上，按优先级求解隐式 / 显式约束：
- model: 配置空间（李群）与运动学模型
- constraints: 可微函数、隐式约束、显式约束
- solver: 分层迭代求解器、替换法求解器、饱和策略与线搜索
- data_io: JSON 持久化
"""

from .model import LiegroupSpace, Device
from .constraints import ComparisonType, Implicit, Explicit
from .solver import HierarchicalIterative, BySubstitution, Status

__version__ = "0.1.0"

__all__ = [
    'LiegroupSpace',
    'Device',
    'ComparisonType',
    'Implicit',
    'Explicit',
    'HierarchicalIterative',
    'BySubstitution',
    'Status'
]
