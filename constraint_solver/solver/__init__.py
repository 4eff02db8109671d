"""
求解层 (Solver Layer)
分层迭代求解、饱和策略、线搜索以及显式约束替换

导出：
- HierarchicalIterative / Status: 分层迭代求解器及求解状态
- BySubstitution: 显式约束替换求解器
- ExplicitConstraintSet / CyclicDependencyError: 显式约束集合
- Saturation / NoSaturation / Bounds: 饱和策略（关节限位见 saturation.Device）
- LineSearch / Constant / Backtracking / ErrorNormBased / FixedSequence: 线搜索策略
"""

from .hierarchical_iterative import HierarchicalIterative, Status
from .by_substitution import BySubstitution
from .explicit_constraint_set import ExplicitConstraintSet, CyclicDependencyError
from .saturation import Saturation, NoSaturation, Bounds
from .line_search import (
    LineSearch,
    Constant,
    Backtracking,
    ErrorNormBased,
    FixedSequence
)
from . import saturation

__all__ = [
    'HierarchicalIterative',
    'Status',
    'BySubstitution',
    'ExplicitConstraintSet',
    'CyclicDependencyError',
    'Saturation',
    'NoSaturation',
    'Bounds',
    'LineSearch',
    'Constant',
    'Backtracking',
    'ErrorNormBased',
    'FixedSequence',
    'saturation'
]
