"""
替换法求解器 (By substitution)

显式约束的输出变量不参与牛顿迭代：迭代只在自由自由度上进行，
隐式约束的雅可比通过显式映射链式约化到自由自由度，每次积分之后重新计算输出变量。
"""
import logging
from typing import Dict, List, Optional
from typing_extensions import override

import numpy as np

from ..constraints.explicit import Explicit
from ..constraints.implicit import Implicit
from ..model.liegroup import LiegroupSpace
from .explicit_constraint_set import ExplicitConstraintSet
from .hierarchical_iterative import HierarchicalIterative, Status
from .line_search import LineSearch

logger = logging.getLogger(__name__)


class BySubstitution(HierarchicalIterative):
    """
    带显式约束替换的分层迭代求解器
    """

    def __init__(self, config_space: LiegroupSpace):
        super().__init__(config_space)
        self._explicit = ExplicitConstraintSet(config_space)

    def explicit_constraint_set(self) -> ExplicitConstraintSet:
        return self._explicit

    @override
    def add(self, constraint: Implicit, priority: int = 0) -> bool:
        """
        显式约束放入显式集合；其输出已被其他显式约束确定时，退化为隐式约束加入第 priority 层

        :raises CyclicDependencyError: 显式约束之间出现循环依赖
        """
        if self.contains(constraint):
            logger.warning("Constraint %s already in solver", constraint.name)
            return False
        if isinstance(constraint, Explicit):
            if self._explicit.add(constraint) >= 0:
                self._set_free_velocity(self._explicit.free_velocity_segments())
                return True
            logger.info("Explicit constraint %s handled as implicit", constraint.name)
        return super().add(constraint, priority)

    @override
    def contains(self, constraint: Implicit) -> bool:
        return self._explicit.contains(constraint) or super().contains(constraint)

    @override
    def constraints(self) -> List[Implicit]:
        return self._explicit.constraints() + super().constraints()

    @override
    def _reduction(self, q: np.ndarray) -> Optional[np.ndarray]:
        if len(self._explicit) == 0:
            return None
        return self._explicit.jacobian_not_output(q)

    @override
    def integrate(self, q: np.ndarray, dq: np.ndarray,
                  clipped: Optional[Dict[int, float]] = None) -> np.ndarray:
        q_new = super().integrate(q, dq, clipped)
        self._explicit.solve(q_new)
        return q_new

    @override
    def solve(self, q: np.ndarray, line_search: Optional[LineSearch] = None) -> Status:
        """
        先由显式约束计算输出变量，再在自由自由度上迭代
        """
        if not isinstance(q, np.ndarray) or q.shape != (self.config_space.nq,):
            raise ValueError(f"Configuration must be a numpy array of size {self.config_space.nq}")
        self._explicit.solve(q)
        return super().solve(q, line_search)

    @override
    def __str__(self):
        return super().__str__() + '\n' + str(self._explicit)
