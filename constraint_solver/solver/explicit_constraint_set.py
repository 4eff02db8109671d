"""
显式约束集合

维护一组输出互不重叠的显式约束，并按依赖关系（某约束的输入含另一约束的输出）
排成拓扑顺序，使得 solve(q) 依次计算每个输出时，其输入都已是最新值。
"""
import logging
from typing import List

import numpy as np

from ..constraints.explicit import Explicit
from ..model.liegroup import LiegroupSpace
from ..utils import segments as seg
from ..utils.segments import Segments

logger = logging.getLogger(__name__)


class CyclicDependencyError(ValueError):
    """显式约束之间的依赖形成环"""
    pass


class ExplicitConstraintSet:
    """
    显式约束集合

    :ivar config_space: 配置空间
    """

    def __init__(self, config_space: LiegroupSpace):
        self.config_space = config_space
        self._constraints: List[Explicit] = []
        self._order: List[int] = []

    def add(self, explicit: Explicit) -> int:
        """
        加入显式约束

        :return: 约束在集合中的下标；输出与已有输出重叠时返回 -1（未加入）
        :raises CyclicDependencyError: 加入后依赖关系出现环
        """
        if explicit.config_space != self.config_space:
            raise ValueError(f"Explicit constraint {explicit.name} is defined on "
                             f"{explicit.config_space.name}, expected {self.config_space.name}")
        for other in self._constraints:
            if other is explicit:
                return self._constraints.index(other)
            if (seg.overlap(explicit.output_conf(), other.output_conf())
                    or seg.overlap(explicit.output_velocity(), other.output_velocity())):
                logger.info("Output of %s already determined by %s", explicit.name, other.name)
                return -1
        candidates = self._constraints + [explicit]
        self._order = self._topological_order(candidates)
        self._constraints = candidates
        return len(candidates) - 1

    @staticmethod
    def _topological_order(constraints: List[Explicit]) -> List[int]:
        """Kahn 算法：i -> j 表示 j 的输入含 i 的输出"""
        n = len(constraints)
        successors = [[] for _ in range(n)]
        in_degree = [0] * n
        for i, ci in enumerate(constraints):
            for j, cj in enumerate(constraints):
                if i != j and seg.overlap(ci.output_conf(), cj.input_conf()):
                    successors[i].append(j)
                    in_degree[j] += 1
        ready = [i for i in range(n) if in_degree[i] == 0]
        order = []
        while ready:
            i = ready.pop(0)
            order.append(i)
            for j in successors[i]:
                in_degree[j] -= 1
                if in_degree[j] == 0:
                    ready.append(j)
        if len(order) != n:
            cycle = [constraints[i].name for i in range(n) if i not in order]
            raise CyclicDependencyError(f"Cyclic dependency between explicit constraints: {cycle}")
        return order

    def constraints(self) -> List[Explicit]:
        return list(self._constraints)

    def order(self) -> List[Explicit]:
        """按求值顺序排列的约束"""
        return [self._constraints[i] for i in self._order]

    def contains(self, constraint) -> bool:
        return any(c is constraint for c in self._constraints)

    def __len__(self):
        return len(self._constraints)

    def output_conf(self) -> Segments:
        result: Segments = []
        for c in self._constraints:
            result = seg.union(result, c.output_conf())
        return result

    def output_velocity(self) -> Segments:
        result: Segments = []
        for c in self._constraints:
            result = seg.union(result, c.output_velocity())
        return result

    def free_config_segments(self) -> Segments:
        return seg.complement(self.config_space.nq, self.output_conf())

    def free_velocity_segments(self) -> Segments:
        return seg.complement(self.config_space.nv, self.output_velocity())

    def solve(self, q: np.ndarray) -> bool:
        """
        按顺序计算所有输出变量（原地修改 q）
        """
        for constraint in self.order():
            q_in = seg.extract(q, constraint.input_conf())
            seg.assign(q, constraint.output_conf(), constraint.output_value(q_in))
        return True

    def is_satisfied(self, q: np.ndarray, error_threshold: float) -> bool:
        return all(c.is_satisfied(q, error_threshold)[0] for c in self._constraints)

    def jacobian_not_output(self, q: np.ndarray) -> np.ndarray:
        """
        完整速度对自由速度的雅可比 ∂q/∂q_free（nv x n_free）

        自由自由度对应单位阵；每个输出的行由其输入的行经 jacobian_output_value 链式得到。
        """
        free = seg.indices(self.free_velocity_segments())
        jacobian = np.zeros((self.config_space.nv, free.size))
        jacobian[free, np.arange(free.size)] = 1.0
        for constraint in self.order():
            q_in = seg.extract(q, constraint.input_conf())
            g_value = constraint.explicit_function().value(q_in)
            rows_in = seg.indices(constraint.input_velocity())
            rows_out = seg.indices(constraint.output_velocity())
            jacobian[rows_out, :] = constraint.jacobian_output_value(q_in, g_value) @ jacobian[rows_in, :]
        return jacobian

    def __str__(self):
        return '\n'.join(["Explicit constraint set:"] + [f"  {c}" for c in self.order()])
