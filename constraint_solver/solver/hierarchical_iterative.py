"""
分层迭代求解器 (Hierarchical iterative solver)

约束按优先级分组为若干层（stack），层 0 优先级最高。每次迭代：

1. 计算各层误差和雅可比（只对自由自由度）；
2. 锁定已饱和且步长仍向外推的自由度；
3. 逐层 SVD 零空间投影求步长：低优先级层只在高优先级层的零空间内作用；
4. 最后一层可选时，只在不增大必需层误差的情况下采用它的贡献；
5. 逐自由度裁剪速度，使配置不越界；
6. 线搜索得到步长 alpha；
7. 在配置空间上积分，被裁剪的变量精确落在界上；
8. 收敛 / 误差增大 / 迭代次数 / 不可行 判断。
"""
import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..constraints.implicit import Implicit
from ..model.liegroup import LiegroupSpace
from ..utils import segments as seg
from ..utils.segments import Segments
from .line_search import Constant, LineSearch
from .saturation import NoSaturation, Saturation

logger = logging.getLogger(__name__)


class Status(Enum):
    SUCCESS = 'success'
    MAX_ITERATION_REACHED = 'max_iteration_reached'
    ERROR_INCREASED = 'error_increased'
    INFEASIBLE = 'infeasible'


class HierarchicalIterative:
    """
    分层迭代求解器

    :ivar config_space: 配置空间
    :ivar iterations: 上一次 solve 的迭代次数
    """

    # 可选层步长缩放的下限
    _min_optional_scale = 2.0 ** -40
    _bounds_tolerance = 1e-12

    def __init__(self, config_space: LiegroupSpace):
        self.config_space = config_space
        self._stacks: List[List[Implicit]] = []
        self._max_iterations = 20
        self._error_threshold = 1e-4
        self._max_error_increases = 3
        self._svd_threshold = 1e-8
        self._last_is_optional = False
        self._saturation: Saturation = NoSaturation()
        self._squared_error = 0.0
        self.iterations = 0
        self._set_free_velocity([(0, config_space.nv)] if config_space.nv > 0 else [])

    # ------------------------------------------------------------------
    # 组装
    # ------------------------------------------------------------------
    def add(self, constraint: Implicit, priority: int = 0) -> bool:
        """
        把约束加入第 priority 层

        :return: False 表示约束已存在（同一对象），未重复加入
        """
        if priority < 0:
            raise ValueError(f"Priority must be non-negative, got {priority}")
        function = constraint.function()
        if (function.input_size() != self.config_space.nq
                or function.input_derivative_size() != self.config_space.nv):
            raise ValueError(f"Constraint {constraint.name}: function input sizes "
                             f"({function.input_size()}, {function.input_derivative_size()}) do not match "
                             f"configuration space {self.config_space.name} "
                             f"({self.config_space.nq}, {self.config_space.nv})")
        if self.contains(constraint):
            logger.warning("Constraint %s already in solver", constraint.name)
            return False
        while len(self._stacks) <= priority:
            self._stacks.append([])
        self._stacks[priority].append(constraint)
        return True

    def contains(self, constraint: Implicit) -> bool:
        return any(c is constraint for stack in self._stacks for c in stack)

    def constraints(self) -> List[Implicit]:
        """按优先级顺序列出所有约束"""
        return [c for stack in self._stacks for c in stack]

    def stack(self, priority: int) -> List[Implicit]:
        return list(self._stacks[priority])

    def number_stacks(self) -> int:
        return len(self._stacks)

    # ------------------------------------------------------------------
    # 参数
    # ------------------------------------------------------------------
    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int):
        if value < 0:
            raise ValueError(f"max_iterations must be non-negative, got {value}")
        self._max_iterations = int(value)

    @property
    def error_threshold(self) -> float:
        return self._error_threshold

    @error_threshold.setter
    def error_threshold(self, value: float):
        if value <= 0:
            raise ValueError(f"error_threshold must be positive, got {value}")
        self._error_threshold = float(value)

    @property
    def max_error_increases(self) -> int:
        return self._max_error_increases

    @max_error_increases.setter
    def max_error_increases(self, value: int):
        if value < 1:
            raise ValueError(f"max_error_increases must be at least 1, got {value}")
        self._max_error_increases = int(value)

    @property
    def svd_threshold(self) -> float:
        return self._svd_threshold

    @svd_threshold.setter
    def svd_threshold(self, value: float):
        if value < 0:
            raise ValueError(f"svd_threshold must be non-negative, got {value}")
        self._svd_threshold = float(value)

    @property
    def last_is_optional(self) -> bool:
        return self._last_is_optional

    @last_is_optional.setter
    def last_is_optional(self, value: bool):
        self._last_is_optional = bool(value)

    @property
    def saturation(self) -> Saturation:
        return self._saturation

    @saturation.setter
    def saturation(self, value: Optional[Saturation]):
        self._saturation = NoSaturation() if value is None else value

    # ------------------------------------------------------------------
    # 右端项与满足性
    # ------------------------------------------------------------------
    def right_hand_side_from_config(self, q: np.ndarray):
        """令所有约束的右端项取 q 处的值，使 q 恰好满足全部约束"""
        q = np.asarray(q, dtype=np.float64)
        for constraint in self.constraints():
            constraint.right_hand_side_from_config(q)

    def right_hand_side(self) -> List[np.ndarray]:
        return [c.right_hand_side() for c in self.constraints()]

    def is_satisfied(self, q: np.ndarray, error_threshold: Optional[float] = None) -> Tuple[bool, np.ndarray]:
        """
        逐个约束检查 q 是否满足（不修改 q）

        :return: (是否全部满足, 所有约束误差拼接成的向量)
        """
        threshold = self._error_threshold if error_threshold is None else error_threshold
        q = np.asarray(q, dtype=np.float64)
        satisfied = True
        errors = []
        for constraint in self.constraints():
            ok, error = constraint.is_satisfied(q, threshold)
            satisfied = satisfied and ok
            errors.append(error)
        return satisfied, (np.concatenate(errors) if errors else np.zeros(0))

    # ------------------------------------------------------------------
    # 自由自由度
    # ------------------------------------------------------------------
    def _set_free_velocity(self, free: Segments):
        self._free_velocity: Segments = seg.shrink(free)
        self._free_indices = seg.indices(self._free_velocity)
        self._free_mask = seg.to_mask(self.config_space.nv, self._free_velocity)

    def free_velocity_segments(self) -> Segments:
        """迭代所作用的速度自由度"""
        return list(self._free_velocity)

    def number_free_variables(self) -> int:
        return int(self._free_indices.size)

    def _reduction(self, q: np.ndarray) -> Optional[np.ndarray]:
        """完整速度对自由速度的雅可比；None 表示直接按列选取"""
        return None

    def integrate(self, q: np.ndarray, dq: np.ndarray,
                  clipped: Optional[Dict[int, float]] = None) -> np.ndarray:
        """
        q ⊕ dq，dq 只含自由自由度；返回新配置，不修改 q

        :param clipped: 需要精确放在界上的 {配置索引: 界}
        """
        velocity = np.zeros(self.config_space.nv)
        velocity[self._free_indices] = dq
        q_new = self.config_space.integrate(q, velocity)
        if clipped:
            for iq, bound in clipped.items():
                q_new[iq] = bound
        return q_new

    # ------------------------------------------------------------------
    # 误差
    # ------------------------------------------------------------------
    def _number_mandatory_stacks(self) -> int:
        n = len(self._stacks)
        return n - 1 if (self._last_is_optional and n > 0) else n

    def _stack_error(self, stack: List[Implicit], q: np.ndarray) -> np.ndarray:
        if not stack:
            return np.zeros(0)
        return np.concatenate([c.error(q) for c in stack])

    def _evaluate(self, q: np.ndarray) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """各层误差和（约化到自由自由度的）雅可比"""
        reduction = self._reduction(q)
        errors, jacobians = [], []
        n_free = self.number_free_variables()
        for stack in self._stacks:
            rows_e, rows_j = [], []
            for constraint in stack:
                error, jacobian = constraint.error_and_jacobian(q)
                rows_e.append(error)
                if reduction is None:
                    rows_j.append(jacobian[:, self._free_indices])
                else:
                    rows_j.append(jacobian @ reduction)
            errors.append(np.concatenate(rows_e) if rows_e else np.zeros(0))
            jacobians.append(np.vstack(rows_j) if rows_j else np.zeros((0, n_free)))
        return errors, jacobians

    def _combined_error(self, errors: List[np.ndarray]) -> float:
        n = self._number_mandatory_stacks()
        return max((float(e @ e) for e in errors[:n]), default=0.0)

    def squared_error(self) -> float:
        """当前配置的综合平方误差（各必需层平方误差的最大值）"""
        return self._squared_error

    def squared_error_at(self, q: np.ndarray) -> float:
        """q 处的综合平方误差，不改变求解器状态"""
        n = self._number_mandatory_stacks()
        return max((float(e @ e) for e in (self._stack_error(s, q) for s in self._stacks[:n])),
                   default=0.0)

    def _optional_squared_error_at(self, q: np.ndarray) -> float:
        if self._number_mandatory_stacks() == len(self._stacks):
            return 0.0
        error = self._stack_error(self._stacks[-1], q)
        return float(error @ error)

    # ------------------------------------------------------------------
    # 步长
    # ------------------------------------------------------------------
    def _descent_direction(self, errors: List[np.ndarray], jacobians: List[np.ndarray],
                           locked: np.ndarray) -> Tuple[np.ndarray, np.ndarray, List[int]]:
        """
        逐层零空间投影求步长

        :return: (只含必需层的步长, 含全部层的步长, 每层保留的秩)
        """
        n_free = locked.size
        projector = np.diag((~locked).astype(np.float64))
        dq = np.zeros(n_free)
        dq_mandatory = dq
        n_mandatory = self._number_mandatory_stacks()
        ranks = []
        for level, (error, jacobian) in enumerate(zip(errors, jacobians)):
            if level == n_mandatory:
                dq_mandatory = dq.copy()
            rank = 0
            if error.size > 0 and n_free > 0:
                sigma_max = np.linalg.norm(jacobian, 2)
                if sigma_max > 0:
                    U, S, Vt = np.linalg.svd(jacobian @ projector, full_matrices=False)
                    keep = S > self._svd_threshold * sigma_max
                    rank = int(keep.sum())
                    if rank > 0:
                        V = Vt[keep].T
                        residual = -error - jacobian @ dq
                        dq = dq + V @ ((U[:, keep].T @ residual) / S[keep])
                        projector = projector - V @ V.T
            ranks.append(rank)
        if n_mandatory == len(errors):
            dq_mandatory = dq.copy()
        dq[locked] = 0.0
        dq_mandatory[locked] = 0.0
        return dq_mandatory, dq, ranks

    def _clip(self, q: np.ndarray, dq: np.ndarray) -> Tuple[np.ndarray, Dict[int, float]]:
        velocity = np.zeros(self.config_space.nv)
        velocity[self._free_indices] = dq
        velocity, clipped = self._saturation.clip_velocity(q, velocity, self._free_mask)
        return velocity[self._free_indices], clipped

    def _compute_step(self, q: np.ndarray, errors: List[np.ndarray],
                      jacobians: List[np.ndarray]) -> Tuple[np.ndarray, int, float]:
        """
        锁定饱和自由度后求步长，并按比例采用可选层的贡献

        :return: (步长, 必需层保留的总秩, 可选层平方误差的下降量)
        """
        saturation = self._saturation.saturation_vector(
            q, self.config_space.nv, self._free_mask)[self._free_indices]
        locked = np.zeros(self.number_free_variables(), dtype=bool)
        while True:
            dq_mandatory, dq, ranks = self._descent_direction(errors, jacobians, locked)
            pushing = (saturation != 0) & (saturation * dq > 0) & ~locked
            if not pushing.any():
                break
            locked |= pushing
        if locked.any():
            logger.debug("Locked saturated variables %s", self._free_indices[locked].tolist())
        mandatory_rank = sum(ranks[:self._number_mandatory_stacks()])
        if self._number_mandatory_stacks() == len(self._stacks):
            return dq, mandatory_rank, 0.0
        dq, gain = self._scale_optional(q, dq_mandatory, dq - dq_mandatory)
        return dq, mandatory_rank, gain

    def _scale_optional(self, q: np.ndarray, dq_mandatory: np.ndarray,
                        direction: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        沿可选层方向依次尝试 beta = 1, 1/2, 1/4, ...，取使可选层平方误差最小、
        且不增大必需层误差的步长

        :return: (步长, 相对只含必需层的步长，可选层平方误差的下降量)
        """
        q_mandatory = self.integrate(q, self._clip(q, dq_mandatory)[0])
        mandatory_bound = max(self.squared_error_at(q_mandatory), self._error_threshold ** 2)
        reference = self._optional_squared_error_at(q_mandatory)
        best, best_error = dq_mandatory, reference
        if not np.any(direction):
            return best, 0.0
        beta = 1.0
        while beta >= self._min_optional_scale:
            candidate = dq_mandatory + beta * direction
            q_candidate = self.integrate(q, self._clip(q, candidate)[0])
            error = self._optional_squared_error_at(q_candidate)
            if error < best_error and self.squared_error_at(q_candidate) <= mandatory_bound:
                best, best_error = candidate, error
            elif best_error < reference:
                break
            beta *= 0.5
        if best is dq_mandatory:
            logger.debug("Optional level rejected")
        return best, reference - best_error

    # ------------------------------------------------------------------
    # 求解
    # ------------------------------------------------------------------
    def solve(self, q: np.ndarray, line_search: Optional[LineSearch] = None) -> Status:
        """
        从 q 出发迭代求解，原地修改 q

        :param q: 初始配置（numpy 浮点数组，会被修改）
        :param line_search: 线搜索策略，缺省为步长 1 的 Constant
        :return: 求解状态
        """
        if not isinstance(q, np.ndarray) or q.shape != (self.config_space.nq,):
            raise ValueError(f"Configuration must be a numpy array of size {self.config_space.nq}")
        if line_search is None:
            line_search = Constant()
        line_search.reset()

        squared_threshold = self._error_threshold ** 2
        errors, jacobians = self._evaluate(q)
        self._squared_error = self._combined_error(errors)
        error_decreased = self._max_error_increases
        has_optional = self._number_mandatory_stacks() < len(self._stacks)
        # 必需层满足后，可选层误差仍在下降就继续迭代
        optional_gain = np.inf if has_optional else 0.0
        status = None
        iteration = 0

        while error_decreased > 0 and iteration < self._max_iterations:
            satisfied = self._squared_error <= squared_threshold
            if satisfied and optional_gain <= squared_threshold:
                break
            dq, mandatory_rank, optional_gain = self._compute_step(q, errors, jacobians)
            if has_optional and not satisfied:
                optional_gain = np.inf
            if not np.any(dq) or (mandatory_rank == 0 and not satisfied):
                if not satisfied:
                    status = Status.INFEASIBLE
                break

            dq, clipped = self._clip(q, dq)
            alpha = line_search(self, q, dq)
            # 只有完整步长才会真正到达被裁剪的界
            q[:] = self.integrate(q, alpha * dq, clipped if alpha == 1.0 else None)

            previous = self._squared_error
            errors, jacobians = self._evaluate(q)
            self._squared_error = self._combined_error(errors)
            if self._squared_error < previous or self._squared_error <= squared_threshold:
                error_decreased = self._max_error_increases
            else:
                error_decreased -= 1
            iteration += 1
            logger.debug("Iteration %d: alpha = %g, squared error = %g", iteration, alpha, self._squared_error)

        self.iterations = iteration
        if status is None:
            if self._squared_error <= squared_threshold:
                status = Status.SUCCESS
            elif error_decreased <= 0:
                status = Status.ERROR_INCREASED
            else:
                status = Status.MAX_ITERATION_REACHED
        # 显式输出变量不经过裁剪，结果仍须在界内
        if status == Status.SUCCESS and not self._saturation.is_within_bounds(q, self._bounds_tolerance):
            logger.warning("Solution satisfies the constraints but violates variable bounds")
            status = Status.INFEASIBLE
        logger.info("Solver finished after %d iterations: %s (squared error %g)",
                    iteration, status.name, self._squared_error)
        return status

    def __str__(self):
        lines = [f"{self.__class__.__name__} on {self.config_space.name}"]
        for level, stack in enumerate(self._stacks):
            optional = " (optional)" if self._last_is_optional and level == len(self._stacks) - 1 else ""
            lines.append(f"  Level {level}{optional}:")
            lines.extend(f"    {c}" for c in stack)
        return '\n'.join(lines)
