"""
隐式约束 (Implicit constraint)

包装一个可微函数 f，并为每个导数行指定比较类型：
- EQUALITY:      f(q) = rhs，rhs 可由调用方设置
- EQUAL_TO_ZERO: f(q) = 0
- SUPERIOR:      f(q) >= 0（下界不等式）
- INFERIOR:      f(q) <= 0（上界不等式）

误差定义为 f(q) ⊖ rhs（输出空间中的差，SO(3) 上为对数映射）。
"""
import uuid
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .differentiable_function import DifferentiableFunction


class ComparisonType(Enum):
    EQUALITY = 'Equality'
    EQUAL_TO_ZERO = 'EqualToZero'
    SUPERIOR = 'Superior'
    INFERIOR = 'Inferior'

    @classmethod
    def n_times(cls, n: int, comparison: 'ComparisonType') -> List['ComparisonType']:
        return [comparison] * n


ComparisonTypes = List[ComparisonType]


class Implicit:
    """
    隐式约束：可微函数 + 每行比较类型 + 右端项
    """

    def __init__(self, function: DifferentiableFunction,
                 comparison_types: Optional[Sequence[ComparisonType]] = None):
        """
        :param function: 约束函数
        :param comparison_types: 每个输出导数行的比较类型；为空时所有行默认为 EQUAL_TO_ZERO
        """
        self._function = function
        n = function.output_derivative_size()
        if not comparison_types:
            comparison_types = ComparisonType.n_times(n, ComparisonType.EQUAL_TO_ZERO) if n > 0 else []
        self._comparison_types: ComparisonTypes = [ComparisonType(c) for c in comparison_types]
        if len(self._comparison_types) != n:
            raise ValueError(f"Constraint {function.name}: {len(self._comparison_types)} comparison types "
                             f"for {n} output derivative rows")
        self._rhs: np.ndarray = function.output_space().neutral()
        # 持久化时使用的身份标识；拷贝会得到新的标识
        self.uid: str = uuid.uuid4().hex

    @classmethod
    def create(cls, function: DifferentiableFunction,
               comparison_types: Optional[Sequence[ComparisonType]] = None) -> 'Implicit':
        return cls(function, comparison_types)

    def copy(self) -> 'Implicit':
        """深拷贝：新实例，共享同一个函数，复制比较类型和右端项"""
        other = Implicit(self._function, list(self._comparison_types))
        other._rhs = self._rhs.copy()
        return other

    def function(self) -> DifferentiableFunction:
        return self._function

    @property
    def name(self) -> str:
        return self._function.name

    def output_space(self):
        return self._function.output_space()

    def comparison_type(self) -> ComparisonTypes:
        return list(self._comparison_types)

    def set_comparison_type(self, comparison_types: Sequence[ComparisonType]):
        """修改比较类型，右端项中不再是 EQUALITY 的行被清零"""
        comparison_types = [ComparisonType(c) for c in comparison_types]
        if len(comparison_types) != len(self._comparison_types):
            raise ValueError(f"Constraint {self.name}: expected {len(self._comparison_types)} comparison types, "
                             f"got {len(comparison_types)}")
        self._comparison_types = comparison_types
        self._rhs = self._mask_right_hand_side(self._rhs)

    def _equality_rows(self) -> np.ndarray:
        return np.array([c == ComparisonType.EQUALITY for c in self._comparison_types], dtype=bool)

    def parameter_size(self) -> int:
        """可由调用方设置的右端项行数（EQUALITY 行数）"""
        return int(self._equality_rows().sum())

    def _mask_right_hand_side(self, rhs: np.ndarray) -> np.ndarray:
        equality = self._equality_rows()
        if equality.all():
            return rhs
        space = self.output_space()
        neutral = space.neutral()
        tangent = space.difference(neutral, rhs)
        tangent[~equality] = 0.0
        return space.integrate(neutral, tangent)

    def right_hand_side(self) -> np.ndarray:
        return self._rhs.copy()

    def set_right_hand_side(self, rhs: np.ndarray):
        """
        设置右端项（输出空间中的元素），非 EQUALITY 行被强制为单位元
        """
        rhs = np.asarray(rhs, dtype=np.float64)
        space = self.output_space()
        if rhs.shape != (space.nq,):
            raise ValueError(f"Constraint {self.name}: right hand side must be an element of {space.name}, "
                             f"got shape {rhs.shape}")
        self._rhs = self._mask_right_hand_side(space.normalize(rhs))

    def right_hand_side_from_config(self, q: np.ndarray) -> np.ndarray:
        """
        设置右端项使得配置 q 恰好满足约束

        :return: 新的右端项
        """
        self._rhs = self._mask_right_hand_side(self._function.value(q))
        return self._rhs.copy()

    def _apply_comparison(self, error: np.ndarray) -> np.ndarray:
        """不等式行：满足时误差置零；返回该行是否生效"""
        active = np.ones(error.size, dtype=bool)
        for i, comparison in enumerate(self._comparison_types):
            if comparison == ComparisonType.SUPERIOR and error[i] >= 0:
                active[i] = False
            elif comparison == ComparisonType.INFERIOR and error[i] <= 0:
                active[i] = False
        error[~active] = 0.0
        return active

    def error(self, q: np.ndarray) -> np.ndarray:
        """
        计算考虑比较类型后的误差

        :param q: 配置
        :return: 长度为 output_derivative_size 的误差向量
        """
        return self.value_and_error(q)[1]

    def value_and_error(self, q: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        :return: (函数值, 考虑比较类型后的误差)
        """
        value = self._function.value(q)
        error = self.output_space().difference(self._rhs, value)
        self._apply_comparison(error)
        return value, error

    def error_and_jacobian(self, q: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        计算误差及其对配置的雅可比，未生效的不等式行雅可比置零

        :return: (error, jacobian)
        """
        space = self.output_space()
        value = self._function.value(q)
        error = space.difference(self._rhs, value)
        jacobian = self._function.jacobian(q)
        if not space.is_vector_space():
            jacobian = space.d_difference_dq1(self._rhs, value) @ jacobian
        active = self._apply_comparison(error)
        jacobian[~active, :] = 0.0
        return error, jacobian

    def is_satisfied(self, q: np.ndarray, error_threshold: float) -> Tuple[bool, np.ndarray]:
        """
        判断配置是否满足约束（不修改 q）

        :return: (是否满足, 每行误差)
        """
        error = self.error(q)
        return bool(np.linalg.norm(error) <= error_threshold), error

    def __str__(self):
        kinds = ', '.join(c.value for c in self._comparison_types)
        return f"{self.__class__.__name__} ({self.name}): [{kinds}]"

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.name}>"
