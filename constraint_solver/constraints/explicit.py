"""
显式约束 (Explicit constraint)

一部分配置变量（输出）由另一部分不相交的配置变量（输入）经闭式映射 g 直接得到：

    q_out = g(q_in) ⊕ rhs

为了能被任何处理隐式约束的求解器统一使用，显式约束同时是一个隐式约束，
其残差函数为 (q_out ⊖ g(q_in)) - rhs；按替换法求解时则绕过残差直接计算 g。
"""
from typing import Optional, Sequence
from typing_extensions import override

import numpy as np

from ..model.liegroup import LiegroupSpace
from ..utils import segments as seg
from ..utils.segments import Segments
from .differentiable_function import DifferentiableFunction
from .implicit import ComparisonType, Implicit


class ExplicitResidual(DifferentiableFunction):
    """
    显式约束对应的隐式残差 f(q) = q_out ⊖ g(q_in)，值在 R^{nv_out} 中
    """

    def __init__(self, config_space: LiegroupSpace, explicit_function: DifferentiableFunction,
                 input_conf: Segments, output_conf: Segments,
                 input_velocity: Segments, output_velocity: Segments):
        _check_segments(config_space, explicit_function, input_conf, output_conf,
                        input_velocity, output_velocity)
        super().__init__(config_space.nq, config_space.nv,
                         explicit_function.output_derivative_size(),
                         f"implicit({explicit_function.name})")
        self.config_space = config_space
        self.explicit_function = explicit_function
        self._input_conf = seg.indices(input_conf)
        self._output_conf = seg.indices(output_conf)
        self._input_velocity = seg.indices(input_velocity)
        self._output_velocity = seg.indices(output_velocity)

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        g_value = self.explicit_function.value(argument[self._input_conf])
        return self.explicit_function.output_space().difference(g_value, argument[self._output_conf])

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        q_in = argument[self._input_conf]
        q_out = argument[self._output_conf]
        g_value = self.explicit_function.value(q_in)
        output_space = self.explicit_function.output_space()
        jacobian = np.zeros((self.output_derivative_size(), self.input_derivative_size()))
        jacobian[:, self._output_velocity] = output_space.d_difference_dq1(g_value, q_out)
        jacobian[:, self._input_velocity] = \
            output_space.d_difference_dq0(g_value, q_out) @ self.explicit_function.jacobian(q_in)
        return jacobian


def _check_segments(config_space: LiegroupSpace, function: DifferentiableFunction,
                    input_conf: Segments, output_conf: Segments,
                    input_velocity: Segments, output_velocity: Segments):
    """检查区间大小与函数维数是否一致，输入与输出是否不相交"""
    checks = [
        ('input configuration', input_conf, function.input_size(), config_space.nq),
        ('output configuration', output_conf, function.output_size(), config_space.nq),
        ('input velocity', input_velocity, function.input_derivative_size(), config_space.nv),
        ('output velocity', output_velocity, function.output_derivative_size(), config_space.nv),
    ]
    for label, segments, expected, size in checks:
        if seg.cardinal(segments) != expected:
            raise ValueError(f"Explicit constraint {function.name}: {label} segments cover "
                             f"{seg.cardinal(segments)} variables, function expects {expected}")
        for start, length in segments:
            if start < 0 or length < 0 or start + length > size:
                raise ValueError(f"Explicit constraint {function.name}: {label} segment "
                                 f"({start}, {length}) out of range [0, {size})")
    if seg.overlap(input_conf, output_conf):
        raise ValueError(f"Explicit constraint {function.name}: input and output configuration "
                         f"variables overlap")
    if seg.overlap(input_velocity, output_velocity):
        raise ValueError(f"Explicit constraint {function.name}: input and output velocity "
                         f"variables overlap")


class Explicit(Implicit):
    """
    显式约束：q_out = g(q_in) ⊕ rhs
    """

    def __init__(self, config_space: LiegroupSpace, explicit_function: DifferentiableFunction,
                 input_conf: Segments, output_conf: Segments,
                 input_velocity: Segments, output_velocity: Segments,
                 comparison_types: Optional[Sequence[ComparisonType]] = None):
        """
        :param config_space: 整个配置空间
        :param explicit_function: 映射 g，输入为 q_in，输出空间为 q_out 所在的空间
        :param input_conf: q_in 在配置向量中的区间
        :param output_conf: q_out 在配置向量中的区间
        :param input_velocity: q_in 在速度向量中的区间
        :param output_velocity: q_out 在速度向量中的区间
        :param comparison_types: 每个输出速度行的比较类型；为空时为 EQUAL_TO_ZERO
        """
        super().__init__(ExplicitResidual(config_space, explicit_function, input_conf, output_conf,
                                          input_velocity, output_velocity),
                         comparison_types)
        self.config_space = config_space
        self._explicit_function = explicit_function
        self._input_conf: Segments = list(input_conf)
        self._output_conf: Segments = list(output_conf)
        self._input_velocity: Segments = list(input_velocity)
        self._output_velocity: Segments = list(output_velocity)

    @classmethod
    @override
    def create(cls, config_space: LiegroupSpace, explicit_function: DifferentiableFunction,
               input_conf: Segments, output_conf: Segments,
               input_velocity: Segments, output_velocity: Segments,
               comparison_types: Optional[Sequence[ComparisonType]] = None) -> 'Explicit':
        return cls(config_space, explicit_function, input_conf, output_conf,
                   input_velocity, output_velocity, comparison_types)

    @override
    def copy(self) -> 'Explicit':
        other = Explicit(self.config_space, self._explicit_function,
                         self._input_conf, self._output_conf,
                         self._input_velocity, self._output_velocity,
                         self.comparison_type())
        other._rhs = self._rhs.copy()
        return other

    def explicit_function(self) -> DifferentiableFunction:
        return self._explicit_function

    def input_conf(self) -> Segments:
        return list(self._input_conf)

    def output_conf(self) -> Segments:
        return list(self._output_conf)

    def input_velocity(self) -> Segments:
        return list(self._input_velocity)

    def output_velocity(self) -> Segments:
        return list(self._output_velocity)

    def output_value(self, q_in: np.ndarray, rhs: Optional[np.ndarray] = None) -> np.ndarray:
        """
        直接计算输出变量 g(q_in) ⊕ rhs（一次函数求值，无需牛顿迭代）

        :param q_in: 输入变量
        :param rhs: 右端项，缺省时使用约束当前的右端项
        """
        rhs = self._rhs if rhs is None else np.asarray(rhs, dtype=np.float64)
        g_value = self._explicit_function.value(q_in)
        return self._explicit_function.output_space().integrate(g_value, rhs)

    def jacobian_output_value(self, q_in: np.ndarray, g_value: np.ndarray,
                              rhs: Optional[np.ndarray] = None) -> np.ndarray:
        """
        输出变量对输入变量的雅可比 ∂(g(q_in) ⊕ rhs)/∂q_in

        :param q_in: 输入变量
        :param g_value: g(q_in)，避免重复计算
        :param rhs: 右端项，缺省时使用约束当前的右端项
        """
        rhs = self._rhs if rhs is None else np.asarray(rhs, dtype=np.float64)
        jacobian = self._explicit_function.jacobian(q_in)
        if np.any(rhs != 0):
            # rhs 非零时经过积分算子的链式法则
            jacobian = self._explicit_function.output_space().d_integrate_dq(g_value, rhs) @ jacobian
        return jacobian
