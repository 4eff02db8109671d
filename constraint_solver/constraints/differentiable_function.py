"""
可微函数接口及若干具体实现

所有约束残差以及显式约束中的显式映射都实现这一接口：
给定配置（输入），计算值（输出空间中的元素）和雅可比矩阵。
输出空间可以是李群（如 SO(3)），此时值的维数（四元数 4 维）与导数维数（3 维）不同。
"""
import numpy as np
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union

from ..model.liegroup import LiegroupSpace

_DEFAULT_EPS = np.sqrt(np.finfo(np.float64).eps)


class DifferentiableFunction(ABC):
    """
    可微函数抽象基类
    """

    def __init__(self, input_size: int, input_derivative_size: int,
                 output_space: Union[int, LiegroupSpace], name: str = ''):
        """
        :param input_size: 输入向量维数
        :param input_derivative_size: 输入导数（速度）维数
        :param output_space: 输出空间；传入整数 n 表示 R^n
        :param name: 函数名称
        """
        if isinstance(output_space, LiegroupSpace):
            self._output_space = output_space
        else:
            self._output_space = LiegroupSpace.Rn(int(output_space))
        self._input_size = int(input_size)
        self._input_derivative_size = int(input_derivative_size)
        self._name = name

    def value(self, argument: np.ndarray) -> np.ndarray:
        """
        计算函数值

        :param argument: 输入向量，维数必须为 input_size()
        :return: 输出空间中的元素（维数 output_size()）
        """
        argument = np.asarray(argument, dtype=np.float64)
        if argument.shape != (self._input_size,):
            raise ValueError(f"{self._name}: argument must have size {self._input_size}, got {argument.shape}")
        result = np.asarray(self.impl_compute(argument), dtype=np.float64)
        if result.shape != (self.output_size(),):
            raise ValueError(f"{self._name}: value must have size {self.output_size()}, got {result.shape}")
        return result

    def jacobian(self, argument: np.ndarray) -> np.ndarray:
        """
        计算雅可比矩阵

        :param argument: 计算雅可比的点
        :return: output_derivative_size() x input_derivative_size() 矩阵
        """
        argument = np.asarray(argument, dtype=np.float64)
        if argument.shape != (self._input_size,):
            raise ValueError(f"{self._name}: argument must have size {self._input_size}, got {argument.shape}")
        jacobian = np.asarray(self.impl_jacobian(argument), dtype=np.float64)
        expected = (self.output_derivative_size(), self._input_derivative_size)
        if jacobian.shape != expected:
            raise ValueError(f"{self._name}: jacobian must have shape {expected}, got {jacobian.shape}")
        return jacobian

    @abstractmethod
    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        pass

    def input_size(self) -> int:
        return self._input_size

    def input_derivative_size(self) -> int:
        """
        输入导数维数

        配置向量的维数可能与速度向量不同：某些关节用非最小参数表示（如 SO(3) 的四元数）
        """
        return self._input_derivative_size

    def output_size(self) -> int:
        return self._output_space.nq

    def output_derivative_size(self) -> int:
        return self._output_space.nv

    def output_space(self) -> LiegroupSpace:
        return self._output_space

    @property
    def name(self) -> str:
        return self._name

    def finite_difference_forward(self, argument: np.ndarray,
                                  space: Optional[LiegroupSpace] = None,
                                  eps: float = _DEFAULT_EPS) -> np.ndarray:
        """
        前向差分近似雅可比（求值 n+1 次）

        :param space: 输入所在的配置空间；None 表示向量空间
        """
        argument = np.asarray(argument, dtype=np.float64)
        f0 = self.value(argument)
        jacobian = np.zeros((self.output_derivative_size(), self._input_derivative_size))
        for i in range(self._input_derivative_size):
            dq = np.zeros(self._input_derivative_size)
            dq[i] = eps
            f1 = self.value(self._perturb(argument, dq, space))
            jacobian[:, i] = self._output_space.difference(f0, f1) / eps
        return jacobian

    def finite_difference_central(self, argument: np.ndarray,
                                  space: Optional[LiegroupSpace] = None,
                                  eps: float = _DEFAULT_EPS) -> np.ndarray:
        """
        中心差分近似雅可比（求值 2n 次，比前向差分更精确）
        """
        argument = np.asarray(argument, dtype=np.float64)
        jacobian = np.zeros((self.output_derivative_size(), self._input_derivative_size))
        for i in range(self._input_derivative_size):
            dq = np.zeros(self._input_derivative_size)
            dq[i] = eps
            f_minus = self.value(self._perturb(argument, -dq, space))
            f_plus = self.value(self._perturb(argument, dq, space))
            jacobian[:, i] = self._output_space.difference(f_minus, f_plus) / (2 * eps)
        return jacobian

    @staticmethod
    def _perturb(argument: np.ndarray, dq: np.ndarray,
                 space: Optional[LiegroupSpace]) -> np.ndarray:
        if space is None:
            return argument + dq
        return space.integrate(argument, dq)

    def __str__(self):
        return f"Differentiable function:\n{self._name}"

    def __repr__(self):
        return (f"<{self.__class__.__name__}: {self._name} "
                f"({self._input_size} -> {self._output_space.name})>")


class AffineFunction(DifferentiableFunction):
    """
    仿射函数 f(x) = A x + b
    """

    def __init__(self, A: np.ndarray, b: Optional[np.ndarray] = None,
                 name: str = 'AffineFunction'):
        A = np.atleast_2d(np.asarray(A, dtype=np.float64))
        b = np.zeros(A.shape[0]) if b is None else np.asarray(b, dtype=np.float64)
        if b.shape != (A.shape[0],):
            raise ValueError(f"Affine function: b must have size {A.shape[0]}, got {b.shape}")
        super().__init__(A.shape[1], A.shape[1], A.shape[0], name)
        self.A = A
        self.b = b

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        return self.A @ argument + self.b

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        return self.A.copy()


class ConstantFunction(DifferentiableFunction):
    """
    常值函数：返回固定的输出空间元素，雅可比为零
    """

    def __init__(self, constant: np.ndarray, input_size: int, input_derivative_size: int,
                 output_space: Optional[LiegroupSpace] = None, name: str = 'ConstantFunction'):
        constant = np.asarray(constant, dtype=np.float64)
        if output_space is None:
            output_space = LiegroupSpace.Rn(constant.size)
        if constant.shape != (output_space.nq,):
            raise ValueError(f"Constant must be an element of {output_space.name}, got shape {constant.shape}")
        super().__init__(input_size, input_derivative_size, output_space, name)
        self.constant = constant

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        return self.constant.copy()

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        return np.zeros((self.output_derivative_size(), self.input_derivative_size()))


class Quadratic(DifferentiableFunction):
    """
    二次函数 f(x) = x^T A x + c（标量输出）
    """

    def __init__(self, A: np.ndarray, c: float = 0.0, name: str = 'Quadratic'):
        A = np.asarray(A, dtype=np.float64)
        if A.ndim != 2 or A.shape[0] != A.shape[1]:
            raise ValueError(f"Quadratic: A must be a square matrix, got shape {A.shape}")
        super().__init__(A.shape[0], A.shape[0], 1, name)
        self.A = A
        self.c = float(c)

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        return np.array([argument @ self.A @ argument + self.c])

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        return (argument @ (self.A + self.A.T)).reshape(1, -1)


class ConfigurationConstraint(DifferentiableFunction):
    """
    到目标配置的距离 f(q) = 1/2 || mask * (q ⊖ goal) ||^2
    """

    def __init__(self, name: str, space: LiegroupSpace, goal: np.ndarray,
                 mask: Optional[Sequence[bool]] = None):
        """
        :param space: 配置空间
        :param goal: 目标配置
        :param mask: 长度不超过 nv 的布尔向量，缺省部分视为 True
        """
        super().__init__(space.nq, space.nv, 1, name)
        goal = np.asarray(goal, dtype=np.float64)
        if goal.shape != (space.nq,):
            raise ValueError(f"{name}: goal must have size {space.nq}, got {goal.shape}")
        mask = [] if mask is None else list(mask)
        if len(mask) > space.nv:
            raise ValueError(f"{name}: mask has {len(mask)} entries for {space.nv} degrees of freedom")
        self.space = space
        self.goal = goal
        self.mask = np.ones(space.nv, dtype=np.float64)
        self.mask[:len(mask)] = np.asarray(mask, dtype=np.float64)

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        diff = self.mask * self.space.difference(self.goal, argument)
        return np.array([0.5 * diff @ diff])

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        diff = self.mask * self.space.difference(self.goal, argument)
        dd = self.mask[:, None] * self.space.d_difference_dq1(self.goal, argument)
        return (diff @ dd).reshape(1, -1)
