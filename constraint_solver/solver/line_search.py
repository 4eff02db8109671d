"""
线搜索策略

每种策略都是一个可调用对象 line_search(solver, q, dq) -> alpha，
求解器随后以 q ⊕ alpha * dq 更新配置。策略可以通过求解器提供的
squared_error() / squared_error_at(q) / integrate(q, dq) 试探候选步长，
但不能修改 q。
"""
import numpy as np
from abc import ABC, abstractmethod
from typing_extensions import override


class LineSearch(ABC):
    """
    线搜索基类
    """

    def reset(self):
        """每次 solve 开始时调用；有内部状态的策略在这里复位"""
        pass

    @abstractmethod
    def __call__(self, solver, q: np.ndarray, dq: np.ndarray) -> float:
        """
        :param solver: 当前求解器
        :param q: 当前配置（只读）
        :param dq: 已裁剪的下降方向（自由自由度上的速度）
        :return: 步长 alpha，取值 (0, 1]
        """
        pass

    def __repr__(self):
        return f"<{self.__class__.__name__}>"


class Constant(LineSearch):
    """固定步长"""

    def __init__(self, alpha: float = 1.0):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"Constant step must be in (0, 1], got {alpha}")
        self.alpha = float(alpha)

    def __call__(self, solver, q: np.ndarray, dq: np.ndarray) -> float:
        return self.alpha


class Backtracking(LineSearch):
    """
    Armijo 回溯线搜索

    线性化模型预测误差按 (1 - alpha) 缩小，平方误差的方向导数为 -2 f0，
    接受条件为 f(alpha) <= f0 * (1 - 2 c alpha)；否则 alpha *= tau，
    直到 alpha 小于 small_alpha，此时返回 small_alpha。
    """

    def __init__(self, c: float = 0.001, tau: float = 0.7, small_alpha: float = 0.2):
        if not 0.0 < tau < 1.0:
            raise ValueError(f"Backtracking: tau must be in (0, 1), got {tau}")
        if not 0.0 < small_alpha <= 1.0:
            raise ValueError(f"Backtracking: small_alpha must be in (0, 1], got {small_alpha}")
        self.c = float(c)
        self.tau = float(tau)
        self.small_alpha = float(small_alpha)

    def __call__(self, solver, q: np.ndarray, dq: np.ndarray) -> float:
        f0 = solver.squared_error()
        alpha = 1.0
        while alpha >= self.small_alpha:
            f = solver.squared_error_at(solver.integrate(q, alpha * dq))
            if f <= f0 * (1.0 - 2.0 * self.c * alpha):
                return alpha
            alpha *= self.tau
        return self.small_alpha


class ErrorNormBased(LineSearch):
    """
    按误差大小选择步长：误差远大于阈值时步长接近 alpha_min，接近收敛时接近 alpha_max

        r = log10(max(||e|| / threshold, 1))
        alpha = C - K * tanh(a * r + b)
        C = (alpha_min + alpha_max) / 2, K = (alpha_max - alpha_min) / 2
    """

    def __init__(self, alpha_min: float = 0.2, alpha_max: float = 0.95,
                 a: float = 1.0, b: float = -2.0):
        if not 0.0 < alpha_min <= alpha_max <= 1.0:
            raise ValueError(f"ErrorNormBased: need 0 < alpha_min <= alpha_max <= 1, "
                             f"got {alpha_min}, {alpha_max}")
        self.alpha_min = float(alpha_min)
        self.alpha_max = float(alpha_max)
        self.a = float(a)
        self.b = float(b)

    def __call__(self, solver, q: np.ndarray, dq: np.ndarray) -> float:
        C = 0.5 * (self.alpha_min + self.alpha_max)
        K = 0.5 * (self.alpha_max - self.alpha_min)
        error = np.sqrt(solver.squared_error())
        r = np.log10(max(error / solver.error_threshold, 1.0))
        return float(C - K * np.tanh(self.a * r + self.b))


class FixedSequence(LineSearch):
    """
    固定步长序列 alpha_{n+1} = alpha_max - K * (alpha_max - alpha_n)，单调趋于 alpha_max
    """

    def __init__(self, alpha0: float = 0.2, K: float = 0.8, alpha_max: float = 0.95):
        if not 0.0 < alpha0 <= alpha_max <= 1.0:
            raise ValueError(f"FixedSequence: need 0 < alpha0 <= alpha_max <= 1, got {alpha0}, {alpha_max}")
        if not 0.0 <= K < 1.0:
            raise ValueError(f"FixedSequence: K must be in [0, 1), got {K}")
        self.alpha0 = float(alpha0)
        self.K = float(K)
        self.alpha_max = float(alpha_max)
        self.alpha = self.alpha0

    @override
    def reset(self):
        self.alpha = self.alpha0

    def __call__(self, solver, q: np.ndarray, dq: np.ndarray) -> float:
        alpha = self.alpha
        self.alpha = self.alpha_max - self.K * (self.alpha_max - self.alpha)
        return alpha
