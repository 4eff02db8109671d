"""
饱和策略 (Saturation)

给部分标量配置变量设置 [lower, upper] 界。界作用在速度步长上（积分之前），
因为流形上的配置变量是积分得到的而不是相加得到的；只有向量块中的标量变量可以设界。
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..model.device import Device as KinematicDevice

# (配置索引, 速度索引, 下界, 上界)
Bound = Tuple[int, int, float, float]


class Saturation(ABC):
    """
    饱和策略基类
    """

    @abstractmethod
    def variable_bounds(self) -> List[Bound]:
        """有界标量变量列表"""
        pass

    def _bounds_in(self, velocity_mask: Optional[np.ndarray]) -> List[Bound]:
        if velocity_mask is None:
            return self.variable_bounds()
        return [b for b in self.variable_bounds() if velocity_mask[b[1]]]

    def saturation_vector(self, q: np.ndarray, nv: int,
                          velocity_mask: Optional[np.ndarray] = None) -> np.ndarray:
        """
        当前配置的饱和状态

        :param velocity_mask: 只考虑这些自由度（布尔向量，长度 nv），None 表示全部
        :return: 长度为 nv 的整数向量：+1 位于上界，-1 位于下界，0 未饱和
        """
        saturation = np.zeros(nv, dtype=int)
        for iq, iv, lower, upper in self._bounds_in(velocity_mask):
            if q[iq] >= upper:
                saturation[iv] = 1
            elif q[iq] <= lower:
                saturation[iv] = -1
        return saturation

    def clip_velocity(self, q: np.ndarray, dq: np.ndarray,
                      velocity_mask: Optional[np.ndarray] = None) -> Tuple[np.ndarray, Dict[int, float]]:
        """
        逐个自由度裁剪速度步长，使 q + dq 不越界

        :return: (裁剪后的步长, 被裁剪的 {配置索引: 所达到的界})
        """
        dq = np.array(dq, dtype=np.float64)
        clipped: Dict[int, float] = {}
        for iq, iv, lower, upper in self._bounds_in(velocity_mask):
            if q[iq] + dq[iv] > upper:
                dq[iv] = max(upper - q[iq], 0.0)
                clipped[iq] = upper
            elif q[iq] + dq[iv] < lower:
                dq[iv] = min(lower - q[iq], 0.0)
                clipped[iq] = lower
        return dq, clipped

    def saturate(self, q: np.ndarray, velocity_mask: Optional[np.ndarray] = None) -> bool:
        """
        把配置投影回界内（原地修改）

        :return: 是否有变量被修改
        """
        changed = False
        for iq, _, lower, upper in self._bounds_in(velocity_mask):
            if q[iq] > upper:
                q[iq] = upper
                changed = True
            elif q[iq] < lower:
                q[iq] = lower
                changed = True
        return changed

    def is_within_bounds(self, q: np.ndarray, eps: float = 0.0) -> bool:
        return all(lower - eps <= q[iq] <= upper + eps
                   for iq, _, lower, upper in self.variable_bounds())


class NoSaturation(Saturation):
    """不设任何界"""

    def variable_bounds(self) -> List[Bound]:
        return []


class Bounds(Saturation):
    """
    固定的上下界
    """

    def __init__(self, lower: Sequence[float], upper: Sequence[float],
                 config_indices: Optional[Sequence[int]] = None,
                 velocity_indices: Optional[Sequence[int]] = None):
        """
        :param lower: 下界（-inf 表示无下界）
        :param upper: 上界（inf 表示无上界）
        :param config_indices: 每个界对应的配置索引，缺省为 0..n-1
        :param velocity_indices: 每个界对应的速度索引，缺省与配置索引相同
        """
        lower = np.asarray(lower, dtype=np.float64)
        upper = np.asarray(upper, dtype=np.float64)
        if lower.shape != upper.shape or lower.ndim != 1:
            raise ValueError(f"Lower and upper bounds must be vectors of the same size, "
                             f"got {lower.shape} and {upper.shape}")
        if np.any(lower > upper):
            raise ValueError("Lower bound greater than upper bound")
        n = lower.size
        config_indices = list(range(n)) if config_indices is None else [int(i) for i in config_indices]
        velocity_indices = list(config_indices) if velocity_indices is None else [int(i) for i in velocity_indices]
        if len(config_indices) != n or len(velocity_indices) != n:
            raise ValueError(f"Expected {n} configuration and velocity indices")
        self.lower = lower
        self.upper = upper
        self.config_indices = config_indices
        self.velocity_indices = velocity_indices
        self._bounds: List[Bound] = [
            (iq, iv, float(lo), float(up))
            for iq, iv, lo, up in zip(config_indices, velocity_indices, lower, upper)
            if np.isfinite(lo) or np.isfinite(up)
        ]

    def variable_bounds(self) -> List[Bound]:
        return self._bounds


class Device(Saturation):
    """
    由运动学模型的关节限位得到的界
    """

    def __init__(self, device: KinematicDevice):
        self.device = device
        self._bounds: List[Bound] = []
        for joint in device.joints():
            if joint.get_config_size() != joint.get_dof():
                continue  # 四元数等非向量变量不设界
            lower, upper = joint.get_bounds()
            for k in range(joint.get_config_size()):
                if np.isfinite(lower[k]) or np.isfinite(upper[k]):
                    self._bounds.append((joint.rank_in_configuration + k,
                                         joint.rank_in_velocity + k,
                                         float(lower[k]), float(upper[k])))

    def variable_bounds(self) -> List[Bound]:
        return self._bounds
