"""
李群配置空间 (Lie group space)

配置空间是若干块的笛卡尔积：
- 向量块 R^n：配置与速度维数相同，积分即加法
- 旋转块 SO(3)：配置为单位四元数 [w, x, y, z]（4 维），速度为旋转向量（3 维），
  积分为右乘 q ⊕ v = q · exp(v)
"""
import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import List, Sequence, Tuple

from ..utils.quaternion_utils import (
    exp3,
    normalize_quaternion,
    quaternion_to_rotation,
    right_jacobian,
    right_jacobian_inverse,
    rotation_to_quaternion
)

VECTOR = 'R'
ROTATION = 'SO3'


class LiegroupSpace:
    """
    李群空间：由 R^n 块与 SO(3) 块组成的积空间
    """

    def __init__(self, components: Sequence[Tuple[str, int]]):
        """
        :param components: 块列表，每个元素为 ('R', n) 或 ('SO3', 1)；相邻的 R 块自动合并
        """
        self.components: List[Tuple[str, int]] = []
        for kind, dim in components:
            if kind == VECTOR:
                if dim < 0:
                    raise ValueError(f"Negative vector space dimension: {dim}")
                if dim == 0:
                    continue
                if self.components and self.components[-1][0] == VECTOR:
                    self.components[-1] = (VECTOR, self.components[-1][1] + dim)
                else:
                    self.components.append((VECTOR, int(dim)))
            elif kind == ROTATION:
                for _ in range(int(dim)):
                    self.components.append((ROTATION, 1))
            else:
                raise ValueError(f"Unknown Lie group component: {kind}")

        # 每块在配置向量和速度向量中的起始位置
        self._blocks: List[Tuple[str, int, int, int, int]] = []
        iq = iv = 0
        for kind, dim in self.components:
            nq, nv = (dim, dim) if kind == VECTOR else (4, 3)
            self._blocks.append((kind, iq, nq, iv, nv))
            iq += nq
            iv += nv
        self._nq = iq
        self._nv = iv

    @classmethod
    def Rn(cls, n: int) -> 'LiegroupSpace':
        return cls([(VECTOR, n)])

    @classmethod
    def SO3(cls) -> 'LiegroupSpace':
        return cls([(ROTATION, 1)])

    @classmethod
    def R3xSO3(cls) -> 'LiegroupSpace':
        return cls([(VECTOR, 3), (ROTATION, 1)])

    @property
    def nq(self) -> int:
        """配置向量维数"""
        return self._nq

    @property
    def nv(self) -> int:
        """速度（切空间）维数"""
        return self._nv

    def is_vector_space(self) -> bool:
        return all(kind == VECTOR for kind, _ in self.components)

    def blocks(self) -> List[Tuple[str, int, int, int, int]]:
        """返回 (kind, iq, nq, iv, nv) 列表"""
        return list(self._blocks)

    def neutral(self) -> np.ndarray:
        """单位元"""
        q = np.zeros(self._nq, dtype=np.float64)
        for kind, iq, _, _, _ in self._blocks:
            if kind == ROTATION:
                q[iq] = 1.0
        return q

    def normalize(self, q: np.ndarray) -> np.ndarray:
        """把旋转块的四元数归一化（返回新数组）"""
        q = np.array(q, dtype=np.float64)
        for kind, iq, nq, _, _ in self._blocks:
            if kind == ROTATION:
                q[iq:iq + nq] = normalize_quaternion(q[iq:iq + nq])
        return q

    def is_normalized(self, q: np.ndarray, eps: float = 1e-8) -> bool:
        for kind, iq, nq, _, _ in self._blocks:
            if kind == ROTATION and abs(np.linalg.norm(q[iq:iq + nq]) - 1.0) > eps:
                return False
        return True

    def _check(self, q: np.ndarray, v: np.ndarray = None):
        if q.shape != (self._nq,):
            raise ValueError(f"Element of {self.name} must have size {self._nq}, got {q.shape}")
        if v is not None and v.shape != (self._nv,):
            raise ValueError(f"Velocity of {self.name} must have size {self._nv}, got {v.shape}")

    def integrate(self, q: np.ndarray, v: np.ndarray) -> np.ndarray:
        """
        流形上的积分（retraction）：q ⊕ v

        :param q: 配置 (nq)
        :param v: 速度 (nv)
        :return: 新配置 (nq)
        """
        q = np.asarray(q, dtype=np.float64)
        v = np.asarray(v, dtype=np.float64)
        self._check(q, v)
        result = q.copy()
        for kind, iq, nq, iv, nv in self._blocks:
            if kind == VECTOR:
                result[iq:iq + nq] = q[iq:iq + nq] + v[iv:iv + nv]
            else:
                rot = quaternion_to_rotation(q[iq:iq + nq]) * R.from_rotvec(v[iv:iv + nv])
                result[iq:iq + nq] = rotation_to_quaternion(rot)
        return result

    def difference(self, q0: np.ndarray, q1: np.ndarray) -> np.ndarray:
        """
        流形上的差：q1 ⊖ q0，满足 q0 ⊕ (q1 ⊖ q0) = q1

        :return: 速度 (nv)
        """
        q0 = np.asarray(q0, dtype=np.float64)
        q1 = np.asarray(q1, dtype=np.float64)
        self._check(q0)
        self._check(q1)
        v = np.zeros(self._nv, dtype=np.float64)
        for kind, iq, nq, iv, nv in self._blocks:
            if kind == VECTOR:
                v[iv:iv + nv] = q1[iq:iq + nq] - q0[iq:iq + nq]
            else:
                r0 = quaternion_to_rotation(q0[iq:iq + nq])
                r1 = quaternion_to_rotation(q1[iq:iq + nq])
                v[iv:iv + nv] = (r0.inv() * r1).as_rotvec()
        return v

    def _block_diagonal(self, vector_block, rotation_block) -> np.ndarray:
        J = np.zeros((self._nv, self._nv), dtype=np.float64)
        for kind, iq, nq, iv, nv in self._blocks:
            if kind == VECTOR:
                J[iv:iv + nv, iv:iv + nv] = vector_block * np.identity(nv)
            else:
                J[iv:iv + nv, iv:iv + nv] = rotation_block(iq, iv)
        return J

    def d_integrate_dq(self, q: np.ndarray, v: np.ndarray) -> np.ndarray:
        """∂(q ⊕ v)/∂q，在 q 与 q ⊕ v 处的切空间中表示"""
        v = np.asarray(v, dtype=np.float64)
        return self._block_diagonal(1.0, lambda iq, iv: exp3(v[iv:iv + 3]).T)

    def d_integrate_dv(self, q: np.ndarray, v: np.ndarray) -> np.ndarray:
        """∂(q ⊕ v)/∂v"""
        v = np.asarray(v, dtype=np.float64)
        return self._block_diagonal(1.0, lambda iq, iv: right_jacobian(v[iv:iv + 3]))

    def d_difference_dq0(self, q0: np.ndarray, q1: np.ndarray) -> np.ndarray:
        """∂(q1 ⊖ q0)/∂q0"""
        d = self.difference(q0, q1)

        def rotation_block(iq, iv):
            v = d[iv:iv + 3]
            return -right_jacobian_inverse(v) @ exp3(v).T

        return self._block_diagonal(-1.0, rotation_block)

    def d_difference_dq1(self, q0: np.ndarray, q1: np.ndarray) -> np.ndarray:
        """∂(q1 ⊖ q0)/∂q1"""
        d = self.difference(q0, q1)
        return self._block_diagonal(1.0, lambda iq, iv: right_jacobian_inverse(d[iv:iv + 3]))

    @property
    def name(self) -> str:
        if not self.components:
            return 'R^0'
        parts = []
        for kind, dim in self.components:
            parts.append(f"R^{dim}" if kind == VECTOR else 'SO(3)')
        return '*'.join(parts)

    def to_list(self) -> List[List]:
        return [[kind, dim] for kind, dim in self.components]

    @classmethod
    def from_list(cls, data) -> 'LiegroupSpace':
        return cls([(item[0], int(item[1])) for item in data])

    def __mul__(self, other: 'LiegroupSpace') -> 'LiegroupSpace':
        return LiegroupSpace(self.components + other.components)

    def __eq__(self, other) -> bool:
        return isinstance(other, LiegroupSpace) and self.components == other.components

    def __hash__(self):
        return hash(tuple(self.components))

    def __repr__(self):
        return f"<LiegroupSpace: {self.name}>"
