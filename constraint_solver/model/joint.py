"""
关节类层次结构实现

关节本身不保存关节变量：关节变量存放在扁平配置向量中，
每个关节通过 rank_in_configuration / rank_in_velocity 定位自己的那一段。
"""
import numpy as np
from abc import ABC, abstractmethod
from typing import Optional, Tuple, List
from typing_extensions import override

from ..utils.quaternion_utils import quaternion_to_rotation_matrix, normalize_quaternion


class JointNode(ABC):
    """
    所有关节类型的抽象基类，定义运动学模型接口。
    """

    def __init__(self, name: str, offset: np.ndarray):
        """
        初始化关节节点

        :param name: 关节名称
        :param offset: 相对父级的静态位移 (Vec3)
        """
        self.name = name
        self.parent: Optional['JointNode'] = None
        self.children: List['JointNode'] = []
        self.local_offset: np.ndarray = np.asarray(offset, dtype=np.float64)
        if self.local_offset.shape != (3,):
            raise ValueError(f"Offset of joint {name} must be a 3-vector, got {self.local_offset.shape}")
        # 由 Device 在排序时写入
        self.rank_in_configuration: int = -1
        self.rank_in_velocity: int = -1

    def add_child(self, child: 'JointNode'):
        """添加子节点，建立父子关系"""
        if child.parent is not None:
            raise ValueError(f"Joint {child.name} already has parent {child.parent.name}")
        child.parent = self
        self.children.append(child)

    @abstractmethod
    def get_local_matrix(self, q_joint: np.ndarray) -> np.ndarray:
        """
        根据关节变量计算局部变换矩阵。

        :param q_joint: 本关节在配置向量中的那一段
        :return: 4x4 局部变换矩阵
        """
        pass

    @abstractmethod
    def compute_jacobian_columns(self, global_transform: np.ndarray,
                                 point: np.ndarray) -> np.ndarray:
        """
        计算该关节对应的雅可比列 (6 x dof)。

        :param global_transform: 本关节当前的全局变换（包含关节自身的运动）
        :param point: 被跟踪点在世界坐标系中的位置 (3x1 向量)
        :return: 6 x dof 矩阵，前3行为线速度贡献，后3行为角速度贡献
        """
        pass

    @abstractmethod
    def get_dof(self) -> int:
        """
        返回自由度数量（速度维数）。
        """
        pass

    @abstractmethod
    def get_config_size(self) -> int:
        """
        返回配置变量个数（SphericalJoint 为四元数，配置维数大于自由度）。
        """
        pass

    def neutral_configuration(self) -> np.ndarray:
        """零位（T-Pose）下的关节变量"""
        return np.zeros(self.get_config_size(), dtype=np.float64)

    def get_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """每个配置变量的上下界，无约束为 ±inf"""
        n = self.get_config_size()
        return np.full(n, -np.inf), np.full(n, np.inf)

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.name}>"


def _check_axis(axis: np.ndarray) -> np.ndarray:
    axis = np.asarray(axis, dtype=np.float64)
    axis_norm = np.linalg.norm(axis)
    if axis_norm > 1e-6:
        return axis / axis_norm
    raise ValueError(f"Axis vector is not a unit vector and too small to be normalized: {axis}")


def _check_limits(limits: Optional[Tuple[float, float]], name: str):
    if limits is not None and limits[0] > limits[1]:
        raise ValueError(f"Lower limit greater than upper limit for joint {name}: {limits}")
    return None if limits is None else (float(limits[0]), float(limits[1]))


class RevoluteJoint(JointNode):
    """
    旋转关节 - 绕固定轴旋转的铰链
    """

    def __init__(self, name: str, offset: np.ndarray, axis: np.ndarray,
                 limits: Optional[Tuple[float, float]] = None):
        """
        :param name: 关节名称
        :param offset: 相对父级的静态位移 (Vec3)
        :param axis: 旋转轴（局部坐标系，不能为零向量。程序自动归一化）
        :param limits: 约束范围 [min, max]（弧度），None 表示无约束
        """
        super().__init__(name, offset)
        self.axis = _check_axis(axis)
        self.limits: Optional[Tuple[float, float]] = _check_limits(limits, name)

    def get_local_matrix(self, q_joint: np.ndarray) -> np.ndarray:
        """生成绕 axis 旋转 q 的矩阵"""
        local_transform = np.identity(4, dtype=np.float64)

        # 先计算四元数，然后通过四元数得到R_mat
        half_theta = float(q_joint[0]) / 2.0
        xyz = self.axis * np.sin(half_theta)
        quat = np.array([np.cos(half_theta), xyz[0], xyz[1], xyz[2]])

        local_transform[:3, :3] = quaternion_to_rotation_matrix(quat)
        local_transform[:3, 3] = self.local_offset
        return local_transform

    def compute_jacobian_columns(self, global_transform: np.ndarray,
                                 point: np.ndarray) -> np.ndarray:
        """
        J_i = [z_i cross (p - p_i), z_i]^T，所有变量处于世界坐标系下
        """
        z_i = global_transform[:3, :3] @ self.axis
        p_i = global_transform[:3, 3]
        return np.concatenate([np.cross(z_i, point - p_i), z_i]).reshape(6, 1)

    def get_dof(self) -> int:
        return 1

    def get_config_size(self) -> int:
        return 1

    @override
    def get_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.limits is None:
            return super().get_bounds()
        return np.array([self.limits[0]]), np.array([self.limits[1]])


class PrismaticJoint(JointNode):
    """
    移动关节 - 沿固定轴滑动的滑块
    """

    def __init__(self, name: str, offset: np.ndarray, axis: np.ndarray,
                 limits: Optional[Tuple[float, float]] = None):
        """
        :param name: 关节名称
        :param offset: 相对父级的静态位移 (Vec3)
        :param axis: 移动轴（局部坐标系，不能为零向量。程序自动归一化）
        :param limits: 约束范围 [min, max](米), None 表示无约束
        """
        super().__init__(name, offset)
        self.axis = _check_axis(axis)
        self.limits: Optional[Tuple[float, float]] = _check_limits(limits, name)

    def get_local_matrix(self, q_joint: np.ndarray) -> np.ndarray:
        """生成沿 axis 平移 q 的矩阵: T = [I | offset + q * axis]"""
        local_transform = np.identity(4, dtype=np.float64)
        local_transform[:3, 3] = self.local_offset + float(q_joint[0]) * self.axis
        return local_transform

    def compute_jacobian_columns(self, global_transform: np.ndarray,
                                 point: np.ndarray) -> np.ndarray:
        """J_i = [z_i, 0]^T"""
        z_i = global_transform[:3, :3] @ self.axis
        return np.concatenate([z_i, np.zeros(3)]).reshape(6, 1)

    def get_dof(self) -> int:
        return 1

    def get_config_size(self) -> int:
        return 1

    @override
    def get_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.limits is None:
            return super().get_bounds()
        return np.array([self.limits[0]]), np.array([self.limits[1]])


class FixedJoint(JointNode):
    """
    固定关节 - 无变量的结构连接或末端执行器
    quaternion 表示固定关节的本地旋转姿态（四元数, [w, x, y, z]）
    """

    def __init__(self, name: str, offset: np.ndarray, quaternion: Optional[np.ndarray] = None):
        """
        :param name: 关节名称
        :param offset: 相对父级的静态位移 (Vec3)
        :param quaternion: 固定关节的本地旋转（[w, x, y, z]），None 为单位四元数
        """
        super().__init__(name, offset)
        if quaternion is None:
            self.quaternion = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)
        else:
            self.quaternion = normalize_quaternion(quaternion)

    def get_local_matrix(self, q_joint: np.ndarray) -> np.ndarray:
        """先旋转，再平移"""
        local_transform = np.identity(4, dtype=np.float64)
        local_transform[:3, :3] = quaternion_to_rotation_matrix(self.quaternion)
        local_transform[:3, 3] = self.local_offset
        return local_transform

    def compute_jacobian_columns(self, global_transform: np.ndarray,
                                 point: np.ndarray) -> np.ndarray:
        return np.zeros((6, 0))

    def get_dof(self) -> int:
        return 0

    def get_config_size(self) -> int:
        return 0


class SphericalJoint(JointNode):
    """
    球形关节（SphericalJoint）

    配置变量为单位四元数 [w, x, y, z]，速度为局部坐标系下的角速度（3 维），
    积分采用右乘：q ⊕ v = q · exp(v)。
    """

    def __init__(self, name: str, offset: np.ndarray):
        """
        :param name: 关节名称
        :param offset: 相对父级的静态位移 (Vec3)
        """
        super().__init__(name, offset)

    def get_local_matrix(self, q_joint: np.ndarray) -> np.ndarray:
        local_transform = np.identity(4, dtype=np.float64)
        local_transform[:3, :3] = quaternion_to_rotation_matrix(q_joint)
        local_transform[:3, 3] = self.local_offset
        return local_transform

    def compute_jacobian_columns(self, global_transform: np.ndarray,
                                 point: np.ndarray) -> np.ndarray:
        """
        局部 XYZ 三个轴依次视为转动轴：列 k 为 [z_k cross (p - p_i), z_k]^T，z_k 为全局姿态的第 k 列
        """
        R_world = global_transform[:3, :3]
        p_i = global_transform[:3, 3]
        columns = np.zeros((6, 3), dtype=np.float64)
        for k in range(3):
            z_k = R_world[:, k]
            columns[:3, k] = np.cross(z_k, point - p_i)
            columns[3:, k] = z_k
        return columns

    def get_dof(self) -> int:
        return 3

    def get_config_size(self) -> int:
        return 4

    @override
    def neutral_configuration(self) -> np.ndarray:
        return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)
