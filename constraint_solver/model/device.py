"""
运动学模型 (Device)

管理关节树，给每个关节分配配置 / 速度向量中的位置，提供正向运动学与世界坐标系雅可比。
正向运动学结果保存在调用方持有的 KinematicData 中：并发调用时每个调用方使用自己的缓存。
"""
import numpy as np
from typing import Dict, List, Optional

from .joint import JointNode, SphericalJoint
from .liegroup import LiegroupSpace, VECTOR, ROTATION


class KinematicData:
    """
    一次正向运动学计算的结果缓存

    :ivar configuration: 计算所用的配置
    :ivar transforms: 关节名称 -> 4x4 全局变换矩阵
    """

    def __init__(self, configuration: np.ndarray):
        self.configuration = np.array(configuration, dtype=np.float64)
        self.transforms: Dict[str, np.ndarray] = {}


class Device:
    """
    关节树 + 配置空间
    """

    def __init__(self, name: str, root: JointNode):
        """
        :param name: 模型名称，持久化时用来引用该模型
        :param root: 关节树的根节点
        """
        self.name = name
        self.root = root
        self._joints: List[JointNode] = []
        self._joint_map: Dict[str, JointNode] = {}
        self._rank_joints()

    def _rank_joints(self):
        """深度优先遍历，给每个关节分配配置 / 速度向量中的起始位置"""
        iq = iv = 0
        stack = [self.root]
        while stack:
            joint = stack.pop()
            if joint.name in self._joint_map:
                raise ValueError(f"Duplicate joint name: {joint.name}")
            joint.rank_in_configuration = iq
            joint.rank_in_velocity = iv
            iq += joint.get_config_size()
            iv += joint.get_dof()
            self._joints.append(joint)
            self._joint_map[joint.name] = joint
            stack.extend(reversed(joint.children))
        self._config_size = iq
        self._number_dof = iv

        components = []
        for joint in self._joints:
            if isinstance(joint, SphericalJoint):
                components.append((ROTATION, 1))
            elif joint.get_config_size() > 0:
                components.append((VECTOR, joint.get_config_size()))
        self._config_space = LiegroupSpace(components)

    def joints(self) -> List[JointNode]:
        return list(self._joints)

    def get_joint_by_name(self, name: str) -> JointNode:
        if name not in self._joint_map:
            raise ValueError(f"Joint '{name}' not found in device {self.name}")
        return self._joint_map[name]

    def config_size(self) -> int:
        return self._config_size

    def number_dof(self) -> int:
        return self._number_dof

    def config_space(self) -> LiegroupSpace:
        return self._config_space

    def neutral_configuration(self) -> np.ndarray:
        """所有关节的零位（T-Pose）"""
        q = np.zeros(self._config_size, dtype=np.float64)
        for joint in self._joints:
            n = joint.get_config_size()
            q[joint.rank_in_configuration:joint.rank_in_configuration + n] = \
                joint.neutral_configuration()
        return q

    def lower_bounds(self) -> np.ndarray:
        return self._bounds(0)

    def upper_bounds(self) -> np.ndarray:
        return self._bounds(1)

    def _bounds(self, which: int) -> np.ndarray:
        bounds = np.zeros(self._config_size, dtype=np.float64)
        for joint in self._joints:
            n = joint.get_config_size()
            bounds[joint.rank_in_configuration:joint.rank_in_configuration + n] = \
                joint.get_bounds()[which]
        return bounds

    def random_configuration(self, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """
        在关节限位内均匀采样一个配置；无限位的关节变量在 [-pi, pi] 内采样
        """
        rng = np.random.default_rng() if rng is None else rng
        lower = np.where(np.isfinite(self.lower_bounds()), self.lower_bounds(), -np.pi)
        upper = np.where(np.isfinite(self.upper_bounds()), self.upper_bounds(), np.pi)
        q = lower + (upper - lower) * rng.random(self._config_size)
        for joint in self._joints:
            if isinstance(joint, SphericalJoint):
                quat = rng.normal(size=4)
                i = joint.rank_in_configuration
                q[i:i + 4] = quat / np.linalg.norm(quat)
        return q

    def forward_kinematics(self, q: np.ndarray) -> KinematicData:
        """
        正向运动学：计算所有关节的全局变换

        :param q: 配置向量
        :return: 本次计算的缓存
        """
        q = np.asarray(q, dtype=np.float64)
        if q.shape != (self._config_size,):
            raise ValueError(f"Configuration of {self.name} must have size {self._config_size}, got {q.shape}")
        data = KinematicData(q)
        for joint in self._joints:  # 深度优先顺序保证父节点先于子节点
            n = joint.get_config_size()
            i = joint.rank_in_configuration
            local_transform = joint.get_local_matrix(q[i:i + n])
            if joint.parent is None:
                data.transforms[joint.name] = local_transform
            else:
                data.transforms[joint.name] = data.transforms[joint.parent.name] @ local_transform
        return data

    def joint_jacobian(self, data: KinematicData, joint: JointNode,
                       point: Optional[np.ndarray] = None) -> np.ndarray:
        """
        构建雅可比矩阵 J (6 x nv)：世界坐标系下某点的线速度与所在刚体的角速度

        :param data: 正向运动学缓存
        :param joint: 刚体所在的关节
        :param point: 世界坐标系中的点，默认为关节原点
        """
        if point is None:
            point = data.transforms[joint.name][:3, 3]
        jacobian = np.zeros((6, self._number_dof), dtype=np.float64)
        current = joint
        while current is not None:
            dof = current.get_dof()
            if dof > 0:
                i = current.rank_in_velocity
                jacobian[:, i:i + dof] = current.compute_jacobian_columns(
                    data.transforms[current.name], point)
            current = current.parent
        return jacobian

    def __repr__(self):
        return f"<Device: {self.name} (nq={self._config_size}, nv={self._number_dof})>"
