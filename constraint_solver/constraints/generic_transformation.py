"""
运动学模型上的位置 / 姿态 / 位姿函数

值为世界坐标系下的位置（R^3）、姿态（SO(3) 四元数）或二者组合（R^3 x SO(3)）。
姿态部分的导数使用局部（body）角速度，和配置空间的右乘积分约定一致。
"""
import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import Optional

from ..model.device import Device
from ..model.joint import JointNode
from ..model.liegroup import LiegroupSpace
from ..utils.quaternion_utils import rotation_to_quaternion
from .differentiable_function import DifferentiableFunction


class _JointFrameFunction(DifferentiableFunction):
    """
    关节上固定点 / 坐标系的公共部分

    :ivar local_point: 关节坐标系中的点
    """

    def __init__(self, name: str, device: Device, joint: JointNode,
                 output_space: LiegroupSpace, local_point: Optional[np.ndarray] = None):
        super().__init__(device.config_size(), device.number_dof(), output_space, name)
        self.device = device
        self.joint = joint
        self.local_point = np.zeros(3) if local_point is None else np.asarray(local_point, dtype=np.float64)
        if self.local_point.shape != (3,):
            raise ValueError(f"{name}: local point must be a 3-vector, got {self.local_point.shape}")

    def _frame(self, argument: np.ndarray):
        data = self.device.forward_kinematics(argument)
        transform = data.transforms[self.joint.name]
        position = transform[:3, :3] @ self.local_point + transform[:3, 3]
        return data, transform[:3, :3], position

    def _position(self, argument: np.ndarray) -> np.ndarray:
        return self._frame(argument)[2]

    def _quaternion(self, argument: np.ndarray) -> np.ndarray:
        return rotation_to_quaternion(R.from_matrix(self._frame(argument)[1]))

    def _world_jacobian(self, argument: np.ndarray):
        data, rotation, position = self._frame(argument)
        return rotation, self.device.joint_jacobian(data, self.joint, position)


class Position(_JointFrameFunction):
    """
    关节上一点在世界坐标系中的位置
    """

    def __init__(self, name: str, device: Device, joint: JointNode,
                 local_point: Optional[np.ndarray] = None):
        super().__init__(name, device, joint, LiegroupSpace.Rn(3), local_point)

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        return self._position(argument)

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        return self._world_jacobian(argument)[1][:3]


class Orientation(_JointFrameFunction):
    """
    关节坐标系在世界坐标系中的姿态（四元数 [w, x, y, z]）
    """

    def __init__(self, name: str, device: Device, joint: JointNode):
        super().__init__(name, device, joint, LiegroupSpace.SO3())

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        return self._quaternion(argument)

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        rotation, jacobian = self._world_jacobian(argument)
        # 世界角速度 -> 局部角速度
        return rotation.T @ jacobian[3:]


class Transformation(_JointFrameFunction):
    """
    关节坐标系的位姿：位置 (R^3) 与姿态 (SO(3))
    """

    def __init__(self, name: str, device: Device, joint: JointNode,
                 local_point: Optional[np.ndarray] = None):
        super().__init__(name, device, joint, LiegroupSpace.R3xSO3(), local_point)

    def impl_compute(self, argument: np.ndarray) -> np.ndarray:
        _, rotation, position = self._frame(argument)
        return np.concatenate([position, rotation_to_quaternion(R.from_matrix(rotation))])

    def impl_jacobian(self, argument: np.ndarray) -> np.ndarray:
        rotation, jacobian = self._world_jacobian(argument)
        return np.vstack([jacobian[:3], rotation.T @ jacobian[3:]])
