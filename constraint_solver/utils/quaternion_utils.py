"""
四元数与 SO(3) 工具函数

四元数统一使用 [w, x, y, z] 格式；scipy 的 Rotation 使用 [x, y, z, w]，在边界处转换。
"""
import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import Union

_SMALL_ANGLE = 1e-8


def normalize_quaternion(quaternion: Union[np.ndarray, list, tuple]) -> np.ndarray:
    """
    归一化四元数

    :param quaternion: 四元数，格式为 [w, x, y, z]
    :return: 单位四元数
    """
    quaternion = np.asarray(quaternion, dtype=np.float64)

    if quaternion.shape != (4,):
        raise ValueError(f"Quaternion must be a 4-element array, got shape {quaternion.shape}")

    norm = np.linalg.norm(quaternion)
    if norm < 1e-10:
        raise ValueError(f"Quaternion norm too small: {norm}, cannot normalize")
    return quaternion / norm


def quaternion_to_rotation_matrix(quaternion: Union[np.ndarray, list, tuple]) -> np.ndarray:
    """
    将四元数转换为旋转矩阵

    :param quaternion: 四元数，格式为 [w, x, y, z] 或 (w, x, y, z)
    :return: 3x3 旋转矩阵
    """
    w, x, y, z = normalize_quaternion(quaternion)

    return np.array([
        [1 - 2 * (y * y + z * z),     2 * (x * y - w * z),     2 * (x * z + w * y)],
        [    2 * (x * y + w * z), 1 - 2 * (x * x + z * z),     2 * (y * z - w * x)],
        [    2 * (x * z - w * y),     2 * (y * z + w * x), 1 - 2 * (x * x + y * y)]
    ], dtype=np.float64)


def quaternion_to_rotation(quaternion: np.ndarray) -> R:
    """[w, x, y, z] -> scipy Rotation"""
    w, x, y, z = normalize_quaternion(quaternion)
    return R.from_quat([x, y, z, w])


def rotation_to_quaternion(rotation: R) -> np.ndarray:
    """scipy Rotation -> [w, x, y, z]，取 w >= 0 的半球"""
    x, y, z, w = rotation.as_quat()
    quaternion = np.array([w, x, y, z], dtype=np.float64)
    if quaternion[0] < 0:
        quaternion = -quaternion
    return quaternion


def skew(v: np.ndarray) -> np.ndarray:
    """向量的反对称矩阵 [v]x"""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=np.float64)


def exp3(v: np.ndarray) -> np.ndarray:
    """SO(3) 指数映射：旋转向量 -> 旋转矩阵"""
    return R.from_rotvec(np.asarray(v, dtype=np.float64)).as_matrix()


def right_jacobian(v: np.ndarray) -> np.ndarray:
    """
    SO(3) 右雅可比 Jr(v)，满足 exp(v + dv) ≈ exp(v) exp(Jr(v) dv)

    :param v: 旋转向量
    :return: 3x3 矩阵
    """
    theta = np.linalg.norm(v)
    W = skew(v)
    if theta < _SMALL_ANGLE:
        return np.identity(3) - 0.5 * W + W @ W / 6.0
    theta2 = theta * theta
    return (np.identity(3)
            - (1.0 - np.cos(theta)) / theta2 * W
            + (theta - np.sin(theta)) / (theta2 * theta) * W @ W)


def right_jacobian_inverse(v: np.ndarray) -> np.ndarray:
    """
    SO(3) 右雅可比的逆 Jr(v)^-1，满足 log(exp(v) exp(dv)) ≈ v + Jr(v)^-1 dv
    """
    theta = np.linalg.norm(v)
    W = skew(v)
    if theta < _SMALL_ANGLE:
        return np.identity(3) + 0.5 * W + W @ W / 12.0
    # (1 + cos θ) / sin θ = cot(θ/2)，在 θ = π 处仍有界
    half = 0.5 * theta
    coefficient = 1.0 / (theta * theta) - np.cos(half) / (2.0 * theta * np.sin(half))
    return np.identity(3) + 0.5 * W + coefficient * W @ W
