"""
工具层 (Utils Layer)
区间集合代数与四元数 / SO(3) 工具函数
"""

from .quaternion_utils import (
    normalize_quaternion,
    quaternion_to_rotation_matrix
)
from . import segments

__all__ = [
    'normalize_quaternion',
    'quaternion_to_rotation_matrix',
    'segments'
]
