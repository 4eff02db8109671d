"""
模型层 (Model Layer)
配置空间与运动学模型，作为约束函数的外部协作者

导出：
- LiegroupSpace: R^n 与 SO(3) 的积空间，提供积分 / 差分及其导数
- JointNode: 关节抽象基类
- FixedJoint / RevoluteJoint / PrismaticJoint / SphericalJoint: 具体关节
- Device: 关节树 + 配置空间，正向运动学与雅可比
"""

from .liegroup import LiegroupSpace
from .joint import (
    JointNode,
    FixedJoint,
    RevoluteJoint,
    PrismaticJoint,
    SphericalJoint
)
from .device import Device, KinematicData

__all__ = [
    'LiegroupSpace',
    'JointNode',
    'FixedJoint',
    'RevoluteJoint',
    'PrismaticJoint',
    'SphericalJoint',
    'Device',
    'KinematicData'
]
