"""
数值工具层 (Utils Layer)
四元数、4x4 变换矩阵运算，以及求解器使用的临时矩阵池
"""

from .quaternion_utils import (
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
    quaternion_multiply,
    quaternion_invert,
    quaternion_distance
)
from .matrix_utils import (
    compose_matrix,
    axis_rotation_matrix,
    invert_transform,
    get_translation,
    get_quaternion,
    get_matrix_difference
)
from .matrix_pool import MatrixPool

__all__ = [
    'quaternion_to_rotation_matrix',
    'rotation_matrix_to_quaternion',
    'quaternion_multiply',
    'quaternion_invert',
    'quaternion_distance',
    'compose_matrix',
    'axis_rotation_matrix',
    'invert_transform',
    'get_translation',
    'get_quaternion',
    'get_matrix_difference',
    'MatrixPool'
]
