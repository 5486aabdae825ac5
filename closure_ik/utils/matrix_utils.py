"""
4x4 刚体变换矩阵工具函数
"""
import numpy as np
from typing import Optional, Tuple

from .quaternion_utils import quaternion_to_rotation_matrix, rotation_matrix_to_quaternion


def compose_matrix(position: np.ndarray, quaternion: np.ndarray,
                   out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    由位置和姿态构建变换矩阵：先旋转，再平移

    :param position: 位置 [x, y, z]
    :param quaternion: 姿态四元数 [x, y, z, w]
    :param out: 可选的输出缓冲区（4x4）
    :return: 4x4 变换矩阵
    """
    if out is None:
        out = np.identity(4, dtype=np.float64)
    else:
        out[3, :] = (0.0, 0.0, 0.0, 1.0)
    out[:3, :3] = quaternion_to_rotation_matrix(quaternion)
    out[:3, 3] = position
    return out


def axis_rotation_matrix(axis_index: int, angle: float) -> np.ndarray:
    """绕局部 X(0) / Y(1) / Z(2) 轴旋转 angle 弧度的 3x3 矩阵"""
    c = np.cos(angle)
    s = np.sin(angle)
    if axis_index == 0:
        return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])
    if axis_index == 1:
        return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])
    if axis_index == 2:
        return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
    raise ValueError(f"Axis index must be 0, 1 or 2, got {axis_index}")


def invert_transform(matrix: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    刚体变换求逆：[R | t]^-1 = [R^T | -R^T t]
    仅适用于不含缩放的变换矩阵
    """
    if out is None:
        out = np.identity(4, dtype=np.float64)
    rot_t = matrix[:3, :3].T.copy()
    translation = matrix[:3, 3].copy()
    out[:3, :3] = rot_t
    out[:3, 3] = -rot_t @ translation
    out[3, :] = (0.0, 0.0, 0.0, 1.0)
    return out


def get_translation(matrix: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """提取变换矩阵的平移分量"""
    if out is None:
        return matrix[:3, 3].copy()
    out[:] = matrix[:3, 3]
    return out


def get_quaternion(matrix: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """提取变换矩阵的姿态四元数 [x, y, z, w]"""
    return rotation_matrix_to_quaternion(matrix, out)


def get_matrix_difference(matrix_a: np.ndarray, matrix_b: np.ndarray,
                          out_pos: Optional[np.ndarray] = None,
                          out_quat: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    计算两个位姿之间的差值（世界坐标系下）
    - 位置差：p_a - p_b
    - 姿态差：满足 q_delta * q_b = q_a 的单位四元数，取最短弧（w >= 0）

    :param matrix_a: 4x4 变换矩阵 A
    :param matrix_b: 4x4 变换矩阵 B
    :param out_pos: 可选的位置输出缓冲区（长度3）
    :param out_quat: 可选的四元数输出缓冲区（长度4）
    :return: (位置差, 姿态差四元数)
    """
    if out_pos is None:
        out_pos = np.zeros(3, dtype=np.float64)
    if out_quat is None:
        out_quat = np.zeros(4, dtype=np.float64)

    out_pos[:] = matrix_a[:3, 3] - matrix_b[:3, 3]

    # R_delta = R_a * R_b^T
    delta_rot = matrix_a[:3, :3] @ matrix_b[:3, :3].T
    quat = rotation_matrix_to_quaternion(delta_rot)
    if quat[3] < 0:
        quat = -quat
    out_quat[:] = quat / np.linalg.norm(quat)

    return out_pos, out_quat
