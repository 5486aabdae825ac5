"""
四元数工具函数
所有四元数均为 [x, y, z, w] 顺序（标量在后），与 scipy Rotation 保持一致
"""
import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import Optional, Union


def quaternion_to_rotation_matrix(quaternion: Union[np.ndarray, list, tuple]) -> np.ndarray:
    """
    将四元数转换为旋转矩阵

    :param quaternion: 四元数，格式为 [x, y, z, w] 或 (x, y, z, w)
    :return: 3x3 旋转矩阵
    """
    quaternion = np.asarray(quaternion, dtype=np.float64)

    if quaternion.shape != (4,):
        raise ValueError(f"Quaternion must be a 4-element array, got shape {quaternion.shape}")

    # 归一化四元数
    norm = np.linalg.norm(quaternion)
    if norm < 1e-10:
        raise ValueError(f"Quaternion norm too small: {norm}, cannot normalize")
    quaternion = quaternion / norm

    x, y, z, w = quaternion[0], quaternion[1], quaternion[2], quaternion[3]

    return np.array([
        [1 - 2 * (y * y + z * z),     2 * (x * y - w * z),     2 * (x * z + w * y)],
        [    2 * (x * y + w * z), 1 - 2 * (x * x + z * z),     2 * (y * z - w * x)],
        [    2 * (x * z - w * y),     2 * (y * z + w * x), 1 - 2 * (x * x + y * y)]
    ], dtype=np.float64)


def rotation_matrix_to_quaternion(matrix: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    从旋转矩阵（或4x4变换矩阵的左上角）提取四元数

    :param matrix: 3x3 旋转矩阵或 4x4 变换矩阵
    :param out: 可选的输出缓冲区（长度4）
    :return: [x, y, z, w] 四元数
    """
    quat = R.from_matrix(np.asarray(matrix)[:3, :3]).as_quat()
    if out is None:
        return quat
    out[:] = quat
    return out


def quaternion_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """四元数乘法：a * b（先施加 b，再施加 a）"""
    ax, ay, az, aw = a[0], a[1], a[2], a[3]
    bx, by, bz, bw = b[0], b[1], b[2], b[3]
    return np.array([
        aw * bx + ax * bw + ay * bz - az * by,  # x
        aw * by - ax * bz + ay * bw + az * bx,  # y
        aw * bz + ax * by - ay * bx + az * bw,  # z
        aw * bw - ax * bx - ay * by - az * bz   # w
    ], dtype=np.float64)


def quaternion_invert(quaternion: np.ndarray) -> np.ndarray:
    """四元数求逆（共轭除以模长平方）"""
    quaternion = np.asarray(quaternion, dtype=np.float64)
    norm_sq = float(np.dot(quaternion, quaternion))
    if norm_sq < 1e-20:
        raise ValueError(f"Quaternion norm too small: {np.sqrt(norm_sq)}, cannot invert")
    return np.array([-quaternion[0], -quaternion[1], -quaternion[2], quaternion[3]]) / norm_sq


def quaternion_distance(a: np.ndarray, b: np.ndarray) -> float:
    """
    两个单位四元数之间的角距离（弧度）
    取最短弧，结果非负；q 与 -q 表示同一旋转，距离为 0

    :param a: 四元数 [x, y, z, w]
    :param b: 四元数 [x, y, z, w]
    :return: 角距离，范围 [0, pi]
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    delta = quaternion_multiply(a / np.linalg.norm(a), quaternion_invert(b / np.linalg.norm(b)))
    # atan2 形式在接近 0 时比 arccos 精度更高
    return 2.0 * float(np.arctan2(np.linalg.norm(delta[:3]), abs(delta[3])))
