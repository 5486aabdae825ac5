"""
自由度 (DoF) 通道定义
"""
import numpy as np
from enum import IntEnum
from typing import Iterable, List, Union


class DOF(IntEnum):
    """
    六个标准自由度通道：
    - X / Y / Z: 沿局部 X / Y / Z 轴平移
    - EX / EY / EZ: 绕局部 X / Y / Z 轴旋转
    """
    X = 0
    Y = 1
    Z = 2
    EX = 3
    EY = 4
    EZ = 5


DOF_COUNT = len(DOF)


def is_translation_dof(dof: int) -> bool:
    return dof < DOF.EX


def normalize_dofs(dofs: Iterable[Union[int, DOF]]) -> List[DOF]:
    """
    校验并转换通道列表：每个通道必须合法且不能重复

    :param dofs: 通道序列
    :return: DOF 列表（保持原顺序）
    """
    result: List[DOF] = []
    for dof in dofs:
        try:
            channel = DOF(dof)
        except ValueError:
            raise ValueError(f"Invalid DoF channel: {dof!r}") from None
        if channel in result:
            raise ValueError(f"Duplicate DoF channel: {channel.name}")
        result.append(channel)
    return result


def axis_to_dof(axis: Union[np.ndarray, list, tuple], translation: bool = False) -> DOF:
    """
    将方向向量解释为对应的坐标轴通道

    只接受能明确对应到单一坐标轴的向量：取绝对值最大的分量，
    零向量或多个分量并列最大时报错，不会任意挑选一个通道。

    :param axis: 方向向量 [x, y, z]
    :param translation: True 返回平移通道 (X/Y/Z)，否则返回旋转通道 (EX/EY/EZ)
    :return: 对应的 DOF 通道
    """
    components = np.abs(np.asarray(axis, dtype=np.float64))
    if components.shape != (3,):
        raise ValueError(f"Axis must be a 3-element vector, got shape {components.shape}")

    eps = 1e-8
    largest = float(components.max())
    if largest < eps:
        raise ValueError(f"Axis vector cannot be zero-length: {axis}")

    if int(np.sum(np.abs(components - largest) < eps)) > 1:
        raise ValueError(f"Axis vector is ambiguous across multiple components: {axis}")

    index = int(np.argmax(components))
    return DOF(index) if translation else DOF(index + DOF.EX)
