"""
模型层 (Model Layer)
运动学图的节点与结构约束：父子所有权边构成的树，加上非所有权的闭环边

导出：
- Link: 连杆，带局部位置/姿态和世界矩阵缓存的变换节点
- Joint: 关节，带自由度参数，至多一个子连杆或作为闭环关节
- Goal: 目标，带约束掩码的闭环端点
- DOF: 六个标准自由度通道
- KinematicGraphError: 结构约束违规
"""

from .dof import DOF, axis_to_dof, is_translation_dof
from .link import Link, KinematicGraphError
from .joint import Joint
from .goal import Goal

__all__ = [
    'DOF',
    'axis_to_dof',
    'is_translation_dof',
    'Link',
    'KinematicGraphError',
    'Joint',
    'Goal'
]
