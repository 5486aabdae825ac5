"""
目标节点 (Goal)
"""
import numpy as np
from typing import List, Union

from .dof import DOF, DOF_COUNT, normalize_dofs
from .joint import Joint


class Goal(Joint):
    """
    目标：作为闭环端点的特殊关节，通常 make_closure 指向末端执行器连杆。

    goal_dof 指定闭环误差中哪些分量（3个平移 + 3个旋转）需要被求解器驱动为零，
    掩码之外的分量在组装残差和雅可比行时被忽略。默认约束全部六个分量。
    目标自身的自由度不参与求解。
    """

    def __init__(self, name: str = ''):
        super().__init__(name)
        self.goal_dof: List[DOF] = list(DOF)
        self.goal_dof_flags: np.ndarray = np.ones(DOF_COUNT, dtype=bool)

    def set_goal_dof(self, *dofs: Union[int, DOF]):
        dofs = normalize_dofs(dofs)
        self.goal_dof = dofs
        self.goal_dof_flags[:] = False
        for dof in dofs:
            self.goal_dof_flags[dof] = True
