"""
关节节点 (Joint)
带自由度参数的变换节点：世界矩阵 = 父世界矩阵 @ 局部矩阵 @ 自由度矩阵
"""
import numpy as np
from typing_extensions import override
from typing import List, Optional, Tuple, Union

from ..utils import axis_rotation_matrix, get_matrix_difference
from .dof import DOF, DOF_COUNT, is_translation_dof, normalize_dofs
from .link import Link, KinematicGraphError


def compose_dof_matrix(dofs: List[DOF], values: np.ndarray, out: np.ndarray) -> np.ndarray:
    """
    由自由度取值构建变换矩阵
    平移通道合成为一次平移，旋转通道按声明顺序依次右乘

    :param dofs: 激活的通道列表（声明顺序）
    :param values: 6 通道取值
    :param out: 输出缓冲区（4x4）
    :return: out
    """
    out[:] = np.identity(4, dtype=np.float64)
    rotation = np.identity(3, dtype=np.float64)
    for dof in dofs:
        if is_translation_dof(dof):
            out[dof, 3] = values[dof]
        else:
            rotation = rotation @ axis_rotation_matrix(dof - DOF.EX, values[dof])
    out[:3, :3] = rotation
    return out


class Joint(Link):
    """
    关节：最多拥有一个普通子连杆，或者作为闭环关节指向图中已有的连杆，两者互斥。

    每个关节可激活六个标准通道中的任意有序子集（dof），
    所有逐通道状态都存放在长度为 6 的缓冲区中，按通道编号索引。
    """

    def __init__(self, name: str = ''):
        super().__init__(name)

        self.child: Optional[Link] = None
        self.is_closure = False

        self.dof: List[DOF] = []
        self.dof_flags: np.ndarray = np.zeros(DOF_COUNT, dtype=bool)
        self.translation_dof_count = 0
        self.rotation_dof_count = 0

        self.dof_values: np.ndarray = np.zeros(DOF_COUNT, dtype=np.float64)
        self.min_dof_limit: np.ndarray = np.full(DOF_COUNT, -np.inf, dtype=np.float64)
        self.max_dof_limit: np.ndarray = np.full(DOF_COUNT, np.inf, dtype=np.float64)
        self.dof_target: np.ndarray = np.zeros(DOF_COUNT, dtype=np.float64)
        self.dof_rest_pose: np.ndarray = np.zeros(DOF_COUNT, dtype=np.float64)

        self.matrix_dof: np.ndarray = np.identity(4, dtype=np.float64)
        self.matrix_dof_needs_update = False
        self._matrix_local: np.ndarray = np.identity(4, dtype=np.float64)
        self._matrix_scratch: np.ndarray = np.identity(4, dtype=np.float64)

    # ------------------------------------------------------------------
    # 自由度配置
    # ------------------------------------------------------------------

    def set_dof(self, *dofs: Union[int, DOF]):
        """
        按给定顺序激活通道，并将六个逐通道缓冲区全部重置为默认值
        （取值、目标、静息姿态归零，上下限恢复为 ±inf）
        """
        dofs = normalize_dofs(dofs)

        self.dof = dofs
        self.dof_flags[:] = False
        for dof in dofs:
            self.dof_flags[dof] = True
        self.translation_dof_count = sum(1 for d in dofs if is_translation_dof(d))
        self.rotation_dof_count = len(dofs) - self.translation_dof_count

        self.dof_values.fill(0.0)
        self.dof_target.fill(0.0)
        self.dof_rest_pose.fill(0.0)
        self.min_dof_limit.fill(-np.inf)
        self.max_dof_limit.fill(np.inf)

        self.set_matrix_dof_needs_update()

    def clear_dof(self):
        self.set_dof()

    def _check_active(self, dof: Union[int, DOF]) -> DOF:
        channel = normalize_dofs([dof])[0]
        if not self.dof_flags[channel]:
            raise ValueError(f"DoF {channel.name} is not enabled on {self!r}")
        return channel

    def _check_value_count(self, values: Tuple[float, ...]):
        if len(values) > len(self.dof):
            raise ValueError(f"Got {len(values)} values for {len(self.dof)} DoF on {self!r}")

    def set_dof_value(self, dof: Union[int, DOF], value: float):
        """写入通道取值，并夹紧到 [min, max] 范围内"""
        channel = self._check_active(dof)
        self.dof_values[channel] = min(max(value, self.min_dof_limit[channel]), self.max_dof_limit[channel])
        self.set_matrix_dof_needs_update()

    def set_dof_values(self, *values: float):
        """按激活通道的声明顺序依次写入取值"""
        self._check_value_count(values)
        for dof, value in zip(self.dof, values):
            self.set_dof_value(dof, value)

    def set_min_limit(self, dof: Union[int, DOF], value: float):
        channel = self._check_active(dof)
        self.min_dof_limit[channel] = value
        self.set_dof_value(channel, self.dof_values[channel])

    def set_max_limit(self, dof: Union[int, DOF], value: float):
        channel = self._check_active(dof)
        self.max_dof_limit[channel] = value
        self.set_dof_value(channel, self.dof_values[channel])

    def set_min_limits(self, *values: float):
        self._check_value_count(values)
        for dof, value in zip(self.dof, values):
            self.set_min_limit(dof, value)

    def set_max_limits(self, *values: float):
        self._check_value_count(values)
        for dof, value in zip(self.dof, values):
            self.set_max_limit(dof, value)

    def set_target_value(self, dof: Union[int, DOF], value: float):
        self.dof_target[self._check_active(dof)] = value

    def set_target_values(self, *values: float):
        self._check_value_count(values)
        for dof, value in zip(self.dof, values):
            self.set_target_value(dof, value)

    def set_rest_pose_value(self, dof: Union[int, DOF], value: float):
        self.dof_rest_pose[self._check_active(dof)] = value

    def set_rest_pose_values(self, *values: float):
        self._check_value_count(values)
        for dof, value in zip(self.dof, values):
            self.set_rest_pose_value(dof, value)

    def apply_rest_pose(self):
        """将所有激活通道恢复到静息姿态（同样受上下限约束）"""
        for dof in self.dof:
            self.set_dof_value(dof, self.dof_rest_pose[dof])

    # ------------------------------------------------------------------
    # 变换
    # ------------------------------------------------------------------

    def set_matrix_dof_needs_update(self):
        self.matrix_dof_needs_update = True
        self.set_matrix_world_needs_update()

    def update_dof_matrix(self):
        compose_dof_matrix(self.dof, self.dof_values, self.matrix_dof)
        self.matrix_dof_needs_update = False

    @override
    def get_local_matrix(self) -> np.ndarray:
        """局部矩阵 = 静态偏移矩阵 @ 自由度矩阵"""
        if self.matrix_needs_update:
            self.update_matrix()
        if self.matrix_dof_needs_update:
            self.update_dof_matrix()
        return np.matmul(self.matrix, self.matrix_dof, out=self._matrix_local)

    def get_delta_world_matrix(self, dof: Union[int, DOF], delta: float, out: np.ndarray) -> bool:
        """
        计算 dof_values[dof] 增加 delta 后本关节的世界矩阵，不修改任何状态。
        若增量会越过该通道的上下限，则改用反向增量 -delta，保证探测点仍在合法范围内。

        :param dof: 通道
        :param delta: 探测增量
        :param out: 输出缓冲区（4x4）
        :return: 增量被反向时返回 True
        """
        channel = self._check_active(dof)
        self.update_matrix_world(update_children=False)

        value = self.dof_values[channel] + delta
        inverted = bool(value > self.max_dof_limit[channel] or value < self.min_dof_limit[channel])
        if inverted:
            delta = -delta

        values = self.dof_values.copy()
        values[channel] += delta
        compose_dof_matrix(self.dof, values, self._matrix_scratch)

        if self.parent is None:
            np.matmul(self.matrix, self._matrix_scratch, out=out)
        else:
            np.matmul(self.parent.matrix_world @ self.matrix, self._matrix_scratch, out=out)
        return inverted

    def get_closure_error(self, out_pos: Optional[np.ndarray] = None,
                          out_quat: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        计算闭环误差：本关节世界位姿与闭环目标连杆世界位姿之差

        :param out_pos: 可选的位置误差缓冲区（长度3），值为 p_joint - p_target
        :param out_quat: 可选的姿态误差缓冲区（长度4），最短弧单位四元数 [x, y, z, w]
        :return: (位置误差, 姿态误差)
        """
        if not self.is_closure:
            raise KinematicGraphError(f"{self!r} is not a closure joint")

        self.update_matrix_world(update_children=False)
        self.child.update_matrix_world(update_children=False)
        return get_matrix_difference(self.matrix_world, self.child.matrix_world, out_pos, out_quat)

    # ------------------------------------------------------------------
    # 层级结构
    # ------------------------------------------------------------------

    @override
    def _validate_child(self, child: Link):
        if not isinstance(child, Link) or isinstance(child, Joint):
            raise KinematicGraphError(f"Joint child must be a Link, got {type(child).__name__}")
        if self.is_closure:
            raise KinematicGraphError(f"{self!r} is already a closure joint")
        if self.child is not None:
            raise KinematicGraphError(f"{self!r} already has a child {self.child!r}")
        super()._validate_child(child)

    @override
    def add_child(self, child: Link):
        super().add_child(child)
        self.child = child

    def make_closure(self, link: Link):
        """
        将本关节设为闭环关节，目标为图中已有的连杆 link。
        link 只通过 closure_joints 反向记录本关节，不改变其父子关系。
        """
        if not isinstance(link, Link) or isinstance(link, Joint):
            raise KinematicGraphError(f"Closure target must be a Link, got {type(link).__name__}")
        if self.is_closure:
            raise KinematicGraphError(f"{self!r} is already a closure joint")
        if self.child is not None:
            raise KinematicGraphError(f"{self!r} already has a child {self.child!r}")

        self.child = link
        self.is_closure = True
        link.closure_joints.append(self)

    @override
    def remove_child(self, child: Link):
        if self.is_closure:
            if child is not self.child:
                raise KinematicGraphError(f"{child!r} is not the closure target of {self!r}")
            child.closure_joints.remove(self)
            self.child = None
            self.is_closure = False
        else:
            super().remove_child(child)
            self.child = None
