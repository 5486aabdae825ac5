"""
连杆节点 (Link)
场景图中带位置与姿态的变换节点，维护世界矩阵缓存
"""
import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import Callable, List, Optional

from ..utils import (
    compose_matrix,
    invert_transform,
    get_translation,
    get_quaternion,
    quaternion_invert,
    quaternion_multiply,
    rotation_matrix_to_quaternion
)


class KinematicGraphError(Exception):
    """运动学图结构约束被破坏时抛出（调用前的状态保持不变）"""
    pass


class Link:
    """
    连杆节点：局部位置 + 局部姿态，拥有有序的子节点列表。

    父子边是独占的所有权关系；closure_joints 只是非所有权的反向引用，
    记录以本节点为闭环目标的关节，遍历时不会沿它行进。

    脏标记采用"写时立即向下传播，读时才重算"的策略：
    - matrix_needs_update: 局部矩阵需要由 position / quaternion 重建
    - matrix_world_needs_update: 世界矩阵需要重算（本节点脏时所有后代必然也是脏的）
    """

    def __init__(self, name: str = ''):
        """
        :param name: 节点名称（仅用于调试输出）
        """
        self.name = name
        self.parent: Optional['Link'] = None
        self.children: List['Link'] = []
        self.closure_joints: list = []

        self.position: np.ndarray = np.zeros(3, dtype=np.float64)
        self.quaternion: np.ndarray = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)  # [x, y, z, w]

        self.matrix: np.ndarray = np.identity(4, dtype=np.float64)
        self.matrix_world: np.ndarray = np.identity(4, dtype=np.float64)
        self.matrix_needs_update = False
        self.matrix_world_needs_update = False

    # ------------------------------------------------------------------
    # 局部变换
    # ------------------------------------------------------------------

    def set_position(self, x: float, y: float, z: float):
        self.position[:] = (x, y, z)
        self.set_matrix_needs_update()

    def set_quaternion(self, x: float, y: float, z: float, w: float):
        quat = np.array([x, y, z, w], dtype=np.float64)
        norm = np.linalg.norm(quat)
        if norm < 1e-10:
            raise ValueError(f"Quaternion norm too small: {quat}")
        self.quaternion[:] = quat / norm
        self.set_matrix_needs_update()

    def set_euler(self, x: float, y: float, z: float):
        """以内旋 XYZ 顺序的欧拉角（弧度）设置局部姿态"""
        self.quaternion[:] = R.from_euler('XYZ', [x, y, z], degrees=False).as_quat()
        self.set_matrix_needs_update()

    def set_matrix(self, matrix: np.ndarray):
        """将刚体变换矩阵分解为局部位置和姿态"""
        self.position[:] = get_translation(matrix)
        self.quaternion[:] = get_quaternion(matrix)
        self.set_matrix_needs_update()

    def set_matrix_needs_update(self):
        self.matrix_needs_update = True
        self.set_matrix_world_needs_update()

    def set_matrix_world_needs_update(self):
        """将本节点及全部后代标记为世界矩阵待更新"""
        if self.matrix_world_needs_update:
            return

        self.matrix_world_needs_update = True
        for child in self.children:
            child.set_matrix_world_needs_update()

    def update_matrix(self):
        compose_matrix(self.position, self.quaternion, self.matrix)
        self.matrix_needs_update = False

    def get_local_matrix(self) -> np.ndarray:
        """
        返回参与世界矩阵计算的局部变换矩阵。
        子类可重写此方法以追加额外的变换（如关节的自由度矩阵）

        :return: 4x4 局部变换矩阵
        """
        if self.matrix_needs_update:
            self.update_matrix()
        return self.matrix

    # ------------------------------------------------------------------
    # 世界变换
    # ------------------------------------------------------------------

    def update_matrix_world(self, force: bool = False, update_children: bool = True):
        """
        更新世界矩阵：world = parent_world @ local

        父节点为脏时先向上补算父链；随后（可选）递归进入子节点，
        子节点只有在脏或 force 时才真正重算。

        :param force: 即使未标记为脏也强制重算
        :param update_children: 是否递归更新子节点
        """
        if self.matrix_world_needs_update or force:
            parent = self.parent
            local_matrix = self.get_local_matrix()
            if parent is None:
                self.matrix_world[:] = local_matrix
            else:
                if parent.matrix_world_needs_update:
                    parent.update_matrix_world(update_children=False)
                np.matmul(parent.matrix_world, local_matrix, out=self.matrix_world)
            self.matrix_world_needs_update = False

        if update_children:
            for child in self.children:
                child.update_matrix_world(force)

    def get_world_position(self, out: Optional[np.ndarray] = None) -> np.ndarray:
        self.update_matrix_world(update_children=False)
        return get_translation(self.matrix_world, out)

    def get_world_quaternion(self, out: Optional[np.ndarray] = None) -> np.ndarray:
        self.update_matrix_world(update_children=False)
        return get_quaternion(self.matrix_world, out)

    def set_world_position(self, x: float, y: float, z: float):
        """设置局部位置，使本节点在当前父节点下位于给定的世界坐标"""
        target = np.array([x, y, z, 1.0], dtype=np.float64)
        if self.parent is not None:
            self.parent.update_matrix_world(update_children=False)
            target = invert_transform(self.parent.matrix_world) @ target
        self.set_position(target[0], target[1], target[2])

    def set_world_quaternion(self, x: float, y: float, z: float, w: float):
        """设置局部姿态，使本节点在当前父节点下具有给定的世界姿态"""
        target = np.array([x, y, z, w], dtype=np.float64)
        if self.parent is not None:
            self.parent.update_matrix_world(update_children=False)
            parent_quat = rotation_matrix_to_quaternion(self.parent.matrix_world)
            target = quaternion_multiply(quaternion_invert(parent_quat), target)
        self.set_quaternion(target[0], target[1], target[2], target[3])

    # ------------------------------------------------------------------
    # 层级结构
    # ------------------------------------------------------------------

    def _validate_child(self, child: 'Link'):
        """
        钩子方法：检查 child 能否成为本节点的子节点（不检查其当前父节点）
        子类可以重写此方法追加约束，违规时抛出 KinematicGraphError
        """
        if not isinstance(child, Link):
            raise KinematicGraphError(f"Child must be a Link, got {type(child).__name__}")
        if child is self or self.is_descendant_of(child):
            raise KinematicGraphError(f"Adding {child!r} under {self!r} would create a cycle")

    def add_child(self, child: 'Link'):
        """
        添加子节点
        子节点必须尚未拥有父节点；需要保持世界位姿的重新挂接请使用 attach_child
        """
        self._validate_child(child)
        if child.parent is not None:
            raise KinematicGraphError(f"{child!r} already has a parent {child.parent!r}")

        child.parent = self
        self.children.append(child)
        child.set_matrix_world_needs_update()

    def remove_child(self, child: 'Link'):
        if child not in self.children:
            raise KinematicGraphError(f"{child!r} is not a child of {self!r}")

        self.children.remove(child)
        child.parent = None
        child.set_matrix_world_needs_update()

    def attach_child(self, child: 'Link'):
        """
        将 child 重新挂到本节点下，并保持其当前世界位姿不变：
        local = inverse(self.world) @ child.world
        """
        self._validate_child(child)

        self.update_matrix_world(update_children=False)
        child.update_matrix_world(update_children=False)
        world_matrix = child.matrix_world.copy()

        if child.parent is not None:
            child.parent.remove_child(child)
        self.add_child(child)

        child.set_matrix(invert_transform(self.matrix_world) @ world_matrix)

    def detach_child(self, child: 'Link'):
        """将 child 从本节点移除并成为根节点，保持其当前世界位姿不变"""
        if child not in self.children:
            raise KinematicGraphError(f"{child!r} is not a child of {self!r}")

        child.update_matrix_world(update_children=False)
        world_matrix = child.matrix_world.copy()

        self.remove_child(child)
        child.set_matrix(world_matrix)

    # ------------------------------------------------------------------
    # 遍历
    # ------------------------------------------------------------------

    def traverse(self, callback: Callable[['Link'], None]):
        """深度优先（先序）访问本节点及全部后代，每个节点恰好一次"""
        callback(self)
        for child in self.children:
            child.traverse(callback)

    def traverse_parents(self, callback: Callable[['Link'], None]):
        """由近到远访问所有祖先节点（不含自身）"""
        current = self.parent
        while current is not None:
            callback(current)
            current = current.parent

    def get_root(self) -> 'Link':
        current = self
        while current.parent is not None:
            current = current.parent
        return current

    def is_descendant_of(self, node: 'Link') -> bool:
        current = self.parent
        while current is not None:
            if current is node:
                return True
            current = current.parent
        return False

    def __repr__(self):
        return f"<{self.__class__.__name__}: {self.name}>"
