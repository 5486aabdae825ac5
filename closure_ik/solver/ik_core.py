"""
IK核心算法实现
闭环收集与分链、误差向量、有限差分雅可比矩阵
"""
import logging
import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import Dict, List, Optional, Sequence, Set

from ..model import Goal, Joint, Link, is_translation_dof
from ..utils import MatrixPool, invert_transform

logger = logging.getLogger(__name__)


def compute_error_vector(current_transform: np.ndarray,
                         target_transform: np.ndarray,
                         out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    计算闭环关节位姿与目标位姿之间的 6x1 误差向量

    :param current_transform: 闭环关节的 4x4 世界矩阵
    :param target_transform: 闭环目标连杆的 4x4 世界矩阵
    :param out: 可选的输出缓冲区（长度6）
    :return: 6x1 的误差向量 [delta_p (3x1), delta_r (3x1)]，均在世界坐标系下
    """
    if out is None:
        out = np.zeros(6, dtype=np.float64)

    # 位置误差 (delta_p)
    out[:3] = current_transform[:3, 3] - target_transform[:3, 3]

    # 姿态误差 (delta_r)：R_error = R_current * R_target^(-1)，转换为轴-角向量
    # 轴-角向量的方向是旋转轴，模长是旋转角度（弧度），取最短弧
    R_error_mat = current_transform[:3, :3] @ target_transform[:3, :3].T
    out[3:] = R.from_matrix(R_error_mat).as_rotvec()

    return out


def collect_ancestor_joints(node: Link) -> Set[int]:
    """收集 node 自身（若为关节）及其全部祖先关节的 id"""
    result: Set[int] = set()

    def collect(current: Link):
        if isinstance(current, Joint):
            result.add(id(current))

    collect(node)
    node.traverse_parents(collect)
    return result


def get_closure_mask(closure: Joint) -> np.ndarray:
    """闭环误差的六分量掩码：目标使用其 goal_dof，普通闭环关节约束全部分量"""
    if isinstance(closure, Goal):
        return closure.goal_dof_flags.copy()
    return np.ones(6, dtype=bool)


class IKChain:
    """
    IK链：一组相互耦合的闭环，以及影响它们的全部自由关节。

    自由关节 = 有激活通道、且是某个闭环关节或其目标连杆的祖先（或闭环关节本身）的非目标关节。
    两个闭环只要共享任一自由关节就属于同一条链，需要联立求解。
    """

    def __init__(self, closures: List[Joint], free_joints: List[Joint]):
        self.closures = closures
        self.free_joints = free_joints

        # 闭环关节一侧与目标连杆一侧各自的祖先关节
        self.closure_side: List[Set[int]] = [collect_ancestor_joints(c) for c in closures]
        self.target_side: List[Set[int]] = [collect_ancestor_joints(c.child) for c in closures]

        self.masks: List[np.ndarray] = []
        self.row_count = 0
        self.dof_count = 0
        self.refresh()

    def refresh(self):
        """重新读取掩码和激活通道数（结构不变时，它们仍可能被修改）"""
        self.masks = [get_closure_mask(c) for c in self.closures]
        self.row_count = int(sum(int(mask.sum()) for mask in self.masks))
        self.dof_count = int(sum(len(joint.dof) for joint in self.free_joints))

    def influences(self, joint: Joint, index: int) -> bool:
        key = id(joint)
        return key in self.closure_side[index] or key in self.target_side[index]

    def __repr__(self):
        return f"<IKChain: {len(self.closures)} closures, {len(self.free_joints)} joints>"


def build_ik_chains(roots: Sequence[Link]) -> List[IKChain]:
    """
    构建IK链：遍历所有根节点的子树，收集闭环关节并按共享的自由关节分组。

    :param roots: 根节点序列（应为 find_roots 的完整结果）
    :return: IK链列表，按闭环的发现顺序排列
    """
    nodes: List[Link] = []
    seen: Set[int] = set()

    def visit(node: Link):
        if id(node) not in seen:
            seen.add(id(node))
            nodes.append(node)

    for root in roots:
        root.traverse(visit)

    joints = [node for node in nodes if isinstance(node, Joint)]
    closures = [joint for joint in joints if joint.is_closure]
    if not closures:
        return []

    # 每个闭环受哪些自由关节影响；目标连杆可能位于未遍历到的树中，所以沿父链直接收集
    candidates: Dict[int, Joint] = {}
    influence: List[Set[int]] = []
    for closure in closures:
        keys = set()
        for side in (closure, closure.child):
            current = side
            while current is not None:
                if isinstance(current, Joint) and not isinstance(current, Goal) and current.dof:
                    keys.add(id(current))
                    candidates.setdefault(id(current), current)
                current = current.parent
        influence.append(keys)

    # 并查集：共享自由关节的闭环合并为同一条链
    parent = list(range(len(closures)))

    def find(index: int) -> int:
        while parent[index] != index:
            parent[index] = parent[parent[index]]
            index = parent[index]
        return index

    owner: Dict[int, int] = {}
    for index, keys in enumerate(influence):
        for key in keys:
            if key in owner:
                parent[find(index)] = find(owner[key])
            else:
                owner[key] = index

    groups: Dict[int, List[int]] = {}
    for index in range(len(closures)):
        groups.setdefault(find(index), []).append(index)

    # 链内关节顺序：先按遍历顺序，未遍历到的（其他树中的）关节按发现顺序追加
    order = {id(joint): position for position, joint in enumerate(joints)}
    chains: List[IKChain] = []
    for indices in sorted(groups.values(), key=lambda group: group[0]):
        keys = set().union(*(influence[i] for i in indices))
        chain_joints = sorted((candidates[key] for key in keys),
                              key=lambda joint: order.get(id(joint), len(order)))
        chains.append(IKChain([closures[i] for i in indices], chain_joints))

    logger.debug("找到 %d 个闭环，分为 %d 条IK链", len(closures), len(chains))
    return chains


def compute_closure_errors(chain: IKChain, errors: List[np.ndarray]) -> List[np.ndarray]:
    """重新计算链上每个闭环的 6 分量误差（会按需刷新世界矩阵）"""
    for closure, error in zip(chain.closures, errors):
        closure.update_matrix_world(update_children=False)
        closure.child.update_matrix_world(update_children=False)
        compute_error_vector(closure.matrix_world, closure.child.matrix_world, error)
    return errors


def compute_jacobian(chain: IKChain,
                     errors: List[np.ndarray],
                     row_weights: np.ndarray,
                     translation_step: float,
                     rotation_step: float,
                     pool: MatrixPool) -> np.ndarray:
    """
    用有限差分构建雅可比矩阵 J (row_count x dof_count)

    每一列对应一个自由关节的一个激活通道：通过 get_delta_world_matrix 得到探测后的关节世界矩阵 D，
    闭环关节或目标连杆若位于该关节之下，则其世界矩阵变为 D @ inverse(W_joint) @ W，
    由此得到探测后的闭环误差，与当前误差作差再除以（带符号的）步长。

    :param chain: IK链
    :param errors: 当前各闭环的 6 分量误差
    :param row_weights: 6 分量行权重
    :param translation_step: 平移通道探测步长
    :param rotation_step: 旋转通道探测步长
    :param pool: 临时矩阵池
    :return: 掩码后的雅可比矩阵（来自矩阵池）
    """
    jacobian = pool.get(chain.row_count, chain.dof_count)
    jacobian.fill(0.0)

    delta_world = pool.get(4, 4)
    inverse_world = pool.get(4, 4)
    relative = pool.get(4, 4)
    closure_world = pool.get(4, 4)
    target_world = pool.get(4, 4)
    perturbed_error = pool.get(6, 1)[:, 0]

    col = 0
    for joint in chain.free_joints:
        joint.update_matrix_world(update_children=False)
        invert_transform(joint.matrix_world, inverse_world)
        affected = [i for i in range(len(chain.closures)) if chain.influences(joint, i)]

        for dof in joint.dof:
            step = translation_step if is_translation_dof(dof) else rotation_step
            inverted = joint.get_delta_world_matrix(dof, step, delta_world)
            signed_step = -step if inverted else step
            np.matmul(delta_world, inverse_world, out=relative)

            row = 0
            for index, closure in enumerate(chain.closures):
                mask = chain.masks[index]
                count = int(mask.sum())
                if index in affected:
                    current = closure.matrix_world
                    target = closure.child.matrix_world
                    if id(joint) in chain.closure_side[index]:
                        current = np.matmul(relative, current, out=closure_world)
                    if id(joint) in chain.target_side[index]:
                        target = np.matmul(relative, target, out=target_world)

                    compute_error_vector(current, target, perturbed_error)
                    derivative = (perturbed_error - errors[index]) / signed_step * row_weights
                    jacobian[row:row + count, col] = derivative[mask]
                row += count

            col += 1

    return jacobian
