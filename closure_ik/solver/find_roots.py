"""
闭环图分析：查找所有通过闭环边相连的根节点
"""
from collections import deque
from typing import Deque, Iterable, List

from ..model import Joint, Link


def find_roots(nodes: Iterable[Link]) -> List[Link]:
    """
    从给定的种子节点出发，找出结构上相连的全部根节点。

    对每个待处理节点向上找到其所在树的根；遍历该树时，
    凡遇到闭环关节就把闭环目标加入待处理队列，
    凡遇到被闭环引用的连杆就把引用它的关节加入队列，直到不再发现新的根。
    结果去重，按发现顺序排列。

    :param nodes: 种子节点
    :return: 根节点列表
    """
    roots: List[Link] = []
    visited = set()
    queue: Deque[Link] = deque(nodes)

    def collect(node: Link):
        if isinstance(node, Joint) and node.is_closure:
            queue.append(node.child)
        queue.extend(node.closure_joints)

    while queue:
        root = queue.popleft().get_root()
        if id(root) in visited:
            continue

        visited.add(id(root))
        roots.append(root)
        root.traverse(collect)

    return roots
