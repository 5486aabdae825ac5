"""
求解层 (Solver Layer)
闭环图分析与基于阻尼最小二乘的迭代IK求解

导出：
- find_roots: 查找通过闭环边相连的全部根节点
- build_ik_chains / IKChain: 闭环收集与分链
- compute_error_vector / compute_jacobian: 误差向量与有限差分雅可比矩阵
- Solver / SolveStatus: 求解器及每条链的求解状态
"""

from .find_roots import find_roots
from .ik_core import IKChain, build_ik_chains, compute_error_vector, compute_jacobian
from .solve_ik import Solver, SolveStatus

__all__ = [
    'find_roots',
    'IKChain',
    'build_ik_chains',
    'compute_error_vector',
    'compute_jacobian',
    'Solver',
    'SolveStatus'
]
