"""
closure_ik
闭环运动学图与迭代IK求解
"""

from .model import DOF, axis_to_dof, Link, Joint, Goal, KinematicGraphError
from .solver import find_roots, Solver, SolveStatus
from .config import DEFAULT_SOLVER_SETTINGS, load_solver_config
from .utils import MatrixPool

__version__ = '0.1.0'

__all__ = [
    'DOF',
    'axis_to_dof',
    'Link',
    'Joint',
    'Goal',
    'KinematicGraphError',
    'find_roots',
    'Solver',
    'SolveStatus',
    'DEFAULT_SOLVER_SETTINGS',
    'load_solver_config',
    'MatrixPool'
]
