"""
IK求解器实现
使用阻尼最小二乘法 (Damped Least Squares, DLS) 联立求解一条链上的全部闭环
"""
import logging
import numpy as np
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from ..config import DEFAULT_SOLVER_SETTINGS
from ..model import Link
from ..utils import MatrixPool
from .ik_core import IKChain, build_ik_chains, compute_closure_errors, compute_jacobian

logger = logging.getLogger(__name__)


class SolveStatus(Enum):
    CONVERGED = 'converged'
    STALLED = 'stalled'
    DIVERGED = 'diverged'
    TIMEOUT = 'timeout'


class Solver:
    """
    闭环IK求解器。

    构造时传入根节点（或根节点列表，应为 find_roots 的完整结果），
    之后每次修改目标位姿后调用 solve()。求解不会抛出"未收敛"异常：
    每条链的结果以 SolveStatus 返回，需要硬性判断的调用方可自行检查闭环误差。

    单线程、不可重入；同一张图不能同时被多个求解器修改。
    """

    def __init__(self, roots: Optional[Union[Link, Sequence[Link]]] = None, **settings: Any):
        """
        :param roots: 根节点或根节点列表
        :param settings: 覆盖 DEFAULT_SOLVER_SETTINGS 中的任意参数
        """
        self.max_iterations: int = DEFAULT_SOLVER_SETTINGS['max_iterations']
        self.translation_converge_threshold: float = DEFAULT_SOLVER_SETTINGS['translation_converge_threshold']
        self.rotation_converge_threshold: float = DEFAULT_SOLVER_SETTINGS['rotation_converge_threshold']
        self.damping_factor: float = DEFAULT_SOLVER_SETTINGS['damping_factor']
        self.translation_step: float = DEFAULT_SOLVER_SETTINGS['translation_step']
        self.rotation_step: float = DEFAULT_SOLVER_SETTINGS['rotation_step']
        self.translation_error_clamp: float = DEFAULT_SOLVER_SETTINGS['translation_error_clamp']
        self.rotation_error_clamp: float = DEFAULT_SOLVER_SETTINGS['rotation_error_clamp']
        self.translation_factor: float = DEFAULT_SOLVER_SETTINGS['translation_factor']
        self.rotation_factor: float = DEFAULT_SOLVER_SETTINGS['rotation_factor']
        self.rest_pose_factor: float = DEFAULT_SOLVER_SETTINGS['rest_pose_factor']
        self.stall_threshold: float = DEFAULT_SOLVER_SETTINGS['stall_threshold']
        self.diverge_threshold: float = DEFAULT_SOLVER_SETTINGS['diverge_threshold']
        self.enable_line_search: bool = DEFAULT_SOLVER_SETTINGS['enable_line_search']
        self.line_search_alpha_min: float = DEFAULT_SOLVER_SETTINGS['line_search_alpha_min']
        self.apply_settings(settings)

        self.matrix_pool = MatrixPool()
        self.roots: List[Link] = []
        self.chains: List[IKChain] = []
        self.set_roots(roots)

    def apply_settings(self, settings: Dict[str, Any]):
        for key, value in settings.items():
            if key not in DEFAULT_SOLVER_SETTINGS:
                raise ValueError(f"Unknown solver setting: {key}")
            setattr(self, key, value)

    def set_roots(self, roots: Optional[Union[Link, Sequence[Link]]]):
        if roots is None:
            self.roots = []
        elif isinstance(roots, Link):
            self.roots = [roots]
        else:
            self.roots = list(roots)
        self.update_structure()

    def update_structure(self):
        """结构变化（增删子节点/闭环、修改激活通道或目标掩码）后重新收集IK链"""
        self.chains = build_ik_chains(self.roots)

    def solve(self) -> List[SolveStatus]:
        """
        依次求解每条IK链

        :return: 每条链的求解状态；没有闭环时返回空列表
        """
        statuses = []
        for index, chain in enumerate(self.chains):
            try:
                status, iterations, residual = self._solve_chain(chain)
            finally:
                self.matrix_pool.release_all()

            logger.debug("IK链 %d 求解结束: %s，迭代 %d 次，残差 %.3e",
                         index, status.value, iterations, residual)
            statuses.append(status)
        return statuses

    # ------------------------------------------------------------------
    # 单条链
    # ------------------------------------------------------------------

    def _row_weights(self) -> np.ndarray:
        weights = np.empty(6, dtype=np.float64)
        weights[:3] = self.translation_factor
        weights[3:] = self.rotation_factor
        return weights

    def _error_norm(self, chain: IKChain, errors: List[np.ndarray], weights: np.ndarray) -> float:
        total = 0.0
        for error, mask in zip(errors, chain.masks):
            weighted = (error * weights)[mask]
            total += float(np.dot(weighted, weighted))
        return float(np.sqrt(total))

    def _is_converged(self, chain: IKChain, errors: List[np.ndarray]) -> bool:
        """每个闭环掩码内的平移误差和角度误差都低于阈值"""
        for error, mask in zip(errors, chain.masks):
            translation = float(np.linalg.norm(error[:3][mask[:3]]))
            rotation = float(np.linalg.norm(error[3:][mask[3:]]))
            if translation > self.translation_converge_threshold or rotation > self.rotation_converge_threshold:
                return False
        return True

    def _assemble_error(self, chain: IKChain, errors: List[np.ndarray], weights: np.ndarray) -> np.ndarray:
        """组装掩码后的误差向量；每个闭环的平移/旋转部分分别限幅，保证单步位移有界"""
        vector = self.matrix_pool.get(chain.row_count, 1)[:, 0]
        row = 0
        for error, mask in zip(errors, chain.masks):
            clamped = error.copy()
            for part, limit in ((slice(0, 3), self.translation_error_clamp),
                                (slice(3, 6), self.rotation_error_clamp)):
                length = np.linalg.norm(clamped[part][mask[part]])
                if length > limit:
                    clamped[part] *= limit / length
            values = (clamped * weights)[mask]
            vector[row:row + len(values)] = values
            row += len(values)
        return vector

    def _compute_delta(self, chain: IKChain, jacobian: np.ndarray, error: np.ndarray) -> np.ndarray:
        """
        求解 Δq = J^T (J J^T + λI)^-1 (-e)
        """
        rows = chain.row_count
        A = self.matrix_pool.get(rows, rows)
        np.matmul(jacobian, jacobian.T, out=A)
        A[np.diag_indices(rows)] += self.damping_factor

        try:
            beta = np.linalg.solve(A, -error)
        except np.linalg.LinAlgError:
            # 矩阵奇异或接近奇异，使用最小二乘求解
            logger.warning("阻尼矩阵奇异，改用最小二乘求解")
            beta = np.linalg.lstsq(A, -error, rcond=None)[0]
        return jacobian.T @ beta

    def _compute_bias(self, chain: IKChain, projector: np.ndarray) -> np.ndarray:
        """
        零空间内朝 dof_target 的偏置步：(I - J⁺J) * k * (target - q)

        :param projector: J⁺J，到雅可比行空间的正交投影
        """
        bias = np.empty(chain.dof_count, dtype=np.float64)
        col = 0
        for joint in chain.free_joints:
            for dof in joint.dof:
                bias[col] = self.rest_pose_factor * (joint.dof_target[dof] - joint.dof_values[dof])
                col += 1
        return bias - projector @ bias

    def _save_state(self, chain: IKChain) -> List[np.ndarray]:
        return [joint.dof_values.copy() for joint in chain.free_joints]

    def _restore_state(self, chain: IKChain, state: List[np.ndarray]):
        for joint, values in zip(chain.free_joints, state):
            for dof in joint.dof:
                joint.set_dof_value(dof, values[dof])

    def _apply_delta(self, chain: IKChain, state: List[np.ndarray], delta: np.ndarray, alpha: float):
        """从保存的状态出发施加 alpha * Δq，取值经 set_dof_value 夹紧到上下限内"""
        col = 0
        for joint, values in zip(chain.free_joints, state):
            for dof in joint.dof:
                joint.set_dof_value(dof, values[dof] + alpha * delta[col])
                col += 1

    def _solve_chain(self, chain: IKChain):
        chain.refresh()
        weights = self._row_weights()
        errors = [np.zeros(6, dtype=np.float64) for _ in chain.closures]

        compute_closure_errors(chain, errors)
        current_norm = self._error_norm(chain, errors, weights)

        iteration = 0
        while True:
            if self._is_converged(chain, errors):
                return SolveStatus.CONVERGED, iteration, current_norm
            if iteration >= self.max_iterations or chain.dof_count == 0 or chain.row_count == 0:
                return SolveStatus.TIMEOUT, iteration, current_norm
            iteration += 1

            jacobian = compute_jacobian(chain, errors, weights,
                                        self.translation_step, self.rotation_step, self.matrix_pool)
            error = self._assemble_error(chain, errors, weights)
            delta = self._compute_delta(chain, jacobian, error)
            projector = None
            if self.rest_pose_factor > 0:
                projector = np.linalg.pinv(jacobian) @ jacobian
            state = self._save_state(chain)

            # 线搜索：不断缩小步长，直到局部线性化的假设在允许误差的范围内成立
            alpha = 1.0
            while True:
                self._apply_delta(chain, state, delta, alpha)
                compute_closure_errors(chain, errors)
                new_norm = self._error_norm(chain, errors, weights)

                if not self.enable_line_search or new_norm < current_norm:
                    break

                alpha /= 2.0
                if alpha < self.line_search_alpha_min:
                    # 即使使用很小的步长也无法改进：回滚并停止
                    self._restore_state(chain, state)
                    compute_closure_errors(chain, errors)
                    return SolveStatus.STALLED, iteration, current_norm
                logger.debug("线搜索拒绝步长，缩小为 %.4f", alpha)

            self.matrix_pool.release_all()

            if new_norm > current_norm + self.diverge_threshold:
                self._restore_state(chain, state)
                compute_closure_errors(chain, errors)
                return SolveStatus.DIVERGED, iteration, current_norm

            # 零空间偏置单独施加：最多消耗本轮一半的误差改进量，否则撤销
            if projector is not None and new_norm < current_norm:
                stepped = self._save_state(chain)
                self._apply_delta(chain, stepped, self._compute_bias(chain, projector), 1.0)
                compute_closure_errors(chain, errors)
                biased_norm = self._error_norm(chain, errors, weights)

                if biased_norm <= new_norm + 0.5 * (current_norm - new_norm):
                    new_norm = biased_norm
                else:
                    self._restore_state(chain, stepped)
                    compute_closure_errors(chain, errors)

            if abs(current_norm - new_norm) < self.stall_threshold and not self._is_converged(chain, errors):
                return SolveStatus.STALLED, iteration, new_norm

            current_norm = new_norm
