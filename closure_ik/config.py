"""
求解器配置
默认参数，以及从 JSON 配置文件加载参数
"""
import json
import logging
import os
from typing import Any, Dict

logger = logging.getLogger(__name__)


DEFAULT_SOLVER_SETTINGS: Dict[str, Any] = {
    'max_iterations': 100,
    'translation_converge_threshold': 1e-4,
    'rotation_converge_threshold': 1e-5,
    'damping_factor': 1e-3,
    # 有限差分探测步长
    'translation_step': 1e-3,
    'rotation_step': 1e-3,
    # 单次迭代的残差限幅
    'translation_error_clamp': 0.25,
    'rotation_error_clamp': 0.25,
    'translation_factor': 1.0,
    'rotation_factor': 1.0,
    'rest_pose_factor': 0.01,
    'stall_threshold': 1e-6,
    'diverge_threshold': 0.01,
    'enable_line_search': True,
    'line_search_alpha_min': 1e-2,
}


def load_solver_config(config_path: str = "config.json") -> Dict[str, Any]:
    """
    读取 JSON 配置文件，将其中可识别的求解参数覆盖到默认值上

    :param config_path: 配置文件路径
    :return: 合并后的参数字典（可直接作为 Solver 的关键字参数）
    """
    settings = dict(DEFAULT_SOLVER_SETTINGS)

    if not os.path.exists(config_path):
        logger.warning("找不到配置文件 %s，使用默认求解参数", config_path)
        return settings

    with open(config_path, 'r', encoding='utf-8') as f:
        config = json.load(f)

    for key, value in config.items():
        if key not in DEFAULT_SOLVER_SETTINGS:
            logger.warning("忽略未知的求解参数: %s", key)
            continue
        settings[key] = value

    return settings
