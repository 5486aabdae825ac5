"""
临时矩阵池
按形状分组的预分配缓冲区，避免求解器每轮迭代重复申请内存
"""
import numpy as np
from typing import Dict, List, Tuple


class MatrixPool:
    """
    按 (rows, cols) 形状索引的矩阵缓冲池。

    get() 按请求顺序发放缓冲区，池中不足时才新建；
    release_all() 只重置各形状的游标，不释放内存，
    之后相同顺序的 get() 调用会依次拿回同一批对象。
    发放出去的缓冲区内容不做清零。
    """

    def __init__(self):
        self._pools: Dict[Tuple[int, int], List[np.ndarray]] = {}
        self._cursors: Dict[Tuple[int, int], int] = {}

    def get(self, rows: int, cols: int) -> np.ndarray:
        """
        取出一个 rows x cols 的缓冲区

        :param rows: 行数
        :param cols: 列数
        :return: 形状为 (rows, cols) 的 float64 数组
        """
        key = (int(rows), int(cols))
        pool = self._pools.setdefault(key, [])
        index = self._cursors.get(key, 0)
        if index == len(pool):
            pool.append(np.zeros(key, dtype=np.float64))
        self._cursors[key] = index + 1
        return pool[index]

    def release_all(self):
        """归还所有已发放的缓冲区"""
        self._cursors.clear()

    def __len__(self) -> int:
        return sum(len(pool) for pool in self._pools.values())
