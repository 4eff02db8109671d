"""
区间集合代数 (Segment algebra)

在扁平索引空间（配置向量或速度向量）上用 (start, length) 区间集合表示行/列选择，
避免到处构造布尔掩码。

约定：
- segment: (start, length) 二元组
- segments: segment 列表；规范化后的集合有序、互不重叠且互不相邻
"""
from typing import List, Sequence, Tuple

import numpy as np

Segment = Tuple[int, int]
Segments = List[Segment]


def cardinal(segments: Sequence[Segment]) -> int:
    """返回区间集合覆盖的索引个数（各区间长度之和）"""
    return int(sum(length for _, length in segments))


def shrink(segments: Sequence[Segment]) -> Segments:
    """
    规范化区间集合：排序，合并重叠或相邻的区间，丢弃空区间

    :param segments: 任意区间集合
    :return: 规范化后的新列表
    """
    result: Segments = []
    for start, length in sorted((int(s), int(l)) for s, l in segments if l > 0):
        if result and start <= result[-1][0] + result[-1][1]:
            last_start, last_length = result[-1]
            end = max(last_start + last_length, start + length)
            result[-1] = (last_start, end - last_start)
        else:
            result.append((start, length))
    return result


def union(a: Sequence[Segment], b: Sequence[Segment]) -> Segments:
    """两个区间集合的并集（规范化）"""
    return shrink(list(a) + list(b))


def complement(size: int, segments: Sequence[Segment]) -> Segments:
    """
    计算区间集合在 [0, size) 中的补集

    构造长度为 size+1 的覆盖数组，末尾哨兵单元恒为“已覆盖”，保证扫描一定能闭合最后一个区间；
    然后从左到右扫描：覆盖→未覆盖时开始新区间，未覆盖→覆盖时结束当前区间。

    :param size: 索引空间大小
    :param segments: 区间集合（不要求规范化）
    :return: 未被覆盖的索引组成的极大区间集合
    """
    covered = np.zeros(size + 1, dtype=bool)
    for start, length in segments:
        if start < 0 or start + length > size:
            raise ValueError(f"Segment ({start}, {length}) out of range [0, {size})")
        covered[start:start + length] = True
    covered[size] = True

    result: Segments = []
    inside = False
    start = 0
    for i in range(size + 1):
        if not inside and not covered[i]:
            inside = True
            start = i
        elif inside and covered[i]:
            inside = False
            result.append((start, i - start))
    return result


def difference(a: Sequence[Segment], b: Sequence[Segment]) -> Segments:
    """a 中不属于 b 的索引组成的区间集合"""
    a = shrink(a)
    if not a:
        return []
    size = a[-1][0] + a[-1][1]
    b = [(s, min(l, size - s)) for s, l in shrink(b) if s < size]
    return shrink(intersection(a, complement(size, b)))


def intersection(a: Sequence[Segment], b: Sequence[Segment]) -> Segments:
    """两个区间集合的交集（规范化）"""
    result: Segments = []
    for sa, la in shrink(a):
        for sb, lb in shrink(b):
            start = max(sa, sb)
            end = min(sa + la, sb + lb)
            if end > start:
                result.append((start, end - start))
    return shrink(result)


def overlap(a: Sequence[Segment], b: Sequence[Segment]) -> bool:
    """两个区间集合是否有公共索引"""
    return len(intersection(a, b)) > 0


def from_mask(mask: Sequence[bool]) -> Segments:
    """将布尔向量转换为规范化区间集合"""
    return shrink([(i, 1) for i, flag in enumerate(mask) if flag])


def to_mask(size: int, segments: Sequence[Segment]) -> np.ndarray:
    """将区间集合转换为长度为 size 的布尔向量"""
    mask = np.zeros(size, dtype=bool)
    for start, length in segments:
        mask[start:start + length] = True
    return mask


def indices(segments: Sequence[Segment]) -> np.ndarray:
    """
    将区间集合展开为索引数组

    注意：这里物化了一份索引拷贝（分配 O(cardinal) 内存），用以代替零拷贝子矩阵视图。
    """
    if not segments:
        return np.zeros(0, dtype=np.intp)
    return np.concatenate([np.arange(s, s + l, dtype=np.intp) for s, l in segments])


def extract(vector: np.ndarray, segments: Sequence[Segment]) -> np.ndarray:
    """按区间集合取出子向量（拷贝）"""
    return np.asarray(vector)[indices(segments)]


def assign(vector: np.ndarray, segments: Sequence[Segment], values: np.ndarray):
    """把 values 按区间集合写回 vector（原地修改）"""
    vector[indices(segments)] = values


def extract_block(matrix: np.ndarray, rows: Sequence[Segment],
                  cols: Sequence[Segment]) -> np.ndarray:
    """按行、列区间集合取出子矩阵（拷贝）"""
    return np.asarray(matrix)[np.ix_(indices(rows), indices(cols))]


def segments_to_list(segments: Sequence[Segment]) -> List[List[int]]:
    """转换为可 JSON 序列化的嵌套列表"""
    return [[int(s), int(l)] for s, l in segments]


def segments_from_list(data: Sequence[Sequence[int]]) -> Segments:
    """segments_to_list 的逆操作"""
    return [(int(item[0]), int(item[1])) for item in data]
