"""
命令行求解入口

    constraint-solver config.json

配置文件示例：

    {
        "skeleton_path": "skeleton.json",
        "problem_path": "problem.json",
        "output_path": "result.json",
        "initial_configuration": [0.0, 0.0],
        "line_search": "Backtracking",
        "max_iterations": 50
    }
"""
import json
import os
import sys
import time
from typing import Dict, Optional

import numpy as np

from .data_io import export_result, joint_states, load_device, load_solver
from .solver.line_search import Backtracking, Constant, ErrorNormBased, FixedSequence, LineSearch

LINE_SEARCHES = {
    'Constant': Constant,
    'Backtracking': Backtracking,
    'ErrorNormBased': ErrorNormBased,
    'FixedSequence': FixedSequence,
}


def make_line_search(name: str) -> LineSearch:
    if name not in LINE_SEARCHES:
        raise ValueError(f"Unknown line search '{name}', expected one of {sorted(LINE_SEARCHES)}")
    return LINE_SEARCHES[name]()


def run_solver(config_path: str = "config.json") -> Optional[Dict]:
    """
    加载模型、约束文档和求解参数，求解并导出结果

    :return: 结果字典；加载失败时返回 None
    """
    # 1. 加载配置
    if not os.path.exists(config_path):
        print(f"❌ 找不到配置文件: {config_path}")
        return None

    with open(config_path, 'r', encoding='utf-8') as f:
        config = json.load(f)

    print("----------- Constraint Solver Headless -----------")
    print(f"配置加载: {config_path}")

    skeleton_path = config.get('skeleton_path')
    problem_path = config.get('problem_path')
    output_path = config.get('output_path', 'result.json')

    # 2. 加载骨骼（可选）
    devices = {}
    device = None
    if skeleton_path is not None:
        print(f"正在加载骨骼: {skeleton_path} ...")
        try:
            device = load_device(skeleton_path)
        except (OSError, ValueError, KeyError) as e:
            print(f"❌ 骨骼加载失败: {e}")
            return None
        devices[device.name] = device
        print(f"模型 {device.name}: {device.config_size()} 个配置变量, {device.number_dof()} 个自由度")

    # 3. 加载约束
    print(f"正在加载约束: {problem_path} ...")
    try:
        solver = load_solver(problem_path, devices)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"❌ 约束加载失败: {e}")
        return None
    print(f"约束加载成功，共 {len(solver.constraints())} 个约束, {solver.number_stacks()} 个优先级")

    # 求解参数（覆盖文档中的值）
    solver.max_iterations = config.get('max_iterations', solver.max_iterations)
    solver.error_threshold = config.get('error_threshold', solver.error_threshold)
    solver.max_error_increases = config.get('max_error_increases', solver.max_error_increases)
    solver.last_is_optional = config.get('last_is_optional', solver.last_is_optional)
    try:
        line_search = make_line_search(config.get('line_search', 'Constant'))
    except ValueError as e:
        print(f"❌ {e}")
        return None

    # 4. 初始配置
    if config.get('initial_configuration') is not None:
        q = np.array(config['initial_configuration'], dtype=np.float64)
    elif device is not None:
        q = device.neutral_configuration()
    else:
        q = solver.config_space.neutral()
    if q.shape != (solver.config_space.nq,):
        print(f"❌ 初始配置维数 {q.shape} 与配置空间 {solver.config_space.name} 不一致")
        return None
    if config.get('right_hand_side_from_initial', False):
        solver.right_hand_side_from_config(q)

    # 5. 开始求解
    print(f">>> 求解中 (线搜索: {type(line_search).__name__})")
    start_time = time.time()
    status = solver.solve(q, line_search)
    duration = time.time() - start_time
    satisfied, error = solver.is_satisfied(q)
    print(f"求解完成: {status.name}, {solver.iterations} 次迭代, 耗时: {duration:.3f} 秒")

    # 6. 导出结果
    result = {
        'status': status.name,
        'iterations': solver.iterations,
        'satisfied': satisfied,
        'error_norm': float(np.linalg.norm(error)),
        'configuration': q.tolist()
    }
    if device is not None:
        result['joints'] = joint_states(device, q)
    print(f"正在导出到: {output_path} ...")
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    export_result(result, output_path)
    print("✅ 任务完成！")
    return result


def main() -> int:
    result = run_solver(sys.argv[1]) if len(sys.argv) > 1 else run_solver()
    return 0 if result is not None else 1


if __name__ == "__main__":
    sys.exit(main())
