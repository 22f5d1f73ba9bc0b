"""推理运行时注册表，用于根据名称返回具体实现。"""  # 模块说明。
# 导入 typing 用于注册表类型注释。
from typing import Dict, Type

from .base import InferenceRuntime, Sequential  # 导入抽象基类与流水线结构。
from .dummy import DummyRuntime  # 导入内置的占位运行时。

# 映射运行时名称到具体类，新增运行时时在此注册。
RUNTIMES: Dict[str, Type[InferenceRuntime]] = {
    "dummy": DummyRuntime,
}


def create_runtime(name: str, **kwargs) -> InferenceRuntime:
    """根据运行时名称返回对应的实例。"""  # 函数说明。
    if name not in RUNTIMES:  # 未注册的名称直接报错。
        raise ValueError(
            f"Unsupported runtime '{name}'. Available options: {', '.join(sorted(RUNTIMES))}"
        )
    return RUNTIMES[name](**kwargs)  # 额外参数透传给运行时构造函数。


__all__ = ["InferenceRuntime", "RUNTIMES", "Sequential", "create_runtime"]
