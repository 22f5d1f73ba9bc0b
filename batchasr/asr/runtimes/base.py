"""定义推理运行时需要实现的抽象接口与共享的流水线结构。"""  # 模块说明。
# 导入 abc 模块中的 ABC 与 abstractmethod，用于声明抽象基类。
from abc import ABC, abstractmethod
# 导入 dataclass 以声明不可变的流水线结构。
from dataclasses import dataclass
# 导入 typing 用于类型注释。
from typing import TYPE_CHECKING, Any, Sequence, Tuple

if TYPE_CHECKING:  # 仅在类型检查时导入以避免循环依赖。
    from batchasr.asr.context import DecoderOptions


@dataclass(frozen=True)
class Sequential:
    """按顺序串联的模块图：前一模块的输出作为后一模块的输入。"""  # 类说明。

    modules: Tuple[Any, ...]  # 以元组保存，构建后不可修改。

    @classmethod
    def of(cls, *modules: Any) -> "Sequential":
        """以给定顺序构造流水线。"""  # 方法说明。
        return cls(modules=tuple(modules))

    def __len__(self) -> int:
        return len(self.modules)  # 模块数量。


# 定义统一的抽象基类，所有推理运行时都应继承该类。
class InferenceRuntime(ABC):
    """加载模型工件、构建解码器工厂并对单个音频文件执行转写。

    load_module 与 create_decoder_factory 只在启动阶段被单线程调用；
    transcribe 会被多个 worker 线程并发调用，实现必须把传入的流水线、
    解码器工厂与解码选项视为只读。
    """

    name = "base"  # 子类覆盖为注册表中的名称。

    def __init__(self, **kwargs: Any) -> None:
        """保存额外的运行时选项。"""  # 方法说明。
        self.extra_options = dict(kwargs)  # 来自配置 runtime.options 的键值。

    @abstractmethod
    def load_module(self, path: str) -> Any:
        """反序列化一个模块工件；文件无法打开时抛出 OSError。"""  # 方法说明。
        raise NotImplementedError

    @abstractmethod
    def create_decoder_factory(
        self,
        tokens_path: str,
        lexicon_path: str,
        language_model_path: str,
        transitions: Sequence[float],
        silence_token: str,
    ) -> Any:
        """根据词表、词典、语言模型与转移参数构造解码器工厂。"""  # 方法说明。
        raise NotImplementedError

    @abstractmethod
    def transcribe(
        self,
        input_path: str,
        pipeline: Sequential,
        decoder_factory: Any,
        decoder_options: "DecoderOptions",
        token_count: int,
    ) -> str:
        """转写一个完整的音频文件并返回文本。"""  # 方法说明。
        raise NotImplementedError
