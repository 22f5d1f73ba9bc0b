"""提供一个确定性的占位推理运行时，仅依据文件内容生成转写文本。"""  # 模块说明。
# 导入 hashlib 以根据音频内容派生稳定的伪随机序列。
import hashlib
# 导入 os 以获取工件大小。
import os
# 导入 dataclass 声明不可变的模块与工厂结构。
from dataclasses import dataclass
from pathlib import Path  # 导入 Path 以提取模块文件名。
from typing import Sequence, Tuple  # 导入类型注释。

from batchasr.utils.errors import DecodeError, UnsupportedAudioError  # 导入单任务错误类型。
from batchasr.utils.io import sha256_file  # 复用流式摘要计算。
from .base import InferenceRuntime, Sequential  # 导入抽象基类与流水线结构。

# 占位运行时在注册表中的名称。
DUMMY_NAME = "dummy"
# 单条转写的最大词数。
MAX_WORDS = 8


@dataclass(frozen=True)
class DummyModule:
    """以文件摘要代表一个已加载的模块图。"""  # 类说明。

    name: str  # 工件文件名。
    digest: str  # 工件内容的 SHA256。
    size: int  # 工件字节数。


@dataclass(frozen=True)
class DummyDecoderFactory:
    """保存词表、词典与语言模型摘要的只读解码器工厂。"""  # 类说明。

    tokens: Tuple[str, ...]  # 词表条目。
    words: Tuple[str, ...]  # 词典中的词条。
    language_model_digest: str  # 语言模型摘要。
    transitions: Tuple[float, ...]  # 转移参数。
    silence_token: str  # 静音 token。


def _read_lexicon_words(path: str) -> Tuple[str, ...]:
    """读取词典文件，每个非空行的第一列为词条。"""  # 函数说明。
    words = []
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            fields = line.split()  # 词条之后为其拼写序列。
            if fields:
                words.append(fields[0])
    return tuple(words)


def _read_tokens(path: str) -> Tuple[str, ...]:
    """读取词表文件中的非空行。"""  # 函数说明。
    with open(path, "r", encoding="utf-8") as handle:
        return tuple(line.rstrip("\r\n") for line in handle if line.rstrip("\r\n"))


class DummyRuntime(InferenceRuntime):
    """读取全部工件但不做数值推理，输出只取决于模块与音频内容。"""  # 类说明。

    name = DUMMY_NAME  # 注册表名称。

    def load_module(self, path: str) -> DummyModule:
        """计算模块工件摘要；文件无法打开时 OSError 向上传播。"""  # 方法说明。
        digest = sha256_file(path)
        return DummyModule(name=Path(path).name, digest=digest, size=os.path.getsize(path))

    def create_decoder_factory(
        self,
        tokens_path: str,
        lexicon_path: str,
        language_model_path: str,
        transitions: Sequence[float],
        silence_token: str,
    ) -> DummyDecoderFactory:
        tokens = _read_tokens(tokens_path)  # 文件缺失时抛出 OSError。
        words = _read_lexicon_words(lexicon_path)
        language_model_digest = sha256_file(language_model_path)
        return DummyDecoderFactory(
            tokens=tokens,
            words=words,
            language_model_digest=language_model_digest,
            transitions=tuple(transitions),
            silence_token=silence_token,
        )

    def transcribe(self, input_path, pipeline: Sequential, decoder_factory, decoder_options, token_count: int) -> str:
        try:
            with open(input_path, "rb") as handle:
                audio = handle.read()  # 一次性读取整段音频。
        except OSError as exc:
            raise UnsupportedAudioError(f"failed to read audio file={input_path}: {exc}") from exc
        if not audio:
            raise UnsupportedAudioError(f"audio file={input_path} contains no samples")
        if token_count <= 0 or not decoder_factory.words:
            raise DecodeError("decoder has no tokens or lexicon entries to emit")
        # 种子同时依赖模块顺序与音频内容，保证同一输入在任何并发度下结果一致。
        seed = hashlib.sha256()
        for module in pipeline.modules:
            seed.update(module.digest.encode("ascii"))
        seed.update(decoder_factory.language_model_digest.encode("ascii"))
        seed.update(audio)
        digest = seed.digest()
        limit = max(1, min(decoder_options.beam_size, MAX_WORDS))  # 词数上限受 beam 大小约束。
        count = 1 + digest[0] % limit
        vocabulary = decoder_factory.words
        return " ".join(vocabulary[digest[index + 1] % len(vocabulary)] for index in range(count))
