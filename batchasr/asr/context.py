"""构建所有 worker 共享的只读推理上下文：模块流水线、词表、解码选项与解码器工厂。"""  # 模块说明。
# 导入 struct 以解析转移参数的二进制格式。
import struct
# 导入 dataclasses 以声明不可变结构并导出字典。
from dataclasses import asdict, dataclass
# 导入 Enum 表达解码准则类型。
from enum import Enum
# 导入 typing 用于类型注释。
from typing import Any, Mapping, Tuple

import yaml  # 解码选项可以是 JSON 或任意 YAML 兼容的键值文档。
from jsonschema import ValidationError  # 导入校验异常类型以转换错误信息。

from batchasr.asr.runtimes.base import InferenceRuntime, Sequential  # 导入运行时接口与模块串联结构。
from batchasr.utils.errors import SetupError  # 启动阶段的致命错误。
from batchasr.utils.metrics import MetricsSink  # 导入指标收集器类型。
from batchasr.utils.profiling import PhaseTimer  # 导入阶段计时器。
from batchasr.utils.schema import format_validation_error, validate_decoder_options  # 导入解码选项校验工具。

# 转移参数文件的头部为 little-endian uint64 元素个数，其后为 float32 序列。
_TRANSITIONS_HEADER = struct.Struct("<Q")
_FLOAT_SIZE = struct.calcsize("<f")  # 单个 float32 占用的字节数。


class CriterionType(Enum):
    """声学模型训练所用的准则，决定解码器的计分方式。"""  # 类说明。

    ASG = 0  # 自动分段准则。
    CTC = 1  # 连接时序分类。
    S2S = 2  # 序列到序列。

    @classmethod
    def parse(cls, value: Any) -> "CriterionType":
        """接受名称（大小写不敏感）或整数编码。"""  # 方法说明。
        if isinstance(value, bool):  # bool 是 int 的子类，需要先排除。
            raise ValueError(f"invalid criterionType: {value!r}")
        if isinstance(value, int):
            return cls(value)  # 越界编码由 Enum 抛出 ValueError。
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        raise ValueError(f"invalid criterionType: {value!r}")


@dataclass(frozen=True)
class DecoderOptions:
    """词典束搜索解码器的参数，构建后不可修改。"""  # 类说明。

    beam_size: int  # 每步保留的假设数量。
    beam_size_token: int  # 每步扩展的候选 token 数量。
    beam_threshold: float  # 相对最优假设的剪枝阈值。
    lm_weight: float  # 语言模型权重。
    word_score: float  # 每个词的插入分数。
    unk_score: float  # 未登录词分数。
    sil_score: float  # 静音分数。
    log_add: bool  # 合并假设时是否使用 log-add。
    criterion_type: CriterionType  # 声学模型的训练准则。

    def as_dict(self) -> dict:
        """返回便于日志输出的普通字典。"""  # 方法说明。
        payload = asdict(self)
        payload["criterion_type"] = self.criterion_type.name  # 枚举以名称输出。
        return payload


@dataclass(frozen=True)
class SharedInferenceContext:
    """一次构建、被所有任务只读共享的推理资源集合。"""  # 类说明。

    runtime: InferenceRuntime  # 执行推理的运行时。
    pipeline: Sequential  # 特征模块与声学模块的串联。
    decoder_factory: Any  # 运行时创建的解码器工厂。
    decoder_options: DecoderOptions  # 解码参数。
    tokens: Tuple[str, ...]  # 词表中的非空行。
    token_count: int  # 词表大小。
    transitions: Tuple[float, ...]  # 转移参数，未配置时为空。
    silence_token: str  # 静音 token。


def parse_decoder_options(payload: Any) -> DecoderOptions:
    """把解码选项文档（已解析的映射）转换为 DecoderOptions。

    文档先经过 JSON Schema 校验，结构不符时抛出 ValueError。
    """
    if not isinstance(payload, Mapping):  # 空文档或列表都不是合法选项。
        raise ValueError("decoder options document must be a key/value mapping")
    try:
        validate_decoder_options(dict(payload))  # 缺键、类型错误在此处被拒绝。
    except ValidationError as exc:
        raise ValueError(format_validation_error(exc)) from exc
    return DecoderOptions(
        beam_size=int(payload["beamSize"]),
        beam_size_token=int(payload["beamSizeToken"]),
        beam_threshold=float(payload["beamThreshold"]),
        lm_weight=float(payload["lmWeight"]),
        word_score=float(payload["wordScore"]),
        unk_score=float(payload["unkScore"]),
        sil_score=float(payload["silScore"]),
        log_add=bool(payload["logAdd"]),
        criterion_type=CriterionType.parse(payload["criterionType"]),
    )


def load_decoder_options(path: str) -> DecoderOptions:
    """读取并解析解码选项文件。"""  # 函数说明。
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)  # JSON 是 YAML 的子集。
    except OSError as exc:
        raise SetupError(f"failed to open decoder options file={path} for reading") from exc
    except UnicodeDecodeError as exc:
        raise SetupError(f"decoder options file={path} is not valid UTF-8") from exc
    except yaml.YAMLError as exc:
        raise SetupError(f"malformed decoder options file={path}: {exc}") from exc
    try:
        return parse_decoder_options(payload)
    except ValueError as exc:
        raise SetupError(f"invalid decoder options file={path}: {exc}") from exc


def load_tokens(path: str) -> Tuple[str, ...]:
    """读取词表文件，保留非空行的顺序，仅去除行尾换行符。"""  # 函数说明。
    try:
        with open(path, "r", encoding="utf-8") as handle:
            lines = [line.rstrip("\r\n") for line in handle]  # 行内空白保持原样。
    except OSError as exc:
        raise SetupError(f"failed to open tokens file={path} for reading") from exc
    except UnicodeDecodeError as exc:
        raise SetupError(f"tokens file={path} is not valid UTF-8") from exc
    return tuple(line for line in lines if line)


def decode_transitions(data: bytes) -> Tuple[float, ...]:
    """解析二进制浮点向量；数据不足时抛出 ValueError。"""  # 函数说明。
    if len(data) < _TRANSITIONS_HEADER.size:
        raise ValueError("missing element count header")
    (count,) = _TRANSITIONS_HEADER.unpack_from(data, 0)  # 读取元素个数。
    expected = _TRANSITIONS_HEADER.size + count * _FLOAT_SIZE
    if len(data) < expected:
        raise ValueError(f"expected {count} float32 values, got {(len(data) - _TRANSITIONS_HEADER.size) // _FLOAT_SIZE}")
    return struct.unpack_from(f"<{count}f", data, _TRANSITIONS_HEADER.size)


def load_transitions(path: str | None) -> Tuple[float, ...]:
    """读取转移参数；未配置路径时返回空元组。"""  # 函数说明。
    if not path:
        return ()
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise SetupError(f"failed to open transitions file={path} for reading") from exc
    try:
        return tuple(decode_transitions(data))
    except ValueError as exc:
        raise SetupError(f"truncated transitions file={path}: {exc}") from exc


def _load_module(runtime: InferenceRuntime, path: str, what: str) -> Any:
    """调用运行时加载单个模块，把打开失败转换为 SetupError。"""  # 函数说明。
    try:
        return runtime.load_module(path)
    except (OSError, ValueError) as exc:
        raise SetupError(f"failed to open {what} file={path} for reading") from exc


def build_context(
    runtime: InferenceRuntime,
    *,
    feature_module_file: str,
    acoustic_module_file: str,
    tokens_file: str,
    lexicon_file: str,
    language_model_file: str,
    decoder_options_file: str,
    transitions_file: str | None = None,
    silence_token: str = "_",
    logger: Any = None,
    metrics: MetricsSink | None = None,
    profiling: bool = True,
) -> SharedInferenceContext:
    """按固定顺序加载全部启动工件并返回共享上下文。

    每个阶段单独计时；任一必需文件无法打开或解码选项无效时抛出 SetupError，
    此时尚未创建任何任务。
    """

    def _phase(name: str, description: str) -> PhaseTimer:
        return PhaseTimer(metrics, name, enabled=profiling, logger=logger, description=description)

    with _phase("feature_module_loading", "features model file loading"):
        feature_module = _load_module(runtime, feature_module_file, "feature module")
    with _phase("acoustic_module_loading", "acoustic model file loading"):
        acoustic_module = _load_module(runtime, acoustic_module_file, "acoustic module")
    # 特征提取在前，声学模型在后。
    pipeline = Sequential.of(feature_module, acoustic_module)

    with _phase("tokens_loading", "tokens file loading"):
        tokens = load_tokens(tokens_file)
    if logger is not None:
        logger.info(f"Tokens loaded - {len(tokens)} tokens", token_count=len(tokens))

    with _phase("decoder_options_loading", "decoder options file loading"):
        decoder_options = load_decoder_options(decoder_options_file)
    if logger is not None:
        logger.debug("decoder options", **decoder_options.as_dict())  # 仅在调试模式下输出完整参数。

    with _phase("transitions_loading", "transitions file loading"):
        transitions = load_transitions(transitions_file)

    with _phase("create_decoder", "create decoder"):
        try:
            decoder_factory = runtime.create_decoder_factory(
                tokens_file,
                lexicon_file,
                language_model_file,
                transitions,
                silence_token,
            )
        except OSError as exc:
            missing = exc.filename or f"{lexicon_file} / {language_model_file}"  # 优先报告实际缺失的文件。
            raise SetupError(f"failed to open decoder resource file={missing} for reading") from exc
        except UnicodeDecodeError as exc:
            raise SetupError(f"decoder resource files {tokens_file} / {lexicon_file} are not valid UTF-8") from exc

    # 所有字段均为不可变值，任务之间可以安全共享。
    return SharedInferenceContext(
        runtime=runtime,
        pipeline=pipeline,
        decoder_factory=decoder_factory,
        decoder_options=decoder_options,
        tokens=tokens,
        token_count=len(tokens),
        transitions=transitions,
        silence_token=silence_token,
    )
