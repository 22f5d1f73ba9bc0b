"""命令行入口，负责解析参数、合并配置并调用批量转写管线。"""  # 模块说明。
import argparse  # 导入 argparse 以解析命令行参数。
import os  # 导入 os 以设置无缓冲输出环境变量。
import sys  # 导入 sys 以支持通过 python -m 调用。

os.environ.setdefault("PYTHONUNBUFFERED", "1")  # 子进程同样不缓冲输出。
try:
    sys.stdout.reconfigure(line_buffering=True)  # type: ignore[attr-defined]  # 行缓冲保证日志及时可见。
except AttributeError:
    pass  # 被替换为非 TextIOWrapper 的流时不支持 reconfigure。

from batchasr.asr.pipeline import run_batch  # 导入批处理入口执行核心逻辑。
from batchasr.asr.runtimes import RUNTIMES  # 导入运行时注册表以生成可选值。
from batchasr.utils.config import (  # 导入配置工具以支持分层加载与快照。
    ConfigError,
    load_and_merge_config,
    parse_cli_set_items,
    render_effective_config,
    save_config,
)
from batchasr.utils.errors import SetupError  # 启动失败映射为退出码 1。
from batchasr.utils.logging import get_logger  # 导入日志工具创建结构化日志器。

# 直接映射到 runtime 子树的文件类参数：(参数名, 配置键, 帮助文本)。
RUNTIME_FILE_ARGS = (  # 文件名均相对 --input-files-base-path 解析。
    ("--feature-module-file", "feature_module_file", "特征提取模块文件，默认 feature_extractor.bin"),
    ("--acoustic-module-file", "acoustic_module_file", "声学模型文件，默认 acoustic_model.bin"),
    ("--transitions-file", "transitions_file", "转移参数文件，留空表示不使用"),
    ("--tokens-file", "tokens_file", "词表文件，每行一个 token，默认 tokens.txt"),
    ("--lexicon-file", "lexicon_file", "词典文件，默认 lexicon.txt"),
    ("--language-model-file", "language_model_file", "语言模型文件，默认 language_model.bin"),
    ("--decoder-options-file", "decoder_options_file", "解码选项 JSON 文件，默认 decoder_options.json"),
    ("--silence-token", "silence_token", "静音 token，默认 _"),
)


def parse_bool(value: str) -> bool:
    """将传入值解析为布尔类型，仅接受 true/false。"""  # 函数说明。

    if isinstance(value, bool):  # 默认值可能已经是布尔。
        return value
    normalized = value.lower()  # 大小写不敏感。
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise argparse.ArgumentTypeError("Expected 'true' or 'false'")


def positive_int(value: str) -> int:
    """解析不小于 1 的整数，用于线程数。"""  # 函数说明。

    try:
        parsed = int(value)  # 尝试解析整数。
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected an integer, got {value!r}") from exc
    if parsed < 1:  # 线程数至少为 1。
        raise argparse.ArgumentTypeError("Expected an integer >= 1")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    """创建参数解析器并声明所有可用选项。"""  # 函数说明。

    parser = argparse.ArgumentParser(
        prog="batchasr",
        description="Multithreaded batch speech-to-text over a shared inference pipeline",
    )
    config_group = parser.add_argument_group("配置")  # 配置加载相关参数。
    config_group.add_argument("--config", default=None, help="可选用户配置 YAML 路径，默认查找 config/user.yaml")
    config_group.add_argument("--profile", dest="profile_name", default=None, help="选择预设 profile 名称")
    config_group.add_argument(
        "--set",
        dest="set_items",
        action="append",
        default=[],
        help="通过 KEY=VALUE 覆盖任意配置，可重复使用",
    )
    config_group.add_argument(
        "--print-config",
        type=parse_bool,
        nargs="?",
        const=True,
        default=False,
        help="打印最终配置快照后退出 (true/false)",
    )
    config_group.add_argument("--save-config", default=None, help="保存最终配置快照到指定路径后退出")

    batch_group = parser.add_argument_group("批处理")  # 输入输出与并发度参数。
    batch_group.add_argument("--max-num-threads", type=positive_int, default=None, help="worker 线程数量，默认 1")
    batch_group.add_argument("--input-files-base-path", default=None, help="相对输入音频与模型工件文件名的基础目录，默认 .")
    batch_group.add_argument("--output-files-base-path", default=None, help="转写结果的输出目录，默认 .")
    batch_group.add_argument(
        "--input-audio-files",
        default=None,
        help="以逗号或分号分隔的输入音频文件列表",
    )
    batch_group.add_argument(
        "--input-audio-file-of-paths",
        default=None,
        help="清单文件路径，每行一个输入音频文件",
    )
    batch_group.add_argument("--manifest-path", default=None, help="可选 Manifest JSONL 路径，每个任务追加一条记录")

    runtime_group = parser.add_argument_group("推理运行时")  # 模型工件参数。
    runtime_group.add_argument(
        "--runtime",
        choices=sorted(RUNTIMES),
        default=None,
        help="推理运行时名称",
    )
    for flag, _key, help_text in RUNTIME_FILE_ARGS:
        runtime_group.add_argument(flag, default=None, help=help_text)  # 未传入时沿用配置文件中的值。

    log_group = parser.add_argument_group("日志与指标")  # 日志、进度与指标参数。
    log_group.add_argument(
        "--verbose",
        type=parse_bool,
        nargs="?",
        const=True,
        default=None,
        help="输出详细日志 (可省略值以启用 true/false)",
    )
    log_group.add_argument(
        "--log-format",
        choices=["human", "jsonl"],
        default=None,
        help="日志格式，human 适合调试，jsonl 适合机器消费",
    )
    log_group.add_argument("--log-level", default=None, help="日志等级（DEBUG/INFO/WARNING/ERROR）")
    log_group.add_argument("--log-file", default=None, help="可选日志文件路径，追加写入")
    log_group.add_argument("--log-sample-rate", type=float, default=None, help="信息级日志采样率 (0-1]")
    log_group.add_argument(
        "--quiet",
        type=parse_bool,
        nargs="?",
        const=True,
        default=None,
        help="静默模式，控制台不输出日志 (true/false)",
    )
    log_group.add_argument("--progress", type=parse_bool, default=None, help="是否显示进度条 (true/false)")
    log_group.add_argument("--force-flush", action="store_true", help="强制每条日志与 Manifest 记录立即落盘")
    log_group.add_argument("--metrics-file", default=None, help="若提供则导出指标到指定 CSV/JSONL")
    log_group.add_argument(
        "--enable-profiler",
        type=parse_bool,
        default=None,
        help="是否记录各启动阶段耗时 (true/false)",
    )
    return parser


def _build_cli_overrides(args: argparse.Namespace) -> dict:
    """根据解析结果构造 CLI 覆盖字典，仅包含显式传入的键。"""  # 工具函数说明。

    overrides: dict[str, object] = {}  # 仅收集显式传入的参数。
    direct_keys = (
        "max_num_threads",
        "input_files_base_path",
        "output_files_base_path",
        "input_audio_files",
        "input_audio_file_of_paths",
        "manifest_path",
        "verbose",
        "log_format",
        "log_level",
        "log_file",
        "log_sample_rate",
        "quiet",
        "progress",
        "metrics_file",
    )
    for key in direct_keys:
        value = getattr(args, key)
        if value is not None:  # None 表示未在命令行出现。
            overrides[key] = value
    if args.force_flush:
        overrides["force_flush"] = True
    if args.enable_profiler is not None:
        overrides["profiling"] = {"enabled": args.enable_profiler}  # 映射到 profiling 子树。
    runtime_overrides: dict[str, object] = {}
    if args.runtime is not None:
        runtime_overrides["name"] = args.runtime
    for _flag, key, _help in RUNTIME_FILE_ARGS:
        value = getattr(args, key)
        if value is not None:  # None 表示未在命令行出现。
            runtime_overrides[key] = value
    if runtime_overrides:
        overrides["runtime"] = runtime_overrides  # 合并到 runtime 子树。
    return overrides


def main(argv: list[str] | None = None) -> int:
    """解析参数并调用管线，返回退出状态码。"""  # 函数说明。

    parser = build_parser()  # 构建解析器。
    args = parser.parse_args(argv)  # 参数错误时 argparse 以状态码 2 退出。
    try:
        bundle = load_and_merge_config(
            cli_overrides=_build_cli_overrides(args),
            cli_set_overrides=parse_cli_set_items(args.set_items) if args.set_items else {},
            config_path=args.config,
            profile_name=args.profile_name,
        )
    except ConfigError as exc:
        get_logger().exception("invalid configuration", exc=exc)  # 配置尚未可用，使用默认日志器。
        return 1
    config = bundle.config  # 合并后的最终配置。
    if args.print_config or args.save_config:
        if args.print_config:
            sys.stdout.write(render_effective_config(bundle, include_sources=True))  # 附带每个键的来源。
            sys.stdout.flush()
        if args.save_config:
            save_config(bundle, args.save_config)  # 原子写入快照。
        return 0
    level = config.get("log_level", "INFO")
    if config.get("verbose") and level == "INFO":  # verbose 模式自动提升到 DEBUG。
        level = "DEBUG"
    logger = get_logger(
        format=config.get("log_format", "human"),
        level=level,
        log_file=config.get("log_file"),
        sample_rate=float(config.get("log_sample_rate", 1.0)),
        quiet=bool(config.get("quiet", False)),
        force_flush=bool(config.get("force_flush", False)),
    )
    if config.get("verbose"):
        logger.debug("effective profile", profile=bundle.profile or "default", runtime=config["runtime"].get("name"))
    try:
        run_batch(config, logger=logger)  # 单个任务失败不影响退出码。
    except SetupError as exc:
        logger.exception("batch setup failed", exc=exc)
        return 1
    return 0  # 批处理完成。


if __name__ == "__main__":  # 允许脚本直接运行。
    sys.exit(main())
