"""分层配置系统：默认值、用户文件、Profile、环境变量与命令行覆盖，附来源追踪与快照导出。"""  # 模块说明。
from __future__ import annotations  # 启用前向注解以提升类型兼容性。

import copy  # 深拷贝避免层与层之间共享引用。
import os  # 访问环境变量与路径扩展。
from dataclasses import dataclass  # 声明配置结果数据类。
from datetime import datetime, timezone  # 生成快照时间戳。
from pathlib import Path  # 统一路径处理。
from typing import Any, Dict, Iterable, Mapping  # 导入类型注释。

import yaml  # 读取/写出 YAML 文件。

from batchasr.asr.runtimes import RUNTIMES  # 已注册的推理运行时名称。
from batchasr.utils.io import atomic_write_text  # 以原子方式保存配置快照。

ENV_PREFIX = "BATCHASR_"  # 只有带此前缀的环境变量会参与合并。
LOG_FORMATS = {"human", "jsonl"}  # 支持的日志格式。
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}  # 支持的日志等级。
# 需要展开 ~ 与环境变量的路径类键。
PATH_KEYS = (
    ("input_files_base_path",),
    ("output_files_base_path",),
    ("input_audio_file_of_paths",),
    ("log_file",),
    ("metrics_file",),
    ("manifest_path",),
    ("runtime", "feature_module_file"),
    ("runtime", "acoustic_module_file"),
    ("runtime", "transitions_file"),
    ("runtime", "tokens_file"),
    ("runtime", "lexicon_file"),
    ("runtime", "language_model_file"),
    ("runtime", "decoder_options_file"),
)


@dataclass
class ConfigBundle:
    """封装配置加载结果，包含配置体、来源映射与激活的 Profile。"""  # 数据类说明。

    config: Dict[str, Any]  # 合并并规范化后的配置字典。
    sources: Dict[str, Any]  # 与 config 同结构的来源树，叶子为来源标签。
    profile: str | None  # 生效的 profile 名称。
    profile_source: str | None  # profile 由哪一层选择，例如 "profile:parallel"。


class ConfigError(ValueError):
    """配置无效时抛出，消息中包含键路径与来源。"""  # 自定义异常说明。


def _project_root() -> Path:
    """返回仓库根目录。"""  # 工具函数说明。

    return Path(__file__).resolve().parents[2]  # config.py 位于 batchasr/utils。


def _load_yaml(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件，空文件视为空字典。"""  # 工具函数说明。

    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle)  # 只允许安全的 YAML 标签。
        except yaml.YAMLError as exc:
            raise ConfigError(f"Malformed YAML in {path}: {exc}") from exc
    if data is None:  # 空文件。
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def _build_source_tree(node: Any, label: str) -> Any:
    """构造与数据同结构的来源树，每个叶子都标记为 label。"""  # 工具函数说明。

    if isinstance(node, dict):
        return {key: _build_source_tree(value, label) for key, value in node.items()}  # 递归处理子映射。
    return label


def _deep_merge(base: Dict[str, Any], incoming: Dict[str, Any], sources: Dict[str, Any], incoming_sources: Any) -> None:
    """递归地把 incoming 合并进 base，并同步更新来源树。"""  # 工具函数说明。

    for key, value in incoming.items():
        source_info = incoming_sources.get(key) if isinstance(incoming_sources, dict) else incoming_sources  # 来源可以是整棵树共用的标签。
        if isinstance(value, dict):
            base_child = base.get(key)
            source_child = sources.get(key) if isinstance(sources, dict) else None
            if not isinstance(base_child, dict):  # 标量被映射覆盖时重新建树。
                base_child = {}
            if not isinstance(source_child, dict):
                source_child = {}
            base[key] = base_child
            sources[key] = source_child
            if isinstance(source_info, str):
                source_info = _build_source_tree(value, source_info)
            _deep_merge(base_child, value, source_child, source_info)
            continue
        # None 不覆盖已有的非空值。
        if value is None and key in base and base[key] is not None:
            continue
        base[key] = copy.deepcopy(value)  # 拷贝避免与上层共享列表。
        sources[key] = source_info  # 记录该键的最终来源。


def _parse_scalar(value: str) -> Any:
    """把字符串解析为布尔、None、整数或浮点，失败时返回去除首尾空白的原文。"""  # 工具函数说明。

    lowered = value.strip().lower()  # 大小写不敏感地识别布尔与空值。
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    try:
        # 以 0 开头的多位数字（如 007）按字符串保留。
        if lowered.startswith("0") and lowered not in {"0", "0.0"} and not lowered.startswith("0."):
            raise ValueError
        return int(lowered)
    except ValueError:
        try:
            return float(lowered)  # 例如 0.5。
        except ValueError:
            return value.strip()  # 其余按字符串处理。


def _keypath_to_tree(keypath: Iterable[str], value: Any) -> Dict[str, Any]:
    """根据键路径生成嵌套字典，供 --set 与环境变量使用。"""  # 工具函数说明。

    result: Dict[str, Any] = {}
    cursor = result
    components = list(keypath)
    for index, part in enumerate(components):
        if index == len(components) - 1:
            cursor[part] = value  # 最后一级写入值。
        else:
            cursor = cursor.setdefault(part, {})  # 中间层级创建子字典。
    return result


def _collect_env_from_mapping(env: Mapping[str, str], source_prefix: str) -> tuple[Dict[str, Any], Dict[str, Any]]:
    """从映射中提取 BATCHASR_* 变量，双下划线表示层级。"""  # 工具函数说明。

    values: Dict[str, Any] = {}
    value_sources: Dict[str, Any] = {}
    for key, raw_value in env.items():
        if not key.startswith(ENV_PREFIX):  # 忽略无关环境变量。
            continue
        path = [segment.lower() for segment in key[len(ENV_PREFIX) :].split("__") if segment]  # BATCHASR_RUNTIME__TOKENS_FILE -> runtime.tokens_file。
        if not path:
            continue
        tree = _keypath_to_tree(path, _parse_scalar(raw_value))
        source_tree = _keypath_to_tree(path, f"env:{source_prefix}{key}")
        _deep_merge(values, tree, value_sources, source_tree)
    return values, value_sources


def _parse_dotenv_file(path: Path) -> Dict[str, str]:
    """解析 .env 文件中的 KEY=VALUE 行，忽略注释与空行。"""  # 工具函数说明。

    result: Dict[str, str] = {}
    if not path.exists():  # .env 是可选的。
        return result
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or "=" not in stripped:
                continue
            key, _, raw_value = stripped.partition("=")  # 只按第一个等号拆分。
            result[key.strip()] = raw_value.strip().strip("\"'")  # 去掉包裹值的引号。
    return result


def _normalize_path(value: str) -> str:
    """展开 ~ 与环境变量并去掉尾部分隔符；大小写保持不变。"""  # 工具函数说明。

    expanded = os.path.expanduser(os.path.expandvars(value.strip()))  # 先展开变量再展开 ~。
    if expanded not in {"/", ""}:
        expanded = expanded.rstrip("/\\") or expanded
    return expanded


def _normalize_config(config: Dict[str, Any]) -> None:
    """就地规范化运行时名称、日志选项与路径。"""  # 工具函数说明。

    runtime = config.setdefault("runtime", {})
    name = runtime.get("name")
    if isinstance(name, str):
        runtime["name"] = name.strip().lower()  # 运行时名称大小写不敏感。
    silence = runtime.get("silence_token")
    if silence is not None and not isinstance(silence, str):
        # 环境变量或 --set 可能把 "0" 之类的值解析成数字。
        runtime["silence_token"] = str(silence)
    log_format = config.get("log_format")
    if isinstance(log_format, str):
        config["log_format"] = log_format.strip().lower()  # 格式名统一小写。
    level = config.get("log_level")
    if isinstance(level, str):
        config["log_level"] = level.strip().upper()  # 等级统一大写。
    inline = config.get("input_audio_files")
    if isinstance(inline, (list, tuple)):
        # YAML 中可以写成列表，统一为逗号分隔的字符串。
        config["input_audio_files"] = ",".join(str(item) for item in inline)
    for path in PATH_KEYS:
        parent: Any = config
        for part in path[:-1]:
            parent = parent.get(part) if isinstance(parent, dict) else None
        if not isinstance(parent, dict):
            continue
        value = parent.get(path[-1])
        if isinstance(value, str) and value.strip():
            parent[path[-1]] = _normalize_path(value)  # 空字符串保持为空。


def _source_for_path(path: Iterable[str], sources: Dict[str, Any]) -> str:
    """在来源树中查找键路径对应的来源标签。"""  # 工具函数说明。

    cursor: Any = sources
    for part in path:
        if not isinstance(cursor, dict):
            return "unknown"
        cursor = cursor.get(part)
        if cursor is None:
            return "unknown"
    return cursor if isinstance(cursor, str) else "unknown"  # 指向子树时视为未知。


def _assert_condition(condition: bool, path: Iterable[str], message: str, value: Any, sources: Dict[str, Any]) -> None:
    """条件不成立时抛出带来源信息的 ConfigError。"""  # 工具函数说明。

    if condition:
        return
    path = list(path)
    raise ConfigError(
        f"Invalid value for {'.'.join(path)}: {message} (value={value!r}, source={_source_for_path(path, sources)})"
    )


def _validate_config(config: Dict[str, Any], sources: Dict[str, Any]) -> None:
    """执行语义校验。"""  # 工具函数说明。

    threads = config.get("max_num_threads")
    _assert_condition(
        isinstance(threads, int) and not isinstance(threads, bool) and threads >= 1,
        ["max_num_threads"],
        "max_num_threads must be an integer >= 1",
        threads,
        sources,
    )
    runtime_name = config.get("runtime", {}).get("name")  # 名称必须已在注册表中。
    _assert_condition(
        runtime_name in RUNTIMES,
        ["runtime", "name"],
        f"runtime must be one of {sorted(RUNTIMES)}",
        runtime_name,
        sources,
    )
    for key in ("feature_module_file", "acoustic_module_file", "tokens_file", "lexicon_file", "language_model_file", "decoder_options_file"):
        value = config.get("runtime", {}).get(key)
        _assert_condition(
            isinstance(value, str) and bool(value.strip()),
            ["runtime", key],
            "path must be a non-empty string",
            value,
            sources,
        )
    log_format = config.get("log_format")
    _assert_condition(log_format in LOG_FORMATS, ["log_format"], "log_format must be human or jsonl", log_format, sources)
    log_level = config.get("log_level")
    _assert_condition(log_level in LOG_LEVELS, ["log_level"], f"log_level must be one of {sorted(LOG_LEVELS)}", log_level, sources)
    log_sample = config.get("log_sample_rate")
    _assert_condition(
        isinstance(log_sample, (int, float)) and not isinstance(log_sample, bool) and 0.0 < float(log_sample) <= 1.0,
        ["log_sample_rate"],
        "log_sample_rate must be within (0, 1]",
        log_sample,
        sources,
    )


def parse_cli_set_items(items: Iterable[str]) -> Dict[str, Any]:
    """把 --set KEY=VALUE（KEY 用点分层级）列表解析为嵌套字典。"""  # 公共函数说明。

    overrides: Dict[str, Any] = {}
    for raw in items:
        if "=" not in raw:
            raise ConfigError(f"Invalid --set entry '{raw}', expected KEY=VALUE")
        key, value = raw.split("=", 1)  # 值中允许出现等号。
        path = [segment.strip().lower() for segment in key.split(".") if segment.strip()]
        if not path:
            continue
        tree = _keypath_to_tree(path, _parse_scalar(value))
        _deep_merge(overrides, tree, {}, tree)
    return overrides


def load_and_merge_config(
    cli_overrides: Dict[str, Any] | None = None,
    cli_set_overrides: Dict[str, Any] | None = None,
    config_path: str | None = None,
    profile_name: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConfigBundle:
    """按默认→用户→profile→.env/环境→CLI→--set 的顺序合并配置。"""  # 主函数说明。

    root = _project_root()
    default_path = root / "config" / "default.yaml"  # 仓库自带的默认配置。
    if not default_path.exists():
        raise FileNotFoundError(f"Default config not found: {default_path}")
    config = copy.deepcopy(_load_yaml(default_path))
    sources = _build_source_tree(config, f"default:{default_path}")  # 所有键初始来源为默认文件。
    user_path = Path(config_path) if config_path else root / "config" / "user.yaml"  # 未指定时尝试默认用户配置。
    if config_path and not user_path.exists():  # 显式指定的文件必须存在。
        raise ConfigError(f"Config file not found: {user_path}")
    user_config: Dict[str, Any] = {}
    if user_path.exists():
        user_config = _load_yaml(user_path)
        _deep_merge(config, user_config, sources, _build_source_tree(user_config, f"user:{user_path}"))
    effective_profile = (
        profile_name
        or (user_config.get("meta") or {}).get("profile")
        or (config.get("meta") or {}).get("profile")
    )
    profile_source = None  # 未启用 profile。
    if effective_profile:
        profile_data = (config.get("profiles") or {}).get(effective_profile)
        if profile_data is None:
            raise ConfigError(f"Unknown profile '{effective_profile}'")
        profile_source = f"profile:{effective_profile}"
        _deep_merge(config, profile_data, sources, _build_source_tree(profile_data, profile_source))
    environ = os.environ if environ is None else environ  # 测试可注入独立的环境映射。
    env_layers: list[tuple[Dict[str, Any], Dict[str, Any]]] = []
    dotenv_candidates = [root / ".env"]  # 仓库根目录的 .env。
    if user_path.exists() and user_path.parent != root:
        dotenv_candidates.append(user_path.parent / ".env")
    for dotenv_path in dotenv_candidates:
        env_map = _parse_dotenv_file(dotenv_path)
        if env_map:
            env_layers.append(_collect_env_from_mapping(env_map, f"{dotenv_path}:"))
    # 真实环境变量最后应用，优先级高于 .env。
    env_layers.append(_collect_env_from_mapping(environ, ""))
    for values, source_tree in env_layers:
        if values:
            _deep_merge(config, values, sources, source_tree)
    if cli_overrides:
        _deep_merge(config, cli_overrides, sources, _build_source_tree(cli_overrides, "cli:args"))
    if cli_set_overrides:
        _deep_merge(config, cli_set_overrides, sources, _build_source_tree(cli_set_overrides, "cli:set"))
    _normalize_config(config)  # 合并完成后统一规范化。
    _validate_config(config, sources)  # 校验失败时报告值的来源。
    meta = config.setdefault("meta", {})
    meta_sources = sources.setdefault("meta", {})
    if not isinstance(meta_sources, dict):
        meta_sources = {}
        sources["meta"] = meta_sources
    meta["profile"] = effective_profile
    if effective_profile is not None:
        meta_sources["profile"] = profile_source
    meta["config_generated_at"] = datetime.now(timezone.utc).isoformat()  # 快照生成时间。
    meta_sources["config_generated_at"] = "runtime:generated"
    return ConfigBundle(config=config, sources=sources, profile=effective_profile, profile_source=profile_source)


def render_effective_config(bundle: ConfigBundle, include_sources: bool = True) -> str:
    """把配置渲染为 YAML 文本，可在每个键后附注来源。"""  # 导出函数说明。

    def _render(node: Any, source_node: Any, indent: int) -> list[str]:
        lines: list[str] = []
        prefix = " " * indent
        for key in sorted(node.keys()):
            value = node[key]
            child_source = source_node.get(key) if isinstance(source_node, dict) else source_node  # 子键继承父级来源。
            if isinstance(value, dict) and value:
                header = f"{prefix}{key}:"
                if include_sources and isinstance(child_source, str):
                    header += f"  # {child_source}"
                lines.append(header)
                lines.extend(_render(value, child_source, indent + 2))
                continue
            rendered = yaml.safe_dump(value, default_flow_style=True).strip()
            # safe_dump 对标量会追加文档结束标记。
            if rendered.endswith("\n..."):
                rendered = rendered[: -len("\n...")]
            line = f"{prefix}{key}: {rendered}"
            if include_sources and isinstance(child_source, str):
                line += f"  # {child_source}"
            lines.append(line)
        return lines

    return "\n".join(_render(bundle.config, bundle.sources, 0)) + "\n"  # 以换行结尾。


def save_config(bundle: ConfigBundle, path: str | os.PathLike[str], include_sources: bool = True) -> None:
    """将配置快照原子写入目标路径。"""  # 导出函数说明。

    atomic_write_text(path, render_effective_config(bundle, include_sources=include_sources))
