"""提供 JSON Schema 加载、缓存与校验的工具函数。"""  # 模块文档说明。
# 导入 json 以解析 schema 文件内容。
import json
# 导入 threading 以保护缓存在并发访问下的一致性。
import threading
# 导入 pathlib.Path 以定位仓库中的 schemas 目录。
from pathlib import Path
# 导入 typing.Dict 以标注缓存字典类型。
from typing import Dict

# 从 jsonschema 导入校验器与异常类型。
from jsonschema import Draft202012Validator, ValidationError

# 预先解析 schema 目录，避免每次调用都重新计算。
SCHEMA_DIR = Path(__file__).resolve().parents[2] / "schemas"
# 定义支持的 schema 名称到文件名的映射，便于统一管理。
SCHEMA_FILES = {
    "decoder_options": "decoder_options.schema.json",
}
# 使用字典缓存已加载的 schema，避免重复读取磁盘。
_SCHEMA_CACHE: Dict[str, dict] = {}
# 缓存编译后的 jsonschema 校验器。
_VALIDATOR_CACHE: Dict[str, Draft202012Validator] = {}
_CACHE_LOCK = threading.Lock()


def load_schema(name: str) -> dict:
    """加载指定名称的 JSON Schema，并在内存中缓存。"""  # 函数文档说明。

    key = name.strip().lower()
    if key not in SCHEMA_FILES:
        raise KeyError(f"Unknown schema: {name}")
    with _CACHE_LOCK:
        if key in _SCHEMA_CACHE:
            return _SCHEMA_CACHE[key]
        schema_path = SCHEMA_DIR / SCHEMA_FILES[key]
        with schema_path.open("r", encoding="utf-8") as handle:
            schema = json.load(handle)
        _SCHEMA_CACHE[key] = schema
        return schema


def _get_validator(name: str) -> Draft202012Validator:
    """获取编译后的 Draft2020-12 校验器实例并缓存。"""  # 内部工具函数说明。

    key = name.strip().lower()
    schema = load_schema(key)
    with _CACHE_LOCK:
        validator = _VALIDATOR_CACHE.get(key)
        if validator is None:
            validator = Draft202012Validator(schema)
            _VALIDATOR_CACHE[key] = validator
        return validator


def format_validation_error(error: ValidationError) -> str:
    """把 ValidationError 渲染为带 JSON 路径的单行说明。"""

    location = "/".join(str(part) for part in error.absolute_path) or "<root>"
    return f"{location}: {error.message}"


def validate_decoder_options(payload: dict) -> None:
    """校验解码选项文档的结构，失败时抛出 ValidationError。"""  # 函数文档说明。

    validator = _get_validator("decoder_options")
    # 按路径排序取第一个错误，保证多处错误时报告稳定。
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(map(str, err.absolute_path)))
    if errors:
        raise errors[0]
