"""枚举待转写的音频文件：命令行内联列表与路径清单文件。"""  # 模块说明。
# 导入 re 以按逗号或分号拆分内联列表。
import re
from typing import List, Optional  # 导入类型注释。

from batchasr.utils.errors import SetupError  # 清单文件不可读属于启动失败。

# 内联列表允许混用逗号与分号作为分隔符。
_INLINE_SEPARATORS = re.compile(r"[,;]")


def split_inline_list(text: Optional[str]) -> List[str]:
    """拆分内联文件列表并丢弃空片段，例如 "a.wav,b.wav;,c.wav" -> [a, b, c]。"""  # 函数说明。
    if not text:
        return []
    return [token for token in _INLINE_SEPARATORS.split(text) if token]


def read_path_file(path: str) -> List[str]:
    """读取每行一个路径的清单文件；只去除行尾换行符，跳过空行。"""  # 函数说明。
    try:
        with open(path, "r", encoding="utf-8") as handle:
            lines = [line.rstrip("\r\n") for line in handle]  # 兼容 LF 与 CRLF 行尾。
    except OSError as exc:
        raise SetupError(f"failed to open input audio file of paths file={path} for reading") from exc
    except UnicodeDecodeError as exc:
        raise SetupError(f"input audio file of paths file={path} is not valid UTF-8") from exc
    return [line for line in lines if line]  # 空行不产生任务。


def enumerate_inputs(inline: Optional[str] = None, path_file: Optional[str] = None) -> List[str]:
    """合并内联列表与清单文件，内联条目在前，不做去重。"""  # 函数说明。
    inputs = split_inline_list(inline)
    if path_file:
        inputs.extend(read_path_file(path_file))  # 清单条目追加在内联条目之后。
    return inputs
