"""批处理 Manifest：每个转写任务一行 JSON 记录。"""  # 模块说明。
from pathlib import Path  # 导入 Path 统一路径类型。
from typing import Any, Dict  # 导入类型注释。

from batchasr.utils.io import jsonl_append  # 复用加锁的 JSONL 追加逻辑。


def append_record(manifest_path: str | Path, record: Dict[str, Any], *, force_flush: bool = False) -> None:
    """在文件锁保护下追加一条任务记录，worker 线程可并发调用。"""  # 函数说明。
    jsonl_append(str(manifest_path), record, force_flush=force_flush)  # 单行写入，互不交错。
