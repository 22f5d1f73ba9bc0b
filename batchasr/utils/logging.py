"""提供结构化日志、进度展示与汇总打印的工具集合。"""  # 模块文档说明。
from __future__ import annotations  # 启用延迟求值的注解语义以支持联合类型语法。
import json  # 在 JSONL 格式下序列化日志记录。
import logging  # 兼容标准 logging 接口并处理回退输出。
import os  # 调用 fsync 强制落盘。
import sys  # 访问标准输出流对象。
import threading  # 多个 worker 线程会同时写日志。
import traceback  # 格式化异常堆栈。
import uuid  # 生成 TraceID。
from datetime import datetime, timezone  # 生成 UTC 时间戳。
from pathlib import Path  # 处理日志文件路径。
from typing import Any, Dict, Optional  # 导入类型注释。

from tqdm import tqdm  # 在终端展示进度条。

from batchasr.utils.io import jsonl_append, safe_mkdirs, with_file_lock  # 复用加锁追加与目录创建工具。

_LEVELS = {  # 日志等级到数值的映射，与 logging 模块一致。
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


def new_trace_id() -> str:
    """生成 12 字符长度的短 TraceID，用于贯穿一次批处理。"""  # 函数说明。
    return uuid.uuid4().hex[:12]  # 截取前 12 位保持日志简洁。


def _normalize_level(level: str) -> str:
    """将外部传入的日志等级规范化为大写并验证合法性。"""  # 函数说明。
    upper = level.upper()  # 统一大小写。
    if upper not in _LEVELS:  # 拒绝未知等级。
        raise ValueError(f"Unsupported log level: {level}")
    return upper


def _append_text_atomic(path: Path, text: str, *, force_flush: bool = False) -> None:
    """以锁保护的方式向纯文本日志追加一行，避免并发写入冲突。"""  # 函数说明。
    safe_mkdirs(path.parent)  # 确保日志目录存在。
    lock_path = path.with_suffix(path.suffix + ".lock")  # 锁文件与日志文件同目录。
    with with_file_lock(lock_path, timeout_sec=30):
        with path.open("a", encoding="utf-8") as handle:
            handle.write(text)
            handle.write("\n")
            handle.flush()  # 刷新 Python 缓冲区。
            if force_flush:
                os.fsync(handle.fileno())  # 按需强制写入磁盘。


class _LoggerCore:
    """封装日志格式化与写入细节的内部核心类。"""  # 类说明。

    def __init__(
        self,
        log_format: str,
        level: str,
        log_file: str | None,
        sample_rate: float,
        quiet: bool,
        *,
        force_flush: bool = False,
        stream: Any = None,
    ) -> None:
        """初始化日志核心，保存格式、等级与输出目标。"""  # 方法说明。
        normalized = log_format.lower()  # 格式名大小写不敏感。
        if normalized not in {"human", "jsonl"}:
            raise ValueError(f"Unsupported log format: {log_format}")
        self.format = normalized  # 保存输出格式。
        self.level = _LEVELS[_normalize_level(level)]  # 保存最低输出等级。
        self.log_file = Path(log_file) if log_file else None  # 可选的日志文件。
        self.sample_rate = max(min(sample_rate, 1.0), 0.0)  # 采样率限制在 [0, 1]。
        self.quiet = quiet  # quiet 模式下不写控制台。
        self._sample_counter = 0  # INFO 采样计数。
        self._console = stream if stream is not None else sys.stdout  # 控制台输出流。
        self._force_flush = force_flush  # 是否每次写入后 fsync。
        # 采样计数与控制台写入需要在线程间串行化，避免行内容交错。
        self._lock = threading.Lock()
        if self.log_file is not None:
            safe_mkdirs(self.log_file.parent)

    def _should_emit(self, level_value: int) -> bool:
        """根据等级与采样策略判断是否输出日志，调用方需持有锁。"""  # 方法说明。
        if level_value < self.level:  # 低于阈值直接丢弃。
            return False
        if level_value <= _LEVELS["INFO"] and self.sample_rate < 1.0:  # 仅对 INFO 及以下采样。
            period = max(1, int(round(1.0 / self.sample_rate))) if self.sample_rate > 0 else 0
            if period == 0:
                return False
            keep = self._sample_counter % period == 0  # 每 period 条保留一条。
            self._sample_counter += 1
            if not keep:
                return False
        return True

    def _timestamp(self) -> str:
        """返回带毫秒精度的 UTC ISO8601 时间戳。"""  # 方法说明。
        now = datetime.now(timezone.utc)
        return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _render_human(self, record: Dict[str, Any]) -> str:
        """将日志记录渲染为人类易读的字符串。"""  # 方法说明。
        parts = [f"[{record['level']}]", record["ts"]]  # 等级与时间戳在行首。
        trace_id = record.get("trace_id")
        if trace_id:
            parts.append(f"trace={trace_id}")
        task = record.get("task")
        if isinstance(task, dict):
            descriptor = task.get("basename") or task.get("input")  # 优先展示短文件名。
            if descriptor:
                parts.append(f"task={descriptor}")
        parts.append(record["msg"])
        base = " ".join(parts)

        # 错误字段与堆栈追加在基础行之后，便于快速定位问题。
        extra_lines: list[str] = []
        error_fields: list[str] = []
        error_type = record.get("error_type")
        if error_type:
            error_fields.append(f"error_type={error_type}")
        error_message = record.get("error")
        if error_message:
            error_fields.append(f"error={error_message}")
        if error_fields:
            extra_lines.append("    " + " ".join(error_fields))  # 缩进四格。
        trace_text = record.get("trace")
        if isinstance(trace_text, str) and trace_text.strip():
            for line in trace_text.rstrip().splitlines():
                extra_lines.append("    " + line)
        if extra_lines:
            return "\n".join([base, *extra_lines])
        return base

    def emit(self, level: str, message: str, fields: Dict[str, Any]) -> None:
        """根据配置输出一条日志记录。"""  # 方法说明。
        normalized = _normalize_level(level)
        level_value = _LEVELS[normalized]
        with self._lock:  # 同一时刻只有一个线程写出。
            if not self._should_emit(level_value):
                return
            record: Dict[str, Any] = {
                "ts": self._timestamp(),
                "level": normalized,
                "msg": message,
            }
            record.update(fields)  # 上下文与附加字段合并到记录中。
            if self.format == "human":
                rendered = self._render_human(record)
                if not self.quiet:
                    self._console.write(rendered + "\n")
                    self._console.flush()
                if self.log_file is not None:
                    _append_text_atomic(self.log_file, rendered, force_flush=self._force_flush)
            else:
                if not self.quiet:
                    self._console.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
                    self._console.flush()
                if self.log_file is not None:
                    jsonl_append(str(self.log_file), record, force_flush=self._force_flush)


class StructuredLogger:
    """对外暴露的结构化日志器，支持上下文绑定与多格式输出。"""  # 类说明。

    def __init__(self, core: _LoggerCore, context: Optional[Dict[str, Any]] = None, parent: "StructuredLogger" | None = None) -> None:
        """创建日志器实例，可选地继承父级上下文。"""  # 方法说明。
        self._core = core  # 共享的输出核心。
        self._context = context or {}  # 本级绑定的字段。
        self._parent = parent  # 父级日志器。

    def _collect_context(self) -> Dict[str, Any]:
        """递归合并父级上下文并返回总上下文字典。"""  # 方法说明。
        aggregated: Dict[str, Any] = {}
        if self._parent is not None:
            aggregated.update(self._parent._collect_context())  # 父级字段先写入，子级可覆盖。
        aggregated.update(self._context)
        return aggregated

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """基于当前实例追加上下文字段并返回新的子日志器。"""  # 方法说明。
        return StructuredLogger(self._core, context=kwargs, parent=self)

    def log(self, level: str, message: str, **fields: Any) -> None:
        """记录一条带指定等级的日志，可附带额外字段。"""  # 方法说明。
        payload = self._collect_context()
        payload.update(fields)  # 调用方字段优先于绑定字段。
        self._core.emit(level, message, payload)

    def debug(self, message: str, **fields: Any) -> None:
        self.log("DEBUG", message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log("INFO", message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log("WARNING", message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log("ERROR", message, **fields)

    def exception(self, message: str, exc: BaseException | None = None, **fields: Any) -> None:
        """输出包含异常堆栈的 ERROR 级日志。"""  # 方法说明。
        exception_obj = exc
        if exception_obj is None:
            _, exception_obj, _ = sys.exc_info()  # 未显式传入时取当前正在处理的异常。
        if exception_obj is not None:
            fields.setdefault("error", str(exception_obj))
            fields.setdefault("error_type", exception_obj.__class__.__name__)
            trace_text = "".join(
                traceback.format_exception(
                    exception_obj.__class__, exception_obj, exception_obj.__traceback__
                )
            )
            fields.setdefault("trace", trace_text)  # 完整堆栈写入 trace 字段。
        self.log("ERROR", message, **fields)


def get_logger(
    format: str = "human",
    level: str = "INFO",
    log_file: str | None = None,
    sample_rate: float = 1.0,
    quiet: bool = False,
    *,
    force_flush: bool = False,
    stream: Any = None,
) -> StructuredLogger:
    """创建并返回结构化日志器，支持 human/jsonl 两种模式。"""  # 函数说明。
    core = _LoggerCore(
        format,
        level,
        log_file,
        sample_rate,
        quiet,
        force_flush=force_flush,
        stream=stream,
    )
    return StructuredLogger(core)  # 根日志器没有绑定字段。


def bind_context(logger: StructuredLogger, **kwargs: Any) -> StructuredLogger:
    """为现有日志器绑定额外上下文并返回新的实例。"""  # 函数说明。
    return logger.bind(**kwargs)


class ProgressPrinter:
    """封装 tqdm 或退化日志方式的进度展示工具，可被多个 worker 线程调用。"""  # 类说明。

    def __init__(
        self,
        total: int,
        description: str,
        enabled: bool,
        logger: StructuredLogger | None = None,
        *,
        is_tty: bool | None = None,
    ) -> None:
        """初始化进度打印器；非 TTY 环境下退化为结构化日志。"""  # 方法说明。
        tty_status = is_tty
        if tty_status is None:
            try:
                tty_status = sys.stdout.isatty()  # 自动探测终端。
            except (AttributeError, ValueError):
                tty_status = False  # 被替换或已关闭的 stdout 视为非终端。
        self.enabled = enabled and total > 0  # 空批次不展示进度。
        self.description = description
        self.total = total
        self.count = 0  # 已完成的任务数。
        self.logger = logger
        self._lock = threading.Lock()  # 保护计数与进度条。
        self._bar = None
        if self.enabled and tty_status:
            self._bar = tqdm(total=total, desc=description, leave=False)

    def update(self, message: str | None = None) -> None:
        """递增进度计数并可选输出附加消息。"""  # 方法说明。
        if not self.enabled:
            return
        with self._lock:
            self.count += 1
            if self._bar is not None:
                self._bar.update(1)
                if message:
                    self._bar.set_postfix_str(message, refresh=False)
                self._bar.refresh()
                return
            completed = self.count  # 在锁内读取当前完成数。
        percent = (completed / self.total) * 100 if self.total else 0.0
        if self.logger is not None:
            self.logger.info(
                "progress",
                progress={"completed": completed, "total": self.total, "percent": percent, "message": message},
            )
        else:
            logging.info(
                "%s %d/%d (%.1f%%)%s",
                self.description,
                completed,
                self.total,
                percent,
                f" - {message}" if message else "",
            )

    def close(self) -> None:
        """关闭进度条。"""  # 方法说明。
        if self._bar is not None:
            self._bar.close()


class TaskLogger:
    """为单个转写任务提供结构化的生命周期日志接口。"""  # 类说明。

    def __init__(self, logger: StructuredLogger, verbose: bool) -> None:
        self.logger = logger  # 已绑定任务上下文的日志器。
        self.verbose = verbose  # verbose 模式下成功日志降为 DEBUG。

    def start(self, sequence: int, total: int, input_path: str, output_path: str) -> str:
        """记录任务开始执行，返回 "<k>/<total> input=<path> output=<path>" 进度文本。"""  # 方法说明。
        text = f"{sequence}/{total} input={input_path} output={output_path}"
        self.logger.info(f"processing {text}", sequence=sequence, total=total)
        return text

    def success(self, input_path: str, duration: float, output_path: str) -> None:
        """记录任务成功完成的摘要。"""  # 方法说明。
        fields = {"task_path": input_path, "duration_sec": duration, "outputs": [output_path]}
        if self.verbose:
            self.logger.debug("task success", **fields)
        else:
            self.logger.info("task finished", **fields)

    def failure(self, input_path: str, exc: BaseException, error_type: str) -> None:
        """记录任务失败事件，包含错误分类与堆栈。"""  # 方法说明。
        self.logger.exception(
            "task failed",
            exc=exc,
            task_path=input_path,
            error_class=error_type,
        )


def print_summary(summary: dict, logger: StructuredLogger | logging.Logger | None = None) -> None:
    """输出批处理汇总信息，既支持结构化日志也兼容标准 logging。"""  # 函数说明。
    total = summary.get("total", 0)
    submitted = summary.get("submitted", 0)
    succeeded = summary.get("succeeded", 0)
    failed = summary.get("failed", 0)
    elapsed = float(summary.get("elapsed_sec", 0.0))
    avg_latency = elapsed / submitted if submitted else 0.0  # 平均每个文件的墙钟耗时。
    throughput = (succeeded / elapsed * 60.0) if elapsed > 0 else 0.0  # 每分钟成功文件数。
    payload = {
        "total": total,
        "submitted": submitted,
        "succeeded": succeeded,
        "failed": failed,
        "elapsed_sec": elapsed,
        "avg_file_sec": avg_latency,
        "throughput_files_per_min": throughput,
    }
    message = (
        "Summary total={total} submitted={submitted} succeeded={succeeded} failed={failed} "
        "elapsed={elapsed:.2f}s throughput={throughput:.2f}/min"
    ).format(
        total=total,
        submitted=submitted,
        succeeded=succeeded,
        failed=failed,
        elapsed=elapsed,
        throughput=throughput,
    )
    if isinstance(logger, StructuredLogger):
        logger.info("pipeline summary", summary=payload, text=message)
    elif isinstance(logger, logging.Logger):
        logger.info(message)
    else:
        logging.getLogger("batchasr").info(message)  # 未提供日志器时回退到标准 logging。
