"""实现简易的指标收集、汇总与导出工具。"""  # 模块文档说明。
import csv  # 导入 csv 以便导出表格格式指标。
import io  # 导入 io 以创建内存中的字符串缓冲区。
import json  # 导入 json 以导出 JSONL 指标。
import threading  # worker 线程会并发上报指标。
from dataclasses import dataclass  # 导入 dataclass 简化统计结构定义。
from pathlib import Path  # 导入 Path 处理文件路径。
from typing import Any, Dict, Iterable, List, Tuple  # 导入类型注释提高可读性。

from batchasr.utils.io import atomic_write_text, jsonl_append, safe_mkdirs  # 复用已有 I/O 工具。


@dataclass
class _SummaryStats:
    """用于观测指标的摘要统计结构。"""  # 类说明。

    count: int = 0  # 观测次数。
    total: float = 0.0  # 观测值总和。
    minimum: float | None = None  # 最小值。
    maximum: float | None = None  # 最大值。

    def update(self, value: float) -> None:
        """使用新的观测值更新统计信息。"""  # 方法说明。
        self.count += 1
        self.total += value
        self.minimum = value if self.minimum is None else min(self.minimum, value)
        self.maximum = value if self.maximum is None else max(self.maximum, value)

    def as_record(self) -> Dict[str, Any]:
        """将摘要统计转换为导出友好的字典。"""  # 方法说明。
        average = self.total / self.count if self.count else 0.0
        return {
            "count": self.count,
            "sum": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "avg": average,
        }


_Key = Tuple[str, Tuple[Tuple[str, Any], ...]]  # 指标名与规范化标签组成的键。


class MetricsSink:
    """收集计数器与观测值，并支持导出到 CSV/JSONL。"""  # 类说明。

    def __init__(self) -> None:
        """初始化内部数据结构。"""  # 方法说明。
        self._counters: Dict[_Key, float] = {}
        self._summaries: Dict[_Key, _SummaryStats] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize_labels(labels: Dict[str, Any] | None) -> Tuple[Tuple[str, Any], ...]:
        """将标签字典转换为排序后的不可变元组，便于用作字典键。"""  # 方法说明。
        if not labels:
            return tuple()  # 无标签时使用空元组。
        return tuple(sorted((str(key), labels[key]) for key in labels))  # 排序保证标签顺序无关。

    def inc(self, name: str, value: float = 1.0, labels: Dict[str, Any] | None = None) -> None:
        """将指定计数器增加给定数值。"""  # 方法说明。
        key = (name, self._normalize_labels(labels))  # 指标名与标签共同组成键。
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + value  # 累加计数。

    def observe(self, name: str, value: float, labels: Dict[str, Any] | None = None) -> None:
        """记录一个观测指标的数值。"""  # 方法说明。
        key = (name, self._normalize_labels(labels))  # 指标名与标签共同组成键。
        with self._lock:
            self._summaries.setdefault(key, _SummaryStats()).update(value)  # 首次观测时创建统计结构。

    def _iter_counters(self) -> Iterable[Dict[str, Any]]:
        """生成所有计数器的导出记录。"""  # 方法说明。
        with self._lock:
            items = list(self._counters.items())  # 在锁内复制快照，锁外生成记录。
        for (name, labels), value in items:
            yield {
                "type": "counter",
                "metric": name,
                "value": value,
                "labels": dict(labels),
            }

    def _iter_summaries(self) -> Iterable[Dict[str, Any]]:
        """生成所有观测指标的导出记录。"""  # 方法说明。
        with self._lock:
            items = [(key, stats.as_record()) for key, stats in self._summaries.items()]  # 复制统计快照。
        for (name, labels), stats_record in items:
            record = {
                "type": "summary",
                "metric": name,
                "labels": dict(labels),
            }
            record.update(stats_record)  # 合并 count/sum/min/max/avg 字段。
            yield record

    def records(self) -> List[Dict[str, Any]]:
        """返回全部计数器与观测记录的列表。"""  # 方法说明。
        return list(self._iter_counters()) + list(self._iter_summaries())  # 计数器在前，观测在后。

    def export_jsonl(self, path: str) -> None:
        """将所有指标以 JSONL 格式写入指定文件（覆盖旧内容）。"""  # 方法说明。
        target = Path(path)
        safe_mkdirs(target.parent)  # 确保目标目录存在。
        target.unlink(missing_ok=True)  # 每次导出覆盖旧文件。
        for record in self.records():
            jsonl_append(path, record)  # 每条指标一行。

    def export_csv(self, path: str) -> None:
        """将指标导出为 CSV 文件。"""  # 方法说明。
        buffer = io.StringIO()  # 先写入内存再原子落盘。
        fieldnames = ["type", "metric", "value", "count", "sum", "min", "max", "avg", "labels"]
        writer = csv.DictWriter(buffer, fieldnames=fieldnames)
        writer.writeheader()  # 写出表头。
        for record in self._iter_counters():
            writer.writerow({
                "type": record["type"],
                "metric": record["metric"],
                "value": record["value"],
                "labels": json.dumps(record["labels"], ensure_ascii=False),
            })
        for record in self._iter_summaries():
            writer.writerow({
                "type": record.get("type"),
                "metric": record.get("metric"),
                "count": record.get("count"),
                "sum": record.get("sum"),
                "min": record.get("min"),
                "max": record.get("max"),
                "avg": record.get("avg"),
                "labels": json.dumps(record.get("labels", {}), ensure_ascii=False),
            })
        atomic_write_text(path, buffer.getvalue())  # 原子替换目标文件。

    def get_counter(self, name: str, labels: Dict[str, Any] | None = None) -> float:
        """读取指定计数器的累计值，若不存在则返回 0。"""  # 方法说明。
        key = (name, self._normalize_labels(labels))  # 指标名与标签共同组成键。
        with self._lock:
            return self._counters.get(key, 0.0)  # 缺失的计数器视为 0。

    def get_summary(self, name: str, labels: Dict[str, Any] | None = None) -> Dict[str, Any] | None:
        """读取指定观测指标的统计字典，不存在时返回 None。"""  # 方法说明。
        key = (name, self._normalize_labels(labels))  # 指标名与标签共同组成键。
        with self._lock:
            stats = self._summaries.get(key)
            return stats.as_record() if stats is not None else None

    def summary(self, labels: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """生成概览性指标摘要，供人类阅读或日志打印。"""  # 方法说明。
        total = self.get_counter("files_total", labels)
        succeeded = self.get_counter("files_succeeded", labels)
        failed = self.get_counter("files_failed", labels)
        elapsed_stats = self.get_summary("elapsed_total_sec", labels)
        elapsed = elapsed_stats["sum"] if elapsed_stats else 0.0  # 批处理总墙钟耗时。
        avg_file_sec = elapsed / total if total else 0.0  # 平均每个文件耗时。
        throughput = (succeeded / elapsed * 60.0) if elapsed > 0 else 0.0  # 每分钟成功文件数。
        return {
            "files_total": total,
            "files_succeeded": succeeded,
            "files_failed": failed,
            "elapsed_total_sec": elapsed,
            "avg_file_sec": avg_file_sec,
            "throughput_files_per_min": throughput,
        }

    def export(self, path: str) -> str:
        """根据文件后缀选择 CSV 或 JSONL 导出，返回实际使用的格式名。"""  # 方法说明。
        if Path(path).suffix.lower() == ".csv":  # 仅 .csv 后缀使用 CSV，其余一律 JSONL。
            self.export_csv(path)
            return "csv"
        self.export_jsonl(path)
        return "jsonl"
