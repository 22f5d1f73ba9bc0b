"""提供轻量级的阶段耗时计时工具。"""  # 模块文档说明。
import time  # 导入 time 以测量阶段耗时。
from typing import Any, Dict  # 导入类型注释提升可读性。

from batchasr.utils.metrics import MetricsSink  # 引入指标收集器以汇报结果。


class PhaseTimer:
    """用于在 with 语句中测量单个阶段耗时，写入指标并可选地打印耗时日志。"""  # 类说明。

    def __init__(
        self,
        metrics: MetricsSink | None,
        phase: str,
        labels: Dict[str, Any] | None = None,
        enabled: bool = True,
        logger: Any = None,
        description: str | None = None,
    ) -> None:
        """保存上下文信息；description 为日志中显示的阶段描述。"""  # 方法说明。
        self.metrics = metrics  # 可选的指标收集器。
        self.phase = phase  # 阶段名称，用于组成指标名。
        self.labels = labels or {}  # 指标标签。
        self.enabled = enabled  # 关闭时不计时也不输出。
        self.logger = logger  # 可选的结构化日志器。
        self.description = description or phase.replace("_", " ")  # 缺省时由阶段名生成描述。
        self._start: float | None = None  # 进入时间。
        self.elapsed: float | None = None  # 最近一次测得的耗时。

    def __enter__(self) -> "PhaseTimer":
        """记录进入时间并返回自身供 with 语句使用。"""  # 方法说明。
        if self.enabled:
            self._start = time.perf_counter()  # 使用单调高精度时钟。
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        """退出上下文时计算耗时；阶段抛出异常时不记录。"""  # 方法说明。
        if not self.enabled or self._start is None:
            return
        self.elapsed = time.perf_counter() - self._start
        self._start = None  # 允许重复使用同一实例。
        if exc_type is not None:  # 失败的阶段不计入耗时统计。
            return
        if self.metrics is not None:
            self.metrics.observe(f"phase_{self.phase}_sec", self.elapsed, labels=self.labels)
        if self.logger is not None:
            self.logger.info(
                f"{self.description} elapsed",
                phase=self.phase,
                elapsed_sec=round(self.elapsed, 6),
            )
