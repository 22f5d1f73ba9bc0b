"""提供固定大小的线程池与线程安全的进度序号计数器。"""  # 模块文档字符串。
# 导入 concurrent.futures 以使用线程池执行器。
import concurrent.futures  # noqa: ICN001
# 导入 threading 以保护计数器与池状态。
import threading
# 导入 typing 中的类型以注解函数签名。
from typing import Any, Callable, List, Optional, TypeVar

# 声明泛型 TypeVar，表示任务返回类型。
R = TypeVar("R")


class ProgressCounter:
    """为每个开始执行的任务分配唯一且递增的序号，仅用于进度展示。"""  # 类说明。

    def __init__(self, start: int = 0) -> None:
        """以给定起点初始化计数器，首次 next() 返回 start + 1。"""  # 方法说明。
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        """原子地递增计数并返回递增后的值。"""  # 方法说明。
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        """返回当前已分配的最大序号。"""  # 属性说明。
        with self._lock:
            return self._value


class WorkerPool:
    """由 N 个常驻 worker 线程消费同一个无界 FIFO 队列的线程池。

    submit() 立即返回；shutdown() 拒绝新任务并阻塞直到队列中与执行中的任务全部结束，
    是批处理唯一的汇合点。任务抛出的异常在任务边界被捕获并记录，worker 线程继续处理
    下一个任务。
    """

    def __init__(self, max_workers: int = 1, *, logger: Any = None, thread_name_prefix: str = "batchasr-worker") -> None:
        """创建线程池，max_workers 必须不小于 1。"""  # 方法说明。
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self._logger = logger
        # ThreadPoolExecutor 内部即为共享 FIFO 队列 + 常驻线程。
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._lock = threading.Lock()
        self._accepting = True
        self._futures: List[concurrent.futures.Future[Any]] = []
        self.submitted = 0
        self.completed = 0
        self.failed = 0

    def _guard(self, fn: Callable[..., R], args: tuple) -> R:
        """在任务边界执行可调用对象，统计完成/失败并记录逃逸的异常。"""  # 方法说明。
        try:
            result = fn(*args)
        except Exception as exc:
            with self._lock:
                self.failed += 1
                self.completed += 1
            if self._logger is not None:
                self._logger.exception("job raised", exc=exc)
            # 异常保留在 Future 中供调用方检查，线程本身不受影响。
            raise
        with self._lock:
            self.completed += 1
        return result

    def submit(self, fn: Callable[..., R], *args: Any) -> "concurrent.futures.Future[R]":
        """将一个任务放入队列并立即返回其 Future；关闭后再提交会抛出 RuntimeError。"""  # 方法说明。
        with self._lock:
            if not self._accepting:
                raise RuntimeError("cannot submit to a WorkerPool after shutdown")
            future = self._executor.submit(self._guard, fn, args)
            self._futures.append(future)
            self.submitted += 1
        return future

    def shutdown(self) -> None:
        """停止接收新任务并等待全部已提交任务执行完毕；重复调用安全。"""  # 方法说明。
        with self._lock:
            self._accepting = False
        # wait=True 会排空队列并等待执行中的任务。
        self._executor.shutdown(wait=True)

    @property
    def futures(self) -> List["concurrent.futures.Future[Any]"]:
        """返回按提交顺序排列的 Future 列表副本。"""  # 属性说明。
        with self._lock:
            return list(self._futures)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:  # noqa: ANN001
        self.shutdown()
        return None
