"""提供跨平台的 I/O 工具，包括原子写入、哈希、文件锁与路径拼接。"""  # 模块说明。
# 导入 hashlib 以计算 SHA-256 摘要。
import hashlib
# 导入 json 以支持 JSONL 追加。
import json
# 导入 os 模块以执行文件系统操作与原子替换。
import os
# 导入 stat 用于设置锁文件权限。
import stat
# 导入 threading 以在同一进程内串行化对同一锁文件的访问。
import threading
# 导入 time 以在等待文件锁时休眠与处理超时逻辑。
import time
# 导入 contextlib.contextmanager 以实现 with 语句上下文管理器。
from contextlib import contextmanager
# 导入 pathlib.Path 统一处理路径对象。
from pathlib import Path
from typing import Dict, Iterator

# 尝试导入 fcntl 以在 POSIX 系统上实现文件锁。
try:
    import fcntl  # type: ignore
except ImportError:
    fcntl = None  # Windows 下不存在。

# 尝试导入 msvcrt 以在 Windows 系统上实现锁。
try:
    import msvcrt  # type: ignore
except ImportError:
    msvcrt = None  # POSIX 下不存在。

# flock 在同一进程的不同线程之间不互斥，因此额外维护进程内锁。
_PROCESS_LOCKS: Dict[str, threading.Lock] = {}
_PROCESS_LOCKS_GUARD = threading.Lock()


def _process_lock_for(path: Path) -> threading.Lock:
    """返回与给定锁文件路径绑定的进程内互斥锁。"""  # 函数说明。
    key = str(path.resolve())
    with _PROCESS_LOCKS_GUARD:
        lock = _PROCESS_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _PROCESS_LOCKS[key] = lock
        return lock


# 定义安全创建目录的函数，确保重复调用也不会抛异常。
def safe_mkdirs(path: str | os.PathLike[str]) -> None:
    """创建目标目录及其父级目录，目录已存在时静默跳过。"""  # 函数说明。
    Path(path).mkdir(parents=True, exist_ok=True)


# 定义以原子方式写入文本的函数。
def atomic_write_text(path: str | os.PathLike[str], text: str) -> None:
    """通过临时文件写入文本内容，并以原子方式替换目标文件。"""  # 函数说明。
    target_path = Path(path)
    safe_mkdirs(target_path.parent)
    # 临时文件名带线程标识，避免多个 worker 写同名输出时互相覆盖临时文件。
    tmp_path = target_path.with_name(f"{target_path.name}.{threading.get_ident()}.tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(text)
        atomic_replace(tmp_path, target_path)
    finally:
        # 替换失败时清理残留的临时文件。
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


# 定义原子替换函数，封装 os.replace 并确保目录存在。
def atomic_replace(tmp_path: str | os.PathLike[str], final_path: str | os.PathLike[str]) -> None:
    """使用 os.replace 将临时文件移动到目标位置，确保父目录存在。"""  # 函数说明。
    final = Path(final_path)
    safe_mkdirs(final.parent)
    os.replace(Path(tmp_path), final)


# 定义计算文件 SHA-256 哈希的函数。
def sha256_file(path: str | os.PathLike[str], bufsize: int = 1024 * 1024) -> str:
    """读取文件内容并返回十六进制的 SHA-256 哈希值。"""  # 函数说明。
    digest = hashlib.sha256()
    # 以二进制模式逐块读取，避免一次性载入大模型文件。
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(bufsize)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


# 定义跨平台文件锁的上下文管理器。
@contextmanager
def with_file_lock(lock_path: str | os.PathLike[str], timeout_sec: float) -> Iterator[None]:
    """尝试在指定路径创建独占文件锁，超时则抛出 TimeoutError。"""  # 函数说明。
    path = Path(lock_path)
    safe_mkdirs(path.parent)
    start = time.monotonic()
    # 先获取进程内锁，再获取跨进程的文件锁。
    process_lock = _process_lock_for(path)
    if not process_lock.acquire(timeout=max(timeout_sec, 0.0)):
        raise TimeoutError(f"Timed out acquiring lock: {path}")
    interval = 0.05  # 轮询间隔。
    file_obj = None
    fd: int | None = None
    try:
        while True:
            try:
                if fcntl is not None:
                    fd = os.open(path, os.O_RDWR | os.O_CREAT, mode=stat.S_IRUSR | stat.S_IWUSR)
                    try:
                        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        os.close(fd)
                        fd = None
                elif msvcrt is not None:
                    file_obj = open(path, "a+")
                    try:
                        msvcrt.locking(file_obj.fileno(), msvcrt.LK_NBLCK, 1)
                        break
                    except OSError:
                        file_obj.close()
                        file_obj = None
                else:
                    # 无系统级锁支持时，使用 O_EXCL 创建文件实现自旋锁。
                    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
                    break
            except FileExistsError:
                fd = None
            if time.monotonic() - start >= timeout_sec:
                raise TimeoutError(f"Timed out acquiring lock: {path}")
            time.sleep(interval)
        try:
            yield
        finally:
            try:
                if fcntl is not None and fd is not None:
                    fcntl.flock(fd, fcntl.LOCK_UN)
                    os.close(fd)
                elif msvcrt is not None and file_obj is not None:
                    try:
                        msvcrt.locking(file_obj.fileno(), msvcrt.LK_UNLCK, 1)
                    finally:
                        file_obj.close()
                elif fd is not None:
                    os.close(fd)
            finally:
                path.unlink(missing_ok=True)
    finally:
        process_lock.release()


# 定义追加 JSON 行到 JSONL 文件的函数。
def jsonl_append(path: str | os.PathLike[str], record: dict, *, force_flush: bool = False) -> None:
    """在文件锁保护下向 JSONL 文件追加一行记录。"""  # 函数说明。
    target = Path(path)
    safe_mkdirs(target.parent)
    lock_path = target.with_suffix(target.suffix + ".lock")
    with with_file_lock(lock_path, timeout_sec=30):
        with target.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False, default=str))
            handle.write("\n")
            if force_flush:
                handle.flush()
                os.fsync(handle.fileno())


# 定义输入路径拼接函数：相对文件名加上基础目录前缀，绝对路径保持不变。
def input_full_path(file_name: str, base_path: str | os.PathLike[str] | None) -> str:
    """返回输入文件的完整路径，file_name 为绝对路径时忽略 base_path。"""  # 函数说明。
    if not base_path:
        return file_name
    # os.path.join 在第二个参数为绝对路径时直接返回该参数。
    return os.path.join(os.fspath(base_path), file_name)


# 定义输出路径拼接函数：输出目录 + 输入文件名（含扩展名）+ .txt。
def output_full_path(file_name: str, base_path: str | os.PathLike[str] | None) -> str:
    """返回 <base_path>/<basename(file_name)>.txt 形式的转写输出路径。"""  # 函数说明。
    name = os.path.basename(file_name)
    return input_full_path(name, base_path) + ".txt"
