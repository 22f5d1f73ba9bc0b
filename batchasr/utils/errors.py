"""定义批处理使用的错误类型与分类辅助函数。"""  # 模块说明。
# 导入 errno 以识别常见的 I/O 错误码。
import errno


# 定义启动阶段的致命错误，出现时整个批次在提交任何任务前终止。
class SetupError(RuntimeError):
    """模型、词表、解码配置等必需文件无法加载时抛出。"""  # 类说明。


# 定义单个任务的错误基类，仅影响当前文件。
class TranscriptionError(Exception):
    """单个音频文件转写失败时抛出，不影响其他任务。"""  # 类说明。


class UnsupportedAudioError(TranscriptionError):
    """输入音频无法读取或格式不受支持。"""  # 类说明。


class DecodeError(TranscriptionError):
    """解码器未能从声学得分生成文本。"""  # 类说明。


# 定义异常分类函数，用于摘要与 Manifest 中的 error_type 字段。
def classify_exception(exc: BaseException) -> str:
    """根据异常类型返回 setup/unsupported-audio/decode/io/unknown 标签。"""  # 函数说明。
    if isinstance(exc, SetupError):
        return "setup"
    if isinstance(exc, UnsupportedAudioError):
        return "unsupported-audio"
    if isinstance(exc, DecodeError):
        return "decode"
    # 文件不存在或权限问题同样归为 I/O 类。
    if isinstance(exc, (FileNotFoundError, PermissionError, IsADirectoryError)):
        return "io"
    if isinstance(exc, OSError) and exc.errno in {errno.EIO, errno.EACCES, errno.ENOENT, errno.EISDIR, errno.ENOSPC}:
        return "io"
    return "unknown"
