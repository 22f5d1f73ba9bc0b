"""实现多线程批量转写管线：枚举输入、构建共享上下文、提交任务并汇总结果。"""  # 模块说明。
# 导入 copy 以在修改前复制配置字典。
import copy
import sys
# 导入 time 以测量耗时。
import time
# 导入 dataclass 用于结构化任务与结果。
from dataclasses import dataclass
# 导入 datetime 与 timezone 以生成 UTC 时间戳。
from datetime import datetime, timezone
# 导入 typing 类型注释。
from typing import Any, Dict, List, Optional

# 导入运行时工厂以实例化推理运行时；测试通过 monkeypatch 替换该名称。
from batchasr.asr.runtimes import create_runtime
from batchasr.asr.context import SharedInferenceContext, build_context
from batchasr.asr.inputs import enumerate_inputs
# 导入并发工具：线程池与进度序号计数器。
from batchasr.utils.concurrency import ProgressCounter, WorkerPool
# 导入错误类型与分类工具。
from batchasr.utils.errors import SetupError, classify_exception
# 导入 I/O 工具以执行原子写入与路径拼接。
from batchasr.utils.io import atomic_write_text, input_full_path, output_full_path, safe_mkdirs
# 导入日志工具用于打印细粒度日志与进度。
from batchasr.utils.logging import (  # 导入日志工具集以支持结构化日志。
    ProgressPrinter,  # 导入进度打印器以展示任务进度。
    StructuredLogger,  # 导入结构化日志器类型以便类型注释。
    TaskLogger,  # 导入任务级日志辅助类。
    bind_context,  # 导入上下文绑定函数以注入 trace_id 等字段。
    get_logger,  # 导入工厂函数以创建日志器实例。
    new_trace_id,  # 导入 TraceID 生成工具。
    print_summary,  # 导入汇总打印函数用于统一输出。
)
from batchasr.utils.manifest import append_record as manifest_append_record  # 导入 Manifest 追加工具。
from batchasr.utils.metrics import MetricsSink  # 导入指标收集器以统计运行数据。
from batchasr.utils.profiling import PhaseTimer  # 导入阶段计时器。

# 启动工件与音频一样相对 input_files_base_path 解析。
ARTIFACT_KEYS = (
    "feature_module_file",
    "acoustic_module_file",
    "transitions_file",
    "tokens_file",
    "lexicon_file",
    "language_model_file",
    "decoder_options_file",
)


# 定义任务结构体：一个输入文件对应一个任务，只持有共享上下文的引用。
@dataclass(frozen=True)
class JobUnit:
    """描述单个音频文件的转写任务。"""  # 类说明。

    index: int  # 任务的提交顺序。
    input_path: str  # 完整输入路径。
    output_path: str  # 完整输出路径。
    context: SharedInferenceContext  # 所有任务共享的只读上下文。
    total: int  # 本批次任务总数，仅用于进度展示。


# 定义任务结果结构，便于聚合统计。
@dataclass
class JobResult:
    """封装任务执行后的状态、耗时与错误信息。"""  # 类说明。

    index: int  # 与 JobUnit.index 一致。
    sequence: int  # 开始执行时分配的进度序号，未开始时为 0。
    input_path: str  # 输入文件路径。
    output_path: str  # 输出文件路径。
    status: str  # success/failed。
    duration: float  # 任务耗时（秒）。
    error: str | None = None  # 失败原因文本。
    error_type: str | None = None  # classify_exception 给出的分类。

    def as_dict(self) -> Dict[str, Any]:
        """转换为可序列化的字典。"""  # 方法说明。
        return {
            "index": self.index,
            "sequence": self.sequence,
            "input": self.input_path,
            "output": self.output_path,
            "status": self.status,
            "duration_sec": self.duration,
            "error": self.error,
            "error_type": self.error_type,
        }


# 定义 worker 执行任务时共享的服务对象（日志、指标、进度、Manifest）。
@dataclass(frozen=True)
class JobServices:
    """封装 worker 执行单个任务时需要的共享服务，全部为线程安全的对象。"""  # 类说明。

    logger: StructuredLogger  # 运行级结构化日志器。
    verbose: bool  # 是否输出详细日志。
    metrics: MetricsSink  # 共享指标收集器。
    metrics_labels: Dict[str, Any]  # 全局指标标签快照。
    progress: ProgressPrinter  # 进度打印器。
    manifest_path: Optional[str]  # Manifest 路径，None 表示不写 Manifest。
    force_flush: bool  # 是否在每次追加 Manifest 后强制刷盘。


# 定义辅助函数：生成 Manifest 时间戳。
def _manifest_timestamp() -> str:
    """返回当前 UTC 时间戳的 ISO8601 字符串。"""  # 函数说明。
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _record(result: JobResult, services: JobServices) -> None:
    """把任务结果写入指标、Manifest 与进度条。"""  # 函数说明。
    services.metrics.observe("task_elapsed_sec", result.duration, labels=services.metrics_labels)
    if result.status == "success":
        services.metrics.inc("files_succeeded", labels=services.metrics_labels)
    else:
        services.metrics.inc("files_failed", labels=services.metrics_labels)
    if services.manifest_path:
        manifest_append_record(
            services.manifest_path,
            {
                "ts": _manifest_timestamp(),
                "input": result.input_path,
                "output": result.output_path if result.status == "success" else None,
                "sequence": result.sequence,
                "status": result.status,
                "elapsed_sec": result.duration,
                "error": {"type": result.error_type, "message": result.error} if result.error else None,
            },
            force_flush=services.force_flush,
        )
    services.progress.update(f"{result.status}: {result.input_path}")


# 定义单个任务的执行函数，由 worker 线程调用。
def execute_job(job: JobUnit, counter: ProgressCounter, services: JobServices) -> JobResult:
    """转写一个输入文件并原子写出结果；任何异常都只影响当前任务。"""  # 函数说明。
    task_logger = TaskLogger(
        bind_context(services.logger, task={"index": job.index, "input": job.input_path}),
        services.verbose,
    )
    start_time = time.perf_counter()
    # 序号在真正开始转写前分配，反映的是执行开始顺序而非提交顺序。
    sequence = counter.next()
    task_logger.start(sequence, job.total, job.input_path, job.output_path)
    context = job.context
    try:
        text = context.runtime.transcribe(
            job.input_path,
            context.pipeline,
            context.decoder_factory,
            context.decoder_options,
            context.token_count,
        )
        atomic_write_text(job.output_path, f"{text}\n")
    except Exception as exc:  # noqa: BLE001
        duration = time.perf_counter() - start_time
        error_type = classify_exception(exc)
        task_logger.failure(job.input_path, exc, error_type)
        result = JobResult(
            index=job.index,
            sequence=sequence,
            input_path=job.input_path,
            output_path=job.output_path,
            status="failed",
            duration=duration,
            error=f"{type(exc).__name__}: {exc}",
            error_type=error_type,
        )
    else:
        duration = time.perf_counter() - start_time
        task_logger.success(job.input_path, duration, job.output_path)
        result = JobResult(
            index=job.index,
            sequence=sequence,
            input_path=job.input_path,
            output_path=job.output_path,
            status="success",
            duration=duration,
        )
    _record(result, services)
    return result


def _failed_from_future(job: JobUnit, exc: BaseException) -> JobResult:
    """把逃逸出 execute_job 的异常转换为失败结果。"""  # 函数说明。
    return JobResult(
        index=job.index,
        sequence=0,
        input_path=job.input_path,
        output_path=job.output_path,
        status="failed",
        duration=0.0,
        error=f"Unhandled exception: {type(exc).__name__}: {exc}",
        error_type=classify_exception(exc),
    )


def _runtime_options(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """读取 runtime 子树中的文件配置并填充默认值。"""  # 函数说明。
    runtime_cfg = cfg.get("runtime")
    if not isinstance(runtime_cfg, dict):
        runtime_cfg = {}
    silence = runtime_cfg.get("silence_token")
    return {
        "name": str(runtime_cfg.get("name") or "dummy"),
        "feature_module_file": str(runtime_cfg.get("feature_module_file") or "feature_extractor.bin"),
        "acoustic_module_file": str(runtime_cfg.get("acoustic_module_file") or "acoustic_model.bin"),
        "transitions_file": str(runtime_cfg.get("transitions_file") or ""),
        "tokens_file": str(runtime_cfg.get("tokens_file") or "tokens.txt"),
        "lexicon_file": str(runtime_cfg.get("lexicon_file") or "lexicon.txt"),
        "language_model_file": str(runtime_cfg.get("language_model_file") or "language_model.bin"),
        "decoder_options_file": str(runtime_cfg.get("decoder_options_file") or "decoder_options.json"),
        "silence_token": "_" if silence is None else str(silence),
        "options": dict(runtime_cfg.get("options") or {}),
    }


def resolve_artifact_paths(runtime_opts: Dict[str, Any], input_base: str) -> Dict[str, str]:
    """把 runtime 工件文件名拼接到输入基础目录；空的 transitions_file 保持为空。"""  # 函数说明。
    resolved: Dict[str, str] = {}
    for key in ARTIFACT_KEYS:
        name = runtime_opts[key]
        resolved[key] = input_full_path(name, input_base) if name else ""  # 绝对路径不受基础目录影响。
    return resolved


def run_batch(
    config: dict | None = None,
    *,
    logger: StructuredLogger | None = None,
    counter: ProgressCounter | None = None,
) -> dict:
    """执行批量音频转写并返回统计摘要。

    启动阶段（枚举输入、加载模型与解码资源）任一步失败都会抛出 SetupError，
    此时尚未提交任何任务也不会创建任何输出文件。单个任务的失败只记录在摘要中。
    """  # 函数说明。

    cfg = copy.deepcopy(config) if config is not None else {}  # 拷贝配置避免外部引用受影响。
    if not isinstance(cfg, dict):
        raise TypeError("config must be a dict when provided")
    runtime_opts = _runtime_options(cfg)
    profiling_cfg = cfg.get("profiling") if isinstance(cfg.get("profiling"), dict) else {}
    profile_enabled = bool(profiling_cfg.get("enabled", True))
    verbose = bool(cfg.get("verbose", False))
    quiet = bool(cfg.get("quiet", False))
    force_flush = bool(cfg.get("force_flush", False))
    log_format = str(cfg.get("log_format") or "human")
    effective_level = str(cfg.get("log_level") or "INFO").upper()
    if verbose and effective_level == "INFO":  # 在 verbose 模式下自动提升等级。
        effective_level = "DEBUG"
    base_logger = logger or get_logger(
        format=log_format,
        level=effective_level,
        log_file=cfg.get("log_file"),
        sample_rate=float(cfg.get("log_sample_rate") or 1.0),
        quiet=quiet,
        force_flush=force_flush,
    )
    trace_id = new_trace_id()  # 为本次运行生成 TraceID。
    run_logger = bind_context(base_logger, trace_id=trace_id)
    max_num_threads = int(cfg.get("max_num_threads") or 1)
    input_base = cfg.get("input_files_base_path") or ""
    output_base = cfg.get("output_files_base_path") or ""
    manifest_path = str(cfg["manifest_path"]) if cfg.get("manifest_path") else None
    metrics_file = cfg.get("metrics_file")
    if verbose:
        run_logger.debug(
            "pipeline configuration",
            config={
                "max_num_threads": max_num_threads,
                "input_files_base_path": input_base,
                "output_files_base_path": output_base,
                "runtime": runtime_opts["name"],
                "profile": cfg.get("meta", {}).get("profile") if isinstance(cfg.get("meta"), dict) else None,
            },
        )

    metrics = MetricsSink()
    metrics_labels = {"runtime": runtime_opts["name"]}
    phase_labels = {**metrics_labels, "trace_id": trace_id}
    start_time = time.monotonic()

    # 输入在构建上下文之前枚举，清单文件不可读同样属于启动失败。
    inline_inputs = cfg.get("input_audio_files")
    path_file = cfg.get("input_audio_file_of_paths")
    input_names = enumerate_inputs(
        str(inline_inputs) if inline_inputs is not None else None,
        str(path_file) if path_file else None,
    )
    run_logger.info(f"Will process {len(input_names)} files.", files=len(input_names))
    metrics.inc("files_total", float(len(input_names)), labels=metrics_labels)

    try:
        runtime = create_runtime(runtime_opts["name"], **runtime_opts["options"])
    except ValueError as exc:
        raise SetupError(str(exc)) from exc
    artifacts = resolve_artifact_paths(runtime_opts, input_base)  # 工件路径与音频共用输入基础目录。
    context = build_context(
        runtime,
        feature_module_file=artifacts["feature_module_file"],
        acoustic_module_file=artifacts["acoustic_module_file"],
        tokens_file=artifacts["tokens_file"],
        lexicon_file=artifacts["lexicon_file"],
        language_model_file=artifacts["language_model_file"],
        decoder_options_file=artifacts["decoder_options_file"],
        transitions_file=artifacts["transitions_file"],
        silence_token=runtime_opts["silence_token"],
        logger=run_logger,
        metrics=metrics,
        profiling=profile_enabled,
    )

    total = len(input_names)
    jobs = [
        JobUnit(
            index=index,
            input_path=input_full_path(name, input_base),
            output_path=output_full_path(name, output_base),
            context=context,
            total=total,
        )
        for index, name in enumerate(input_names)
    ]
    if jobs and output_base:
        safe_mkdirs(output_base)

    try:
        stdout_is_tty = sys.stdout.isatty()
    except (AttributeError, ValueError):
        stdout_is_tty = False
    progress = ProgressPrinter(
        total,
        "converting",
        enabled=bool(cfg.get("progress", True)) and not quiet,
        logger=run_logger,
        is_tty=stdout_is_tty,
    )
    services = JobServices(
        logger=run_logger,
        verbose=verbose,
        metrics=metrics,
        metrics_labels=metrics_labels,
        progress=progress,
        manifest_path=manifest_path,
        force_flush=force_flush,
    )
    counter = counter or ProgressCounter()

    results: List[JobResult] = []
    run_logger.info(f"Creating thread pool with {max_num_threads} threads.", threads=max_num_threads)
    with PhaseTimer(
        metrics,
        "transcription",
        labels=phase_labels,
        enabled=profile_enabled,
        logger=run_logger,
        description="converting audio input files to text",
    ):
        pool = WorkerPool(max_num_threads, logger=run_logger)
        futures = []
        try:
            for job in jobs:
                run_logger.info(f"Enqueue input file={job.input_path} to thread pool.", index=job.index)
                futures.append(pool.submit(execute_job, job, counter, services))
        finally:
            # shutdown 是唯一的汇合点，返回时所有已提交任务都已结束。
            pool.shutdown()
        for job, future in zip(jobs, futures):
            exc = future.exception()
            results.append(_failed_from_future(job, exc) if exc is not None else future.result())
    progress.close()
    elapsed = time.monotonic() - start_time

    succeeded = [item for item in results if item.status == "success"]
    failed = [item for item in results if item.status != "success"]
    summary = {
        "total": total,
        "submitted": pool.submitted,
        "succeeded": len(succeeded),
        "failed": len(failed),
        "elapsed_sec": elapsed,
        "outputs": [item.output_path for item in succeeded],
        "errors": [
            {"input": item.input_path, "reason": item.error or "unknown", "error_type": item.error_type}
            for item in failed
        ],
        "jobs": [item.as_dict() for item in results],
        "trace_id": trace_id,
        "manifest_path": manifest_path,
        "config": {
            "runtime": runtime_opts["name"],
            "max_num_threads": max_num_threads,
            "profiling_enabled": profile_enabled,
        },
    }

    metrics.observe("elapsed_total_sec", elapsed, labels=metrics_labels)
    summary["metrics"] = metrics.summary(labels=metrics_labels)
    if metrics_file:
        export_format = metrics.export(str(metrics_file))
        run_logger.info("metrics exported", path=str(metrics_file), format=export_format)
    print_summary(summary, logger=run_logger)
    if manifest_path:
        run_logger.info("manifest updated", path=manifest_path)
    return summary


def run(
    config: dict | None = None,
    *,
    logger: StructuredLogger | None = None,
    counter: ProgressCounter | None = None,
) -> dict:
    """包装 run_batch，启动失败时记录日志并以状态码 1 退出。"""  # 函数说明。

    try:
        return run_batch(config, logger=logger, counter=counter)
    except SetupError as exc:
        target_logger = logger or get_logger()
        target_logger.exception("batch setup failed", exc=exc)
        sys.exit(1)
