"""通过 CLI 执行 dummy 运行时的冒烟测试。"""
# 导入 os 以操作环境变量（如 PYTHONPATH）。
import os
# 导入 subprocess 以运行 python -m 命令。
import subprocess
# 导入 sys 以获取当前解释器路径。
import sys
# 导入 pathlib.Path 以构造输入与输出目录。
from pathlib import Path

from conftest import write_artifacts, write_audio

ROOT = Path(__file__).resolve().parents[1]


def _run_cli(args: list[str], cwd: Path) -> subprocess.CompletedProcess:
    """使用当前 Python 解释器运行 CLI 并返回进程结果。"""

    env = {key: value for key, value in os.environ.items() if not key.startswith("BATCHASR_")}
    env["PYTHONPATH"] = str(ROOT)
    command = [sys.executable, "-m", "batchasr.cli.main", *args]
    return subprocess.run(
        command,
        cwd=cwd,
        env=env,
        check=False,
        capture_output=True,
        text=True,
    )


def _runtime_args(runtime_cfg: dict) -> list[str]:
    """把 runtime 配置子树转换为命令行参数。"""
    args: list[str] = []
    for key, value in runtime_cfg.items():
        if key == "name":
            args.extend(["--runtime", value])
        elif value:
            args.extend([f"--{key.replace('_', '-')}", value])
    return args


def test_cli_transcribes_inline_and_listed_inputs(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    audio_dir = tmp_path / "audio"
    names = write_audio(audio_dir, 3)
    listing = tmp_path / "list.txt"
    listing.write_text(f"{names[2]}\n", encoding="utf-8")
    out_dir = tmp_path / "out"
    result = _run_cli(
        [
            "--input-audio-files",
            f"{names[0]};{names[1]}",
            "--input-audio-file-of-paths",
            str(listing),
            "--input-files-base-path",
            str(audio_dir),
            "--output-files-base-path",
            str(out_dir),
            "--max-num-threads",
            "2",
            "--progress",
            "false",
            *_runtime_args(runtime_cfg),
        ],
        cwd=tmp_path,
    )
    assert result.returncode == 0, result.stderr + result.stdout
    assert "Will process 3 files." in result.stdout
    assert "Creating thread pool with 2 threads." in result.stdout
    for name in names:
        assert (out_dir / f"{name}.txt").read_text(encoding="utf-8").strip()


def test_cli_setup_failure_exits_with_status_one(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    runtime_cfg["feature_module_file"] = str(tmp_path / "models" / "nonexistent.bin")
    audio_dir = tmp_path / "audio"
    names = write_audio(audio_dir, 2)
    out_dir = tmp_path / "out"
    result = _run_cli(
        [
            "--input-audio-files",
            ",".join(names),
            "--input-files-base-path",
            str(audio_dir),
            "--output-files-base-path",
            str(out_dir),
            *_runtime_args(runtime_cfg),
        ],
        cwd=tmp_path,
    )
    assert result.returncode == 1
    assert "failed to open feature module file=" in result.stdout
    assert not out_dir.exists()


def test_cli_per_file_failure_still_exits_zero(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    audio_dir = tmp_path / "audio"
    names = write_audio(audio_dir, 1)
    out_dir = tmp_path / "out"
    result = _run_cli(
        [
            "--input-audio-files",
            f"{names[0]},absent.wav",
            "--input-files-base-path",
            str(audio_dir),
            "--output-files-base-path",
            str(out_dir),
            "--log-format",
            "jsonl",
            *_runtime_args(runtime_cfg),
        ],
        cwd=tmp_path,
    )
    assert result.returncode == 0, result.stderr + result.stdout
    assert (out_dir / f"{names[0]}.txt").exists()
    assert not (out_dir / "absent.wav.txt").exists()
    assert '"failed": 1' in result.stdout


def test_cli_print_config(tmp_path: Path) -> None:
    result = _run_cli(["--print-config", "--max-num-threads", "3"], cwd=tmp_path)
    assert result.returncode == 0, result.stderr
    assert "max_num_threads: 3  # cli:args" in result.stdout


def test_cli_rejects_zero_threads(tmp_path: Path) -> None:
    result = _run_cli(["--max-num-threads", "0"], cwd=tmp_path)
    assert result.returncode == 2
    assert "--max-num-threads" in result.stderr
