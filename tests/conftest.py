"""测试共享的夹具：生成模型工件、伪音频文件与最小批处理配置。"""
import json
import sys
from pathlib import Path
from typing import Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]  # 计算仓库根目录路径。
if str(ROOT) not in sys.path:  # 将其加入模块搜索路径以支持 from batchasr 导入。
    sys.path.insert(0, str(ROOT))

# 与真实解码器一致的选项文档。
DECODER_OPTIONS = {
    "beamSize": 100,
    "beamSizeToken": 10,
    "beamThreshold": 25.0,
    "lmWeight": 0.67,
    "wordScore": 0.1,
    "unkScore": -1e10,
    "silScore": 0.0,
    "logAdd": False,
    "criterionType": "CTC",
}


def write_artifacts(model_dir: Path, decoder_options: dict | None = None) -> Dict[str, str]:
    """在 model_dir 下写出全部启动工件，返回 runtime 配置子树。"""
    model_dir.mkdir(parents=True, exist_ok=True)
    (model_dir / "feature_extractor.bin").write_bytes(b"feature-extractor-graph")
    (model_dir / "acoustic_model.bin").write_bytes(b"acoustic-model-graph")
    (model_dir / "tokens.txt").write_text("_\na\nb\nc\n", encoding="utf-8")
    (model_dir / "lexicon.txt").write_text(
        "hello h e l l o |\nworld w o r l d |\nbatch b a t c h |\nspeech s p e e c h |\n",
        encoding="utf-8",
    )
    (model_dir / "language_model.bin").write_bytes(b"language-model")
    options = DECODER_OPTIONS if decoder_options is None else decoder_options
    (model_dir / "decoder_options.json").write_text(json.dumps(options), encoding="utf-8")
    return {
        "name": "dummy",
        "feature_module_file": str(model_dir / "feature_extractor.bin"),
        "acoustic_module_file": str(model_dir / "acoustic_model.bin"),
        "transitions_file": "",
        "tokens_file": str(model_dir / "tokens.txt"),
        "lexicon_file": str(model_dir / "lexicon.txt"),
        "language_model_file": str(model_dir / "language_model.bin"),
        "decoder_options_file": str(model_dir / "decoder_options.json"),
        "silence_token": "_",
    }


def write_audio(audio_dir: Path, count: int, prefix: str = "input") -> List[str]:
    """创建 count 个内容互不相同的伪音频文件，返回文件名列表。"""
    audio_dir.mkdir(parents=True, exist_ok=True)
    names = []
    for index in range(count):
        name = f"{prefix}{index}.wav"
        (audio_dir / name).write_bytes(f"RIFF-fake-audio-{index}".encode("ascii") * 8)
        names.append(name)
    return names


@pytest.fixture
def make_config(tmp_path: Path):
    """返回一个构造批处理配置的工厂函数。"""

    def _make(count: int = 3, threads: int = 1, **extra) -> dict:
        audio_dir = tmp_path / "audio"
        names = write_audio(audio_dir, count)
        config = {
            "max_num_threads": threads,
            "input_files_base_path": str(audio_dir),
            "output_files_base_path": str(tmp_path / "out"),
            "input_audio_files": ",".join(names),
            "input_audio_file_of_paths": "",
            "runtime": write_artifacts(tmp_path / "models"),
            "log_format": "human",
            "log_level": "INFO",
            "quiet": True,
            "progress": False,
            "profiling": {"enabled": True},
        }
        config.update(extra)
        return config

    return _make
