"""验证占位推理运行时的接口行为。"""  # 模块说明。
from pathlib import Path

import pytest

from batchasr.asr.context import build_context
from batchasr.asr.runtimes import RUNTIMES, create_runtime
from batchasr.asr.runtimes.base import InferenceRuntime
from batchasr.asr.runtimes.dummy import DummyRuntime
from batchasr.utils.errors import DecodeError, UnsupportedAudioError

from conftest import write_artifacts


@pytest.fixture
def context(tmp_path: Path):
    runtime_cfg = write_artifacts(tmp_path / "models")
    params = {key: value for key, value in runtime_cfg.items() if key != "name"}
    return build_context(DummyRuntime(), **params)


def _transcribe(context, path: Path) -> str:
    return context.runtime.transcribe(
        str(path),
        context.pipeline,
        context.decoder_factory,
        context.decoder_options,
        context.token_count,
    )


def test_registry_contains_dummy() -> None:
    assert RUNTIMES["dummy"] is DummyRuntime
    runtime = create_runtime("dummy", extra="value")
    assert isinstance(runtime, InferenceRuntime)
    assert runtime.extra_options == {"extra": "value"}


def test_unknown_runtime_rejected() -> None:
    with pytest.raises(ValueError) as excinfo:
        create_runtime("tensorrt")
    assert "dummy" in str(excinfo.value)


def test_transcript_is_deterministic_and_uses_lexicon(tmp_path: Path, context) -> None:
    audio = tmp_path / "clip.wav"
    audio.write_bytes(b"some-audio-bytes" * 4)
    first = _transcribe(context, audio)
    second = _transcribe(context, audio)
    assert first == second
    words = first.split(" ")
    assert 1 <= len(words) <= 8
    assert set(words) <= {"hello", "world", "batch", "speech"}


def test_transcript_depends_on_audio_content(tmp_path: Path, context) -> None:
    outputs = set()
    for index in range(8):
        audio = tmp_path / f"clip{index}.wav"
        audio.write_bytes(f"audio-{index}".encode("ascii") * 4)
        outputs.add(_transcribe(context, audio))
    assert len(outputs) > 1


def test_missing_or_empty_audio_is_unsupported(tmp_path: Path, context) -> None:
    with pytest.raises(UnsupportedAudioError):
        _transcribe(context, tmp_path / "missing.wav")
    empty = tmp_path / "empty.wav"
    empty.write_bytes(b"")
    with pytest.raises(UnsupportedAudioError):
        _transcribe(context, empty)


def test_empty_lexicon_is_decode_error(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    Path(runtime_cfg["lexicon_file"]).write_text("\n\n", encoding="utf-8")
    params = {key: value for key, value in runtime_cfg.items() if key != "name"}
    context = build_context(DummyRuntime(), **params)
    audio = tmp_path / "clip.wav"
    audio.write_bytes(b"audio")
    with pytest.raises(DecodeError):
        _transcribe(context, audio)


def test_load_module_raises_oserror_for_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        DummyRuntime().load_module(str(tmp_path / "absent.bin"))


def test_load_module_records_digest_and_size(tmp_path: Path) -> None:
    artifact = tmp_path / "graph.bin"
    artifact.write_bytes(b"12345")
    module = DummyRuntime().load_module(str(artifact))
    assert module.name == "graph.bin"
    assert module.size == 5
    assert len(module.digest) == 64
