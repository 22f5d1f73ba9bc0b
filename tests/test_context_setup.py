"""共享推理上下文构建的测试：加载顺序、解析规则与启动失败。"""  # 模块说明。
import dataclasses
import json
import struct
from pathlib import Path

import pytest

from batchasr.asr.context import (
    CriterionType,
    build_context,
    decode_transitions,
    load_tokens,
    parse_decoder_options,
)
from batchasr.asr.runtimes import create_runtime
from batchasr.utils.errors import SetupError
from batchasr.utils.metrics import MetricsSink

from conftest import DECODER_OPTIONS, write_artifacts


def _build(runtime_cfg: dict, **kwargs):
    """以 runtime 配置子树调用 build_context。"""
    params = {key: value for key, value in runtime_cfg.items() if key != "name"}
    params.update(kwargs)
    return build_context(create_runtime(runtime_cfg["name"]), **params)


def test_context_loads_all_artifacts(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    context = _build(runtime_cfg)
    assert context.token_count == 4
    assert context.tokens == ("_", "a", "b", "c")
    assert context.transitions == ()
    assert context.silence_token == "_"
    assert context.decoder_options.beam_size == 100
    assert context.decoder_options.criterion_type is CriterionType.CTC
    assert context.decoder_factory.words == ("hello", "world", "batch", "speech")


def test_pipeline_composition_order_is_feature_then_acoustic(tmp_path: Path) -> None:
    context = _build(write_artifacts(tmp_path / "models"))
    names = [module.name for module in context.pipeline.modules]
    assert names == ["feature_extractor.bin", "acoustic_model.bin"]
    assert len(context.pipeline) == 2


def test_context_is_immutable(tmp_path: Path) -> None:
    context = _build(write_artifacts(tmp_path / "models"))
    with pytest.raises(dataclasses.FrozenInstanceError):
        context.token_count = 1  # type: ignore[misc]
    with pytest.raises(dataclasses.FrozenInstanceError):
        context.decoder_options.beam_size = 1  # type: ignore[misc]


def test_token_count_ignores_empty_lines(tmp_path: Path) -> None:
    tokens = tmp_path / "tokens.txt"
    tokens.write_bytes(b"a\r\n\nb\n c\n")
    assert load_tokens(str(tokens)) == ("a", "b", " c")


def test_missing_feature_module_is_setup_error(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    missing = str(tmp_path / "models" / "nonexistent.bin")
    with pytest.raises(SetupError) as excinfo:
        _build(runtime_cfg, feature_module_file=missing)
    assert str(excinfo.value) == f"failed to open feature module file={missing} for reading"


def test_missing_acoustic_module_reports_its_own_path(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    missing = str(tmp_path / "models" / "no_acoustic.bin")
    with pytest.raises(SetupError) as excinfo:
        _build(runtime_cfg, acoustic_module_file=missing)
    assert "acoustic module" in str(excinfo.value)
    assert missing in str(excinfo.value)


@pytest.mark.parametrize("key", ["tokens_file", "decoder_options_file", "lexicon_file", "language_model_file"])
def test_missing_required_files_are_setup_errors(tmp_path: Path, key: str) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    with pytest.raises(SetupError):
        _build(runtime_cfg, **{key: str(tmp_path / "missing" / key)})


def test_malformed_decoder_options_is_setup_error(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    Path(runtime_cfg["decoder_options_file"]).write_text("{not json", encoding="utf-8")
    with pytest.raises(SetupError):
        _build(runtime_cfg)


def test_decoder_options_missing_key_is_setup_error(tmp_path: Path) -> None:
    options = dict(DECODER_OPTIONS)
    options.pop("beamSize")
    runtime_cfg = write_artifacts(tmp_path / "models", decoder_options=options)
    with pytest.raises(SetupError) as excinfo:
        _build(runtime_cfg)
    assert "beamSize" in str(excinfo.value)


@pytest.mark.parametrize(
    "value, expected",
    [("ASG", CriterionType.ASG), ("ctc", CriterionType.CTC), ("S2s", CriterionType.S2S), (0, CriterionType.ASG), (2, CriterionType.S2S)],
)
def test_criterion_type_names_and_codes(value, expected) -> None:
    options = dict(DECODER_OPTIONS, criterionType=value)
    assert parse_decoder_options(options).criterion_type is expected


@pytest.mark.parametrize("value", ["rnnt", 5, True])
def test_invalid_criterion_type_rejected(value) -> None:
    with pytest.raises(ValueError):
        parse_decoder_options(dict(DECODER_OPTIONS, criterionType=value))


def test_decoder_options_accepts_yaml_document(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    yaml_text = "\n".join(f"{key}: {json.dumps(value)}" for key, value in DECODER_OPTIONS.items())
    Path(runtime_cfg["decoder_options_file"]).write_text(yaml_text + "\n", encoding="utf-8")
    context = _build(runtime_cfg)
    assert context.decoder_options.lm_weight == pytest.approx(0.67)
    assert context.decoder_options.log_add is False


def test_transitions_file_is_decoded(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    transitions = tmp_path / "models" / "transitions.bin"
    transitions.write_bytes(struct.pack("<Q3f", 3, 0.5, 1.0, -2.0))
    context = _build(runtime_cfg, transitions_file=str(transitions))
    assert context.transitions == (0.5, 1.0, -2.0)
    assert context.decoder_factory.transitions == (0.5, 1.0, -2.0)


def test_truncated_transitions_are_setup_error(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    transitions = tmp_path / "models" / "transitions.bin"
    transitions.write_bytes(struct.pack("<Q2f", 5, 0.5, 1.0))
    with pytest.raises(SetupError):
        _build(runtime_cfg, transitions_file=str(transitions))


def test_missing_transitions_file_is_setup_error(tmp_path: Path) -> None:
    runtime_cfg = write_artifacts(tmp_path / "models")
    with pytest.raises(SetupError):
        _build(runtime_cfg, transitions_file=str(tmp_path / "models" / "absent.bin"))


def test_decode_transitions_empty_vector() -> None:
    assert decode_transitions(struct.pack("<Q", 0)) == ()
    with pytest.raises(ValueError):
        decode_transitions(b"\x01\x00")


def test_each_setup_phase_is_timed(tmp_path: Path) -> None:
    metrics = MetricsSink()
    _build(write_artifacts(tmp_path / "models"), metrics=metrics)
    for phase in (
        "feature_module_loading",
        "acoustic_module_loading",
        "tokens_loading",
        "decoder_options_loading",
        "transitions_loading",
        "create_decoder",
    ):
        stats = metrics.get_summary(f"phase_{phase}_sec")
        assert stats is not None and stats["count"] == 1


@pytest.mark.parametrize("key", ["tokens_file", "lexicon_file", "decoder_options_file"])
def test_undecodable_text_artifact_is_setup_error(tmp_path: Path, key: str) -> None:
    """文本工件不是合法 UTF-8 时同样属于启动失败。"""
    runtime_cfg = write_artifacts(tmp_path / "models")
    Path(runtime_cfg[key]).write_bytes(b"\xff\xfe\x00a\n")
    with pytest.raises(SetupError) as excinfo:
        _build(runtime_cfg)
    assert "UTF-8" in str(excinfo.value)
