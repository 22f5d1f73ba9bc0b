"""分层配置系统的合并顺序与校验测试。"""  # 模块说明。
from __future__ import annotations

from pathlib import Path

import pytest

from batchasr.utils.config import (
    ConfigError,
    load_and_merge_config,
    parse_cli_set_items,
    render_effective_config,
    save_config,
)


def _write_yaml(path: Path, text: str) -> None:
    """辅助函数：将 YAML 字符串写入指定路径。"""
    path.write_text(text, encoding="utf-8")


def test_defaults_match_documented_values(tmp_path: Path) -> None:
    bundle = load_and_merge_config(config_path=None, environ={})
    config = bundle.config
    assert config["max_num_threads"] == 1
    assert config["input_files_base_path"] == "."
    assert config["output_files_base_path"] == "."
    runtime = config["runtime"]
    assert runtime["name"] == "dummy"
    assert runtime["feature_module_file"] == "feature_extractor.bin"
    assert runtime["acoustic_module_file"] == "acoustic_model.bin"
    assert runtime["tokens_file"] == "tokens.txt"
    assert runtime["lexicon_file"] == "lexicon.txt"
    assert runtime["language_model_file"] == "language_model.bin"
    assert runtime["decoder_options_file"] == "decoder_options.json"
    assert runtime["transitions_file"] == ""
    assert runtime["silence_token"] == "_"


def test_layer_precedence(tmp_path: Path) -> None:
    """默认→用户→环境→CLI→--set 依次覆盖。"""
    user_cfg = tmp_path / "user.yaml"
    _write_yaml(
        user_cfg,
        """max_num_threads: 2
runtime:
  tokens_file: user_tokens.txt
  lexicon_file: user_lexicon.txt
output_files_base_path: ./custom
""",
    )
    environ = {
        "BATCHASR_MAX_NUM_THREADS": "3",
        "BATCHASR_RUNTIME__LEXICON_FILE": "env_lexicon.txt",
        "UNRELATED": "ignored",
    }
    bundle = load_and_merge_config(
        cli_overrides={"max_num_threads": 5},
        cli_set_overrides=parse_cli_set_items(["runtime.silence_token=|"]),
        config_path=str(user_cfg),
        environ=environ,
    )
    config = bundle.config
    assert config["max_num_threads"] == 5
    assert config["runtime"]["tokens_file"] == "user_tokens.txt"
    assert config["runtime"]["lexicon_file"] == "env_lexicon.txt"
    assert config["runtime"]["silence_token"] == "|"
    assert config["output_files_base_path"] == "./custom"
    assert bundle.sources["max_num_threads"] == "cli:args"
    assert bundle.sources["runtime"]["lexicon_file"] == "env:BATCHASR_RUNTIME__LEXICON_FILE"


def test_path_case_is_preserved(tmp_path: Path) -> None:
    user_cfg = tmp_path / "paths.yaml"
    _write_yaml(user_cfg, "input_files_base_path: ./Audio/\noutput_files_base_path: ./OutDir\n")
    bundle = load_and_merge_config(config_path=str(user_cfg), environ={})
    assert bundle.config["input_files_base_path"] == "./Audio"
    assert bundle.config["output_files_base_path"] == "./OutDir"


def test_profile_application_and_override() -> None:
    bundle = load_and_merge_config(
        cli_set_overrides=parse_cli_set_items(["progress=true"]),
        profile_name="parallel",
        environ={},
    )
    assert bundle.config["max_num_threads"] == 4
    assert bundle.config["progress"] is True
    assert bundle.config["meta"]["profile"] == "parallel"
    assert bundle.profile_source == "profile:parallel"


def test_unknown_profile_rejected() -> None:
    with pytest.raises(ConfigError):
        load_and_merge_config(profile_name="does-not-exist", environ={})


def test_env_file_support(tmp_path: Path) -> None:
    """用户配置同目录下的 .env 会被解析并应用。"""
    config_dir = tmp_path / "cfg"
    config_dir.mkdir()
    user_cfg = config_dir / "user.yaml"
    _write_yaml(user_cfg, "max_num_threads: 2\n")
    (config_dir / ".env").write_text("BATCHASR_RUNTIME__TOKENS_FILE=\"dotenv_tokens.txt\"\n", encoding="utf-8")
    bundle = load_and_merge_config(config_path=str(user_cfg), environ={})
    assert bundle.config["runtime"]["tokens_file"] == "dotenv_tokens.txt"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"max_num_threads": 0}, "max_num_threads"),
        ({"runtime": {"name": "tensorrt"}}, "runtime.name"),
        ({"log_sample_rate": 0}, "log_sample_rate"),
        ({"log_format": "xml"}, "log_format"),
    ],
)
def test_validation_failure(overrides: dict, field: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_and_merge_config(cli_overrides=overrides, environ={})
    assert field in str(excinfo.value)
    assert "source=cli:args" in str(excinfo.value)


def test_missing_user_config_is_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_and_merge_config(config_path=str(tmp_path / "absent.yaml"), environ={})


def test_invalid_set_entry() -> None:
    with pytest.raises(ConfigError):
        parse_cli_set_items(["max_num_threads"])


def test_set_values_are_typed() -> None:
    overrides = parse_cli_set_items(["max_num_threads=8", "quiet=true", "log_sample_rate=0.5", "manifest_path=none"])
    assert overrides == {"max_num_threads": 8, "quiet": True, "log_sample_rate": 0.5, "manifest_path": None}


def test_render_and_save_snapshot(tmp_path: Path) -> None:
    bundle = load_and_merge_config(profile_name="ci", environ={})
    snapshot = render_effective_config(bundle, include_sources=True)
    assert "max_num_threads: 2  # profile:ci" in snapshot
    assert "# default:" in snapshot
    target_path = tmp_path / "snapshot.yaml"
    save_config(bundle, target_path)
    saved_text = target_path.read_text(encoding="utf-8")
    assert "max_num_threads" in saved_text
