"""配置与世界注册表测试。"""

import pytest

from daytale.config.settings import PipelineConfig, apply_env_overrides, load_pipeline_config
from daytale.config.worlds import DEFAULT_WORLD_ID, load_worlds_from_yaml

_ENV_VARS = [
    "DAYTALE_PROVIDER",
    "DAYTALE_MODEL",
    "DAYTALE_TEMPERATURE",
    "DAYTALE_TIMEOUT",
    "DAYTALE_LOG_LLM",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = PipelineConfig()
    assert config.chapter_model.temperature == 0.6
    assert config.chapter_model.max_tokens == 3000
    assert config.chapter_model.json_mode
    assert config.summary_model.temperature == 0.3
    assert config.summary_model.max_tokens == 200
    assert not config.summary_model.json_mode
    assert (config.title_min_chars, config.title_max_chars) == (6, 16)
    assert config.lease_ttl_seconds == 180


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DAYTALE_PROVIDER", "google")
    monkeypatch.setenv("DAYTALE_MODEL", "gemini-2.0-flash")
    monkeypatch.setenv("DAYTALE_TEMPERATURE", "0.9")
    monkeypatch.setenv("DAYTALE_LOG_LLM", "off")

    config = apply_env_overrides(PipelineConfig())
    assert config.chapter_model.provider == "google"
    assert config.summary_model.model_name == "gemini-2.0-flash"
    assert config.chapter_model.temperature == 0.9
    assert config.summary_model.temperature == 0.3
    assert not config.log_llm_calls


def test_yaml_overrides_merge_with_defaults(tmp_path):
    path = tmp_path / "daytale.yaml"
    path.write_text(
        "title_max_chars: 20\nchapter_model:\n  model_name: gpt-4o\n",
        encoding="utf-8",
    )
    config = load_pipeline_config(path)
    assert config.title_max_chars == 20
    assert config.chapter_model.model_name == "gpt-4o"
    assert config.chapter_model.json_mode
    assert config.chapter_model.max_tokens == 3000


def test_no_path_returns_defaults():
    assert load_pipeline_config() == PipelineConfig()


def test_bundled_worlds(worlds):
    assert {w.id for w in worlds.all()} == {"middle_earth", "wizard_school", "future_city"}
    assert worlds.require(None).id == DEFAULT_WORLD_ID
    assert worlds.get("atlantis") is None
    with pytest.raises(KeyError):
        worlds.require("atlantis")


def test_world_fields(world):
    assert world.principal_names == ("一二", "布布")
    assert world.entity_policy.new_named_places == "forbidden"
    assert world.set_piece_guidance


def test_load_custom_worlds(tmp_path):
    path = tmp_path / "worlds.yaml"
    path.write_text(
        "worlds:\n"
        "  - id: sea\n"
        "    initial_summary: 两人出海。\n"
        "    prompt_snippet: 海洋冒险\n"
        "    principals:\n"
        "      - {name: 阿海, signature_action: 掌舵}\n"
        "      - {name: 阿岚, signature_action: 潜水}\n",
        encoding="utf-8",
    )
    registry = load_worlds_from_yaml(path)
    assert len(registry) == 1
    world = registry.require("sea")
    assert world.entity_policy is None
    assert world.principal_names == ("阿海", "阿岚")
