import os
from pathlib import Path

import pytest
import yaml

from shipwright.config import ConfigError, ShipwrightConfig, get_shipwright_home, load_config


def test_get_shipwright_home_default(monkeypatch):
    monkeypatch.delenv("SHIPWRIGHT_HOME", raising=False)
    assert get_shipwright_home() == Path("~/.config/shipwright").expanduser()


def test_get_shipwright_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("SHIPWRIGHT_HOME", str(custom_home))
    assert get_shipwright_home() == custom_home


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("SHIPWRIGHT_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="shipwright config.yaml not found"):
        load_config()


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("SHIPWRIGHT_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({
        "max_workers": 2,
        "tag_prefix": "refs/tags/release-",
        "artifact_root": "/tmp/artifacts",
    }))

    cfg = load_config()
    assert isinstance(cfg, ShipwrightConfig)
    assert cfg.max_workers == 2
    assert cfg.tag_prefix == "refs/tags/release-"
    assert cfg.path("artifact_root") == Path("/tmp/artifacts")
    assert cfg.log_format == "pretty"


def test_load_config_empty_file_uses_defaults(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("")
    assert load_config(config_path) == ShipwrightConfig()


def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.delenv("SHIPWRIGHT_TEST_VAR", raising=False)
    env_file = tmp_path / ".env.test"
    env_file.write_text("SHIPWRIGHT_TEST_VAR=loaded_from_env")
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump({"env_file": str(env_file)}))

    load_config(config_path)
    assert os.environ["SHIPWRIGHT_TEST_VAR"] == "loaded_from_env"
    monkeypatch.delenv("SHIPWRIGHT_TEST_VAR")


def test_load_config_unknown_key(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump({"project": "x"}))
    with pytest.raises(ConfigError, match="Unknown config keys"):
        load_config(config_path)


def test_load_config_invalid_yaml(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("max_workers: [unclosed")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(config_path)


def test_load_config_not_a_mapping(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_path)


@pytest.mark.parametrize("overrides", [
    {"max_workers": 0},
    {"artifact_retention_days": -1},
    {"log_format": "xml"},
    {"max_workers": True},
    {"max_workers": "4"},
    {"artifact_retention_days": 1.5},
    {"tag_prefix": None},
    {"log_console": "no"},
])
def test_invalid_values(overrides):
    with pytest.raises(ConfigError):
        ShipwrightConfig(**overrides)


def test_unset_path():
    with pytest.raises(ConfigError, match="source_dir is not configured"):
        ShipwrightConfig().path("source_dir")


def test_load_config_quoted_number(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text('artifact_retention_days: "90"\n')
    with pytest.raises(ConfigError, match="artifact_retention_days must be an integer"):
        load_config(config_path)
