import sys

import pytest
import yaml

from pyconsole_core.config import DEFAULT_IMAGE, ConsoleConfig, load_config, save_config


def test_defaults():
    config = ConsoleConfig()
    assert config.container_image == DEFAULT_IMAGE
    assert config.allow_local_fallback is False
    assert config.isolated_timeout_s is None
    assert config.sandbox_preload == ["numpy"]
    assert config.install_command[:3] == [sys.executable, "-m", "pip"]


def test_no_path_uses_defaults_and_env():
    config = load_config(env={"PY_RUN_IMAGE": "python-ml:3.12", "ALLOW_LOCAL_PY": "1"})
    assert config.container_image == "python-ml:3.12"
    assert config.allow_local_fallback is True


def test_allow_local_py_only_enabled_by_one():
    assert load_config(env={"ALLOW_LOCAL_PY": "true"}).allow_local_fallback is False
    assert load_config(env={}).allow_local_fallback is False


def test_load_yaml(tmp_path):
    path = tmp_path / "console.yaml"
    path.write_text(yaml.dump({
        "container_image": "custom:1",
        "allow_local_fallback": True,
        "isolated_timeout_s": 10,
        "denied_modules": ["torch"],
    }))
    config = load_config(path, env={})
    assert config.container_image == "custom:1"
    assert config.allow_local_fallback is True
    assert config.isolated_timeout_s == 10.0
    assert config.denied_modules == ["torch"]


def test_env_overrides_yaml(tmp_path):
    path = tmp_path / "console.yaml"
    path.write_text(yaml.dump({"container_image": "custom:1", "allow_local_fallback": True}))
    config = load_config(path, env={"PY_RUN_IMAGE": "from-env:2", "ALLOW_LOCAL_PY": "0"})
    assert config.container_image == "from-env:2"
    assert config.allow_local_fallback is False


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    with pytest.raises(ValueError, match="Empty or invalid"):
        load_config(path)


def test_invalid_field(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.dump({"isolated_timeout_s": -1}))
    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(path)


def test_save_and_reload(tmp_path):
    config = ConsoleConfig(container_image="saved:1", sandbox_preload=[])
    path = tmp_path / "nested" / "console.yaml"
    save_config(config, path)
    assert load_config(path, env={}) == config
