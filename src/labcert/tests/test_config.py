"""
测试 config.py 模块：多来源配置合并。
"""

import json

import pytest
from pydantic import ValidationError

from src.labcert.config import Config
from src.labcert.store.schemas import StoreScope


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """避免读到工作目录中的 .env / config.json"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LABCERT_CONFIG_FILE", raising=False)


def test_defaults():
    """测试默认值"""
    cfg = Config()
    assert cfg.default_scope == StoreScope.LOCAL_MACHINE
    assert cfg.default_validity_days == 365
    assert cfg.record_passwords is True
    assert cfg.password_log_name == "CertInfo.txt"
    assert cfg.crt_encoding == "DER"


def test_env_overrides(monkeypatch, tmp_path):
    """测试环境变量覆盖"""
    monkeypatch.setenv("LABCERT_STORE_ROOT", str(tmp_path / "env-store"))
    monkeypatch.setenv("LABCERT_DEFAULT_SCOPE", "CurrentUser")
    monkeypatch.setenv("LABCERT_CRT_ENCODING", "pem")
    monkeypatch.setenv("LABCERT_RECORD_PASSWORDS", "false")

    cfg = Config()
    assert cfg.store_root == tmp_path / "env-store"
    assert cfg.default_scope == StoreScope.CURRENT_USER
    assert cfg.crt_encoding == "PEM"
    assert cfg.record_passwords is False


def test_json_file_source(monkeypatch, tmp_path):
    """测试 JSON 配置文件，且环境变量优先于 JSON"""
    cfg_path = tmp_path / "labcert.json"
    cfg_path.write_text(json.dumps({"password_length": 32, "log_level": "debug"}), encoding="utf-8")
    monkeypatch.setenv("LABCERT_CONFIG_FILE", str(cfg_path))

    cfg = Config()
    assert cfg.password_length == 32
    assert cfg.log_level == "DEBUG"

    monkeypatch.setenv("LABCERT_PASSWORD_LENGTH", "40")
    assert Config().password_length == 40


def test_default_config_json_in_cwd(tmp_path):
    """测试工作目录下的 config.json"""
    (tmp_path / "config.json").write_text(json.dumps({"default_validity_days": 30}), encoding="utf-8")
    assert Config().default_validity_days == 30


def test_broken_json_is_ignored(tmp_path):
    """测试损坏的 JSON 文件被忽略"""
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")
    assert Config().default_validity_days == 365


def test_invalid_values():
    """测试非法取值"""
    with pytest.raises(ValidationError):
        Config(password_length=0)
    with pytest.raises(ValidationError):
        Config(crt_encoding="base64")


def test_export_folder_follows_current_directory(tmp_path, monkeypatch):
    """测试 export_folder 缺省值取实例化时的工作目录"""
    assert Config().export_folder == tmp_path / "certs"

    other = tmp_path / "elsewhere"
    other.mkdir()
    monkeypatch.chdir(other)
    assert Config().export_folder == other / "certs"
