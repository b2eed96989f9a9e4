"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 LABCERT_CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例（仅供 CLI / HTTP 入口读取，业务层通过参数显式接收）
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.normalize_upper: 统一大小写
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource

from src.labcert.store.schemas import StoreScope


class Config(BaseSettings):
    store_root: Path = Field(default_factory=lambda: Path.home() / ".labcert" / "store")
    default_scope: StoreScope = StoreScope.LOCAL_MACHINE
    default_validity_days: int = 365
    # 缺省为实例化时的工作目录下的 certs
    export_folder: Path = Field(default_factory=lambda: Path.cwd() / "certs")
    password_length: int = 20
    # 仅限实验环境：导出私钥时把明文密码追加写入 CertInfo.txt
    record_passwords: bool = True
    password_log_name: str = "CertInfo.txt"
    include_chain: bool = True
    crt_encoding: Literal["DER", "PEM"] = "DER"
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_prefix="LABCERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("crt_encoding", "log_level", mode="before")
    @classmethod
    def normalize_upper(cls, value: Any) -> Any:
        """允许 der / pem / debug 这类小写写法。"""
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("default_validity_days", "password_length")
    @classmethod
    def must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("必须为正整数")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 config.json（或 LABCERT_CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("LABCERT_CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                    self._data = data if isinstance(data, dict) else {}
                except (OSError, ValueError):
                    self._data = {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按字段名返回字段值。"""
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
