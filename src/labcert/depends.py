"""
FastAPI 依赖：从配置构造存储与设置，测试中可通过 dependency_overrides 替换。
"""

from src.labcert.config import Config, config
from src.labcert.store.core import FileCertificateStore


def get_settings() -> Config:
    return config


def get_store() -> FileCertificateStore:
    return FileCertificateStore(config.store_root)
