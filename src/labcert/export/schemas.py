"""
证书导出服务的数据模型定义。
"""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from src.labcert.store.schemas import StoreScope


class ExportRequest(BaseModel):
    """
    导出请求：subjects 中每一项独立处理，单项失败不影响其余项。
    """
    subjects: List[str] = Field(min_length=1)
    target_folder: Path
    include_private_key: bool = False
    password: Optional[SecretStr] = None  # 为空时自动生成
    store_scope: StoreScope = StoreScope.LOCAL_MACHINE

    @field_validator("subjects")
    @classmethod
    def strip_subjects(cls, value: List[str]) -> List[str]:
        subjects = [v.strip() for v in value if v and v.strip()]
        if not subjects:
            raise ValueError("至少需要一个非空主题")
        return subjects


class ExportedArtifact(BaseModel):
    """单个主题的导出产物。"""
    subject: str
    thumbprint: str
    certificate_path: Path
    pfx_path: Optional[Path] = None
    password_generated: bool = False
    password_recorded: bool = False


class ExportFailure(BaseModel):
    """单个主题的导出失败记录。"""
    subject: str
    error: str    # 异常类名，如 CertificateNotFoundError
    message: str


class ExportBatchResult(BaseModel):
    target_folder: Path
    artifacts: List[ExportedArtifact] = []
    failures: List[ExportFailure] = []

    @property
    def ok(self) -> bool:
        return not self.failures
