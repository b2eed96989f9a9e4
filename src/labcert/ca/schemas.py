"""
证书签发服务的数据模型定义。
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from src.labcert.store.schemas import StoreContainer, StoreScope
from .profiles import CertificateProfile


class CertificateRequest(BaseModel):
    """
    签发请求。用完即弃，不在签发之外保留。
    """
    profile: CertificateProfile
    subject: str = Field(min_length=1)
    subject_alt_names: List[str] = []          # 仅 Web 模板使用
    user_principal_name: Optional[str] = None  # 以下三项仅 ClientAuth 模板使用
    target_domain: Optional[str] = None
    guid: Optional[str] = None
    issuer_subject: Optional[str] = None       # 除 Root 外均必填
    validity_days: int = Field(default=365, gt=0)
    key_exportable: Optional[bool] = None      # None 表示使用模板默认值
    store_scope: StoreScope = StoreScope.LOCAL_MACHINE

    @field_validator("subject")
    @classmethod
    def subject_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject 不能为空")
        return value

    @field_validator("issuer_subject", "user_principal_name", "target_domain", "guid")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("subject_alt_names")
    @classmethod
    def strip_alt_names(cls, value: List[str]) -> List[str]:
        return [v.strip() for v in value if v and v.strip()]


class IssuedCertificate(BaseModel):
    """
    签发结果：证书本身由存储持有，这里只是引用。
    """
    thumbprint: str
    subject: str
    issuer: str
    profile: CertificateProfile
    not_before: datetime
    not_after: datetime
    store_scope: StoreScope
    containers: List[StoreContainer]
    key_exportable: bool


class CertificateSummary(BaseModel):
    """存储中证书的摘要信息。"""
    thumbprint: str
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    store_scope: StoreScope
    container: StoreContainer
    has_private_key: bool
    key_exportable: bool
    profile: Optional[str] = None


class ChainVerification(BaseModel):
    """证书链验证结果。"""
    valid: bool
    chain: List[str] = []
    reason: Optional[str] = None
