"""
证书存储层的数据模型定义。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from cryptography import x509


class StoreScope(str, Enum):
    LOCAL_MACHINE = "LocalMachine"
    CURRENT_USER = "CurrentUser"


class StoreContainer(str, Enum):
    MY = "My"      # 个人证书，唯一保存私钥的容器
    CA = "CA"      # 中间 CA
    ROOT = "Root"  # 受信任根


@dataclass(frozen=True)
class CertificateParams:
    """
    生成一张证书所需的全部参数（模板已经解析完毕）。
    存储层只负责生成密钥、签名与落盘，不关心模板语义。
    """
    subject: x509.Name
    not_before: datetime
    not_after: datetime
    scope: StoreScope
    exportable: bool
    profile: str
    # (扩展值, 是否关键)；AKI/SKI 由存储层补齐
    extensions: List[Tuple[x509.ExtensionType, bool]] = field(default_factory=list)
    # 除 My 之外还需要放一份公钥证书的容器
    extra_containers: Tuple[StoreContainer, ...] = ()


@dataclass
class StoredCertificate:
    """存储中的一条证书记录。"""
    certificate: x509.Certificate
    thumbprint: str
    scope: StoreScope
    container: StoreContainer
    has_private_key: bool = False
    exportable: bool = False
    profile: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def issuer(self) -> str:
        return self.certificate.issuer.rfc4514_string()

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def is_self_signed(self) -> bool:
        return self.certificate.subject == self.certificate.issuer
