"""
证书模板表。

每个模板对应一条 ProfileDefinition：是否需要签发者、密钥用途、扩展密钥用途、
基本约束、默认是否可导出私钥，以及额外写入的容器。新增模板只需要在 PROFILES 中加一行。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ObjectIdentifier

from src.labcert.store.schemas import StoreContainer

SMARTCARD_LOGON_OID = ObjectIdentifier("1.3.6.1.4.1.311.20.2.2")
DOCUMENT_ENCRYPTION_OID = ObjectIdentifier("1.3.6.1.4.1.311.80.1")

CA_EKU_BUNDLE = (
    ExtendedKeyUsageOID.SERVER_AUTH,
    ExtendedKeyUsageOID.CLIENT_AUTH,
    ExtendedKeyUsageOID.CODE_SIGNING,
    ExtendedKeyUsageOID.EMAIL_PROTECTION,
    SMARTCARD_LOGON_OID,
)


class CertificateProfile(str, Enum):
    ROOT = "Root"
    INTERMEDIATE = "Intermediate"
    WEB = "Web"
    CODE_SIGNING = "CodeSigning"
    DOCUMENT_ENCRYPTION = "DocumentEncryption"
    CLIENT_AUTH = "ClientAuth"


class SanKind(str, Enum):
    NONE = "none"
    DNS = "dns"
    CLIENT_IDENTITY = "client_identity"


@dataclass(frozen=True)
class KeyUsageFlags:
    digital_signature: bool = False
    key_encipherment: bool = False
    data_encipherment: bool = False
    key_agreement: bool = False
    key_cert_sign: bool = False
    crl_sign: bool = False

    def to_extension(self) -> x509.KeyUsage:
        return x509.KeyUsage(
            digital_signature=self.digital_signature,
            content_commitment=False,
            key_encipherment=self.key_encipherment,
            data_encipherment=self.data_encipherment,
            key_agreement=self.key_agreement,
            key_cert_sign=self.key_cert_sign,
            crl_sign=self.crl_sign,
            encipher_only=False,
            decipher_only=False,
        )


@dataclass(frozen=True)
class ProfileDefinition:
    profile: CertificateProfile
    signer_required: bool
    key_usage: KeyUsageFlags
    extended_key_usage: Tuple[ObjectIdentifier, ...]
    default_exportable: bool
    # None 表示不添加 basicConstraints
    is_ca: Optional[bool] = None
    path_length: Optional[int] = None
    san: SanKind = SanKind.NONE
    extra_containers: Tuple[StoreContainer, ...] = ()

    def base_extensions(self) -> list:
        """模板固有的扩展（SAN 由签发逻辑按请求另行构造）。"""
        extensions: list = []
        if self.is_ca is not None:
            extensions.append(
                (x509.BasicConstraints(ca=self.is_ca, path_length=self.path_length if self.is_ca else None), True)
            )
        extensions.append((self.key_usage.to_extension(), True))
        if self.extended_key_usage:
            extensions.append((x509.ExtendedKeyUsage(list(self.extended_key_usage)), False))
        return extensions


PROFILES = {
    CertificateProfile.ROOT: ProfileDefinition(
        profile=CertificateProfile.ROOT,
        signer_required=False,
        key_usage=KeyUsageFlags(key_cert_sign=True, crl_sign=True),
        extended_key_usage=CA_EKU_BUNDLE,
        default_exportable=True,
        is_ca=True,
        path_length=1,
        extra_containers=(StoreContainer.ROOT,),
    ),
    CertificateProfile.INTERMEDIATE: ProfileDefinition(
        profile=CertificateProfile.INTERMEDIATE,
        signer_required=True,
        key_usage=KeyUsageFlags(key_cert_sign=True, crl_sign=True),
        extended_key_usage=CA_EKU_BUNDLE,
        default_exportable=True,
        is_ca=True,
        path_length=0,
        extra_containers=(StoreContainer.CA,),
    ),
    CertificateProfile.WEB: ProfileDefinition(
        profile=CertificateProfile.WEB,
        signer_required=True,
        key_usage=KeyUsageFlags(digital_signature=True, key_encipherment=True),
        extended_key_usage=(ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH),
        default_exportable=True,
        is_ca=False,
        san=SanKind.DNS,
    ),
    CertificateProfile.CLIENT_AUTH: ProfileDefinition(
        profile=CertificateProfile.CLIENT_AUTH,
        signer_required=True,
        key_usage=KeyUsageFlags(digital_signature=True),
        extended_key_usage=(ExtendedKeyUsageOID.CLIENT_AUTH,),
        default_exportable=False,
        san=SanKind.CLIENT_IDENTITY,
    ),
    CertificateProfile.DOCUMENT_ENCRYPTION: ProfileDefinition(
        profile=CertificateProfile.DOCUMENT_ENCRYPTION,
        signer_required=True,
        key_usage=KeyUsageFlags(
            digital_signature=True,
            key_encipherment=True,
            data_encipherment=True,
            key_agreement=True,
        ),
        extended_key_usage=(DOCUMENT_ENCRYPTION_OID,),
        default_exportable=False,
    ),
    CertificateProfile.CODE_SIGNING: ProfileDefinition(
        profile=CertificateProfile.CODE_SIGNING,
        signer_required=True,
        key_usage=KeyUsageFlags(digital_signature=True),
        extended_key_usage=(ExtendedKeyUsageOID.CODE_SIGNING,),
        default_exportable=False,
    ),
}


def get_profile(profile: CertificateProfile | str) -> ProfileDefinition:
    """按名称取模板定义，大小写不敏感。"""
    if isinstance(profile, CertificateProfile):
        return PROFILES[profile]
    for item in CertificateProfile:
        if item.value.lower() == str(profile).lower():
            return PROFILES[item]
    raise ValueError(f"未知的证书模板: {profile}")
