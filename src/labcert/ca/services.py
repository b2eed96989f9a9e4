"""
证书签发服务的业务逻辑层。
此模块封装了核心逻辑，提供更清晰的接口供 CLI 与路由层调用。
存储实例由调用方显式传入，本模块不持有任何全局状态。
"""

from typing import List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import padding
from loguru import logger

from src.labcert.errors import (
    InvalidProfileParametersError,
    IssuanceError,
    KeyNotExportableError,
    SignerNotFoundError,
    StoreError,
    StoreWriteFailureError,
)
from src.labcert.store.core import FileCertificateStore
from src.labcert.store.schemas import StoreContainer, StoreScope, StoredCertificate
from . import core
from .profiles import ProfileDefinition, get_profile
from .schemas import CertificateRequest, CertificateSummary, ChainVerification, IssuedCertificate


def _create_entry(
    request: CertificateRequest,
    store: FileCertificateStore,
    definition: ProfileDefinition,
) -> StoredCertificate:
    profile = definition.profile.value
    core.validate_request(request, definition)
    params = core.build_params(request, definition)

    if not definition.signer_required:
        return store.create_self_signed(params)

    signer = core.resolve_signer(store, request, definition)
    if params.not_after > signer.not_after:
        logger.warning(
            f"{profile} 证书 '{request.subject}' 的有效期晚于签发者 "
            f"'{signer.subject}' ({signer.not_after.isoformat()})"
        )
    try:
        return store.create_signed(params, signer)
    except KeyNotExportableError as e:
        raise SignerNotFoundError(f"签发者 '{signer.subject}' 的私钥不可用: {e}") from e


def issue_certificate(request: CertificateRequest, store: FileCertificateStore) -> IssuedCertificate:
    """
    按模板签发证书并写入存储。
    :param request: 签发请求。
    :param store: 证书存储。
    :return: 签发结果（指纹、有效期、所在容器）。
    :raises InvalidProfileParametersError: 参数不满足模板要求（不会访问存储）。
    :raises SignerNotFoundError: 找不到签发者（不会写入任何内容）。
    :raises StoreWriteFailureError: 密钥生成、签名、写入失败，或存储中的签发者记录无法读取。
    """
    definition = get_profile(request.profile)
    profile = definition.profile.value
    failure = f"签发 {profile} 证书 '{request.subject}' 失败 ({request.store_scope.value})"
    try:
        entry = _create_entry(request, store, definition)
    except IssuanceError as e:
        logger.error(f"{failure}: {e}")
        raise
    except StoreError as e:
        logger.error(f"{failure}: 存储读取失败: {e}")
        raise StoreWriteFailureError(f"存储读取失败: {e}") from e
    except ValueError as e:
        logger.error(f"{failure}: 参数无效: {e}")
        raise InvalidProfileParametersError(f"参数无效: {e}") from e

    containers = [StoreContainer.MY, *definition.extra_containers]
    logger.info(
        f"已签发 {profile} 证书 {entry.subject} ({entry.thumbprint})，"
        f"写入 {request.store_scope.value}: {', '.join(c.value for c in containers)}"
    )
    return IssuedCertificate(
        thumbprint=entry.thumbprint,
        subject=entry.subject,
        issuer=entry.issuer,
        profile=definition.profile,
        not_before=entry.not_before,
        not_after=entry.not_after,
        store_scope=request.store_scope,
        containers=containers,
        key_exportable=entry.exportable,
    )


def summarize(entry: StoredCertificate) -> CertificateSummary:
    return CertificateSummary(
        thumbprint=entry.thumbprint,
        subject=entry.subject,
        issuer=entry.issuer,
        not_before=entry.not_before,
        not_after=entry.not_after,
        store_scope=entry.scope,
        container=entry.container,
        has_private_key=entry.has_private_key,
        key_exportable=entry.exportable,
        profile=entry.profile,
    )


def list_certificates(
    store: FileCertificateStore,
    scope: StoreScope,
    container: StoreContainer = StoreContainer.MY,
    pattern: Optional[str] = None,
) -> List[CertificateSummary]:
    """列出容器中的证书，可按主题子串过滤。"""
    if pattern:
        entries = store.find_by_subject(scope, container, pattern)
    else:
        entries = store.list(scope, container)
    return [summarize(e) for e in entries]


def verify_chain(store: FileCertificateStore, scope: StoreScope, thumbprint: str) -> ChainVerification:
    """
    验证 My 容器中某张证书的链：逐级校验签名，直到 Root 容器中的自签根证书。
    """
    entry = store.get(scope, StoreContainer.MY, thumbprint)
    if entry is None:
        return ChainVerification(valid=False, reason=f"证书 {thumbprint} 不在 {scope.value}\\My 中")

    chain = [entry, *store.chain_for(entry)]
    subjects = [c.subject for c in chain]
    for child, parent in zip(chain, chain[1:]):
        if not _signed_by(child, parent):
            return ChainVerification(valid=False, chain=subjects, reason=f"{child.subject} 的签名无法用 {parent.subject} 验证")

    top = chain[-1]
    if not top.is_self_signed:
        return ChainVerification(valid=False, chain=subjects, reason=f"找不到 {top.issuer} 的签发者证书")
    if not _signed_by(top, top):
        return ChainVerification(valid=False, chain=subjects, reason=f"根证书 {top.subject} 自签名无效")
    if store.get(scope, StoreContainer.ROOT, top.thumbprint) is None:
        return ChainVerification(valid=False, chain=subjects, reason=f"根证书 {top.subject} 不在受信任根容器中")
    return ChainVerification(valid=True, chain=subjects)


def _signed_by(child: StoredCertificate, parent: StoredCertificate) -> bool:
    cert = child.certificate
    try:
        parent.certificate.public_key().verify(
            cert.signature,
            cert.tbs_certificate_bytes,
            padding.PKCS1v15(),
            cert.signature_hash_algorithm,
        )
        return True
    except InvalidSignature:
        return False
