"""
证书签发的核心逻辑实现。
包括解析主题、构造 SAN 扩展、计算有效期、挑选签发者以及组装 CertificateParams。
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from urllib.parse import quote

import idna
from asn1crypto import core as asn1
from cryptography import x509
from cryptography.x509.oid import NameOID, ObjectIdentifier
from loguru import logger

from src.labcert.errors import InvalidProfileParametersError, SignerNotFoundError
from src.labcert.store.core import FileCertificateStore
from src.labcert.store.schemas import CertificateParams, StoreContainer, StoredCertificate
from .profiles import ProfileDefinition, SanKind
from .schemas import CertificateRequest

UPN_OID = ObjectIdentifier("1.3.6.1.4.1.311.20.2.3")
NTDS_GUID_OID = ObjectIdentifier("1.3.6.1.4.1.311.25.1")


def parse_subject(subject: str) -> x509.Name:
    """
    解析主题：包含 '=' 时按 RFC 4514 DN 解析，否则视为 CN。
    :raises InvalidProfileParametersError: DN 格式无法解析。
    """
    if "=" in subject:
        try:
            return x509.Name.from_rfc4514_string(subject)
        except ValueError as e:
            raise InvalidProfileParametersError(f"无法解析主题 DN '{subject}': {e}") from e
    try:
        return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject)])
    except ValueError as e:
        # CN 最长 64 个字符
        raise InvalidProfileParametersError(f"无效的主题 '{subject}': {e}") from e


def common_name_of(name: x509.Name) -> Optional[str]:
    try:
        return str(name.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value)
    except IndexError:
        return None


def validity_window(days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """有效期：起始时间取当前 UTC 并截断到秒，结束时间恰好晚 days 天。"""
    if days <= 0:
        raise InvalidProfileParametersError(f"有效天数必须为正整数: {days}")
    start = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    return start, start + timedelta(days=days)


def to_ascii_dns_name(name: str) -> str:
    """
    把域名转换为 DNSName 可接受的 A-label 形式，ASCII 域名原样返回。
    :raises InvalidProfileParametersError: 非 ASCII 域名无法按 IDNA 编码。
    """
    if name.isascii():
        return name
    prefix, rest = ("*.", name[2:]) if name.startswith("*.") else ("", name)
    try:
        return prefix + idna.encode(rest, uts46=True).decode("ascii")
    except (idna.IDNAError, UnicodeError) as e:
        raise InvalidProfileParametersError(f"无效的域名 '{name}': {e}") from e


def build_dns_san(subject: x509.Name, alt_names: List[str]) -> Optional[x509.SubjectAlternativeName]:
    """Web 模板的 DNS SAN：主题 CN 在前，其余按输入顺序去重。"""
    names: List[str] = []
    cn = common_name_of(subject)
    for candidate in ([cn] if cn else []) + list(alt_names):
        encoded = to_ascii_dns_name(candidate)
        if encoded.lower() not in (n.lower() for n in names):
            names.append(encoded)
    if not names:
        return None
    try:
        return x509.SubjectAlternativeName([x509.DNSName(n) for n in names])
    except ValueError as e:
        raise InvalidProfileParametersError(f"无效的 DNS SAN {names}: {e}") from e


def build_client_identity_san(
    subject: x509.Name,
    user_principal_name: str,
    target_domain: str,
    guid: Optional[str] = None,
) -> x509.SubjectAlternativeName:
    """
    ClientAuth 模板的 SAN：UPN + DirectoryName + GUID + URL。
    :param user_principal_name: 不含 '@' 时自动补上 '@<target_domain>'。
    :param guid: 为空时随机生成。
    """
    upn = user_principal_name if "@" in user_principal_name else f"{user_principal_name}@{target_domain}"

    domain = target_domain.strip(".")
    labels = [label for label in to_ascii_dns_name(domain).split(".") if label] if domain else []
    if not labels:
        raise InvalidProfileParametersError(f"无效的目标域: '{target_domain}'")
    cn = common_name_of(subject) or upn.split("@", 1)[0]
    try:
        directory_name = x509.Name(
            [x509.NameAttribute(NameOID.DOMAIN_COMPONENT, label) for label in reversed(labels)]
            + [x509.NameAttribute(NameOID.COMMON_NAME, cn)]
        )
    except ValueError as e:
        raise InvalidProfileParametersError(f"无法构造目录名 (CN='{cn}', 域 '{target_domain}'): {e}") from e

    try:
        guid_value = uuid.UUID(guid) if guid else uuid.uuid4()
    except ValueError as e:
        raise InvalidProfileParametersError(f"无效的 GUID '{guid}': {e}") from e

    # URI 只能是 ASCII，非 ASCII 的 CN 按 UTF-8 百分号编码
    url = "ldap:///" + quote(directory_name.rfc4514_string(), safe="=,")
    try:
        uri = x509.UniformResourceIdentifier(url)
    except ValueError as e:
        raise InvalidProfileParametersError(f"无效的 URL '{url}': {e}") from e

    return x509.SubjectAlternativeName(
        [
            x509.OtherName(UPN_OID, asn1.UTF8String(upn).dump()),
            x509.DirectoryName(directory_name),
            # objectGUID 在 AD 中按小端字节序保存
            x509.OtherName(NTDS_GUID_OID, asn1.OctetString(guid_value.bytes_le).dump()),
            uri,
        ]
    )


def validate_request(request: CertificateRequest, definition: ProfileDefinition) -> None:
    """
    在访问存储之前校验请求参数是否满足模板要求。
    :raises InvalidProfileParametersError
    """
    profile = definition.profile.value
    if definition.signer_required and not request.issuer_subject:
        raise InvalidProfileParametersError(f"{profile} 模板必须指定签发者 (issuer)")
    if definition.san is SanKind.CLIENT_IDENTITY:
        missing = [
            name for name, value in (
                ("user_principal_name", request.user_principal_name),
                ("target_domain", request.target_domain),
            ) if not value
        ]
        if missing:
            raise InvalidProfileParametersError(f"{profile} 模板缺少参数: {', '.join(missing)}")

    if definition.san is not SanKind.DNS and request.subject_alt_names:
        logger.warning(f"{profile} 模板忽略 subject_alt_names: {request.subject_alt_names}")
    if definition.san is not SanKind.CLIENT_IDENTITY and (
        request.user_principal_name or request.target_domain or request.guid
    ):
        logger.warning(f"{profile} 模板忽略 user_principal_name / target_domain / guid")
    if not definition.signer_required and request.issuer_subject:
        logger.warning(f"{profile} 模板为自签证书，忽略 issuer: {request.issuer_subject}")


def issuer_name_for(issuer_subject: str) -> str:
    """签发者查找使用的完整主题：'CN=<issuer>'，已是 DN 时原样使用。"""
    return parse_subject(issuer_subject).rfc4514_string()


def _can_sign(entry: StoredCertificate, issuing_ca: bool) -> bool:
    try:
        bc = entry.certificate.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    if not bc.ca:
        return False
    if issuing_ca and bc.path_length is not None and bc.path_length < 1:
        return False
    return True


def resolve_signer(
    store: FileCertificateStore,
    request: CertificateRequest,
    definition: ProfileDefinition,
) -> StoredCertificate:
    """
    在 CA / Root 容器中按主题精确查找签发者，多个匹配时取最新签发的一个，
    再到 My 容器按指纹取带私钥的记录。
    :raises SignerNotFoundError
    """
    wanted = issuer_name_for(request.issuer_subject or "")
    scope = request.store_scope
    candidates: List[StoredCertificate] = []
    for container in (StoreContainer.CA, StoreContainer.ROOT):
        candidates.extend(store.find_by_subject(scope, container, wanted, exact=True))

    issuing_ca = bool(definition.is_ca)
    usable = [c for c in candidates if _can_sign(c, issuing_ca)]
    if not usable:
        detail = "存在同名证书但不能作为此模板的签发者" if candidates else "存储中没有匹配的 CA 证书"
        raise SignerNotFoundError(f"找不到签发者 '{wanted}' ({scope.value}): {detail}")

    usable.sort(key=lambda c: (c.not_before, c.created_at or c.not_before))
    if len({c.thumbprint for c in usable}) > 1:
        logger.warning(
            f"签发者 '{wanted}' 存在 {len(usable)} 个匹配，使用最新签发的一个: {usable[-1].thumbprint}"
        )

    for entry in reversed(usable):
        personal = store.get(scope, StoreContainer.MY, entry.thumbprint)
        if personal is not None and personal.has_private_key:
            return personal
    raise SignerNotFoundError(f"签发者 '{wanted}' ({scope.value}) 的私钥不在 My 容器中")


def build_params(
    request: CertificateRequest,
    definition: ProfileDefinition,
    now: Optional[datetime] = None,
) -> CertificateParams:
    """把请求与模板合成为存储层可以直接执行的 CertificateParams。"""
    subject = parse_subject(request.subject)
    not_before, not_after = validity_window(request.validity_days, now)

    extensions = definition.base_extensions()
    if definition.san is SanKind.DNS:
        san = build_dns_san(subject, request.subject_alt_names)
        if san is not None:
            extensions.append((san, False))
    elif definition.san is SanKind.CLIENT_IDENTITY:
        san = build_client_identity_san(
            subject,
            request.user_principal_name or "",
            request.target_domain or "",
            request.guid,
        )
        extensions.append((san, False))

    exportable = definition.default_exportable if request.key_exportable is None else request.key_exportable
    return CertificateParams(
        subject=subject,
        not_before=not_before,
        not_after=not_after,
        scope=request.store_scope,
        exportable=exportable,
        profile=definition.profile.value,
        extensions=extensions,
        extra_containers=definition.extra_containers,
    )
