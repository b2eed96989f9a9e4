"""
基于文件系统的证书存储，实现与操作系统证书存储等价的能力：
按主题查找、生成自签/签发证书、导出公钥证书与 PKCS#12。

目录布局：<root>/<Scope>/<Container>/<thumbprint>.crt|.key|.json
私钥只保存在 My 容器中；CA / Root 容器仅保存公钥证书副本。
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from loguru import logger

from src.labcert.errors import KeyNotExportableError, StoreError, StoreWriteFailureError
from .schemas import CertificateParams, StoreContainer, StoreScope, StoredCertificate

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


def compute_thumbprint(cert: x509.Certificate) -> str:
    """证书指纹：DER 编码的 SHA-1，十六进制大写。"""
    return hashlib.sha1(cert.public_bytes(Encoding.DER)).hexdigest().upper()


def subject_matches(subject: str, pattern: str, exact: bool = False) -> bool:
    """主题匹配：默认不区分大小写的子串匹配，exact=True 时整串比较。"""
    if exact:
        return subject.casefold() == pattern.casefold()
    return pattern.casefold() in subject.casefold()


class FileCertificateStore:
    """
    文件型证书存储。
    :param root: 存储根目录，不存在时按需创建。
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"FileCertificateStore(root={str(self.root)!r})"

    # ---- 路径 ----

    def container_dir(self, scope: StoreScope, container: StoreContainer) -> Path:
        return self.root / StoreScope(scope).value / StoreContainer(container).value

    def _paths(self, scope: StoreScope, container: StoreContainer, thumbprint: str) -> dict[str, Path]:
        base = self.container_dir(scope, container)
        return {
            "cert": base / f"{thumbprint}.crt",
            "key": base / f"{thumbprint}.key",
            "meta": base / f"{thumbprint}.json",
        }

    # ---- 读取 ----

    def _load_entry(self, scope: StoreScope, container: StoreContainer, cert_path: Path) -> StoredCertificate:
        thumbprint = cert_path.stem
        paths = self._paths(scope, container, thumbprint)
        try:
            cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
        except (OSError, ValueError) as e:
            raise StoreError(f"无法读取存储中的证书 {cert_path}: {e}") from e

        meta: dict = {}
        if paths["meta"].exists():
            try:
                meta = json.loads(paths["meta"].read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"证书元数据损坏，按默认值处理 ({paths['meta']}): {e}")

        created_at = meta.get("created_at")
        return StoredCertificate(
            certificate=cert,
            thumbprint=thumbprint,
            scope=StoreScope(scope),
            container=StoreContainer(container),
            has_private_key=paths["key"].exists(),
            exportable=bool(meta.get("exportable", False)),
            profile=meta.get("profile"),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )

    def list(self, scope: StoreScope, container: StoreContainer) -> List[StoredCertificate]:
        """列出某个容器中的全部证书，按签发时间从旧到新排序。无法读取的证书文件会被跳过。"""
        base = self.container_dir(scope, container)
        if not base.is_dir():
            return []
        entries: List[StoredCertificate] = []
        for cert_path in base.glob("*.crt"):
            try:
                entries.append(self._load_entry(scope, container, cert_path))
            except StoreError as e:
                logger.warning(f"跳过无法读取的证书: {e}")
        return sorted(entries, key=_issue_order)

    def find_by_subject(
        self,
        scope: StoreScope,
        container: StoreContainer,
        pattern: str,
        exact: bool = False,
    ) -> List[StoredCertificate]:
        """按主题查找，结果从旧到新排序，最后一个即“最新签发”。"""
        return [e for e in self.list(scope, container) if subject_matches(e.subject, pattern, exact)]

    def get(self, scope: StoreScope, container: StoreContainer, thumbprint: str) -> Optional[StoredCertificate]:
        cert_path = self._paths(scope, container, thumbprint.upper())["cert"]
        if not cert_path.exists():
            return None
        return self._load_entry(scope, container, cert_path)

    def load_private_key(self, entry: StoredCertificate) -> rsa.RSAPrivateKey:
        """读取证书对应的私钥（始终从 My 容器按指纹查找）。"""
        key_path = self._paths(entry.scope, StoreContainer.MY, entry.thumbprint)["key"]
        if not key_path.exists():
            raise KeyNotExportableError(f"证书 {entry.subject} ({entry.thumbprint}) 没有关联的私钥")
        try:
            return serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        except (OSError, ValueError) as e:
            raise StoreError(f"读取私钥失败 ({entry.thumbprint}): {e}") from e

    def chain_for(self, entry: StoredCertificate) -> List[StoredCertificate]:
        """
        沿签发者向上查找证书链（不含 entry 本身），在同一作用域的 CA / Root 容器中查找。
        遇到自签证书或缺失的环节即停止。
        """
        chain: List[StoredCertificate] = []
        current = entry
        seen = {entry.thumbprint}
        while not current.is_self_signed:
            parent = self._find_issuer(current)
            if parent is None or parent.thumbprint in seen:
                break
            chain.append(parent)
            seen.add(parent.thumbprint)
            current = parent
        return chain

    def _find_issuer(self, entry: StoredCertificate) -> Optional[StoredCertificate]:
        candidates: List[StoredCertificate] = []
        for container in (StoreContainer.CA, StoreContainer.ROOT):
            candidates.extend(
                c for c in self.list(entry.scope, container)
                if c.certificate.subject == entry.certificate.issuer
            )
        aki = _get_extension(entry.certificate, x509.AuthorityKeyIdentifier)
        if aki is not None and aki.key_identifier:
            by_key = [
                c for c in candidates
                if (ski := _get_extension(c.certificate, x509.SubjectKeyIdentifier)) is not None
                and ski.digest == aki.key_identifier
            ]
            if by_key:
                candidates = by_key
        if not candidates:
            return None
        return sorted(candidates, key=_issue_order)[-1]

    # ---- 写入 ----

    def create_self_signed(self, params: CertificateParams) -> StoredCertificate:
        """生成密钥并创建自签证书，写入存储。"""
        return self._create(params, signer=None)

    def create_signed(self, params: CertificateParams, signer: StoredCertificate) -> StoredCertificate:
        """生成密钥并用 signer 的私钥签发证书，写入存储。"""
        return self._create(params, signer=signer)

    def _create(self, params: CertificateParams, signer: Optional[StoredCertificate]) -> StoredCertificate:
        try:
            key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE)
        except Exception as e:
            raise StoreWriteFailureError(f"生成 RSA 密钥失败 ({params.subject.rfc4514_string()}): {e}") from e

        if signer is None:
            issuer_name = params.subject
            signing_key = key
        else:
            issuer_name = signer.certificate.subject
            signing_key = self.load_private_key(signer)

        builder = (
            x509.CertificateBuilder()
            .subject_name(params.subject)
            .issuer_name(issuer_name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(params.not_before)
            .not_valid_after(params.not_after)
        )
        for value, critical in params.extensions:
            builder = builder.add_extension(value, critical=critical)
        builder = builder.add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        if signer is not None:
            builder = builder.add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(signer.certificate.public_key()),
                critical=False,
            )

        try:
            cert = builder.sign(private_key=signing_key, algorithm=hashes.SHA256())
        except (ValueError, TypeError) as e:
            raise StoreWriteFailureError(f"证书签名失败 ({params.subject.rfc4514_string()}): {e}") from e

        thumbprint = compute_thumbprint(cert)
        meta = {
            "exportable": params.exportable,
            "profile": params.profile,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self._persist(params.scope, thumbprint, cert, key, meta, params.extra_containers)
        logger.debug(f"证书已写入存储: {cert.subject.rfc4514_string()} ({thumbprint})")
        return self.get(params.scope, StoreContainer.MY, thumbprint)

    def _persist(
        self,
        scope: StoreScope,
        thumbprint: str,
        cert: x509.Certificate,
        key: rsa.RSAPrivateKey,
        meta: dict,
        extra_containers: Iterable[StoreContainer],
    ) -> None:
        """全部写入成功，或全部回滚。"""
        cert_pem = cert.public_bytes(Encoding.PEM)
        key_pem = key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.PKCS8,
            encryption_algorithm=NoEncryption(),
        )
        meta_text = json.dumps(meta, indent=2)

        writes: List[tuple[Path, bytes]] = []
        my_paths = self._paths(scope, StoreContainer.MY, thumbprint)
        writes.append((my_paths["cert"], cert_pem))
        writes.append((my_paths["key"], key_pem))
        writes.append((my_paths["meta"], meta_text.encode("utf-8")))
        for container in extra_containers:
            paths = self._paths(scope, container, thumbprint)
            writes.append((paths["cert"], cert_pem))
            writes.append((paths["meta"], meta_text.encode("utf-8")))

        written: List[Path] = []
        try:
            for path, data in writes:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
                written.append(path)
                if path.suffix == ".key":
                    path.chmod(0o600)
        except OSError as e:
            for path in written:
                path.unlink(missing_ok=True)
            raise StoreWriteFailureError(
                f"写入证书存储失败 ({cert.subject.rfc4514_string()}): {e}"
            ) from e

    def remove(self, scope: StoreScope, container: StoreContainer, thumbprint: str) -> bool:
        """删除一条记录，返回是否真的删除了文件。"""
        removed = False
        for path in self._paths(scope, container, thumbprint.upper()).values():
            if path.exists():
                path.unlink()
                removed = True
        return removed

    # ---- 导出 ----

    def export_public(self, entry: StoredCertificate, path: Path, encoding: str = "DER") -> Path:
        """导出公钥证书，默认 DER 编码。"""
        enc = Encoding.PEM if encoding.upper() == "PEM" else Encoding.DER
        path = Path(path)
        path.write_bytes(entry.certificate.public_bytes(enc))
        return path

    def export_pkcs12(
        self,
        entry: StoredCertificate,
        path: Path,
        password: str,
        chain: Sequence[StoredCertificate] = (),
    ) -> Path:
        """
        导出 PKCS#12（证书 + 私钥 + 可选证书链）。
        :raises KeyNotExportableError: 私钥不可导出或不存在。
        """
        if not entry.exportable:
            raise KeyNotExportableError(
                f"证书 {entry.subject} ({entry.thumbprint}) 的私钥被标记为不可导出"
            )
        key = self.load_private_key(entry)
        data = pkcs12.serialize_key_and_certificates(
            name=_friendly_name(entry).encode("utf-8"),
            key=key,
            cert=entry.certificate,
            cas=[c.certificate for c in chain] or None,
            encryption_algorithm=BestAvailableEncryption(password.encode("utf-8")),
        )
        path = Path(path)
        path.write_bytes(data)
        return path


def _friendly_name(entry: StoredCertificate) -> str:
    cns = entry.certificate.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    return str(cns[0].value) if cns else entry.subject


def _get_extension(cert: x509.Certificate, ext_type):
    try:
        return cert.extensions.get_extension_for_class(ext_type).value
    except x509.ExtensionNotFound:
        return None


def _issue_order(entry: StoredCertificate):
    created = entry.created_at or datetime.min.replace(tzinfo=timezone.utc)
    return (entry.not_before, created)
