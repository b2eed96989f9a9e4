"""
测试 store/core.py 模块：文件型证书存储。
"""

import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12
from cryptography.x509.oid import NameOID

from src.labcert.errors import KeyNotExportableError, StoreWriteFailureError
from src.labcert.store.core import FileCertificateStore, compute_thumbprint, subject_matches
from src.labcert.store.schemas import CertificateParams, StoreContainer, StoreScope


def _params(cn: str, ca: bool = True, exportable: bool = True, extra=(StoreContainer.ROOT,), scope=StoreScope.CURRENT_USER):
    now = datetime.now(timezone.utc).replace(microsecond=0)
    extensions = []
    if ca:
        extensions.append((x509.BasicConstraints(ca=True, path_length=None), True))
    return CertificateParams(
        subject=x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)]),
        not_before=now,
        not_after=now + timedelta(days=30),
        scope=scope,
        exportable=exportable,
        profile="Test",
        extensions=extensions,
        extra_containers=extra,
    )


def test_subject_matches():
    """测试主题匹配：默认子串且不区分大小写，exact 为整串比较"""
    assert subject_matches("CN=TestRootCA", "rootca")
    assert not subject_matches("CN=TestRootCA", "issuer")
    assert subject_matches("CN=TestRootCA", "cn=testrootca", exact=True)
    assert not subject_matches("CN=TestRootCA", "TestRootCA", exact=True)


def test_create_self_signed_writes_my_and_extra_containers(store):
    """测试自签证书写入 My 以及额外容器，私钥只在 My 中"""
    entry = store.create_self_signed(_params("Lab Root"))

    assert entry.container == StoreContainer.MY
    assert entry.has_private_key
    assert entry.exportable
    assert entry.is_self_signed
    assert entry.thumbprint == hashlib.sha1(entry.certificate.public_bytes(Encoding.DER)).hexdigest().upper()
    assert entry.thumbprint == compute_thumbprint(entry.certificate)

    root_copy = store.get(StoreScope.CURRENT_USER, StoreContainer.ROOT, entry.thumbprint)
    assert root_copy is not None
    assert not root_copy.has_private_key
    assert store.list(StoreScope.LOCAL_MACHINE, StoreContainer.MY) == []


def test_created_certificate_has_key_identifiers(store):
    """测试 SKI / AKI 扩展由存储层补齐"""
    root = store.create_self_signed(_params("Lab Root"))
    leaf = store.create_signed(_params("leaf", ca=False, extra=()), root)

    ski = root.certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
    aki = leaf.certificate.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
    assert aki.key_identifier == ski.digest
    assert leaf.certificate.issuer == root.certificate.subject


def test_find_by_subject_orders_oldest_to_newest(store):
    """测试查找结果从旧到新排序"""
    first = store.create_self_signed(_params("Dup CA"))
    second = store.create_self_signed(_params("Dup CA"))

    found = store.find_by_subject(StoreScope.CURRENT_USER, StoreContainer.MY, "dup ca")
    assert [e.thumbprint for e in found] == [first.thumbprint, second.thumbprint]
    assert store.find_by_subject(StoreScope.CURRENT_USER, StoreContainer.MY, "CN=Dup", exact=True) == []


def test_persist_rolls_back_on_write_failure(store):
    """测试写入某个容器失败时，已写入的文件全部回滚"""
    scope_dir = store.root / StoreScope.CURRENT_USER.value
    scope_dir.mkdir(parents=True)
    # Root 容器位置被一个普通文件占用，创建目录会失败
    (scope_dir / StoreContainer.ROOT.value).write_text("not a directory")

    with pytest.raises(StoreWriteFailureError) as exc_info:
        store.create_self_signed(_params("Broken Root"))

    assert isinstance(exc_info.value.__cause__, OSError)
    assert store.list(StoreScope.CURRENT_USER, StoreContainer.MY) == []
    assert list((scope_dir / StoreContainer.MY.value).iterdir()) == []


def test_export_public_der_and_pem(store, tmp_path):
    """测试导出公钥证书，默认 DER"""
    entry = store.create_self_signed(_params("Lab Root"))

    der_path = store.export_public(entry, tmp_path / "root.crt")
    assert x509.load_der_x509_certificate(der_path.read_bytes()) == entry.certificate

    pem_path = store.export_public(entry, tmp_path / "root.pem", encoding="pem")
    assert x509.load_pem_x509_certificate(pem_path.read_bytes()) == entry.certificate


def test_export_pkcs12_with_chain(store, tmp_path):
    """测试导出 PKCS#12，包含证书链"""
    root = store.create_self_signed(_params("Lab Root"))
    leaf = store.create_signed(_params("leaf", ca=False, extra=()), root)

    chain = store.chain_for(leaf)
    assert [c.thumbprint for c in chain] == [root.thumbprint]

    path = store.export_pkcs12(leaf, tmp_path / "leaf.pfx", "s3cret-pass", chain)
    key, cert, cas = pkcs12.load_key_and_certificates(path.read_bytes(), b"s3cret-pass")
    assert cert == leaf.certificate
    assert key.public_key().public_numbers() == leaf.certificate.public_key().public_numbers()
    assert [c for c in cas] == [root.certificate]


def test_export_pkcs12_rejects_non_exportable(store, tmp_path):
    """测试不可导出的私钥不会生成 pfx"""
    entry = store.create_self_signed(_params("Locked", exportable=False))

    with pytest.raises(KeyNotExportableError):
        store.export_pkcs12(entry, tmp_path / "locked.pfx", "whatever-pass")
    assert not (tmp_path / "locked.pfx").exists()


def test_load_private_key_missing(store):
    """测试公钥副本没有私钥时报错"""
    entry = store.create_self_signed(_params("Lab Root"))
    store.remove(StoreScope.CURRENT_USER, StoreContainer.MY, entry.thumbprint)
    root_copy = store.get(StoreScope.CURRENT_USER, StoreContainer.ROOT, entry.thumbprint)

    with pytest.raises(KeyNotExportableError):
        store.load_private_key(root_copy)


def test_remove(store):
    """测试删除记录"""
    entry = store.create_self_signed(_params("Lab Root", extra=()))
    assert store.remove(StoreScope.CURRENT_USER, StoreContainer.MY, entry.thumbprint)
    assert store.get(StoreScope.CURRENT_USER, StoreContainer.MY, entry.thumbprint) is None
    assert not store.remove(StoreScope.CURRENT_USER, StoreContainer.MY, entry.thumbprint)


def test_empty_store(tmp_path):
    """测试不存在的存储目录按空处理"""
    store = FileCertificateStore(tmp_path / "missing")
    assert store.list(StoreScope.LOCAL_MACHINE, StoreContainer.CA) == []
    assert store.get(StoreScope.LOCAL_MACHINE, StoreContainer.MY, "ABCD") is None


def test_list_skips_unreadable_certificate(store):
    """测试无法读取的证书文件在列出时被跳过"""
    good = store.create_self_signed(_params("Lab Root"))
    junk = store.container_dir(StoreScope.CURRENT_USER, StoreContainer.ROOT) / "JUNK.crt"
    junk.write_bytes(b"not a certificate")

    assert [e.thumbprint for e in store.list(StoreScope.CURRENT_USER, StoreContainer.ROOT)] == [good.thumbprint]
    found = store.find_by_subject(StoreScope.CURRENT_USER, StoreContainer.ROOT, "CN=Lab Root", exact=True)
    assert [e.thumbprint for e in found] == [good.thumbprint]
