"""
测试共用的 fixture：隔离的证书存储、配置，以及预先签发好的根 / 中间 CA。
"""

import pytest

from src.labcert.ca import services as ca_services
from src.labcert.ca.profiles import CertificateProfile
from src.labcert.ca.schemas import CertificateRequest
from src.labcert.config import Config
from src.labcert.store.core import FileCertificateStore
from src.labcert.store.schemas import StoreScope


@pytest.fixture
def store(tmp_path) -> FileCertificateStore:
    return FileCertificateStore(tmp_path / "store")


@pytest.fixture
def settings(tmp_path) -> Config:
    return Config(store_root=tmp_path / "store", export_folder=tmp_path / "out")


@pytest.fixture
def issue_cert(store):
    """返回签发快捷函数：issue_cert(profile, subject, **request_fields)。"""

    def _issue(profile, subject, **kwargs):
        kwargs.setdefault("store_scope", StoreScope.LOCAL_MACHINE)
        request = CertificateRequest(profile=profile, subject=subject, **kwargs)
        return ca_services.issue_certificate(request, store)

    return _issue


@pytest.fixture
def root_ca(issue_cert):
    return issue_cert(CertificateProfile.ROOT, "TestRootCA", validity_days=365)


@pytest.fixture
def issuer_ca(issue_cert, root_ca):
    return issue_cert(
        CertificateProfile.INTERMEDIATE,
        "TestIssuerCA",
        issuer_subject="TestRootCA",
        validity_days=365,
    )
