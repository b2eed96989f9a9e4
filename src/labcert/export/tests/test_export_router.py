"""
测试 export/router.py 模块。
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.labcert.depends import get_settings, get_store
from src.labcert.errors import TargetFolderError
from src.labcert.export.router import router


@pytest.fixture
def client(store, settings):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    return TestClient(app)


def test_export_endpoint(client, tmp_path, issuer_ca):
    """测试导出端点：部分主题缺失时仍返回 200，并列出失败项"""
    req_data = {
        "subjects": ["TestIssuerCA", "Missing"],
        "target_folder": str(tmp_path / "out"),
        "include_private_key": True,
        "store_scope": "LocalMachine",
    }
    response = client.post("/certs/export", json=req_data)

    assert response.status_code == 200
    body = response.json()
    assert [a["subject"] for a in body["artifacts"]] == ["TestIssuerCA"]
    assert body["artifacts"][0]["pfx_path"].endswith("TestIssuerCA.pfx")
    assert body["failures"] == [
        {"subject": "Missing", "error": "CertificateNotFoundError", "message": body["failures"][0]["message"]}
    ]
    assert (tmp_path / "out" / "CertInfo.txt").exists()


def test_export_endpoint_validation_error(client, tmp_path):
    """测试请求体校验错误"""
    response = client.post("/certs/export", json={"subjects": [], "target_folder": str(tmp_path)})
    assert response.status_code == 422

    response = client.post("/certs/export", json={"subjects": ["x"]})
    assert response.status_code == 422


def test_export_endpoint_target_folder_error(client, tmp_path):
    """测试导出目录无法创建时返回 500"""
    with patch(
        "src.labcert.export.services.export_certificates",
        side_effect=TargetFolderError("无法创建导出目录"),
    ):
        response = client.post("/certs/export", json={"subjects": ["x"], "target_folder": str(tmp_path)})
    assert response.status_code == 500
    assert "无法创建导出目录" in response.json()["detail"]
