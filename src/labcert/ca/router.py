"""
证书签发服务的 FastAPI 路由定义。
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from src.labcert.config import Config
from src.labcert.depends import get_settings, get_store
from src.labcert.errors import (
    InvalidProfileParametersError,
    SignerNotFoundError,
    StoreWriteFailureError,
)
from src.labcert.store.core import FileCertificateStore
from src.labcert.store.schemas import StoreContainer, StoreScope
from . import services
from .schemas import CertificateRequest, CertificateSummary, ChainVerification, IssuedCertificate

router = APIRouter(prefix="/certs", tags=["Certificates"])


@router.post("/issue", response_model=IssuedCertificate)
async def issue_certificate(
    req: CertificateRequest,
    store: FileCertificateStore = Depends(get_store),
) -> IssuedCertificate:
    """
    按模板签发证书并写入存储。
    """
    try:
        return services.issue_certificate(req, store)
    except InvalidProfileParametersError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SignerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreWriteFailureError as e:
        raise HTTPException(status_code=500, detail=f"写入证书存储失败: {str(e)}")


@router.get("/", response_model=List[CertificateSummary])
async def list_certificates(
    scope: Optional[StoreScope] = None,
    container: StoreContainer = StoreContainer.MY,
    subject: Optional[str] = None,
    store: FileCertificateStore = Depends(get_store),
    settings: Config = Depends(get_settings),
) -> List[CertificateSummary]:
    """
    列出存储中的证书，可按主题子串过滤。
    """
    return services.list_certificates(store, scope or settings.default_scope, container, subject)


@router.get("/{thumbprint}/verify", response_model=ChainVerification)
async def verify_certificate(
    thumbprint: str,
    scope: Optional[StoreScope] = None,
    store: FileCertificateStore = Depends(get_store),
    settings: Config = Depends(get_settings),
) -> ChainVerification:
    """
    验证证书链是否能追溯到受信任根。
    """
    return services.verify_chain(store, scope or settings.default_scope, thumbprint)
