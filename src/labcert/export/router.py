"""
证书导出服务的 FastAPI 路由定义。
"""

from fastapi import APIRouter, Depends, HTTPException

from src.labcert.config import Config
from src.labcert.depends import get_settings, get_store
from src.labcert.errors import TargetFolderError
from src.labcert.store.core import FileCertificateStore
from . import services
from .schemas import ExportBatchResult, ExportRequest

router = APIRouter(prefix="/certs", tags=["Certificates"])


@router.post("/export", response_model=ExportBatchResult)
async def export_certificates(
    req: ExportRequest,
    store: FileCertificateStore = Depends(get_store),
    settings: Config = Depends(get_settings),
) -> ExportBatchResult:
    """
    批量导出证书；单个主题的失败在结果的 failures 中返回。
    """
    try:
        return services.export_certificates(req, store, settings)
    except TargetFolderError as e:
        raise HTTPException(status_code=500, detail=str(e))
