"""
FastAPI 应用入口点。
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from src.labcert.ca.router import router as ca_router
from src.labcert.config import config
from src.labcert.export.router import router as export_router
from src.labcert.log import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.log_level, config.log_file)
    logger.info(f"证书存储目录: {config.store_root}")
    if config.record_passwords:
        logger.warning("record_passwords 已开启：导出私钥时会把明文密码写入 CertInfo.txt，仅限实验环境使用")
    yield


app = FastAPI(title="Lab Certificate Authority", lifespan=lifespan)

app.include_router(ca_router, prefix="/v1")
app.include_router(export_router, prefix="/v1")

logger.info(f"config: {config.model_dump_json(indent=4)}")
