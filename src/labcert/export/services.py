"""
证书导出服务的业务逻辑层。

对每个主题依次：查找证书 → 导出 .crt → （可选）导出 .pfx 并记录密码。
单个主题失败只记入结果，不中止批次；只有导出目录无法创建时整个批次失败。
"""

import re
from pathlib import Path
from typing import List, Optional

from loguru import logger

from src.labcert.config import Config
from src.labcert.errors import (
    CertificateNotFoundError,
    ExportError,
    ExportWriteError,
    KeyNotExportableError,
    StoreError,
    TargetFolderError,
)
from src.labcert.store.core import FileCertificateStore
from src.labcert.store.schemas import StoreContainer, StoredCertificate
from .passwords import SecurePasswordGenerator
from .schemas import ExportBatchResult, ExportFailure, ExportRequest, ExportedArtifact

_ILLEGAL_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def safe_file_stem(subject: str) -> str:
    """把主题转换为可用的文件名（替换路径非法字符）。"""
    stem = _ILLEGAL_FILENAME_CHARS.sub("_", subject).strip(" .")
    return stem or "certificate"


def ensure_target_folder(folder: Path) -> Path:
    """
    确保导出目录存在。
    :raises TargetFolderError: 目录无法创建（整个批次中止）。
    """
    folder = Path(folder)
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise TargetFolderError(f"无法创建导出目录 {folder}: {e}") from e
    if not folder.is_dir():
        raise TargetFolderError(f"导出路径不是目录: {folder}")
    return folder


def find_export_target(store: FileCertificateStore, request: ExportRequest, subject: str) -> StoredCertificate:
    """
    在 My 容器中按主题子串查找，多个匹配时取最新签发的一个。
    :raises CertificateNotFoundError
    """
    matches = store.find_by_subject(request.store_scope, StoreContainer.MY, subject)
    if not matches:
        raise CertificateNotFoundError(
            f"{request.store_scope.value}\\My 中没有主题匹配 '{subject}' 的证书"
        )
    entry = matches[-1]
    if len(matches) > 1:
        others = ", ".join(m.thumbprint for m in matches[:-1])
        logger.warning(f"主题 '{subject}' 匹配到 {len(matches)} 张证书，使用最新的 {entry.thumbprint}；忽略: {others}")
    return entry


def append_password_record(log_path: Path, subject: str, thumbprint: str, password: str) -> None:
    """
    追加一条明文密码记录。仅限实验环境使用，文件会跨多次调用累积明文密码。
    """
    with open(log_path, "a", encoding="utf-8") as f:
        f.write(f"{subject}, {thumbprint}, {password}\n")


def export_one(
    subject: str,
    request: ExportRequest,
    store: FileCertificateStore,
    settings: Config,
    generator: SecurePasswordGenerator,
) -> ExportedArtifact:
    """
    导出单个主题。
    :raises ExportError: 本主题导出失败。
    """
    entry = find_export_target(store, request, subject)
    if request.include_private_key and not (entry.exportable and entry.has_private_key):
        reason = "被标记为不可导出" if entry.has_private_key else "不存在"
        raise KeyNotExportableError(f"证书 {entry.subject} ({entry.thumbprint}) 的私钥{reason}，拒绝导出")

    folder = Path(request.target_folder)
    stem = safe_file_stem(subject)
    crt_path = folder / f"{stem}.crt"
    try:
        store.export_public(entry, crt_path, settings.crt_encoding)
    except OSError as e:
        raise ExportWriteError(f"写入 {crt_path} 失败: {e}") from e
    artifact = ExportedArtifact(subject=subject, thumbprint=entry.thumbprint, certificate_path=crt_path)

    if not request.include_private_key:
        return artifact

    if request.password is not None and request.password.get_secret_value():
        password = request.password.get_secret_value()
    else:
        password = generator.generate(settings.password_length)
        artifact.password_generated = True

    chain = store.chain_for(entry) if settings.include_chain else []
    pfx_path = folder / f"{stem}.pfx"
    try:
        store.export_pkcs12(entry, pfx_path, password, chain)
    except KeyNotExportableError:
        raise
    except (OSError, ValueError, TypeError, StoreError) as e:
        pfx_path.unlink(missing_ok=True)
        raise ExportWriteError(f"写入 {pfx_path} 失败: {e}") from e
    artifact.pfx_path = pfx_path

    if settings.record_passwords:
        log_path = folder / settings.password_log_name
        try:
            append_password_record(log_path, subject, entry.thumbprint, password)
        except OSError as e:
            # 没有密码记录的 pfx 无法再打开，撤销本次导出
            pfx_path.unlink(missing_ok=True)
            raise ExportWriteError(f"写入密码记录 {log_path} 失败: {e}") from e
        artifact.password_recorded = True
    elif artifact.password_generated:
        logger.warning(f"'{subject}' 的 PFX 使用自动生成的密码且未记录，请妥善保存返回结果")
    return artifact


def export_certificates(
    request: ExportRequest,
    store: FileCertificateStore,
    settings: Config,
    generator: Optional[SecurePasswordGenerator] = None,
) -> ExportBatchResult:
    """
    批量导出证书。
    :param request: 导出请求。
    :param store: 证书存储。
    :param settings: 导出相关配置（编码、密码长度、是否记录密码等）。
    :param generator: 密码生成器，默认 SecurePasswordGenerator()。
    :return: 批次结果，成功项与失败项分别列出。
    :raises TargetFolderError: 导出目录无法创建。
    """
    generator = generator or SecurePasswordGenerator()
    folder = ensure_target_folder(request.target_folder)
    result = ExportBatchResult(target_folder=folder)

    for subject in request.subjects:
        try:
            artifact = export_one(subject, request, store, settings, generator)
        except (ExportError, StoreError) as e:
            logger.error(f"导出 '{subject}' 失败 ({request.store_scope.value}): {type(e).__name__}: {e}")
            result.failures.append(ExportFailure(subject=subject, error=type(e).__name__, message=str(e)))
            continue
        logger.info(
            f"已导出 '{subject}' ({artifact.thumbprint}) -> {artifact.certificate_path}"
            + (f", {artifact.pfx_path}" if artifact.pfx_path else "")
        )
        result.artifacts.append(artifact)

    if result.failures:
        logger.warning(f"导出完成：成功 {len(result.artifacts)} 项，失败 {len(result.failures)} 项")
    return result


def failed_subjects(result: ExportBatchResult) -> List[str]:
    return [f.subject for f in result.failures]
