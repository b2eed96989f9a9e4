"""
实验证书工具的异常定义。

签发与导出各有一棵异常树；同时继承内置异常，便于调用方按 ValueError / LookupError /
RuntimeError 粗粒度处理（路由层据此映射 HTTP 状态码）。
"""


class StoreError(Exception):
    """证书存储层的基础异常。"""


class IssuanceError(Exception):
    """证书签发失败的基础异常。"""


class SignerNotFoundError(IssuanceError, LookupError):
    """存储中找不到可用的签发者证书（或其私钥）。"""


class InvalidProfileParametersError(IssuanceError, ValueError):
    """请求参数不满足证书模板要求，在访问存储之前即失败。"""


class StoreWriteFailureError(IssuanceError, StoreError, RuntimeError):
    """密钥生成、签名或写入存储失败，原始异常通过 __cause__ 保留。"""


class ExportError(Exception):
    """证书导出失败的基础异常。"""


class TargetFolderError(ExportError, OSError):
    """导出目录无法创建，整个批次中止。"""


class CertificateNotFoundError(ExportError, LookupError):
    """存储中没有与主题匹配的证书。"""


class KeyNotExportableError(ExportError, StoreError):
    """私钥被标记为不可导出或不存在，拒绝降级为仅导出公钥。"""


class ExportWriteError(ExportError, RuntimeError):
    """写出 .crt / .pfx / CertInfo.txt 时失败。"""
