"""
命令行入口：issue / export / list / verify。

    labcert issue --cert-type Root --subject TestRootCA
    labcert issue --cert-type Intermediate --subject TestIssuerCA --issuer TestRootCA
    labcert export --subject TestIssuerCA --include-key
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import SecretStr, ValidationError

from src.labcert.ca import services as ca_services
from src.labcert.ca.profiles import CertificateProfile
from src.labcert.ca.schemas import CertificateRequest
from src.labcert.config import Config, config
from src.labcert.errors import IssuanceError, TargetFolderError
from src.labcert.export import services as export_services
from src.labcert.export.schemas import ExportRequest
from src.labcert.log import setup_logging
from src.labcert.store.core import FileCertificateStore
from src.labcert.store.schemas import StoreContainer, StoreScope


def _choice(enum_cls):
    """argparse 类型转换：枚举值大小写不敏感。"""
    def convert(value: str):
        for item in enum_cls:
            if item.value.lower() == value.lower():
                return item
        raise argparse.ArgumentTypeError(
            f"无效取值 '{value}'，可选: {', '.join(i.value for i in enum_cls)}"
        )
    convert.__name__ = enum_cls.__name__
    return convert


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"不是整数: {value}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"必须为正整数: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="labcert", description="实验环境证书签发与导出工具")
    p.add_argument("--store-root", type=Path, metavar="<DIR>", help="证书存储根目录")
    p.add_argument("--log-level", metavar="<LEVEL>", help="日志级别，如 DEBUG / INFO")
    sub = p.add_subparsers(dest="command", required=True)

    p_issue = sub.add_parser("issue", help="按模板签发证书")
    p_issue.add_argument("--cert-type", required=True, type=_choice(CertificateProfile),
                         help="证书模板: " + " | ".join(i.value for i in CertificateProfile))
    p_issue.add_argument("--subject", required=True)
    p_issue.add_argument("--store", type=_choice(StoreScope))
    p_issue.add_argument("--san", nargs="+", action="extend", default=[], metavar="<NAME>",
                         help="附加 DNS 名称（Web 模板）")
    p_issue.add_argument("--upn", help="用户主体名称（ClientAuth 模板）")
    p_issue.add_argument("--target-domain", help="目标域（ClientAuth 模板）")
    p_issue.add_argument("--guid", help="对象 GUID（ClientAuth 模板，缺省随机生成）")
    p_issue.add_argument("--issuer", help="签发者主题（除 Root 外必填）")
    p_issue.add_argument("--days", type=_positive_int, help="有效天数")
    p_issue.add_argument("--non-exportable", action="store_true", help="私钥不可导出")

    p_export = sub.add_parser("export", help="导出证书（可含私钥）")
    p_export.add_argument("--subject", required=True, nargs="+", action="extend", metavar="<SUBJECT>")
    p_export.add_argument("--folder", type=Path, metavar="<DIR>")
    p_export.add_argument("--store", type=_choice(StoreScope))
    p_export.add_argument("--password", help="PFX 密码，缺省自动生成")
    p_export.add_argument("--include-key", action="store_true", help="同时导出 PFX（含私钥）")
    p_export.add_argument("--no-password-log", action="store_true", help="不把密码写入 CertInfo.txt")

    p_list = sub.add_parser("list", help="列出存储中的证书")
    p_list.add_argument("--store", type=_choice(StoreScope))
    p_list.add_argument("--container", type=_choice(StoreContainer), default=StoreContainer.MY)
    p_list.add_argument("--subject", help="主题子串过滤")

    p_verify = sub.add_parser("verify", help="验证证书链")
    p_verify.add_argument("--store", type=_choice(StoreScope))
    p_verify.add_argument("--thumbprint", required=True)
    return p


def cmd_issue(args, settings: Config, store: FileCertificateStore) -> int:
    try:
        request = CertificateRequest(
            profile=args.cert_type,
            subject=args.subject,
            subject_alt_names=args.san,
            user_principal_name=args.upn,
            target_domain=args.target_domain,
            guid=args.guid,
            issuer_subject=args.issuer,
            validity_days=args.days or settings.default_validity_days,
            key_exportable=False if args.non_exportable else None,
            store_scope=args.store or settings.default_scope,
        )
    except ValidationError as e:
        logger.error(f"签发参数无效: {e}")
        return 2
    try:
        issued = ca_services.issue_certificate(request, store)
    except IssuanceError:
        return 1
    print(f"{issued.thumbprint}  {issued.subject}  {issued.not_before:%Y-%m-%d} ~ {issued.not_after:%Y-%m-%d}")
    return 0


def cmd_export(args, settings: Config, store: FileCertificateStore) -> int:
    if args.no_password_log:
        settings = settings.model_copy(update={"record_passwords": False})
    try:
        request = ExportRequest(
            subjects=args.subject,
            target_folder=args.folder or settings.export_folder,
            include_private_key=args.include_key,
            password=SecretStr(args.password) if args.password else None,
            store_scope=args.store or settings.default_scope,
        )
    except ValidationError as e:
        logger.error(f"导出参数无效: {e}")
        return 2
    try:
        result = export_services.export_certificates(request, store, settings)
    except TargetFolderError as e:
        logger.error(str(e))
        return 1
    for artifact in result.artifacts:
        paths = [str(artifact.certificate_path)] + ([str(artifact.pfx_path)] if artifact.pfx_path else [])
        print(f"{artifact.thumbprint}  {artifact.subject}  {', '.join(paths)}")
    for failure in result.failures:
        print(f"FAILED  {failure.subject}  {failure.error}: {failure.message}", file=sys.stderr)
    failed = export_services.failed_subjects(result)
    if failed:
        print(f"{len(failed)} of {len(request.subjects)} failed: {', '.join(failed)}", file=sys.stderr)
    return 0 if result.ok else 1


def cmd_list(args, settings: Config, store: FileCertificateStore) -> int:
    scope = args.store or settings.default_scope
    for item in ca_services.list_certificates(store, scope, args.container, args.subject):
        key = "key" if item.has_private_key else "   "
        print(f"{item.thumbprint}  {key}  {item.not_after:%Y-%m-%d}  {item.subject}")
    return 0


def cmd_verify(args, settings: Config, store: FileCertificateStore) -> int:
    result = ca_services.verify_chain(store, args.store or settings.default_scope, args.thumbprint)
    print(" -> ".join(result.chain) if result.chain else args.thumbprint)
    if result.valid:
        print("OK")
        return 0
    print(f"INVALID: {result.reason}", file=sys.stderr)
    return 1


COMMANDS = {
    "issue": cmd_issue,
    "export": cmd_export,
    "list": cmd_list,
    "verify": cmd_verify,
}


def main(argv: Optional[List[str]] = None, settings: Optional[Config] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or config
    if args.store_root is not None:
        settings = settings.model_copy(update={"store_root": args.store_root})
    setup_logging(args.log_level or settings.log_level, settings.log_file)
    store = FileCertificateStore(settings.store_root)
    return COMMANDS[args.command](args, settings, store)


if __name__ == "__main__":
    sys.exit(main())
