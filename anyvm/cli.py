"""
anyvm 命令行接口模块。
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from anyvm import __version__
from anyvm.core.archive_extractor import ArchiveExtractorError
from anyvm.core.cancellation import CancelToken, Cancelled
from anyvm.core.config_manager import ConfigLoadError, ConfigManager, ConfigSaveError, ConfigValidationError
from anyvm.core.digest import DigestError
from anyvm.core.download_manager import DownloadManagerError
from anyvm.core.interfaces import DownloadInfo, ProviderError, VersionSpec
from anyvm.core.link_manager import DanglingAlias, LinkError, LinkManagerError
from anyvm.core.mirror import MirrorConfigError
from anyvm.core.tag_store import AlreadyExists, TagStoreError
from anyvm.core.version_manager import VersionManager, VersionManagerError
from anyvm.core.version_utils import group_versions_by_major
from anyvm.providers import CATALOG_PROVIDERS, DELEGATE_PROVIDERS, create_registry
from anyvm.utils.logger import get_logger, set_log_level
from anyvm.utils.input_validator import InputValidationError

logger = get_logger()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

# 命令层统一把这些错误转换成消息和退出码
HANDLED_ERRORS = (
    VersionManagerError,
    TagStoreError,
    LinkManagerError,
    DownloadManagerError,
    DigestError,
    ArchiveExtractorError,
    ProviderError,
    InputValidationError,
    ConfigLoadError,
    ConfigValidationError,
    ConfigSaveError,
    MirrorConfigError,
)

TOOL_HELP = f"工具名称 ({', '.join(CATALOG_PROVIDERS)})"


def _add_tool_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "tool",
        help=TOOL_HELP,
    )


def _add_spec_arguments(parser: argparse.ArgumentParser, with_version: bool = True) -> None:
    if with_version:
        parser.add_argument(
            "version",
            nargs="?",
            default=None,
            help="精确版本号（省略则选择最新版本）",
        )
    parser.add_argument(
        "--major",
        "-m",
        default=None,
        help="限定主版本号",
    )
    parser.add_argument(
        "--lts",
        action="store_true",
        help="仅选择长期支持版本",
    )
    parser.add_argument(
        "--platform",
        "-p",
        default=None,
        help="目标平台，例如 x64-linux（默认当前平台）",
    )
    parser.add_argument(
        "--flavor",
        default=None,
        help="变体，例如 liberica 的 jdk_full",
    )


def _add_install_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--update",
        "-u",
        action="store_true",
        help="标签已安装时重新安装",
    )
    parser.add_argument(
        "--default",
        "-d",
        action="store_true",
        help="安装后把 default 别名链接到该标签",
    )


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="avm",
        description="anyvm - 通用开发工具版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  avm install go --default          安装最新的 Go 并设为默认
  avm install node --major 20 --lts 安装 Node.js 20 的最新 LTS 版本
  avm list node                     列出已安装的 Node.js 标签和别名
  avm link go stable 1.22.0-x64-linux
  avm run go -- version             运行 default 别名下的 go
  avm rustup toolchain list         转发给 rustup
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="配置文件路径",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="下载并安装指定版本",
    )
    _add_tool_argument(install_parser)
    _add_spec_arguments(install_parser)
    _add_install_flags(install_parser)

    install_local_parser = subparsers.add_parser(
        "install-local",
        help="从本地压缩包安装（不访问网络）",
    )
    _add_tool_argument(install_local_parser)
    install_local_parser.add_argument(
        "archive",
        help="已下载的压缩包路径",
    )
    install_local_parser.add_argument(
        "--downinfo",
        default=None,
        help="get-downinfo 输出的 JSON 文件，用于摘要校验和推导标签",
    )
    install_local_parser.add_argument(
        "--tag",
        "-t",
        default=None,
        help="安装到的标签名",
    )
    _add_install_flags(install_local_parser)

    downinfo_parser = subparsers.add_parser(
        "get-downinfo",
        help="输出下载信息（JSON）",
    )
    _add_tool_argument(downinfo_parser)
    _add_spec_arguments(downinfo_parser)

    vers_parser = subparsers.add_parser(
        "get-vers",
        help="列出远程可用版本",
    )
    _add_tool_argument(vers_parser)
    _add_spec_arguments(vers_parser, with_version=False)

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装的标签和别名",
    )
    _add_tool_argument(list_parser)
    list_parser.add_argument(
        "--format",
        "-f",
        choices=["simple", "json"],
        default="simple",
        help="输出格式",
    )

    for command, help_text in (("link", "把别名链接到标签"), ("copy", "把标签复制为独立的别名目录")):
        alias_parser = subparsers.add_parser(command, help=help_text)
        _add_tool_argument(alias_parser)
        alias_parser.add_argument("name", help="别名")
        alias_parser.add_argument("tag", help="目标标签")

    unlink_parser = subparsers.add_parser(
        "unlink",
        help="删除别名",
    )
    _add_tool_argument(unlink_parser)
    unlink_parser.add_argument("name", help="别名")

    del_parser = subparsers.add_parser(
        "del",
        help="删除已安装的标签",
    )
    _add_tool_argument(del_parser)
    del_parser.add_argument("tag", help="要删除的标签")
    del_parser.add_argument(
        "--force",
        action="store_true",
        help="即使有别名指向该标签也删除（别名将悬空）",
    )

    for command, help_text in (("path", "输出安装目录"), ("exe-path", "输出主可执行文件路径")):
        path_parser = subparsers.add_parser(command, help=help_text)
        _add_tool_argument(path_parser)
        path_parser.add_argument(
            "name",
            nargs="?",
            default=None,
            help="别名或标签（默认 default）",
        )

    run_parser = subparsers.add_parser(
        "run",
        help="运行已安装的工具，-- 之后的参数原样传递",
    )
    _add_tool_argument(run_parser)
    run_parser.add_argument(
        "name",
        nargs="?",
        default=None,
        help="别名或标签（默认 default）",
    )

    clean_parser = subparsers.add_parser(
        "clean",
        help="清理中断的安装留下的临时文件",
    )
    _add_tool_argument(clean_parser)
    clean_parser.add_argument(
        "--dangling",
        action="store_true",
        help="同时删除悬空别名",
    )

    for name in DELEGATE_PROVIDERS:
        delegate_parser = subparsers.add_parser(
            name,
            help=f"把参数转发给 {name}",
        )
        delegate_parser.add_argument(
            "args",
            nargs=argparse.REMAINDER,
            help=f"传给 {name} 的参数",
        )

    config_path_parser = subparsers.add_parser(
        "config-path",
        help="输出配置文件路径",
    )
    config_path_parser.add_argument(
        "--init",
        action="store_true",
        help="配置文件不存在时写入默认配置",
    )

    return parser


def parse_arguments(parser: argparse.ArgumentParser, argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    解析命令行参数。

    第一个 "--" 之后的参数不经过解析，保存在 extra_args 中，供 run 使用。
    委托命令的参数（包括其中的 "--"）原样保留给外部工具。
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    extra: List[str] = []
    if "--" in argv and not _is_delegate_command(argv):
        index = argv.index("--")
        argv, extra = argv[:index], argv[index + 1:]
    args = parser.parse_args(argv)
    args.extra_args = extra
    return args


def _is_delegate_command(argv: List[str]) -> bool:
    """判断 "--" 之前的第一个位置参数是否为委托命令。"""
    skip_value = False
    for token in argv:
        if skip_value:
            skip_value = False
            continue
        if token == "--":
            return False
        if token in ("--config", "-c"):
            skip_value = True
            continue
        if token.startswith("-"):
            continue
        return token in DELEGATE_PROVIDERS
    return False


def run_cli(args: argparse.Namespace, cancel_token: Optional[CancelToken] = None) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数
        cancel_token: 由 SIGINT 置位的取消令牌

    返回:
        退出码（0 表示成功）
    """
    if args.verbose:
        set_log_level(logging.DEBUG)

    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。")
        return EXIT_ERROR

    command_handlers = {
        "install": handle_install,
        "install-local": handle_install_local,
        "get-downinfo": handle_get_downinfo,
        "get-vers": handle_get_vers,
        "list": handle_list,
        "link": handle_link,
        "copy": handle_copy,
        "unlink": handle_unlink,
        "del": handle_del,
        "path": handle_path,
        "exe-path": handle_exe_path,
        "run": handle_run,
        "clean": handle_clean,
        "config-path": handle_config_path,
    }
    for name in DELEGATE_PROVIDERS:
        command_handlers[name] = handle_delegate

    handler = command_handlers.get(args.command)
    if handler is None:
        print(f"未知命令: {args.command}")
        return EXIT_ERROR

    args.cancel_token = cancel_token or CancelToken()
    try:
        return handler(args)
    except (Cancelled, KeyboardInterrupt):
        print("\n操作已取消", file=sys.stderr)
        return EXIT_CANCELLED
    except LinkError as e:
        print(f"错误: {e}", file=sys.stderr)
        if e.hint:
            print(f"提示: {e.hint}", file=sys.stderr)
        return EXIT_ERROR
    except HANDLED_ERRORS as e:
        logger.debug(f"命令 {args.command} 失败", exc_info=True)
        print(f"错误: {e}", file=sys.stderr)
        return EXIT_ERROR


def _get_managers(args: argparse.Namespace, tool: Optional[str] = None) -> Tuple[ConfigManager, VersionManager]:
    """
    获取管理器实例。

    返回:
        (ConfigManager, VersionManager) 元组

    抛出:
        VersionManagerError: 未知工具
    """
    config_manager = ConfigManager(args.config)
    config_manager.load_config()
    registry = create_registry(config_manager)
    name = (tool or args.tool).lower()
    provider = registry.get(name)
    if provider is None:
        raise VersionManagerError(f"未知工具: {name}（可用工具: {', '.join(registry)}）")
    return config_manager, VersionManager(config_manager, provider, args.cancel_token)


def _spec_from_args(args: argparse.Namespace) -> VersionSpec:
    return VersionSpec(
        version=getattr(args, "version", None),
        major=args.major,
        lts_only=args.lts,
    )


def _progress(downloaded: int, total: int) -> None:
    if total > 0:
        percent = min(int(downloaded / total * 100), 100)
        bar_len = 40
        filled = int(bar_len * percent / 100)
        bar = "=" * filled + "-" * (bar_len - filled)
        print(f"\r[{bar}] {percent}% ({downloaded}/{total} 字节)", end="", flush=True)
    else:
        print(f"\r已下载 {downloaded} 字节", end="", flush=True)


def handle_install(args: argparse.Namespace) -> int:
    """
    处理 install 命令：下载并安装指定版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers(args)
    spec = _spec_from_args(args)

    print(f"正在安装 {args.tool} {spec.describe()}...")
    try:
        tag, path = version_manager.install(
            spec,
            platform=args.platform,
            flavor=args.flavor,
            update=args.update,
            set_default=args.default,
            progress_callback=_progress,
        )
    except AlreadyExists as e:
        print(f"\n{e}" + ("" if e.installing else "（使用 --update 重新安装）"))
        return EXIT_OK

    print(f"\n成功安装 {args.tool} {tag}: {path}")
    if args.default:
        print(f"default -> {tag}")
    return EXIT_OK


def handle_install_local(args: argparse.Namespace) -> int:
    """
    处理 install-local 命令：从本地压缩包安装。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers(args)

    info = None
    if args.downinfo:
        try:
            with open(args.downinfo, "r", encoding="utf-8") as f:
                info = DownloadInfo.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            raise VersionManagerError(f"无法读取下载信息 {args.downinfo}: {e}") from e

    try:
        tag, path = version_manager.install_local(
            Path(args.archive),
            info=info,
            tag=args.tag,
            update=args.update,
            set_default=args.default,
        )
    except AlreadyExists as e:
        print(f"{e}" + ("" if e.installing else "（使用 --update 重新安装）"))
        return EXIT_OK

    print(f"成功安装 {args.tool} {tag}: {path}")
    return EXIT_OK


def handle_get_downinfo(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args)
    info = version_manager.get_downinfo(_spec_from_args(args), args.platform, args.flavor)
    print(json.dumps(info.to_dict(), indent=2, ensure_ascii=False))
    return EXIT_OK


def handle_get_vers(args: argparse.Namespace) -> int:
    """
    处理 get-vers 命令：按主版本分组列出远程版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers(args)
    versions = version_manager.get_versions(_spec_from_args(args), args.platform, args.flavor)
    if not versions:
        print(f"未找到 {args.tool} 的远程版本")
        return EXIT_OK

    for group in group_versions_by_major(versions):
        marker = " (LTS)" if group["has_lts"] else ""
        print(f"{group['major_version']}{marker}:")
        for v in group["versions"]:
            print(f"  {v.version}{' *' if v.lts else ''}")
    return EXIT_OK


def handle_list(args: argparse.Namespace) -> int:
    """
    处理 list 命令：列出已安装的标签和别名。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers(args)
    entries, aliases = version_manager.list_tags()

    if args.format == "json":
        result = {
            "tool": args.tool,
            "tags": [
                {"tag": e.tag, "path": str(e.path), "aliases": e.aliases}
                for e in entries
            ],
            "aliases": [
                {
                    "name": a.name,
                    "mode": a.mode,
                    "target": a.target_tag,
                    "dangling": a.dangling,
                }
                for a in aliases
            ],
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return EXIT_OK

    if not entries and not aliases:
        print(f"未找到 {args.tool} 的已安装版本")
        return EXIT_OK

    print(f"{args.tool} 已安装标签:")
    for entry in entries:
        suffix = f"  <- {', '.join(entry.aliases)}" if entry.aliases else ""
        print(f"  {entry.tag}{suffix}")
        if args.verbose:
            print(f"     路径: {entry.path}")

    if aliases:
        print("别名:")
        for alias in aliases:
            if alias.dangling:
                print(f"  {alias.name} -> {alias.target_tag} (悬空)")
            elif alias.mode == "copy":
                print(f"  {alias.name} (副本)")
            else:
                print(f"  {alias.name} -> {alias.target_tag}")
    return EXIT_OK


def handle_link(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args)
    version_manager.link(args.name, args.tag)
    print(f"{args.name} -> {args.tag}")
    return EXIT_OK


def handle_copy(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args)
    print(f"正在复制 {args.tag} 到 {args.name}...")
    version_manager.copy(args.name, args.tag)
    print(f"已创建副本 {args.name}")
    return EXIT_OK


def handle_unlink(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args)
    version_manager.unlink(args.name)
    print(f"已删除别名 {args.name}")
    return EXIT_OK


def handle_del(args: argparse.Namespace) -> int:
    """
    处理 del 命令：删除已安装的标签。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers(args)
    dangling = version_manager.delete(args.tag, force=args.force)
    print(f"成功删除 {args.tool} {args.tag}")
    for name in dangling:
        print(f"警告：别名 {name} 现在是悬空的")
    return EXIT_OK


def handle_path(args: argparse.Namespace) -> int:
    """
    处理 path 命令。

    悬空别名只给出警告，并输出别名记录的目标路径，退出码仍为 0。
    """
    _, version_manager = _get_managers(args)
    try:
        print(version_manager.path(args.name))
    except DanglingAlias as e:
        print(f"警告: {e}", file=sys.stderr)
        print(e.target)
    return EXIT_OK


def handle_exe_path(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args)
    print(version_manager.exe_path(args.name))
    return EXIT_OK


def handle_run(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args)
    return version_manager.run(args.name, args.extra_args)


def handle_clean(args: argparse.Namespace) -> int:
    """
    处理 clean 命令：清理临时条目，可选删除悬空别名。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, version_manager = _get_managers(args)
    removed, removed_aliases = version_manager.clean(dangling=args.dangling)
    for path in removed:
        print(f"已清理: {path}")
    for name in removed_aliases:
        print(f"已删除悬空别名: {name}")
    if not removed and not removed_aliases:
        print("没有需要清理的内容")
    return EXIT_OK


def handle_delegate(args: argparse.Namespace) -> int:
    _, version_manager = _get_managers(args, tool=args.command)
    return version_manager.run_delegate(list(args.args) + args.extra_args)


def handle_config_path(args: argparse.Namespace) -> int:
    """
    处理 config-path 命令：输出配置文件路径，可选写入默认配置。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    config_manager = ConfigManager(args.config)
    if args.init and not config_manager.save_default_config():
        print(f"配置文件已存在: {config_manager.config_file}", file=sys.stderr)
    print(config_manager.config_file)
    return EXIT_OK
