"""
压缩包解压模块。

支持 tar.gz、tar.xz 和 zip 三种格式。先按扩展名识别格式，
无法识别时读取文件头魔数。每个条目在写入前都会检查最终路径
是否仍位于目标目录内，任何越界条目都会导致整个解压失败，
并删除目标目录。
"""

import lzma
import os
import re
import shutil
import stat
import sys
import tarfile
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO, Optional, Union

from anyvm.utils.logger import get_logger
from anyvm.core.cancellation import CancelToken, Cancelled

logger = get_logger()

FORMAT_TAR_GZ = "tar.gz"
FORMAT_TAR_XZ = "tar.xz"
FORMAT_ZIP = "zip"

EXTENSION_FORMATS = (
    (".tar.gz", FORMAT_TAR_GZ),
    (".tgz", FORMAT_TAR_GZ),
    (".tar.xz", FORMAT_TAR_XZ),
    (".txz", FORMAT_TAR_XZ),
    (".zip", FORMAT_ZIP),
)

MAGIC_FORMATS = (
    (b"\x1f\x8b", FORMAT_TAR_GZ),
    (b"\xfd7zXZ\x00", FORMAT_TAR_XZ),
    (b"PK\x03\x04", FORMAT_ZIP),
    (b"PK\x05\x06", FORMAT_ZIP),
)

TAR_MODES = {
    FORMAT_TAR_GZ: "r:gz",
    FORMAT_TAR_XZ: "r:xz",
}

CORRUPT_ARCHIVE_ERRORS = (
    tarfile.TarError,
    zipfile.BadZipFile,
    lzma.LZMAError,
    zlib.error,
    EOFError,
    OSError,
)

COPY_BUFFER_SIZE = 64 * 1024
IS_WINDOWS = sys.platform == "win32"


class ArchiveExtractorError(Exception):
    """解压错误异常基类。"""
    pass


class UnsupportedFormat(ArchiveExtractorError):
    """不支持或无法识别的压缩包格式异常。"""
    pass


class PathTraversal(ArchiveExtractorError):
    """压缩包条目路径越界异常。"""
    pass


class DestinationExists(ArchiveExtractorError):
    """解压目标目录已存在异常，说明存在状态或并发错误。"""
    pass


class ExtractionError(ArchiveExtractorError):
    """压缩包损坏或写入失败异常。"""
    pass


def detect_format(archive_path: Union[str, Path], name_hint: Optional[str] = None) -> str:
    """
    识别压缩包格式。

    参数:
        archive_path: 压缩包路径
        name_hint: 用于识别扩展名的名称（例如下载 URL），优先于文件名

    返回:
        FORMAT_TAR_GZ、FORMAT_TAR_XZ 或 FORMAT_ZIP

    抛出:
        UnsupportedFormat: 扩展名和魔数都无法识别时抛出
    """
    archive_path = Path(archive_path)
    for name in (name_hint, archive_path.name):
        if not name:
            continue
        lowered = name.split("?", 1)[0].split("#", 1)[0].lower()
        for extension, fmt in EXTENSION_FORMATS:
            if lowered.endswith(extension):
                return fmt

    try:
        with open(archive_path, "rb") as f:
            header = f.read(6)
    except OSError as e:
        raise UnsupportedFormat(f"无法读取压缩包 {archive_path}: {e}") from e

    for magic, fmt in MAGIC_FORMATS:
        if header.startswith(magic):
            logger.debug(f"通过文件头识别 {archive_path.name} 为 {fmt}")
            return fmt

    raise UnsupportedFormat(f"无法识别的压缩包格式: {archive_path}")


def _is_within(root: str, path: str) -> bool:
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        return False


def _is_absolute_name(name: str) -> bool:
    return (
        name.startswith("/")
        or name.startswith("\\")
        or re.match(r"^[A-Za-z]:", name) is not None
    )


class ArchiveExtractor:
    """
    压缩包解压器类。

    目标目录必须不存在，解压器总是在新创建的空目录中工作。
    """

    def __init__(self, restore_permissions: Optional[bool] = None):
        """
        初始化解压器。

        参数:
            restore_permissions: 是否恢复条目中的权限位，默认仅在非 Windows 平台恢复
        """
        if restore_permissions is None:
            restore_permissions = not IS_WINDOWS
        self.restore_permissions = restore_permissions

    def extract(
        self,
        archive_path: Union[str, Path],
        dest_dir: Union[str, Path],
        cancel_token: Optional[CancelToken] = None,
        name_hint: Optional[str] = None,
    ) -> Path:
        """
        解压压缩包到新目录。

        参数:
            archive_path: 压缩包路径
            dest_dir: 目标目录（必须不存在）
            cancel_token: 取消令牌，在条目之间检查
            name_hint: 识别格式用的名称，例如原始下载 URL

        返回:
            目标目录路径

        抛出:
            UnsupportedFormat: 格式无法识别
            DestinationExists: 目标目录已存在
            PathTraversal: 存在越界条目
            ExtractionError: 压缩包损坏或写入失败
            Cancelled: 操作被取消
        """
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)
        fmt = detect_format(archive_path, name_hint)

        if os.path.lexists(dest_dir):
            raise DestinationExists(f"解压目标已存在: {dest_dir}")
        dest_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            dest_dir.mkdir()
        except FileExistsError as e:
            raise DestinationExists(f"解压目标已存在: {dest_dir}") from e

        logger.info(f"正在解压 {archive_path.name} ({fmt}) 到 {dest_dir}")
        root = os.path.realpath(dest_dir)
        try:
            if fmt == FORMAT_ZIP:
                self._extract_zip(archive_path, root, cancel_token)
            else:
                self._extract_tar(archive_path, TAR_MODES[fmt], root, cancel_token)
            self._verify_links(root)
        except (ArchiveExtractorError, Cancelled):
            self._discard(dest_dir)
            raise
        except CORRUPT_ARCHIVE_ERRORS as e:
            self._discard(dest_dir)
            raise ExtractionError(f"解压 {archive_path} 失败: {e}") from e
        except BaseException:
            self._discard(dest_dir)
            raise

        logger.debug(f"解压完成: {dest_dir}")
        return dest_dir

    def _discard(self, dest_dir: Path) -> None:
        logger.debug(f"删除未完成的解压目录: {dest_dir}")
        shutil.rmtree(dest_dir, ignore_errors=True)
        if os.path.lexists(dest_dir):
            logger.error(f"无法删除未完成的解压目录: {dest_dir}")

    def _member_target(self, root: str, name: str) -> Optional[str]:
        """
        计算条目的写入路径并检查是否越界。

        返回:
            绝对路径；条目指向根目录本身（如 "./"）时返回 None

        抛出:
            PathTraversal: 路径为绝对路径或解析到目标目录之外
        """
        if _is_absolute_name(name):
            raise PathTraversal(f"压缩包包含绝对路径条目: {name}")

        parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".")]
        if not parts:
            return None

        target = os.path.normpath(os.path.join(root, *parts))
        if not _is_within(root, target):
            raise PathTraversal(f"压缩包条目越界: {name}")
        if target == root:
            return None

        # 已解压的符号链接可能让父目录指向别处
        parent_real = os.path.realpath(os.path.dirname(target))
        if not _is_within(root, parent_real):
            raise PathTraversal(f"压缩包条目经符号链接越界: {name}")

        return target

    def _check_link_target(self, root: str, target: str, link_name: str, entry: str) -> None:
        if not link_name or _is_absolute_name(link_name):
            raise PathTraversal(f"符号链接 {entry} 指向绝对路径: {link_name}")

        link_parent = os.path.dirname(target)
        joined = os.path.join(link_parent, link_name.replace("\\", "/"))
        lexical = os.path.normpath(joined)
        # 不能先 normpath 再 realpath：normpath 会在跟随链接之前消掉 ".."
        resolved = os.path.realpath(joined)
        if not _is_within(root, lexical) or not _is_within(root, resolved):
            raise PathTraversal(f"符号链接 {entry} 指向目标目录之外: {link_name}")

    def _verify_links(self, root: str) -> None:
        """
        解压完成后重新检查全部符号链接。

        后写入的链接可能改变先写入链接的解析结果，逐条检查不足以发现这种链式越界。

        抛出:
            PathTraversal: 任一符号链接最终解析到目标目录之外
        """
        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                path = os.path.join(dirpath, name)
                if os.path.islink(path) and not _is_within(root, os.path.realpath(path)):
                    entry = os.path.relpath(path, root)
                    raise PathTraversal(f"符号链接 {entry} 经其它链接解析到目标目录之外: {os.readlink(path)}")

    def _write_file(self, source: BinaryIO, target: str, mode: Optional[int]) -> None:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        if os.path.islink(target):
            os.unlink(target)
        with open(target, "wb") as out:
            shutil.copyfileobj(source, out, COPY_BUFFER_SIZE)
        self._apply_mode(target, mode)

    def _write_symlink(self, root: str, target: str, link_name: str, entry: str) -> None:
        self._check_link_target(root, target, link_name, entry)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        if os.path.lexists(target):
            if os.path.isdir(target) and not os.path.islink(target):
                shutil.rmtree(target)
            else:
                os.unlink(target)
        try:
            os.symlink(link_name, target)
        except OSError as e:
            raise ExtractionError(f"无法创建符号链接 {entry} -> {link_name}: {e}") from e

    def _apply_mode(self, target: str, mode: Optional[int]) -> None:
        if not self.restore_permissions or not mode:
            return
        os.chmod(target, mode & 0o777)

    def _extract_tar(
        self,
        archive_path: Path,
        mode: str,
        root: str,
        cancel_token: Optional[CancelToken],
    ) -> None:
        with tarfile.open(archive_path, mode) as tar:
            for member in tar:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                target = self._member_target(root, member.name)
                if target is None:
                    continue

                if member.isdir():
                    os.makedirs(target, exist_ok=True)
                elif member.issym():
                    self._write_symlink(root, target, member.linkname, member.name)
                elif member.islnk():
                    source = self._member_target(root, member.linkname)
                    if source is None or not os.path.isfile(source):
                        raise ExtractionError(f"硬链接 {member.name} 的源文件不存在: {member.linkname}")
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    shutil.copy2(source, target)
                elif member.isfile():
                    fileobj = tar.extractfile(member)
                    if fileobj is None:
                        raise ExtractionError(f"无法读取条目: {member.name}")
                    with fileobj:
                        self._write_file(fileobj, target, member.mode)
                else:
                    logger.debug(f"跳过特殊条目: {member.name}")

    def _extract_zip(
        self,
        archive_path: Path,
        root: str,
        cancel_token: Optional[CancelToken],
    ) -> None:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                target = self._member_target(root, info.filename)
                if target is None:
                    continue

                unix_mode = (info.external_attr >> 16) if info.create_system == 3 else 0

                if info.is_dir():
                    os.makedirs(target, exist_ok=True)
                elif unix_mode and stat.S_ISLNK(unix_mode):
                    link_name = zf.read(info).decode("utf-8")
                    self._write_symlink(root, target, link_name, info.filename)
                else:
                    with zf.open(info) as source:
                        self._write_file(source, target, stat.S_IMODE(unix_mode))
