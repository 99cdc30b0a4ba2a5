"""
别名链接管理模块。

别名是数据目录下的稳定路径，指向某个标签的安装目录。
link 模式在类 Unix 系统上使用目录符号链接，在 Windows 上使用目录联接（junction）；
copy 模式先把标签目录完整复制为 copies 目录下的独立副本，别名再链接到这个副本。

每个别名条目因此都是一个链接。更新总是先在同一父目录下以临时名构建新链接，
再用一次 os.replace 覆盖旧链接：并发读取者只会看到旧目标或新目标，
进程在任何时刻中断，留下的要么是旧别名，要么是完整的新别名。
"""

import errno
import os
import shutil
import stat
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from anyvm.utils.logger import get_logger
from anyvm.utils.input_validator import InputValidator, TMP_PREFIX

IS_WINDOWS = sys.platform == "win32"

if IS_WINDOWS:
    import _winapi

logger = get_logger()

MODE_LINK = "link"
MODE_COPY = "copy"
ALIAS_MODES = (MODE_LINK, MODE_COPY)

COPIES_DIR_NAME = "copies"

# 新链接：.tmp.new.<name>.<hex>；被替换下来的旧条目：.tmp.old.<name>.<hex>
STAGING_LABEL = "new"
BACKUP_LABEL = "old"


class LinkManagerError(Exception):
    """别名管理错误异常基类。"""
    pass


class LinkError(LinkManagerError):
    """平台链接原语或文件系统操作失败异常，附带修复建议。"""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.hint = hint
        super().__init__(message)


class AliasNotFound(LinkManagerError):
    """别名不存在异常。"""
    pass


class DanglingAlias(LinkManagerError):
    """别名目标已不存在（非致命）。"""

    def __init__(self, name: str, target: Optional[Path]):
        self.name = name
        self.target = target
        super().__init__(f"别名 '{name}' 指向的目标已不存在: {target}")


@dataclass
class AliasInfo:
    """
    别名的当前状态。

    link 模式下 target 是标签目录；copy 模式下 target 为 None，
    payload 是别名独占的副本目录（旧版本留下的普通目录副本没有 payload）。
    """

    name: str
    path: Path
    mode: str
    target: Optional[Path] = None
    dangling: bool = False
    payload: Optional[Path] = None

    @property
    def target_tag(self) -> Optional[str]:
        return self.target.name if self.target is not None else None


def is_junction(path: Union[str, Path]) -> bool:
    """判断路径是否为 Windows 目录联接。"""
    isjunction = getattr(os.path, "isjunction", None)
    if isjunction is not None:
        return isjunction(path)
    if not IS_WINDOWS:
        return False
    try:
        st = os.lstat(path)
    except OSError:
        return False
    return getattr(st, "st_reparse_tag", 0) == stat.IO_REPARSE_TAG_MOUNT_POINT


def is_link(path: Union[str, Path]) -> bool:
    return os.path.islink(path) or is_junction(path)


def remove_entry(path: Union[str, Path]) -> None:
    """
    删除一个别名条目，链接只删除链接本身，不跟随到目标。

    参数:
        path: 要删除的路径
    """
    if is_junction(path):
        os.rmdir(path)
    elif os.path.islink(path):
        os.unlink(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)


def _delete_entry(path: Union[str, Path]) -> None:
    try:
        remove_entry(path)
    except OSError as e:
        raise LinkError(f"无法删除 {path}: {e}", hint=_copy_hint(e)) from e


def _same_path(a: Union[str, Path], b: Union[str, Path]) -> bool:
    if os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b)):
        return True
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def _backup_owner(entry: str) -> Optional[str]:
    """从 .tmp.old.<name>.<hex> 取出别名 name，其它条目返回 None。"""
    prefix = f"{TMP_PREFIX}{BACKUP_LABEL}."
    if not entry.startswith(prefix):
        return None
    name, sep, _ = entry[len(prefix):].rpartition(".")
    return name if sep and name else None


def _link_hint(error: OSError) -> str:
    if error.errno in (errno.EPERM, errno.EACCES):
        if IS_WINDOWS:
            return "权限不足：请确认对数据目录有写权限，或改用 copy 模式"
        return "权限不足：请检查别名目录的写权限，或改用 copy 模式"
    if IS_WINDOWS:
        return "目录联接要求目标和别名位于同一台机器的本地 NTFS 卷上；也可以改用 copy 模式"
    return "请确认文件系统支持符号链接；也可以改用 copy 模式"


def _copy_hint(error: OSError) -> str:
    if error.errno in (errno.EPERM, errno.EACCES):
        return "权限不足：请检查数据目录的写权限"
    if error.errno == errno.ENOSPC:
        return "磁盘空间不足：请清理磁盘，或改用 link 模式"
    return "请检查数据目录所在磁盘的空间和权限，或改用 link 模式"


class LinkManager:
    """
    别名管理器类。

    独占管理 <data>/<provider>/aliases 目录下的条目，
    以及 copy 模式别名使用的 <data>/<provider>/copies 副本目录。
    """

    def __init__(self, aliases_dir: Union[str, Path], copies_dir: Union[str, Path, None] = None):
        """
        初始化别名管理器。

        参数:
            aliases_dir: 别名目录
            copies_dir: copy 模式的副本目录，默认与别名目录同级的 copies
        """
        self.aliases_dir = Path(aliases_dir)
        if copies_dir is None:
            copies_dir = self.aliases_dir.parent / COPIES_DIR_NAME
        self.copies_dir = Path(os.path.abspath(copies_dir))

    def alias_path(self, name: str) -> Path:
        InputValidator.validate_entry_name(name, "别名")
        return self.aliases_dir / name

    def _staging_path(self, label: str, name: str) -> Path:
        return self.aliases_dir / f"{TMP_PREFIX}{label}.{name}.{uuid.uuid4().hex[:8]}"

    def set_alias(self, name: str, mode: str, target_tag_dir: Union[str, Path]) -> Path:
        """
        创建或原子更新别名。

        参数:
            name: 别名
            mode: MODE_LINK 或 MODE_COPY
            target_tag_dir: 目标标签目录

        返回:
            别名路径

        抛出:
            LinkError: 目标不存在，或平台链接、复制、重命名操作失败
            InputValidationError: 别名无效
        """
        if mode not in ALIAS_MODES:
            raise LinkManagerError(f"未知的别名模式: {mode}")

        alias_path = self.alias_path(name)
        target = Path(os.path.abspath(target_tag_dir))
        if not target.is_dir():
            raise LinkError(f"别名目标目录不存在: {target}")

        previous = self.get_alias(name)
        try:
            self.aliases_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LinkError(f"无法创建别名目录 {self.aliases_dir}: {e}", hint=_copy_hint(e)) from e
        staging = self._staging_path(STAGING_LABEL, name)
        payload = None
        logger.debug(f"在 {staging} 构建别名 '{name}' ({mode}) -> {target}")

        try:
            if mode == MODE_LINK:
                self._create_link(target, staging)
            else:
                payload = self._copy_payload(name, target)
                self._create_link(payload, staging)
            self._swap_into_place(staging, alias_path)
        except BaseException:
            if os.path.lexists(staging):
                remove_entry(staging)
            if payload is not None and not self._points_to(name, payload):
                self._remove_payload(payload)
            raise

        if previous is not None and previous.payload is not None:
            self._remove_payload(previous.payload)

        logger.info(f"别名 '{name}' 已指向 {target} ({mode})")
        return alias_path

    def _create_link(self, target: Path, link_path: Path) -> None:
        try:
            if IS_WINDOWS:
                _winapi.CreateJunction(str(target), str(link_path))
            else:
                os.symlink(str(target), str(link_path), target_is_directory=True)
        except OSError as e:
            raise LinkError(f"无法创建链接 {link_path} -> {target}: {e}", hint=_link_hint(e)) from e

    def _copy_payload(self, name: str, target: Path) -> Path:
        payload = self.copies_dir / f"{name}.{uuid.uuid4().hex[:8]}"
        try:
            self.copies_dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(target, payload, symlinks=True)
        except OSError as e:
            # shutil.Error 也是 OSError
            shutil.rmtree(payload, ignore_errors=True)
            raise LinkError(f"无法复制 {target} 到 {payload}: {e}", hint=_copy_hint(e)) from e
        return payload

    def _remove_payload(self, payload: Path) -> None:
        shutil.rmtree(payload, ignore_errors=True)
        if os.path.lexists(payload):
            logger.warning(f"无法删除别名副本 {payload}，可稍后运行 clean 清理")

    def _points_to(self, name: str, payload: Path) -> bool:
        info = self.get_alias(name)
        return info is not None and info.payload is not None and _same_path(info.payload, payload)

    def _swap_into_place(self, new_entry: Path, alias_path: Path) -> None:
        """
        用 new_entry 替换 alias_path。

        链接覆盖链接只需一次 os.replace。Windows 的目录联接和旧版本留下的
        普通目录副本不能被直接覆盖，此时先把旧条目改名为 .tmp.old.<name>.<hex>
        再移入新条目；两次改名之间中断时，clean_staging 会把旧条目恢复回来。
        """
        try:
            os.replace(new_entry, alias_path)
            return
        except OSError as e:
            if not os.path.lexists(alias_path) or (is_link(alias_path) and not is_junction(alias_path)):
                raise LinkError(f"无法重命名 {new_entry} 到 {alias_path}: {e}", hint=_link_hint(e)) from e
            logger.debug(f"无法直接替换 {alias_path} ({e})，改用两步替换")

        backup = self._staging_path(BACKUP_LABEL, alias_path.name)
        try:
            os.replace(alias_path, backup)
        except OSError as e:
            raise LinkError(f"无法移走旧别名 {alias_path}: {e}", hint=_link_hint(e)) from e

        try:
            os.replace(new_entry, alias_path)
        except BaseException as e:
            os.replace(backup, alias_path)
            if isinstance(e, OSError):
                raise LinkError(f"无法替换别名 {alias_path}: {e}", hint=_link_hint(e)) from e
            raise

        try:
            remove_entry(backup)
        except OSError as e:
            logger.warning(f"无法删除旧别名 {backup}: {e}")

    def _read_target(self, path: Path) -> Path:
        raw = os.readlink(path)
        if raw.startswith("\\\\?\\"):
            raw = raw[4:]
        target = Path(raw)
        if not target.is_absolute():
            target = Path(os.path.normpath(path.parent / target))
        return target

    def _is_payload(self, path: Path) -> bool:
        return _same_path(path.parent, self.copies_dir)

    def get_alias(self, name: str) -> Optional[AliasInfo]:
        """
        读取别名当前状态。

        参数:
            name: 别名

        返回:
            AliasInfo；别名不存在时返回 None
        """
        path = self.alias_path(name)
        if not os.path.lexists(path):
            return None
        if not is_link(path):
            return AliasInfo(name, path, MODE_COPY)
        target = self._read_target(path)
        if self._is_payload(target):
            return AliasInfo(name, path, MODE_COPY, dangling=not target.is_dir(), payload=target)
        return AliasInfo(name, path, MODE_LINK, target, dangling=not target.is_dir())

    def list_aliases(self) -> List[AliasInfo]:
        if not self.aliases_dir.is_dir():
            return []
        aliases = []
        for name in sorted(os.listdir(self.aliases_dir)):
            if name.startswith(TMP_PREFIX):
                continue
            info = self.get_alias(name)
            if info is not None:
                aliases.append(info)
        return aliases

    def aliases_targeting(self, tag_dir: Union[str, Path]) -> List[str]:
        """
        返回当前链接到 tag_dir 的别名名称。

        copy 模式的别名与来源标签互不依赖，不计入结果。
        """
        return [
            info.name
            for info in self.list_aliases()
            if info.mode == MODE_LINK and info.target is not None and _same_path(info.target, tag_dir)
        ]

    def resolve(self, name: str) -> Path:
        """
        解析别名为可用路径。

        抛出:
            AliasNotFound: 别名不存在
            DanglingAlias: 别名目标已被删除
        """
        info = self.get_alias(name)
        if info is None:
            raise AliasNotFound(f"别名不存在: {name}")
        if info.dangling:
            raise DanglingAlias(name, info.target or info.payload)
        return info.path

    def remove_alias(self, name: str) -> None:
        """
        删除别名；copy 模式的副本随别名一起删除，标签本身不受影响。

        抛出:
            AliasNotFound: 别名不存在
            LinkError: 文件系统拒绝删除
        """
        info = self.get_alias(name)
        if info is None:
            raise AliasNotFound(f"别名不存在: {name}")
        _delete_entry(info.path)
        if info.payload is not None:
            self._remove_payload(info.payload)
        logger.info(f"已删除别名 '{name}'")

    def remove_dangling(self) -> List[str]:
        removed = []
        for info in self.list_aliases():
            if info.dangling:
                _delete_entry(info.path)
                removed.append(info.name)
                logger.info(f"已删除悬空别名 '{info.name}'")
        return removed

    def clean_staging(self) -> List[Path]:
        """
        清理中断的别名更新留下的临时条目。

        两步替换中断后别名缺失而旧条目仍在时，把旧条目改回别名而不是删除它。
        没有任何别名引用的 copy 副本也一并删除。
        只应在没有并发别名更新时调用。

        返回:
            已删除的路径
        """
        removed = []
        if self.aliases_dir.is_dir():
            for entry in sorted(os.listdir(self.aliases_dir)):
                if not entry.startswith(TMP_PREFIX):
                    continue
                path = self.aliases_dir / entry
                owner = _backup_owner(entry)
                if owner is not None and not os.path.lexists(self.aliases_dir / owner):
                    try:
                        os.replace(path, self.aliases_dir / owner)
                    except OSError as e:
                        raise LinkError(f"无法从 {path} 恢复别名 '{owner}': {e}", hint=_copy_hint(e)) from e
                    logger.warning(f"已从 {path} 恢复别名 '{owner}'")
                    continue
                _delete_entry(path)
                removed.append(path)
                logger.info(f"已清理临时别名条目: {path}")
        removed.extend(self._collect_payloads())
        return removed

    def _collect_payloads(self) -> List[Path]:
        if not self.copies_dir.is_dir():
            return []
        in_use = {
            os.path.normcase(os.path.abspath(info.payload))
            for info in self.list_aliases()
            if info.payload is not None
        }
        removed = []
        for entry in sorted(os.listdir(self.copies_dir)):
            path = self.copies_dir / entry
            if os.path.normcase(os.path.abspath(path)) in in_use:
                continue
            _delete_entry(path)
            removed.append(path)
            logger.info(f"已清理无人引用的别名副本: {path}")
        return removed
