"""
标签存储模块。

管理 <data>/<provider>/tags/<tag> 目录布局。安装过程使用
tags/.tmp.<tag> 作为暂存目录，该目录的原子创建就是并发安装之间唯一的互斥点。
"""

import os
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from anyvm.utils.logger import get_logger
from anyvm.utils.input_validator import InputValidator, TMP_PREFIX
from anyvm.core.link_manager import COPIES_DIR_NAME, LinkManager

logger = get_logger()

TAGS_DIR_NAME = "tags"
ALIASES_DIR_NAME = "aliases"


class TagStoreError(Exception):
    """标签存储错误异常基类。"""
    pass


class AlreadyExists(TagStoreError):
    """标签已安装或正在安装（提示性错误）。"""

    def __init__(self, tag: str, installing: bool = False):
        self.tag = tag
        self.installing = installing
        state = "正在安装" if installing else "已存在"
        super().__init__(f"标签 '{tag}' {state}")


class TagNotFound(TagStoreError):
    """标签不存在异常。"""
    pass


class TagStorageError(TagStoreError):
    """标签目录的移动或删除失败异常。"""
    pass


@dataclass
class TagEntry:
    """一个已安装标签及当前链接到它的别名。"""

    tag: str
    path: Path
    aliases: List[str] = field(default_factory=list)


class TagStore:
    """
    标签存储类。

    独占管理某个提供者的 tags 目录。
    """

    def __init__(self, data_path: Union[str, Path], provider_name: str):
        """
        初始化标签存储。

        参数:
            data_path: 数据根目录
            provider_name: 提供者名称
        """
        InputValidator.validate_tool_name(provider_name)
        self.provider_name = provider_name
        self.provider_dir = Path(data_path) / provider_name
        self.tags_dir = self.provider_dir / TAGS_DIR_NAME
        self.aliases_dir = self.provider_dir / ALIASES_DIR_NAME
        self.copies_dir = self.provider_dir / COPIES_DIR_NAME

    def tag_dir(self, tag: str) -> Path:
        InputValidator.validate_entry_name(tag, "标签")
        return self.tags_dir / tag

    def staging_dir(self, tag: str) -> Path:
        InputValidator.validate_entry_name(tag, "标签")
        return self.tags_dir / f"{TMP_PREFIX}{tag}"

    def exists(self, tag: str) -> bool:
        return self.tag_dir(tag).is_dir()

    def require(self, tag: str) -> Path:
        path = self.tag_dir(tag)
        if not path.is_dir():
            raise TagNotFound(f"{self.provider_name} 标签不存在: {tag}")
        return path

    def list_tags(self) -> List[str]:
        if not self.tags_dir.is_dir():
            return []
        return sorted(
            name for name in os.listdir(self.tags_dir)
            if not name.startswith(TMP_PREFIX) and (self.tags_dir / name).is_dir()
        )

    def list(self, link_manager: Optional[LinkManager] = None) -> List[TagEntry]:
        """
        列出全部标签，以及每个标签当前被哪些链接别名指向。

        参数:
            link_manager: 别名管理器，为 None 时不统计别名

        返回:
            TagEntry 列表，按标签名排序
        """
        entries = [TagEntry(tag, self.tags_dir / tag) for tag in self.list_tags()]
        if link_manager is not None:
            for entry in entries:
                entry.aliases = link_manager.aliases_targeting(entry.path)
        return entries

    def reserve(self, tag: str, replace: bool = False) -> Path:
        """
        为安装预留标签：原子创建暂存目录。

        参数:
            tag: 标签名
            replace: 为 True 时允许标签已存在（--update）

        返回:
            暂存目录路径

        抛出:
            AlreadyExists: 标签已存在（且 replace 为 False）或另一个安装正在进行
        """
        if not replace and self.exists(tag):
            raise AlreadyExists(tag)

        staging = self.staging_dir(tag)
        self.tags_dir.mkdir(parents=True, exist_ok=True)
        try:
            staging.mkdir()
        except FileExistsError as e:
            raise AlreadyExists(tag, installing=True) from e

        logger.debug(f"已预留标签 {tag}: {staging}")
        return staging

    def commit(self, tag: str, source_dir: Union[str, Path], replace: bool = False) -> Path:
        """
        把完整的安装目录移入标签位置。

        参数:
            tag: 标签名
            source_dir: 已解压并完成后处理的目录（须与 tags 目录在同一文件系统）
            replace: 为 True 时替换已存在的标签

        返回:
            标签目录路径

        抛出:
            AlreadyExists: 标签已存在且 replace 为 False
            TagStorageError: 文件系统拒绝移动目录
        """
        target = self.tag_dir(tag)
        if os.path.lexists(target):
            if not replace:
                raise AlreadyExists(tag)
            backup = self.tags_dir / f"{TMP_PREFIX}old.{tag}.{uuid.uuid4().hex[:8]}"
            try:
                os.replace(target, backup)
            except OSError as e:
                raise TagStorageError(f"无法移走旧标签 {target}: {e}") from e
            try:
                os.replace(source_dir, target)
            except BaseException as e:
                os.replace(backup, target)
                if isinstance(e, OSError):
                    raise TagStorageError(f"无法把 {source_dir} 移动到 {target}: {e}") from e
                raise
            shutil.rmtree(backup, ignore_errors=True)
        else:
            try:
                os.rename(source_dir, target)
            except FileExistsError as e:
                raise AlreadyExists(tag) from e
            except OSError as e:
                if os.path.isdir(target) and any(target.iterdir()):
                    raise AlreadyExists(tag) from e
                raise TagStorageError(f"无法把 {source_dir} 移动到 {target}: {e}") from e

        logger.info(f"标签 {tag} 已安装到 {target}")
        return target

    def release(self, staging: Union[str, Path]) -> None:
        """删除暂存目录（安装结束时总是调用）。"""
        shutil.rmtree(staging, ignore_errors=True)
        if os.path.lexists(staging):
            logger.error(f"无法删除暂存目录: {staging}")

    def remove(self, tag: str) -> None:
        """
        删除标签目录。

        抛出:
            TagNotFound: 标签不存在
            TagStorageError: 文件系统拒绝删除（目录可能已被部分删除）
        """
        path = self.require(tag)
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise TagStorageError(f"无法删除标签 {tag}: {e}") from e
        logger.info(f"已删除标签 {tag}")

    def clean_staging(self) -> List[Path]:
        """
        删除中断的安装留下的暂存目录。

        正在进行的安装也使用暂存目录，只应在没有并发安装时调用。
        """
        if not self.tags_dir.is_dir():
            return []
        removed = []
        for name in os.listdir(self.tags_dir):
            if name.startswith(TMP_PREFIX):
                path = self.tags_dir / name
                shutil.rmtree(path, ignore_errors=True)
                removed.append(path)
                logger.info(f"已清理暂存目录: {path}")
        return removed
