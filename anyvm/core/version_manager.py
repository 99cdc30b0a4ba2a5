"""
版本管理器模块。

把提供者、下载、解压、标签存储和别名管理串成命令级操作：
安装、离线安装、列出、链接、删除、路径解析和运行。
"""

import os
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import requests

from anyvm.utils.logger import get_logger
from anyvm.utils.input_validator import InputValidator
from anyvm.core.archive_extractor import ArchiveExtractor
from anyvm.core.cancellation import CancelToken
from anyvm.core.config_manager import ConfigManager
from anyvm.core.digest import digest_file, normalize_algorithm, verify
from anyvm.core.download_manager import DownloadManager, ProgressCallback
from anyvm.core.interfaces import DelegateSpec, DownloadInfo, IProvider, Version, VersionSpec
from anyvm.core.link_manager import MODE_COPY, MODE_LINK, AliasInfo, LinkManager
from anyvm.core.tag_store import TagEntry, TagNotFound, TagStore

logger = get_logger()

DEFAULT_ALIAS = "default"
DOWNLOAD_FILE_NAME = "download.part"
EXTRACT_DIR_NAME = "extracted"


class VersionManagerError(Exception):
    """版本管理错误异常。"""
    pass


class TagInUse(VersionManagerError):
    """标签仍被链接别名引用，拒绝删除。"""

    def __init__(self, tag: str, aliases: List[str]):
        self.tag = tag
        self.aliases = aliases
        super().__init__(
            f"标签 '{tag}' 正被别名 {', '.join(aliases)} 使用，请先删除别名或使用 --force"
        )


class NotDelegated(VersionManagerError):
    """提供者不是委托型，或委托型提供者不支持该操作。"""
    pass


class VersionManager:
    """
    版本管理器类。

    针对单个提供者执行一条命令。本类作为协调者，
    把具体工作委托给 TagStore、LinkManager、DownloadManager 和 ArchiveExtractor。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        provider: IProvider,
        cancel_token: Optional[CancelToken] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例
            provider: 工具提供者
            cancel_token: 取消令牌，默认新建（不会被置位）
            session: 下载使用的 requests 会话
        """
        self.config_manager = config_manager
        self.provider = provider
        self.cancel_token = cancel_token or CancelToken()

        self.tag_store = TagStore(config_manager.get_data_path(), provider.name)
        self.link_manager = LinkManager(self.tag_store.aliases_dir, self.tag_store.copies_dir)
        self.download_manager = DownloadManager(
            mirror=config_manager.get_mirror_rewriter(),
            session=session,
            timeout=config_manager.get_request_timeout(),
            chunk_size=config_manager.get_chunk_size(),
        )
        self.extractor = ArchiveExtractor()

    def _require_download_provider(self, operation: str) -> None:
        if self.provider.delegate() is not None:
            raise NotDelegated(
                f"{self.provider.name} 由外部工具管理，不支持 {operation}，请使用 `avm {self.provider.name} ...`"
            )

    def _check_tag(self, tag: str) -> str:
        InputValidator.validate_entry_name(tag, "标签")
        return tag

    def get_downinfo(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> DownloadInfo:
        """
        把版本条件解析为可持久化的下载信息。

        抛出:
            VersionNotFound: 没有符合条件的版本
            NetworkError: 获取远程目录失败
        """
        self._require_download_provider("get-downinfo")
        if spec.version:
            InputValidator.validate_version_string(spec.version)
        return self.provider.resolve_version(spec, platform, flavor)

    def get_versions(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> List[Version]:
        self._require_download_provider("get-vers")
        return self.provider.fetch_versions(spec, platform, flavor)

    def install(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
        update: bool = False,
        set_default: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Tuple[str, Path]:
        """
        下载并安装符合条件的版本。

        参数:
            spec: 版本条件
            platform: 目标平台
            flavor: 变体
            update: 标签已存在时重新安装并替换
            set_default: 安装后把 default 别名链接到该标签
            progress_callback: 下载进度回调

        返回:
            (标签名, 标签目录)

        抛出:
            AlreadyExists: 标签已安装或正在安装
            NetworkError: 网络错误
            DigestMismatch: 摘要不匹配
            Cancelled: 操作被取消
        """
        info = self.get_downinfo(spec, platform, flavor)
        tag = self._check_tag(self.provider.tag_for(info))

        def obtain(staging: Path) -> Path:
            return self.download_manager.fetch(
                info,
                staging / DOWNLOAD_FILE_NAME,
                self.cancel_token,
                progress_callback,
            )

        path = self._install_tag(tag, obtain, info.url, update)
        if set_default:
            self.link(DEFAULT_ALIAS, tag)
        return tag, path

    def install_local(
        self,
        archive: Union[str, Path],
        info: Optional[DownloadInfo] = None,
        tag: Optional[str] = None,
        update: bool = False,
        set_default: bool = False,
    ) -> Tuple[str, Path]:
        """
        从本地压缩包安装，不访问网络。

        参数:
            archive: 已下载的压缩包
            info: get-downinfo 输出的下载信息，用于摘要校验和推导标签
            tag: 显式指定的标签，优先于由 info 推导的标签
            update: 标签已存在时替换
            set_default: 安装后设置 default 别名

        返回:
            (标签名, 标签目录)

        抛出:
            VersionManagerError: 既没有标签也没有下载信息
            DigestMismatch: 摘要不匹配
        """
        self._require_download_provider("install-local")
        archive = Path(archive)
        if not archive.is_file():
            raise VersionManagerError(f"压缩包不存在: {archive}")
        if tag is None:
            if info is None:
                raise VersionManagerError("未提供下载信息时必须用 --tag 指定标签")
            tag = self.provider.tag_for(info)
        tag = self._check_tag(tag)

        if info is not None and info.digest:
            algorithm = normalize_algorithm(info.algorithm)
            computed = digest_file(archive, algorithm, self.config_manager.get_chunk_size())
            verify(computed, info.digest, algorithm)
            logger.debug(f"{algorithm} 校验通过: {computed}")
        else:
            logger.warning(f"{archive} 没有可用的摘要，跳过校验")

        path = self._install_tag(tag, lambda staging: archive, archive.name, update)
        if set_default:
            self.link(DEFAULT_ALIAS, tag)
        return tag, path

    def _install_tag(
        self,
        tag: str,
        obtain: Callable[[Path], Path],
        name_hint: str,
        update: bool,
    ) -> Path:
        """
        预留标签、取得压缩包、解压并提交。

        暂存目录在所有退出路径上都会被删除。
        """
        staging = self.tag_store.reserve(tag, replace=update)
        try:
            archive = obtain(staging)
            self.cancel_token.raise_if_cancelled()
            logger.info(f"正在解压 {archive.name}")
            extracted = self.extractor.extract(
                archive,
                staging / EXTRACT_DIR_NAME,
                self.cancel_token,
                name_hint=name_hint,
            )
            self.provider.post_extract(extracted)
            self.cancel_token.raise_if_cancelled()
            return self.tag_store.commit(tag, extracted, replace=update)
        finally:
            self.tag_store.release(staging)

    def list_tags(self) -> Tuple[List[TagEntry], List[AliasInfo]]:
        """
        列出已安装的标签和全部别名。

        返回:
            (标签列表, 别名列表)；悬空别名会记录警告
        """
        entries = self.tag_store.list(self.link_manager)
        aliases = self.link_manager.list_aliases()
        for alias in aliases:
            if alias.dangling:
                logger.warning(f"别名 '{alias.name}' 指向的标签 '{alias.target_tag}' 已不存在")
        return entries, aliases

    def link(self, name: str, tag: str) -> Path:
        """
        把别名链接到标签（符号链接或目录联接）。

        抛出:
            TagNotFound: 标签不存在
            LinkError: 平台链接原语失败
        """
        return self._set_alias(name, tag, MODE_LINK)

    def copy(self, name: str, tag: str) -> Path:
        """把标签完整复制为一个独立的别名目录。"""
        return self._set_alias(name, tag, MODE_COPY)

    def _set_alias(self, name: str, tag: str, mode: str) -> Path:
        InputValidator.validate_entry_name(name, "别名")
        tag_dir = self.tag_store.require(self._check_tag(tag))
        path = self.link_manager.set_alias(name, mode, tag_dir)
        logger.info(f"别名 '{name}' -> {tag} ({mode})")
        return path

    def unlink(self, name: str) -> None:
        InputValidator.validate_entry_name(name, "别名")
        self.link_manager.remove_alias(name)

    def delete(self, tag: str, force: bool = False) -> List[str]:
        """
        删除标签。

        参数:
            tag: 标签名
            force: 即使有链接别名指向该标签也删除，别名保持悬空

        返回:
            删除后变为悬空的别名

        抛出:
            TagNotFound: 标签不存在
            TagInUse: 有链接别名指向该标签且 force 为 False
        """
        tag_dir = self.tag_store.require(self._check_tag(tag))
        aliases = self.link_manager.aliases_targeting(tag_dir)
        if aliases and not force:
            raise TagInUse(tag, aliases)
        self.tag_store.remove(tag)
        for name in aliases:
            logger.warning(f"别名 '{name}' 现在是悬空的")
        return aliases

    def path(self, name: Optional[str] = None) -> Path:
        """
        把名称解析为安装目录：先查别名，再查标签。

        参数:
            name: 别名或标签，默认 "default"

        抛出:
            DanglingAlias: 别名目标已不存在
            TagNotFound: 既不是别名也不是标签
        """
        name = name or DEFAULT_ALIAS
        InputValidator.validate_entry_name(name, "名称")
        if self.link_manager.get_alias(name) is not None:
            return self.link_manager.resolve(name)
        if self.tag_store.exists(name):
            return self.tag_store.tag_dir(name)
        raise TagNotFound(f"{self.provider.name} 没有名为 '{name}' 的别名或标签")

    def exe_path(self, name: Optional[str] = None) -> Path:
        return self.provider.bin_path(self.path(name))

    def run(self, name: Optional[str], args: Sequence[str]) -> int:
        """
        运行已安装工具的主可执行文件。

        返回:
            子进程退出码
        """
        exe = self.exe_path(name)
        if not exe.exists():
            raise VersionManagerError(f"可执行文件不存在: {exe}")
        logger.debug(f"运行 {exe} {' '.join(args)}")
        return subprocess.call([str(exe), *args])

    def run_delegate(self, args: Sequence[str]) -> int:
        """
        把参数原样转发给外部工具链管理器。

        抛出:
            NotDelegated: 提供者不是委托型
            VersionManagerError: 找不到外部可执行文件
        """
        spec: Optional[DelegateSpec] = self.provider.delegate()
        if spec is None:
            raise NotDelegated(f"{self.provider.name} 不是委托型提供者")
        env = dict(os.environ, **spec.env) if spec.env else None
        logger.debug(f"委托给 {spec.executable} {' '.join(args)}")
        try:
            return subprocess.call([spec.executable, *args], env=env)
        except FileNotFoundError as e:
            raise VersionManagerError(
                f"找不到 {spec.name}: {spec.executable}（可在配置 delegates.{spec.name}.path 中指定）"
            ) from e

    def clean(self, dangling: bool = False) -> Tuple[List[Path], List[str]]:
        """
        清理中断的安装和别名更新留下的临时条目。

        参数:
            dangling: 同时删除悬空别名

        返回:
            (已删除的临时路径, 已删除的悬空别名)
        """
        removed = self.tag_store.clean_staging() + self.link_manager.clean_staging()
        removed_aliases = self.link_manager.remove_dangling() if dangling else []
        return removed, removed_aliases
