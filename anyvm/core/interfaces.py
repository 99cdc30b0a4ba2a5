"""
核心模块抽象接口定义。

定义工具提供者（provider）接口，以及引擎各模块之间传递的数据记录：
DownloadInfo、VersionSpec、Version 和 DelegateSpec。
"""

import os
import sys
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from anyvm.utils.logger import get_logger
from anyvm.utils.input_validator import TMP_PREFIX, InputValidationError, InputValidator

logger = get_logger()

IS_WINDOWS = sys.platform == "win32"


class ProviderError(Exception):
    """提供者在解析或解压后处理阶段的失败，附带提供者名称和操作名。"""

    def __init__(self, provider: str, operation: str, message: str):
        self.provider = provider
        self.operation = operation
        super().__init__(f"[{provider}] {operation} 失败: {message}")


class VersionNotFound(ProviderError):
    """没有符合条件的版本。"""

    def __init__(self, provider: str, spec: "VersionSpec", detail: str = ""):
        self.spec = spec
        message = f"没有符合 {spec.describe()} 的版本"
        if detail:
            message = f"{message}（{detail}）"
        super().__init__(provider, "resolve_version", message)


@dataclass
class DownloadInfo:
    """
    一个可下载制品的描述。

    既是提供者解析结果，也是 get-downinfo / install-local 离线流程
    可持久化的单位。digest 为 None 表示上游未提供校验值。
    """

    url: str
    digest: Optional[str] = None
    algorithm: Optional[str] = None
    size: Optional[int] = None
    version: str = ""
    platform: Optional[str] = None
    flavor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DownloadInfo":
        """
        从字典构建 DownloadInfo，忽略未知字段。

        抛出:
            ValueError: 缺少 url 或摘要字段不完整时抛出
        """
        if not isinstance(data, dict) or not data.get("url"):
            raise ValueError("DownloadInfo 缺少 url 字段")
        if bool(data.get("digest")) != bool(data.get("algorithm")):
            raise ValueError("DownloadInfo 的 digest 和 algorithm 必须同时提供")
        if data.get("digest"):
            try:
                InputValidator.validate_hex_digest(data["digest"])
            except InputValidationError as e:
                raise ValueError(str(e)) from e
        size = data.get("size")
        return cls(
            url=data["url"],
            digest=data.get("digest"),
            algorithm=data.get("algorithm"),
            size=int(size) if size is not None else None,
            version=str(data.get("version") or ""),
            platform=data.get("platform"),
            flavor=data.get("flavor"),
        )


@dataclass
class VersionSpec:
    """
    版本选择条件。

    version 不为空时为精确版本；否则 major 不为空时为该主版本下的最新版本；
    两者都为空时为最新版本。lts_only 进一步限制为长期支持版本。
    """

    version: Optional[str] = None
    major: Optional[str] = None
    lts_only: bool = False

    @property
    def is_explicit(self) -> bool:
        return bool(self.version)

    def describe(self) -> str:
        if self.version:
            text = f"版本 {self.version}"
        elif self.major:
            text = f"主版本 {self.major} 的最新版本"
        else:
            text = "最新版本"
        return f"{text}（仅 LTS）" if self.lts_only else text


@dataclass
class Version:
    """远程目录中的一个版本。"""

    version: str
    major: str
    lts: bool = False


@dataclass
class DelegateSpec:
    """委托给外部工具链管理器时的可执行文件信息。"""

    name: str
    executable: str
    env: Dict[str, str] = field(default_factory=dict)


def flatten_single_directory(tag_dir: Path) -> bool:
    """
    若目录中只有一个子目录，则把该子目录的内容上移一层。

    上游压缩包通常带一层顶层目录（如 go/、node-v20.1.0-linux-x64/）。

    参数:
        tag_dir: 解压得到的目录

    返回:
        发生了上移返回 True
    """
    entries = list(tag_dir.iterdir())
    if len(entries) != 1:
        return False
    nested = entries[0]
    if nested.is_symlink() or not nested.is_dir():
        return False

    # 子目录可能含有与自身同名的条目，先改名再上移
    holder = tag_dir / f"{TMP_PREFIX}flatten.{uuid.uuid4().hex[:8]}"
    os.rename(nested, holder)
    for child in list(holder.iterdir()):
        os.rename(child, tag_dir / child.name)
    holder.rmdir()
    logger.debug(f"已展开顶层目录 {nested.name}")
    return True


class IProvider(ABC):
    """
    工具提供者抽象接口。

    提供者是无状态的：除每次调用时读取的远程目录外不持有任何可变状态。
    """

    name: str = ""
    about: str = ""
    platforms: List[str] = []
    flavors: List[str] = []
    default_flavor: Optional[str] = None

    @property
    def default_platform(self) -> Optional[str]:
        """当前机器对应的平台字符串，不受支持时为 None。"""
        return None

    @abstractmethod
    def fetch_versions(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> List[Version]:
        """列出远程目录中符合条件的版本（升序）。"""
        pass

    @abstractmethod
    def resolve_version(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> DownloadInfo:
        """把版本条件解析为具体的下载信息，找不到时抛出 VersionNotFound。"""
        pass

    def tag_for(self, info: DownloadInfo) -> str:
        """
        由下载信息确定性地推导标签名。

        参数:
            info: 下载信息

        返回:
            "<version>-<platform>"，有 flavor 时追加 "-<flavor>"
        """
        if not info.version:
            raise ProviderError(self.name, "tag_for", "下载信息缺少版本号")
        parts = [info.version]
        if info.platform:
            parts.append(info.platform)
        if info.flavor:
            parts.append(info.flavor)
        return "-".join(parts)

    def post_extract(self, tag_dir: Path) -> None:
        """解压后处理，默认展开单一顶层目录。"""
        try:
            flatten_single_directory(tag_dir)
        except OSError as e:
            raise ProviderError(self.name, "post_extract", str(e)) from e

    def delegate(self) -> Optional[DelegateSpec]:
        """委托型提供者返回 DelegateSpec，其余返回 None。"""
        return None

    def bin_path(self, tag_dir: Path) -> Path:
        """返回标签目录中主可执行文件的路径。"""
        raise ProviderError(self.name, "bin_path", "该工具没有主可执行文件")

    @staticmethod
    def executable_name(name: str) -> str:
        return f"{name}.exe" if IS_WINDOWS else name
