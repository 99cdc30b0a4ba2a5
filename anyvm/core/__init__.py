"""
anyvm 核心模块。

包含下载、校验、解压、标签存储、别名管理和命令级编排。
"""

from .cancellation import Cancelled, CancelToken
from .config_manager import ConfigManager
from .interfaces import DelegateSpec, DownloadInfo, IProvider, Version, VersionSpec
from .version_manager import DEFAULT_ALIAS, TagInUse, VersionManager, VersionManagerError

__all__ = [
    "Cancelled",
    "CancelToken",
    "ConfigManager",
    "DelegateSpec",
    "DownloadInfo",
    "IProvider",
    "Version",
    "VersionSpec",
    "DEFAULT_ALIAS",
    "TagInUse",
    "VersionManager",
    "VersionManagerError",
]
