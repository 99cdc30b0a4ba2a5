"""
rustup 委托提供者。

Rust 工具链由用户已安装的 rustup 管理，anyvm 只负责找到 rustup 并原样转发参数，
不经过下载、解压和标签存储流程。
"""

import os
from typing import List, Optional

from anyvm.core.interfaces import DelegateSpec, DownloadInfo, IProvider, ProviderError, Version, VersionSpec

RUSTUP_PATH_ENV = "RUSTUP_PATH"
DEFAULT_EXECUTABLE = "rustup"


class RustupProvider(IProvider):
    """Rust 工具链（委托给 rustup）。"""

    name = "rustup"
    about = "Rust toolchains, delegated to an installed rustup"

    def __init__(self, path_override: Optional[str] = None):
        """
        参数:
            path_override: 配置中的 delegates.rustup.path
        """
        self.path_override = path_override

    def resolve_executable(self) -> str:
        """按 配置 -> 环境变量 RUSTUP_PATH -> PATH 中的 rustup 的顺序确定可执行文件。"""
        if self.path_override:
            return self.path_override
        return os.environ.get(RUSTUP_PATH_ENV) or DEFAULT_EXECUTABLE

    def delegate(self) -> Optional[DelegateSpec]:
        return DelegateSpec(name=self.name, executable=self.resolve_executable())

    def fetch_versions(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> List[Version]:
        raise ProviderError(self.name, "fetch_versions", "请直接使用 rustup 管理工具链")

    def resolve_version(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> DownloadInfo:
        raise ProviderError(self.name, "resolve_version", "请直接使用 rustup 管理工具链")
