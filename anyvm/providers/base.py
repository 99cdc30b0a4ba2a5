"""
基于远程目录的提供者基类。

获取目录、按平台筛选、选出最新版本并构造 DownloadInfo 的流程对所有
下载型提供者都一样，子类只需实现 fetch_releases 和 build_download_info。
每次调用都重新获取远程目录，不跨进程缓存。
"""

from abc import abstractmethod
from typing import Any, Dict, List, Optional

import requests

from anyvm.utils.logger import get_logger
from anyvm.core.download_manager import DEFAULT_TIMEOUT, NetworkError, create_session
from anyvm.core.interfaces import (
    DownloadInfo,
    IProvider,
    ProviderError,
    Version,
    VersionNotFound,
    VersionSpec,
)
from anyvm.core import version_utils
from anyvm.core.version_utils import Release
from anyvm.providers.platforms import current_platform

logger = get_logger()


class CatalogProvider(IProvider):
    """
    下载型提供者基类。

    platform_map 把平台字符串映射到上游目录的平台描述，由子类定义。
    """

    platform_map: Dict[str, Any] = {}

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        """
        初始化提供者。

        参数:
            session: requests 会话，默认新建
            timeout: 请求超时（秒）
        """
        self.session = session or create_session()
        self.timeout = timeout

    @property
    def platforms(self) -> List[str]:
        return list(self.platform_map)

    @property
    def default_platform(self) -> Optional[str]:
        current = current_platform()
        return current if current in self.platform_map else None

    def resolve_platform(self, platform: Optional[str]) -> str:
        """
        确定目标平台。

        抛出:
            ProviderError: 未指定平台且当前平台不受支持，或平台无效
        """
        platform = platform or self.default_platform
        if platform is None:
            raise ProviderError(self.name, "resolve_platform", "当前平台不受支持，请用 --platform 指定")
        if platform not in self.platform_map:
            raise ProviderError(
                self.name,
                "resolve_platform",
                f"不支持的平台 '{platform}'（可选: {', '.join(self.platforms)}）",
            )
        return platform

    def resolve_flavor(self, flavor: Optional[str]) -> Optional[str]:
        if not self.flavors:
            if flavor:
                raise ProviderError(self.name, "resolve_flavor", "该工具没有 flavor 选项")
            return None
        flavor = flavor or self.default_flavor
        if flavor not in self.flavors:
            raise ProviderError(
                self.name,
                "resolve_flavor",
                f"不支持的 flavor '{flavor}'（可选: {', '.join(self.flavors)}）",
            )
        return flavor

    def _request(self, url: str, operation: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        logger.debug(f"[{self.name}] 请求 {url} {params or ''}")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"[{self.name}] {operation} 请求 {url} 失败: {e}") from e
        return response

    def get_json(self, url: str, operation: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._request(url, operation, params)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(self.name, operation, f"{url} 返回的不是合法 JSON: {e}") from e

    def get_text(self, url: str, operation: str) -> str:
        return self._request(url, operation).text

    @abstractmethod
    def fetch_releases(self, spec: VersionSpec, platform: str, flavor: Optional[str]) -> List[Release]:
        """获取远程目录中该平台可用的全部发布。"""
        pass

    @abstractmethod
    def build_download_info(self, release: Release, platform: str, flavor: Optional[str]) -> DownloadInfo:
        """为选中的发布构造下载信息（url 和摘要）。"""
        pass

    def local_filter(self, spec: VersionSpec, flavor: Optional[str]) -> VersionSpec:
        """本地筛选使用的条件；上游已按条件过滤时子类可放宽。"""
        return spec

    def fetch_versions(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> List[Version]:
        platform = self.resolve_platform(platform)
        flavor = self.resolve_flavor(flavor)
        releases = self.fetch_releases(spec, platform, flavor)
        return version_utils.to_versions(version_utils.filter_releases(releases, self.local_filter(spec, flavor)))

    def resolve_version(
        self,
        spec: VersionSpec,
        platform: Optional[str] = None,
        flavor: Optional[str] = None,
    ) -> DownloadInfo:
        """
        把版本条件解析为下载信息。

        参数:
            spec: 版本条件
            platform: 目标平台，默认当前平台
            flavor: 变体，默认 default_flavor

        返回:
            带有 version、platform、flavor 元数据的 DownloadInfo

        抛出:
            VersionNotFound: 没有符合条件的版本
            NetworkError: 获取远程目录失败
        """
        platform = self.resolve_platform(platform)
        flavor = self.resolve_flavor(flavor)
        releases = self.fetch_releases(spec, platform, flavor)
        release = version_utils.select_latest(releases, self.local_filter(spec, flavor))
        if release is None:
            raise VersionNotFound(self.name, spec, f"平台 {platform}")

        info = self.build_download_info(release, platform, flavor)
        info.version = release.version
        info.platform = platform
        info.flavor = flavor
        logger.info(f"[{self.name}] {spec.describe()} 解析为 {release.version} ({platform})")
        return info
