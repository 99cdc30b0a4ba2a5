"""
Node.js 提供者。

版本目录来自 https://nodejs.org/dist/index.json，
sha256 摘要从对应版本目录下的 SHASUMS256.txt 读取。
"""

from pathlib import Path
from typing import List, Optional, Tuple

from anyvm.utils.logger import get_logger
from anyvm.core.interfaces import IS_WINDOWS, DownloadInfo, ProviderError, VersionSpec
from anyvm.core.version_utils import Release
from anyvm.providers.base import CatalogProvider
from anyvm.providers import platforms as p

logger = get_logger()

DIST_URL = "https://nodejs.org/dist/"


def parse_node_version(value: str) -> Tuple[str, tuple]:
    """
    解析 Node.js 版本字符串。

    参数:
        value: 例如 "v20.1.0"

    返回:
        (去掉 v 前缀的版本号, (major, minor, patch))

    抛出:
        ValueError: 不是三段数字版本
    """
    raw = value[1:] if value.startswith("v") else value
    parts = raw.split(".")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise ValueError(f"无效的 Node.js 版本: {value!r}")
    return raw, tuple(int(part) for part in parts)


def find_sha256(shasums: str, file_name: str) -> Optional[str]:
    """在 SHASUMS256.txt 内容中查找文件的摘要。"""
    for line in shasums.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[1] == file_name:
            return fields[0]
    return None


class NodeProvider(CatalogProvider):
    """Node.js JavaScript 运行时。"""

    name = "node"
    about = "Node.js JavaScript runtime"

    # 平台 -> (index.json files 字段中的名称, 发布文件后缀)
    platform_map = {
        p.create_platform_string(p.X64, p.LINUX): ("linux-x64", "linux-x64.tar.xz"),
        p.create_platform_string(p.X86, p.LINUX): ("linux-x86", "linux-x86.tar.xz"),
        p.create_platform_string(p.ARM64, p.LINUX): ("linux-arm64", "linux-arm64.tar.xz"),
        p.create_platform_string(p.ARMV6L, p.LINUX): ("linux-armv6l", "linux-armv6l.tar.xz"),
        p.create_platform_string(p.ARMV7L, p.LINUX): ("linux-armv7l", "linux-armv7l.tar.xz"),
        p.create_platform_string(p.PPC64LE, p.LINUX): ("linux-ppc64le", "linux-ppc64le.tar.xz"),
        p.create_platform_string(p.S390X, p.LINUX): ("linux-s390x", "linux-s390x.tar.xz"),
        p.create_platform_string(p.X64, p.WIN): ("win-x64-zip", "win-x64.zip"),
        p.create_platform_string(p.X86, p.WIN): ("win-x86-zip", "win-x86.zip"),
        p.create_platform_string(p.ARM64, p.WIN): ("win-arm64-zip", "win-arm64.zip"),
        p.create_platform_string(p.ARM64, p.MAC): ("osx-arm64-tar", "darwin-arm64.tar.xz"),
        p.create_platform_string(p.X64, p.MAC): ("osx-x64-tar", "darwin-x64.tar.xz"),
        p.create_platform_string(p.X64, p.SOLARIS): ("sunos-x64", "sunos-x64.tar.xz"),
        p.create_platform_string(p.PPC64, p.AIX): ("aix-ppc64", "aix-ppc64.tar.gz"),
    }

    def fetch_releases(self, spec: VersionSpec, platform: str, flavor: Optional[str]) -> List[Release]:
        files_key, _ = self.platform_map[platform]
        data = self.get_json(f"{DIST_URL}index.json", "fetch_releases")
        if not isinstance(data, list):
            raise ProviderError(self.name, "fetch_releases", "版本目录格式无效")

        releases = []
        for item in data:
            if files_key not in item.get("files", []):
                continue
            try:
                version, key = parse_node_version(item.get("version", ""))
            except ValueError as e:
                logger.debug(f"跳过无法解析的 Node.js 版本: {e}")
                continue
            releases.append(Release(
                version=version,
                major=str(key[0]),
                lts=isinstance(item.get("lts"), str),
                sort_key=key,
            ))
        return releases

    def build_download_info(self, release: Release, platform: str, flavor: Optional[str]) -> DownloadInfo:
        _, suffix = self.platform_map[platform]
        version_dir = f"{DIST_URL}v{release.version}/"
        file_name = f"node-v{release.version}-{suffix}"

        shasums = self.get_text(f"{version_dir}SHASUMS256.txt", "build_download_info")
        sha256 = find_sha256(shasums, file_name)
        if sha256 is None:
            logger.warning(f"SHASUMS256.txt 中没有 {file_name} 的摘要")

        return DownloadInfo(
            url=f"{version_dir}{file_name}",
            digest=sha256,
            algorithm="sha256" if sha256 else None,
        )

    def bin_path(self, tag_dir: Path) -> Path:
        if IS_WINDOWS:
            return Path(tag_dir) / "node.exe"
        return Path(tag_dir) / "bin" / "node"
