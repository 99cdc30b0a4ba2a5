"""
Go 提供者。

版本目录来自 https://golang.org/dl/?mode=json&include=all。
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple

from anyvm.utils.logger import get_logger
from anyvm.core.interfaces import DownloadInfo, ProviderError, VersionSpec
from anyvm.core.version_utils import Release
from anyvm.providers.base import CatalogProvider
from anyvm.providers import platforms as p

logger = get_logger()

CATALOG_URL = "https://golang.org/dl/"
DOWNLOAD_BASE_URL = "https://golang.org/dl/"

# 预发布阶段排序：beta < rc < 正式版
_STAGE_RANK = {"beta": 0, "rc": 1, None: 2}

_GO_VERSION_PATTERN = re.compile(r'^go(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:(beta|rc)(\d+))?$')


def parse_go_version(value: str) -> Tuple[str, tuple]:
    """
    解析 Go 版本字符串。

    参数:
        value: 例如 "go1.22.1"、"go1.21rc2"、"go1.21beta1"

    返回:
        (去掉 go 前缀的版本号, 排序键 (major, minor, patch, 阶段, 阶段序号))

    抛出:
        ValueError: 格式无效
    """
    match = _GO_VERSION_PATTERN.match(value or "")
    if match is None:
        raise ValueError(f"无效的 Go 版本: {value!r}")
    major, minor, patch, stage, stage_num = match.groups()
    key = (
        int(major),
        int(minor or 0),
        int(patch or 0),
        _STAGE_RANK[stage],
        int(stage_num or 0),
    )
    return value[2:], key


class GoProvider(CatalogProvider):
    """Go 编程语言。"""

    name = "go"
    about = "Go programming language"

    platform_map = {
        p.create_platform_string(p.X86, p.LINUX): ("386", "linux"),
        p.create_platform_string(p.X64, p.LINUX): ("amd64", "linux"),
        p.create_platform_string(p.ARM64, p.LINUX): ("arm64", "linux"),
        p.create_platform_string(p.ARMV6L, p.LINUX): ("armv6l", "linux"),
        p.create_platform_string(p.LOONG64, p.LINUX): ("loong64", "linux"),
        p.create_platform_string(p.PPC64, p.LINUX): ("ppc64", "linux"),
        p.create_platform_string(p.PPC64LE, p.LINUX): ("ppc64le", "linux"),
        p.create_platform_string(p.RISCV64, p.LINUX): ("riscv64", "linux"),
        p.create_platform_string(p.S390X, p.LINUX): ("s390x", "linux"),
        p.create_platform_string(p.X86, p.WIN): ("386", "windows"),
        p.create_platform_string(p.X64, p.WIN): ("amd64", "windows"),
        p.create_platform_string(p.ARM64, p.WIN): ("arm64", "windows"),
        p.create_platform_string(p.X64, p.MAC): ("amd64", "darwin"),
        p.create_platform_string(p.ARM64, p.MAC): ("arm64", "darwin"),
        p.create_platform_string(p.X86, p.FREEBSD): ("386", "freebsd"),
        p.create_platform_string(p.X64, p.FREEBSD): ("amd64", "freebsd"),
        p.create_platform_string(p.ARM64, p.FREEBSD): ("arm64", "freebsd"),
        p.create_platform_string(p.PPC64, p.AIX): ("ppc64", "aix"),
        p.create_platform_string(p.X64, p.SOLARIS): ("amd64", "solaris"),
    }

    def fetch_releases(self, spec: VersionSpec, platform: str, flavor: Optional[str]) -> List[Release]:
        arch, os_name = self.platform_map[platform]
        data = self.get_json(CATALOG_URL, "fetch_releases", params={"mode": "json", "include": "all"})
        if not isinstance(data, list):
            raise ProviderError(self.name, "fetch_releases", "版本目录格式无效")

        releases = []
        for item in data:
            archive = next(
                (
                    f for f in item.get("files", [])
                    if f.get("os") == os_name and f.get("arch") == arch and f.get("kind") == "archive"
                ),
                None,
            )
            if archive is None:
                continue
            try:
                version, key = parse_go_version(item.get("version", ""))
            except ValueError as e:
                logger.debug(f"跳过无法解析的 Go 版本: {e}")
                continue
            releases.append(Release(
                version=version,
                major=str(key[0]),
                lts=key[3] == _STAGE_RANK[None],
                sort_key=key,
                payload=archive,
            ))
        return releases

    def build_download_info(self, release: Release, platform: str, flavor: Optional[str]) -> DownloadInfo:
        archive = release.payload
        sha256 = archive.get("sha256") or None
        return DownloadInfo(
            url=f"{DOWNLOAD_BASE_URL}{archive['filename']}",
            digest=sha256,
            algorithm="sha256" if sha256 else None,
            size=archive.get("size"),
        )

    def bin_path(self, tag_dir: Path) -> Path:
        return Path(tag_dir) / "bin" / self.executable_name("go")
