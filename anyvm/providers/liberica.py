"""
Liberica JDK/JRE 提供者。

版本目录来自 BellSoft 的 API（https://api.bell-sw.com/v1/），
按平台、位数和 bundle 类型查询，摘要为 sha1。
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from anyvm.utils.logger import get_logger
from anyvm.core.interfaces import DownloadInfo, ProviderError, VersionSpec
from anyvm.core.version_utils import Release
from anyvm.providers.base import CatalogProvider
from anyvm.providers import platforms as p

logger = get_logger()

API_BASE_URL = "https://api.bell-sw.com/v1/"

JDK_FLAVORS = ["jdk", "jdk_full", "jdk_lite", "jre", "jre_full"]
NIK_FLAVORS = ["nik_core", "nik_standard", "nik_full"]


def parse_jdk_version(version: str) -> tuple:
    """
    解析 JDK 版本号。

    参数:
        version: 例如 "8u432+7"、"21.0.5+11"

    返回:
        (major, minor, security, patch, build)，无法解析的部分为 0
    """
    def _int(value: str) -> int:
        return int(value) if value.isdigit() else 0

    major = minor = security = patch = build = 0
    if version.lower().startswith("8u"):
        major = 8
        security_part, _, build_part = version[2:].partition("+")
        security = _int(security_part)
        build = _int(build_part)
    else:
        version_part, _, build_part = version.partition("+")
        build = _int(build_part)
        numbers = version_part.split(".")
        values = [_int(n) for n in numbers[:4]] + [0] * (4 - len(numbers[:4]))
        major, minor, security, patch = values
    return (major, minor, security, patch, build)


class LibericaProvider(CatalogProvider):
    """Liberica Java JDK/JRE 及 Native Image Kit。"""

    name = "liberica"
    about = "Liberica Java JDK/JRE"
    flavors = JDK_FLAVORS + NIK_FLAVORS
    default_flavor = "jdk"

    # 平台 -> (arch, os, bitness)
    platform_map = {
        p.create_platform_string(p.X86, p.LINUX): ("x86", "linux", 32),
        p.create_platform_string(p.X64, p.LINUX): ("x86", "linux", 64),
        p.create_platform_string(p.ARM32, p.LINUX): ("arm", "linux", 32),
        p.create_platform_string(p.ARM64, p.LINUX): ("arm", "linux", 64),
        p.create_platform_string(p.PPC64, p.LINUX): ("ppc", "linux", 64),
        p.create_platform_string(p.RISCV64, p.LINUX): ("riscv", "linux", 64),
        p.create_platform_string(p.ARM64, p.WIN): ("arm", "windows", 64),
        p.create_platform_string(p.X86, p.WIN): ("x86", "windows", 32),
        p.create_platform_string(p.X64, p.WIN): ("x86", "windows", 64),
        p.create_platform_string(p.X64, p.LINUX_MUSL): ("x86", "linux-musl", 64),
        p.create_platform_string(p.ARM64, p.LINUX_MUSL): ("arm", "linux-musl", 64),
        p.create_platform_string(p.X64, p.MAC): ("x86", "macos", 64),
        p.create_platform_string(p.ARM64, p.MAC): ("arm", "macos", 64),
        p.create_platform_string(p.SPARC64, p.SOLARIS): ("sparc", "solaris", 64),
        p.create_platform_string(p.X64, p.SOLARIS): ("x86", "solaris", 64),
    }

    def build_params(self, spec: VersionSpec, platform: str, flavor: str) -> Dict[str, Any]:
        arch, os_name, bitness = self.platform_map[platform]
        is_nik = flavor in NIK_FLAVORS
        params = {
            "arch": arch,
            "os": os_name,
            "installation-type": "archive",
            "bitness": bitness,
            "bundle-type": flavor[len("nik_"):] if is_nik else flavor,
            "release-type": "lts" if spec.lts_only else "all",
        }
        if not is_nik:
            if spec.major:
                params["version-feature"] = spec.major
            if spec.version:
                params["version"] = spec.version
        return params

    def fetch_releases(self, spec: VersionSpec, platform: str, flavor: Optional[str]) -> List[Release]:
        is_nik = flavor in NIK_FLAVORS
        endpoint = "nik/releases" if is_nik else "liberica/releases"
        data = self.get_json(
            f"{API_BASE_URL}{endpoint}",
            "fetch_releases",
            params=self.build_params(spec, platform, flavor),
        )
        if not isinstance(data, list):
            raise ProviderError(self.name, "fetch_releases", "版本目录格式无效")

        releases = []
        for item in data:
            if is_nik:
                component = next(
                    (c for c in item.get("components", []) if c.get("component") == "liberica"),
                    None,
                )
                if component is None:
                    logger.debug("NIK 发布中没有 liberica 组件，已跳过")
                    continue
                version = component.get("version", "")
            else:
                version = item.get("version", "")
            if not version or not item.get("downloadUrl"):
                continue
            key = parse_jdk_version(version)
            releases.append(Release(
                version=version,
                major=str(key[0]),
                lts=bool(item.get("LTS")),
                sort_key=key,
                payload=item,
            ))
        return releases

    def local_filter(self, spec: VersionSpec, flavor: Optional[str]) -> VersionSpec:
        if flavor in NIK_FLAVORS:
            return spec
        # 上游 version 参数接受 "21.0.5"，而返回的版本号带构建号 "21.0.5+11"
        return VersionSpec(major=spec.major, lts_only=spec.lts_only)

    def build_download_info(self, release: Release, platform: str, flavor: Optional[str]) -> DownloadInfo:
        item = release.payload
        sha1 = item.get("sha1") or None
        return DownloadInfo(
            url=item["downloadUrl"],
            digest=sha1,
            algorithm="sha1" if sha1 else None,
            size=item.get("size"),
        )

    def bin_path(self, tag_dir: Path) -> Path:
        return Path(tag_dir) / "bin" / self.executable_name("java")
