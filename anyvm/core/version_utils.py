"""
版本工具模块。

提供版本号解析、排序、分组，以及“精确版本 / 最新版本 / 主版本内最新版本”
的统一筛选算法。各提供者只负责把远程目录解析成 Release 列表。
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from anyvm.core.interfaces import Version, VersionSpec


def parse_version(version_str: str) -> tuple:
    """
    解析版本字符串为可比较的元组。

    参数:
        version_str: 版本字符串

    返回:
        版本元组 (major, minor, patch, ...)
    """
    parts = re.findall(r'\d+', version_str)
    return tuple(int(p) for p in parts) if parts else (0,)


@dataclass
class Release:
    """
    远程目录中的一个候选发布。

    sort_key 由提供者给出，决定“最新”的含义；payload 保存提供者
    构造 DownloadInfo 所需的原始数据。
    """

    version: str
    major: str
    lts: bool = False
    sort_key: tuple = ()
    payload: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.sort_key:
            self.sort_key = parse_version(self.version)


def matches_spec(release: Release, spec: VersionSpec) -> bool:
    """
    判断发布是否满足版本条件。

    参数:
        release: 候选发布
        spec: 版本条件

    返回:
        满足返回 True
    """
    if spec.lts_only and not release.lts:
        return False
    if spec.major and release.major != str(spec.major):
        return False
    if spec.version and release.version != spec.version:
        return False
    return True


def filter_releases(releases: Iterable[Release], spec: VersionSpec) -> List[Release]:
    return [r for r in releases if matches_spec(r, spec)]


def select_latest(releases: Iterable[Release], spec: VersionSpec) -> Optional[Release]:
    """
    选出满足条件的最新发布。

    参数:
        releases: 候选发布
        spec: 版本条件

    返回:
        sort_key 最大的发布；没有满足条件的发布时返回 None
    """
    matched = filter_releases(releases, spec)
    if not matched:
        return None
    return max(matched, key=lambda r: r.sort_key)


def to_versions(releases: Iterable[Release]) -> List[Version]:
    """
    把发布列表转换为去重后的升序版本列表。

    同一版本可能对应多个文件（例如不同压缩格式），只保留一条。
    """
    ordered = sorted(releases, key=lambda r: r.sort_key)
    seen = set()
    versions = []
    for release in ordered:
        if release.version in seen:
            continue
        seen.add(release.version)
        versions.append(Version(version=release.version, major=release.major, lts=release.lts))
    return versions


def group_versions_by_major(versions: List[Version]) -> List[Dict[str, Any]]:
    """
    按主版本号分组版本列表。

    参数:
        versions: 升序版本列表（fetch_versions 的返回值）

    返回:
        分组后的列表，每个分组包含 major_version、versions 和 has_lts，主版本降序
    """
    groups: Dict[str, Dict[str, Any]] = {}

    for v in reversed(versions):
        major = v.major or "0"
        if major not in groups:
            groups[major] = {
                "major_version": major,
                "versions": [],
                "has_lts": False,
            }
        groups[major]["versions"].append(v)
        if v.lts:
            groups[major]["has_lts"] = True

    result = list(groups.values())
    result.sort(key=lambda g: parse_version(g["major_version"]), reverse=True)
    return result
