"""
平台字符串模块。

平台统一写作 "<cpu>-<os>"，例如 "x64-linux"、"arm64-mac"。
各提供者把它映射到上游目录使用的名称。
"""

import platform
import sys
from typing import Optional

# 操作系统
WIN = "win"
LINUX = "linux"
LINUX_MUSL = "linux_musl"
MAC = "mac"
SOLARIS = "solaris"
AIX = "aix"
FREEBSD = "freebsd"

# CPU 架构
X86 = "x86"
X64 = "x64"
ARM32 = "arm32"
ARM64 = "arm64"
ARMV6L = "armv6l"
ARMV7L = "armv7l"
LOONG64 = "loong64"
RISCV64 = "riscv64"
PPC64 = "ppc64"
PPC64LE = "ppc64le"
S390X = "s390x"
SPARC64 = "sparc64"

_MACHINE_ALIASES = {
    "x86_64": X64,
    "amd64": X64,
    "x64": X64,
    "i386": X86,
    "i486": X86,
    "i586": X86,
    "i686": X86,
    "x86": X86,
    "aarch64": ARM64,
    "arm64": ARM64,
    "armv6l": ARMV6L,
    "armv7l": ARMV7L,
    "armv7": ARMV7L,
    "loongarch64": LOONG64,
    "riscv64": RISCV64,
    "ppc64": PPC64,
    "ppc64le": PPC64LE,
    "s390x": S390X,
}


def create_platform_string(cpu: str, os_name: str) -> str:
    return f"{cpu}-{os_name}"


def current_os() -> Optional[str]:
    if sys.platform == "win32":
        return WIN
    if sys.platform.startswith("linux"):
        return LINUX
    if sys.platform == "darwin":
        return MAC
    if sys.platform.startswith("freebsd"):
        return FREEBSD
    return None


def current_cpu() -> Optional[str]:
    return _MACHINE_ALIASES.get(platform.machine().lower())


def current_platform() -> Optional[str]:
    """返回当前机器的平台字符串，无法识别时返回 None。"""
    cpu = current_cpu()
    os_name = current_os()
    if cpu is None or os_name is None:
        return None
    return create_platform_string(cpu, os_name)
