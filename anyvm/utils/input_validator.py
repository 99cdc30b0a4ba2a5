"""
输入验证模块。

提供标签名、别名、工具名、版本号和 URL 等用户输入的验证功能。
"""

import os
import re
from typing import Any, Dict

TMP_PREFIX = ".tmp."


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    标签和别名会直接成为数据目录下的文件名，因此不能包含路径分隔符，
    也不能占用保留的临时前缀。
    """

    TOOL_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')
    VERSION_PATTERN = re.compile(r'^[a-zA-Z0-9._+-]+$')
    HEX_PATTERN = re.compile(r'^[0-9a-fA-F]+$')
    MAX_TOOL_NAME_LENGTH = 50
    MAX_NAME_LENGTH = 200
    MAX_VERSION_LENGTH = 100

    @classmethod
    def validate_tool_name(cls, tool_name: str) -> bool:
        """
        验证工具（provider）名称的有效性。

        参数:
            tool_name: 工具名称

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not tool_name or not tool_name.strip():
            raise InputValidationError("工具名称不能为空")

        if len(tool_name) > cls.MAX_TOOL_NAME_LENGTH:
            raise InputValidationError(f"工具名称不能超过 {cls.MAX_TOOL_NAME_LENGTH} 个字符")

        if not cls.TOOL_NAME_PATTERN.match(tool_name):
            raise InputValidationError("工具名称只能包含字母、数字、下划线和连字符")

        return True

    @classmethod
    def validate_entry_name(cls, name: str, kind: str = "标签") -> bool:
        """
        验证标签名或别名的有效性。

        参数:
            name: 标签名或别名
            kind: 用于错误信息的名称类别

        返回:
            验证通过返回 True

        抛出:
            InputValidationError: 名称为空、包含路径分隔符、为 . 或 ..、
                或以保留前缀 .tmp. 开头时抛出
        """
        if not name or not name.strip():
            raise InputValidationError(f"{kind}不能为空")

        if name != name.strip():
            raise InputValidationError(f"{kind}首尾不能包含空白字符: '{name}'")

        if len(name) > cls.MAX_NAME_LENGTH:
            raise InputValidationError(f"{kind}不能超过 {cls.MAX_NAME_LENGTH} 个字符")

        if "/" in name or "\\" in name or (os.altsep and os.altsep in name):
            raise InputValidationError(f"{kind}不能包含路径分隔符: '{name}'")

        if name in (".", ".."):
            raise InputValidationError(f"{kind}不能为 '{name}'")

        if name.startswith(TMP_PREFIX):
            raise InputValidationError(f"{kind} '{name}' 使用了保留的临时前缀 {TMP_PREFIX}")

        if "\0" in name:
            raise InputValidationError(f"{kind}不能包含空字符")

        return True

    @classmethod
    def validate_version_string(cls, version: str) -> bool:
        """
        验证版本号字符串的有效性。

        参数:
            version: 版本号字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not version or not version.strip():
            raise InputValidationError("版本号不能为空")

        if len(version.strip()) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if not cls.VERSION_PATTERN.match(version.strip()):
            raise InputValidationError(f"版本号格式无效: {version}")

        return True

    @classmethod
    def validate_url_prefix(cls, url: str) -> bool:
        """
        验证镜像规则中的 URL 前缀。

        镜像规则按字面前缀匹配，这里只要求是 http(s) 或 file URL。

        参数:
            url: URL 前缀字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not isinstance(url, str) or not url:
            raise InputValidationError("URL 前缀不能为空")

        if not re.match(r'^(https?|file)://', url, re.IGNORECASE):
            raise InputValidationError(f"URL 前缀格式无效: {url}")

        return True

    @classmethod
    def validate_hex_digest(cls, digest: str) -> bool:
        """
        验证十六进制摘要字符串。

        参数:
            digest: 摘要字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not digest or not cls.HEX_PATTERN.match(digest):
            raise InputValidationError(f"摘要必须是十六进制字符串: {digest}")
        return True

    @classmethod
    def safe_get_config_value(cls, config: Dict[str, Any], key: str, default: Any = None) -> Any:
        """
        按点分路径安全地获取配置值，避免 KeyError。

        参数:
            config: 配置字典
            key: 点分键名，例如 "delegates.rustup.path"
            default: 默认值

        返回:
            配置值或默认值
        """
        value: Any = config
        for k in key.split('.'):
            if not isinstance(value, dict) or k not in value:
                return default
            value = value[k]
        return value
