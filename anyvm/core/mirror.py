"""
镜像改写模块。

按配置顺序对 URL 做字面前缀替换，第一条匹配的规则生效。
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from anyvm.utils.logger import get_logger
from anyvm.utils.input_validator import InputValidator, InputValidationError

logger = get_logger()


class MirrorConfigError(Exception):
    """镜像规则配置错误异常。"""
    pass


@dataclass(frozen=True)
class MirrorRule:
    """一条镜像规则：from_prefix 被替换为 to_prefix。"""

    from_prefix: str
    to_prefix: str

    def matches(self, url: str) -> bool:
        return url.startswith(self.from_prefix)


class MirrorRewriter:
    """
    镜像改写器。

    规则列表在启动时加载，之后只读。不做最长前缀匹配，
    规则顺序即用户在配置中声明的顺序。
    """

    def __init__(self, rules: Iterable[MirrorRule] = ()):
        self.rules: List[MirrorRule] = list(rules)

    @classmethod
    def from_config(cls, entries: Iterable[Dict[str, Any]]) -> "MirrorRewriter":
        """
        从配置中的 [{"from": ..., "to": ...}] 列表构建改写器。

        参数:
            entries: 规则字典列表

        返回:
            MirrorRewriter 实例

        抛出:
            MirrorConfigError: 规则缺少字段或 URL 无效时抛出
        """
        rules = []
        for index, entry in enumerate(entries or []):
            if not isinstance(entry, dict) or "from" not in entry or "to" not in entry:
                raise MirrorConfigError(f"mirror[{index}] 必须包含 from 和 to 字段")
            try:
                InputValidator.validate_url_prefix(entry["from"])
                InputValidator.validate_url_prefix(entry["to"])
            except InputValidationError as e:
                raise MirrorConfigError(f"mirror[{index}]: {e}") from e
            rules.append(MirrorRule(entry["from"], entry["to"]))
        return cls(rules)

    def rewrite(self, url: str) -> str:
        """
        改写 URL。

        参数:
            url: 原始 URL

        返回:
            第一条匹配规则替换后的 URL；没有规则匹配时原样返回
        """
        for rule in self.rules:
            if rule.matches(url):
                rewritten = rule.to_prefix + url[len(rule.from_prefix):]
                logger.debug(f"镜像改写: {url} -> {rewritten}")
                return rewritten
        return url
