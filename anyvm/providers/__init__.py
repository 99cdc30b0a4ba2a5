"""
anyvm 工具提供者。

所有提供者随引擎一起发布，启动时按名称构建注册表。
"""

from typing import Dict, Optional

import requests

from anyvm.core.config_manager import ConfigManager
from anyvm.core.download_manager import create_session
from anyvm.core.interfaces import IProvider
from .go import GoProvider
from .liberica import LibericaProvider
from .node import NodeProvider
from .rustup import RustupProvider

CATALOG_PROVIDERS = {
    GoProvider.name: GoProvider,
    NodeProvider.name: NodeProvider,
    LibericaProvider.name: LibericaProvider,
}

DELEGATE_PROVIDERS = {
    RustupProvider.name: RustupProvider,
}


def create_registry(
    config_manager: ConfigManager,
    session: Optional[requests.Session] = None,
) -> Dict[str, IProvider]:
    """
    构建提供者注册表。

    参数:
        config_manager: 配置管理器，用于读取超时和委托路径
        session: 共享的 requests 会话，默认新建

    返回:
        名称到提供者实例的字典
    """
    session = session or create_session()
    timeout = config_manager.get_request_timeout()
    registry: Dict[str, IProvider] = {}
    for name, provider_cls in CATALOG_PROVIDERS.items():
        registry[name] = provider_cls(session=session, timeout=timeout)
    for name, provider_cls in DELEGATE_PROVIDERS.items():
        registry[name] = provider_cls(path_override=config_manager.get_delegate_path(name))
    return registry


__all__ = [
    "CATALOG_PROVIDERS",
    "DELEGATE_PROVIDERS",
    "create_registry",
    "GoProvider",
    "NodeProvider",
    "LibericaProvider",
    "RustupProvider",
]
