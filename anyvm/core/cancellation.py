"""
取消令牌模块。

每次进程调用创建一个 CancelToken，由 SIGINT 处理函数置位，
并显式传入下载和解压循环。
"""

import signal
import threading
from typing import Any, Callable, Optional

from anyvm.utils.logger import get_logger

logger = get_logger()


class Cancelled(Exception):
    """操作被用户取消异常。"""
    pass


class CancelToken:
    """
    取消令牌类。

    对 threading.Event 的薄封装，长时间运行的操作在检查点调用
    raise_if_cancelled()。
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """请求取消。"""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        如果已请求取消则抛出 Cancelled。

        抛出:
            Cancelled: 令牌已置位时抛出
        """
        if self._event.is_set():
            raise Cancelled("操作已取消")


def install_interrupt_handler(token: CancelToken) -> Callable[..., Any]:
    """
    安装 SIGINT 处理函数。

    第一次中断只置位令牌，让当前操作在下一个检查点清理并退出；
    第二次中断恢复默认行为并抛出 KeyboardInterrupt。

    参数:
        token: 要置位的取消令牌

    返回:
        之前的信号处理函数
    """
    def _handler(signum: int, frame: Optional[Any]) -> None:
        if token.cancelled:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        logger.warning("收到中断信号，正在取消当前操作...")
        token.cancel()

    return signal.signal(signal.SIGINT, _handler)
