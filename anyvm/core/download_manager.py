"""
下载管理模块。

提供可取消、经镜像改写、带流式摘要校验的下载功能。
下载只写入调用者给出的临时路径，从不直接写入标签目录。
"""

import os
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

import requests

from anyvm.utils.logger import get_logger
from anyvm.core.cancellation import CancelToken
from anyvm.core.digest import DigestVerifier
from anyvm.core.interfaces import DownloadInfo
from anyvm.core.mirror import MirrorRewriter

logger = get_logger()

DEFAULT_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 64 * 1024
USER_AGENT = "anyvm/0.1.0"

ProgressCallback = Callable[[int, int], None]


class DownloadManagerError(Exception):
    """下载管理错误异常基类。"""
    pass


class NetworkError(DownloadManagerError):
    """网络错误异常（连接、超时、HTTP 状态码），可由用户重试。"""
    pass


def create_session() -> requests.Session:
    """创建带默认请求头的 HTTP 会话。"""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


def remove_quietly(path: Union[str, Path]) -> None:
    """删除文件，文件不存在时忽略。"""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"无法删除临时文件 {path}: {e}")


class DownloadManager:
    """
    下载管理器类。

    不做自动重试：NetworkError 原样交给命令层，由用户决定是否重试。
    """

    def __init__(
        self,
        mirror: Optional[MirrorRewriter] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        初始化下载管理器。

        参数:
            mirror: 镜像改写器
            session: requests 会话，默认新建
            timeout: 连接和读取超时（秒）
            chunk_size: 每个数据块的字节数
        """
        self.mirror = mirror or MirrorRewriter()
        self.session = session or create_session()
        self.timeout = timeout
        self.chunk_size = chunk_size

    def fetch(
        self,
        info: DownloadInfo,
        dest_temp_path: Union[str, Path],
        cancel_token: CancelToken,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        下载文件到临时路径并校验摘要。

        参数:
            info: 下载信息
            dest_temp_path: 临时文件路径（必须不存在）
            cancel_token: 取消令牌，每个数据块检查一次
            progress_callback: 进度回调 (已下载字节数, 总字节数)，总数未知时为 0

        返回:
            临时文件路径

        抛出:
            NetworkError: 连接、超时或 HTTP 错误
            DigestMismatch: 摘要不匹配
            Cancelled: 下载被取消
        """
        dest_temp_path = Path(dest_temp_path)
        url = self.mirror.rewrite(info.url)
        verifier = DigestVerifier(info.algorithm) if info.digest else None
        if verifier is None:
            logger.warning(f"{info.url} 没有可用的摘要，跳过校验")

        cancel_token.raise_if_cancelled()
        try:
            out = open(dest_temp_path, "xb")
        except FileExistsError as e:
            raise DownloadManagerError(f"临时文件已存在: {dest_temp_path}") from e

        logger.info(f"正在下载 {url}")
        try:
            with out:
                downloaded = self._stream(url, info, out, verifier, cancel_token, progress_callback)

            if info.size and downloaded != info.size:
                logger.warning(f"下载大小 {downloaded} 与预期大小 {info.size} 不一致")
            if verifier is not None:
                computed = verifier.verify(info.digest)
                logger.debug(f"{verifier.algorithm} 校验通过: {computed}")
        except BaseException:
            remove_quietly(dest_temp_path)
            raise

        logger.info(f"下载完成: {dest_temp_path} ({downloaded} 字节)")
        return dest_temp_path

    def _stream(
        self,
        url: str,
        info: DownloadInfo,
        out: BinaryIO,
        verifier: Optional[DigestVerifier],
        cancel_token: CancelToken,
        progress_callback: Optional[ProgressCallback],
    ) -> int:
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"无法连接 {url}: {e}") from e

        with response:
            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                raise NetworkError(f"下载 {url} 失败: HTTP {response.status_code}") from e

            total = info.size or int(response.headers.get("content-length", 0) or 0)
            downloaded = 0
            chunks = response.iter_content(chunk_size=self.chunk_size)
            if verifier is not None:
                chunks = verifier.tee(chunks)

            try:
                for chunk in chunks:
                    cancel_token.raise_if_cancelled()
                    if not chunk:
                        continue
                    out.write(chunk)
                    downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(downloaded, total)
            except requests.RequestException as e:
                raise NetworkError(f"下载 {url} 中断: {e}") from e

        return downloaded
