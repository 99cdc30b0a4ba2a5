"""
摘要校验模块。

提供流式摘要计算和期望摘要比对功能。计算过程不缓冲整个文件，
数据原样透传，因此可以作为任意字节流的旁路（tee）。
"""

import hashlib
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Union

SUPPORTED_ALGORITHMS = ("sha1", "sha256", "sha512")
CHUNK_SIZE = 64 * 1024


class DigestError(Exception):
    """摘要校验错误异常。"""
    pass


class UnsupportedAlgorithm(DigestError):
    """不支持的摘要算法异常。"""
    pass


class DigestMismatch(DigestError):
    """摘要不匹配异常，携带期望值和实际值。"""

    def __init__(self, expected: str, computed: str, algorithm: str = ""):
        self.expected = expected
        self.computed = computed
        self.algorithm = algorithm
        label = f"{algorithm} " if algorithm else ""
        super().__init__(f"{label}摘要不匹配: 期望 {expected}，实际 {computed}")


def normalize_algorithm(algorithm: str) -> str:
    """
    规范化算法名称并检查是否受支持。

    参数:
        algorithm: 算法名，例如 "SHA-256"、"sha256"

    返回:
        hashlib 使用的小写算法名

    抛出:
        UnsupportedAlgorithm: 算法不受支持时抛出
    """
    name = (algorithm or "").lower().replace("-", "")
    if name not in SUPPORTED_ALGORITHMS:
        raise UnsupportedAlgorithm(
            f"不支持的摘要算法: {algorithm}（支持: {', '.join(SUPPORTED_ALGORITHMS)}）"
        )
    return name


def verify(computed: str, expected: str, algorithm: str = "") -> None:
    """
    比对计算所得摘要和期望摘要（忽略大小写）。

    抛出:
        DigestMismatch: 两者不一致时抛出
    """
    if computed.strip().lower() != expected.strip().lower():
        raise DigestMismatch(expected, computed, algorithm)


class HashingReader:
    """包装可读文件对象，read() 返回的数据同时送入摘要。"""

    def __init__(self, fileobj: BinaryIO, verifier: "DigestVerifier"):
        self._fileobj = fileobj
        self._verifier = verifier

    def read(self, size: int = -1) -> bytes:
        data = self._fileobj.read(size)
        if data:
            self._verifier.update(data)
        return data


class DigestVerifier:
    """
    流式摘要计算器。

    使用方式：

        verifier = DigestVerifier("sha256")
        for chunk in verifier.tee(chunks):
            out.write(chunk)
        verifier.verify(expected)
    """

    def __init__(self, algorithm: str):
        self.algorithm = normalize_algorithm(algorithm)
        self._hash = hashlib.new(self.algorithm)
        self.bytes_seen = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.bytes_seen += len(chunk)

    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    def tee(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        """
        透传字节块，同时更新摘要。

        参数:
            chunks: 字节块可迭代对象

        返回:
            原样产出每个字节块的迭代器
        """
        for chunk in chunks:
            if chunk:
                self.update(chunk)
            yield chunk

    def wrap(self, fileobj: BinaryIO) -> HashingReader:
        return HashingReader(fileobj, self)

    def verify(self, expected: str) -> str:
        """
        校验已计算的摘要。

        参数:
            expected: 期望的十六进制摘要

        返回:
            计算所得摘要

        抛出:
            DigestMismatch: 摘要不匹配时抛出
        """
        computed = self.hexdigest()
        verify(computed, expected, self.algorithm)
        return computed


def digest_file(path: Union[str, Path], algorithm: str, chunk_size: int = CHUNK_SIZE) -> str:
    """
    分块计算本地文件的摘要。

    参数:
        path: 文件路径
        algorithm: 摘要算法
        chunk_size: 每次读取的字节数

    返回:
        十六进制摘要字符串
    """
    verifier = DigestVerifier(algorithm)
    with open(path, "rb") as f:
        reader = verifier.wrap(f)
        while reader.read(chunk_size):
            pass
    return verifier.hexdigest()
