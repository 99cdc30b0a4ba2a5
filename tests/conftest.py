"""
Shared fixtures for the anyvm test suite.
"""

import io
import json
import os
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from unittest.mock import MagicMock

import pytest

# 日志目录必须在导入 anyvm 之前设置
os.environ.setdefault("ANYVM_LOG_DIR", tempfile.mkdtemp(prefix="anyvm-test-logs-"))
os.environ.pop("ANYVM_CONFIG", None)

from anyvm.core.config_manager import ConfigManager  # noqa: E402
from anyvm.core.interfaces import DownloadInfo, IProvider, Version, VersionNotFound, VersionSpec  # noqa: E402

Entry = Union[bytes, Tuple[bytes, int]]

FAKE_URL = "https://dist.example/fake/fake-1.2.3-x64-linux.tar.gz"


def _split(entry: Entry) -> Tuple[bytes, int]:
    if isinstance(entry, tuple):
        return entry
    return entry, 0o644


def make_tar(path: Path, files: Dict[str, Entry], compression: str = "gz",
             symlinks: Optional[Dict[str, str]] = None) -> Path:
    """Build a tar archive from a mapping of member name to content."""
    with tarfile.open(path, f"w:{compression}") as tar:
        for name, entry in files.items():
            data, mode = _split(entry)
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tar.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    return path


def make_zip(path: Path, files: Dict[str, Entry]) -> Path:
    """Build a zip archive; modes are stored as unix external attributes."""
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, entry in files.items():
            data, mode = _split(entry)
            info = zipfile.ZipInfo(name)
            info.create_system = 3
            info.external_attr = (0o100000 | mode) << 16
            zf.writestr(info, data)
    return path


def make_response(chunks: List[bytes], status_code: int = 200,
                  content_length: Optional[int] = None) -> MagicMock:
    """A streaming requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    if content_length is not None:
        response.headers["content-length"] = str(content_length)
    response.iter_content.return_value = iter(chunks)
    return response


def make_session(response: MagicMock) -> MagicMock:
    session = MagicMock()
    session.get.return_value = response
    return session


class FakeProvider(IProvider):
    """In-memory provider returning a fixed DownloadInfo."""

    name = "fake"
    about = "Fake tool for tests"
    platforms = ["x64-linux"]

    def __init__(self, info: Optional[DownloadInfo] = None, bin_name: str = "fake"):
        self.info = info
        self.bin_name = bin_name
        self.resolve_calls = 0

    def fetch_versions(self, spec, platform=None, flavor=None):
        if self.info is None:
            return []
        return [Version(version=self.info.version, major=self.info.version.split(".")[0])]

    def resolve_version(self, spec: VersionSpec, platform=None, flavor=None) -> DownloadInfo:
        self.resolve_calls += 1
        if self.info is None:
            raise VersionNotFound(self.name, spec)
        return DownloadInfo.from_dict(self.info.to_dict())

    def bin_path(self, tag_dir: Path) -> Path:
        return Path(tag_dir) / "bin" / self.executable_name(self.bin_name)


@pytest.fixture
def data_root(tmp_path):
    """Data directory used as data_path in the test configuration."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def config_file(tmp_path, data_root):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"data_path": str(data_root)}), encoding="utf-8")
    return path


@pytest.fixture
def config_manager(config_file):
    manager = ConfigManager(config_file)
    manager.load_config()
    return manager


@pytest.fixture
def fake_archive(tmp_path):
    """A tool archive with a single top-level directory, like upstream releases."""
    return make_tar(
        tmp_path / "fake-1.2.3-x64-linux.tar.gz",
        {
            "fake/bin/fake": (b"#!/bin/sh\necho fake\n", 0o755),
            "fake/README": b"fake tool\n",
        },
    )


@pytest.fixture
def fake_info():
    return DownloadInfo(url=FAKE_URL, version="1.2.3", platform="x64-linux")
