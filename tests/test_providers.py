"""
Tests for provider catalog parsing and resolution with mocked HTTP.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from anyvm.core.config_manager import ConfigManager
from anyvm.core.download_manager import NetworkError
from anyvm.core.interfaces import DownloadInfo, ProviderError, VersionNotFound, VersionSpec
from anyvm.providers import create_registry
from anyvm.providers.go import GoProvider, parse_go_version
from anyvm.providers.liberica import LibericaProvider, parse_jdk_version
from anyvm.providers.node import NodeProvider, find_sha256, parse_node_version
from anyvm.providers.rustup import RUSTUP_PATH_ENV, RustupProvider

GO_CATALOG = [
    {
        "version": "go1.23rc1",
        "stable": False,
        "files": [
            {"filename": "go1.23rc1.linux-amd64.tar.gz", "os": "linux", "arch": "amd64",
             "kind": "archive", "sha256": "aa" * 32, "size": 10},
        ],
    },
    {
        "version": "go1.22.1",
        "stable": True,
        "files": [
            {"filename": "go1.22.1.linux-amd64.tar.gz", "os": "linux", "arch": "amd64",
             "kind": "archive", "sha256": "bb" * 32, "size": 20},
            {"filename": "go1.22.1.windows-amd64.msi", "os": "windows", "arch": "amd64",
             "kind": "installer", "sha256": "cc" * 32, "size": 30},
        ],
    },
    {
        "version": "go1.21.8",
        "stable": True,
        "files": [
            {"filename": "go1.21.8.linux-amd64.tar.gz", "os": "linux", "arch": "amd64",
             "kind": "archive", "sha256": "dd" * 32, "size": 40},
        ],
    },
]

NODE_INDEX = [
    {"version": "v22.1.0", "lts": False, "files": ["linux-x64", "win-x64-zip"]},
    {"version": "v20.11.1", "lts": "Iron", "files": ["linux-x64", "win-x64-zip"]},
    {"version": "v20.9.0", "lts": "Iron", "files": ["linux-x64"]},
    {"version": "v18.20.4", "lts": "Hydrogen", "files": ["win-x64-zip"]},
]

NODE_SHASUMS = (
    "1111111111111111111111111111111111111111111111111111111111111111  node-v20.11.1-linux-x64.tar.xz\n"
    "2222222222222222222222222222222222222222222222222222222222222222  node-v20.11.1-win-x64.zip\n"
)

LIBERICA_RELEASES = [
    {"version": "21.0.5+11", "LTS": True, "downloadUrl": "https://download.bell-sw.com/java/21.0.5+11/bellsoft-jdk21.0.5+11-linux-amd64.tar.gz",
     "sha1": "ab" * 20, "size": 100},
    {"version": "21.0.4+9", "LTS": True, "downloadUrl": "https://download.bell-sw.com/java/21.0.4+9/bellsoft-jdk21.0.4+9-linux-amd64.tar.gz",
     "sha1": "cd" * 20, "size": 90},
    {"version": "23.0.1+13", "LTS": False, "downloadUrl": "https://download.bell-sw.com/java/23.0.1+13/bellsoft-jdk23.0.1+13-linux-amd64.tar.gz",
     "sha1": "ef" * 20, "size": 110},
]


def _json_session(*payloads):
    """Session whose successive GET responses return the given JSON payloads or text."""
    session = MagicMock()
    responses = []
    for payload in payloads:
        response = MagicMock()
        if isinstance(payload, str):
            response.text = payload
        else:
            response.json.return_value = payload
        responses.append(response)
    session.get.side_effect = responses
    return session


class TestGoProvider:
    """Test the Go catalog."""

    def test_parse_version(self):
        """Test Go version parsing including pre-releases."""
        assert parse_go_version("go1.22.1") == ("1.22.1", (1, 22, 1, 2, 0))
        assert parse_go_version("go1.21rc2") == ("1.21rc2", (1, 21, 0, 1, 2))
        assert parse_go_version("go1.21beta1")[1] < parse_go_version("go1.21rc1")[1]
        assert parse_go_version("go1.21rc1")[1] < parse_go_version("go1.21.0")[1]
        with pytest.raises(ValueError):
            parse_go_version("1.22")

    def test_resolve_latest(self):
        """Test that the newest archive for the platform is chosen, including rc."""
        provider = GoProvider(session=_json_session(GO_CATALOG))
        info = provider.resolve_version(VersionSpec(), platform="x64-linux")
        assert info.version == "1.23rc1"
        assert info.url == "https://golang.org/dl/go1.23rc1.linux-amd64.tar.gz"
        assert provider.tag_for(info) == "1.23rc1-x64-linux"

    def test_resolve_stable_only(self):
        """Test that lts_only means final releases for Go."""
        provider = GoProvider(session=_json_session(GO_CATALOG))
        info = provider.resolve_version(VersionSpec(lts_only=True), platform="x64-linux")
        assert info.version == "1.22.1"
        assert info.digest == "bb" * 32
        assert info.algorithm == "sha256"
        assert info.size == 20

    def test_resolve_explicit(self):
        """Test explicit version resolution."""
        provider = GoProvider(session=_json_session(GO_CATALOG))
        info = provider.resolve_version(VersionSpec(version="1.21.8"), platform="x64-linux")
        assert info.url.endswith("go1.21.8.linux-amd64.tar.gz")
        params = provider.session.get.call_args[1]["params"]
        assert params == {"mode": "json", "include": "all"}

    def test_platform_without_archive(self):
        """Test that installers are not considered archives."""
        provider = GoProvider(session=_json_session(GO_CATALOG))
        with pytest.raises(VersionNotFound):
            provider.resolve_version(VersionSpec(), platform="x64-win")

    def test_unsupported_platform(self):
        """Test that unknown platforms raise ProviderError."""
        provider = GoProvider(session=_json_session(GO_CATALOG))
        with pytest.raises(ProviderError):
            provider.resolve_version(VersionSpec(), platform="sparc64-solaris")

    def test_fetch_versions(self):
        """Test that versions are listed in ascending order."""
        provider = GoProvider(session=_json_session(GO_CATALOG))
        versions = provider.fetch_versions(VersionSpec(), platform="x64-linux")
        assert [v.version for v in versions] == ["1.21.8", "1.22.1", "1.23rc1"]
        assert [v.lts for v in versions] == [True, True, False]

    def test_network_error(self):
        """Test that request failures become NetworkError."""
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")
        with pytest.raises(NetworkError):
            GoProvider(session=session).resolve_version(VersionSpec(), platform="x64-linux")

    def test_invalid_json(self):
        """Test that a non-JSON catalog raises ProviderError."""
        session = _json_session([])
        session.get.side_effect = None
        session.get.return_value.json.side_effect = ValueError("no json")
        with pytest.raises(ProviderError):
            GoProvider(session=session).resolve_version(VersionSpec(), platform="x64-linux")

    def test_bin_path(self):
        """Test the location of the go binary."""
        assert GoProvider().bin_path(Path("/t")).parent == Path("/t/bin")


class TestNodeProvider:
    """Test the Node.js catalog."""

    def test_parse_version(self):
        """Test Node.js version parsing."""
        assert parse_node_version("v20.11.1") == ("20.11.1", (20, 11, 1))
        with pytest.raises(ValueError):
            parse_node_version("v20.11")

    def test_find_sha256(self):
        """Test looking up a file in SHASUMS256.txt."""
        assert find_sha256(NODE_SHASUMS, "node-v20.11.1-win-x64.zip") == "2" * 64
        assert find_sha256(NODE_SHASUMS, "missing.tar.gz") is None

    def test_resolve_lts_major(self):
        """Test latest LTS within a major, with the digest from SHASUMS256.txt."""
        session = _json_session(NODE_INDEX, NODE_SHASUMS)
        info = NodeProvider(session=session).resolve_version(
            VersionSpec(major="20", lts_only=True), platform="x64-linux"
        )
        assert info.version == "20.11.1"
        assert info.url == "https://nodejs.org/dist/v20.11.1/node-v20.11.1-linux-x64.tar.xz"
        assert info.digest == "1" * 64
        assert info.algorithm == "sha256"
        assert session.get.call_args_list[1][0][0] == "https://nodejs.org/dist/v20.11.1/SHASUMS256.txt"

    def test_platform_filter(self):
        """Test that releases without a build for the platform are skipped."""
        session = _json_session(NODE_INDEX)
        versions = NodeProvider(session=session).fetch_versions(VersionSpec(), platform="x64-win")
        assert [v.version for v in versions] == ["18.20.4", "20.11.1", "22.1.0"]

    def test_missing_digest(self):
        """Test that a missing SHASUMS entry yields a DownloadInfo without digest."""
        session = _json_session(NODE_INDEX, "")
        info = NodeProvider(session=session).resolve_version(VersionSpec(version="22.1.0"), platform="x64-linux")
        assert info.digest is None
        assert info.algorithm is None


class TestLibericaProvider:
    """Test the Liberica catalog."""

    def test_parse_version(self):
        """Test JDK version parsing for both numbering schemes."""
        assert parse_jdk_version("21.0.5+11") == (21, 0, 5, 0, 11)
        assert parse_jdk_version("8u432+7") == (8, 0, 432, 0, 7)

    def test_resolve(self):
        """Test that the API parameters and sha1 digest are used."""
        session = _json_session(LIBERICA_RELEASES)
        provider = LibericaProvider(session=session)
        info = provider.resolve_version(VersionSpec(major="21"), platform="x64-linux")
        assert info.version == "21.0.5+11"
        assert info.algorithm == "sha1"
        assert info.flavor == "jdk"
        assert provider.tag_for(info) == "21.0.5+11-x64-linux-jdk"

        url, kwargs = session.get.call_args[0][0], session.get.call_args[1]
        assert url == "https://api.bell-sw.com/v1/liberica/releases"
        assert kwargs["params"]["version-feature"] == "21"
        assert kwargs["params"]["bitness"] == 64
        assert kwargs["params"]["bundle-type"] == "jdk"

    def test_nik_flavor(self):
        """Test that NIK flavors query the NIK endpoint and read the liberica component."""
        releases = [
            {"downloadUrl": "https://download.bell-sw.com/nik/24.1/nik.tar.gz", "sha1": "12" * 20,
             "components": [{"component": "liberica", "version": "22.0.2+11"}]},
        ]
        session = _json_session(releases)
        info = LibericaProvider(session=session).resolve_version(
            VersionSpec(), platform="x64-linux", flavor="nik_core"
        )
        assert info.version == "22.0.2+11"
        assert session.get.call_args[0][0] == "https://api.bell-sw.com/v1/nik/releases"
        assert session.get.call_args[1]["params"]["bundle-type"] == "core"

    def test_unknown_flavor(self):
        """Test that invalid flavors are rejected before any request."""
        session = _json_session(LIBERICA_RELEASES)
        with pytest.raises(ProviderError):
            LibericaProvider(session=session).resolve_version(VersionSpec(), platform="x64-linux", flavor="jdk_tiny")
        session.get.assert_not_called()


class TestRustupProvider:
    """Test the delegate provider."""

    def test_delegate_resolution_order(self, monkeypatch):
        """Test config override, then environment, then PATH lookup."""
        monkeypatch.setenv(RUSTUP_PATH_ENV, "/env/rustup")
        assert RustupProvider("/cfg/rustup").delegate().executable == "/cfg/rustup"
        assert RustupProvider().delegate().executable == "/env/rustup"
        monkeypatch.delenv(RUSTUP_PATH_ENV)
        assert RustupProvider().delegate().executable == "rustup"

    def test_no_resolution(self):
        """Test that the delegate provider does not resolve versions itself."""
        with pytest.raises(ProviderError):
            RustupProvider().resolve_version(VersionSpec())


class TestRegistry:
    """Test the provider registry."""

    def test_registry_contents(self, tmp_path):
        """Test that every shipped provider is registered with config applied."""
        manager = ConfigManager(tmp_path / "absent.json")
        registry = create_registry(manager, session=MagicMock())
        assert set(registry) == {"go", "node", "liberica", "rustup"}
        assert registry["go"].timeout == manager.get_request_timeout()
        assert registry["rustup"].delegate() is not None
        assert registry["node"].delegate() is None


class TestTagFor:
    """Test deterministic tag derivation."""

    def test_same_info_same_tag(self):
        """Test that equal metadata always yields the same tag."""
        info = DownloadInfo(url="u", version="1.0.0", platform="x64-linux")
        provider = NodeProvider(session=MagicMock())
        assert provider.tag_for(info) == provider.tag_for(DownloadInfo.from_dict(info.to_dict()))

    def test_missing_version(self):
        """Test that a DownloadInfo without version cannot be tagged."""
        with pytest.raises(ProviderError):
            NodeProvider(session=MagicMock()).tag_for(DownloadInfo(url="u"))


class TestDownloadInfo:
    """Test DownloadInfo deserialization."""

    def test_from_dict_ignores_unknown_fields(self):
        """Test that extra keys are tolerated."""
        info = DownloadInfo.from_dict({"url": "u", "version": "1.0.0", "extra": True})
        assert info.version == "1.0.0"
        assert info.digest is None

    @pytest.mark.parametrize("data", [
        {},
        {"url": "u", "digest": "ab" * 32},
        {"url": "u", "algorithm": "sha256"},
        {"url": "u", "digest": "not-hex", "algorithm": "sha256"},
    ])
    def test_from_dict_rejects_incomplete(self, data):
        """Test that missing url, half-specified or non-hex digests are rejected."""
        with pytest.raises(ValueError):
            DownloadInfo.from_dict(data)
