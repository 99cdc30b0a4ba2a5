"""
Tests for streaming digest computation and verification.
"""

import hashlib
import io

import pytest

from anyvm.core.digest import (
    DigestMismatch,
    DigestVerifier,
    UnsupportedAlgorithm,
    digest_file,
    normalize_algorithm,
    verify,
)

PAYLOAD = b"anyvm digest payload " * 1000


class TestNormalizeAlgorithm:
    """Test algorithm name normalization."""

    def test_accepts_common_spellings(self):
        """Test that SHA-256 style names map to hashlib names."""
        assert normalize_algorithm("SHA-256") == "sha256"
        assert normalize_algorithm("sha1") == "sha1"
        assert normalize_algorithm("Sha512") == "sha512"

    def test_rejects_unknown(self):
        """Test that unsupported algorithms raise."""
        with pytest.raises(UnsupportedAlgorithm):
            normalize_algorithm("md5")
        with pytest.raises(UnsupportedAlgorithm):
            normalize_algorithm("")


class TestDigestVerifier:
    """Test the incremental verifier."""

    @pytest.mark.parametrize("algorithm", ["sha1", "sha256", "sha512"])
    def test_digest_matches_hashlib(self, algorithm):
        """Test digest over chunks equals digest over the whole payload."""
        verifier = DigestVerifier(algorithm)
        for i in range(0, len(PAYLOAD), 777):
            verifier.update(PAYLOAD[i:i + 777])
        expected = hashlib.new(algorithm, PAYLOAD).hexdigest()
        assert verifier.hexdigest() == expected
        assert verifier.verify(expected) == expected
        assert verifier.bytes_seen == len(PAYLOAD)

    def test_verify_ignores_case(self):
        """Test that upper-case expected digests are accepted."""
        verifier = DigestVerifier("sha256")
        verifier.update(PAYLOAD)
        verifier.verify(hashlib.sha256(PAYLOAD).hexdigest().upper())

    def test_flipped_byte_mismatches(self):
        """Test that changing a single byte causes DigestMismatch with both values."""
        expected = hashlib.sha256(PAYLOAD).hexdigest()
        corrupted = bytearray(PAYLOAD)
        corrupted[100] ^= 0x01

        verifier = DigestVerifier("sha256")
        verifier.update(bytes(corrupted))
        with pytest.raises(DigestMismatch) as exc_info:
            verifier.verify(expected)

        assert exc_info.value.expected == expected
        assert exc_info.value.computed == hashlib.sha256(bytes(corrupted)).hexdigest()
        assert exc_info.value.algorithm == "sha256"

    def test_tee_passes_bytes_through(self):
        """Test that tee yields chunks unchanged while hashing them."""
        chunks = [b"abc", b"", b"def"]
        verifier = DigestVerifier("sha1")
        assert list(verifier.tee(chunks)) == chunks
        assert verifier.hexdigest() == hashlib.sha1(b"abcdef").hexdigest()

    def test_wrap_hashes_reads(self):
        """Test that the wrapped reader returns data and updates the digest."""
        verifier = DigestVerifier("sha256")
        reader = verifier.wrap(io.BytesIO(PAYLOAD))
        data = b""
        while True:
            chunk = reader.read(4096)
            if not chunk:
                break
            data += chunk
        assert data == PAYLOAD
        assert verifier.hexdigest() == hashlib.sha256(PAYLOAD).hexdigest()


class TestVerify:
    """Test the plain comparison helper."""

    def test_equal_digests(self):
        """Test that equal digests pass."""
        verify("ABCDEF", "abcdef")

    def test_different_digests(self):
        """Test that different digests raise."""
        with pytest.raises(DigestMismatch):
            verify("abcdef", "abcdee", "sha1")


class TestDigestFile:
    """Test digesting local files."""

    def test_digest_file(self, tmp_path):
        """Test that file digests match hashlib."""
        path = tmp_path / "payload.bin"
        path.write_bytes(PAYLOAD)
        assert digest_file(path, "sha512", chunk_size=1000) == hashlib.sha512(PAYLOAD).hexdigest()
