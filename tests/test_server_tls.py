"""Tests for testserver/tls.py - self-signed certificate generation."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from testserver.tls import (
    TLSConfig,
    generate_self_signed_cert,
    get_cert_fingerprint,
)


class TestGenerateSelfSignedCert:
    """Tests for generate_self_signed_cert."""

    def test_generates_cert_and_key(self, tmp_path):
        config = generate_self_signed_cert(cert_dir=tmp_path)

        assert isinstance(config, TLSConfig)
        assert config.cert_path == tmp_path / "server.crt"
        assert config.key_path == tmp_path / "server.key"
        assert config.cert_path.exists()
        assert config.key_path.exists()
        assert ":" in config.fingerprint

    def test_key_permissions(self, tmp_path):
        config = generate_self_signed_cert(cert_dir=tmp_path)
        assert config.key_path.stat().st_mode & 0o777 == 0o600

    def test_openssl_config_removed(self, tmp_path):
        generate_self_signed_cert(cert_dir=tmp_path)
        assert not (tmp_path / "openssl.cnf").exists()

    def test_default_dir_is_temporary(self):
        config = generate_self_signed_cert()
        try:
            assert config.cert_path.parent.name.startswith("aci-testserver-tls-")
        finally:
            for path in config.cert_path.parent.iterdir():
                path.unlink()
            config.cert_path.parent.rmdir()

    def test_san_includes_ip(self, tmp_path):
        config = generate_self_signed_cert(cert_dir=tmp_path, ip_address="127.0.0.1")
        result = subprocess.run(
            ["openssl", "x509", "-in", str(config.cert_path), "-noout", "-text"],
            capture_output=True, text=True, check=True,
        )
        assert "IP Address:127.0.0.1" in result.stdout
        assert "DNS:localhost" in result.stdout

    def test_openssl_failure_propagates(self, tmp_path):
        """openssl errors are raised and the config file is still removed."""
        with patch("testserver.tls.subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.CalledProcessError(1, "openssl")
            with pytest.raises(subprocess.CalledProcessError):
                generate_self_signed_cert(cert_dir=tmp_path)
        assert not (tmp_path / "openssl.cnf").exists()


class TestGetCertFingerprint:
    """Tests for get_cert_fingerprint."""

    def test_fingerprint_format(self, tls_config):
        """SHA256 fingerprint: 32 hex bytes joined by colons."""
        fingerprint = get_cert_fingerprint(tls_config.cert_path)
        assert len(fingerprint) == 95
        assert fingerprint.count(":") == 31
        for part in fingerprint.split(":"):
            int(part, 16)

    def test_fingerprint_invalid_cert(self, tmp_path):
        cert_path = tmp_path / "invalid.crt"
        cert_path.write_text("not a certificate")

        with pytest.raises(subprocess.CalledProcessError):
            get_cert_fingerprint(cert_path)
