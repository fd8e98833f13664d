"""TLS certificate management for the test server.

Every server run gets a fresh self-signed certificate. Clients are
expected to skip peer verification, so the fingerprint is only logged.
"""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Certificate defaults (short-lived, throwaway)
DEFAULT_CERT_DAYS = 1
DEFAULT_KEY_SIZE = 2048
DEFAULT_HOSTNAME = "localhost"


@dataclass
class TLSConfig:
    """TLS configuration for the server."""

    cert_path: Path
    key_path: Path
    fingerprint: str


def get_cert_fingerprint(cert_path: Path) -> str:
    """Colon-separated SHA256 fingerprint, logged at server startup."""
    result = subprocess.run(
        [
            "openssl", "x509",
            "-in", str(cert_path),
            "-noout",
            "-fingerprint",
            "-sha256"
        ],
        capture_output=True,
        text=True,
        check=True,
    )
    # Output format: "sha256 Fingerprint=AB:CD:EF:..."
    output = result.stdout.strip()
    if "=" in output:
        return output.split("=", 1)[1]
    return output


def generate_self_signed_cert(
    cert_dir: Optional[Path] = None,
    hostname: str = DEFAULT_HOSTNAME,
    ip_address: str = "127.0.0.1",
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
) -> TLSConfig:
    """Generate a self-signed certificate for the server.

    Creates a certificate with CN = hostname and SAN = hostname + IP.
    Existing files in cert_dir are overwritten.

    Args:
        cert_dir: Directory to store certificate files (default: new temp dir)
        hostname: Hostname for certificate CN
        ip_address: IP address added to the SAN
        days: Certificate validity in days
        key_size: RSA key size in bits

    Returns:
        TLSConfig with paths and fingerprint

    Raises:
        subprocess.CalledProcessError: If openssl command fails
        FileNotFoundError: If openssl is not installed
    """
    if cert_dir is None:
        cert_dir = Path(tempfile.mkdtemp(prefix="aci-testserver-tls-"))
    cert_dir.mkdir(parents=True, exist_ok=True)

    cert_path = cert_dir / "server.crt"
    key_path = cert_dir / "server.key"

    logger.info("Generating self-signed certificate for %s (%s)", hostname, ip_address)

    san_entries = [f"DNS:{hostname}", f"IP:{ip_address}"]
    config_path = cert_dir / "openssl.cnf"
    config_path.write_text(f"""
[req]
default_bits = {key_size}
prompt = no
default_md = sha256
distinguished_name = dn
x509_extensions = v3_ext

[dn]
CN = {hostname}

[v3_ext]
basicConstraints = CA:FALSE
keyUsage = digitalSignature, keyEncipherment
extendedKeyUsage = serverAuth
subjectAltName = {",".join(san_entries)}
""")

    try:
        subprocess.run(
            [
                "openssl", "req",
                "-x509",
                "-nodes",
                "-newkey", f"rsa:{key_size}",
                "-keyout", str(key_path),
                "-out", str(cert_path),
                "-days", str(days),
                "-config", str(config_path),
            ],
            check=True,
            capture_output=True,
        )
        os.chmod(key_path, 0o600)
    finally:
        config_path.unlink(missing_ok=True)

    fingerprint = get_cert_fingerprint(cert_path)
    logger.info("Certificate fingerprint (SHA256): %s", fingerprint)

    return TLSConfig(cert_path=cert_path, key_path=key_path, fingerprint=fingerprint)
