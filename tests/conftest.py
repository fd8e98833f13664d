"""Shared pytest fixtures for testserver tests."""

import base64
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from testserver.tls import generate_self_signed_cert


def basic_header(user: str, password: str) -> str:
    """Authorization header value for HTTP Basic."""
    creds = base64.b64encode(f"{user}:{password}".encode()).decode()
    return f"Basic {creds}"


@pytest.fixture(scope="session")
def tls_config(tmp_path_factory):
    """Self-signed certificate shared by all integration tests."""
    cert_dir = tmp_path_factory.mktemp("certs")
    return generate_self_signed_cert(cert_dir=cert_dir, hostname="localhost")


@pytest.fixture
def fake_builder():
    """Artifact builder returning fixed bytes and counting calls."""
    class FakeBuilder:
        def __init__(self):
            self.calls = 0

        def __call__(self) -> bytes:
            self.calls += 1
            return b"fake-aci-image"

    return FakeBuilder()
