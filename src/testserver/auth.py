"""Credential validation for the test server.

Provides:
- AuthMode selection (none, basic, oauth)
- Authorization header parsing shared by Basic and Bearer schemes
- validate_credentials() against the fixed test credentials
"""

import base64
import binascii
import logging
from enum import Enum
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Fixed test credentials (no real verification is ever done)
BASIC_USER = "bar"
BASIC_PASSWORD = "baz"
OAUTH_TOKEN = "sometoken"


class AuthMode(Enum):
    """Authentication mode, fixed for the lifetime of a server."""

    NONE = "none"
    BASIC = "basic"
    OAUTH = "oauth"

    @classmethod
    def parse(cls, value: str) -> "AuthMode":
        """Look up a mode by its command-line name.

        Raises:
            ValueError: If value is not a known mode
        """
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"wrong type {value!r}, should be {', '.join(m.value for m in cls)}"
            ) from None

    def credentials(self) -> Optional[dict]:
        """Credentials a client needs for this mode, or None for NONE."""
        if self is AuthMode.BASIC:
            return {"user": BASIC_USER, "password": BASIC_PASSWORD}
        if self is AuthMode.OAUTH:
            return {"token": OAUTH_TOKEN}
        return None


class AuthError(Exception):
    """Authentication error with error code and HTTP status."""

    def __init__(self, code: str, message: str, http_status: int):
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(f"{code}: {message}")


def get_auth_payload(headers: Mapping[str, str], scheme: str) -> str:
    """Extract the credential payload for a given scheme.

    The header must hold exactly two space-separated fields, the first of
    which is the scheme name (case-sensitive).

    Args:
        headers: Request headers
        scheme: Expected scheme ("Basic" or "Bearer")

    Returns:
        The payload following the scheme

    Raises:
        AuthError: If the header is absent, malformed or of another scheme
    """
    auth_header = headers.get("Authorization", "")
    if not auth_header:
        raise AuthError("E300", 'No "Authorization" header: No auth', 401)

    parts = auth_header.split(" ")
    if len(parts) != 2:
        raise AuthError("E302", 'No "Authorization" header: Malformed auth', 400)

    if parts[0] != scheme:
        raise AuthError("E300", 'No "Authorization" header: Wrong auth', 401)

    return parts[1]


def _check_basic(headers: Mapping[str, str]) -> None:
    payload = get_auth_payload(headers, "Basic")

    try:
        creds = base64.b64decode(payload, validate=True)
    except binascii.Error:
        raise AuthError("E302", 'Badly formed "Authorization" header', 400)

    # Raw bytes: undecodable credentials are a mismatch, not malformed
    parts = creds.split(b":")
    if len(parts) != 2:
        raise AuthError("E302", 'Badly formed "Authorization" header (2)', 400)

    user, password = parts
    if user != BASIC_USER.encode() or password != BASIC_PASSWORD.encode():
        shown = creds.decode("utf-8", errors="backslashreplace")
        raise AuthError("E301", f'Bad credentials: "{shown}"', 401)


def _check_bearer(headers: Mapping[str, str]) -> None:
    token = get_auth_payload(headers, "Bearer")
    if token != OAUTH_TOKEN:
        raise AuthError("E301", f'Bad token: "{token}"', 401)


def validate_credentials(
    mode: AuthMode,
    headers: Mapping[str, str],
) -> Optional[AuthError]:
    """Validate request headers for the given auth mode.

    Args:
        mode: Server auth mode
        headers: Request headers (any mapping with a .get())

    Returns:
        None if auth is valid, or AuthError on failure
    """
    try:
        if mode is AuthMode.BASIC:
            _check_basic(headers)
        elif mode is AuthMode.OAUTH:
            _check_bearer(headers)
    except AuthError as e:
        logger.debug("Rejected %s auth: %s", mode.value, e)
        return e

    return None
