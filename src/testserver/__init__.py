"""Ephemeral HTTPS server for exercising ACI fetch authentication.

Serves a freshly built test ACI behind no auth, HTTP Basic or OAuth
Bearer auth, and shuts itself down on the first POST.
"""

from testserver.auth import (
    AuthMode,
    AuthError,
    validate_credentials,
)
from testserver.aci import (
    AciBuilder,
    BuildError,
    build_aci,
)
from testserver.httpd import (
    RequestRouter,
    Response,
    Server,
    create_server,
)
from testserver.lifecycle import (
    ControlChannel,
    ControlLoop,
    LoopState,
)

__all__ = [
    # Auth
    "AuthMode",
    "AuthError",
    "validate_credentials",
    # Artifact
    "AciBuilder",
    "BuildError",
    "build_aci",
    # Server
    "RequestRouter",
    "Response",
    "Server",
    "create_server",
    # Control loop
    "ControlChannel",
    "ControlLoop",
    "LoopState",
]
