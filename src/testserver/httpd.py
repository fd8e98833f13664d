"""Ephemeral HTTPS test server.

Serves a freshly built ACI at any path ending in `prog.aci`, guarded by
the configured auth mode. A POST to any path stops the server.
"""

import logging
import posixpath
import shutil
import ssl
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Mapping, Optional
from urllib.parse import unquote, urlparse

from testserver.aci import BuildError, build_aci
from testserver.auth import AuthMode, validate_credentials
from testserver.lifecycle import ControlChannel
from testserver.tls import TLSConfig, generate_self_signed_cert

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 0  # Let OS assign port
ACI_NAME = "prog.aci"
DEFAULT_REQUEST_TIMEOUT = 10.0  # Seconds per socket operation


@dataclass
class Response:
    """Outcome of routing one request."""
    status: int
    body: bytes = b""
    content_type: str = "application/octet-stream"


class RequestRouter:
    """Dispatch requests by method and path.

    Holds no mutable state; diagnostics and the shutdown signal go to the
    control channel.

    Args:
        mode: Auth mode for GET requests
        channel: Control channel for diagnostics and shutdown
        builder: Callable returning the artifact bytes, raising BuildError
    """

    def __init__(
        self,
        mode: AuthMode,
        channel: ControlChannel,
        builder: Callable[[], bytes] = build_aci,
    ):
        self.mode = mode
        self.channel = channel
        self.builder = builder

    def handle(self, method: str, path: str, headers: Mapping[str, str]) -> Response:
        """Route one request and return the response to send."""
        if method == "POST":
            self.channel.request_shutdown()
            return Response(200)
        if method != "GET":
            return Response(405)
        return self._handle_get(path, headers)

    def _handle_get(self, path: str, headers: Mapping[str, str]) -> Response:
        error = validate_credentials(self.mode, headers)
        if error:
            self.channel.emit(f'Rejected "{path}": {error.message}')
            return Response(error.http_status)

        if posixpath.basename(unquote(urlparse(path).path).rstrip("/")) != ACI_NAME:
            self.channel.emit(f'"{path}" not found.')
            return Response(404)

        self.channel.emit(f'Serving "{path}"')
        try:
            data = self.builder()
        except BuildError as e:
            self.channel.emit(f'  failed "{path}" ({e})')
            return Response(500)

        self.channel.emit(f'  done "{path}".')
        return Response(200, body=data)


class AciRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler delegating to the server's router.

    The TLS handshake runs here, in the connection's own thread, and every
    socket operation is bounded by the server's request timeout so idle
    connections cannot hold up shutdown.
    """

    server: "AciHTTPServer"

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def setup(self):
        self.timeout = self.server.request_timeout
        super().setup()

    def handle(self):
        try:
            self.request.do_handshake()
        except (ssl.SSLError, OSError) as e:
            logger.debug("TLS handshake with %s failed: %s", self.client_address[0], e)
            return
        super().handle()

    def parse_request(self) -> bool:
        """Parse the request line; answer methods without a do_ handler."""
        if not super().parse_request():
            return False
        if not hasattr(self, "do_" + self.command):
            self._dispatch()
            return False
        return True

    def do_GET(self):
        """Handle GET requests."""
        self._dispatch()

    def do_POST(self):
        """Handle POST requests (stops the server)."""
        self._dispatch()

    def do_HEAD(self):
        """Handle HEAD requests."""
        self._dispatch()

    def _dispatch(self):
        response = self.server.router.handle(self.command, self.path, self.headers)
        self.send_response(response.status)
        if response.body:
            self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if response.body and self.command != "HEAD":
            self.wfile.write(response.body)


class AciHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server bound to one router.

    Handler threads are joined on server_close(), so in-flight requests
    finish before shutdown completes. Idle connections are dropped after
    request_timeout.
    """

    daemon_threads = False

    def __init__(
        self,
        address,
        router: RequestRouter,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.router = router
        self.request_timeout = request_timeout
        super().__init__(address, AciRequestHandler)


class Server:
    """Ephemeral HTTPS test server.

    Args:
        mode: Auth mode for GET requests
        channel: Control channel shared with the control loop
        bind: Address to bind to
        port: Port to listen on (0 = ephemeral)
        builder: Artifact builder callable
        tls_config: TLS configuration (auto-generated if None)
        cert_dir: Directory for the auto-generated certificate
        key_size: RSA key size for the auto-generated certificate
        request_timeout: Seconds a connection may sit idle in a socket operation
    """

    def __init__(
        self,
        mode: AuthMode,
        channel: Optional[ControlChannel] = None,
        bind: str = DEFAULT_BIND,
        port: int = DEFAULT_PORT,
        builder: Callable[[], bytes] = build_aci,
        tls_config: Optional[TLSConfig] = None,
        cert_dir: Optional[Path] = None,
        key_size: int = 2048,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.mode = mode
        self.channel = channel or ControlChannel()
        self.bind = bind
        self.port = port
        self.builder = builder
        self.tls_config = tls_config
        self.cert_dir = cert_dir
        self.key_size = key_size
        self.request_timeout = request_timeout
        self.server: Optional[AciHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._owned_cert_dir: Optional[Path] = None

    @property
    def address(self) -> tuple[str, int]:
        """Actual (host, port) the server listens on."""
        if not self.server:
            raise RuntimeError("Server not started")
        host, port = self.server.server_address[:2]
        return host, port

    @property
    def host(self) -> str:
        """Listening address as host:port."""
        host, port = self.address
        return f"{host}:{port}"

    @property
    def url(self) -> str:
        return f"https://{self.host}"

    def start(self):
        """Bind the TLS listener and serve in a background thread.

        Raises:
            RuntimeError: If the certificate or the listener cannot be set up
        """
        if self.server:
            raise RuntimeError("Server already started")

        # Auto-generate TLS cert if not provided
        if self.tls_config is None:
            try:
                self.tls_config = generate_self_signed_cert(
                    cert_dir=self.cert_dir,
                    ip_address=self.bind,
                    key_size=self.key_size,
                )
            except Exception as e:
                logger.error("Failed to generate TLS cert: %s", e)
                raise RuntimeError(f"TLS init failed: {e}") from e
            if self.cert_dir is None:
                self._owned_cert_dir = self.tls_config.cert_path.parent

        router = RequestRouter(self.mode, self.channel, self.builder)
        try:
            server = AciHTTPServer((self.bind, self.port), router, self.request_timeout)
        except OSError as e:
            self._remove_cert_dir()
            logger.error("Failed to bind %s:%d: %s", self.bind, self.port, e)
            raise RuntimeError(f"Bind failed: {e}") from e

        # Wrap with TLS
        try:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.load_cert_chain(
                certfile=str(self.tls_config.cert_path),
                keyfile=str(self.tls_config.key_path),
            )
            # Handshake runs in the handler thread, not in accept()
            server.socket = context.wrap_socket(
                server.socket, server_side=True, do_handshake_on_connect=False
            )
        except (ssl.SSLError, OSError) as e:
            server.server_close()
            self._remove_cert_dir()
            raise RuntimeError(f"TLS init failed: {e}") from e

        self.server = server
        self._thread = threading.Thread(
            target=server.serve_forever, name="testserver", daemon=True
        )
        self._thread.start()

        logger.info("Server started on %s (auth: %s)", self.url, self.mode.value)
        logger.info("Certificate fingerprint: %s", self.tls_config.fingerprint)

    def shutdown(self):
        """Stop serving, close the listener and release the certificate.

        Raises:
            RuntimeError: If the server is not running
        """
        if not self.server:
            raise RuntimeError("Server not started")

        logger.info("Shutting down server")
        server, self.server = self.server, None
        server.shutdown()
        server.server_close()
        if self._thread:
            self._thread.join()
            self._thread = None
        self._remove_cert_dir()

    def _remove_cert_dir(self):
        if self._owned_cert_dir:
            shutil.rmtree(self._owned_cert_dir, ignore_errors=True)
            self._owned_cert_dir = None


def create_server(
    mode: AuthMode,
    channel: Optional[ControlChannel] = None,
    bind: str = DEFAULT_BIND,
    port: int = DEFAULT_PORT,
    builder: Callable[[], bytes] = build_aci,
    tls_config: Optional[TLSConfig] = None,
    cert_dir: Optional[Path] = None,
    key_size: int = 2048,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Server:
    """Create a server instance.

    Returns:
        Server instance (not yet started)
    """
    return Server(
        mode=mode,
        channel=channel,
        bind=bind,
        port=port,
        builder=builder,
        tls_config=tls_config,
        cert_dir=cert_dir,
        key_size=key_size,
        request_timeout=request_timeout,
    )
