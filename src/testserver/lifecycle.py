"""Control channel and control loop.

Request handlers push two kinds of events onto a single ControlChannel:
diagnostic lines and the shutdown signal. The ControlLoop, running in the
main thread, prints diagnostics in arrival order until it sees the
shutdown signal, then stops the server exactly once.
"""

import logging
import queue
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional, TextIO, Union

logger = logging.getLogger(__name__)

FAREWELL = "Byebye"


@dataclass(frozen=True)
class Diagnostic:
    """A human-readable request outcome line."""
    text: str


@dataclass(frozen=True)
class Shutdown:
    """Request to stop the server."""


Event = Union[Diagnostic, Shutdown]


class ControlChannel:
    """Multiplexed diagnostic and shutdown stream.

    Any number of handler threads may send; exactly one ControlLoop
    receives. Events from one thread keep their order.
    """

    def __init__(self):
        self._events: queue.Queue = queue.Queue()

    def emit(self, text: str) -> None:
        """Send a diagnostic line."""
        self._events.put(Diagnostic(text))

    def request_shutdown(self) -> None:
        """Send the shutdown signal."""
        self._events.put(Shutdown())

    def receive(self, timeout: Optional[float] = None) -> Event:
        """Block until the next event arrives.

        Raises:
            queue.Empty: If timeout elapses first
        """
        return self._events.get(timeout=timeout)


class LoopState(Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class ControlLoop:
    """Process-level consumer of the control channel.

    Args:
        channel: Channel shared with the request handlers
        server: Object with a shutdown() method, called once on stop
        out: Stream diagnostics and the farewell are printed to
    """

    def __init__(self, channel: ControlChannel, server, out: Optional[TextIO] = None):
        self.channel = channel
        self.server = server
        self.out = out
        self.state = LoopState.RUNNING

    def _print(self, line: str) -> None:
        print(line, file=self.out or sys.stdout, flush=True)

    def run(self) -> None:
        """Print diagnostics until shutdown is signaled, then stop the server."""
        if self.state is not LoopState.RUNNING:
            raise RuntimeError("Control loop already stopped")

        try:
            while True:
                event = self.channel.receive()
                if isinstance(event, Shutdown):
                    logger.info("Shutdown signal received")
                    break
                self._print(event.text)
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")

        self.stop()

    def stop(self) -> None:
        """Transition Running -> Stopped."""
        self.state = LoopState.STOPPED
        self._print(FAREWELL)
        self.server.shutdown()
