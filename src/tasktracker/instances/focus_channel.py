"""
Focus request channel over the fixed local coordination port.

The running server listens on LOCK_PORT. Operator tooling connects, writes a
single JSON FocusRequest ({"action": "focus", "timestamp": <epoch-ms>}) and
closes. No response is expected. The server forwards the request into the UI,
where the active tab handles it as a request-focus message.
"""

import _thread
import json
import logging
import socket
import threading
from typing import Any, Callable

from tasktracker.instances.errors import FocusRequestError
from tasktracker.instances.messages import FocusRequest

logger = logging.getLogger(__name__)

MAX_MESSAGE_BYTES = 64 * 1024


def send_focus_request(host: str, port: int, request: FocusRequest | None = None, timeout: float | None = None) -> None:
    """Write one focus request to the coordination port.

    Args:
        host: Coordination host
        port: Coordination port
        request: Message to send (a fresh "focus" request when omitted)
        timeout: Connect timeout in seconds (None uses the platform default)

    Raises:
        FocusRequestError: If the connection or write failed; not retried
    """
    request = request or FocusRequest()
    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            sock.sendall(request.encode())
    except OSError as e:
        raise FocusRequestError(host, port, str(e)) from e
    logger.info(f"Sent {request.action} request to {host}:{port}")


def decode_message(payload: bytes) -> dict[str, Any]:
    """Decode a one-shot coordination message.

    Raises:
        ValueError: If payload is not a JSON object
    """
    data = json.loads(payload.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    return data


class FocusRequestListener:
    """Serves one-shot JSON messages on an already bound listening socket.

    Args:
        server_socket: Bound, listening TCP socket (owned by the caller)
        on_message: Called with each decoded message dictionary
    """

    def __init__(self, server_socket: socket.socket, on_message: Callable[[dict[str, Any]], None]) -> None:
        self.server_socket = server_socket
        self.on_message = on_message
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self.server_socket.settimeout(0.5)
        self._thread = threading.Thread(target=self._serve, name="focus-listener", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, addr = self.server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                # Socket closed underneath us during shutdown
                break
            with conn:
                self._handle_connection(conn, addr)

    def _handle_connection(self, conn: socket.socket, addr: Any) -> None:
        conn.settimeout(2.0)
        chunks: list[bytes] = []
        size = 0
        try:
            while size < MAX_MESSAGE_BYTES:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
                size += len(chunk)
        except OSError as e:
            # ECONNRESET and friends from impatient clients
            logger.debug(f"Socket error from {addr} (ignored): {e}")
        if not chunks:
            return
        try:
            message = decode_message(b"".join(chunks))
        except ValueError as e:
            logger.error(f"Error parsing instance message from {addr}: {e}")
            return
        logger.info(f"Received message from another instance: {message}")
        try:
            self.on_message(message)
        except KeyboardInterrupt:
            _thread.interrupt_main()
            raise
        except Exception as e:
            logger.error(f"Instance message handler failed: {e}", exc_info=True)
