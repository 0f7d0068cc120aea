"""Operating-system port probes for dev-prism."""

import socket

PROBE_HOST = "127.0.0.1"


class SystemScanner:
    """Ask the OS which TCP ports can be bound right now.

    A probe binds a socket and closes it immediately, so the answer can be
    stale by the time the port is used. The registry's unique constraint
    is what actually settles ownership.
    """

    def __init__(self, host: str = PROBE_HOST) -> None:
        self.host = host

    def probe_free_port(self) -> int:
        """Bind to port 0 and return the ephemeral port the OS picked.

        Returns:
            A port number that was bindable at probe time
        """
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((self.host, 0))
            return s.getsockname()[1]

    def is_port_bindable(self, port: int) -> bool:
        """Test if a port can be bound to.

        Args:
            port: Port number to test

        Returns:
            True if port is available, False otherwise
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                s.bind((self.host, port))
                return True
        except OSError:
            return False
