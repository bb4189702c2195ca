import selectors, socket
from typing import List, Optional


class Multiplexer:
    """
    Readiness wait over a changing set of UDP sockets.

    Sockets are registered as sessions allocate them and must be unregistered
    before they are closed. wait() returns the readable sockets, or an empty
    list once the timeout runs out.
    """

    def __init__(self, selector: Optional[selectors.BaseSelector] = None):
        self._sel = selector or selectors.DefaultSelector()

    def __len__(self):
        return len(self._sel.get_map())

    def __contains__(self, sock):
        try:
            self._sel.get_key(sock)
        except (KeyError, ValueError):
            return False
        return True

    def register(self, sock: socket.socket) -> None:
        self._sel.register(sock, selectors.EVENT_READ)

    def unregister(self, sock: socket.socket) -> None:
        try:
            self._sel.unregister(sock)
        except (KeyError, ValueError):
            pass

    def wait(self, timeout: float) -> List[socket.socket]:
        return [key.fileobj for key, _mask in self._sel.select(timeout=timeout)]

    def close(self) -> None:
        self._sel.close()
