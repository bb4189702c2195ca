import socket
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

Addr = Tuple[str, int]


@dataclass
class Session:
    # outbound socket stays None while the client sits in the admission delay
    sock: Optional[socket.socket]
    last_activity: float
    admission_deadline: float
    local: Optional[Addr] = None

    @property
    def delayed(self) -> bool:
        return self.sock is None


class SessionTable:
    """client address -> Session"""

    def __init__(self):
        self._sessions: Dict[Addr, Session] = {}

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, addr):
        return addr in self._sessions

    def __iter__(self) -> Iterator[Addr]:
        return iter(self._sessions)

    def get(self, addr: Addr) -> Optional[Session]:
        return self._sessions.get(addr)

    def add(self, addr: Addr, session: Session) -> None:
        self._sessions[addr] = session

    def remove(self, addr: Addr) -> Optional[Session]:
        return self._sessions.pop(addr, None)

    def snapshot(self) -> List[Tuple[Addr, Session]]:
        return list(self._sessions.items())


class ReverseTable:
    """outbound socket local address -> client address"""

    def __init__(self):
        self._clients: Dict[Addr, Addr] = {}

    def __len__(self):
        return len(self._clients)

    def __contains__(self, local):
        return local in self._clients

    def get(self, local: Addr) -> Optional[Addr]:
        return self._clients.get(local)

    def add(self, local: Addr, client: Addr) -> None:
        self._clients[local] = client

    def remove(self, local: Addr) -> Optional[Addr]:
        return self._clients.pop(local, None)


class Blocklist:
    def __init__(self):
        self._ips: Set[str] = set()

    def __len__(self):
        return len(self._ips)

    def __contains__(self, ip):
        return ip in self._ips

    def add(self, ip: str) -> bool:
        """Returns True if the IP was not blocked before."""
        if ip in self._ips:
            return False
        self._ips.add(ip)
        return True

    def snapshot(self) -> List[str]:
        return sorted(self._ips)
