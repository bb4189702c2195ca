import logging, socket, time
from collections import Counter
from typing import Callable, Dict, List, Optional

from .config import RelayConfig
from .multiplexer import Multiplexer
from .tables import Addr, Blocklist, ReverseTable, Session, SessionTable

logger = logging.getLogger("toxikk-firewall")

STAT_KEYS = ("to_server", "to_client", "dropped_delay", "dropped_blocked", "expired", "socket_errors")


def fmt_addr(addr) -> str:
    return f"{addr[0]}:{addr[1]}"


class PortRelay:
    """
    Relays one UDP port from the external address to the game server on
    127.0.0.1, with one connected local socket per client so the server sees
    each client as a separate peer.

    New clients are held in an admission delay: their first datagram is dropped
    and nothing is forwarded until a datagram arrives after the deadline. Idle
    sessions are swept on a fixed cadence, and an IP that leaves ban_threshold
    or more stale sessions behind in a single sweep is dropped for good.

    All state is touched only from the thread running run(); snapshot() copies
    what it reads so other threads can call it.
    """

    def __init__(self, cfg: RelayConfig, clock: Callable[[], float] = time.monotonic):
        self.cfg = cfg
        self.clock = clock
        self.sessions = SessionTable()
        self.reverse = ReverseTable()
        self.blocked = Blocklist()
        self.mux = Multiplexer()
        self.sock: Optional[socket.socket] = None
        self.next_cleanup = 0.0
        self.stats: Counter = Counter(dict.fromkeys(STAT_KEYS, 0))

    @property
    def port(self) -> int:
        return self.cfg.port

    @property
    def listening(self) -> bool:
        return self.sock is not None

    # -----------------------------
    # setup / loop
    # -----------------------------
    def bind(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind(self.cfg.listen_endpoint)
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        self.sock = sock
        self.mux.register(sock)

    def run(self) -> None:
        try:
            self.bind()
        except OSError as e:
            logger.error(f"[BIND] {fmt_addr(self.cfg.listen_endpoint)}: {e}")
            return
        logger.info(f"[START] relaying {fmt_addr(self.cfg.listen_endpoint)} -> {fmt_addr(self.cfg.server_endpoint)}")
        while True:
            self.poll()

    def poll(self, timeout: Optional[float] = None) -> None:
        """One loop iteration: wait, dispatch everything readable, cleanup when due."""
        if timeout is None:
            timeout = self.cfg.select_timeout
        for sock in self.mux.wait(timeout):
            try:
                if sock is self.sock:
                    self.handle_client_packet()
                else:
                    self.handle_server_packet(sock)
            except BlockingIOError:
                pass  # spurious wakeup
            except OSError as e:
                self.stats["socket_errors"] += 1
                logger.error(f"[SOCKET] port {self.port}: {e!r}")

        now = self.clock()
        if now >= self.next_cleanup:
            self.cleanup(now)

    # -----------------------------
    # client -> server
    # -----------------------------
    def handle_client_packet(self) -> None:
        data, addr = self.sock.recvfrom(self.cfg.buffer_size)
        self.on_client_datagram(data, addr)

    def on_client_datagram(self, data: bytes, addr: Addr) -> None:
        if addr[0] in self.blocked:
            self.stats["dropped_blocked"] += 1
            logger.info(f"[BLOCKED] {fmt_addr(addr)}")
            return

        now = self.clock()
        session = self.sessions.get(addr)
        if session is None:
            deadline = now + self.cfg.admission_delay
            # staleness counts from the deadline while the client is delayed
            self.sessions.add(addr, Session(None, deadline, deadline))
            self.stats["dropped_delay"] += 1
            logger.info(f"[DELAY] delaying client connection attempt: {fmt_addr(addr)} to port {self.port}")
            return

        if session.sock is None:
            if now < session.admission_deadline:
                self.stats["dropped_delay"] += 1
                return
            self.connect(addr, session)

        session.last_activity = now
        session.sock.send(data)
        self.stats["to_server"] += 1

    def connect(self, addr: Addr, session: Session) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.connect(self.cfg.server_endpoint)
            sock.setblocking(False)
            local = sock.getsockname()
            self.mux.register(sock)
        except OSError:
            sock.close()
            raise
        session.sock = sock
        session.local = local
        self.reverse.add(local, addr)
        logger.info(f"[CONNECT] connected {fmt_addr(addr)} to {fmt_addr(local)} for target port {self.port}")

    # -----------------------------
    # server -> client
    # -----------------------------
    def handle_server_packet(self, sock: socket.socket) -> None:
        data = sock.recv(self.cfg.buffer_size)
        client = self.reverse.get(sock.getsockname())
        if client is None:
            return
        self.sock.sendto(data, client)
        self.stats["to_client"] += 1

    # -----------------------------
    # cleanup / ban
    # -----------------------------
    def cleanup(self, now: Optional[float] = None) -> List[str]:
        """Expires idle sessions and bans IPs with too many expiries in this pass.

        Returns the IPs newly added to the blocklist.
        """
        if now is None:
            now = self.clock()
        self.next_cleanup = now + self.cfg.cleanup_interval
        stale_before = now - self.cfg.idle_timeout

        expired: Dict[str, int] = Counter()
        for addr, session in self.sessions.snapshot():
            if session.last_activity >= stale_before:
                continue
            self.sessions.remove(addr)
            expired[addr[0]] += 1
            self.stats["expired"] += 1
            if session.sock is not None:
                self.release(addr, session)

        banned = []
        for ip, count in expired.items():
            if count >= self.cfg.ban_threshold and self.blocked.add(ip):
                logger.warning(f"[BAN] added to ban-list: {ip} ({count} stale sessions on port {self.port})")
                banned.append(ip)
        return banned

    def release(self, addr: Addr, session: Session) -> None:
        sock = session.sock
        self.reverse.remove(session.local)
        self.mux.unregister(sock)
        try:
            sock.close()
        except OSError as e:
            logger.error(f"[SOCKET] port {self.port}: closing socket of {fmt_addr(addr)}: {e!r}")
        logger.info(f"[DISCONNECT] disconnected {fmt_addr(addr)}->{fmt_addr(session.local)}")

    # -----------------------------
    # status
    # -----------------------------
    def snapshot(self) -> dict:
        entries = self.sessions.snapshot()
        active = sum(1 for _addr, s in entries if s.sock is not None)
        return {
            "port": self.port,
            "listen": fmt_addr(self.cfg.listen_endpoint),
            "listening": self.listening,
            "sessions": len(entries),
            "active": active,
            "delayed": len(entries) - active,
            "blocked": self.blocked.snapshot(),
            "stats": dict(self.stats),
        }

    def close(self) -> None:
        for addr, session in self.sessions.snapshot():
            self.sessions.remove(addr)
            if session.sock is not None:
                self.release(addr, session)
        if self.sock is not None:
            self.mux.unregister(self.sock)
            self.sock.close()
            self.sock = None
        self.mux.close()
