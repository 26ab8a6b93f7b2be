"""
TCP drain barrier.

SMB copies can leave sessions established for a while after the copy
returns. Starting the next transfer on top of them distorts that
measurement, so phases are fenced by waiting until no ESTABLISHED connection
to the share port (445) of any candidate address remains, or until a soft
timeout elapses. The barrier never raises; a timeout is reported in the
result and logged as a warning.
"""

import logging
import socket
import time
from dataclasses import dataclass
from ipaddress import ip_address, ip_network, IPv4Network, IPv6Network
from typing import Callable, Iterable, List, Optional, Sequence, Union

import psutil

logger = logging.getLogger("sharebench.drain")

Network = Union[IPv4Network, IPv6Network]

POLL_INTERVAL_S = 1.0


@dataclass(frozen=True)
class DrainResult:
    drained: bool
    elapsed: float
    remaining: int = 0
    error: str = ""


def _as_networks(candidates: Iterable[object]) -> List[Network]:
    networks: List[Network] = []
    for entry in candidates:
        if isinstance(entry, (IPv4Network, IPv6Network)):
            networks.append(entry)
        else:
            networks.append(ip_network(str(entry), strict=False))
    return networks


def resolve_candidate_addresses(explicit: Iterable[str], hosts: Iterable[str]) -> frozenset:
    """Explicit addresses/ranges plus every address the given hostnames resolve to."""
    resolved = {str(e) for e in explicit}
    for host in hosts:
        try:
            infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
        except socket.gaierror as exc:
            logger.warning(f"Could not resolve {host} for drain check: {exc}")
            continue
        for info in infos:
            addr = info[4][0].split("%", 1)[0]
            resolved.add(addr)
    return frozenset(resolved)


def _remote_ip(raddr) -> Optional[object]:
    ip_text = getattr(raddr, "ip", None) or (raddr[0] if raddr else None)
    if not ip_text:
        return None
    try:
        ip = ip_address(ip_text.split("%", 1)[0])
    except ValueError:
        return None
    mapped = getattr(ip, "ipv4_mapped", None)
    return mapped or ip


def _remote_port(raddr) -> Optional[int]:
    port = getattr(raddr, "port", None)
    if port is None and raddr and len(raddr) > 1:
        port = raddr[1]
    return port


class ConnectionDrainBarrier:
    def __init__(
        self,
        connections: Optional[Callable[[], Sequence]] = None,
        poll_interval: float = POLL_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._connections = connections or (lambda: psutil.net_connections(kind="tcp"))
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def count_established(self, remote_port: int, networks: Sequence[Network]) -> int:
        count = 0
        for conn in self._connections():
            if conn.status != psutil.CONN_ESTABLISHED or not conn.raddr:
                continue
            if _remote_port(conn.raddr) != remote_port:
                continue
            ip = _remote_ip(conn.raddr)
            if ip is not None and any(ip in net for net in networks if net.version == ip.version):
                count += 1
        return count

    def await_drain(self, timeout_seconds: float, remote_port: int, candidate_addresses: Iterable[object]) -> DrainResult:
        """Block until no matching ESTABLISHED connection remains or the timeout elapses."""
        networks = _as_networks(candidate_addresses)
        start = self._clock()
        while True:
            try:
                remaining = self.count_established(remote_port, networks)
            except (psutil.AccessDenied, OSError) as exc:
                elapsed = self._clock() - start
                reason = str(exc) or type(exc).__name__
                logger.warning(f"Connection table unavailable, skipping drain wait: {reason}")
                return DrainResult(drained=False, elapsed=elapsed, error=reason)

            elapsed = self._clock() - start
            if remaining == 0:
                logger.debug(f"Drained port {remote_port} after {elapsed:.2f}s")
                return DrainResult(drained=True, elapsed=elapsed)
            if elapsed >= timeout_seconds:
                logger.warning(
                    f"Drain timeout after {elapsed:.1f}s: {remaining} connection(s) to port {remote_port} still established",
                    extra={"remaining": remaining},
                )
                return DrainResult(drained=False, elapsed=elapsed, remaining=remaining)
            self._sleep(min(self.poll_interval, timeout_seconds - elapsed))
