"""
Datagram transports for the renderer bridge.

Delivery is fire-and-forget: a datagram sent while the peer isn't listening
is simply lost, and nothing is acknowledged or retried.
"""

import asyncio
from typing import Callable, Optional

from ..core.logging import debug_log

Receiver = Callable[[bytes], None]


class Transport:
    """Interface shared by the bridge transports."""

    async def open(self, receiver: Receiver):
        raise NotImplementedError

    def send(self, data: bytes):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class _BridgeProtocol(asyncio.DatagramProtocol):
    def __init__(self, receiver: Receiver):
        self._receiver = receiver

    def datagram_received(self, data, addr):
        self._receiver(data)

    def error_received(self, exc):
        # ICMP port-unreachable when the renderer isn't running
        debug_log(f"BRIDGE | datagram error | {exc}")


class UdpTransport(Transport):
    """
    Loopback UDP transport.

    Listens on listen_port and sends to peer_port, both on the local host.
    """

    def __init__(self, listen_port: int, peer_port: int, host: str = "127.0.0.1"):
        self.host = host
        self.listen_port = listen_port
        self.peer_port = peer_port
        self._transport: Optional[asyncio.DatagramTransport] = None

    async def open(self, receiver: Receiver):
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _BridgeProtocol(receiver),
            local_addr=(self.host, self.listen_port),
        )

    def send(self, data: bytes):
        if self._transport is None:
            debug_log("BRIDGE | send dropped | transport not open")
            return
        self._transport.sendto(data, (self.host, self.peer_port))

    async def close(self):
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class LoopbackTransport(Transport):
    """
    In-process transport pair, for tests and for running without a socket.

    Sends are delivered to the peer on the next loop iteration, never
    synchronously.
    """

    def __init__(self):
        self.peer: Optional["LoopbackTransport"] = None
        self.sent: list[bytes] = []
        self._receiver: Optional[Receiver] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def pair(cls) -> tuple["LoopbackTransport", "LoopbackTransport"]:
        a, b = cls(), cls()
        a.peer, b.peer = b, a
        return a, b

    async def open(self, receiver: Receiver):
        self._receiver = receiver
        self._loop = asyncio.get_running_loop()

    def send(self, data: bytes):
        self.sent.append(data)
        peer = self.peer
        if peer is None or peer._receiver is None or peer._loop is None:
            return
        peer._loop.call_soon(peer._deliver, data)

    def _deliver(self, data: bytes):
        if self._receiver is not None:
            self._receiver(data)

    async def close(self):
        self._receiver = None
