"""
RPC endpoints on either side of the relay

The client pushes a request into its relay and then pulls the reply; the
server pulls requests from its relay and pushes back a response.
"""

import socket
import logging
import time
from typing import Callable, List, Optional, Sequence

from .errors import ReceiveTimeout, TransportFailure
from .relay import PULL_REQUEST, ACKNOWLEDGEMENT

logger = logging.getLogger(__name__)


class RelayPeer:
    """UDP endpoint talking to one relay loop"""

    def __init__(self, host: str, port: int, timeout: float = 5.0, buffer_size: int = 1010):
        self.relay_address = (host, port)
        self.buffer_size = buffer_size
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.settimeout(timeout)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def push(self, payload: bytes) -> bytes:
        """Deposit payload in the relay's mailbox; returns the acknowledgement"""
        if payload == PULL_REQUEST:
            raise ValueError("payload collides with the pull request marker")
        return self._exchange(payload)

    def pull(self) -> bytes:
        """Fetch whatever the relay's mailbox currently holds"""
        return self._exchange(PULL_REQUEST)

    def close(self):
        self.sock.close()

    def _exchange(self, payload: bytes) -> bytes:
        try:
            self.sock.sendto(payload, self.relay_address)
            data, _ = self.sock.recvfrom(self.buffer_size)
        except socket.timeout as e:
            raise ReceiveTimeout(f"no reply from {self.relay_address}") from e
        except OSError as e:
            raise TransportFailure(f"exchange with {self.relay_address} failed: {e}") from e
        return data


def run_client(peer: RelayPeer, messages: Sequence[bytes],
               poll_interval: float = 0.0) -> List[bytes]:
    """Send each message as a request and collect the replies pulled back"""
    replies = []
    for message in messages:
        ack = peer.push(message)
        if ack != ACKNOWLEDGEMENT:
            logger.warning(f"Unexpected push reply: {ack!r}")
        if poll_interval:
            time.sleep(poll_interval)
        reply = peer.pull()
        logger.info(f"Client: sent {len(message)}B, got back {len(reply)}B")
        replies.append(reply)
    return replies


def run_server(peer: RelayPeer, rounds: Optional[int],
               handler: Callable[[bytes], bytes],
               empty_payload: bytes = b"", poll_interval: float = 0.1,
               max_idle_polls: Optional[int] = 20) -> int:
    """Pull requests and push handler(request) back.

    The mailbox keeps its content after a pull, so a pull returning the
    mailbox default or this server's own last response is not a new request.
    Stops after `rounds` requests, after `max_idle_polls` consecutive pulls
    without a new request, or when the relay goes quiet. Returns the number
    of requests handled.
    """
    handled = 0
    idle_polls = 0
    last_response = None
    while rounds is None or handled < rounds:
        try:
            request = peer.pull()
            if request == empty_payload or request == last_response:
                idle_polls += 1
                if max_idle_polls is not None and idle_polls >= max_idle_polls:
                    logger.info(f"Server: no new request after {idle_polls} polls")
                    break
                if poll_interval:
                    time.sleep(poll_interval)
                continue

            idle_polls = 0
            response = handler(request)
            peer.push(response)
        except ReceiveTimeout:
            logger.info("Server: relay went idle")
            break
        last_response = response
        handled += 1
        logger.info(f"Server: handled request {handled} ({len(request)}B)")
    return handled
