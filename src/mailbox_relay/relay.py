#!/usr/bin/env python3
"""
Mailbox Relay Loop
Receives one datagram at a time and answers it from the shared mailbox:
- Pull request ("Please send me data thx"): reply with the mailbox content
- Anything else: store it in the mailbox, reply "Request acknowledged"

The client-side instance also times each round trip, from the push that
opened the window to the next reply that carries data back.
Terminates when no datagram arrives within the receive timeout.
"""

import socket
import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .box import Mailbox
from .config import RelayConfig, MAX_DATAGRAM_SIZE, MAX_PAYLOAD_SIZE
from .errors import BindFailure, InterruptedWait, ReceiveTimeout, RelayError, TransportFailure
from .metrics import datagrams_counter, mailbox_payload_gauge, round_trip_hist, terminations_counter
from .stats import LatencyRecorder

logger = logging.getLogger(__name__)

PULL_REQUEST = b"Please send me data thx"
ACKNOWLEDGEMENT = b"Request acknowledged"

Address = Tuple[str, int]


class RelayState(Enum):
    AWAITING_REQUEST = "awaiting_request"
    PROCESSING = "processing"
    RESPONDING = "responding"
    TERMINATED = "terminated"


@dataclass
class Datagram:
    """Payload plus the peer address it came from or goes to"""
    payload: bytes
    address: Address


class RelayLoop:
    """One side of the relay: owns a receive socket and a send socket"""

    def __init__(self, config: RelayConfig, mailbox: Mailbox,
                 sink: Callable[[str], None] = print):
        self.config = config
        self.mailbox = mailbox
        self.sink = sink
        self.state = RelayState.AWAITING_REQUEST
        self.recorder = LatencyRecorder()

        # Per-loop round-trip window and last reply
        self._window_start_ns: Optional[int] = None
        self._last_response: Optional[Datagram] = None
        self._interrupted = threading.Event()
        self._closed = False

        self.receive_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self.receive_socket.bind((config.bind_host, config.listen_port))
        except OSError as e:
            self.receive_socket.close()
            logger.error(f"[{config.name}] Failed to bind {config.bind_host}:{config.listen_port}: {e}")
            raise BindFailure(config.bind_host, config.listen_port, e) from e
        self.receive_socket.settimeout(config.receive_timeout)
        self.send_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

        logger.debug(f"[{config.name}] Bound to {self.address}, "
                     f"measure_latency={config.measure_latency}")

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def address(self) -> Address:
        return self.receive_socket.getsockname()

    @property
    def measurements(self) -> List[int]:
        return list(self.recorder.samples)

    @property
    def last_response(self) -> Optional[Datagram]:
        return self._last_response

    def run(self):
        """Relay until the peer goes idle"""
        logger.info(f"[{self.name}] Relay listening on {self.address}")
        while self.step():
            pass

    def step(self) -> bool:
        """Run one receive/respond cycle. Returns False once terminated."""
        if self.state is RelayState.TERMINATED:
            return False

        self.state = RelayState.AWAITING_REQUEST
        try:
            request = self._receive()
        except ReceiveTimeout:
            self._terminate()
            return False

        self.state = RelayState.PROCESSING
        response = self._process(request)

        self.state = RelayState.RESPONDING
        self._send(response)
        self._pace()

        self.state = RelayState.AWAITING_REQUEST
        return True

    def interrupt(self):
        """Break the pacing delay; the loop then fails with InterruptedWait.

        A loop blocked on receive only notices this after its next datagram
        or its receive timeout.
        """
        self._interrupted.set()

    def close(self):
        """Release both sockets"""
        if self._closed:
            return
        self._closed = True
        self.send_socket.close()
        self.receive_socket.close()
        logger.debug(f"[{self.name}] Sockets released")

    def _receive(self) -> Datagram:
        try:
            data, address = self.receive_socket.recvfrom(MAX_DATAGRAM_SIZE)
        except socket.timeout as e:
            raise ReceiveTimeout(
                f"no datagram within {self.config.receive_timeout}s") from e
        except OSError as e:
            self._fail(TransportFailure(f"receive failed: {e}"), "transport")

        if len(data) > self.config.buffer_size:
            logger.warning(f"[{self.name}] Datagram of {len(data)}B from {address[0]}:{address[1]} "
                           f"truncated to {self.config.buffer_size}B")
            data = data[:self.config.buffer_size]
        elif len(data) > MAX_PAYLOAD_SIZE:
            logger.warning(f"[{self.name}] Payload of {len(data)}B exceeds {MAX_PAYLOAD_SIZE}B")

        logger.debug(f"[{self.name}] Received {len(data)}B from {address[0]}:{address[1]}")
        return Datagram(payload=data, address=address)

    def _process(self, request: Datagram) -> Datagram:
        if request.payload == PULL_REQUEST:
            datagrams_counter.labels(relay=self.name, kind='pull').inc()
            return Datagram(payload=self.mailbox.get(), address=request.address)

        datagrams_counter.labels(relay=self.name, kind='push').inc()
        if self.config.measure_latency:
            # Most recent push opens the window; an earlier open window is discarded
            self._window_start_ns = time.perf_counter_ns()

        self.mailbox.put(request.payload)
        mailbox_payload_gauge.set(len(request.payload))
        return Datagram(payload=ACKNOWLEDGEMENT, address=request.address)

    def _send(self, response: Datagram):
        try:
            self.send_socket.sendto(response.payload, response.address)
        except OSError as e:
            self._fail(TransportFailure(f"send to {response.address} failed: {e}"), "transport")

        self._last_response = response
        logger.debug(f"[{self.name}] Sent {len(response.payload)}B to "
                     f"{response.address[0]}:{response.address[1]}")

        if self.config.measure_latency and response.payload != ACKNOWLEDGEMENT:
            # Data went back to the caller: the remote procedure call is done
            self._capture_measurement()

    def _capture_measurement(self):
        if self._window_start_ns is None:
            logger.debug(f"[{self.name}] Data reply without an open round trip, not recorded")
            return

        elapsed_ns = time.perf_counter_ns() - self._window_start_ns
        self._window_start_ns = None
        self.recorder.record(elapsed_ns)
        round_trip_hist.labels(relay=self.name).observe(elapsed_ns / 1_000_000)
        self.sink(f"{self.name} RPC execution time in nanoseconds: {elapsed_ns}")

    def _pace(self):
        if self._interrupted.wait(self.config.send_delay):
            self._fail(InterruptedWait("pacing delay interrupted"), "interrupted")

    def _terminate(self):
        logger.info(f"[{self.name}] No datagram for {self.config.receive_timeout}s, shutting down")
        if self.config.measure_latency:
            for line in self.recorder.report_lines():
                self.sink(line)
        self.close()
        self.state = RelayState.TERMINATED
        terminations_counter.labels(relay=self.name, reason='timeout').inc()

    def _fail(self, error: RelayError, reason: str):
        logger.error(f"[{self.name}] {error}")
        self.close()
        self.state = RelayState.TERMINATED
        terminations_counter.labels(relay=self.name, reason=reason).inc()
        raise error
