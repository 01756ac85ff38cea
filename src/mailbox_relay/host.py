#!/usr/bin/env python3
"""
Relay Host
Wires one shared mailbox to two relay loops, each on its own thread:
  - client-side: faces the RPC client, measures round-trip latency
  - server-side: faces the RPC server
The host is done when the client-side loop goes idle or any loop fails.
"""

import logging
import threading
from typing import Callable, Dict, List

from .box import Mailbox
from .config import HostConfig
from .errors import RelayError
from .metrics import start_metrics_server
from .relay import RelayLoop

logger = logging.getLogger(__name__)


class RelayHost:
    """Runs the client-side and server-side loops against one mailbox"""

    def __init__(self, config: HostConfig, sink: Callable[[str], None] = print):
        self.config = config
        self.mailbox = Mailbox(default=config.default_payload)
        self.failures: Dict[str, Exception] = {}
        self._threads: List[threading.Thread] = []
        self._done = threading.Event()
        self._stopping = False

        self.client_loop = RelayLoop(config.client_side(), self.mailbox, sink)
        try:
            self.server_loop = RelayLoop(config.server_side(), self.mailbox, sink)
        except RelayError:
            self.client_loop.close()
            raise

    @property
    def loops(self) -> List[RelayLoop]:
        return [self.client_loop, self.server_loop]

    def start(self):
        logger.info("=" * 60)
        logger.info("MAILBOX RELAY STARTED")
        logger.info("=" * 60)
        logger.info(f"   Client side: {self.client_loop.address} (measuring latency)")
        logger.info(f"   Server side: {self.server_loop.address}")
        logger.info(f"   Receive timeout: {self.config.receive_timeout}s")
        logger.info(f"   Send delay: {self.config.send_delay}s")
        logger.info("=" * 60)

        start_metrics_server(self.config.metrics_port)

        for loop in self.loops:
            thread = threading.Thread(target=self._run_loop, args=(loop,),
                                      name=loop.name, daemon=True)
            self._threads.append(thread)
            thread.start()

    def _run_loop(self, loop: RelayLoop):
        failed = False
        try:
            loop.run()
        except RelayError as e:
            if self._stopping:
                logger.debug(f"[{loop.name}] Stopped during shutdown: {e}")
                return
            logger.critical(f"[{loop.name}] Fatal relay error: {e}")
            self.failures[loop.name] = e
            failed = True
        except Exception as e:
            # Sink or other non-socket faults still have to halt the host
            logger.critical(f"[{loop.name}] Unexpected error: {e}", exc_info=True)
            loop.close()
            self.failures[loop.name] = e
            failed = True
        finally:
            if failed or loop.config.measure_latency:
                self._done.set()

    def wait(self) -> int:
        """Block until the client-side loop stops or any loop fails.

        Returns the process exit code: 0 after a clean idle shutdown, 1 on a
        fatal loop error. Every loop's sockets are released either way.
        """
        self._done.wait()

        if self.failures:
            self.shutdown()
            return 1

        # The server-side loop shares the timeout, give it one window to finish
        for thread in self._threads[1:]:
            thread.join(self.config.receive_timeout + self.config.send_delay)

        self.shutdown()
        logger.info("Relay finished cleanly")
        return 0

    def shutdown(self):
        """Release every loop's sockets"""
        self._stopping = True
        for loop in self.loops:
            loop.interrupt()
            loop.close()
