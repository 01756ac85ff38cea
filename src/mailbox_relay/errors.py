"""
Relay error taxonomy

BindFailure and TransportFailure / InterruptedWait are fatal for a relay loop.
ReceiveTimeout is the expected idle signal and never escapes RelayLoop.run().
"""


class RelayError(Exception):
    """Base class for all relay faults"""


class BindFailure(RelayError):
    """Local UDP port could not be acquired"""

    def __init__(self, host: str, port: int, cause: OSError):
        super().__init__(f"cannot bind {host}:{port}: {cause}")
        self.host = host
        self.port = port
        self.cause = cause


class ReceiveTimeout(RelayError):
    """No datagram arrived within the receive window"""


class TransportFailure(RelayError):
    """Any send/receive I/O failure other than a timeout"""


class InterruptedWait(RelayError):
    """The post-response pacing delay was interrupted"""


class StatisticsUnavailable(RelayError):
    """Not enough latency samples for the requested statistic"""


class ConfigError(RelayError):
    """Invalid relay configuration"""
