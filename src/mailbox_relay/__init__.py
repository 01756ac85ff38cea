"""
Mailbox Relay: UDP relay bridging two peers through a single-slot mailbox
"""

from .box import Mailbox
from .config import HostConfig, RelayConfig, ConfigLoader
from .errors import (
    RelayError, BindFailure, ReceiveTimeout, TransportFailure,
    InterruptedWait, StatisticsUnavailable, ConfigError,
)
from .host import RelayHost
from .peer import RelayPeer
from .relay import RelayLoop, RelayState, Datagram, PULL_REQUEST, ACKNOWLEDGEMENT
from .stats import LatencyRecorder, LatencySummary

__version__ = "1.0.0"
