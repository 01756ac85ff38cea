"""
Prometheus collectors for the relay loops
"""

import logging
from prometheus_client import start_http_server, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

datagrams_counter = Counter(
    'relay_datagrams',
    'Inbound datagrams handled by a relay loop',
    ['relay', 'kind']
)

round_trip_hist = Histogram(
    'relay_round_trip_latency_ms',
    'Push-to-response round trip measured by the client-side relay',
    ['relay'],
    buckets=[1.0, 5.0, 10.0, 50.0, 100.0, 500.0, 1000.0, 2000.0, 5000.0]
)

mailbox_payload_gauge = Gauge(
    'relay_mailbox_payload_bytes',
    'Size of the payload currently held in the shared mailbox'
)

terminations_counter = Counter(
    'relay_loop_terminations',
    'Relay loop shutdowns by reason',
    ['relay', 'reason']
)


def start_metrics_server(port: int) -> bool:
    """Expose /metrics on the given port; 0 leaves the exporter off"""
    if not port:
        logger.debug("Metrics exporter disabled")
        return False
    start_http_server(port)
    logger.info(f"Metrics server listening on :{port}/metrics")
    return True
