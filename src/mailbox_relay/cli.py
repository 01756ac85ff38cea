#!/usr/bin/env python3
"""
Mailbox Relay command line

  mailbox-relay host                     # run the client-side/server-side relay pair
  mailbox-relay client --port 5023 hi    # push "hi", then pull the reply
  mailbox-relay server --port 5069       # answer requests with an uppercased echo
"""

import sys
import logging
import argparse

from .config import ConfigLoader, HostConfig, load_config
from .errors import ConfigError, RelayError
from .host import RelayHost
from .peer import RelayPeer, run_client, run_server

logger = logging.getLogger(__name__)


def _uppercase(request: bytes) -> bytes:
    return request.upper()


def cmd_host(args) -> int:
    try:
        cfg = load_config(args.config) if args.config else HostConfig()
        if args.client_port is not None:
            cfg.client_port = args.client_port
        if args.server_port is not None:
            cfg.server_port = args.server_port
        if args.receive_timeout is not None:
            cfg.receive_timeout = args.receive_timeout
        if args.send_delay is not None:
            cfg.send_delay = args.send_delay
        if args.metrics_port is not None:
            cfg.metrics_port = args.metrics_port
        ConfigLoader.validate(cfg)
    except (ConfigError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        return 2

    try:
        host = RelayHost(cfg)
    except RelayError as e:
        logger.critical(f"Cannot start relay: {e}")
        return 1

    host.start()
    try:
        return host.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        host.shutdown()
        return 1


def cmd_client(args) -> int:
    messages = [m.encode() for m in args.messages]
    try:
        with RelayPeer(args.host, args.port, timeout=args.timeout) as peer:
            replies = run_client(peer, messages, poll_interval=args.poll_interval)
    except RelayError as e:
        logger.error(f"Client failed: {e}")
        return 1

    for reply in replies:
        print(reply.decode(errors='replace'))
    return 0


def cmd_server(args) -> int:
    try:
        with RelayPeer(args.host, args.port, timeout=args.timeout) as peer:
            handled = run_server(peer, args.rounds, _uppercase,
                                 poll_interval=args.poll_interval,
                                 max_idle_polls=args.idle_polls or None)
    except RelayError as e:
        logger.error(f"Server failed: {e}")
        return 1

    logger.info(f"Server handled {handled} requests")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailbox-relay",
        description="UDP relay bridging an RPC client and server through a shared mailbox",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    host = sub.add_parser("host", help="Run the relay pair")
    host.add_argument("--config", "-c", type=str, default=None,
                      help="Path to relay.yaml (default: environment only)")
    host.add_argument("--client-port", type=int, default=None, help="Client-side listen port")
    host.add_argument("--server-port", type=int, default=None, help="Server-side listen port")
    host.add_argument("--receive-timeout", type=float, default=None,
                      help="Idle seconds before a loop shuts down")
    host.add_argument("--send-delay", type=float, default=None,
                      help="Pause after every response in seconds")
    host.add_argument("--metrics-port", type=int, default=None,
                      help="Prometheus exporter port (0 disables)")
    host.set_defaults(func=cmd_host)

    for name, func, default_port in (("client", cmd_client, 5023), ("server", cmd_server, 5069)):
        peer = sub.add_parser(name, help=f"Run the RPC {name} endpoint")
        peer.add_argument("--host", type=str, default="127.0.0.1", help="Relay address")
        peer.add_argument("--port", "-p", type=int, default=default_port, help="Relay port")
        peer.add_argument("--timeout", type=float, default=5.0, help="Reply timeout in seconds")
        peer.set_defaults(func=func)

    sub.choices["client"].add_argument("--poll-interval", type=float, default=0.0,
                                       help="Wait between push and pull in seconds")
    sub.choices["client"].add_argument("messages", nargs="+", help="Request payloads")
    sub.choices["server"].add_argument("--rounds", "-n", type=int, default=None,
                                       help="Stop after this many requests")
    sub.choices["server"].add_argument("--poll-interval", type=float, default=0.1,
                                       help="Wait between pulls that bring no new request")
    sub.choices["server"].add_argument("--idle-polls", type=int, default=20,
                                       help="Stop after this many pulls without a new request (0 = never)")
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - [%(name)s] %(message)s'
    )
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
