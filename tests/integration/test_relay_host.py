"""
Integration tests: full client -> relay pair -> server round trip over localhost UDP
"""

import socket
import threading
import time
from unittest.mock import Mock, call

import pytest

from mailbox_relay.config import HostConfig
from mailbox_relay.errors import BindFailure, ReceiveTimeout, TransportFailure
from mailbox_relay.host import RelayHost
from mailbox_relay.peer import RelayPeer, run_client, run_server
from mailbox_relay.relay import ACKNOWLEDGEMENT, RelayState

pytestmark = pytest.mark.integration


def host_config(**overrides) -> HostConfig:
    values = dict(bind_host="127.0.0.1", client_port=0, server_port=0,
                  receive_timeout=0.5, send_delay=0.0, metrics_port=0)
    values.update(overrides)
    return HostConfig(**values)


@pytest.fixture
def relay_host():
    lines = []
    host = RelayHost(host_config(), sink=lines.append)
    host.lines = lines
    yield host
    host.shutdown()


def peers_for(host):
    client = RelayPeer("127.0.0.1", host.client_loop.address[1], timeout=2.0)
    server = RelayPeer("127.0.0.1", host.server_loop.address[1], timeout=2.0)
    return client, server


class TestRelayHost:

    def test_rpc_round_trip(self, relay_host):
        """Client request reaches the server, server reply reaches the client"""
        relay_host.start()
        client, server = peers_for(relay_host)
        with client, server:
            assert client.push(b"get temperature") == ACKNOWLEDGEMENT
            assert server.pull() == b"get temperature"
            assert server.push(b"21.5C") == ACKNOWLEDGEMENT
            assert client.pull() == b"21.5C"

        assert relay_host.wait() == 0
        assert relay_host.client_loop.state is RelayState.TERMINATED
        assert len(relay_host.client_loop.measurements) == 1
        assert relay_host.server_loop.measurements == []
        assert "Number of times collected: 1" in relay_host.lines
        assert any("RPC execution time" in line for line in relay_host.lines)

    def test_idle_host_reports_zero_samples(self, relay_host):
        relay_host.start()
        assert relay_host.wait() == 0
        assert "Number of times collected: 0" in relay_host.lines
        assert relay_host.failures == {}

    def test_sequential_rpcs_are_counted(self, relay_host):
        relay_host.start()
        client, server = peers_for(relay_host)
        with client, server:
            for i in range(3):
                client.push(f"req {i}".encode())
                request = server.pull()
                server.push(request.upper())
                assert client.pull() == f"REQ {i}".encode()

        assert relay_host.wait() == 0
        assert len(relay_host.client_loop.measurements) == 3
        assert "Number of times collected: 3" in relay_host.lines

    def test_fatal_loop_error_exits_nonzero(self, relay_host):
        relay_host.start()
        relay_host.server_loop.interrupt()
        _, server = peers_for(relay_host)
        with server:
            server.pull()
        assert relay_host.wait() == 1
        assert "server-side" in relay_host.failures

    def test_sink_error_halts_host(self):
        """A failing output sink ends the host with a non-zero exit code"""
        def broken_sink(line):
            raise BrokenPipeError("stdout closed")

        host = RelayHost(host_config(), sink=broken_sink)
        try:
            host.start()
            client, _ = peers_for(host)
            with client:
                client.push(b"request")
                client.pull()

            codes = []
            waiter = threading.Thread(target=lambda: codes.append(host.wait()), daemon=True)
            waiter.start()
            waiter.join(3.0)

            assert codes == [1]
            assert isinstance(host.failures["client-side"], BrokenPipeError)
        finally:
            host.shutdown()

    def test_clean_wait_releases_busy_server_loop(self, relay_host):
        """Server-side traffic past the client-side timeout does not keep sockets open"""
        relay_host.start()
        stop = threading.Event()

        def keep_polling():
            with RelayPeer("127.0.0.1", relay_host.server_loop.address[1], timeout=0.2) as server:
                while not stop.is_set():
                    try:
                        server.pull()
                    except (ReceiveTimeout, TransportFailure):
                        return
                    time.sleep(0.05)

        poller = threading.Thread(target=keep_polling, daemon=True)
        poller.start()
        try:
            assert relay_host.wait() == 0
            assert relay_host.server_loop.receive_socket.fileno() == -1
            assert relay_host.server_loop.send_socket.fileno() == -1
        finally:
            stop.set()
            poller.join(2.0)

    def test_bind_failure_releases_first_loop(self):
        holder = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        holder.bind(("127.0.0.1", 0))
        try:
            with pytest.raises(BindFailure):
                RelayHost(host_config(server_port=holder.getsockname()[1]))
        finally:
            holder.close()


class TestPeerHelpers:

    def test_peer_timeout_raises(self):
        quiet = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        quiet.bind(("127.0.0.1", 0))
        try:
            with RelayPeer("127.0.0.1", quiet.getsockname()[1], timeout=0.1) as peer:
                with pytest.raises(ReceiveTimeout):
                    peer.pull()
        finally:
            quiet.close()

    def test_push_refuses_pull_marker(self):
        with RelayPeer("127.0.0.1", 9, timeout=0.1) as peer:
            with pytest.raises(ValueError):
                peer.push(b"Please send me data thx")

    def test_client_and_server_helpers(self, relay_host):
        relay_host.start()
        client, server = peers_for(relay_host)
        served = []

        def serve():
            with server:
                served.append(run_server(server, rounds=1, handler=lambda req: req[::-1]))

        with client:
            client.push(b"abc")
            thread = threading.Thread(target=serve)
            thread.start()
            thread.join(5.0)
            assert served == [1]
            assert client.pull() == b"cba"

    def test_run_client_pushes_then_pulls(self):
        peer = Mock()
        peer.push.return_value = ACKNOWLEDGEMENT
        peer.pull.side_effect = [b"ONE", b"TWO"]

        replies = run_client(peer, [b"one", b"two"])

        assert replies == [b"ONE", b"TWO"]
        assert peer.push.call_args_list == [call(b"one"), call(b"two")]
        assert peer.pull.call_count == 2

    def test_run_server_stops_when_idle(self):
        peer = Mock()
        peer.pull.side_effect = [b"a", ReceiveTimeout("idle")]
        handled = run_server(peer, rounds=None, handler=bytes.upper)
        assert handled == 1
        peer.push.assert_called_once_with(b"A")

    def test_server_ignores_idle_relay(self, relay_host):
        """No client traffic means no handled requests and an untouched mailbox"""
        relay_host.start()
        _, server = peers_for(relay_host)
        with server:
            handled = run_server(server, rounds=3, handler=bytes.upper,
                                 poll_interval=0.01, max_idle_polls=5)
        assert handled == 0
        assert relay_host.mailbox.get() == b""

    def test_run_server_skips_default_and_own_response(self):
        peer = Mock()
        peer.pull.side_effect = [b"", b"req", b"REQ", b"next", ReceiveTimeout("idle")]
        handled = run_server(peer, rounds=None, handler=bytes.upper, poll_interval=0)
        assert handled == 2
        assert peer.push.call_args_list == [call(b"REQ"), call(b"NEXT")]

    def test_run_server_stops_after_idle_polls(self):
        peer = Mock()
        peer.pull.return_value = b""
        handled = run_server(peer, rounds=None, handler=bytes.upper,
                             poll_interval=0, max_idle_polls=4)
        assert handled == 0
        assert peer.pull.call_count == 4
        peer.push.assert_not_called()
