import socket
import threading
import time
import unittest
from unittest.mock import Mock, patch

import timeout_decorator
from hamcrest import assert_that, calling, contains_exactly, greater_than_or_equal_to, instance_of, is_, \
    none, not_none, raises

from scrcpyconn import net
from scrcpyconn.errors import ConfigError, ConnectionTimeout, RemoteDied, ServerStateError, SpawnError, \
    TunnelError
from scrcpyconn.net_test import free_port
from scrcpyconn.params import PortRange, ServerParams
from scrcpyconn.server import Server, ServerConnectedEvent, ServerStartedEvent, ServerState, \
    ServerStoppedEvent, ServerTerminatedEvent
from scrcpyconn.tunnel import SOCKET_NAME


class FakeProcess:
    """ a server process that runs until exit() or terminate() is called """

    def __init__(self):
        self.exited = threading.Event()
        self.terminate = Mock(side_effect=self.exit)

    def exit(self):
        self.exited.set()

    @property
    def alive(self):
        return not self.exited.is_set()

    def wait_for_exit(self):
        self.exited.wait()


class ServerTestBase(unittest.TestCase):

    def setUp(self):
        self.adb = Mock()
        self.adb.reverse.return_value = True
        self.adb.reverse_remove.return_value = True
        self.adb.forward.return_value = True
        self.adb.forward_remove.return_value = True
        self.adb_factory = Mock(return_value=self.adb)
        self.process = FakeProcess()
        self.sut = Server(self.adb_factory, sleep=Mock())
        self.sut.watchdog_delay = 0.2

        patchers = [patch('scrcpyconn.server.push_server'),
                    patch('scrcpyconn.server.execute_server', return_value=self.process)]
        self.push_server, self.execute_server = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)
        # never leave a watcher thread blocked
        self.addCleanup(self.process.exit)

    def params(self, port=None, **kwargs):
        port = port or free_port()
        return ServerParams(port_range=PortRange(port, port), **kwargs)


class ReverseTunnelTest(ServerTestBase):

    def connect_device(self, port, sockets):
        """ what the server does on the device: connect video, then control """
        def run():
            for _ in range(2):
                try:
                    sockets.append(socket.create_connection((net.IPV4_LOCALHOST, port)))
                except OSError:
                    return  # the listening socket is already closed
        t = threading.Thread(target=run)
        t.start()
        return t

    def close_all(self, sockets):
        for s in sockets:
            s.close()

    @timeout_decorator.timeout(10)
    def test_start_connect_stop(self):
        port = free_port()
        params = self.params(port)
        self.sut.start('0123456789', params)

        self.adb_factory.assert_called_once_with('0123456789')
        self.push_server.assert_called_once_with(self.adb, False)
        self.adb.reverse.assert_called_once_with(SOCKET_NAME, port)
        assert_that(self.sut.state, is_(ServerState.STARTED))
        assert_that(self.sut.tunnel_forward, is_(False))
        assert_that(self.sut.local_port, is_(port))
        assert_that(self.sut.server_socket, is_(not_none()))
        self.execute_server.assert_called_once_with(self.adb, params, False)

        device = []
        t = self.connect_device(port, device)
        try:
            video, control = self.sut.connect_to()
            t.join()
            assert_that(video, is_(not_none()))
            assert_that(control, is_(not_none()))
            assert_that(self.sut.state, is_(ServerState.CONNECTED))
            # the listening socket is not needed once both sockets are accepted
            assert_that(self.sut.server_socket_closed.is_set, is_(True))
            # the reverse tunnel is kept until stop
            self.adb.reverse_remove.assert_not_called()

            self.process.exit()
            self.sut.stop()
        finally:
            self.close_all(device)

        self.adb.reverse_remove.assert_called_once_with(SOCKET_NAME)
        self.process.terminate.assert_not_called()
        assert_that(self.sut.state, is_(ServerState.STOPPED))
        self.sut.destroy()
        assert_that(self.sut.state, is_(ServerState.DESTROYED))

    @timeout_decorator.timeout(10)
    def test_server_dies_before_connecting(self):
        self.sut.start(None, self.params())
        with patch.object(net, 'close_socket', wraps=net.close_socket) as close_socket:
            self.process.exit()
            self.sut.watcher.join()
            assert_that(self.sut.process_terminated, is_(True))
            # the watcher closed the listening socket, so accept() does not block forever
            assert_that(calling(self.sut.connect_to), raises(RemoteDied))
            self.sut.stop()
        server_socket = self.sut.server_socket
        closes = [c for c in close_socket.call_args_list if c[0][0] is server_socket]
        assert_that(len(closes), is_(1))
        self.process.terminate.assert_not_called()

    @timeout_decorator.timeout(10)
    def test_server_socket_closed_once_when_watcher_and_stop_race(self):
        for _ in range(20):
            server = Server(self.adb_factory, sleep=Mock())
            process = FakeProcess()
            self.execute_server.return_value = process
            server.start(None, self.params())
            server_socket = server.server_socket
            with patch.object(net, 'close_socket', wraps=net.close_socket) as close_socket:
                process.exit()
                server.stop()
            closes = [c for c in close_socket.call_args_list if c[0][0] is server_socket]
            assert_that(len(closes), is_(1))

    @timeout_decorator.timeout(20)
    def test_server_socket_closed_once_when_watcher_and_accept_race(self):
        for _ in range(20):
            server = Server(self.adb_factory, sleep=Mock())
            process = FakeProcess()
            self.execute_server.return_value = process
            port = free_port()
            server.start(None, self.params(port))
            server_socket = server.server_socket
            device = []
            with patch.object(net, 'close_socket', wraps=net.close_socket) as close_socket:
                t = self.connect_device(port, device)
                exit_timer = threading.Timer(0.001, process.exit)
                exit_timer.start()
                try:
                    server.connect_to()
                except RemoteDied:
                    pass    # the watcher closed the listening socket first
                exit_timer.join()
                t.join()
                server.stop()
            self.close_all(device)
            closes = [c for c in close_socket.call_args_list if c[0][0] is server_socket]
            assert_that(len(closes), is_(1))
            assert_that(server_socket.fileno(), is_(-1))

    @timeout_decorator.timeout(10)
    def test_hung_server_is_killed_after_watchdog_delay(self):
        self.sut.start(None, self.params())
        begin = time.monotonic()
        self.sut.stop()
        elapsed = time.monotonic() - begin
        self.process.terminate.assert_called_once_with()
        assert_that(elapsed, is_(greater_than_or_equal_to(0.2)))
        assert_that(self.sut.state, is_(ServerState.STOPPED))

    @timeout_decorator.timeout(10)
    def test_server_terminating_during_watchdog_delay_is_not_killed(self):
        self.sut.watchdog_delay = 5
        self.sut.start(None, self.params())
        timer = threading.Timer(0.1, self.process.exit)
        timer.start()
        self.sut.stop()
        timer.join()
        self.process.terminate.assert_not_called()


class ForwardTunnelTest(ServerTestBase):

    def setUp(self):
        super().setUp()
        self.adb.reverse.return_value = False
        self.video = Mock(name='video')
        self.control = Mock(name='control')
        connect = patch.object(net, 'connect', return_value=self.control)
        read_byte = patch.object(net, 'connect_and_read_byte', return_value=self.video)
        self.connect = connect.start()
        self.connect_and_read_byte = read_byte.start()
        self.addCleanup(connect.stop)
        self.addCleanup(read_byte.stop)

    @timeout_decorator.timeout(10)
    def test_fallback_to_forward(self):
        self.sut.start(None, self.params(27183))
        assert_that(self.sut.tunnel_forward, is_(True))
        assert_that(self.sut.server_socket, is_(none()))
        self.adb.forward.assert_called_once_with(27183, SOCKET_NAME)
        assert_that(self.execute_server.call_args[0][2], is_(True))

        video, control = self.sut.connect_to()
        assert_that((video, control), contains_exactly(self.video, self.control))
        self.connect_and_read_byte.assert_called_once_with(net.IPV4_LOCALHOST, 27183)
        self.connect.assert_called_once_with(net.IPV4_LOCALHOST, 27183)
        # the forward tunnel is removed as soon as the sockets are connected
        self.adb.forward_remove.assert_called_once_with(27183)
        assert_that(self.sut.tunnel_enabled, is_(False))

        self.process.exit()
        self.sut.stop()
        self.adb.forward_remove.assert_called_once_with(27183)
        self.video.close.assert_called_once()
        self.control.close.assert_called_once()

    @timeout_decorator.timeout(10)
    def test_connection_timeout_leaves_server_started(self):
        self.connect_and_read_byte.return_value = None
        self.sut.start(None, self.params(27183, force_adb_forward=True))
        self.adb.reverse.assert_not_called()
        assert_that(calling(self.sut.connect_to), raises(ConnectionTimeout))
        assert_that(self.connect_and_read_byte.call_count, is_(100))
        assert_that(self.sut.state, is_(ServerState.STARTED))

        self.sut.stop()
        # the tunnel is still enabled, stop removes it
        self.adb.forward_remove.assert_called_once_with(27183)
        self.process.terminate.assert_called_once_with()


class StartFailureTest(ServerTestBase):

    def test_push_failure(self):
        self.push_server.side_effect = ConfigError("missing")
        assert_that(calling(self.sut.start).with_args('serial', self.params()), raises(ConfigError))
        self.adb.reverse.assert_not_called()
        self.execute_server.assert_not_called()
        assert_that(self.sut.state, is_(ServerState.IDLE))
        assert_that(self.sut.serial, is_(none()))

    def test_spawn_failure_removes_tunnel(self):
        self.execute_server.side_effect = SpawnError("no adb")
        with patch.object(net, 'close_socket', wraps=net.close_socket) as close_socket:
            assert_that(calling(self.sut.start).with_args('serial', self.params()), raises(SpawnError))
        # the listening socket is closed and forgotten
        assert_that(close_socket.call_count, is_(1))
        assert_that(self.sut.tunnel, is_(none()))
        self.adb.reverse_remove.assert_called_once_with(SOCKET_NAME)
        assert_that(self.sut.state, is_(ServerState.IDLE))

        self.sut.stop()
        assert_that(self.sut.state, is_(ServerState.STOPPED))
        self.sut.destroy()

    def test_tunnel_failure(self):
        self.adb.reverse.return_value = False
        self.adb.forward.return_value = False
        assert_that(calling(self.sut.start).with_args(None, self.params()), raises(TunnelError))
        self.execute_server.assert_not_called()
        assert_that(self.sut.state, is_(ServerState.IDLE))

    def test_watcher_start_failure_terminates_process(self):
        with patch('scrcpyconn.server.ServerWatcher') as watcher:
            watcher.return_value.start.side_effect = SpawnError("can't start new thread")
            assert_that(calling(self.sut.start).with_args(None, self.params()), raises(SpawnError))
        self.process.terminate.assert_called_once_with()
        assert_that(self.sut.watcher, is_(none()))
        self.adb.reverse_remove.assert_called_once_with(SOCKET_NAME)
        assert_that(self.sut.state, is_(ServerState.IDLE))

    @timeout_decorator.timeout(10)
    def test_start_again_after_failure(self):
        params = self.params()
        self.execute_server.side_effect = [SpawnError("no adb"), self.process]
        assert_that(calling(self.sut.start).with_args(None, params), raises(SpawnError))
        assert_that(self.sut.server_socket_closed.is_set, is_(False))
        assert_that(self.sut.process_terminated, is_(False))

        self.sut.start(None, params)
        assert_that(self.sut.state, is_(ServerState.STARTED))
        server_socket = self.sut.server_socket
        self.process.exit()
        self.sut.watcher.join()
        # the watcher of the second session still closes its listening socket
        assert_that(server_socket.fileno(), is_(-1))
        assert_that(calling(self.sut.connect_to), raises(RemoteDied))
        self.sut.stop()
        assert_that(self.sut.state, is_(ServerState.STOPPED))


class DirectModeTest(unittest.TestCase):

    def setUp(self):
        self.client = Mock()
        self.client.host = '192.168.1.20'
        self.client.stop.return_value = True
        self.client_factory = Mock(return_value=self.client)
        self.adb_factory = Mock()
        self.sut = Server(self.adb_factory, self.client_factory, sleep=Mock())
        self.params = ServerParams(url='http://192.168.1.20:8080', port_range=PortRange(27183))

    def test_start_connect_stop(self):
        self.sut.start(None, self.params)
        self.client_factory.assert_called_once_with('http://192.168.1.20:8080')
        self.client.start.assert_called_once_with(self.params)
        self.adb_factory.assert_not_called()
        assert_that(self.sut.addr, is_('192.168.1.20'))
        assert_that(self.sut.process, is_(none()))

        video, control = Mock(), Mock()
        with patch.object(net, 'connect_and_read_byte', return_value=video) as read_byte, \
                patch.object(net, 'connect', return_value=control) as connect:
            assert_that(self.sut.connect_to(), contains_exactly(video, control))
        read_byte.assert_called_once_with('192.168.1.20', 27183)
        connect.assert_called_once_with('192.168.1.20', 27183)

        self.sut.stop()
        self.client.stop.assert_called_once_with()
        video.close.assert_called_once()
        control.close.assert_called_once()
        assert_that(self.sut.state, is_(ServerState.STOPPED))

    def test_connection_uses_twelve_attempts(self):
        self.sut.start(None, self.params)
        with patch.object(net, 'connect_and_read_byte', return_value=None) as read_byte:
            assert_that(calling(self.sut.connect_to), raises(ConnectionTimeout))
        assert_that(read_byte.call_count, is_(12))
        assert_that(self.sut._sleep.call_count, is_(11))

    def test_start_failure(self):
        self.client.start.side_effect = SpawnError("refused")
        assert_that(calling(self.sut.start).with_args(None, self.params), raises(SpawnError))
        # stopping a server that was never started is harmless
        self.client.stop.assert_called_once_with()
        assert_that(self.sut.state, is_(ServerState.IDLE))


class StateAndEventsTest(ServerTestBase):

    def test_invalid_transitions(self):
        assert_that(calling(self.sut.connect_to), raises(ServerStateError))
        self.sut.start(None, self.params())
        assert_that(calling(self.sut.start).with_args(None, self.params()), raises(ServerStateError))
        assert_that(calling(self.sut.destroy), raises(ServerStateError))
        self.process.exit()
        self.sut.stop()
        assert_that(calling(self.sut.stop), raises(ServerStateError))
        self.sut.destroy()
        assert_that(calling(self.sut.start).with_args(None, self.params()), raises(ServerStateError))

    def test_stop_without_start(self):
        self.sut.stop()
        assert_that(self.sut.state, is_(ServerState.STOPPED))
        self.sut.destroy()
        assert_that(self.sut.state, is_(ServerState.DESTROYED))

    @timeout_decorator.timeout(10)
    def test_events(self):
        events = []
        self.sut.events += events.append
        self.sut.start(None, self.params(force_adb_forward=True))
        with patch.object(net, 'connect_and_read_byte', return_value=Mock()), \
                patch.object(net, 'connect', return_value=Mock()):
            self.sut.connect_to()

        self.process.exit()
        self.sut.watcher.join()
        # the terminated event is queued by the watcher thread until update()
        assert_that([type(e) for e in events], contains_exactly(ServerStartedEvent, ServerConnectedEvent))
        assert_that(self.sut.update(), is_(1))
        assert_that(events[-1], instance_of(ServerTerminatedEvent))
        assert_that(events[-1].server, is_(self.sut))
        assert_that(self.sut.update(), is_(0))

        self.sut.stop()
        assert_that(events[-1], instance_of(ServerStoppedEvent))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
