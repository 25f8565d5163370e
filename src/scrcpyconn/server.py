import logging
import threading
import time
from enum import Enum

from scrcpyconn import net
from scrcpyconn.adb.command import AdbCommand
from scrcpyconn.connection import AcceptingEstablisher, Establisher, SocketPair, \
    direct_establisher, forward_establisher
from scrcpyconn.direct import DirectClient
from scrcpyconn.errors import ServerStateError, SpawnError
from scrcpyconn.params import ServerParams
from scrcpyconn.process import ServerWatcher, execute_server, push_server
from scrcpyconn.support.events import QueuedEventSource
from scrcpyconn.support.sync import OnceFlag
from scrcpyconn.tunnel import TunnelManager

logger = logging.getLogger(__name__)

# how long stop() gives the server to terminate before killing it, in seconds
WATCHDOG_DELAY = 1.0


class ServerState(Enum):
    IDLE = 'idle'
    STARTING = 'starting'
    STARTED = 'started'
    CONNECTED = 'connected'
    STOPPING = 'stopping'
    STOPPED = 'stopped'
    DESTROYED = 'destroyed'


class ServerEvent:
    """ base class for server events. """
    def __init__(self, server):
        self.server = server


class ServerStartedEvent(ServerEvent):
    """ The server was started and the tunnel is open. """


class ServerConnectedEvent(ServerEvent):
    """ The video and control sockets are established. """


class ServerTerminatedEvent(ServerEvent):
    """ The server process exited. Posted by the watcher thread, published by update(). """


class ServerStoppedEvent(ServerEvent):
    """ The server was stopped and its resources released. """


class Server:
    """
    The connection to a scrcpy-server instance. Single use: start(), connect_to(), stop(), destroy().

    :param adb_factory: creates the AdbCommand for a device serial
    :param direct_client_factory: creates the DirectClient for a url
    :param sleep: waits between connection attempts
    """

    def __init__(self, adb_factory=AdbCommand, direct_client_factory=DirectClient, sleep=time.sleep):
        self._adb_factory = adb_factory
        self._direct_client_factory = direct_client_factory
        self._sleep = sleep
        self.serial = None
        self.url = None
        self.addr = None
        self.direct = False
        self.port_range = None
        self.tunnel = None
        self.tunnel_enabled = False
        self.tunnels = None
        self.direct_client = None
        self.process = None
        self.watcher = None
        self.sockets = SocketPair()
        self.server_socket_closed = OnceFlag()
        self.process_terminated = False
        self.process_terminated_cond = threading.Condition(threading.Lock())
        self.watchdog_delay = WATCHDOG_DELAY
        self.events = QueuedEventSource()
        self.state = ServerState.IDLE

    @property
    def server_socket(self):
        return self.tunnel.server_socket if self.tunnel is not None else None

    @property
    def tunnel_forward(self):
        return self.tunnel is not None and self.tunnel.forward

    @property
    def local_port(self):
        return self.tunnel.local_port if self.tunnel is not None else 0

    @property
    def video_socket(self):
        return self.sockets.video

    @property
    def control_socket(self):
        return self.sockets.control

    def _check_state(self, *allowed):
        if self.state not in allowed:
            raise ServerStateError("invalid server state %s, expected one of %s" %
                                   (self.state.value, ', '.join(s.value for s in allowed)))

    def start(self, serial, params: ServerParams):
        """
        Starts the server: pushes it, opens the tunnel, executes it and starts the watcher.
        In direct mode, asks the control endpoint to start it instead.
        On failure, what was set up is undone before the error is raised.
        :param serial: the device serial, or None to let adb pick the device
        :raises ServerError: if the server could not be started
        """
        self._check_state(ServerState.IDLE)
        self.state = ServerState.STARTING
        self.port_range = params.port_range
        self.serial = serial
        self.url = params.url
        self.direct = params.direct

        started = False
        try:
            if self.direct:
                self.direct_client = self._direct_client_factory(self.url)
                self.addr = self.direct_client.host
                self.direct_client.start(params)
            else:
                adb = self._adb_factory(serial)
                push_server(adb, params.portable)
                self.tunnels = TunnelManager(adb)
                self.tunnel = self.tunnels.enable(params.port_range, params.force_adb_forward)
                self.process = execute_server(adb, params, self.tunnel.forward)
                self._start_watcher()
            started = True
        finally:
            if not started:
                self._undo_start()

        self.tunnel_enabled = True
        self.state = ServerState.STARTED
        self.events.fire(ServerStartedEvent(self))

    def _start_watcher(self):
        # If the server process dies before connecting to the server socket, then the client
        # would be stuck forever on accept(). The watcher closes the server socket to wake it up.
        self.watcher = ServerWatcher(self.process, self._on_process_terminated)
        try:
            self.watcher.start()
        except SpawnError:
            self.watcher = None
            self.process.terminate()
            self.process.wait_for_exit()
            raise

    def _undo_start(self):
        if self.tunnel is not None:
            self._close_server_socket()
            self.tunnels.disable(self.tunnel)
        if self.direct_client is not None:
            self.direct_client.stop()
        self._reset_session()
        self.state = ServerState.IDLE

    def _reset_session(self):
        """ forgets the resources of a failed start, so that start() may be called again """
        self.serial = None
        self.url = None
        self.addr = None
        self.direct = False
        self.tunnel = None
        self.tunnel_enabled = False
        self.tunnels = None
        self.direct_client = None
        self.process = None
        self.watcher = None
        self.sockets = SocketPair()
        self.server_socket_closed = OnceFlag()
        self.process_terminated = False

    def _on_process_terminated(self):
        """ called on the watcher thread when the server process has exited """
        with self.process_terminated_cond:
            self.process_terminated = True
            self.process_terminated_cond.notify_all()

        # the tunnel is set before the watcher is started
        self._close_server_socket()
        logger.debug("Server terminated")
        self.events.post(ServerTerminatedEvent(self))

    def _close_server_socket(self):
        """ closes the listening socket, unless it does not exist or was already closed. """
        server_socket = self.server_socket
        if server_socket is not None and not self.server_socket_closed.test_and_set():
            net.close_socket(server_socket)

    def _establisher(self) -> Establisher:
        if self.direct:
            return direct_establisher(self.addr, self.port_range.first, self._sleep)
        if self.tunnel.forward:
            return forward_establisher(self.tunnel.local_port, self._sleep)
        return AcceptingEstablisher(self.tunnel.server_socket, self._close_server_socket)

    def connect_to(self):
        """
        Establishes the video socket, then the control socket.
        On failure the server stays started, and the caller should stop() it.
        :return: (video_socket, control_socket). They remain owned by the server until stop().
        :raises ServerError: if the sockets could not be established
        """
        self._check_state(ServerState.STARTED)
        self._establisher().establish(self.sockets)

        if self.tunnel_forward:
            # we don't need the adb tunnel anymore
            self.tunnels.disable(self.tunnel)   # ignore failure
            self.tunnel_enabled = False

        self.state = ServerState.CONNECTED
        self.events.fire(ServerConnectedEvent(self))
        return self.sockets.video, self.sockets.control

    def stop(self):
        """
        Closes the sockets, removes the tunnel and waits for the server to terminate, killing it
        if it does not terminate within the watchdog delay. Failures are logged, never raised.
        """
        if self.state is ServerState.IDLE:
            # never started, or start() already cleaned up
            self.state = ServerState.STOPPED
            return
        self._check_state(ServerState.STARTED, ServerState.CONNECTED)
        self.state = ServerState.STOPPING

        self._close_server_socket()
        self.sockets.close()

        assert self.process is not None or self.direct

        if self.tunnel_enabled and not self.direct:
            self.tunnels.disable(self.tunnel)   # ignore failure

        if self.direct:
            self.direct_client.stop()

        if self.process is not None:
            self._wait_or_kill()

        if self.watcher is not None:
            self.watcher.join()

        self.state = ServerState.STOPPED
        self.events.fire(ServerStoppedEvent(self))

    def _wait_or_kill(self):
        # Give some delay for the server to terminate properly
        with self.process_terminated_cond:
            terminated = self.process_terminated_cond.wait_for(lambda: self.process_terminated,
                                                                self.watchdog_delay)

        # After this delay, kill the server if it's not dead already.
        # On some devices, closing the sockets is not sufficient to wake up the
        # blocking calls while the device is asleep.
        if not terminated:
            # There is a race condition here: the process may have terminated just now,
            # and its PID been assigned to a new process.
            logger.warning("Killing the server...")
            self.process.terminate()

    def destroy(self):
        """ releases the remaining resources. The server cannot be used afterwards. """
        self._check_state(ServerState.IDLE, ServerState.STOPPED)
        self.serial = None
        self.url = None
        self.direct_client = None
        self.tunnels = None
        self.watcher = None
        self.state = ServerState.DESTROYED

    def update(self):
        """ publishes the events posted by the watcher thread on the calling thread """
        return self.events.publish()
