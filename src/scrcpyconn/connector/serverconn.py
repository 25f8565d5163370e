import logging
import os

from scrcpyconn.conduit.base import Conduit
from scrcpyconn.conduit.socket_conduit import SocketPairConduit
from scrcpyconn.errors import ServerError
from scrcpyconn.params import ServerParams
from scrcpyconn.process import get_server_path
from scrcpyconn.server import Server
from scrcpyconn.support.events import EventSource

logger = logging.getLogger(__name__)


class ConnectionNotConnectedError(ServerError):
    """ The conduit was requested while the connector is disconnected. """


class ConnectionNotAvailableError(ServerError):
    """ The server file is missing, so the server cannot be started. """


class ConnectorEvent:
    """ base class for connector events. """
    def __init__(self, connector):
        self.connector = connector


class ConnectorConnectedEvent(ConnectorEvent):
    """ The server was started and both sockets are connected. """


class ConnectorDisconnectedEvent(ConnectorEvent):
    """ The server was stopped. """


class ServerConnector:
    """
    Connects to scrcpy-server on a device. Connecting starts the server and establishes the
    sockets, disconnecting stops and destroys it. Each connection uses a new Server.

    :param serial: the device serial, or None for the only device
    :param params: the server parameters
    :param server_factory: creates the Server for each connection
    """
    def __init__(self, serial, params: ServerParams, server_factory=Server):
        self.serial = serial
        self.params = params
        self._server_factory = server_factory
        self.server = None
        self._conduit = None
        self.events = EventSource()

    @property
    def endpoint(self):
        if self.params.direct:
            return self.params.url
        return self.serial or 'default device'

    @property
    def connected(self):
        return self._conduit is not None and self._conduit.open

    @property
    def available(self):
        """ a directly reachable server is started over the network, so only adb needs the server file """
        if self.connected:
            return False
        return self.params.direct or os.path.isfile(get_server_path(self.params.portable))

    @property
    def conduit(self) -> Conduit:
        if not self.connected:
            raise ConnectionNotConnectedError("%s is not connected" % self.endpoint)
        return self._conduit

    def connect(self):
        """
        Starts a server and connects to it. Does nothing when already connected.
        :raises ServerError: if the server could not be started or connected to
        """
        if self.connected:
            return
        # the sockets were closed under us, release the previous server first
        self.disconnect()

        if not self.available:
            raise ConnectionNotAvailableError("%s is not available" % self.endpoint)

        server = self._server_factory()
        connected = False
        try:
            server.start(self.serial, self.params)
            video, control = server.connect_to()
            connected = True
        except ServerError as e:
            logger.warning("error connecting to server on %s: %s" % (self.endpoint, e))
            raise
        finally:
            if not connected:
                server.stop()
                server.destroy()

        logger.info("connected to server on %s" % self.endpoint)
        self.server = server
        self._conduit = SocketPairConduit(video, control)
        self.events.fire(ConnectorConnectedEvent(self))

    def disconnect(self):
        if self._conduit is None:
            return
        server, self.server = self.server, None
        server.stop()
        server.destroy()
        self._conduit.close()
        self._conduit = None
        self.events.fire(ConnectorDisconnectedEvent(self))
