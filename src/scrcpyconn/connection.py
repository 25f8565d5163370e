"""
Establishes the video and control sockets to a started server.

The server expects the video socket first and the control socket second, whichever side
connects. Each establisher stores a socket in the SocketPair as soon as it is open, so that on
failure the sockets already opened are still closed by Server.stop().
"""
import logging
import time
from abc import abstractmethod

from scrcpyconn import net
from scrcpyconn.errors import ConnectionFailed, ConnectionTimeout, RemoteDied
from scrcpyconn.support.retry_strategy import AttemptsRetryStrategy, RetryStrategy

logger = logging.getLogger(__name__)

DIRECT_ATTEMPTS = 12
DIRECT_DELAY = 1.0

FORWARD_ATTEMPTS = 100
FORWARD_DELAY = 0.1


class SocketPair:
    """ The video and control sockets. Either may be None when not (yet) established. """

    def __init__(self):
        self.video = None
        self.control = None

    @property
    def complete(self):
        return self.video is not None and self.control is not None

    def close(self):
        if self.video is not None:
            net.close_socket(self.video)
        if self.control is not None:
            net.close_socket(self.control)


def connect_to_server(host, port, retry_strategy: RetryStrategy):
    """
    Connects to a server behind a tunnel, retrying until it answers.
    :raises ConnectionTimeout: when all attempts failed
    """
    for remaining in retry_strategy:
        logger.debug("Remaining connection attempts: %d" % remaining)
        sock = net.connect_and_read_byte(host, port)
        if sock is not None:
            return sock
    raise ConnectionTimeout("no answer from the server at %s:%d" % (host, port))


class Establisher:

    @abstractmethod
    def establish(self, sockets: SocketPair):
        """ opens the video socket, then the control socket, and stores them in sockets. """
        raise NotImplementedError


class ConnectingEstablisher(Establisher):
    """
    Connects to a listening server. The first connection is retried until the server answers.
    Once it has, the server is known to be listening and the control socket is connected once.
    """

    def __init__(self, host, port, retry_strategy: RetryStrategy):
        self.host = host
        self.port = port
        self.retry_strategy = retry_strategy

    def establish(self, sockets: SocketPair):
        sockets.video = connect_to_server(self.host, self.port, self.retry_strategy)

        # we know that the device is listening, we don't need several attempts
        sockets.control = net.connect(self.host, self.port)
        if sockets.control is None:
            raise ConnectionFailed("could not connect the control socket to %s:%d" % (self.host, self.port))


def direct_establisher(host, port, sleep=time.sleep):
    return ConnectingEstablisher(host, port, AttemptsRetryStrategy(DIRECT_ATTEMPTS, DIRECT_DELAY, sleep))


def forward_establisher(local_port, sleep=time.sleep):
    return ConnectingEstablisher(net.IPV4_LOCALHOST, local_port,
                                 AttemptsRetryStrategy(FORWARD_ATTEMPTS, FORWARD_DELAY, sleep))


class AcceptingEstablisher(Establisher):
    """
    Accepts the connections of the server on the listening socket of a reverse tunnel.

    :param server_socket: the listening socket
    :param close_server_socket: closes the listening socket unless another thread already did.
        Called once both sockets are accepted.
    """

    def __init__(self, server_socket, close_server_socket):
        self.server_socket = server_socket
        self.close_server_socket = close_server_socket

    def establish(self, sockets: SocketPair):
        sockets.video = net.accept(self.server_socket)
        if sockets.video is None:
            raise RemoteDied("the server did not connect the video socket")

        sockets.control = net.accept(self.server_socket)
        if sockets.control is None:
            # the video socket is cleaned up on stop
            raise RemoteDied("the server did not connect the control socket")

        # we don't need the server socket anymore
        self.close_server_socket()
