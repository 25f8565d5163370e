import logging
import socket

logger = logging.getLogger(__name__)

IPV4_LOCALHOST = '127.0.0.1'

CONNECT_TIMEOUT = 5


def listen_on_port(port, host=IPV4_LOCALHOST, backlog=1):
    """
    Opens a listening socket.
    :return: the socket, or None if the port could not be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
        return sock
    except OSError as e:
        logger.debug("could not listen on %s:%d: %s" % (host, port, e))
        sock.close()
        return None


def connect(host, port):
    """
    Opens a blocking client socket.
    :return: the socket, or None if the connection was refused
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.settimeout(CONNECT_TIMEOUT)
        sock.connect((host, port))
        sock.settimeout(None)
        return sock
    except OSError as e:
        logger.debug("could not connect to %s:%d: %s" % (host, port, e))
        sock.close()
        return None


def connect_and_read_byte(host, port):
    """
    Connects and reads one byte, which proves the server is serving and not just that something
    accepted the connection.
    :return: the socket, or None
    """
    sock = connect(host, port)
    if sock is None:
        return None

    # the connection may succeed even if the server behind the "adb tunnel"
    # is not listening, so read one byte to detect a working connection
    try:
        data = sock.recv(1)
    except OSError:
        data = b''
    if len(data) != 1:
        # the server is not listening yet behind the adb tunnel
        sock.close()
        return None
    return sock


def accept(server_socket):
    """
    Waits for a connection on a listening socket.
    :return: the connected socket, or None if the listening socket was shut down or closed
    """
    try:
        sock, address = server_socket.accept()
    except OSError as e:
        logger.debug("accept failed: %s" % e)
        return None
    return sock


def close_socket(sock):
    """
    Shuts down and closes a socket. On Linux, a blocking accept() is woken by shutdown(), on
    Windows by close(), so both are called.
    """
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass    # not connected, or the peer already went away
    try:
        sock.close()
    except OSError as e:
        logger.warning("Could not close socket: %s" % e)
