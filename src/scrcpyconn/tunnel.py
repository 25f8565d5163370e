"""
The adb tunnel between the host and the device.

With "adb reverse", the device connects to the host: we listen on a local port and the server
connects through the tunnel. This lets us listen before the server starts, so there is no
connection polling. "adb reverse" does not work in every setup (e.g. over "adb connect"), so
"adb forward" is the fallback: the server listens on the device and we connect to it.
"""
import logging

from scrcpyconn.adb.command import AdbCommand
from scrcpyconn.errors import TunnelError
from scrcpyconn.net import listen_on_port
from scrcpyconn.params import PortRange

logger = logging.getLogger(__name__)

SOCKET_NAME = 'scrcpy'


class Tunnel:
    """
    An established tunnel.
    :param forward: True for "adb forward", False for "adb reverse"
    :param local_port: the host side port of the tunnel
    :param server_socket: the socket listening on local_port. Reverse tunnels only.
    """
    def __init__(self, forward, local_port, server_socket=None):
        self.forward = forward
        self.local_port = local_port
        self.server_socket = server_socket

    def __repr__(self):
        return 'Tunnel(%s, %d)' % ('forward' if self.forward else 'reverse', self.local_port)


class TunnelManager:
    """ Opens and closes the tunnel for one device.

    :param adb: the adb commands for the device
    :param listen: opens a listening socket on a port, or returns None if the port is not available
    """

    def __init__(self, adb: AdbCommand, listen=listen_on_port, socket_name=SOCKET_NAME):
        self.adb = adb
        self.listen = listen
        self.socket_name = socket_name

    def enable(self, port_range: PortRange, force_adb_forward=False) -> Tunnel:
        """
        Creates a tunnel on the first usable port in the range. "adb reverse" is tried first,
        unless force_adb_forward is set.
        :raises TunnelError: if no tunnel could be created
        """
        if not force_adb_forward:
            try:
                return self._enable_reverse_any_port(port_range)
            except TunnelError as e:
                logger.warning("'adb reverse' failed, fallback to 'adb forward': %s" % e)

        return self._enable_forward_any_port(port_range)

    def disable(self, tunnel: Tunnel):
        """
        Removes the tunnel. Failure is logged and reported, never raised.
        :return: True if the tunnel was removed
        """
        if tunnel.forward:
            return self.adb.forward_remove(tunnel.local_port)
        return self.adb.reverse_remove(self.socket_name)

    def _enable_reverse_any_port(self, port_range: PortRange) -> Tunnel:
        port = port_range.first
        while True:
            if not self.adb.reverse(self.socket_name, port):
                # the command itself failed, it will fail on any port
                raise TunnelError("'adb reverse' command failed")

            # At the application level, the device part is "the server" because it serves the
            # video stream and control. At the network level, we listen and the server connects
            # to us, so we can listen before starting the server.
            server_socket = self.listen(port)
            if server_socket is not None:
                return Tunnel(False, port, server_socket)

            # failure, disable tunnel and try another port
            if not self.adb.reverse_remove(self.socket_name):
                logger.warning("Could not remove reverse tunnel on port %d" % port)

            # check before incrementing to avoid overflow on port 65535
            if port < port_range.last:
                logger.warning("Could not listen on port %d, retrying on %d" % (port, port + 1))
                port += 1
                continue

            raise TunnelError(self._exhausted_message("Could not listen on", port_range))

    def _enable_forward_any_port(self, port_range: PortRange) -> Tunnel:
        port = port_range.first
        while True:
            if self.adb.forward(port, self.socket_name):
                return Tunnel(True, port)

            if port < port_range.last:
                logger.warning("Could not forward port %d, retrying on %d" % (port, port + 1))
                port += 1
                continue

            raise TunnelError(self._exhausted_message("Could not forward", port_range))

    @staticmethod
    def _exhausted_message(action, port_range: PortRange):
        """
        >>> TunnelManager._exhausted_message("Could not forward", PortRange(5, 5))
        'Could not forward port 5'
        >>> TunnelManager._exhausted_message("Could not forward", PortRange(5, 8))
        'Could not forward any port in range 5:8'
        """
        if port_range.first == port_range.last:
            message = "%s port %d" % (action, port_range.first)
        else:
            message = "%s any port in range %s" % (action, port_range)
        logger.error(message)
        return message
