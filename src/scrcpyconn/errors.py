class ServerError(Exception):
    """ Indicates an error condition with the server or its connection. """


class ConfigError(ServerError):
    """ The server configuration is invalid, or the server file is missing. """


class TunnelError(ServerError):
    """ The adb tunnel could not be created, either the command failed or no port in the range could be used. """


class SpawnError(ServerError):
    """ The server could not be pushed to the device or started. """


class ConnectionTimeout(ServerError):
    """ The server did not answer within the allowed number of connection attempts. """


class ConnectionFailed(ServerError):
    """ A socket to a server known to be listening could not be opened. """


class RemoteDied(ServerError):
    """ The listening socket was closed before the server connected, typically because the server died. """


class ProtocolViolation(ServerError):
    """ The direct control endpoint answered without the success marker. """


class ServerStateError(ServerError):
    """ A server method was called in a state that does not allow it. """
