"""
Server parameters and their encoding as scrcpy-server arguments.

The server reads its configuration as a list of positional arguments. The order, and the "-" used
for unset optional values, must match what the server version expects.
"""
import logging

from scrcpyconn.errors import ConfigError
from scrcpyconn.support.mixins import CommonEqualityMixin, StringerMixin

SCRCPY_VERSION = '1.17'

DEFAULT_PORT_RANGE_FIRST = 27183
DEFAULT_PORT_RANGE_LAST = 27199

UNSET = '-'

_server_log_levels = {
    'debug': 'debug',
    'info': 'info',
    'warn': 'warn',
    'warning': 'warn',
    'error': 'error',
    logging.DEBUG: 'debug',
    logging.INFO: 'info',
    logging.WARNING: 'warn',
    logging.ERROR: 'error',
}


def log_level_to_server_string(level):
    """
    >>> log_level_to_server_string(logging.WARNING)
    'warn'
    >>> log_level_to_server_string('debug')
    'debug'
    """
    key = level.lower() if isinstance(level, str) else level
    try:
        return _server_log_levels[key]
    except (KeyError, TypeError):
        raise ConfigError("unexpected log level %r" % (level,))


def bool_arg(value):
    return 'true' if value else 'false'


def optional_arg(value):
    """
    >>> optional_arg(None)
    '-'
    >>> optional_arg('1224:1440:0:0')
    '1224:1440:0:0'
    """
    return value if value else UNSET


class PortRange(CommonEqualityMixin):
    """
    An inclusive range of TCP ports. Immutable.
    """
    def __init__(self, first, last=None):
        last = first if last is None else last
        for port in (first, last):
            if not isinstance(port, int) or not 0 <= port <= 0xFFFF:
                raise ConfigError("invalid port %r" % (port,))
        if first > last:
            raise ConfigError("invalid port range %d:%d" % (first, last))
        self._first = first
        self._last = last

    @property
    def first(self):
        return self._first

    @property
    def last(self):
        return self._last

    @classmethod
    def parse(cls, text):
        """
        >>> PortRange.parse('27183:27199').last
        27199
        >>> PortRange.parse('1234').last
        1234
        """
        parts = str(text).split(':')
        if len(parts) > 2:
            raise ConfigError("invalid port range '%s'" % text)
        try:
            ports = [int(p) for p in parts]
        except ValueError as e:
            raise ConfigError("invalid port range '%s'" % text) from e
        return cls(*ports)

    def __hash__(self):
        return hash((self._first, self._last))

    def __str__(self):
        return '%d:%d' % (self._first, self._last)

    def __repr__(self):
        return 'PortRange(%d, %d)' % (self._first, self._last)


class ServerParams(StringerMixin, CommonEqualityMixin):
    """
    The parameters a server is started with. They are read and never modified by the server.

    :param url: the base url of the direct control endpoint. When given, the server is started
        over the network with a DirectClient rather than with adb.
    :param portable: when True, the server file is looked up next to the running executable
        rather than in the installation prefix.
    """
    def __init__(self, log_level='info', crop=None, max_size=0, bit_rate=8000000, max_fps=0,
                 lock_video_orientation=-1, control=True, display_id=0, show_touches=False,
                 stay_awake=False, codec_options=None, encoder_name=None, port_range=None,
                 force_adb_forward=False, url=None, portable=False,
                 server_debugger=False, server_debugger_method='new'):
        self.log_level = log_level
        self.crop = crop
        self.max_size = max_size
        self.bit_rate = bit_rate
        self.max_fps = max_fps
        self.lock_video_orientation = lock_video_orientation
        self.control = control
        self.display_id = display_id
        self.show_touches = show_touches
        self.stay_awake = stay_awake
        self.codec_options = codec_options
        self.encoder_name = encoder_name
        self.port_range = port_range if port_range is not None \
            else PortRange(DEFAULT_PORT_RANGE_FIRST, DEFAULT_PORT_RANGE_LAST)
        self.force_adb_forward = force_adb_forward
        self.url = url
        self.portable = portable
        self.server_debugger = server_debugger
        self.server_debugger_method = server_debugger_method

    @property
    def direct(self):
        return self.url is not None


def _video_args(params: ServerParams):
    return [
        SCRCPY_VERSION,
        log_level_to_server_string(params.log_level),
        str(params.max_size),
        str(params.bit_rate),
        str(params.max_fps),
        str(params.lock_video_orientation),
    ]


def _session_args(params: ServerParams):
    return [
        bool_arg(params.control),
        str(params.display_id),
        bool_arg(params.show_touches),
        bool_arg(params.stay_awake),
        optional_arg(params.codec_options),
        optional_arg(params.encoder_name),
    ]


def server_args(params: ServerParams, tunnel_forward):
    """
    Builds the positional arguments passed to com.genymobile.scrcpy.Server.
    :param tunnel_forward: True if the server must listen (adb forward), False if it must connect (adb reverse)
    """
    return _video_args(params) + [
        bool_arg(tunnel_forward),
        optional_arg(params.crop),
        'true',     # always send frame meta (packet boundaries + timestamp)
    ] + _session_args(params)


def direct_start_segments(params: ServerParams):
    """
    Builds the url path segments of the direct start request. A directly reachable server
    always listens, so the tunnel forward flag is always true.
    """
    return server_args(params, True)
