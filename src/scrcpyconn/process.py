"""
Starts scrcpy-server on the device and watches it.
"""
import logging
import os
import sys
import threading

from scrcpyconn.adb.command import AdbCommand
from scrcpyconn.errors import ConfigError, SpawnError
from scrcpyconn.params import ServerParams, server_args

logger = logging.getLogger(__name__)

SERVER_PATH_ENV = 'SCRCPY_SERVER_PATH'
SERVER_FILENAME = 'scrcpy-server'
DEVICE_SERVER_PATH = '/data/local/tmp/scrcpy-server.jar'
SERVER_CLASS = 'com.genymobile.scrcpy.Server'

SERVER_DEBUGGER_PORT = 5005
# Android 9 and above
SERVER_DEBUGGER_ARG_NEW = '-XjdwpProvider:internal -XjdwpOptions:transport=dt_socket,suspend=y,server=y,address=%d'
# Android 8 and below
SERVER_DEBUGGER_ARG_OLD = '-agentlib:jdwp=transport=dt_socket,suspend=y,server=y,address=%d'


def default_server_path(prefix=None):
    prefix = prefix if prefix is not None else sys.prefix
    return os.path.join(prefix, 'share', 'scrcpy', SERVER_FILENAME)


def portable_server_path(executable=None):
    """ scrcpy-server in the same directory as the executable, or in the current directory """
    executable = executable if executable is not None else sys.executable
    if not executable:
        logger.error("Could not get executable path, using %s from current directory" % SERVER_FILENAME)
        return SERVER_FILENAME
    return os.path.join(os.path.dirname(os.path.abspath(executable)), SERVER_FILENAME)


def get_server_path(portable=False, environ=os.environ):
    """
    Determines the local server file. The SCRCPY_SERVER_PATH environment variable takes precedence.
    """
    path = environ.get(SERVER_PATH_ENV)
    if path:
        logger.debug("Using %s: %s" % (SERVER_PATH_ENV, path))
        return path
    if portable:
        path = portable_server_path()
        logger.debug("Using server (portable): %s" % path)
    else:
        path = default_server_path()
        logger.debug("Using server: %s" % path)
    return path


def push_server(adb: AdbCommand, portable=False):
    """
    Pushes the server file to the device.
    :raises ConfigError: the server file does not exist
    :raises SpawnError: adb push failed
    """
    server_path = get_server_path(portable)
    if not os.path.isfile(server_path):
        message = "'%s' does not exist or is not a regular file" % server_path
        logger.error(message)
        raise ConfigError(message)
    if not adb.push(server_path, DEVICE_SERVER_PATH):
        raise SpawnError("could not push %s to the device" % server_path)


def server_debugger_arg(params: ServerParams):
    template = SERVER_DEBUGGER_ARG_NEW if params.server_debugger_method == 'new' else SERVER_DEBUGGER_ARG_OLD
    return template % SERVER_DEBUGGER_PORT


def server_command(params: ServerParams, tunnel_forward):
    """ The shell command line that starts the server on the device. """
    cmd = ['CLASSPATH=' + DEVICE_SERVER_PATH, 'app_process']
    if params.server_debugger:
        cmd.append(server_debugger_arg(params))
    cmd.append('/')     # unused
    cmd.append(SERVER_CLASS)
    return cmd + server_args(params, tunnel_forward)


class ServerProcess:
    """ The adb process running the server on the device. """

    def __init__(self, process):
        self.process = process

    @property
    def alive(self):
        return self.process.poll() is None

    def wait_for_exit(self):
        """ blocks until the process exits. The exit code is ignored. """
        self.process.wait()

    def terminate(self):
        self.process.terminate()


def execute_server(adb: AdbCommand, params: ServerParams, tunnel_forward) -> ServerProcess:
    """
    Starts the server.
    :raises SpawnError: adb could not be executed
    """
    cmd = server_command(params, tunnel_forward)
    if params.server_debugger:
        # From the computer, run
        #     adb forward tcp:5005 tcp:5005
        # then attach a remote debugger to localhost:5005
        logger.info("Server debugger waiting for a client on device port %d..." % SERVER_DEBUGGER_PORT)
    try:
        return ServerProcess(adb.shell(*cmd))
    except (OSError, ValueError) as e:
        logger.error("Could not execute the server: %s" % e)
        raise SpawnError("could not execute the server") from e


class ServerWatcher:
    """
    Waits on a background thread for the server process to exit, then calls on_terminated.

    If the server dies before connecting to the listening socket, accept() would block forever.
    on_terminated is expected to close the listening socket to wake it up.
    """

    def __init__(self, process: ServerProcess, on_terminated):
        self.process = process
        self.on_terminated = on_terminated
        self.thread = None

    def start(self):
        """
        :raises SpawnError: if the thread could not be started
        """
        t = threading.Thread(target=self._run, name='wait-server')
        t.daemon = True
        try:
            t.start()
        except RuntimeError as e:
            raise SpawnError("could not start the server watcher") from e
        self.thread = t

    def _run(self):
        self.process.wait_for_exit()
        self.on_terminated()

    def join(self, timeout=None):
        thread = self.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
