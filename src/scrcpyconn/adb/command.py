"""
Runs adb commands. Each command is a separate adb process; the synchronous commands wait for
it to exit and report success as a bool, after logging the failure.
"""
import logging
import os
import subprocess

logger = logging.getLogger(__name__)

ADB_ENV = 'ADB'
DEFAULT_ADB = 'adb'


def adb_executable():
    """ the adb executable, which may be overridden by the ADB environment variable """
    return os.environ.get(ADB_ENV) or DEFAULT_ADB


class AdbCommand:
    """ Executes adb commands against one device.

    :param serial: the device serial, passed as "-s serial". When None, adb picks the only device.
    :param executable: the adb executable. Defaults to adb_executable()
    :param popen: the factory used to create the processes, subprocess.Popen by default.
    """

    def __init__(self, serial=None, executable=None, popen=subprocess.Popen):
        self.serial = serial
        self.executable = executable or adb_executable()
        self._popen = popen

    def command_line(self, *args):
        cmd = [self.executable]
        if self.serial:
            cmd += ['-s', self.serial]
        cmd += [str(a) for a in args]
        return cmd

    def execute(self, *args):
        """
        Starts adb with the given arguments and returns without waiting for it.
        :return: the Popen process
        :raises OSError: when the adb executable cannot be run
        """
        cmd = self.command_line(*args)
        logger.debug("Execute: %s" % ' '.join(cmd))
        return self._popen(cmd)

    def check_success(self, label, *args):
        """
        Runs an adb command to completion.
        :param label: names the command in log messages, e.g. "adb push"
        :return: True if the command exited with status 0
        """
        try:
            process = self.execute(*args)
        except (OSError, ValueError) as e:
            logger.error('Could not execute "%s": %s' % (label, e))
            return False
        exit_code = process.wait()
        if exit_code != 0:
            logger.error('"%s" returned with value %d' % (label, exit_code))
            return False
        return True

    def push(self, local, remote):
        return self.check_success("adb push", 'push', local, remote)

    def reverse(self, socket_name, local_port):
        return self.check_success("adb reverse", 'reverse',
                                  'localabstract:' + socket_name, 'tcp:%d' % local_port)

    def reverse_remove(self, socket_name):
        return self.check_success("adb reverse --remove", 'reverse', '--remove',
                                  'localabstract:' + socket_name)

    def forward(self, local_port, socket_name):
        return self.check_success("adb forward", 'forward',
                                  'tcp:%d' % local_port, 'localabstract:' + socket_name)

    def forward_remove(self, local_port):
        return self.check_success("adb forward --remove", 'forward', '--remove', 'tcp:%d' % local_port)

    def shell(self, *args):
        """
        Starts a shell command on the device. The command keeps running after this returns.
        :return: the Popen process of the adb client running the command.
        """
        return self.execute('shell', *args)
