import socket

from scrcpyconn.conduit import base


class SocketPairConduit(base.Conduit):
    """
    A conduit over the video and control sockets of a connected server.

    The sockets belong to the server, which shuts them down and closes them when stopped.
    Closing the conduit only closes the streams it created.
    """
    def __init__(self, video: socket.socket, control: socket.socket):
        self.video = video
        self.control = control
        self._video_stream = None
        self._control_stream = None

    @property
    def open(self) -> bool:
        return self.video.fileno() >= 0 and self.control.fileno() >= 0

    @property
    def video_stream(self):
        if self._video_stream is None:
            self._video_stream = self.video.makefile('rb')
        return self._video_stream

    @property
    def control_stream(self):
        if self._control_stream is None:
            self._control_stream = self.control.makefile('wb')
        return self._control_stream

    def close(self):
        for stream in (self._video_stream, self._control_stream):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass    # the peer may have closed the socket
        self._video_stream = self._control_stream = None
