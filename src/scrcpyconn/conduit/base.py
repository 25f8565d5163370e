from abc import abstractmethod
from io import IOBase


class Conduit:
    """
    The streams of a connected server. Frames come in on the video stream, and input events and
    other control messages go out on the control stream.
    """

    @property
    @abstractmethod
    def video_stream(self) -> IOBase:
        """ the binary stream the encoded video is read from """
        raise NotImplementedError

    @property
    @abstractmethod
    def control_stream(self) -> IOBase:
        """ the binary stream control messages are written to """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ True while both streams are usable """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        raise NotImplementedError
