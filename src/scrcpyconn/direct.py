"""
Starts and stops a server reachable over the network through its HTTP control endpoint,
instead of through adb.
"""
import logging
from urllib.parse import urlsplit

import requests

from scrcpyconn.errors import ProtocolViolation, SpawnError
from scrcpyconn.params import ServerParams, direct_start_segments

logger = logging.getLogger(__name__)

SUCCESS_MARKER = 'success'
RESPONSE_LIMIT = 1024
REQUEST_TIMEOUT = 10


class DirectClient:
    """
    :param url: the base url of the control endpoint, e.g. http://192.168.1.20:8080
    :param session: the requests session to use, a new one by default
    """

    def __init__(self, url, session=None, timeout=REQUEST_TIMEOUT):
        self.url = url.rstrip('/')
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    @property
    def host(self):
        """ the address the video and control sockets connect to """
        return urlsplit(self.url).hostname

    def start_url(self, params: ServerParams):
        return '%s/startScrcpy/%s' % (self.url, '/'.join(direct_start_segments(params)))

    def stop_url(self):
        return '%s/stopScrcpy/' % self.url

    def start(self, params: ServerParams):
        """
        :raises SpawnError: the request failed or the server did not report success
        """
        try:
            self._get(self.start_url(params))
        except (requests.RequestException, ProtocolViolation) as e:
            logger.error("Could not start the server: %s" % e)
            raise SpawnError("could not start the server at %s" % self.url) from e

    def stop(self):
        """
        Asks the server to stop. Failure is logged, never raised.
        :return: True if the server reported success
        """
        try:
            self._get(self.stop_url())
            return True
        except (requests.RequestException, ProtocolViolation) as e:
            logger.warning("Could not stop the server: %s" % e)
            return False

    def _get(self, url):
        """
        Any response that contains the success marker in its first RESPONSE_LIMIT bytes is a success.
        """
        logger.info(url)
        response = self.session.get(url, timeout=self.timeout)
        try:
            body = response.content[:RESPONSE_LIMIT].decode('utf-8', errors='replace')
        finally:
            response.close()
        if SUCCESS_MARKER not in body:
            raise ProtocolViolation("unexpected response from %s: %r" % (url, body))
        logger.info(body)
        return body
