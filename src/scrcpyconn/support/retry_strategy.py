import time

from scrcpyconn.support.mixins import CommonEqualityMixin


class RetryStrategy:
    """ Iterating a retry strategy yields once per allowed attempt. The base strategy allows a single attempt. """

    def __iter__(self):
        yield 1


class AttemptsRetryStrategy(RetryStrategy, CommonEqualityMixin):

    def __init__(self, attempts, delay, sleep=time.sleep):
        """
        :param attempts: The maximum number of attempts.
        :param delay: The time in seconds to wait between two attempts.
        :param sleep: called with the delay to wait between attempts.
        """
        if attempts < 1:
            raise ValueError("at least one attempt is required, got %s" % attempts)
        self.attempts = attempts
        self.delay = delay
        self.sleep = sleep

    def __iter__(self):
        """
        Yields the number of remaining attempts, counting down to 1. The delay is waited before
        each attempt but the first, so it is only spent when the caller asks for another try.
        """
        for remaining in range(self.attempts, 0, -1):
            if remaining != self.attempts:
                self.sleep(self.delay)
            yield remaining
