import threading


class OnceFlag:
    """
    A flag that is set at most once, shared between threads.

    test_and_set() sets the flag and returns the previous value, atomically. Exactly one caller
    sees False, all others see True. Used to decide which thread gets to close a resource.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def test_and_set(self):
        """
        :return: True if the flag was already set, False if this call set it.
        """
        return not self._lock.acquire(blocking=False)

    @property
    def is_set(self):
        return self._lock.locked()
