from queue import Empty, Queue


class EventSource(object):

    def __init__(self):
        self._handlers = []

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        self._handlers.append(handler)
        return self

    def remove(self, handler):
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def handlers(self):
        return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        for handler in self._handlers:
            handler(*args, **kwargs)

    def fire_all(self, events):
        for e in events:
            self.fire(e)


class QueuedEventSource(EventSource):
    """
    fire() notifies the handlers on the calling thread. post() is for other threads: the event is
    queued, and the handlers are notified when the owning thread calls publish().
    """
    def __init__(self):
        super().__init__()
        self.event_queue = Queue()

    def post(self, event):
        """ queues an event. Safe to call from any thread. """
        self.event_queue.put(event)

    def publish(self):
        """ publishes any queued events on the calling thread.
        :return: the number of events published
        """
        events = []
        while True:
            try:
                events.append(self.event_queue.get_nowait())
            except Empty:
                break
        self.fire_all(events)
        return len(events)
