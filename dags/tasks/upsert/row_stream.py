"""Bounded-queue row stream for producers running beside the pipeline."""
import logging
import queue
import threading
from typing import Any, Iterable, Iterator, List, Optional, Sequence

logger = logging.getLogger("row_stream")

_END = object()

# How often a producer blocked on a full queue checks whether the consumer left
PUT_POLL_INTERVAL = 0.1


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


class QueueRowStream:
    """
    Single-pass row stream fed by a concurrently running producer.

    The producer calls put() for each row and then close(), or fail() to
    hand its exception to the consumer. The consumer iterates the stream;
    iteration blocks while the queue is empty, and put() blocks while the
    queue is full, so backpressure is implicit.

    When iteration ends for any reason (exhausted, failed, or the
    consumer closed the iterator after an error of its own) the stream is
    stopped: producers started by from_iterable() stop offering rows,
    close their source iterator and exit.

    Example:
        >>> stream = QueueRowStream(maxsize=2)
        >>> stream.put(["1", "Alice"])
        >>> stream.close()
        >>> list(stream)
        [['1', 'Alice']]
    """

    def __init__(self, maxsize: int = 10000):
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._consumed = False
        self._stopped = threading.Event()
        self.producer: Optional[threading.Thread] = None

    def put(self, row: Sequence[str], timeout: Optional[float] = None) -> None:
        self._queue.put(list(row), timeout=timeout)

    def close(self) -> None:
        """Signal the end of the stream."""
        self._queue.put(_END)

    def fail(self, error: BaseException) -> None:
        """End the stream with an error that the consumer re-raises."""
        self._queue.put(_Failure(error))

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Tell the producer the consumer is gone. Idempotent."""
        self._stopped.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the producer thread started by from_iterable().

        Returns:
            bool: True if no producer is running any more
        """
        if self.producer is None:
            return True
        self.producer.join(timeout=timeout)
        return not self.producer.is_alive()

    def _offer(self, item: Any) -> bool:
        """Put an item, giving up once the stream is stopped."""
        while not self._stopped.is_set():
            try:
                self._queue.put(item, timeout=PUT_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def __iter__(self) -> Iterator[List[str]]:
        if self._consumed:
            raise RuntimeError("Row stream can only be consumed once")
        self._consumed = True
        try:
            while True:
                item = self._queue.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            self.stop()

    @classmethod
    def from_iterable(
        cls, rows: Iterable[Sequence[str]], maxsize: int = 10000
    ) -> "QueueRowStream":
        """
        Drain an iterable into a new stream from a background thread.

        The producer exits once the source is exhausted or the stream is
        stopped; either way it closes the source iterator if it has a
        close() method (e.g. a generator holding an open file).

        Args:
            rows: Row producer, e.g. a file reader
            maxsize: Queue bound; the producer blocks when it is reached

        Returns:
            QueueRowStream: Stream to hand to the pipeline
        """
        stream = cls(maxsize=maxsize)
        iterator = iter(rows)

        def produce():
            try:
                for row in iterator:
                    if not stream._offer(list(row)):
                        logger.info("Row consumer stopped, producer exiting")
                        break
                else:
                    stream._offer(_END)
            except Exception as e:
                logger.error(f"Row producer failed: {e}")
                stream._offer(_Failure(e))
            finally:
                close = getattr(iterator, "close", None)
                if close is not None:
                    close()

        stream.producer = threading.Thread(target=produce, name="row-producer", daemon=True)
        stream.producer.start()
        return stream
