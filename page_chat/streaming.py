"""Relay upstream text fragments to a consumer through a bounded queue."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Iterable, Iterator, Optional

from .errors import ChatCancelled

logger = logging.getLogger(__name__)

SourceFactory = Callable[[threading.Event], Iterable[str]]


class _End:
    pass


class _Failure:
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


_END = _End()


class FragmentRelay:
    """Pump fragments from a producer thread to the iterating consumer.

    ``source_factory`` receives the relay's stop event and must return the
    upstream iterable; the upstream should watch that event and stop reading
    once it is set. The stop event is set when the caller's ``cancel_event``
    fires or when the consumer stops iterating for any reason.
    """

    def __init__(
        self,
        source_factory: SourceFactory,
        *,
        cancel_event: Optional[threading.Event] = None,
        max_queue_size: int = 64,
        poll_interval: float = 0.1,
    ) -> None:
        self._source_factory = source_factory
        self._cancel_event = cancel_event
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max(1, max_queue_size))
        self._poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._produce, name="fragment-relay", daemon=True)

    def __iter__(self) -> Iterator[str]:
        self._thread.start()
        try:
            while True:
                if self._cancel_event is not None and self._cancel_event.is_set():
                    raise ChatCancelled("Stream cancelled by caller")
                try:
                    item = self._queue.get(timeout=self._poll_interval)
                except queue.Empty:
                    continue
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.exc
                yield item  # type: ignore[misc]
        finally:
            self._shutdown()

    def _produce(self) -> None:
        source: Optional[Iterator[str]] = None
        try:
            source = iter(self._source_factory(self._stop))
            for fragment in source:
                if not self._put(fragment):
                    return
        except BaseException as exc:  # forwarded to the consumer
            self._put(_Failure(exc))
            return
        finally:
            close = getattr(source, "close", None)
            if close is not None:
                close()
        self._put(_END)

    def _put(self, item: object) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def _shutdown(self) -> None:
        self._stop.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._thread.join(timeout=self._poll_interval * 10)
        if self._thread.is_alive():
            logger.debug("Fragment producer still draining upstream after shutdown")
