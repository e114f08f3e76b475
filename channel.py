"""Delivery channel - hands readings from the acquisition thread to the display loop"""
import logging
import queue
import threading
from typing import Optional

from sources.base import MeterReading, MeterSource

logger = logging.getLogger(__name__)

# Marks the end of the stream; put by the producer on exit
_CLOSED = object()


class ChannelClosed(Exception):
    """
    The other side of the channel is gone.

    Raised to the producer when the receiver detached, and to the receiver
    after the producer exited. `cause` holds the error that stopped the
    producer, if there was one.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ChannelTimeout(Exception):
    """No reading arrived within the receive timeout."""


class ReadingChannel:
    """
    Single-producer/single-consumer queue of MeterReading values.

    Sends never block (the queue is unbounded). The receiver sees one of
    three outcomes: a reading, a timeout, or a permanently closed channel.
    """

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._detached = threading.Event()
        self._error: Optional[BaseException] = None

    def send(self, reading: MeterReading) -> None:
        if self._detached.is_set():
            raise ChannelClosed("Receiver is gone")
        self._queue.put_nowait(reading)

    def close(self, error: Optional[BaseException] = None) -> None:
        """Producer side: no more readings will follow."""
        self._error = error
        self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        """Receiver side: stop accepting readings."""
        self._detached.set()

    def receive(self, timeout: float) -> MeterReading:
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise ChannelTimeout(f"No reading within {timeout:.1f}s") from None

        if item is _CLOSED:
            # Keep the marker so later receives see the closed channel too
            self._queue.put_nowait(_CLOSED)
            if self._error is not None:
                raise ChannelClosed(f"Reading source stopped: {self._error}", self._error)
            raise ChannelClosed("Reading source stopped")

        return item


def pump(source: MeterSource, channel: ReadingChannel) -> None:
    """
    Send every reading of the source on the channel.

    Returns silently when the receiver is gone. Any other error ends the
    stream; the channel is closed in every case.
    """
    error = None
    try:
        for reading in source.stream():
            channel.send(reading)
    except ChannelClosed:
        logger.debug("Acquisition: Receiver gone, stopping")
    except Exception as e:
        logger.error(f"Acquisition: Source failed: {e}")
        error = e
    finally:
        channel.close(error)
        logger.info("Acquisition: Stopped")


def start_acquisition(source: MeterSource, channel: ReadingChannel) -> threading.Thread:
    """
    Run the source in a background thread feeding the channel.

    The thread is a daemon: there is no cancellation signal, it ends with
    the process or when its send fails.
    """
    thread = threading.Thread(
        target=pump,
        args=(source, channel),
        name="acquisition",
        daemon=True
    )
    thread.start()
    return thread
