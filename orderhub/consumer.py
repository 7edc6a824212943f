"""At-least-once consumer that hands order messages to the service."""

import random
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Optional, Protocol, Union, runtime_checkable

from orderhub.consumer_config import ConsumerConfig, ReaderConfig
from orderhub.domain import InvalidOrderError
from orderhub.ports import Logger, NullLogger

_Seconds = Union[float, timedelta]

_DEFAULT_PROCESS_TIMEOUT = 5.0
_DEFAULT_RETRY_INITIAL = 1.0
_DEFAULT_RETRY_MAX = 30.0
_FAILURE_PAUSE_CAP = 0.5


@dataclass
class Message:
    """One message read from a topic."""

    value: bytes = b""
    offset: int = 0
    topic: str = ""
    partition: int = 0
    key: bytes = b""


@runtime_checkable
class Reader(Protocol):
    """Source of messages with manual offset commits.

    ``fetch_message`` blocks until a message arrives and raises on failure;
    ``close`` must make a blocked fetch raise.
    """

    def fetch_message(self) -> Message: ...

    def commit_messages(self, *messages: Message) -> None: ...

    def config(self) -> ReaderConfig: ...

    def close(self) -> None: ...


@runtime_checkable
class MessageSaver(Protocol):
    """Parses, validates and stores the payload of one message."""

    def save_from_message(self, raw: bytes) -> None: ...


def _seconds(value: Optional[_Seconds], default: float) -> float:
    if value is None:
        return default
    if isinstance(value, timedelta):
        value = value.total_seconds()
    return float(value) if value > 0 else default


def _call_with_timeout(func: Callable[[bytes], None], raw: bytes, timeout: float) -> None:
    """Run func(raw) and raise TimeoutError if it does not finish in time."""
    outcome: Dict[str, BaseException] = {}

    def target() -> None:
        try:
            func(raw)
        except BaseException as exc:  # handed back to the caller below
            outcome["error"] = exc

    worker = threading.Thread(target=target, name="message-processing", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise TimeoutError(f"processing did not finish within {timeout}s")
    if "error" in outcome:
        raise outcome["error"]


class Consumer:
    """Reads messages, hands them to the service and commits their offsets.

    A handled message and an invalid one are committed; a temporary failure
    leaves the offset uncommitted so the message is delivered again.
    Failed fetches are retried with exponential backoff and equal jitter.
    """

    def __init__(
        self,
        reader: Reader,
        service: MessageSaver,
        log: Optional[Logger] = None,
        process_timeout: Optional[_Seconds] = None,
        retry_initial: Optional[_Seconds] = None,
        retry_max: Optional[_Seconds] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._reader = reader
        self._service = service
        self._log: Logger = log if log is not None else NullLogger()
        self._process_timeout = _seconds(process_timeout, _DEFAULT_PROCESS_TIMEOUT)
        self._retry_initial = _seconds(retry_initial, _DEFAULT_RETRY_INITIAL)
        self._retry_max = _seconds(retry_max, _DEFAULT_RETRY_MAX)
        self._rng = rng if rng is not None else random.Random()
        self._stopped = threading.Event()
        self._close_lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: ConsumerConfig,
        reader: Reader,
        service: MessageSaver,
        log: Optional[Logger] = None,
    ) -> "Consumer":
        """Build a consumer from settings; unset times fall back to defaults.

        ``reader`` is expected to be opened with ``config.reader_config()``.
        """
        return cls(
            reader,
            service,
            log,
            process_timeout=config.process_timeout,
            retry_initial=config.retry_initial,
            retry_max=config.retry_max,
        )

    def run(self) -> None:
        """Consume messages until the consumer is closed."""
        rc = self._reader.config()
        self._log.info(
            "kafka consumer started topic=%s group_id=%s brokers=%s",
            rc.topic,
            rc.group_id,
            rc.brokers,
        )
        retry = self._retry_initial
        while not self._stopped.is_set():
            try:
                message = self._reader.fetch_message()
            except Exception as exc:
                if self._stopped.is_set():
                    return
                pause = self._with_jitter_equal(retry)
                self._log.warning("fetch failed: %s (will retry in %.3fs)", exc, pause)
                if self._stopped.wait(pause):
                    return
                retry = self._next_backoff(retry)
                continue

            retry = self._retry_initial
            if self._handle_message(message):
                self._commit_safely(message)
            else:
                pause = min(self._retry_initial, _FAILURE_PAUSE_CAP)
                self._stopped.wait(self._with_jitter_equal(pause))

    def close(self) -> None:
        """Stop the loop and close the reader; later calls do nothing."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._stopped.set()
        self._reader.close()

    def _handle_message(self, message: Message) -> bool:
        """Process one message; return whether its offset should be committed."""
        try:
            _call_with_timeout(self._service.save_from_message, message.value, self._process_timeout)
        except InvalidOrderError as exc:
            self._log.warning("invalid message offset=%d: %s (skipped)", message.offset, exc)
            return True
        except Exception as exc:
            self._log.warning(
                "process failed offset=%d: %s (will retry without commit)", message.offset, exc
            )
            return False
        return True

    def _commit_safely(self, message: Message) -> None:
        try:
            self._reader.commit_messages(message)
        except Exception as exc:
            self._log.warning("commit failed offset=%d: %s", message.offset, exc)

    def _next_backoff(self, current: float) -> float:
        return min(current * 2, self._retry_max)

    def _with_jitter_equal(self, delay: float) -> float:
        """Half of the delay is fixed, the other half random."""
        if delay <= 0:
            return 0.0
        half = delay / 2
        return half + self._rng.uniform(0, delay - half)