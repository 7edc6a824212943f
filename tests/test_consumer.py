import random
import threading
import time

from orderhub.consumer import Consumer, Message
from orderhub.consumer_config import ConsumerConfig, ReaderConfig
from orderhub.domain import InvalidOrderError


class RecordingLogger:
    def __init__(self):
        self.records = []
        self._lock = threading.Lock()

    def _add(self, level, message, args):
        with self._lock:
            self.records.append((level, message % args if args else message, args))

    def info(self, message, *args):
        self._add("info", message, args)

    def warning(self, message, *args):
        self._add("warning", message, args)

    def error(self, message, *args):
        self._add("error", message, args)

    def texts(self, level):
        with self._lock:
            return [text for lvl, text, _ in self.records if lvl == level]


class FakeReader:
    def __init__(self, messages=(), fetch_error=None, commit_error=None):
        self._pending = list(messages)
        self._fetch_error = fetch_error
        self._commit_error = commit_error
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self.fetch_calls = 0
        self.commits = []
        self.close_calls = 0

    def config(self):
        return ReaderConfig(brokers=["b:9092"], group_id="g1", topic="orders")

    def fetch_message(self):
        with self._lock:
            self.fetch_calls += 1
            message = self._pending.pop(0) if self._pending else None
        if self._fetch_error is not None:
            raise self._fetch_error
        if message is not None:
            return message
        self._closed.wait()
        raise ConnectionError("reader closed")

    def commit_messages(self, *messages):
        with self._lock:
            self.commits.extend(messages)
        if self._commit_error is not None:
            raise self._commit_error

    def close(self):
        self.close_calls += 1
        self._closed.set()


class FakeSaver:
    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.received = []

    def save_from_message(self, raw):
        self.received.append(raw)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error


def make_consumer(reader, saver, log=None):
    return Consumer(
        reader,
        saver,
        log if log is not None else RecordingLogger(),
        process_timeout=0.03,
        retry_initial=0.005,
        retry_max=0.01,
        rng=random.Random(1),
    )


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.002)
    return False


def start(consumer):
    thread = threading.Thread(target=consumer.run, daemon=True)
    thread.start()
    return thread


def stop(consumer, thread):
    consumer.close()
    thread.join(1.0)
    return not thread.is_alive()


def test_run_ok_commits():
    reader = FakeReader([Message(offset=1, value=b"ok")])
    saver = FakeSaver()
    consumer = make_consumer(reader, saver)
    thread = start(consumer)

    assert wait_for(lambda: reader.commits)
    assert stop(consumer, thread)
    assert [m.offset for m in reader.commits] == [1]
    assert saver.received == [b"ok"]


def test_run_invalid_order_commits():
    log = RecordingLogger()
    reader = FakeReader([Message(offset=7, value=b"bad")])
    saver = FakeSaver(error=InvalidOrderError("entry is required"))
    consumer = make_consumer(reader, saver, log)
    thread = start(consumer)

    assert wait_for(lambda: reader.commits)
    assert stop(consumer, thread)
    assert [m.offset for m in reader.commits] == [7]
    assert any("invalid message offset=7" in text for text in log.texts("warning"))


def test_run_temporary_failure_no_commit():
    log = RecordingLogger()
    reader = FakeReader([Message(offset=2, value=b"x")])
    saver = FakeSaver(error=RuntimeError("db down"))
    consumer = make_consumer(reader, saver, log)
    thread = start(consumer)

    assert wait_for(lambda: reader.fetch_calls >= 2)
    assert stop(consumer, thread)
    assert reader.commits == []
    assert saver.received == [b"x"]
    assert any(
        "process failed offset=2: db down (will retry without commit)" in text
        for text in log.texts("warning")
    )


def test_run_fetch_error_retries_then_stops_on_close():
    log = RecordingLogger()
    reader = FakeReader(fetch_error=RuntimeError("broker error"))
    consumer = make_consumer(reader, FakeSaver(), log)
    timer = threading.Timer(0.04, consumer.close)
    timer.start()
    started = time.monotonic()

    consumer.run()

    assert time.monotonic() - started < 1.0
    assert reader.fetch_calls >= 2
    pauses = [args[1] for level, text, args in log.records if text.startswith("fetch failed")]
    assert pauses
    assert 0.0025 <= pauses[0] <= 0.005
    assert all(0.0025 <= pause <= 0.01 for pause in pauses)


def test_run_commit_error_only_warns():
    log = RecordingLogger()
    reader = FakeReader([Message(offset=3, value=b"ok")], commit_error=RuntimeError("temporary"))
    saver = FakeSaver()
    consumer = make_consumer(reader, saver, log)
    thread = start(consumer)

    assert wait_for(lambda: reader.fetch_calls >= 2)
    assert stop(consumer, thread)
    assert [m.offset for m in reader.commits] == [3]
    assert "commit failed offset=3: temporary" in log.texts("warning")


def test_processing_timeout_is_a_temporary_failure():
    log = RecordingLogger()
    reader = FakeReader([Message(offset=5, value=b"slow")])
    saver = FakeSaver(delay=0.5)
    config = ConsumerConfig(
        brokers=["k1:9092"],
        topic="orders",
        group_id="g",
        process_timeout=0.02,
        retry_initial=0.005,
        retry_max=0.01,
    )
    consumer = Consumer.from_config(config, reader, saver, log)
    thread = start(consumer)

    assert wait_for(lambda: reader.fetch_calls >= 2)
    assert stop(consumer, thread)
    assert reader.commits == []
    assert any("process failed offset=5" in text for text in log.texts("warning"))


def test_close_delegates_to_reader_once():
    reader = FakeReader()
    consumer = make_consumer(reader, FakeSaver())

    consumer.close()
    consumer.close()

    assert reader.close_calls == 1


def test_run_after_close_returns_without_fetching():
    reader = FakeReader([Message(offset=1, value=b"ok")])
    consumer = make_consumer(reader, FakeSaver())
    consumer.close()

    consumer.run()

    assert reader.fetch_calls == 0
    assert reader.commits == []