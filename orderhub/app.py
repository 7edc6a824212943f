"""Running the HTTP server and the message consumer together."""

import queue
import threading
from datetime import timedelta
from typing import Any, Optional, Protocol, Union, runtime_checkable

from orderhub.ports import Logger, MessageConsumer

_DEFAULT_GRACEFUL_TIMEOUT = 5.0
_POLL_INTERVAL = 0.05


@runtime_checkable
class HTTPServer(Protocol):
    """A server in the shape of ``socketserver.BaseServer``."""

    server_address: Any

    def serve_forever(self) -> None: ...

    def shutdown(self) -> None: ...

    def server_close(self) -> None: ...


def _format_address(address: Any) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


class App:
    """The assembled service: logger, HTTP server and message consumer."""

    def __init__(
        self,
        logger: Logger,
        http_server: HTTPServer,
        consumer: MessageConsumer,
        graceful_timeout: Union[float, timedelta] = 0.0,
    ) -> None:
        self.logger = logger
        self.http_server = http_server
        self.consumer = consumer
        if isinstance(graceful_timeout, timedelta):
            graceful_timeout = graceful_timeout.total_seconds()
        self.graceful_timeout = float(graceful_timeout)

    def run(self, stop: threading.Event) -> None:
        """Serve until ``stop`` is set or a component fails, then shut down."""
        failures: "queue.Queue[BaseException]" = queue.Queue()

        def consume() -> None:
            self.logger.info("kafka consumer starting")
            try:
                self.consumer.run()
            except Exception as exc:
                failures.put(exc)

        def serve() -> None:
            self.logger.info(
                "http server starting (addr=%s)",
                _format_address(self.http_server.server_address),
            )
            try:
                self.http_server.serve_forever()
            except Exception as exc:
                failures.put(exc)

        consumer_thread = threading.Thread(target=consume, name="consumer", daemon=True)
        server_thread = threading.Thread(target=serve, name="http-server", daemon=True)
        consumer_thread.start()
        server_thread.start()

        self._wait(stop, failures)

        timeout = self.graceful_timeout if self.graceful_timeout > 0 else _DEFAULT_GRACEFUL_TIMEOUT
        self._shutdown_http(timeout)

        try:
            self.consumer.close()
        except Exception as exc:
            self.logger.warning("kafka consumer close error: %s", exc)

        consumer_thread.join(timeout)
        self.logger.info("service stopped")

    def _wait(self, stop: threading.Event, failures: "queue.Queue[BaseException]") -> None:
        while True:
            if stop.wait(_POLL_INTERVAL):
                self.logger.info("shutdown requested, starting graceful shutdown")
                return
            try:
                exc = failures.get_nowait()
            except queue.Empty:
                continue
            if isinstance(exc, TimeoutError):
                self.logger.info("background component stopped: %s", exc)
            else:
                self.logger.warning("background error: %s", exc)
            return

    def _shutdown_http(self, timeout: float) -> None:
        outcome: "queue.Queue[Optional[BaseException]]" = queue.Queue()

        def shutdown() -> None:
            try:
                self.http_server.shutdown()
            except Exception as exc:
                outcome.put(exc)
            else:
                outcome.put(None)

        threading.Thread(target=shutdown, name="http-shutdown", daemon=True).start()
        try:
            error = outcome.get(timeout=timeout)
        except queue.Empty:
            self.logger.warning("http server shutdown failed: timed out after %.1fs", timeout)
        else:
            if error is not None:
                self.logger.warning("http server shutdown failed: %s", error)
            else:
                self.logger.info("http server stopped gracefully")
        try:
            self.http_server.server_close()
        except Exception as exc:
            self.logger.warning("http server close error: %s", exc)