"""Notification sinks and the bounded delivery wrapper the engine calls."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import UTC, datetime
from typing import Protocol

import structlog
from rich.console import Console
from rich.text import Text

from oncall.models import DeliveryReceipt, Responder

logger = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    """Delivers a message to a responder and reports how it went."""

    def notify(
        self, responder: Responder, message: str, incident_id: str
    ) -> DeliveryReceipt: ...


class ConsoleSink:
    """Print notifications to the terminal instead of sending them."""

    method = "console"

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def notify(
        self, responder: Responder, message: str, incident_id: str
    ) -> DeliveryReceipt:
        prefix = Text("[NOTIFICATION] ", style="bold magenta")
        self.console.print(prefix + Text(f"To: {responder.name} ({responder.email})"))
        self.console.print(prefix + Text(message))
        self.console.print(prefix + Text(f"Incident: {incident_id}", style="dim"))
        return DeliveryReceipt(
            success=True,
            method=self.method,
            timestamp=datetime.now(UTC),
            responder_id=responder.id,
        )


class LogSink:
    """Emit notifications as structured log events."""

    method = "log"

    def notify(
        self, responder: Responder, message: str, incident_id: str
    ) -> DeliveryReceipt:
        logger.info(
            "notification_sent",
            responder_id=responder.id,
            email=responder.email,
            incident_id=incident_id,
            message=message,
        )
        return DeliveryReceipt(
            success=True,
            method=self.method,
            timestamp=datetime.now(UTC),
            responder_id=responder.id,
        )


class Notifier:
    """Call a sink with a deadline and turn every failure into a receipt.

    The engine holds an incident lock while notifying, so a hung or raising
    sink must neither block the caller past ``timeout`` nor propagate. Each
    delivery runs on its own daemon thread, so a sink that hangs for one
    responder cannot delay deliveries to anyone else.
    """

    def __init__(self, sink: NotificationSink, timeout: float = 10.0) -> None:
        self.sink = sink
        self.timeout = timeout
        self._closed = threading.Event()

    @property
    def method(self) -> str:
        return getattr(self.sink, "method", type(self.sink).__name__)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _failed(self, responder: Responder, error: str) -> DeliveryReceipt:
        return DeliveryReceipt(
            success=False,
            method=self.method,
            timestamp=datetime.now(UTC),
            responder_id=responder.id,
            error=error,
        )

    def _deliver(
        self,
        future: Future[DeliveryReceipt],
        responder: Responder,
        message: str,
        incident_id: str,
    ) -> None:
        # a delivery whose caller already gave up is dropped, not sent late
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(self.sink.notify(responder, message, incident_id))
        except Exception as e:
            future.set_exception(e)

    def send(
        self, responder: Responder, message: str, incident_id: str
    ) -> DeliveryReceipt:
        if self.closed:
            logger.warning(
                "notification_dropped", responder_id=responder.id, incident_id=incident_id
            )
            return self._failed(responder, "notifier is closed")

        future: Future[DeliveryReceipt] = Future()
        threading.Thread(
            target=self._deliver,
            args=(future, responder, message, incident_id),
            name=f"oncall-notify-{responder.id}",
            daemon=True,
        ).start()
        try:
            receipt = future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning(
                "notification_timed_out",
                responder_id=responder.id,
                incident_id=incident_id,
                timeout=self.timeout,
            )
            return self._failed(responder, f"timed out after {self.timeout}s")
        except Exception as e:
            logger.warning(
                "notification_failed",
                responder_id=responder.id,
                incident_id=incident_id,
                error=str(e),
            )
            return self._failed(responder, str(e))

        if not receipt.success:
            logger.warning(
                "notification_not_delivered",
                responder_id=responder.id,
                incident_id=incident_id,
                method=receipt.method,
            )
        return receipt

    def close(self) -> None:
        """Refuse further deliveries; any in flight finish on their own threads."""
        self._closed.set()
