from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable

from django.conf import settings
from django.db import connection

from workshop.fiscal.models import InvoiceRecord

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
UNKNOWN_ERROR_MESSAGE = "Erro desconhecido ao emitir a nota"


@dataclass(frozen=True, slots=True)
class TrackedInvoice:
    reference: str
    number: str
    verification_code: str
    url: str
    pdf_url: str
    xml_url: str

    @classmethod
    def from_record(cls, record: InvoiceRecord) -> "TrackedInvoice":
        return cls(
            reference=record.reference or "",
            number=record.number,
            verification_code=record.verification_code,
            url=record.url,
            pdf_url=record.pdf_url,
            xml_url=record.xml_url,
        )


def _load_record(service_order_id: int) -> InvoiceRecord | None:
    return InvoiceRecord.objects.filter(service_order_id=service_order_id).first()


class StatusTracker:
    """Follows one emission until the persisted invoice reaches a terminal state.

    States: sending -> processing -> completed | error. Each poll reads the
    invoice record (written by the webhook or a status refresh); once completed
    or error, polls change nothing and the success callback has fired at most once.
    The poll timer is owned by the tracker and stops on every exit path.
    """

    SENDING = "sending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    TERMINAL_STATES = frozenset({COMPLETED, ERROR})

    _ERROR_STATUSES = frozenset(
        {
            InvoiceRecord.Status.AUTHORIZATION_ERROR,
            InvoiceRecord.Status.REJECTED,
            InvoiceRecord.Status.CANCELLED,
        }
    )

    def __init__(
        self,
        service_order_id: int,
        *,
        on_success: Callable[[TrackedInvoice], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        interval: float | None = None,
        load_record: Callable[[int], InvoiceRecord | None] = _load_record,
    ) -> None:
        if interval is None:
            interval = getattr(settings, "FISCAL_STATUS_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS)
        self.service_order_id = service_order_id
        self.interval = float(interval)
        self.state = self.SENDING
        self.invoice: TrackedInvoice | None = None
        self.error = ""
        self.polls = 0
        self._on_success = on_success
        self._on_error = on_error
        self._load_record = load_record
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in self.TERMINAL_STATES

    @property
    def is_polling(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def mark_processing(self) -> None:
        with self._lock:
            if self.state == self.SENDING:
                self.state = self.PROCESSING

    def observe(self, record: InvoiceRecord | None) -> str:
        """Apply one observation of the persisted record and return the new state."""

        callback: Callable[[], None] | None = None
        with self._lock:
            if self.is_terminal or record is None:
                return self.state

            status = record.status
            error_message = (record.error_message or "").strip()

            if status == InvoiceRecord.Status.AUTHORIZED:
                self.state = self.COMPLETED
                self.invoice = TrackedInvoice.from_record(record)
                invoice = self.invoice
                if self._on_success is not None:
                    callback = partial(self._on_success, invoice)
            elif status in self._ERROR_STATUSES or error_message:
                self.state = self.ERROR
                self.error = error_message or UNKNOWN_ERROR_MESSAGE
                message = self.error
                if self._on_error is not None:
                    callback = partial(self._on_error, message)
            elif status == InvoiceRecord.Status.PROCESSING_AUTHORIZATION:
                self.state = self.PROCESSING

            state = self.state

        if state in self.TERMINAL_STATES:
            self._stop.set()
            logger.info(
                "fiscal.tracker.finished service_order_id=%s state=%s polls=%s",
                self.service_order_id,
                state,
                self.polls,
            )
        if callback is not None:
            callback()
        return state

    def poll_once(self) -> str:
        """One complete poll tick. Only a tracker in `processing` reads the record."""

        if self.state != self.PROCESSING:
            return self.state
        self.polls += 1
        return self.observe(self._load_record(self.service_order_id))

    def _tick(self) -> str:
        """`poll_once` that survives a failed read; the next interval retries."""

        try:
            return self.poll_once()
        except Exception:
            logger.exception(
                "fiscal.tracker.poll_failed service_order_id=%s polls=%s",
                self.service_order_id,
                self.polls,
            )
            # A broken connection is reopened on the next query.
            connection.close()
            return self.state

    def run(self, *, max_wait: float | None = None) -> str:
        """Poll every `interval` seconds until terminal, cancelled, or `max_wait` elapses.

        A tick that raises is logged and retried on the next interval, so the
        tracker keeps following the invoice while its owner is open.
        """

        deadline = None if max_wait is None else time.monotonic() + max_wait
        try:
            while not self._stop.is_set():
                if self._tick() in self.TERMINAL_STATES:
                    break
                wait = self.interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    wait = min(wait, remaining)
                if self._stop.wait(wait):
                    break
        finally:
            if self.is_terminal:
                self._stop.set()
        return self.state

    def _run_in_background(self) -> None:
        try:
            self.run()
        finally:
            connection.close()

    def start(self) -> None:
        """Poll on a background timer thread until terminal or cancelled."""

        if self.is_polling or self.is_terminal:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_in_background,
            name=f"fiscal-tracker-{self.service_order_id}",
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1.0)
        self._thread = None

    def __enter__(self) -> "StatusTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
