from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from django.conf import settings

from workshop.fiscal.adapters.base import is_timeout
from workshop.fiscal.errors import RAW_TEXT_LIMIT, normalize_error, parse_json_body
from workshop.fiscal.tracker import StatusTracker, TrackedInvoice
from workshop.fiscal.validation import ValidationIssue, can_emit, partition_issues, validate_service_order
from workshop.logging import mask_cpf_cnpj

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
READ_CHUNK_SIZE = 8192

TIMEOUT_MESSAGE = (
    "A emissão está demorando mais que o esperado. A nota pode estar sendo processada. "
    "Aguarde alguns minutos e verifique se a nota foi emitida antes de tentar novamente."
)
REFUSED_MESSAGE = "Corrija os erros antes de emitir a NF-e"
DEFAULT_ERROR_MESSAGE = "Erro ao emitir NF-e"


class EmissionTransportError(RuntimeError):
    """The emission request never reached the server (DNS, refused connection, TLS)."""


@dataclass
class EmissionAttempt:
    """In-memory view of one submit/poll cycle. Never persisted."""

    VALIDATING = "validating"
    SENDING = "sending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    service_order_id: int
    phase: str = VALIDATING
    error: str = ""
    error_code: str = ""
    reference: str = ""
    timed_out: bool = False
    issues: list[ValidationIssue] = field(default_factory=list)
    tracker: StatusTracker | None = None

    @property
    def invoice(self) -> TrackedInvoice | None:
        return self.tracker.invoice if self.tracker is not None else None

    def sync(self) -> str:
        """Mirror the tracker's state into `phase` once processing has started."""

        if self.tracker is None or self.phase not in {self.PROCESSING, self.COMPLETED, self.ERROR}:
            return self.phase
        state = self.tracker.state
        if state == StatusTracker.COMPLETED:
            self.phase = self.COMPLETED
        elif state == StatusTracker.ERROR:
            self.phase = self.ERROR
            self.error = self.tracker.error
        return self.phase

    def fail(self, message: str, code: str = "") -> "EmissionAttempt":
        self.phase = self.ERROR
        self.error = message
        self.error_code = code
        return self


class EmissionClient:
    """Submits service orders to the emission endpoint and follows them to the end.

    The client owns the trackers it starts; `close()` (or leaving the `with`
    block) stops every poll timer.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        auth_token: str = "",
        timeout_seconds: float | None = None,
        poll_interval: float | None = None,
        on_success: Callable[[TrackedInvoice], None] | None = None,
        start_polling: bool = True,
    ) -> None:
        self.url = url or settings.FISCAL_EMISSION_URL
        self.auth_token = auth_token
        self.timeout_seconds = timeout_seconds or getattr(
            settings, "FISCAL_EMISSION_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
        )
        self.poll_interval = poll_interval
        self.on_success = on_success
        self.start_polling = start_polling
        self.trackers: list[StatusTracker] = []

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Token {self.auth_token}"
        return headers

    def _read_until(self, stream, deadline: float) -> bytes:
        """Read the whole body, failing once the request's total time is spent.

        The socket timeout only bounds each read; a body trickled in small
        chunks would otherwise keep the request open indefinitely.
        """

        chunks: list[bytes] = []
        while True:
            if time.monotonic() >= deadline:
                raise TimeoutError(f"emission response not complete after {self.timeout_seconds}s")
            chunk = stream.read1(READ_CHUNK_SIZE)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)

    def _post(self, service_order_id: int) -> tuple[int, str]:
        request = Request(
            self.url,
            data=json.dumps({"serviceOrderId": service_order_id}).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )
        deadline = time.monotonic() + self.timeout_seconds
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:  # nosec B310
                status = int(getattr(response, "status", 200) or 200)
                body = self._read_until(response, deadline)
                return status, body.decode("utf-8", errors="replace")
        except HTTPError as exc:
            try:
                body = self._read_until(exc, deadline)
            except OSError:
                body = b""
            return int(exc.code), body.decode("utf-8", errors="replace")

    def _hand_off(self, attempt: EmissionAttempt) -> None:
        tracker = StatusTracker(
            attempt.service_order_id,
            on_success=self.on_success,
            interval=self.poll_interval,
        )
        tracker.mark_processing()
        attempt.tracker = tracker
        self.trackers.append(tracker)
        if self.start_polling:
            tracker.start()

    @staticmethod
    def interpret(status_code: int, text: str) -> tuple[bool, Mapping[str, Any] | None, str, str]:
        """Read the emission response: text first, structured parse second.

        Returns (accepted, parsed body, error message, error code).
        """

        payload = parse_json_body(text)
        if payload is None:
            if 200 <= status_code < 300 and not text.strip():
                return False, None, DEFAULT_ERROR_MESSAGE, f"HTTP_{status_code}"
            return False, None, f"Erro no servidor:\n\n{text.strip()[:RAW_TEXT_LIMIT]}", f"HTTP_{status_code}"

        body = payload if isinstance(payload, Mapping) else None
        accepted = 200 <= status_code < 300 and body is not None and body.get("success") is not False
        if accepted:
            return True, body, "", ""

        found = normalize_error(payload, raw_text=text)
        message = found.message if found is not None else DEFAULT_ERROR_MESSAGE
        code = (found.code if found is not None else "") or str((body or {}).get("errorCode") or "")
        return False, body, message, code

    def emit(self, service_order_id: int) -> EmissionAttempt:
        """Validate, submit and hand the accepted emission to a status tracker.

        Validation failures, gateway refusals and the client-side timeout are
        reported on the returned attempt.

        Raises:
            EmissionTransportError: the request could not be delivered at all.
        """

        attempt = EmissionAttempt(service_order_id=service_order_id)

        attempt.issues = validate_service_order(service_order_id)
        if not can_emit(attempt.issues):
            errors, _warnings = partition_issues(attempt.issues)
            logger.info(
                "fiscal.emission_client.refused service_order_id=%s errors=%s",
                service_order_id,
                len(errors),
            )
            return attempt.fail(REFUSED_MESSAGE)

        attempt.phase = EmissionAttempt.SENDING
        try:
            status_code, text = self._post(service_order_id)
        except (URLError, OSError) as exc:
            if not is_timeout(exc):
                attempt.fail(str(exc))
                logger.warning(
                    "fiscal.emission_client.transport_failed service_order_id=%s error=%s",
                    service_order_id,
                    exc,
                )
                raise EmissionTransportError(f"Falha ao enviar a emissão: {exc}") from exc

            # The server may still be working on it: not a failure, keep following the record.
            attempt.phase = EmissionAttempt.PROCESSING
            attempt.timed_out = True
            attempt.error = TIMEOUT_MESSAGE
            logger.warning(
                "fiscal.emission_client.timeout service_order_id=%s timeout=%s",
                service_order_id,
                self.timeout_seconds,
            )
            self._hand_off(attempt)
            return attempt

        accepted, body, message, code = self.interpret(status_code, text)
        if not accepted:
            logger.warning(
                "fiscal.emission_client.failed service_order_id=%s status=%s code=%s error=%s",
                service_order_id,
                status_code,
                code,
                mask_cpf_cnpj(message),
            )
            return attempt.fail(message, code)

        invoice = body.get("invoice") if body else None
        if isinstance(invoice, Mapping):
            attempt.reference = str(invoice.get("ref") or "")
        attempt.phase = EmissionAttempt.PROCESSING
        logger.info(
            "fiscal.emission_client.accepted service_order_id=%s reference=%s",
            service_order_id,
            attempt.reference,
        )
        self._hand_off(attempt)
        return attempt

    def close(self) -> None:
        for tracker in self.trackers:
            tracker.cancel()
        self.trackers.clear()

    def __enter__(self) -> "EmissionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
