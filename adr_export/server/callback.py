"""Reports a terminal export status back to the database RPC with bounded retry."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

import requests

from adr_export.server.github_client import GITHUB_TIMEOUT_S
from adr_export.server.models import CallbackAttempt, DeliveryReport, ExportResult
from adr_export.shared.settings import ExportSettings

logger = logging.getLogger(__name__)

MAX_CALLBACK_ATTEMPTS = 3
BACKOFF_UNIT_S = 1.0


class CallbackDeliverer:
    """At-least-once status delivery. `deliver` never raises; the RPC dedupes by job id."""

    def __init__(
        self,
        settings: ExportSettings,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = MAX_CALLBACK_ATTEMPTS,
        backoff_unit_s: float = BACKOFF_UNIT_S,
        timeout_s: float = GITHUB_TIMEOUT_S,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.sleep = sleep
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_unit_s = backoff_unit_s
        self.timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        credential = self.settings.service_credential
        return {
            "Content-Type": "application/json",
            "apikey": credential,
            "Authorization": f"Bearer {credential}",
            "x-export-api-key": credential,
        }

    def deliver(self, job_id: str, result: ExportResult) -> DeliveryReport:
        payload: dict[str, Any] = {"job_id": job_id, "status": result.status}
        payload.update(result.callback_fields())
        body = {"raw_body": json.dumps(payload)}

        attempts: list[CallbackAttempt] = []
        for attempt_number in range(1, self.max_attempts + 1):
            attempt = self._attempt(job_id, result.status, payload, body, attempt_number)
            attempts.append(attempt)
            if attempt.ok:
                return DeliveryReport(
                    job_id=job_id, status=result.status, delivered=True, attempts=attempts
                )
            if attempt_number < self.max_attempts:
                self.sleep(attempt_number * self.backoff_unit_s)

        logger.error(
            f"Callback for {job_id} ({result.status}) failed after {self.max_attempts} attempts"
        )
        return DeliveryReport(
            job_id=job_id,
            status=result.status,
            delivered=False,
            attempts=attempts,
            reason_code="callback_delivery_exhausted",
        )

    def _attempt(
        self,
        job_id: str,
        status: str,
        payload: dict[str, Any],
        body: dict[str, str],
        attempt_number: int,
    ) -> CallbackAttempt:
        try:
            response = self.session.request(
                method="POST",
                url=self.settings.callback_url,
                headers=self._headers(),
                json=body,
                timeout=self.timeout_s,
            )
        except Exception as exc:
            logger.warning(
                f"Callback attempt {attempt_number}/{self.max_attempts} error: "
                f"{type(exc).__name__}: {exc}"
            )
            return CallbackAttempt(
                job_id=job_id,
                status=status,
                payload=payload,
                attempt_number=attempt_number,
                error=str(exc),
            )

        attempt = CallbackAttempt(
            job_id=job_id,
            status=status,
            payload=payload,
            attempt_number=attempt_number,
            http_status=int(response.status_code),
            error="" if 200 <= response.status_code < 300 else (response.text or ""),
        )
        if not attempt.ok:
            logger.warning(
                f"Callback attempt {attempt_number}/{self.max_attempts} failed: "
                f"{response.status_code} {attempt.error}"
            )
        return attempt
