"""ADR git-export entry point with a minimal ASGI HTTP layer."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from datetime import date
from typing import Any, Callable

import requests
from pydantic import ValidationError

from adr_export.server.callback import CallbackDeliverer
from adr_export.server.errors import ExportJobValidationError
from adr_export.server.github_auth import github_auth_from_settings
from adr_export.server.github_client import GitHubClient
from adr_export.server.models import ExportFailure, ExportJob, ExportOutcome
from adr_export.server.orchestrator import GitExportOrchestrator, utc_today
from adr_export.server.worker import ExportWorker
from adr_export.shared.logging_config import configure_logging
from adr_export.shared.settings import ExportSettings, load_export_settings

logger = logging.getLogger(__name__)

_FIELD_ALIASES = {"adr_id": "record_id", "markdown": "document_body"}
_MISSING_ERROR_TYPES = {"missing", "string_too_short", "value_error"}


class ExportService:
    """Validate a job, publish it, then report the outcome exactly once."""

    def __init__(
        self,
        settings: ExportSettings | None = None,
        github_session: requests.Session | None = None,
        callback_session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], date] = utc_today,
    ) -> None:
        self.settings = settings or load_export_settings()
        self.client = GitHubClient(
            auth=github_auth_from_settings(self.settings),
            base_url=self.settings.github_api_url,
            session=github_session,
        )
        self.orchestrator = GitExportOrchestrator(
            client=self.client,
            repo_owner=self.settings.repo_owner,
            repo_name=self.settings.repo_name,
            default_branch=self.settings.default_branch,
            clock=clock,
        )
        self.callbacks = CallbackDeliverer(
            settings=self.settings, session=callback_session, sleep=sleep
        )

    def validate(self, payload: dict[str, Any]) -> ExportJob:
        try:
            return ExportJob.model_validate(payload)
        except ValidationError as exc:
            errors = exc.errors()
            fields = sorted(
                {
                    _FIELD_ALIASES.get(str(error["loc"][0]), str(error["loc"][0]))
                    for error in errors
                    if error.get("loc")
                }
            )
            if all(error.get("type") in _MISSING_ERROR_TYPES for error in errors):
                raise ExportJobValidationError("missing_required_fields", fields) from exc
            raise ExportJobValidationError("invalid_job", fields) from exc

    def run(self, job: ExportJob) -> ExportOutcome:
        try:
            result = self.orchestrator.publish(job)
        except Exception as exc:
            detail = f"{type(exc).__name__}: {exc}"
            logger.error(f"Git export for {job.record_id} crashed: {detail}")
            result = ExportFailure(reason=f"Unexpected export error: {detail}")
        delivery = self.callbacks.deliver(job.record_id, result)
        return ExportOutcome(job=job, result=result, delivery=delivery)

    def handle(self, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        """Inline export. Business failures still answer 200; only bad input gets 400."""
        try:
            job = self.validate(payload)
        except ExportJobValidationError as exc:
            return 400, exc.as_dict()
        outcome = self.run(job)
        return 200, outcome.result.response_body()


class ASGIServer:
    """Minimal ASGI adapter for the export dispatcher."""

    def __init__(
        self,
        service: ExportService | None = None,
        worker: ExportWorker | None = None,
    ) -> None:
        self._service = service
        self._worker = worker

    @property
    def service(self) -> ExportService:
        if self._service is None:
            self._service = create_service()
        return self._service

    @property
    def worker(self) -> ExportWorker:
        if self._worker is None:
            self._worker = ExportWorker(run=self.service.run)
        return self._worker

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope.get("type") != "http":
            await self._send_json(send, 500, {"error": "unsupported_scope"})
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        body = await self._read_body(receive)

        try:
            if method == "GET" and path == "/health":
                missing = self.service.settings.missing_required()
                await self._send_json(
                    send, 200, {"status": "ok", "configured": not missing, "missing": missing}
                )
                return

            if method == "POST" and path in {"/", "/exports"}:
                payload = self._parse_json(body)
                if payload is None:
                    await self._send_json(send, 400, {"error": "invalid_json"})
                    return
                status, response = await asyncio.to_thread(self.service.handle, payload)
                await self._send_json(send, status, response)
                return

            if method == "POST" and path == "/exports/dispatch":
                payload = self._parse_json(body)
                if payload is None:
                    await self._send_json(send, 400, {"error": "invalid_json"})
                    return
                job = self.service.validate(payload)
                await self._send_json(
                    send, 200, {"ok": True, "job_id": job.record_id, "queued": True}
                )
                self.worker.submit(job)
                return

            await self._send_json(send, 404, {"error": "not_found"})
        except ExportJobValidationError as exc:
            await self._send_json(send, 400, exc.as_dict())
        except Exception as exc:  # pragma: no cover - defensive response mapping
            logger.error(f"git-export error: {exc!r}")
            await self._send_json(send, 500, {"error": str(exc)})

    async def _read_body(self, receive: Any) -> bytes:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            if message["type"] != "http.request":
                continue
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    def _parse_json(self, body: bytes) -> dict[str, Any] | None:
        try:
            parsed = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed

    async def _send_json(self, send: Any, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})


def create_service(env: dict[str, str] | None = None) -> ExportService:
    return ExportService(settings=load_export_settings(env))


app = ASGIServer()


def main() -> int:
    parser = argparse.ArgumentParser(description="ADR git-export ASGI server entrypoint")
    parser.add_argument(
        "--print-startup",
        action="store_true",
        help="print the supported uvicorn startup command and exit",
    )
    args = parser.parse_args()

    if args.print_startup:
        print("uvicorn adr_export.server.app:app --host 127.0.0.1 --port 8000")
        return 0

    configure_logging(ExportSettings.from_env().log_level)
    load_export_settings()
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
