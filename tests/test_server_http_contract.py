import asyncio
import json
import subprocess
import sys

import pytest

from adr_export.server.app import ASGIServer, ExportService
from adr_export.server.worker import ExportWorker
from fakes import TODAY, FakeResponse, FakeSession, happy_path_responses, make_settings

PR_URL = "https://github.com/acme/architecture/pull/42"
JOB = {
    "record_id": "ADR-042",
    "title": "Use Event Sourcing",
    "document_body": "# ADR-042\n...",
}


def _asgi_request(
    app: ASGIServer,
    method: str,
    path: str,
    body: bytes = b"",
) -> tuple[int, dict]:
    scope = {"type": "http", "method": method, "path": path, "query_string": b""}
    sent: list[dict] = []
    received = False

    async def receive() -> dict:
        nonlocal received
        if received:
            return {"type": "http.request", "body": b"", "more_body": False}
        received = True
        return {"type": "http.request", "body": body, "more_body": False}

    async def send(message: dict) -> None:
        sent.append(message)

    asyncio.run(app(scope, receive, send))

    status = next(msg["status"] for msg in sent if msg["type"] == "http.response.start")
    payload = b"".join(msg.get("body", b"") for msg in sent if msg["type"] == "http.response.body")
    return status, json.loads(payload.decode("utf-8"))


def _service(
    github: FakeSession, callbacks: FakeSession, delays: list[float] | None = None
) -> ExportService:
    return ExportService(
        settings=make_settings(),
        github_session=github,
        callback_session=callbacks,
        sleep=(delays if delays is not None else []).append,
        clock=lambda: TODAY,
    )


def _callback_payloads(callbacks: FakeSession) -> list[dict]:
    return [json.loads(call["json"]["raw_body"]) for call in callbacks.calls]


def test_documented_server_startup_command_is_available():
    result = subprocess.run(
        [sys.executable, "-m", "adr_export.server.app", "--print-startup"],
        check=False,
        capture_output=True,
        text=True,
    )

    assert result.returncode == 0
    assert "uvicorn adr_export.server.app:app --host 127.0.0.1 --port 8000" in result.stdout


def test_health_reports_configuration():
    app = ASGIServer(service=_service(FakeSession(), FakeSession()))
    status, payload = _asgi_request(app, "GET", "/health")
    assert status == 200
    assert payload == {"status": "ok", "configured": True, "missing": []}


@pytest.mark.parametrize(
    "job",
    [
        {"record_id": "", "document_body": "# body"},
        {"record_id": "ADR-1", "document_body": ""},
        {"record_id": "   ", "document_body": "# body"},
        {"title": "No id", "document_body": "# body"},
        {"record_id": "ADR-1"},
    ],
)
def test_invalid_job_returns_400_without_network_calls(job):
    github, callbacks = FakeSession(), FakeSession()
    app = ASGIServer(service=_service(github, callbacks))

    status, payload = _asgi_request(app, "POST", "/exports", body=json.dumps(job).encode("utf-8"))

    assert status == 400
    assert payload["error"] == "missing_required_fields"
    assert github.calls == []
    assert callbacks.calls == []


def test_malformed_json_returns_400():
    github = FakeSession()
    app = ASGIServer(service=_service(github, FakeSession()))
    status, payload = _asgi_request(app, "POST", "/exports", body=b"{not json")
    assert status == 400
    assert payload == {"error": "invalid_json"}
    assert github.calls == []


def test_export_success_end_to_end():
    github = FakeSession(happy_path_responses(PR_URL))
    callbacks = FakeSession([FakeResponse(200, None)])
    app = ASGIServer(service=_service(github, callbacks))

    status, payload = _asgi_request(app, "POST", "/exports", body=json.dumps(JOB).encode("utf-8"))

    assert status == 200
    assert payload == {"ok": True, "review_request_url": PR_URL}
    assert _callback_payloads(callbacks) == [
        {
            "job_id": "ADR-042",
            "status": "complete",
            "pr_url": PR_URL,
            "branch": "adr/2026-10-18-use-event-sourcing",
        }
    ]


def test_export_file_write_422_reports_failure_with_200():
    responses = happy_path_responses(PR_URL)
    responses[3] = FakeResponse(422, {"message": "Invalid request"})
    github = FakeSession(responses)
    callbacks = FakeSession([FakeResponse(200, None)])
    app = ASGIServer(service=_service(github, callbacks))

    status, payload = _asgi_request(app, "POST", "/exports", body=json.dumps(JOB).encode("utf-8"))

    assert status == 200
    assert payload["ok"] is True
    assert "422" in payload["error"]
    [callback] = _callback_payloads(callbacks)
    assert callback["status"] == "failed"
    assert "422" in callback["error"]


def test_callback_exhaustion_does_not_fail_the_response():
    github = FakeSession(happy_path_responses(PR_URL))
    callbacks = FakeSession([FakeResponse(500, None) for _ in range(3)])
    delays: list[float] = []
    app = ASGIServer(service=_service(github, callbacks, delays))

    status, payload = _asgi_request(app, "POST", "/exports", body=json.dumps(JOB).encode("utf-8"))

    assert status == 200
    assert payload == {"ok": True, "review_request_url": PR_URL}
    assert len(callbacks.calls) == 3
    assert delays == [1.0, 2.0]


def test_root_path_accepts_dispatcher_field_names():
    github = FakeSession(happy_path_responses(PR_URL))
    callbacks = FakeSession([FakeResponse(200, None)])
    app = ASGIServer(service=_service(github, callbacks))
    body = {"adr_id": "ADR-042", "title": "Use Event Sourcing", "markdown": "# ADR-042"}

    status, payload = _asgi_request(app, "POST", "/", body=json.dumps(body).encode("utf-8"))

    assert status == 200
    assert payload["review_request_url"] == PR_URL
    assert _callback_payloads(callbacks)[0]["job_id"] == "ADR-042"


def test_dispatch_acknowledges_then_runs_in_worker():
    github = FakeSession(happy_path_responses(PR_URL))
    callbacks = FakeSession([FakeResponse(200, None)])
    service = _service(github, callbacks)
    worker = ExportWorker(run=service.run)
    app = ASGIServer(service=service, worker=worker)

    status, payload = _asgi_request(
        app, "POST", "/exports/dispatch", body=json.dumps(JOB).encode("utf-8")
    )

    assert status == 200
    assert payload == {"ok": True, "job_id": "ADR-042", "queued": True}
    assert worker.join(timeout=5)
    [outcome] = worker.completed
    assert outcome.result.status == "complete"
    assert outcome.delivery.delivered is True
    assert len(callbacks.calls) == 1
    worker.shutdown()


def test_dispatch_rejects_invalid_job_before_queueing():
    github = FakeSession()
    service = _service(github, FakeSession())
    worker = ExportWorker(run=service.run)
    app = ASGIServer(service=service, worker=worker)

    status, payload = _asgi_request(
        app, "POST", "/exports/dispatch", body=json.dumps({"record_id": "ADR-1"}).encode("utf-8")
    )

    assert status == 400
    assert payload["fields"] == ["document_body"]
    assert worker.completed == [] and worker.failed == []
    assert github.calls == []
    worker.shutdown()


def test_unknown_route_is_404():
    app = ASGIServer(service=_service(FakeSession(), FakeSession()))
    status, payload = _asgi_request(app, "GET", "/nope")
    assert status == 404
    assert payload == {"error": "not_found"}


def test_unexpected_transport_error_still_reports_failure_once():
    encode_error = UnicodeEncodeError("latin-1", "tok€n", 3, 4, "ordinal not in range(256)")
    github = FakeSession([encode_error])
    callbacks = FakeSession([FakeResponse(200, None)])
    app = ASGIServer(service=_service(github, callbacks))

    status, payload = _asgi_request(app, "POST", "/exports", body=json.dumps(JOB).encode("utf-8"))

    assert status == 200
    assert payload["ok"] is True
    assert "UnicodeEncodeError" in payload["error"]
    [callback] = _callback_payloads(callbacks)
    assert callback["status"] == "failed"


def test_orchestrator_crash_becomes_failure_with_one_callback(monkeypatch: pytest.MonkeyPatch):
    callbacks = FakeSession([FakeResponse(200, None)])
    service = _service(FakeSession(), callbacks)

    def crash(job):
        raise KeyError("object")

    monkeypatch.setattr(service.orchestrator, "publish", crash)

    status, payload = service.handle(JOB)

    assert status == 200
    assert payload["error"].startswith("Unexpected export error: KeyError")
    [callback] = _callback_payloads(callbacks)
    assert callback == {"job_id": "ADR-042", "status": "failed", "error": payload["error"]}


def test_client_disconnect_ends_body_read():
    app = ASGIServer(service=_service(FakeSession(), FakeSession()))
    messages = [
        {"type": "http.request", "body": b'{"record', "more_body": True},
        {"type": "http.disconnect"},
    ]

    async def receive() -> dict:
        return messages.pop(0)

    body = asyncio.run(asyncio.wait_for(app._read_body(receive), timeout=2))

    assert body == b'{"record'
