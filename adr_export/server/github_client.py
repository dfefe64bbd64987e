"""Bounded GitHub REST client: fixed auth/version headers and a hard per-call timeout."""

from __future__ import annotations

import json as jsonlib
import time
from dataclasses import dataclass
from typing import Any

import requests

from adr_export.server.errors import UpstreamError, UpstreamTimeout
from adr_export.server.github_auth import GitHubAuth

GITHUB_TIMEOUT_S = 30.0
_BODY_READ_CHUNK_BYTES = 1


@dataclass(frozen=True)
class GitHubResponse:
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if not self.text:
            return {}
        try:
            return jsonlib.loads(self.text)
        except ValueError:
            return None


class GitHubClient:
    def __init__(
        self,
        auth: GitHubAuth,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout_s: float = GITHUB_TIMEOUT_S,
    ) -> None:
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def call(
        self,
        path: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> GitHubResponse:
        """Issue one request. Non-2xx is returned as-is; timeouts and transport errors raise.

        The whole call, body included, is bounded by `timeout_s` from the moment
        it starts; a body still arriving at the deadline is abandoned.
        """
        merged_headers = dict(headers or {})
        merged_headers.update(self.auth.headers())
        if json is not None:
            merged_headers.setdefault("Content-Type", "application/json")

        deadline = time.monotonic() + self.timeout_s
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=merged_headers,
                json=json,
                params=params,
                timeout=self.timeout_s,
                stream=True,
            )
            try:
                body = self._read_body(response, deadline, method, path)
            finally:
                response.close()
        except UpstreamError:
            raise
        except requests.Timeout as exc:
            raise self._timeout(method, path) from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"GitHub {method} {path} failed: {exc}") from exc
        except Exception as exc:
            raise UpstreamError(
                f"GitHub {method} {path} failed: {type(exc).__name__}: {exc}",
                reason_code="github_transport_error",
            ) from exc

        return GitHubResponse(status_code=int(response.status_code), text=body)

    def _read_body(
        self, response: requests.Response, deadline: float, method: str, path: str
    ) -> str:
        chunks: list[bytes] = []
        if time.monotonic() >= deadline:
            raise self._timeout(method, path)
        # Small reads return as bytes arrive, so a trickling body cannot outlive the deadline.
        for chunk in response.iter_content(chunk_size=_BODY_READ_CHUNK_BYTES):
            chunks.append(chunk)
            if time.monotonic() >= deadline:
                raise self._timeout(method, path)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    def _timeout(self, method: str, path: str) -> UpstreamTimeout:
        return UpstreamTimeout(
            f"GitHub {method} {path} timed out after {self.timeout_s:g}s",
            timeout_s=self.timeout_s,
        )
