"""Export job contracts and the values passed between orchestrator, callback and entry point."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class ExportJob(BaseModel):
    """One approved record to publish. Accepts the dispatcher's `adr_id`/`markdown` names too."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    record_id: str = Field(min_length=1, validation_alias=AliasChoices("record_id", "adr_id"))
    title: str = ""
    document_body: str = Field(
        min_length=1, validation_alias=AliasChoices("document_body", "markdown")
    )

    @model_validator(mode="before")
    @classmethod
    def _default_title_to_record_id(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        title = data.get("title")
        if title is None or (isinstance(title, str) and not title.strip()):
            data = dict(data)
            data["title"] = data.get("record_id", data.get("adr_id", ""))
        return data

    @field_validator("record_id", "title", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("document_body")
    @classmethod
    def _require_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("document_body must not be blank")
        return value


@dataclass(frozen=True)
class RemoteRef:
    name: str
    commit_sha: str


@dataclass(frozen=True)
class FileWriteIntent:
    path: str
    content_bytes: bytes
    branch: str
    prior_sha: str | None = None

    @property
    def is_update(self) -> bool:
        return bool(self.prior_sha)

    def encoded_content(self) -> str:
        return base64.b64encode(self.content_bytes).decode("ascii")

    def request_body(self, message: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "message": message,
            "content": self.encoded_content(),
            "branch": self.branch,
        }
        if self.prior_sha:
            body["sha"] = self.prior_sha
        return body


@dataclass(frozen=True)
class ExportSuccess:
    status: ClassVar[str] = "complete"

    review_request_url: str
    branch_name: str
    file_path: str = ""
    reused_branch: bool = False
    reused_review_request: bool = False

    def callback_fields(self) -> dict[str, str]:
        return {"pr_url": self.review_request_url, "branch": self.branch_name}

    def response_body(self) -> dict[str, Any]:
        return {"ok": True, "review_request_url": self.review_request_url}


@dataclass(frozen=True)
class ExportFailure:
    status: ClassVar[str] = "failed"

    reason: str

    def callback_fields(self) -> dict[str, str]:
        return {"error": self.reason}

    def response_body(self) -> dict[str, Any]:
        return {"ok": True, "error": self.reason}


ExportResult = Union[ExportSuccess, ExportFailure]


@dataclass(frozen=True)
class CallbackAttempt:
    job_id: str
    status: str
    payload: dict[str, Any]
    attempt_number: int
    http_status: int | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.http_status is not None and 200 <= self.http_status < 300


@dataclass(frozen=True)
class DeliveryReport:
    job_id: str
    status: str
    delivered: bool
    attempts: list[CallbackAttempt] = field(default_factory=list)
    reason_code: str = ""


@dataclass(frozen=True)
class ExportOutcome:
    job: ExportJob
    result: ExportResult
    delivery: DeliveryReport
