"""Publishes one ADR to GitHub: branch, file commit and pull request.

Each step depends on the previous one, so calls are strictly sequential. A
rerun of the same job on the same day resumes from whatever a previous attempt
left behind: an existing branch is reused, an existing file is updated with its
current sha, and an existing open pull request is returned instead of failing.
Nothing is retried inside a run; re-dispatching the job is the recovery path.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable
from urllib.parse import quote

from adr_export.server.errors import UpstreamError, UpstreamRejection
from adr_export.server.github_client import GitHubClient, GitHubResponse
from adr_export.server.models import (
    ExportFailure,
    ExportJob,
    ExportResult,
    ExportSuccess,
    FileWriteIntent,
    RemoteRef,
)
from adr_export.server.naming import (
    branch_name_for,
    commit_message_for,
    file_path_for,
    review_request_body_for,
    review_request_title_for,
)

logger = logging.getLogger(__name__)

REF_EXISTS_MARKER = "reference already exists"
PULL_REQUEST_EXISTS_MARKER = "a pull request already exists"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class GitExportOrchestrator:
    def __init__(
        self,
        client: GitHubClient,
        repo_owner: str,
        repo_name: str,
        default_branch: str = "main",
        clock: Callable[[], date] = utc_today,
    ) -> None:
        self.client = client
        self.repo_owner = repo_owner
        self.repo_name = repo_name
        self.default_branch = default_branch
        self.clock = clock

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.repo_owner}/{self.repo_name}"

    def publish(self, job: ExportJob) -> ExportResult:
        branch_name = branch_name_for(job.title, self.clock())
        try:
            base = self.resolve_base_ref()
            reused_branch = self.create_branch(branch_name, base)
            intent = self.probe_file(job, branch_name)
            self.write_file(job, intent)
            url, reused_pr = self.open_review_request(job, branch_name)
        except UpstreamError as exc:
            logger.error(f"Git export failed for {job.record_id}: {exc}")
            return ExportFailure(reason=str(exc))

        logger.info(f"Git export complete for {job.record_id}: {url}")
        return ExportSuccess(
            review_request_url=url,
            branch_name=branch_name,
            file_path=intent.path,
            reused_branch=reused_branch,
            reused_review_request=reused_pr,
        )

    def resolve_base_ref(self) -> RemoteRef:
        response = self.client.call(
            f"{self._repo_path}/git/ref/heads/{quote(self.default_branch, safe='/')}"
        )
        _require_ok(response, "Failed to get base branch")
        payload = response.json()
        target = payload.get("object") if isinstance(payload, dict) else None
        sha = str(target.get("sha", "")) if isinstance(target, dict) else ""
        if not sha:
            raise UpstreamRejection("Failed to get base branch", response.status_code, response.text)
        return RemoteRef(name=self.default_branch, commit_sha=sha)

    def create_branch(self, branch_name: str, base: RemoteRef) -> bool:
        """Create the export branch; returns True when an existing branch is reused."""
        logger.info(f"Creating branch {branch_name} from {base.name}@{base.commit_sha[:7]}")
        response = self.client.call(
            f"{self._repo_path}/git/refs",
            method="POST",
            json={"ref": f"refs/heads/{branch_name}", "sha": base.commit_sha},
        )
        if response.ok:
            return False
        if REF_EXISTS_MARKER in response.text.lower():
            logger.info(f"Branch {branch_name} already exists, reusing it")
            return True
        raise UpstreamRejection("Failed to create branch", response.status_code, response.text)

    def probe_file(self, job: ExportJob, branch_name: str) -> FileWriteIntent:
        path = file_path_for(job.record_id)
        prior_sha: str | None = None
        try:
            response = self.client.call(
                f"{self._repo_path}/contents/{quote(path, safe='/')}",
                params={"ref": branch_name},
            )
        except UpstreamError as exc:
            logger.warning(f"Probe for {path} failed, writing as a new file: {exc}")
            response = None
        if response is not None and response.ok:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("sha"):
                prior_sha = str(payload["sha"])
        return FileWriteIntent(
            path=path,
            content_bytes=job.document_body.encode("utf-8"),
            branch=branch_name,
            prior_sha=prior_sha,
        )

    def write_file(self, job: ExportJob, intent: FileWriteIntent) -> None:
        mode = "Updating" if intent.is_update else "Creating"
        logger.info(f"{mode} {intent.path} on {intent.branch}")
        response = self.client.call(
            f"{self._repo_path}/contents/{quote(intent.path, safe='/')}",
            method="PUT",
            json=intent.request_body(commit_message_for(job.record_id, job.title)),
        )
        _require_ok(response, "Failed to create file")

    def open_review_request(self, job: ExportJob, branch_name: str) -> tuple[str, bool]:
        """Open the pull request; returns its URL and whether an existing one was reused."""
        response = self.client.call(
            f"{self._repo_path}/pulls",
            method="POST",
            json={
                "title": review_request_title_for(job.record_id, job.title),
                "head": branch_name,
                "base": self.default_branch,
                "body": review_request_body_for(job.record_id, job.title),
            },
        )
        if response.ok:
            payload = response.json()
            url = str(payload.get("html_url") or "") if isinstance(payload, dict) else ""
            if not url:
                raise UpstreamRejection("Failed to create PR", response.status_code, response.text)
            return url, False

        if PULL_REQUEST_EXISTS_MARKER in response.text.lower():
            existing = self.find_open_review_request(branch_name)
            if existing:
                logger.info(f"Pull request for {branch_name} already open, reusing {existing}")
                return existing, True
        raise UpstreamRejection("Failed to create PR", response.status_code, response.text)

    def find_open_review_request(self, branch_name: str) -> str | None:
        try:
            response = self.client.call(
                f"{self._repo_path}/pulls",
                params={"head": f"{self.repo_owner}:{branch_name}", "state": "open"},
            )
        except UpstreamError as exc:
            logger.warning(f"Lookup of open pull requests for {branch_name} failed: {exc}")
            return None
        if not response.ok:
            return None
        rows = response.json()
        if not isinstance(rows, list):
            return None
        for row in rows:
            if not isinstance(row, dict):
                continue
            head = row.get("head")
            if isinstance(head, dict) and head.get("ref") not in (None, branch_name):
                continue
            url = str(row.get("html_url", ""))
            if url:
                return url
        return None


def _require_ok(response: GitHubResponse, step: str) -> None:
    if not response.ok:
        raise UpstreamRejection(step, response.status_code, response.text)
