"""GitHub credential handling and the fixed request headers every call carries."""

from __future__ import annotations

from dataclasses import dataclass

from adr_export.shared.settings import ExportSettings

GITHUB_API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class GitHubAuth:
    token: str | None

    def headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


def github_auth_from_settings(settings: ExportSettings) -> GitHubAuth:
    return GitHubAuth(token=settings.github_token or None)
