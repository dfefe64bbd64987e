"""Runtime settings for the ADR git-export handler, loaded from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_CALLBACK_RPC = "handle_git_export_callback"

REQUIRED_ENV_VARS = {
    "github_token": "GITHUB_TOKEN",
    "repo_owner": "GITHUB_REPO_OWNER",
    "repo_name": "GITHUB_REPO_NAME",
    "database_url": "SUPABASE_URL",
    "service_credential": "SUPABASE_SERVICE_ROLE_KEY",
}


@dataclass(frozen=True)
class ExportSettings:
    """Hosting-API target, database callback endpoint and credentials."""

    github_token: str
    repo_owner: str
    repo_name: str
    default_branch: str
    database_url: str
    service_credential: str
    github_api_url: str = DEFAULT_GITHUB_API_URL
    callback_rpc: str = DEFAULT_CALLBACK_RPC
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ExportSettings":
        source = os.environ if env is None else env
        token = _clean(source.get("ADR_EXPORT_GITHUB_TOKEN")) or _clean(
            source.get("GITHUB_TOKEN")
        )
        return cls(
            github_token=token,
            repo_owner=_clean(source.get("GITHUB_REPO_OWNER")),
            repo_name=_clean(source.get("GITHUB_REPO_NAME")),
            default_branch=_clean(source.get("GITHUB_DEFAULT_BRANCH")) or "main",
            database_url=_clean(source.get("SUPABASE_URL")).rstrip("/"),
            service_credential=_clean(source.get("SUPABASE_SERVICE_ROLE_KEY")),
            github_api_url=(
                _clean(source.get("ADR_EXPORT_GITHUB_API_URL")) or DEFAULT_GITHUB_API_URL
            ).rstrip("/"),
            callback_rpc=_clean(source.get("ADR_EXPORT_CALLBACK_RPC")) or DEFAULT_CALLBACK_RPC,
            log_level=(_clean(source.get("ADR_EXPORT_LOG_LEVEL")) or "INFO").upper(),
        )

    @property
    def repo_full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    @property
    def callback_url(self) -> str:
        return f"{self.database_url}/rest/v1/rpc/{self.callback_rpc}"

    def missing_required(self) -> list[str]:
        return [env_name for field, env_name in REQUIRED_ENV_VARS.items() if not getattr(self, field)]

    def redacted(self) -> dict[str, str]:
        return {
            "github_token": redact_secret(self.github_token),
            "repo": self.repo_full_name,
            "default_branch": self.default_branch,
            "database_url": self.database_url,
            "service_credential": redact_secret(self.service_credential),
            "github_api_url": self.github_api_url,
            "callback_rpc": self.callback_rpc,
        }


def load_export_settings(env: Mapping[str, str] | None = None) -> ExportSettings:
    """Build settings and report missing configuration without refusing to start."""

    settings = ExportSettings.from_env(env)
    missing = settings.missing_required()
    if missing:
        logger.error(f"Missing required env vars: {', '.join(missing)}")
    return settings


def redact_secret(value: str | None) -> str:
    if not value:
        return "unset"
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"


def _clean(value: str | None) -> str:
    if value is None:
        return ""
    return value.strip()
