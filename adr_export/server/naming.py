"""Deterministic names derived from a job: slug, branch, file path, PR text."""

from __future__ import annotations

import re
from datetime import date

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

SLUG_MAX_LENGTH = 50
BRANCH_PREFIX = "adr"
ADR_DIRECTORY = "docs/adr"


def slugify(title: str) -> str:
    slug = _NON_ALNUM_RE.sub("-", title.lower()).strip("-")[:SLUG_MAX_LENGTH]
    return slug or "untitled"


def branch_name_for(title: str, on: date) -> str:
    # Same title on the same day maps to the same branch so a rerun resumes it.
    return f"{BRANCH_PREFIX}/{on.isoformat()}-{slugify(title)}"


def file_path_for(record_id: str) -> str:
    return f"{ADR_DIRECTORY}/{record_id}.md"


def commit_message_for(record_id: str, title: str) -> str:
    return f"Add {record_id}: {title}"


def review_request_title_for(record_id: str, title: str) -> str:
    return f"{record_id}: {title}"


def review_request_body_for(record_id: str, title: str) -> str:
    return (
        "## Architectural Decision Record\n\n"
        f"**{record_id}**: {title}\n\n"
        "Exported from Slack ADR Bot."
    )
