import os
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from copilot_records import InactiveUser

LOG = logging.getLogger("copilot-report")

TABLE_HEADER = ("| User Login | Status | Days Inactive | Teams | Last Usage Date |\n"
                "|------------|--------|---------------|--------|----------------|")
SKIPPED_HEADER = ("| User Login | Status | Days Inactive | Teams | Last Usage Date | Reason |\n"
                  "|------------|--------|---------------|--------|----------------|---------|")


@dataclass
class RemovalResults:
    successful: List[InactiveUser] = field(default_factory=list)
    failed: List[InactiveUser] = field(default_factory=list)
    skipped: List[Dict] = field(default_factory=list)  # {"user": InactiveUser, "reason": str}

    def skip(self, user: InactiveUser, reason: str):
        self.skipped.append({"user": user, "reason": reason})

    def counts(self) -> Dict[str, int]:
        return {
            "successful": len(self.successful),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }


def _cell(value) -> str:
    return str(value).replace("|", "\\|")


def _row(user: InactiveUser) -> str:
    cells = [user.login, user.status, user.days_inactive, user.team, user.last_used]
    return "| " + " | ".join(_cell(c) for c in cells) + " |"


def report_timestamp(when: datetime) -> str:
    """2026-10-19T08:30:00Z -> 2026-10-19_08_30_00_UTC"""
    return when.astimezone(timezone.utc).strftime("%Y-%m-%d_%H_%M_%S_UTC")


def render_report(results: RemovalResults, when: datetime, dry_run: bool) -> str:
    mode = "DRY RUN" if dry_run else "PRODUCTION"
    date = when.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")

    lines = [
        "# GitHub Copilot Access Removal Report",
        "",
        "## Process Information",
        f"- Date: {date}",
        f"- Mode: {mode}",
        "",
        "## Summary",
        f"- Successfully Processed: {len(results.successful)} users",
        f"- Failed to Process: {len(results.failed)} users",
        f"- Skipped: {len(results.skipped)} users",
        "",
        "## Successfully Processed Users",
        TABLE_HEADER,
    ]
    lines.extend(_row(u) for u in results.successful)
    lines += ["", "## Failed to Process", TABLE_HEADER]
    lines.extend(_row(u) for u in results.failed)
    lines += ["", "## Skipped Users", SKIPPED_HEADER]
    lines.extend(f"{_row(s['user'])} {_cell(s['reason'])} |" for s in results.skipped)
    return "\n".join(lines) + "\n"


def report_path(report_dir: str, when: datetime) -> str:
    base = os.path.join(report_dir, report_timestamp(when))
    path = f"{base}.md"
    n = 1
    while os.path.exists(path):
        path = f"{base}-{n}.md"
        n += 1
    return path


def write_report(results: RemovalResults, when: datetime, dry_run: bool, report_dir: str) -> str:
    os.makedirs(report_dir, exist_ok=True)
    path = report_path(report_dir, when)
    with open(path, "x", encoding="utf-8") as f:
        f.write(render_report(results, when, dry_run))
    LOG.info("Markdown report has been generated at %s", path)
    return path
