"""Tests for the Markdown removal report."""

from __future__ import annotations

import os

from copilot_records import INACTIVE, NO_ACTIVITY, InactiveUser
from removal_report import RemovalResults, render_report, report_timestamp, write_report


def _results():
    results = RemovalResults()
    results.successful += [
        InactiveUser("a", INACTIVE, team="Team Copilot - Eng", last_used="2026-07-01T00:00:00.000Z",
                     days_inactive=110),
        InactiveUser("b", NO_ACTIVITY),
    ]
    results.failed.append(InactiveUser("c", INACTIVE, days_inactive=45, last_used="2026-09-04T00:00:00.000Z"))
    return results


def _table_rows(text, heading):
    section = text.split(f"## {heading}\n", 1)[1].split("\n## ", 1)[0]
    return [line for line in section.splitlines() if line.startswith("| ") and not line.startswith("| User Login")]


class TestRender:
    def test_summary_matches_tables(self, reference_date) -> None:
        text = render_report(_results(), reference_date, dry_run=False)

        assert "- Successfully Processed: 2 users" in text
        assert "- Failed to Process: 1 users" in text
        assert "- Skipped: 0 users" in text
        assert len(_table_rows(text, "Successfully Processed Users")) == 2
        assert len(_table_rows(text, "Failed to Process")) == 1
        assert len(_table_rows(text, "Skipped Users")) == 0

    def test_rows_and_metadata(self, reference_date) -> None:
        text = render_report(_results(), reference_date, dry_run=True)

        assert text.startswith("# GitHub Copilot Access Removal Report\n")
        assert "- Date: Mon, 19 Oct 2026 12:00:00 GMT" in text
        assert "- Mode: DRY RUN" in text
        assert "| a | Inactive | 110 | Team Copilot - Eng | 2026-07-01T00:00:00.000Z |" in text
        assert "| b | No activity | Never used | No teams | Never |" in text

    def test_skipped_reason_column(self, reference_date) -> None:
        results = RemovalResults()
        results.skip(InactiveUser("cleaner-bot", NO_ACTIVITY), "Current user")
        text = render_report(results, reference_date, dry_run=False)

        assert _table_rows(text, "Skipped Users") == [
            "| cleaner-bot | No activity | Never used | No teams | Never | Current user |"]

    def test_pipes_are_escaped(self, reference_date) -> None:
        results = RemovalResults()
        results.failed.append(InactiveUser("c", INACTIVE, team="Team Copilot - A|B", days_inactive=45))
        results.skip(InactiveUser("cleaner-bot", NO_ACTIVITY), "Current | user")
        text = render_report(results, reference_date, dry_run=False)

        assert "| c | Inactive | 45 | Team Copilot - A\\|B | Never |" in text
        assert "| Current \\| user |" in text
        assert len(_table_rows(text, "Failed to Process")) == 1


class TestWrite:
    def test_timestamp(self, reference_date) -> None:
        assert report_timestamp(reference_date) == "2026-10-19_12_00_00_UTC"

    def test_never_overwrites(self, reference_date, tmp_path) -> None:
        report_dir = str(tmp_path / "clean-logs")
        first = write_report(_results(), reference_date, False, report_dir)
        second = write_report(RemovalResults(), reference_date, True, report_dir)

        assert first != second
        assert os.path.basename(second) == "2026-10-19_12_00_00_UTC-1.md"
        assert "- Successfully Processed: 2 users" in open(first).read()
        assert "- Successfully Processed: 0 users" in open(second).read()
