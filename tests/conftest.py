"""Shared fixtures for the Copilot seat cleaner tests."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from copilot_settings import Settings
from github_client import GitHubClient


REFERENCE_DATE = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def reference_date():
    return REFERENCE_DATE


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings pointing all outputs into tmp_path."""

    def _make(**overrides) -> Settings:
        values = dict(
            org_name="acme",
            token="ghp_test",
            threshold_days=30,
            current_user="cleaner-bot",
            reference_date=REFERENCE_DATE,
            dry_run=False,
            inactive_users_file=str(tmp_path / "scripts" / "inactive_users.txt"),
            inactive_users_export=str(tmp_path / "scripts" / "inactive_users.csv"),
            report_dir=str(tmp_path / "clean-logs"),
            settle_delay=0,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def client():
    return MagicMock(spec=GitHubClient)


def make_response(status_code=200, json_data=None, text="", headers=None, links=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = headers or {}
    resp.links = links or {}
    resp.text = text
    if json_data is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = json_data
    return resp


@pytest.fixture
def response():
    return make_response
